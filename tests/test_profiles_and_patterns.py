"""
Tests: profile builder, pattern analyzer and history loading.

Covers:
    1. build_profiles aggregates (reliability, averages, expertise, capacity)
    2. ProfileCache rebuild / loader failure
    3. analyze_patterns groups and insights
    4. load_assignment_history window and Primary-only filter
"""

from datetime import datetime, timedelta, timezone

import pytest

from assignment_engine.services.history_service import HistoryRecord, load_assignment_history
from assignment_engine.services.pattern_analyzer import (
    PatternCache,
    analyze_patterns,
    group_stats,
    time_slot,
)
from assignment_engine.services.profile_builder import ProfileCache, build_profiles

MONDAY_9AM = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _record(user_id=1, category="evidence_review", hours=4.0, status="Completed",
            assigned_at=MONDAY_9AM, priority="medium"):
    return HistoryRecord(
        assignment_id=1,
        work_item_id=1,
        user_id=user_id,
        user_role="analyst",
        experience_level="mid",
        category=category,
        priority=priority,
        status=status,
        assigned_at=assigned_at,
        completed_at=assigned_at + timedelta(hours=hours) if status == "Completed" else None,
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Profile builder
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildProfiles:

    def test_reliability_and_average(self):
        history = [
            _record(hours=2.0),
            _record(hours=6.0),
            _record(status="Rejected"),
            _record(status="Assigned"),
        ]
        profile = build_profiles(history)[1]
        assert profile.total_items == 4
        assert profile.completed_items == 2
        assert profile.reliability == 0.5
        assert profile.avg_completion_hours == 4.0

    def test_category_expertise(self):
        history = [
            _record(category="evidence_review", hours=3.0),
            _record(category="evidence_review", status="Transferred"),
            _record(category="compliance_review", hours=9.0),
        ]
        profile = build_profiles(history)[1]
        evidence = profile.expertise_for("evidence_review")
        assert evidence.count == 2
        assert evidence.completed == 1
        assert evidence.success_rate == 0.5
        assert evidence.avg_hours == 3.0
        assert profile.expertise_for("compliance_review").success_rate == 1.0
        assert profile.expertise_for("remediation_approval") is None
        assert profile.expertise_for(None) is None

    def test_no_completions_means_no_average(self):
        profile = build_profiles([_record(status="Assigned")])[1]
        assert profile.reliability == 0.0
        assert profile.avg_completion_hours is None
        assert profile.expertise_for("evidence_review").avg_hours is None

    def test_weekly_capacity(self):
        history = [
            _record(assigned_at=MONDAY_9AM),
            _record(assigned_at=MONDAY_9AM + timedelta(days=1)),
            _record(assigned_at=MONDAY_9AM + timedelta(days=2)),
            _record(assigned_at=MONDAY_9AM + timedelta(days=7)),
        ]
        # three items in week one, one in week two
        assert build_profiles(history)[1].workload_capacity == 2.0

    def test_one_profile_per_user(self):
        profiles = build_profiles([_record(user_id=1), _record(user_id=2), _record(user_id=2)])
        assert set(profiles) == {1, 2}
        assert profiles[2].total_items == 2

    def test_to_dict(self):
        data = build_profiles([_record()])[1].to_dict()
        assert data["user_id"] == 1
        assert data["expertise"]["evidence_review"]["count"] == 1


class TestProfileCache:

    def test_rebuild_replaces_profiles(self):
        cache = ProfileCache()
        assert cache.rebuild([_record(user_id=1)]) == 1
        assert 1 in cache
        cache.rebuild([_record(user_id=2)])
        assert 1 not in cache
        assert cache.get(2) is not None
        assert len(cache) == 1

    def test_loader_failure_leaves_cache_empty(self):
        def broken_loader():
            raise RuntimeError("store unavailable")

        cache = ProfileCache()
        cache.rebuild([_record()])
        assert cache.rebuild(loader=broken_loader) == 0
        assert len(cache) == 0

    def test_profiles_are_read_only(self):
        cache = ProfileCache()
        cache.rebuild([_record()])
        with pytest.raises(TypeError):
            cache.profiles[99] = None


# ═══════════════════════════════════════════════════════════════════════════
#  Pattern analyzer
# ═══════════════════════════════════════════════════════════════════════════

class TestPatternAnalyzer:

    def test_time_slots(self):
        assert time_slot(MONDAY_9AM) == "morning"
        assert time_slot(MONDAY_9AM.replace(hour=12)) == "afternoon"
        assert time_slot(MONDAY_9AM.replace(hour=17)) == "evening"

    def test_group_stats(self):
        stats = group_stats([1.0, 2.0, 3.0, 6.0])
        assert stats == {"count": 4, "avg": 3.0, "median": 2.5, "std": 1.87, "min": 1.0, "max": 6.0}

    def test_groups_use_completed_only(self):
        patterns = analyze_patterns([
            _record(category="evidence_review", hours=2.0),
            _record(category="compliance_review", status="Rejected"),
        ])
        assert patterns["sample_size"] == 1
        assert set(patterns["by_category"]) == {"evidence_review"}
        assert patterns["by_priority"]["medium"]["count"] == 1
        assert patterns["by_day_of_week"]["Monday"]["avg"] == 2.0

    def test_morning_insight(self):
        afternoon = MONDAY_9AM.replace(hour=14)
        patterns = analyze_patterns([
            _record(hours=2.0),
            _record(hours=2.0),
            _record(hours=6.0, assigned_at=afternoon),
            _record(hours=6.0, assigned_at=afternoon),
        ])
        assert any("morning" in text for text in patterns["insights"])

    def test_no_morning_insight_when_similar(self):
        afternoon = MONDAY_9AM.replace(hour=14)
        patterns = analyze_patterns([_record(hours=5.0), _record(hours=5.5, assigned_at=afternoon)])
        assert not any("morning" in text for text in patterns["insights"])

    def test_category_insight_names_fastest_and_slowest(self):
        patterns = analyze_patterns([
            _record(category="assessment_approval", hours=1.0),
            _record(category="compliance_review", hours=10.0),
        ])
        text = next(t for t in patterns["insights"] if t.startswith("Fastest category"))
        assert "assessment_approval" in text and "compliance_review" in text

    def test_empty_history(self):
        patterns = analyze_patterns([])
        assert patterns["sample_size"] == 0
        assert patterns["insights"] == []

    def test_cache_category_avg(self):
        cache = PatternCache()
        assert cache.category_avg("evidence_review") is None
        cache.rebuild([_record(hours=3.0), _record(hours=5.0)])
        assert cache.category_avg("evidence_review") == 4.0
        assert cache.category_avg(None) is None


# ═══════════════════════════════════════════════════════════════════════════
#  History loading
# ═══════════════════════════════════════════════════════════════════════════

class TestLoadHistory:

    def test_window_and_primary_filter(self, now, make_org, make_user, make_item, make_assignment):
        org = make_org()
        analyst = make_user("analyst", org)
        reviewer = make_user("auditor", org)
        recent = make_item(org=org, status="completed")
        old = make_item(org=org, status="completed")

        make_assignment(recent, analyst, status="Completed",
                        assigned_at=now - timedelta(days=3), hours=5)
        make_assignment(recent, reviewer, status="Completed", assignment_type="Secondary",
                        assigned_at=now - timedelta(days=3), hours=5)
        make_assignment(old, analyst, status="Completed",
                        assigned_at=now - timedelta(days=400), hours=5)

        history = load_assignment_history(window_days=180, now=now)
        assert len(history) == 1
        record = history[0]
        assert record.user_id == analyst.id
        assert record.category == "evidence_review"
        assert record.completion_hours == pytest.approx(5.0)
        assert record.assigned_at.tzinfo is not None

    def test_limit_keeps_newest(self, now, make_org, make_user, make_item, make_assignment):
        org = make_org()
        user = make_user("analyst", org)
        for days in (1, 2, 3):
            make_assignment(make_item(org=org), user, assigned_at=now - timedelta(days=days))

        history = load_assignment_history(limit=2, now=now)
        assert [r.assigned_at for r in history] == [now - timedelta(days=1), now - timedelta(days=2)]
