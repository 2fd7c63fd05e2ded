"""
Scheduling engine state.

One ``SchedulingEngine`` per Flask app holds the rebuildable caches
(profiles, patterns), the predictor selected for the current generation and
the scorer. The optimizer and the rule engine both read from it, so they
rank and estimate with the same scorer/predictor pair.

The engine is stored in ``app.extensions["scheduling_engine"]`` and built
lazily on first use; the daily ``engine_rebuild`` job refreshes it.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime

from flask import Flask, current_app

from assignment_engine.services.candidate_scorer import CandidateScorer
from assignment_engine.services.completion_predictor import (
    CompletionTimePredictor,
    HeuristicPredictor,
    build_predictor,
)
from assignment_engine.services.history_service import load_assignment_history
from assignment_engine.services.pattern_analyzer import PatternCache
from assignment_engine.services.profile_builder import ProfileCache
from assignment_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)

EXTENSION_KEY = "scheduling_engine"


class SchedulingEngine:
    """Profiles + patterns + predictor + scorer for one app."""

    def __init__(self, config) -> None:
        self.window_days = int(config.get("HISTORY_WINDOW_DAYS", 180))
        self.history_limit = int(config.get("HISTORY_LIMIT", 1000))
        self.strategy = config.get("PREDICTOR_STRATEGY", "auto")
        self.min_samples = int(config.get("MIN_TRAINING_SAMPLES", 50))

        self.profiles = ProfileCache()
        self.patterns = PatternCache()
        self.predictor: CompletionTimePredictor = HeuristicPredictor()
        self.scorer = CandidateScorer(self.profiles)
        self.built_at: datetime | None = None
        self.history_size = 0

    @property
    def is_built(self) -> bool:
        return self.built_at is not None

    def rebuild(self, now: datetime | None = None) -> dict:
        """Reload history and replace every derived structure.

        History load failures degrade to empty profiles and the heuristic
        predictor; they never propagate.
        """
        now = now or utcnow()
        start = time.monotonic()
        try:
            history = load_assignment_history(self.window_days, self.history_limit, now=now)
        except Exception:
            logger.warning("History load failed; engine falls back to defaults", exc_info=True)
            history = []

        self.profiles.rebuild(history, now=now)
        self.patterns.rebuild(history, now=now)
        self.predictor = build_predictor(self.strategy, history, self.min_samples)
        self.history_size = len(history)
        self.built_at = now

        duration_ms = (time.monotonic() - start) * 1000
        logger.info("Scheduling engine rebuilt: %d history rows, %d profiles, predictor=%s",
                    len(history), len(self.profiles), self.predictor.name,
                    extra={"duration_ms": duration_ms})
        return self.describe()

    def ensure_built(self) -> "SchedulingEngine":
        if not self.is_built:
            self.rebuild()
        return self

    def describe(self) -> dict:
        return {
            "built_at": self.built_at.isoformat() if self.built_at else None,
            "history_size": self.history_size,
            "profile_count": len(self.profiles),
            "pattern_samples": self.patterns.patterns["sample_size"],
            "insights": self.patterns.insights,
            "predictor": self.predictor.describe(),
        }


def init_engine(app: Flask) -> SchedulingEngine:
    engine = SchedulingEngine(app.config)
    app.extensions[EXTENSION_KEY] = engine
    return engine


def get_engine() -> SchedulingEngine:
    """Return the current app's engine, building it on first use."""
    engine = current_app.extensions.get(EXTENSION_KEY)
    if engine is None:
        engine = init_engine(current_app)
    return engine.ensure_built()


def rebuild_engine(now: datetime | None = None) -> dict:
    """Rebuild the current app's engine (creating it if needed)."""
    engine = current_app.extensions.get(EXTENSION_KEY) or init_engine(current_app)
    return engine.rebuild(now=now)
