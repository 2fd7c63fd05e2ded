"""
Completion-Time Predictor.

Contract:
    predict(task, candidate, at=None) -> hours (float, always > 0)

Two strategies implement the contract:

    HeuristicPredictor: base hours per category scaled by priority,
                         experience and current workload. Always available.
    ModelPredictor:     scikit-learn ridge regression trained on the
                         history snapshot. Only trained when enough completed
                         samples exist; any inference problem falls back to
                         the heuristic, so ``predict`` never raises.

``task`` needs ``category`` and ``priority`` attributes (a WorkItem works);
``candidate`` is a workload.Candidate. ``at`` fixes the time-of-request
features so predictions are reproducible.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from statistics import mean
from typing import Iterable

import numpy as np
from sklearn.linear_model import Ridge
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from assignment_engine.services.history_service import HistoryRecord
from assignment_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)

MIN_PREDICTED_HOURS = 0.5

# ── Heuristic factors ────────────────────────────────────────────────────────

BASE_HOURS = {
    "assessment_approval": 2.0,
    "evidence_review": 3.0,
    "compliance_review": 6.0,
    "remediation_approval": 4.0,
}
DEFAULT_BASE_HOURS = 4.0

PRIORITY_FACTORS = {"critical": 0.8, "high": 0.9, "medium": 1.0, "low": 1.2}
EXPERIENCE_FACTORS = {"junior": 1.5, "mid": 1.0, "senior": 0.8, "expert": 0.6}
WORKLOAD_FACTOR_PER_ITEM = 0.1

# ── Feature encodings ────────────────────────────────────────────────────────

CATEGORY_CODES = {
    "assessment_approval": 1, "evidence_review": 2,
    "compliance_review": 3, "remediation_approval": 4,
}
PRIORITY_CODES = {"low": 1, "medium": 2, "high": 3, "critical": 4}
ROLE_CODES = {"analyst": 1, "auditor": 2, "manager": 3, "compliance_officer": 4, "admin": 5}
EXPERIENCE_CODES = {"junior": 1, "mid": 2, "senior": 3, "expert": 4}


def encode_features(
    category: str | None,
    priority: str | None,
    role: str | None,
    experience_level: str | None,
    at: datetime,
    historical_avg_hours: float,
) -> list[float]:
    """Feature vector shared by training and inference."""
    return [
        float(CATEGORY_CODES.get(category or "", 0)),
        float(PRIORITY_CODES.get(priority or "", 2)),
        float(ROLE_CODES.get(role or "", 1)),
        float(EXPERIENCE_CODES.get(experience_level or "", 2)),
        float(at.hour),
        float(at.weekday()),
        math.log1p(max(historical_avg_hours, 0.0)),
    ]


def _floor(hours: float) -> float:
    return max(MIN_PREDICTED_HOURS, round(hours, 1))


class CompletionTimePredictor(ABC):
    """Estimate how long ``candidate`` needs to complete ``task``."""

    name = "abstract"

    @abstractmethod
    def predict(self, task, candidate, at: datetime | None = None) -> float:
        ...

    def describe(self) -> dict:
        return {"strategy": self.name}


class HeuristicPredictor(CompletionTimePredictor):
    """Rule-of-thumb estimate; deterministic and dependency free."""

    name = "heuristic"

    def predict(self, task, candidate, at: datetime | None = None) -> float:
        hours = BASE_HOURS.get(getattr(task, "category", None) or "", DEFAULT_BASE_HOURS)
        hours *= PRIORITY_FACTORS.get(getattr(task, "priority", None) or "", 1.0)
        if candidate is not None:
            hours *= EXPERIENCE_FACTORS.get(candidate.experience_level or "", 1.0)
            hours *= 1 + candidate.active_items * WORKLOAD_FACTOR_PER_ITEM
        return _floor(hours)


class ModelPredictor(CompletionTimePredictor):
    """Ridge regression on log completion hours.

    The last feature is the candidate's own historical mean for the category
    (or the category mean across everyone, or the heuristic base when the
    category was never seen).
    """

    name = "model"

    def __init__(self, min_samples: int = 50, fallback: CompletionTimePredictor | None = None,
                 alpha: float = 1.0) -> None:
        self.min_samples = min_samples
        self.fallback = fallback or HeuristicPredictor()
        self.alpha = alpha
        self.pipeline: Pipeline | None = None
        self.sample_count = 0
        self._user_category_avg: dict[tuple[int, str], float] = {}
        self._category_avg: dict[str, float] = {}

    @property
    def is_trained(self) -> bool:
        return self.pipeline is not None

    def _historical_avg(self, user_id: int | None, category: str | None) -> float:
        category = category or ""
        if user_id is not None and (user_id, category) in self._user_category_avg:
            return self._user_category_avg[(user_id, category)]
        if category in self._category_avg:
            return self._category_avg[category]
        return BASE_HOURS.get(category, DEFAULT_BASE_HOURS)

    def train(self, history: Iterable[HistoryRecord]) -> bool:
        """Fit the model. Returns False (and stays untrained) below ``min_samples``."""
        samples = [r for r in history if r.completed]
        self.sample_count = len(samples)
        if len(samples) < self.min_samples:
            logger.info("Model predictor not trained: %d samples (< %d)",
                        len(samples), self.min_samples)
            self.pipeline = None
            return False

        by_user_category: dict[tuple[int, str], list[float]] = defaultdict(list)
        by_category: dict[str, list[float]] = defaultdict(list)
        for r in samples:
            by_user_category[(r.user_id, r.category)].append(r.completion_hours)
            by_category[r.category].append(r.completion_hours)
        self._user_category_avg = {k: mean(v) for k, v in by_user_category.items()}
        self._category_avg = {k: mean(v) for k, v in by_category.items()}

        X = np.array([
            encode_features(
                r.category, r.priority, r.user_role, r.experience_level, r.assigned_at,
                self._historical_avg(r.user_id, r.category),
            )
            for r in samples
        ])
        y = np.log1p(np.array([r.completion_hours for r in samples]))

        pipeline = Pipeline(steps=[
            ("scaler", StandardScaler()),
            ("ridge", Ridge(alpha=self.alpha)),
        ])
        pipeline.fit(X, y)
        self.pipeline = pipeline
        logger.info("Model predictor trained on %d samples", len(samples))
        return True

    def predict(self, task, candidate, at: datetime | None = None) -> float:
        if self.pipeline is None:
            return self.fallback.predict(task, candidate, at)
        at = at or utcnow()
        try:
            category = getattr(task, "category", None)
            features = encode_features(
                category,
                getattr(task, "priority", None),
                candidate.role if candidate else None,
                candidate.experience_level if candidate else None,
                at,
                self._historical_avg(candidate.user_id if candidate else None, category),
            )
            hours = float(np.expm1(self.pipeline.predict(np.array([features]))[0]))
            if not math.isfinite(hours) or hours <= 0:
                raise ValueError(f"non-positive prediction {hours!r}")
            if candidate is not None:
                hours *= 1 + candidate.active_items * WORKLOAD_FACTOR_PER_ITEM
            return _floor(hours)
        except Exception:
            logger.warning("Model prediction failed; using heuristic", exc_info=True)
            return self.fallback.predict(task, candidate, at)

    def describe(self) -> dict:
        return {
            "strategy": self.name,
            "trained": self.is_trained,
            "sample_count": self.sample_count,
            "min_samples": self.min_samples,
        }


def build_predictor(strategy: str, history: Iterable[HistoryRecord],
                    min_samples: int = 50) -> CompletionTimePredictor:
    """Select the predictor for this engine generation.

    ``strategy="heuristic"`` always returns the heuristic. ``"auto"`` trains a
    model and keeps it only when training succeeded.
    """
    if strategy == "heuristic":
        return HeuristicPredictor()
    model = ModelPredictor(min_samples=min_samples)
    try:
        trained = model.train(history)
    except Exception:
        logger.warning("Model training failed; using heuristic predictor", exc_info=True)
        trained = False
    return model if trained else HeuristicPredictor()
