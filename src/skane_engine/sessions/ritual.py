"""Ritual eligibility — when a calm-ritual suggestion may be shown.

A suggestion is only offered to owners who already benefit from the
micro-actions.  All four thresholds must hold:

* at least ``min_actions`` actioned sessions
* at least ``min_positive_rate`` of sessions with feedback were positive
* at least ``min_days_since_first`` whole days since the first session
* sessions on at least ``min_distinct_days`` distinct UTC calendar days

The first failing check decides the ``reason`` string.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from skane_engine.config import Settings
from skane_engine.models import FeedbackValue, RitualEligibility, RitualStats, SkaneSession


@dataclass(frozen=True, slots=True)
class RitualThresholds:
    min_actions: int = 5
    min_positive_rate: float = 0.6
    min_days_since_first: int = 3
    min_distinct_days: int = 2
    count_neutral_as_positive: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "RitualThresholds":
        return cls(
            min_actions=settings.ritual_min_actions,
            min_positive_rate=settings.ritual_min_positive_rate,
            min_days_since_first=settings.ritual_min_days_since_first,
            min_distinct_days=settings.ritual_min_distinct_days,
            count_neutral_as_positive=settings.ritual_count_neutral_as_positive,
        )


class RitualEvaluator:
    def __init__(self, thresholds: RitualThresholds | None = None) -> None:
        self.thresholds = thresholds or RitualThresholds()

    def _is_positive(self, feedback: FeedbackValue) -> bool:
        if feedback == FeedbackValue.BETTER:
            return True
        return feedback == FeedbackValue.SAME and self.thresholds.count_neutral_as_positive

    def stats(self, sessions: Iterable[SkaneSession], now: datetime) -> RitualStats:
        actioned = sorted(
            (s for s in sessions if s.chosen_action is not None),
            key=lambda s: s.created_at,
        )
        if not actioned:
            return RitualStats()

        with_feedback = [s.feedback for s in actioned if s.feedback is not None]
        positive = sum(1 for fb in with_feedback if self._is_positive(fb))
        positive_rate = positive / len(with_feedback) if with_feedback else 0.0

        elapsed = (now - actioned[0].created_at).total_seconds()
        return RitualStats(
            total_actions=len(actioned),
            positive_rate=round(positive_rate, 4),
            days_since_first=max(0, math.floor(elapsed / 86400)),
            distinct_days=len({s.created_at.date() for s in actioned}),
        )

    def evaluate(self, sessions: Iterable[SkaneSession], now: datetime) -> RitualEligibility:
        t = self.thresholds
        stats = self.stats(sessions, now)

        if stats.total_actions == 0:
            return RitualEligibility(eligible=False, reason="no_actions", stats=stats)
        if stats.total_actions < t.min_actions:
            missing = t.min_actions - stats.total_actions
            return RitualEligibility(eligible=False, reason=f"need_{missing}_more_actions", stats=stats)
        if stats.positive_rate < t.min_positive_rate:
            return RitualEligibility(eligible=False, reason="positive_rate_too_low", stats=stats)
        if stats.days_since_first < t.min_days_since_first:
            wait = t.min_days_since_first - stats.days_since_first
            return RitualEligibility(eligible=False, reason=f"wait_{wait}_more_days", stats=stats)
        if stats.distinct_days < t.min_distinct_days:
            return RitualEligibility(eligible=False, reason="need_more_distinct_days", stats=stats)
        return RitualEligibility(eligible=True, reason="eligible", stats=stats)
