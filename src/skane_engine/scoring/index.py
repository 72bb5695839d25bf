"""Skane Index calculator — banded before/after wellness score.

The before band is the classifier's activation level on a 0–100 scale,
widened in proportion to ``1 − confidence``: the less certain the
classification, the wider the range shown.  A band is never collapsed to a
single number for display.

Feedback adjustment
-------------------
==========  ==========  =====================================================
Feedback    Synonym     Effect
==========  ==========  =====================================================
worse       still_high  no reduction, session flagged unresolved
same        reduced     centre moves halfway to the full-relief target
better      clear       centre moves to the full-relief target, below the
                        low end of the pre-action band
==========  ==========  =====================================================

The full-relief target is ``before.min × (1 − full_relief_ratio)``.  The
after band keeps the width of the before band.
"""

from __future__ import annotations

from typing import Any, Mapping

import structlog

from skane_engine.config import Settings
from skane_engine.models import Band, FeedbackOutcome, FeedbackValue, SignalSnapshot
from skane_engine.scoring.classifier import ActivationClassifier

logger = structlog.get_logger(__name__)

# Fraction of the way from the before centre to the full-relief target.
REDUCTION_TABLE: dict[FeedbackValue, float] = {
    FeedbackValue.WORSE: 0.0,
    FeedbackValue.SAME: 0.5,
    FeedbackValue.BETTER: 1.0,
}


class SkaneIndexCalculator:
    """Compute before bands and apply the feedback adjustment table."""

    def __init__(
        self,
        classifier: ActivationClassifier | None = None,
        base_half_width: float = 3.0,
        confidence_spread: float = 12.0,
        full_relief_ratio: float = 0.6,
        min_share_delta: float = 10.0,
    ) -> None:
        self._classifier = classifier or ActivationClassifier()
        self._base_half_width = base_half_width
        self._confidence_spread = confidence_spread
        self._full_relief_ratio = full_relief_ratio
        self._min_share_delta = min_share_delta

    @classmethod
    def from_settings(
        cls, settings: Settings, classifier: ActivationClassifier | None = None
    ) -> "SkaneIndexCalculator":
        return cls(
            classifier=classifier or ActivationClassifier.from_settings(settings),
            base_half_width=settings.band_base_half_width,
            confidence_spread=settings.band_confidence_spread,
            full_relief_ratio=settings.full_relief_ratio,
            min_share_delta=settings.min_share_delta,
        )

    # ── Before ────────────────────────────────────────────────

    def band_for(self, activation_level: float, confidence: float) -> Band:
        half_width = self._base_half_width + self._confidence_spread * (1.0 - confidence)
        return Band.around(activation_level * 100.0, half_width)

    def compute_before(self, signal: SignalSnapshot | Mapping[str, Any]) -> Band:
        """Banded pre-action score for *signal* (validates like ``classify``)."""
        state = self._classifier.classify(signal)
        return self.band_for(state.activation_level, state.confidence)

    # ── After ─────────────────────────────────────────────────

    def after_band(self, before: Band, feedback: FeedbackValue) -> Band:
        target = before.min * (1.0 - self._full_relief_ratio)
        fraction = REDUCTION_TABLE[feedback]
        centre = before.mid - fraction * (before.mid - target)
        return Band.around(centre, before.width / 2)

    def should_offer_share(self, before: Band, after: Band, feedback: FeedbackValue) -> bool:
        if feedback != FeedbackValue.BETTER:
            return False
        return (before.mid - after.mid) > self._min_share_delta

    def apply_feedback(self, before: Band, feedback: FeedbackValue) -> FeedbackOutcome:
        """Deterministic function of ``(before, feedback)``."""
        after = self.after_band(before, feedback)
        outcome = FeedbackOutcome(
            feedback=feedback,
            after_score=after,
            skane_index=max(0, min(100, round(after.mid))),
            should_offer_share=self.should_offer_share(before, after, feedback),
            unresolved=feedback == FeedbackValue.WORSE,
        )
        logger.debug(
            "index.feedback_applied",
            feedback=feedback.value,
            before_mid=before.mid,
            after_mid=after.mid,
            share=outcome.should_offer_share,
        )
        return outcome
