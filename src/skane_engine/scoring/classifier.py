"""Activation classifier — maps a signal snapshot to an activation state.

Each signal group (facial, postural, respiratory) yields a weighted
sub-score in [0, 1]; the sub-scores combine into a single
``activation_level``.  Two cut points split that scalar into the three
states, and confidence is the distance to the nearest cut normalised by the
room available on that side.

=================  =========================================  ======
Group              Signals (direction)                        Weight
=================  =========================================  ======
Facial             tension, brow, blink, openness (+);        0.45
                   moisture, symmetry (−)
Postural           shoulder / neck tension (+);               0.25
                   head tilt, head forward (−)
Respiratory        rate, chest movement (+); depth (−)        0.30
=================  =========================================  ======

A (−) signal contributes ``1 − value``: high values pull towards low energy.
"""

from __future__ import annotations

import math
from typing import Any, Mapping

import structlog
from pydantic import ValidationError

from skane_engine.catalog import DEFAULT_BOUNDS, SignalBounds
from skane_engine.config import Settings
from skane_engine.errors import FieldError, InvalidSignalError
from skane_engine.models import (
    ActivationState,
    BodyArea,
    PrimaryNeed,
    PrimaryState,
    RecommendationHints,
    SignalSnapshot,
    Urgency,
)

logger = structlog.get_logger(__name__)

# (signal, weight within group, +1 activating / -1 calming)
_FACIAL_WEIGHTS = (
    ("eye_openness", 0.15, 1),
    ("blink_frequency", 0.10, 1),
    ("eye_moisture", 0.05, -1),
    ("forehead_tension", 0.15, 1),
    ("brow_position", 0.10, 1),
    ("jaw_tension", 0.20, 1),
    ("lip_compression", 0.15, 1),
    ("facial_symmetry", 0.10, -1),
)

_POSTURAL_WEIGHTS = (
    ("head_tilt", 0.20, -1),
    ("head_forward", 0.20, -1),
    ("shoulder_tension", 0.35, 1),
    ("neck_tension", 0.25, 1),
)

_RESPIRATORY_WEIGHTS = (
    ("breathing_depth", 0.35, -1),
    ("breathing_rate", 0.40, 1),
    ("chest_movement", 0.25, 1),
)

GROUP_WEIGHTS = {
    "facial": (0.45, _FACIAL_WEIGHTS),
    "postural": (0.25, _POSTURAL_WEIGHTS),
    "respiratory": (0.30, _RESPIRATORY_WEIGHTS),
}

# Rounding keeps values that sit on a cut point from drifting off it.
_LEVEL_PRECISION = 6

_TENSION_THRESHOLD = 0.6
_IMMEDIATE_CONFIDENCE = 0.5
_AREA_THRESHOLD = 0.5


def parse_snapshot(payload: SignalSnapshot | Mapping[str, Any]) -> SignalSnapshot:
    """Build a :class:`SignalSnapshot`, turning schema errors into field errors."""
    if isinstance(payload, SignalSnapshot):
        return payload
    try:
        return SignalSnapshot.model_validate(payload)
    except ValidationError as exc:
        errors = [
            FieldError(field=".".join(str(p) for p in err["loc"]), message=err["msg"])
            for err in exc.errors()
        ]
        raise InvalidSignalError("Malformed signal snapshot.", errors) from exc


class ActivationClassifier:
    """Deterministic snapshot → :class:`ActivationState` mapping.

    Parameters
    ----------
    bounds : SignalBounds
        Declared range for every signal value.  Out-of-range input is
        rejected, never clamped.
    low_cut, high_cut : float
        Cut points on the combined scalar.  A scalar exactly on a cut
        resolves to ``REGULATED``.
    """

    def __init__(
        self,
        bounds: SignalBounds = DEFAULT_BOUNDS,
        low_cut: float = 0.35,
        high_cut: float = 0.65,
    ) -> None:
        if not 0.0 < low_cut < high_cut < 1.0:
            raise ValueError("cut points must satisfy 0 < low_cut < high_cut < 1")
        self._bounds = bounds
        self._low_cut = low_cut
        self._high_cut = high_cut

    @classmethod
    def from_settings(cls, settings: Settings) -> "ActivationClassifier":
        return cls(
            bounds=SignalBounds(settings.signal_min, settings.signal_max),
            low_cut=settings.low_cut,
            high_cut=settings.high_cut,
        )

    @property
    def bounds(self) -> SignalBounds:
        return self._bounds

    @property
    def cut_points(self) -> tuple[float, float]:
        return self._low_cut, self._high_cut

    # ── Validation ────────────────────────────────────────────

    def validate(self, signal: SignalSnapshot | Mapping[str, Any]) -> SignalSnapshot:
        snapshot = parse_snapshot(signal)
        errors: list[FieldError] = []
        for name, value in snapshot.iter_values():
            if not math.isfinite(value):
                errors.append(FieldError(field=name, message="Value must be a finite number."))
            elif not self._bounds.contains(value):
                errors.append(
                    FieldError(
                        field=name,
                        message=(
                            f"Value {value} outside bounds "
                            f"[{self._bounds.minimum}, {self._bounds.maximum}]."
                        ),
                    )
                )
        if errors:
            raise InvalidSignalError("Signal values out of bounds.", errors)
        return snapshot

    # ── Scoring ───────────────────────────────────────────────

    def group_scores(self, snapshot: SignalSnapshot) -> dict[str, float]:
        """Weighted sub-score in [0, 1] for each signal group."""
        scores: dict[str, float] = {}
        for group_name, (_, weights) in GROUP_WEIGHTS.items():
            group = getattr(snapshot, group_name)
            total = 0.0
            weight_sum = 0.0
            for field_name, weight, direction in weights:
                norm = self._bounds.normalise(getattr(group, field_name))
                component = norm if direction > 0 else 1.0 - norm
                total += component * weight
                weight_sum += weight
            scores[group_name] = total / weight_sum
        return scores

    def activation_level(self, snapshot: SignalSnapshot) -> float:
        scores = self.group_scores(snapshot)
        level = sum(GROUP_WEIGHTS[g][0] * s for g, s in scores.items())
        return round(max(0.0, min(1.0, level)), _LEVEL_PRECISION)

    def state_for_level(self, level: float) -> PrimaryState:
        if level < self._low_cut:
            return PrimaryState.LOW_ENERGY
        if level > self._high_cut:
            return PrimaryState.HIGH_ACTIVATION
        return PrimaryState.REGULATED

    def confidence_for_level(self, level: float) -> float:
        """0 on a cut point, rising to 1 at the extremes / band centre."""
        state = self.state_for_level(level)
        if state == PrimaryState.HIGH_ACTIVATION:
            conf = (level - self._high_cut) / (1.0 - self._high_cut)
        elif state == PrimaryState.LOW_ENERGY:
            conf = (self._low_cut - level) / self._low_cut
        else:
            half_band = (self._high_cut - self._low_cut) / 2
            conf = min(level - self._low_cut, self._high_cut - level) / half_band
        return round(max(0.0, min(1.0, conf)), 4)

    def classify(self, signal: SignalSnapshot | Mapping[str, Any]) -> ActivationState:
        """Validate *signal* and return its :class:`ActivationState`.

        Raises :class:`InvalidSignalError` for missing or out-of-range values.
        """
        snapshot = self.validate(signal)
        level = self.activation_level(snapshot)
        state = ActivationState(
            primary_state=self.state_for_level(level),
            confidence=self.confidence_for_level(level),
            activation_level=level,
        )
        logger.debug(
            "classifier.classified",
            state=state.primary_state.value,
            confidence=state.confidence,
            level=level,
        )
        return state

    # ── Recommendation hints ──────────────────────────────────

    def derive_hints(
        self,
        signal: SignalSnapshot | Mapping[str, Any],
        state: ActivationState,
    ) -> RecommendationHints:
        """Derive selector hints from the same snapshot that was classified."""
        s = self.validate(signal)
        n = self._bounds.normalise
        f, p, r = s.facial, s.postural, s.respiratory

        tension = max(n(f.forehead_tension), n(f.jaw_tension), n(p.shoulder_tension), n(p.neck_tension))

        if state.primary_state == PrimaryState.HIGH_ACTIVATION:
            urgency = Urgency.IMMEDIATE if state.confidence >= _IMMEDIATE_CONFIDENCE else Urgency.SOON
            need = PrimaryNeed.RELEASE_TENSION if tension > _TENSION_THRESHOLD else PrimaryNeed.CALM_DOWN
        elif state.primary_state == PrimaryState.LOW_ENERGY:
            urgency = Urgency.SOON
            need = PrimaryNeed.ENERGIZE
        else:
            urgency = Urgency.PREVENTIVE
            need = PrimaryNeed.MAINTAIN

        # Declaration order doubles as the tie-break.
        areas = {
            BodyArea.BREATHING: max(n(r.breathing_rate), 1.0 - n(r.breathing_depth)),
            BodyArea.FACE: max(n(f.forehead_tension), n(f.jaw_tension), n(f.lip_compression)),
            BodyArea.SHOULDERS: max(n(p.shoulder_tension), n(p.neck_tension)),
            BodyArea.EYES: max(1.0 - n(f.eye_openness), 1.0 - n(f.eye_moisture)),
        }
        area, strength = max(areas.items(), key=lambda kv: kv[1])
        if strength < _AREA_THRESHOLD:
            area = BodyArea.WHOLE_BODY if state.primary_state == PrimaryState.LOW_ENERGY else BodyArea.BREATHING

        return RecommendationHints(urgency=urgency, primary_need=need, body_area_priority=area)
