"""Shared Pydantic models used across the engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from skane_engine.errors import AlreadyCompletedError, FieldError, InvalidFeedbackError, InvalidTransitionError

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


# ── Enums ─────────────────────────────────────────────────────


class PrimaryState(str, Enum):
    """Classified physiological activation state (internal, never displayed)."""

    HIGH_ACTIVATION = "HIGH_ACTIVATION"
    LOW_ENERGY = "LOW_ENERGY"
    REGULATED = "REGULATED"


class FeedbackValue(str, Enum):
    """Post-action user feedback.

    The external vocabulary is ``worse / same / better``; the scoring
    vocabulary is ``still_high / reduced / clear``.  Both spellings are
    accepted by :func:`normalize_feedback` and collapse onto this enum.
    """

    WORSE = "worse"
    SAME = "same"
    BETTER = "better"

    @property
    def internal(self) -> str:
        return _FEEDBACK_INTERNAL[self]


_FEEDBACK_INTERNAL = {
    FeedbackValue.WORSE: "still_high",
    FeedbackValue.SAME: "reduced",
    FeedbackValue.BETTER: "clear",
}

FEEDBACK_SYNONYMS: dict[str, FeedbackValue] = {
    "worse": FeedbackValue.WORSE,
    "same": FeedbackValue.SAME,
    "better": FeedbackValue.BETTER,
    "still_high": FeedbackValue.WORSE,
    "reduced": FeedbackValue.SAME,
    "clear": FeedbackValue.BETTER,
}


class UnknownFeedbackPolicy(str, Enum):
    """What to do with a feedback token outside :data:`FEEDBACK_SYNONYMS`."""

    COERCE = "coerce"  # map to the neutral value and keep the flow moving
    REJECT = "reject"


class Urgency(str, Enum):
    IMMEDIATE = "immediate"
    SOON = "soon"
    PREVENTIVE = "preventive"


class PrimaryNeed(str, Enum):
    CALM_DOWN = "calm_down"
    ENERGIZE = "energize"
    FOCUS = "focus"
    RELEASE_TENSION = "release_tension"
    REST = "rest"
    MAINTAIN = "maintain"


class BodyArea(str, Enum):
    BREATHING = "breathing"
    FACE = "face"
    SHOULDERS = "shoulders"
    WHOLE_BODY = "whole_body"
    EYES = "eyes"


class ActionCategory(str, Enum):
    BREATHING = "breathing"
    POSTURE = "posture"
    MOVEMENT = "movement"
    SENSORY = "sensory"


class InstructionType(str, Enum):
    INHALE = "inhale"
    EXHALE = "exhale"
    HOLD = "hold"
    ACTION = "action"
    PAUSE = "pause"


class SessionStatus(str, Enum):
    CREATED = "created"
    SCORED = "scored"
    AWAITING_FEEDBACK = "awaiting_feedback"
    COMPLETED = "completed"


class OwnerKind(str, Enum):
    GUEST = "guest"
    ACCOUNT = "account"


# ── Feedback normalisation ────────────────────────────────────


def normalize_feedback(
    raw: Any,
    policy: UnknownFeedbackPolicy = UnknownFeedbackPolicy.COERCE,
) -> FeedbackValue:
    """Map any incoming feedback token onto :class:`FeedbackValue`.

    Matching is case-insensitive and accepts both vocabularies.  Anything
    else becomes :attr:`FeedbackValue.SAME` under the ``coerce`` policy and
    raises :class:`InvalidFeedbackError` under ``reject``.
    """
    if isinstance(raw, FeedbackValue):
        return raw
    token = str(raw).strip().lower() if raw is not None else ""
    value = FEEDBACK_SYNONYMS.get(token)
    if value is not None:
        return value

    if policy == UnknownFeedbackPolicy.REJECT:
        allowed = ", ".join(FEEDBACK_SYNONYMS)
        raise InvalidFeedbackError(
            "Unrecognised feedback.",
            [FieldError(field="feedback", message=f"Feedback must be one of: {allowed}")],
        )
    logger.warning("feedback.coerced_to_neutral", raw=str(raw)[:32])
    return FeedbackValue.SAME


# ── Signal snapshot ───────────────────────────────────────────


class _SignalGroup(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False, extra="ignore")


class FacialSignals(_SignalGroup):
    eye_openness: float
    blink_frequency: float
    eye_moisture: float
    forehead_tension: float
    brow_position: float
    jaw_tension: float
    lip_compression: float
    facial_symmetry: float


class PosturalSignals(_SignalGroup):
    head_tilt: float
    head_forward: float
    shoulder_tension: float
    neck_tension: float


class RespiratorySignals(_SignalGroup):
    breathing_depth: float
    breathing_rate: float
    chest_movement: float


class SignalSnapshot(BaseModel):
    """Normalised measurements produced by the external perception service.

    Bounds are not enforced here: they are a catalog parameter and are
    checked by the classifier, which never clamps.
    """

    model_config = ConfigDict(frozen=True)

    facial: FacialSignals
    postural: PosturalSignals
    respiratory: RespiratorySignals

    def iter_values(self) -> Iterator[tuple[str, float]]:
        """Yield ``("group.field", value)`` pairs in declaration order."""
        for group_name in ("facial", "postural", "respiratory"):
            group = getattr(self, group_name)
            for name, value in group.model_dump().items():
                yield f"{group_name}.{name}", value


# ── Derived state ─────────────────────────────────────────────


class ActivationState(BaseModel):
    primary_state: PrimaryState
    confidence: float = Field(ge=0.0, le=1.0)
    activation_level: float


class RecommendationHints(BaseModel):
    urgency: Urgency = Urgency.PREVENTIVE
    primary_need: PrimaryNeed = PrimaryNeed.MAINTAIN
    body_area_priority: BodyArea = BodyArea.BREATHING


# ── Micro-action catalog entries ──────────────────────────────


class Instruction(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    duration: int  # seconds
    type: InstructionType


class MicroAction(BaseModel):
    """A timed physical / breathing routine recommended after a scan."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: ActionCategory
    duration: int  # seconds, whole routine
    repetitions: int = 1
    instructions: tuple[Instruction, ...]
    states: frozenset[PrimaryState]
    needs: frozenset[PrimaryNeed] = frozenset()
    body_areas: frozenset[BodyArea] = frozenset()
    priority: int = 100  # lower wins ties
    tip: str = ""


# ── Skane Index ───────────────────────────────────────────────


class Band(BaseModel):
    """Inclusive score range on the 0-100 Skane Index scale."""

    model_config = ConfigDict(frozen=True)

    min: float = Field(ge=0.0, le=100.0)
    max: float = Field(ge=0.0, le=100.0)

    @model_validator(mode="after")
    def _ordered(self) -> "Band":
        if self.min > self.max:
            raise ValueError("band min must not exceed max")
        return self

    @classmethod
    def around(cls, centre: float, half_width: float) -> "Band":
        """Build a band centred on *centre*, clipped to [0, 100]."""
        lo = max(0.0, min(100.0, centre - half_width))
        hi = max(0.0, min(100.0, centre + half_width))
        return cls(min=round(lo, 1), max=round(hi, 1))

    @property
    def mid(self) -> float:
        return (self.min + self.max) / 2

    @property
    def width(self) -> float:
        return self.max - self.min


class FeedbackOutcome(BaseModel):
    """Result of applying feedback to a scored session."""

    session_id: str | None = None
    feedback: FeedbackValue
    after_score: Band
    skane_index: int = Field(ge=0, le=100)
    should_offer_share: bool
    unresolved: bool = False
    replayed: bool = False  # True when returned for an already-completed session


# ── Session aggregate ─────────────────────────────────────────


class SkaneSession(BaseModel):
    """One scan → action → feedback cycle for an owner (account or guest)."""

    id: str = Field(default_factory=new_id)
    owner_ref: str
    owner_kind: OwnerKind = OwnerKind.ACCOUNT
    created_at: datetime = Field(default_factory=utcnow)
    status: SessionStatus = SessionStatus.CREATED

    primary_state: PrimaryState | None = None
    confidence: float | None = None
    activation_level: float | None = None
    before_score: Band | None = None
    chosen_action: str | None = None

    after_score: Band | None = None
    feedback: FeedbackValue | None = None
    skane_index: int | None = None
    share_prompted: bool = False
    unresolved: bool = False
    feedback_at: datetime | None = None

    def outcome(self, *, replayed: bool = False) -> FeedbackOutcome | None:
        """Return the recorded feedback outcome, if any."""
        if self.feedback is None or self.after_score is None or self.skane_index is None:
            return None
        return FeedbackOutcome(
            session_id=self.id,
            feedback=self.feedback,
            after_score=self.after_score,
            skane_index=self.skane_index,
            should_offer_share=self.share_prompted,
            unresolved=self.unresolved,
            replayed=replayed,
        )

    def ensure_accepts_feedback(self) -> None:
        """Raise unless the session is waiting for its single feedback."""
        if self.status == SessionStatus.COMPLETED:
            outcome = self.outcome(replayed=True)
            if outcome is not None:
                raise AlreadyCompletedError(self.id, outcome)
        if self.status != SessionStatus.AWAITING_FEEDBACK:
            raise InvalidTransitionError(
                f"Session {self.id!r} is {self.status.value}, not awaiting feedback."
            )


# ── Lifecycle read models ─────────────────────────────────────


class CooldownStatus(BaseModel):
    can_reset: bool
    hours_until_reset: int = 0
    last_session_at: datetime | None = None


class RitualStats(BaseModel):
    total_actions: int = 0
    positive_rate: float = 0.0
    days_since_first: int = 0
    distinct_days: int = 0


class RitualEligibility(BaseModel):
    eligible: bool
    reason: str
    stats: RitualStats = Field(default_factory=RitualStats)


class SignalAssessment(BaseModel):
    """Everything derived from a snapshot before anything is persisted."""

    state: ActivationState
    hints: RecommendationHints
    action: MicroAction
    before_score: Band
    used_default_action: bool = False


class ScanResult(BaseModel):
    session: SkaneSession
    before_score: Band
    state: ActivationState
    hints: RecommendationHints
    action: MicroAction
    used_default_action: bool = False


class GuestSkaneSummary(BaseModel):
    """What a guest device still knows about its last skane at signup time."""

    before_score: Band
    after_score: Band | None = None
    action_id: str | None = None
    feedback: FeedbackValue | None = None
    primary_state: PrimaryState | None = None
    created_at: datetime | None = None


class MigrationResult(BaseModel):
    migrated: bool
    session_id: str | None = None
    source: str  # "reowned" | "summary" | "already_migrated" | "nothing_pending"


# ── Guest cache ───────────────────────────────────────────────


class GuestCacheEntry(BaseModel):
    """A device-local record of a recent guest skane."""

    id: str
    timestamp: datetime
    feedback: FeedbackValue | None = None
    internal_state: PrimaryState | None = None
