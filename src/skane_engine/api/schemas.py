"""Request / response models shared across API route modules."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from skane_engine.models import (
    ActivationState,
    Band,
    CooldownStatus,
    FeedbackOutcome,
    GuestSkaneSummary,
    MicroAction,
    OwnerKind,
    RecommendationHints,
    SkaneSession,
)


class ScanRequest(BaseModel):
    owner_ref: str = Field(min_length=1, max_length=128)
    owner_kind: OwnerKind = OwnerKind.ACCOUNT
    # Kept loose so the classifier reports field-level errors itself.
    signal: dict[str, Any]
    hints: RecommendationHints | None = None


class ClassifyRequest(BaseModel):
    signal: dict[str, Any]
    last_action_id: str | None = None


class FeedbackRequest(BaseModel):
    feedback: str


class AssociateRequest(BaseModel):
    """Link a guest device's pending skane to a freshly created account."""

    guest_token: str = Field(min_length=1, max_length=128)
    account_id: str = Field(min_length=1, max_length=128)
    skane_data: GuestSkaneSummary | None = None


class ScanResponse(BaseModel):
    session_id: str
    created_at: datetime
    before_score: Band
    state: ActivationState
    hints: RecommendationHints
    action: MicroAction
    used_default_action: bool


class ClassifyResponse(BaseModel):
    state: ActivationState
    hints: RecommendationHints
    action: MicroAction
    before_score: Band
    used_default_action: bool


class FeedbackResponse(FeedbackOutcome):
    glyph: str


class SessionSummary(BaseModel):
    """Display-safe view of a session: the internal state is omitted."""

    id: str
    created_at: datetime
    status: str
    before_score: Band | None
    after_score: Band | None
    skane_index: int | None
    chosen_action: str | None
    feedback: str | None
    glyph: str

    @classmethod
    def from_session(cls, s: SkaneSession, glyph: str) -> "SessionSummary":
        return cls(
            id=s.id,
            created_at=s.created_at,
            status=s.status.value,
            before_score=s.before_score,
            after_score=s.after_score,
            skane_index=s.skane_index,
            chosen_action=s.chosen_action,
            feedback=s.feedback.value if s.feedback else None,
            glyph=glyph,
        )


class CooldownResponse(CooldownStatus):
    owner_ref: str
