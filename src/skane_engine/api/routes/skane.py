"""Skane session routes — scan, feedback, history, cooldown, ritual, guest merge."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, Request

from skane_engine.api.schemas import (
    AssociateRequest,
    ClassifyRequest,
    ClassifyResponse,
    CooldownResponse,
    FeedbackRequest,
    FeedbackResponse,
    ScanRequest,
    ScanResponse,
    SessionSummary,
)
from skane_engine.api.throttle import limit_feedback
from skane_engine.models import MicroAction, MigrationResult, PrimaryState, RitualEligibility
from skane_engine.sessions.guest_cache import glyph
from skane_engine.sessions.lifecycle import SessionLifecycleManager

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/skane", tags=["skane"])


def get_manager(request: Request) -> SessionLifecycleManager:
    return request.app.state.manager


# ── Scan ──────────────────────────────────────────────────────


@router.post("/scan", status_code=201, response_model=ScanResponse, summary="Start a skane session")
async def scan(req: ScanRequest, manager: SessionLifecycleManager = Depends(get_manager)):
    result = await manager.start_session(req.owner_ref, req.signal, req.owner_kind, req.hints)
    return ScanResponse(
        session_id=result.session.id,
        created_at=result.session.created_at,
        before_score=result.before_score,
        state=result.state,
        hints=result.hints,
        action=result.action,
        used_default_action=result.used_default_action,
    )


@router.post("/classify", response_model=ClassifyResponse, summary="Assess a snapshot without persisting")
async def classify(req: ClassifyRequest, manager: SessionLifecycleManager = Depends(get_manager)):
    assessment = manager.assess(req.signal, last_action_id=req.last_action_id)
    return ClassifyResponse(**assessment.model_dump())


@router.get("/actions", response_model=list[MicroAction], summary="List the micro-action catalog")
async def list_actions(
    state: PrimaryState | None = Query(None, description="Only actions tagged for this state"),
    manager: SessionLifecycleManager = Depends(get_manager),
):
    if state is None:
        return manager.catalog.all()
    return manager.catalog.for_state(state)


# ── Feedback ──────────────────────────────────────────────────


@router.post(
    "/sessions/{session_id}/feedback",
    response_model=FeedbackResponse,
    dependencies=[Depends(limit_feedback)],
    summary="Submit the single post-action feedback",
)
async def submit_feedback(
    session_id: str,
    req: FeedbackRequest,
    manager: SessionLifecycleManager = Depends(get_manager),
):
    outcome = await manager.submit_feedback(session_id, req.feedback)
    return FeedbackResponse(**outcome.model_dump(), glyph=glyph(outcome.feedback))


# ── Reads ─────────────────────────────────────────────────────


@router.get("/sessions", response_model=list[SessionSummary], summary="Recent sessions for an owner")
async def list_sessions(
    owner_ref: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    manager: SessionLifecycleManager = Depends(get_manager),
):
    sessions = await manager.history(owner_ref, limit=limit)
    return [SessionSummary.from_session(s, glyph(s.feedback)) for s in sessions]


@router.get("/cooldown/{owner_ref}", response_model=CooldownResponse)
async def cooldown(owner_ref: str, manager: SessionLifecycleManager = Depends(get_manager)):
    status = await manager.check_cooldown(owner_ref)
    return CooldownResponse(owner_ref=owner_ref, **status.model_dump())


@router.get("/ritual/{owner_ref}", response_model=RitualEligibility)
async def ritual(owner_ref: str, manager: SessionLifecycleManager = Depends(get_manager)):
    return await manager.evaluate_ritual_eligibility(owner_ref)


# ── Guest → account ───────────────────────────────────────────


@router.post("/associate", response_model=MigrationResult, summary="Attach a guest skane to an account")
async def associate(req: AssociateRequest, manager: SessionLifecycleManager = Depends(get_manager)):
    result = await manager.migrate_guest(req.guest_token, req.account_id, req.skane_data)
    logger.info("api.associate", account_id=req.account_id, source=result.source)
    return result
