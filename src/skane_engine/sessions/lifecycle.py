"""Session lifecycle manager — scan → action → feedback for one owner.

Status flow::

    CREATED ──► SCORED ──► AWAITING_FEEDBACK ──► COMPLETED

Feedback is accepted exactly once.  The repository's conditional update is
the serialisation point; a losing writer, or any later retry, receives the
committed outcome flagged ``replayed`` instead of an error.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from skane_engine.catalog import ActionCatalog
from skane_engine.config import Settings, get_settings
from skane_engine.errors import (
    AlreadyCompletedError,
    CooldownActiveError,
    InvalidTransitionError,
    UnknownSessionError,
)
from skane_engine.models import (
    CooldownStatus,
    FeedbackOutcome,
    GuestSkaneSummary,
    MigrationResult,
    OwnerKind,
    RecommendationHints,
    RitualEligibility,
    ScanResult,
    SessionStatus,
    SignalAssessment,
    SignalSnapshot,
    SkaneSession,
    UnknownFeedbackPolicy,
    as_naive_utc,
    new_id,
    normalize_feedback,
    utcnow,
)
from skane_engine.scoring import ActionSelector, ActivationClassifier, SkaneIndexCalculator
from skane_engine.sessions.ritual import RitualEvaluator, RitualThresholds
from skane_engine.storage.repository import ClaimOutcome, MigrationRepository, SessionRepository

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.CREATED: frozenset({SessionStatus.SCORED}),
    SessionStatus.SCORED: frozenset({SessionStatus.AWAITING_FEEDBACK}),
    SessionStatus.AWAITING_FEEDBACK: frozenset({SessionStatus.COMPLETED}),
    SessionStatus.COMPLETED: frozenset(),
}


def advance(session: SkaneSession, target: SessionStatus, **changes: Any) -> SkaneSession:
    """Return a copy of *session* moved to *target*, or raise on an illegal step."""
    if target not in ALLOWED_TRANSITIONS[session.status]:
        raise InvalidTransitionError(
            f"Session {session.id!r} cannot move from {session.status.value} to {target.value}."
        )
    return session.model_copy(update={**changes, "status": target})


class SessionLifecycleManager:
    """Orchestrates scoring, persistence and cooldown for skane sessions.

    Parameters
    ----------
    sessions : SessionRepository
        Session persistence.
    migrations : MigrationRepository
        Ledger used to merge each guest token at most once.
    clock : callable
        Returns the current naive-UTC time; injectable for tests.
    """

    def __init__(
        self,
        sessions: SessionRepository,
        migrations: MigrationRepository,
        classifier: ActivationClassifier,
        selector: ActionSelector,
        calculator: SkaneIndexCalculator,
        ritual: RitualEvaluator,
        *,
        cooldown: timedelta = timedelta(hours=24),
        guest_recency: timedelta = timedelta(minutes=60),
        feedback_policy: UnknownFeedbackPolicy = UnknownFeedbackPolicy.COERCE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.sessions = sessions
        self.migrations = migrations
        self.classifier = classifier
        self.selector = selector
        self.calculator = calculator
        self.ritual = ritual
        self._cooldown = cooldown
        self._guest_recency = guest_recency
        self._feedback_policy = feedback_policy
        self._clock = clock

    @property
    def catalog(self) -> ActionCatalog:
        return self.selector.catalog

    # ── Scan ──────────────────────────────────────────────────

    def assess(
        self,
        signal: SignalSnapshot | Mapping[str, Any],
        hints: RecommendationHints | None = None,
        last_action_id: str | None = None,
    ) -> SignalAssessment:
        """Classify, pick an action and compute the before band; no I/O."""
        snapshot = self.classifier.validate(signal)
        state = self.classifier.classify(snapshot)
        hints = hints or self.classifier.derive_hints(snapshot, state)
        action, used_default = self.selector.select_or_default(state, hints, last_action_id)
        return SignalAssessment(
            state=state,
            hints=hints,
            action=action,
            before_score=self.calculator.band_for(state.activation_level, state.confidence),
            used_default_action=used_default,
        )

    async def start_session(
        self,
        owner_ref: str,
        signal: SignalSnapshot | Mapping[str, Any],
        owner_kind: OwnerKind = OwnerKind.ACCOUNT,
        hints: RecommendationHints | None = None,
    ) -> ScanResult:
        """Run a full scan for *owner_ref* and persist the new session.

        Raises :class:`CooldownActiveError` while the owner's previous skane
        is younger than the cooldown, and :class:`InvalidSignalError` for a
        bad snapshot.
        """
        now = self._clock()
        last = await self.sessions.latest_for_owner(owner_ref)
        status = self._cooldown_status(last, now)
        if not status.can_reset:
            logger.info("lifecycle.cooldown_active", owner=owner_ref, hours=status.hours_until_reset)
            raise CooldownActiveError(owner_ref, status.hours_until_reset)

        assessment = self.assess(signal, hints, last.chosen_action if last else None)
        state = assessment.state

        session = SkaneSession(owner_ref=owner_ref, owner_kind=owner_kind, created_at=now)
        session = advance(
            session,
            SessionStatus.SCORED,
            primary_state=state.primary_state,
            confidence=state.confidence,
            activation_level=state.activation_level,
            before_score=assessment.before_score,
        )
        session = advance(session, SessionStatus.AWAITING_FEEDBACK, chosen_action=assessment.action.id)
        await self.sessions.add(session)

        logger.info(
            "lifecycle.session_started",
            session_id=session.id,
            owner_kind=owner_kind.value,
            state=state.primary_state.value,
            action=assessment.action.id,
            fallback=assessment.used_default_action,
        )
        return ScanResult(
            session=session,
            before_score=assessment.before_score,
            state=state,
            hints=assessment.hints,
            action=assessment.action,
            used_default_action=assessment.used_default_action,
        )

    # ── Feedback ──────────────────────────────────────────────

    async def submit_feedback(self, session_id: str, feedback: Any) -> FeedbackOutcome:
        """Record the single feedback for *session_id*.

        Returns the fresh outcome, or the committed one (``replayed=True``)
        when feedback was already recorded.
        """
        value = normalize_feedback(feedback, self._feedback_policy)
        session = await self.sessions.get(session_id)
        if session is None:
            raise UnknownSessionError(session_id)

        try:
            session.ensure_accepts_feedback()
        except AlreadyCompletedError as exc:
            logger.info("lifecycle.feedback_replayed", session_id=session_id)
            return exc.result

        if session.before_score is None:
            raise InvalidTransitionError(f"Session {session.id!r} has no pre-action score.")
        outcome = self.calculator.apply_feedback(session.before_score, value)
        outcome = outcome.model_copy(update={"session_id": session.id})

        if await self.sessions.complete_feedback(session.id, outcome, self._clock()):
            logger.info(
                "lifecycle.feedback_recorded",
                session_id=session.id,
                feedback=value.value,
                skane_index=outcome.skane_index,
                share=outcome.should_offer_share,
            )
            return outcome

        # Lost the race: answer with whatever the winner committed.
        committed = await self.sessions.get(session.id)
        result = committed.outcome(replayed=True) if committed is not None else None
        if result is None:
            raise InvalidTransitionError(f"Session {session.id!r} changed state during feedback.")
        logger.info("lifecycle.feedback_replayed", session_id=session.id, raced=True)
        return result

    # ── Cooldown ──────────────────────────────────────────────

    def _cooldown_status(self, last: SkaneSession | None, now: datetime) -> CooldownStatus:
        if last is None:
            return CooldownStatus(can_reset=True)
        remaining = self._cooldown - (now - last.created_at)
        if remaining <= timedelta(0):
            return CooldownStatus(can_reset=True, last_session_at=last.created_at)
        hours = math.ceil(remaining.total_seconds() / 3600)
        return CooldownStatus(can_reset=False, hours_until_reset=hours, last_session_at=last.created_at)

    async def check_cooldown(self, owner_ref: str) -> CooldownStatus:
        last = await self.sessions.latest_for_owner(owner_ref)
        return self._cooldown_status(last, self._clock())

    # ── Guest migration ───────────────────────────────────────

    async def migrate_guest(
        self,
        guest_token: str,
        account_id: str,
        summary: GuestSkaneSummary | None = None,
    ) -> MigrationResult:
        """Attach a guest's pending skane to *account_id*, at most once per token.

        The most recent guest session inside the recency window is re-owned;
        otherwise a new record is built from *summary*.  The ledger row and the
        session change commit together, so a failed write leaves the token
        free for a retry.
        """
        previous = await self.migrations.get(guest_token)
        if previous is not None:
            return previous

        now = self._clock()
        recent = await self.sessions.latest_for_owner(guest_token, since=now - self._guest_recency)
        outcome = ClaimOutcome.SESSION_MISSING
        if recent is not None:
            source, session_id = "reowned", recent.id
            outcome = await self.migrations.claim(guest_token, account_id, now, reown_id=recent.id)
            if outcome is ClaimOutcome.SESSION_MISSING:
                logger.warning("lifecycle.reown_missed", session_id=recent.id)

        if outcome is ClaimOutcome.SESSION_MISSING:
            if summary is None:
                return MigrationResult(migrated=False, source="nothing_pending")
            created = self._session_from_summary(new_id(), account_id, summary, now)
            source, session_id = "summary", created.id
            outcome = await self.migrations.claim(guest_token, account_id, now, new_session=created)

        if outcome is ClaimOutcome.ALREADY_CLAIMED:
            logger.info("lifecycle.guest_already_migrated", account_id=account_id)
            claimed = await self.migrations.get(guest_token)
            return claimed or MigrationResult(migrated=False, source="already_migrated")

        logger.info("lifecycle.guest_migrated", account_id=account_id, source=source, session_id=session_id)
        return MigrationResult(migrated=True, session_id=session_id, source=source)

    def _session_from_summary(
        self,
        session_id: str,
        account_id: str,
        summary: GuestSkaneSummary,
        now: datetime,
    ) -> SkaneSession:
        session = SkaneSession(
            id=session_id,
            owner_ref=account_id,
            owner_kind=OwnerKind.ACCOUNT,
            created_at=as_naive_utc(summary.created_at) if summary.created_at else now,
        )
        session = advance(
            session,
            SessionStatus.SCORED,
            primary_state=summary.primary_state,
            before_score=summary.before_score,
        )
        session = advance(
            session,
            SessionStatus.AWAITING_FEEDBACK,
            chosen_action=summary.action_id,
        )
        if summary.feedback is None:
            return session

        outcome = self.calculator.apply_feedback(summary.before_score, summary.feedback)
        after = summary.after_score or outcome.after_score
        return advance(
            session,
            SessionStatus.COMPLETED,
            after_score=after,
            feedback=summary.feedback,
            skane_index=max(0, min(100, round(after.mid))),
            share_prompted=outcome.should_offer_share,
            unresolved=outcome.unresolved,
            feedback_at=now,
        )

    # ── Reads ─────────────────────────────────────────────────

    async def evaluate_ritual_eligibility(self, owner_ref: str) -> RitualEligibility:
        sessions = await self.sessions.list_for_owner(owner_ref, newest_first=False)
        return self.ritual.evaluate(sessions, self._clock())

    async def history(self, owner_ref: str, limit: int = 20) -> list[SkaneSession]:
        return await self.sessions.list_for_owner(owner_ref, limit=limit)


def create_session_manager(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> SessionLifecycleManager:
    """Wire a :class:`SessionLifecycleManager` from settings."""
    settings = settings or get_settings()
    classifier = ActivationClassifier.from_settings(settings)
    catalog = ActionCatalog(default_action_id=settings.default_action_id)
    return SessionLifecycleManager(
        sessions=SessionRepository(session_factory),
        migrations=MigrationRepository(session_factory),
        classifier=classifier,
        selector=ActionSelector(catalog),
        calculator=SkaneIndexCalculator.from_settings(settings, classifier),
        ritual=RitualEvaluator(RitualThresholds.from_settings(settings)),
        cooldown=timedelta(hours=settings.cooldown_hours),
        guest_recency=timedelta(minutes=settings.guest_recency_minutes),
        feedback_policy=UnknownFeedbackPolicy(settings.unknown_feedback_policy),
        clock=clock,
    )
