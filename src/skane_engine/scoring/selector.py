"""Micro-action selector — picks one catalog action for a classified state.

Candidates are the catalog entries tagged for the state.  Each is scored on
how well its tags overlap the recommendation hints; the ranking is then

1. match score (descending)
2. duration (ascending), only when ``urgency = immediate``
3. catalog priority (ascending)
4. action id (lexical)

so identical inputs always yield the same action.
"""

from __future__ import annotations

import structlog

from skane_engine.catalog import ActionCatalog
from skane_engine.errors import NoEligibleActionError
from skane_engine.models import ActivationState, MicroAction, RecommendationHints, Urgency

logger = structlog.get_logger(__name__)

NEED_MATCH_WEIGHT = 0.5
AREA_MATCH_WEIGHT = 0.3
REPEAT_PENALTY = 0.3


class ActionSelector:
    """Rank catalog actions against an :class:`ActivationState` and hints."""

    def __init__(self, catalog: ActionCatalog | None = None) -> None:
        self._catalog = catalog or ActionCatalog()

    @property
    def catalog(self) -> ActionCatalog:
        return self._catalog

    @staticmethod
    def match_score(
        action: MicroAction,
        hints: RecommendationHints,
        last_action_id: str | None = None,
    ) -> float:
        score = 0.0
        if hints.primary_need in action.needs:
            score += NEED_MATCH_WEIGHT
        if hints.body_area_priority in action.body_areas:
            score += AREA_MATCH_WEIGHT
        if last_action_id is not None and action.id == last_action_id:
            score -= REPEAT_PENALTY
        return round(score, 6)

    def rank(
        self,
        state: ActivationState,
        hints: RecommendationHints,
        last_action_id: str | None = None,
    ) -> list[tuple[MicroAction, float]]:
        """Return every eligible action with its score, best first."""
        candidates = self._catalog.for_state(state.primary_state)
        if not candidates:
            raise NoEligibleActionError(state.primary_state)

        # A single candidate is never penalised for repetition.
        if len(candidates) == 1:
            last_action_id = None

        immediate = hints.urgency == Urgency.IMMEDIATE
        scored = [(a, self.match_score(a, hints, last_action_id)) for a in candidates]
        scored.sort(
            key=lambda item: (
                -item[1],
                item[0].duration if immediate else 0,
                item[0].priority,
                item[0].id,
            )
        )
        return scored

    def select_action(
        self,
        state: ActivationState,
        hints: RecommendationHints | None = None,
        last_action_id: str | None = None,
    ) -> MicroAction:
        """Pick the best action, or raise :class:`NoEligibleActionError`."""
        hints = hints or RecommendationHints()
        action, score = self.rank(state, hints, last_action_id)[0]
        logger.debug(
            "selector.selected",
            state=state.primary_state.value,
            action=action.id,
            score=score,
            urgency=hints.urgency.value,
        )
        return action

    def select_or_default(
        self,
        state: ActivationState,
        hints: RecommendationHints | None = None,
        last_action_id: str | None = None,
    ) -> tuple[MicroAction, bool]:
        """Like :meth:`select_action` but answers catalog defects with the default action.

        Returns ``(action, used_default)``.
        """
        try:
            return self.select_action(state, hints, last_action_id), False
        except NoEligibleActionError as exc:
            logger.error(
                "selector.no_eligible_action",
                state=exc.state.value,
                fallback=self._catalog.default_action.id,
            )
            return self._catalog.default_action, True
