"""Tests for the micro-action catalog and selector."""

import pytest

from skane_engine.catalog import MICRO_ACTIONS, ActionCatalog
from skane_engine.errors import NoEligibleActionError
from skane_engine.models import (
    ActionCategory,
    ActivationState,
    BodyArea,
    Instruction,
    InstructionType,
    MicroAction,
    PrimaryNeed,
    PrimaryState,
    RecommendationHints,
    Urgency,
)
from skane_engine.scoring.selector import ActionSelector


def _state(primary: PrimaryState, confidence: float = 0.8) -> ActivationState:
    return ActivationState(primary_state=primary, confidence=confidence, activation_level=0.9)


def _action(action_id: str, duration: int, priority: int, state: PrimaryState = PrimaryState.HIGH_ACTIVATION) -> MicroAction:
    return MicroAction(
        id=action_id,
        name=action_id.replace("_", " ").title(),
        category=ActionCategory.BREATHING,
        duration=duration,
        instructions=(Instruction(text="Breathe", duration=duration, type=InstructionType.INHALE),),
        states=frozenset({state}),
        needs=frozenset({PrimaryNeed.CALM_DOWN}),
        body_areas=frozenset({BodyArea.BREATHING}),
        priority=priority,
    )


class TestCatalog:
    def test_every_state_has_actions(self):
        catalog = ActionCatalog()
        for state in PrimaryState:
            assert catalog.for_state(state), state

    def test_ids_unique(self):
        ids = [a.id for a in MICRO_ACTIONS]
        assert len(ids) == len(set(ids))

    def test_unknown_default_rejected(self):
        with pytest.raises(ValueError):
            ActionCatalog(default_action_id="does_not_exist")

    def test_default_is_box_breathing(self):
        assert ActionCatalog().default_action.id == "box_breathing"


class TestActionSelector:
    """Unit tests for :class:`ActionSelector`."""

    def test_only_state_matching_candidates(self, selector):
        ranked = selector.rank(_state(PrimaryState.LOW_ENERGY), RecommendationHints())
        assert all(PrimaryState.LOW_ENERGY in a.states for a, _ in ranked)

    def test_calm_down_on_breathing(self, selector):
        hints = RecommendationHints(
            urgency=Urgency.SOON,
            primary_need=PrimaryNeed.CALM_DOWN,
            body_area_priority=BodyArea.BREATHING,
        )
        action = selector.select_action(_state(PrimaryState.HIGH_ACTIVATION), hints)
        assert action.id == "physiological_sigh"

    def test_release_tension_prefers_need_over_area(self, selector):
        hints = RecommendationHints(
            urgency=Urgency.IMMEDIATE,
            primary_need=PrimaryNeed.RELEASE_TENSION,
            body_area_priority=BodyArea.BREATHING,
        )
        action = selector.select_action(_state(PrimaryState.HIGH_ACTIVATION), hints)
        assert action.id == "shoulder_drop"

    def test_immediate_prefers_shorter_among_ties(self):
        catalog = ActionCatalog(
            actions=[_action("long_calm", 60, 1), _action("short_calm", 15, 9), _action("box_breathing", 24, 5, PrimaryState.REGULATED)],
        )
        selector = ActionSelector(catalog)
        hints = RecommendationHints(
            urgency=Urgency.IMMEDIATE,
            primary_need=PrimaryNeed.CALM_DOWN,
            body_area_priority=BodyArea.BREATHING,
        )
        assert selector.select_action(_state(PrimaryState.HIGH_ACTIVATION), hints).id == "short_calm"

        # Without urgency the catalog priority decides.
        soon = hints.model_copy(update={"urgency": Urgency.SOON})
        assert selector.select_action(_state(PrimaryState.HIGH_ACTIVATION), soon).id == "long_calm"

    def test_id_breaks_remaining_ties(self):
        catalog = ActionCatalog(
            actions=[_action("b_calm", 20, 1), _action("a_calm", 20, 1), _action("box_breathing", 24, 5, PrimaryState.REGULATED)],
        )
        hints = RecommendationHints(urgency=Urgency.IMMEDIATE, primary_need=PrimaryNeed.CALM_DOWN)
        assert ActionSelector(catalog).select_action(_state(PrimaryState.HIGH_ACTIVATION), hints).id == "a_calm"

    def test_repeat_penalty(self, selector):
        hints = RecommendationHints(
            urgency=Urgency.SOON,
            primary_need=PrimaryNeed.CALM_DOWN,
            body_area_priority=BodyArea.BREATHING,
        )
        state = _state(PrimaryState.HIGH_ACTIVATION)
        first = selector.select_action(state, hints)
        second = selector.select_action(state, hints, last_action_id=first.id)
        assert second.id != first.id

    def test_single_candidate_not_penalised(self):
        catalog = ActionCatalog(actions=[_action("box_breathing", 24, 1)])
        action = ActionSelector(catalog).select_action(
            _state(PrimaryState.HIGH_ACTIVATION), RecommendationHints(), last_action_id="box_breathing"
        )
        assert action.id == "box_breathing"

    def test_deterministic(self, selector):
        hints = RecommendationHints(primary_need=PrimaryNeed.ENERGIZE)
        state = _state(PrimaryState.LOW_ENERGY)
        assert {selector.select_action(state, hints).id for _ in range(5)} == {"energizing_breath"}

    def test_no_candidates_raises(self):
        catalog = ActionCatalog(actions=[_action("box_breathing", 24, 1, PrimaryState.REGULATED)])
        with pytest.raises(NoEligibleActionError):
            ActionSelector(catalog).select_action(_state(PrimaryState.LOW_ENERGY))

    def test_no_candidates_falls_back_to_default(self):
        catalog = ActionCatalog(actions=[_action("box_breathing", 24, 1, PrimaryState.REGULATED)])
        action, used_default = ActionSelector(catalog).select_or_default(_state(PrimaryState.LOW_ENERGY))
        assert action.id == "box_breathing"
        assert used_default is True
