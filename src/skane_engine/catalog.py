"""Static reference data: signal bounds and the micro-action library.

Every micro-action is tagged with the activation states it is meant for,
the needs it addresses and the body areas it works on.  ``priority`` is the
catalog-declared order used to break ties between equally good matches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from skane_engine.models import (
    ActionCategory,
    BodyArea,
    Instruction,
    InstructionType,
    MicroAction,
    PrimaryNeed,
    PrimaryState,
)

HIGH = PrimaryState.HIGH_ACTIVATION
LOW = PrimaryState.LOW_ENERGY
REG = PrimaryState.REGULATED


@dataclass(frozen=True)
class SignalBounds:
    """Inclusive range every snapshot value must fall within."""

    minimum: float = 0.0
    maximum: float = 1.0

    def contains(self, value: float) -> bool:
        return self.minimum <= value <= self.maximum

    def normalise(self, value: float) -> float:
        return (value - self.minimum) / (self.maximum - self.minimum)


DEFAULT_BOUNDS = SignalBounds()


def _steps(*steps: tuple[str, int, InstructionType]) -> tuple[Instruction, ...]:
    return tuple(Instruction(text=t, duration=d, type=k) for t, d, k in steps)


_INHALE = InstructionType.INHALE
_EXHALE = InstructionType.EXHALE
_HOLD = InstructionType.HOLD
_ACTION = InstructionType.ACTION
_PAUSE = InstructionType.PAUSE


MICRO_ACTIONS: tuple[MicroAction, ...] = (
    MicroAction(
        id="physiological_sigh",
        name="Physiological Sigh",
        category=ActionCategory.BREATHING,
        duration=24,
        repetitions=3,
        instructions=_steps(
            ("Breathe in through the nose", 2, _INHALE),
            ("Top up with a short second inhale", 1, _INHALE),
            ("Exhale slowly through the mouth", 5, _EXHALE),
        ),
        states=frozenset({HIGH}),
        needs=frozenset({PrimaryNeed.CALM_DOWN}),
        body_areas=frozenset({BodyArea.BREATHING}),
        priority=1,
        tip="Keep your shoulders still.",
    ),
    MicroAction(
        id="extended_exhale",
        name="Extended Exhale",
        category=ActionCategory.BREATHING,
        duration=33,
        repetitions=3,
        instructions=_steps(
            ("Breathe in through the nose", 3, _INHALE),
            ("Exhale slowly through the mouth", 8, _EXHALE),
        ),
        states=frozenset({HIGH}),
        needs=frozenset({PrimaryNeed.CALM_DOWN, PrimaryNeed.REST}),
        body_areas=frozenset({BodyArea.BREATHING}),
        priority=2,
        tip="Let the air leave on its own, without pushing.",
    ),
    MicroAction(
        id="shoulder_drop",
        name="Shoulder Drop",
        category=ActionCategory.POSTURE,
        duration=20,
        repetitions=5,
        instructions=_steps(
            ("Raise your shoulders towards your ears", 2, _ACTION),
            ("Let them drop completely", 2, _PAUSE),
        ),
        states=frozenset({HIGH}),
        needs=frozenset({PrimaryNeed.RELEASE_TENSION}),
        body_areas=frozenset({BodyArea.SHOULDERS}),
        priority=3,
        tip="Drop, don't lower.",
    ),
    MicroAction(
        id="neuromuscular_shake",
        name="Neuromuscular Shake",
        category=ActionCategory.MOVEMENT,
        duration=20,
        repetitions=1,
        instructions=_steps(
            ("Gently shake your arms and hands", 10, _ACTION),
            ("Let the whole body move freely", 10, _ACTION),
        ),
        states=frozenset({HIGH}),
        needs=frozenset({PrimaryNeed.RELEASE_TENSION}),
        body_areas=frozenset({BodyArea.WHOLE_BODY}),
        priority=4,
    ),
    MicroAction(
        id="plantar_press",
        name="Plantar Press",
        category=ActionCategory.SENSORY,
        duration=20,
        repetitions=5,
        instructions=_steps(
            ("Press your feet into the floor", 2, _ACTION),
            ("Release", 2, _PAUSE),
        ),
        states=frozenset({HIGH, REG}),
        needs=frozenset({PrimaryNeed.RELEASE_TENSION, PrimaryNeed.MAINTAIN}),
        body_areas=frozenset({BodyArea.WHOLE_BODY}),
        priority=5,
    ),
    MicroAction(
        id="energizing_breath",
        name="Energizing Breath",
        category=ActionCategory.BREATHING,
        duration=30,
        repetitions=10,
        instructions=_steps(
            ("Quick inhale through the nose", 2, _INHALE),
            ("Exhale through the mouth", 1, _EXHALE),
        ),
        states=frozenset({LOW}),
        needs=frozenset({PrimaryNeed.ENERGIZE}),
        body_areas=frozenset({BodyArea.BREATHING}),
        priority=1,
    ),
    MicroAction(
        id="grounding_posture",
        name="Grounding Posture",
        category=ActionCategory.POSTURE,
        duration=30,
        repetitions=1,
        instructions=_steps(
            ("Stand up, feet grounded", 10, _ACTION),
            ("Look straight ahead", 10, _ACTION),
            ("Breathe calmly", 10, _ACTION),
        ),
        states=frozenset({LOW}),
        needs=frozenset({PrimaryNeed.ENERGIZE, PrimaryNeed.FOCUS}),
        body_areas=frozenset({BodyArea.WHOLE_BODY}),
        priority=2,
    ),
    MicroAction(
        id="chest_opening",
        name="Chest Opening",
        category=ActionCategory.POSTURE,
        duration=30,
        repetitions=1,
        instructions=_steps(
            ("Open your chest slightly", 10, _ACTION),
            ("Breathe calmly", 10, _ACTION),
            ("Hold the posture", 10, _ACTION),
        ),
        states=frozenset({LOW}),
        needs=frozenset({PrimaryNeed.ENERGIZE}),
        body_areas=frozenset({BodyArea.SHOULDERS}),
        priority=3,
    ),
    MicroAction(
        id="box_breathing",
        name="Box Breathing",
        category=ActionCategory.BREATHING,
        duration=24,
        repetitions=2,
        instructions=_steps(
            ("Inhale", 3, _INHALE),
            ("Hold", 3, _HOLD),
            ("Exhale", 3, _EXHALE),
            ("Pause", 3, _PAUSE),
        ),
        states=frozenset({REG}),
        needs=frozenset({PrimaryNeed.FOCUS, PrimaryNeed.MAINTAIN}),
        body_areas=frozenset({BodyArea.BREATHING}),
        priority=1,
    ),
    MicroAction(
        id="resonant_breathing",
        name="Resonant Breathing",
        category=ActionCategory.BREATHING,
        duration=30,
        repetitions=3,
        instructions=_steps(
            ("Breathe in through the nose", 4, _INHALE),
            ("Exhale gently through the mouth", 6, _EXHALE),
        ),
        states=frozenset({REG}),
        needs=frozenset({PrimaryNeed.REST, PrimaryNeed.MAINTAIN}),
        body_areas=frozenset({BodyArea.BREATHING}),
        priority=2,
    ),
    MicroAction(
        id="fixed_gaze_exhale",
        name="Fixed Gaze Exhale",
        category=ActionCategory.SENSORY,
        duration=24,
        repetitions=3,
        instructions=_steps(
            ("Fix your eyes on a stable point", 2, _ACTION),
            ("Inhale calmly", 2, _INHALE),
            ("Exhale slowly and fully", 4, _EXHALE),
        ),
        states=frozenset({REG}),
        needs=frozenset({PrimaryNeed.FOCUS}),
        body_areas=frozenset({BodyArea.EYES}),
        priority=3,
    ),
)

DEFAULT_ACTION_ID = "box_breathing"


class ActionCatalog:
    """Read-only lookup over a set of :class:`MicroAction` entries."""

    def __init__(
        self,
        actions: Iterable[MicroAction] = MICRO_ACTIONS,
        default_action_id: str = DEFAULT_ACTION_ID,
    ) -> None:
        self._actions: dict[str, MicroAction] = {a.id: a for a in actions}
        if default_action_id not in self._actions:
            raise ValueError(f"Default action {default_action_id!r} is not in the catalog.")
        self._default_id = default_action_id

    def __len__(self) -> int:
        return len(self._actions)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions

    def get(self, action_id: str) -> MicroAction | None:
        return self._actions.get(action_id)

    def all(self) -> list[MicroAction]:
        return list(self._actions.values())

    def for_state(self, state: PrimaryState) -> list[MicroAction]:
        return [a for a in self._actions.values() if state in a.states]

    @property
    def default_action(self) -> MicroAction:
        return self._actions[self._default_id]
