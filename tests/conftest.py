"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from skane_engine.models import SignalSnapshot
from skane_engine.scoring import ActionSelector, ActivationClassifier, SkaneIndexCalculator
from skane_engine.sessions.lifecycle import SessionLifecycleManager
from skane_engine.sessions.ritual import RitualEvaluator
from skane_engine.storage.database import init_db
from skane_engine.storage.repository import MigrationRepository, SessionRepository

_ACTIVATING = {
    "facial": ("eye_openness", "blink_frequency", "forehead_tension", "brow_position", "jaw_tension", "lip_compression"),
    "postural": ("shoulder_tension", "neck_tension"),
    "respiratory": ("breathing_rate", "chest_movement"),
}
_CALMING = {
    "facial": ("eye_moisture", "facial_symmetry"),
    "postural": ("head_tilt", "head_forward"),
    "respiratory": ("breathing_depth",),
}


def make_signal(level: float) -> dict[str, Any]:
    """Snapshot payload whose combined activation level equals *level*."""
    payload: dict[str, dict[str, float]] = {}
    for group in ("facial", "postural", "respiratory"):
        values = {name: level for name in _ACTIVATING[group]}
        values.update({name: round(1.0 - level, 6) for name in _CALMING[group]})
        payload[group] = values
    return payload


class FakeClock:
    """Manually advanced naive-UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


@pytest.fixture
def signal_at() -> Callable[[float], dict[str, Any]]:
    return make_signal


@pytest.fixture
def high_signal() -> dict[str, Any]:
    return make_signal(0.93)


@pytest.fixture
def regulated_signal() -> dict[str, Any]:
    return make_signal(0.5)


@pytest.fixture
def low_signal() -> dict[str, Any]:
    return make_signal(0.1)


@pytest.fixture
def high_snapshot(high_signal: dict[str, Any]) -> SignalSnapshot:
    return SignalSnapshot.model_validate(high_signal)


@pytest.fixture
def classifier() -> ActivationClassifier:
    return ActivationClassifier()


@pytest.fixture
def selector() -> ActionSelector:
    return ActionSelector()


@pytest.fixture
def calculator(classifier: ActivationClassifier) -> SkaneIndexCalculator:
    return SkaneIndexCalculator(classifier)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 10, 8, 0, 0))


@pytest.fixture
async def session_factory(tmp_path):
    """Fresh SQLite file per test, tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'skane.db'}")
    await init_db(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def session_repo(session_factory) -> SessionRepository:
    return SessionRepository(session_factory)


@pytest.fixture
def manager(
    session_factory,
    classifier: ActivationClassifier,
    selector: ActionSelector,
    calculator: SkaneIndexCalculator,
    clock: FakeClock,
) -> SessionLifecycleManager:
    return SessionLifecycleManager(
        sessions=SessionRepository(session_factory),
        migrations=MigrationRepository(session_factory),
        classifier=classifier,
        selector=selector,
        calculator=calculator,
        ritual=RitualEvaluator(),
        clock=clock,
    )
