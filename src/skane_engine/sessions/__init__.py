"""Session sub-package — lifecycle, ritual eligibility and the guest cache."""

from skane_engine.sessions.guest_cache import GuestCache, glyph
from skane_engine.sessions.kv_store import InMemoryKeyValueStore, KeyValueStore, ScopedJsonStore
from skane_engine.sessions.lifecycle import SessionLifecycleManager, create_session_manager
from skane_engine.sessions.ritual import RitualEvaluator, RitualThresholds

__all__ = [
    "GuestCache",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RitualEvaluator",
    "RitualThresholds",
    "ScopedJsonStore",
    "SessionLifecycleManager",
    "create_session_manager",
    "glyph",
]
