"""Guest skane history — the last few skanes of a device without an account."""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from skane_engine.models import FeedbackValue, GuestCacheEntry
from skane_engine.sessions.kv_store import ScopedJsonStore

logger = structlog.get_logger(__name__)

GUEST_CACHE_KEY = "guest_history.v1"
MAX_CACHE_SIZE = 3

# The only feedback marker ever shown to a guest.
FEEDBACK_GLYPHS: dict[FeedbackValue, str] = {
    FeedbackValue.BETTER: "🙂",
    FeedbackValue.SAME: "😐",
    FeedbackValue.WORSE: "😕",
}
NEUTRAL_GLYPH = "😐"


def glyph(feedback: FeedbackValue | None) -> str:
    if feedback is None:
        return NEUTRAL_GLYPH
    return FEEDBACK_GLYPHS[feedback]


class GuestCache:
    """Bounded, newest-first list of :class:`GuestCacheEntry` objects."""

    def __init__(
        self,
        store: ScopedJsonStore,
        key: str = GUEST_CACHE_KEY,
        max_entries: int = MAX_CACHE_SIZE,
    ) -> None:
        self._store = store
        self._key = key
        self._max_entries = max_entries

    def list(self) -> list[GuestCacheEntry]:
        """Return valid entries, newest first; malformed rows are skipped."""
        try:
            raw = self._store.get(self._key)
        except Exception as exc:
            logger.warning("guest_cache.read_failed", error=str(exc))
            return []
        if not isinstance(raw, list):
            return []

        entries: list[GuestCacheEntry] = []
        for item in raw:
            try:
                entries.append(GuestCacheEntry.model_validate(item))
            except ValidationError:
                logger.debug("guest_cache.entry_dropped")
        return entries[: self._max_entries]

    def add(self, entry: GuestCacheEntry) -> list[GuestCacheEntry]:
        """Prepend *entry*, replacing an older entry with the same id.

        Storage failures are logged and ignored; the updated list is
        returned either way.
        """
        history = [e for e in self.list() if e.id != entry.id]
        updated = [entry, *history][: self._max_entries]
        try:
            self._store.set(self._key, [e.model_dump(mode="json") for e in updated])
        except Exception as exc:
            logger.warning("guest_cache.write_failed", op="set", error=str(exc))
        return updated

    def clear(self) -> None:
        try:
            self._store.remove(self._key)
        except Exception as exc:
            logger.warning("guest_cache.write_failed", op="remove", error=str(exc))
