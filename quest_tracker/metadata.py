"""
Metadata lookup port.

The collection manager never talks to the metadata provider directly; it asks
a MetadataLookupPort for a game's descriptive data once, when the game is first
tracked, and keeps its own denormalized copy afterwards. Token refresh, request
shaping and image handling all live behind the port.
"""

import threading
from collections import OrderedDict
from typing import Optional, Protocol, runtime_checkable

from quest_tracker.logger import setup_logger
from quest_tracker.models import GameMetadata

logger = setup_logger()


@runtime_checkable
class MetadataLookupPort(Protocol):
    """Returns cached or freshly fetched metadata for a game id, or None when unknown."""

    async def fetch_by_id(self, game_id: int) -> Optional[GameMetadata]:
        ...


class CachedMetadataLookup:
    """
    LRU cache in front of any MetadataLookupPort.

    Only hits are cached; a miss is asked again next time since the provider may
    have learned about the game in the meantime.
    Thread-safe for free-threaded Python.
    """

    def __init__(self, port: MetadataLookupPort, max_entries: int = 256):
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries}")
        self._port = port
        self._max_entries = max_entries
        self._cache: OrderedDict[int, GameMetadata] = OrderedDict()
        self._lock = threading.Lock()

    async def fetch_by_id(self, game_id: int) -> Optional[GameMetadata]:
        with self._lock:
            cached = self._cache.get(game_id)
            if cached is not None:
                self._cache.move_to_end(game_id)
                return cached

        metadata = await self._port.fetch_by_id(game_id)
        if metadata is None:
            logger.debug(f"No metadata found for game {game_id}")
            return None

        with self._lock:
            self._cache[game_id] = metadata
            self._cache.move_to_end(game_id)
            while len(self._cache) > self._max_entries:
                self._cache.popitem(last=False)
        return metadata

    def invalidate(self, game_id: Optional[int] = None):
        with self._lock:
            if game_id is None:
                self._cache.clear()
            else:
                self._cache.pop(game_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
