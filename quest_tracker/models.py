"""
msgspec-based data models for the game collection.

This module provides:
- Immutable msgspec.Struct definitions for tracked games and their cached metadata
- Convenience functions for JSON encoding/decoding of nested collections
- Helpers for building a new TrackedGame from fetched metadata

All structs are frozen and nested collections are tuples, so a snapshot handed
to the UI can never be mutated behind the store's back.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

import msgspec

from quest_tracker.constants import GameStatus, DEFAULT_NEW_GAME_STATUS


# =============================================================================
# Global Encoders/Decoders
# =============================================================================

json_encoder = msgspec.json.Encoder()
json_decoder = msgspec.json.Decoder()

_typed_decoders: dict = {}


def encode_json(obj) -> bytes:
    """
    Encode object to JSON bytes using msgspec.

    Args:
        obj: Any msgspec.Struct or serializable object

    Returns:
        JSON as bytes
    """
    return json_encoder.encode(obj)


def decode_json(data: bytes | str, type=None):
    """
    Decode JSON to object using msgspec.

    Args:
        data: JSON as bytes or str
        type: Optional type for validation (e.g. Tuple[Genre, ...])

    Returns:
        Decoded object (validated if type provided)

    Example:
        >>> genres = decode_json(b'[{"id": 12, "name": "RPG"}]', type=Tuple[Genre, ...])
    """
    if type is None:
        return json_decoder.decode(data)
    decoder = _typed_decoders.get(type)
    if decoder is None:
        decoder = msgspec.json.Decoder(type)
        _typed_decoders[type] = decoder
    return decoder.decode(data)


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string (microsecond precision keeps ordering stable)."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Metadata Structures
# =============================================================================

class Platform(msgspec.Struct, frozen=True):
    """
    A platform a game is available on.

    id=0 with an empty name is the "nothing selected" sentinel.
    """
    id: int = 0
    name: str = ""

    @property
    def is_selected(self) -> bool:
        return self.id != 0


UNSELECTED_PLATFORM = Platform()


class Genre(msgspec.Struct, frozen=True):
    id: int
    name: str


class ReleaseDate(msgspec.Struct, frozen=True):
    """Release of a game on one platform; date is a UNIX timestamp."""
    id: int
    date: Optional[int] = None
    platform_id: Optional[int] = None


class Cover(msgspec.Struct, frozen=True):
    id: int
    url: str


class Screenshot(msgspec.Struct, frozen=True):
    id: int
    url: str


class InvolvedCompany(msgspec.Struct, frozen=True):
    id: int
    name: str
    developer: bool = False
    publisher: bool = False


class GameMetadata(msgspec.Struct, frozen=True):
    """
    Descriptive game information from the external metadata provider.

    Fetched once when a game is first tracked; afterwards the denormalized copy
    on TrackedGame is authoritative.
    """
    id: int
    name: str
    summary: Optional[str] = None
    rating: Optional[float] = None
    cover: Optional[Cover] = None
    genres: Tuple[Genre, ...] = ()
    platforms: Tuple[Platform, ...] = ()
    release_dates: Tuple[ReleaseDate, ...] = ()
    screenshots: Tuple[Screenshot, ...] = ()
    involved_companies: Tuple[InvolvedCompany, ...] = ()


# =============================================================================
# Collection Structures
# =============================================================================

class TrackedGame(msgspec.Struct, frozen=True):
    """
    One tracked entry in the user's collection.

    priority is only meaningful while status is backlog; the store clears it
    for every other bucket. date_added is set once and never changes.
    """
    id: int
    name: str
    status: GameStatus
    date_added: str
    updated_at: str = ""
    priority: Optional[int] = None
    personal_rating: Optional[float] = None
    completion_date: Optional[str] = None
    notes: Optional[str] = None
    selected_platform: Platform = msgspec.field(default_factory=Platform)

    # Denormalized metadata
    summary: Optional[str] = None
    rating: Optional[float] = None
    cover: Optional[Cover] = None
    genres: Tuple[Genre, ...] = ()
    platforms: Tuple[Platform, ...] = ()
    release_dates: Tuple[ReleaseDate, ...] = ()
    screenshots: Tuple[Screenshot, ...] = ()
    involved_companies: Tuple[InvolvedCompany, ...] = ()

    def earliest_release(self) -> Optional[int]:
        dates = [r.date for r in self.release_dates if r.date is not None]
        return min(dates) if dates else None


def new_tracked_game(
    metadata: GameMetadata,
    status: GameStatus = DEFAULT_NEW_GAME_STATUS,
    platform: Optional[Platform] = None,
) -> TrackedGame:
    """
    Build a TrackedGame for a game being tracked for the first time.

    The selected platform defaults to the first platform the game is available on.
    Priority is left unset; the store assigns it when the game joins the backlog.
    """
    if platform is None:
        platform = metadata.platforms[0] if metadata.platforms else UNSELECTED_PLATFORM
    now = utc_now_iso()
    return TrackedGame(
        id=metadata.id,
        name=metadata.name,
        status=status,
        date_added=now,
        updated_at=now,
        selected_platform=platform,
        summary=metadata.summary,
        rating=metadata.rating,
        cover=metadata.cover,
        genres=metadata.genres,
        platforms=metadata.platforms,
        release_dates=metadata.release_dates,
        screenshots=metadata.screenshots,
        involved_companies=metadata.involved_companies,
    )


def sort_by_release_date(games):
    """
    Order games newest-first by their earliest release date.

    Games without any dated release go last; the sort is stable otherwise.
    """
    dated = [g for g in games if g.earliest_release() is not None]
    undated = [g for g in games if g.earliest_release() is None]
    dated.sort(key=lambda g: g.earliest_release(), reverse=True)
    return dated + undated
