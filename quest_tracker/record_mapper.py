"""
Row <-> TrackedGame conversion for the tracked_games table.

Flat columns map one-to-one onto struct fields; nested metadata collections are
stored as msgspec JSON text. The mapper only produces bound-parameter mappings,
statements themselves never embed values.
"""

from typing import Any, Mapping, Optional, Tuple

import msgspec

from quest_tracker.constants import GameStatus
from quest_tracker.models import (
    Cover,
    Genre,
    InvolvedCompany,
    Platform,
    ReleaseDate,
    Screenshot,
    TrackedGame,
    decode_json,
    encode_json,
)

# Nested column name -> decoded type
JSON_COLUMNS = {
    "genres": Tuple[Genre, ...],
    "platforms": Tuple[Platform, ...],
    "release_dates": Tuple[ReleaseDate, ...],
    "screenshots": Tuple[Screenshot, ...],
    "involved_companies": Tuple[InvolvedCompany, ...],
}

COLUMNS = (
    "id",
    "name",
    "status",
    "priority",
    "personal_rating",
    "completion_date",
    "notes",
    "date_added",
    "updated_at",
    "selected_platform_id",
    "selected_platform_name",
    "summary",
    "rating",
    "cover",
    *JSON_COLUMNS,
)


class GameRecordMapper:
    """Bidirectional, lossless mapping between persisted rows and TrackedGame."""

    def to_row(self, game: TrackedGame) -> dict[str, Any]:
        """
        Convert a game into a column -> bound value mapping.

        The unselected platform sentinel is stored as NULLs; nested collections
        as JSON text ("[]" when empty).
        """
        platform = game.selected_platform
        row = {
            "id": game.id,
            "name": game.name,
            "status": str(game.status),
            "priority": game.priority,
            "personal_rating": game.personal_rating,
            "completion_date": game.completion_date,
            "notes": game.notes,
            "date_added": game.date_added,
            "updated_at": game.updated_at,
            "selected_platform_id": platform.id if platform.is_selected else None,
            "selected_platform_name": platform.name if platform.is_selected else None,
            "summary": game.summary,
            "rating": game.rating,
            "cover": encode_json(game.cover).decode("utf-8") if game.cover is not None else None,
        }
        for column in JSON_COLUMNS:
            row[column] = encode_json(getattr(game, column)).decode("utf-8")
        return row

    def from_row(self, row: Mapping[str, Any]) -> TrackedGame:
        """
        Convert a persisted row into a TrackedGame.

        Missing, NULL or empty nested JSON columns become empty tuples.

        Raises:
            ValueError: if the row holds an unknown status or malformed JSON
        """
        row = dict(row)
        try:
            nested = {column: self._decode_nested(row.get(column), decoded_type)
                      for column, decoded_type in JSON_COLUMNS.items()}
            cover_raw = row.get("cover")
            cover = decode_json(cover_raw, type=Optional[Cover]) if cover_raw else None
        except msgspec.DecodeError as e:
            raise ValueError(f"Malformed JSON column for game {row.get('id')}: {e}") from e

        platform_id = row.get("selected_platform_id")
        selected_platform = (
            Platform(id=platform_id, name=row.get("selected_platform_name") or "")
            if platform_id else Platform()
        )

        return TrackedGame(
            id=row["id"],
            name=row["name"],
            status=GameStatus(row["status"]),
            date_added=row["date_added"],
            updated_at=row.get("updated_at") or "",
            priority=row.get("priority"),
            personal_rating=row.get("personal_rating"),
            completion_date=row.get("completion_date"),
            notes=row.get("notes"),
            selected_platform=selected_platform,
            summary=row.get("summary"),
            rating=row.get("rating"),
            cover=cover,
            **nested,
        )

    def to_params(self, game: TrackedGame, columns) -> dict[str, Any]:
        """Subset of to_row() for statements that only touch some columns."""
        row = self.to_row(game)
        return {column: row[column] for column in columns}

    @staticmethod
    def _decode_nested(raw, decoded_type):
        if raw is None or raw == "":
            return ()
        return decode_json(raw, type=decoded_type)


record_mapper = GameRecordMapper()
