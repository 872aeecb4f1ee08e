"""
Tests for row <-> TrackedGame mapping.
"""

import pytest

from quest_tracker.constants import GameStatus
from quest_tracker.models import Cover, Genre, InvolvedCompany, Platform, ReleaseDate, Screenshot
from quest_tracker.record_mapper import COLUMNS, record_mapper


class TestGameRecordMapper:

    def test_full_game_survives_mapping(self, make_game):
        game = make_game(
            42,
            GameStatus.COMPLETED,
            personal_rating=8.5,
            completion_date="2024-03-01",
            notes="True ending done",
            selected_platform=Platform(id=6, name="PC"),
            summary="Roguelike",
            rating=92.1,
            cover=Cover(id=7, url="https://images.example/cover.jpg"),
            genres=(Genre(id=12, name="Role-playing (RPG)"),),
            platforms=(Platform(id=6, name="PC"), Platform(id=130, name="Nintendo Switch")),
            release_dates=(ReleaseDate(id=1, date=1600300800, platform_id=6), ReleaseDate(id=2)),
            screenshots=(Screenshot(id=3, url="https://images.example/shot.jpg"),),
            involved_companies=(InvolvedCompany(id=9, name="Supergiant Games", developer=True),),
        )

        row = record_mapper.to_row(game)

        assert set(row) == set(COLUMNS)
        assert record_mapper.from_row(row) == game

    def test_empty_collections_stored_as_empty_json(self, make_game):
        row = record_mapper.to_row(make_game(1))
        assert row["genres"] == "[]"
        assert row["cover"] is None
        assert record_mapper.from_row(row).genres == ()

    @pytest.mark.parametrize("raw", [None, ""])
    def test_missing_nested_json_decodes_empty(self, make_game, raw):
        row = record_mapper.to_row(make_game(1))
        row["screenshots"] = raw
        assert record_mapper.from_row(row).screenshots == ()

    def test_unselected_platform_stored_as_null(self, make_game):
        row = record_mapper.to_row(make_game(1))
        assert row["selected_platform_id"] is None
        assert row["selected_platform_name"] is None
        assert not record_mapper.from_row(row).selected_platform.is_selected

    def test_malformed_json_raises_value_error(self, make_game):
        row = record_mapper.to_row(make_game(1))
        row["genres"] = "[{not json"
        with pytest.raises(ValueError):
            record_mapper.from_row(row)

    def test_unknown_status_raises_value_error(self, make_game):
        row = record_mapper.to_row(make_game(1))
        row["status"] = "wishlist"
        with pytest.raises(ValueError):
            record_mapper.from_row(row)

    def test_to_params_subset(self, make_game):
        params = record_mapper.to_params(make_game(1, priority=1), ("id", "status", "priority"))
        assert params == {"id": 1, "status": "backlog", "priority": 1}
