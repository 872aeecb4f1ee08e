"""
Shared fixtures: a throwaway SQLite database per test plus game factories.
"""

from typing import Optional

import pytest
import pytest_asyncio

from quest_tracker.constants import GameStatus
from quest_tracker.database import PersistenceGateway
from quest_tracker.game_repository import TrackedGameRepository
from quest_tracker.models import GameMetadata, Platform, ReleaseDate, TrackedGame


class FakeMetadataPort:
    """In-memory metadata source counting lookups"""

    def __init__(self, games: Optional[dict] = None):
        self.games = games or {}
        self.calls = []

    async def fetch_by_id(self, game_id: int) -> Optional[GameMetadata]:
        self.calls.append(game_id)
        return self.games.get(game_id)


@pytest.fixture
def make_game():
    """Factory for TrackedGame with sensible defaults"""
    def factory(game_id: int, status: GameStatus = GameStatus.BACKLOG, priority: Optional[int] = None, **fields):
        fields.setdefault("name", f"Game {game_id}")
        fields.setdefault("date_added", "2024-01-01T00:00:00+00:00")
        fields.setdefault("updated_at", f"2024-01-01T00:00:{game_id % 60:02d}+00:00")
        return TrackedGame(id=game_id, status=status, priority=priority, **fields)
    return factory


@pytest.fixture
def make_backlog(make_game):
    """Factory for a contiguous backlog [ids[0](1), ids[1](2), ...]"""
    def factory(*game_ids: int):
        return [make_game(game_id, GameStatus.BACKLOG, position) for position, game_id in enumerate(game_ids, start=1)]
    return factory


@pytest.fixture
def metadata_port():
    return FakeMetadataPort({
        100: GameMetadata(
            id=100,
            name="Outer Wilds",
            summary="A space exploration game",
            rating=89.5,
            platforms=(Platform(id=6, name="PC"), Platform(id=48, name="PlayStation 4")),
            release_dates=(ReleaseDate(id=1, date=1559001600, platform_id=6),),
        ),
        200: GameMetadata(id=200, name="Hades"),
    })


@pytest_asyncio.fixture
async def gateway(tmp_path):
    gw = PersistenceGateway(db_path=tmp_path / "games.db", pool_size=2)
    await gw.initialize()
    yield gw
    await gw.close()


@pytest.fixture
def repository(gateway):
    return TrackedGameRepository(gateway)


@pytest.fixture
def seed(repository):
    """Persist games one by one (backlog games must arrive in priority order)"""
    async def persist(*games: TrackedGame):
        for game in games:
            await repository.upsert_game(game)
    return persist
