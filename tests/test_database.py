"""
Tests for the SQLite persistence gateway.
"""

import pytest

from quest_tracker.database import PersistenceGateway
from quest_tracker.exceptions import PersistenceError
from quest_tracker.game_repository import UPSERT_GAME
from quest_tracker.record_mapper import record_mapper


class TestPersistenceGateway:

    @pytest.mark.asyncio
    async def test_initialize_creates_schema(self, gateway):
        rows = await gateway.query("SELECT name FROM sqlite_master WHERE type = 'table'")
        assert {"name": "tracked_games"} in rows

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, gateway):
        await gateway.initialize()
        assert gateway.initialized

    @pytest.mark.asyncio
    async def test_execute_returns_affected_rows(self, gateway, make_game):
        await gateway.execute(UPSERT_GAME, record_mapper.to_row(make_game(1, priority=1)))
        affected = await gateway.execute("UPDATE tracked_games SET notes = ? WHERE id = ?", ("hi", 1))
        missing = await gateway.execute("UPDATE tracked_games SET notes = ? WHERE id = ?", ("hi", 99))
        assert affected == 1
        assert missing == 0

    @pytest.mark.asyncio
    async def test_query_returns_dicts(self, gateway, make_game):
        await gateway.execute(UPSERT_GAME, record_mapper.to_row(make_game(1, priority=1)))
        rows = await gateway.query("SELECT id, status, priority FROM tracked_games")
        assert rows == [{"id": 1, "status": "backlog", "priority": 1}]

    @pytest.mark.asyncio
    async def test_transaction_commits(self, gateway, make_game):
        async def body(tx):
            await tx.execute(UPSERT_GAME, record_mapper.to_row(make_game(1, priority=1)))
            await tx.execute(UPSERT_GAME, record_mapper.to_row(make_game(2, priority=2)))
            return await tx.query("SELECT COUNT(*) AS n FROM tracked_games")

        result = await gateway.transaction(body)
        assert result == [{"n": 2}]

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self, gateway, make_game):
        async def body(tx):
            await tx.execute(UPSERT_GAME, record_mapper.to_row(make_game(1, priority=1)))
            raise PersistenceError("simulated failure")

        with pytest.raises(PersistenceError, match="simulated"):
            await gateway.transaction(body)
        assert await gateway.query("SELECT id FROM tracked_games") == []

    @pytest.mark.asyncio
    async def test_constraint_violation_is_persistence_error(self, gateway, make_game):
        from quest_tracker.constants import GameStatus
        row = record_mapper.to_row(make_game(1, GameStatus.ONGOING))
        row["priority"] = 3

        with pytest.raises(PersistenceError):
            await gateway.execute(UPSERT_GAME, row)

    @pytest.mark.asyncio
    async def test_use_before_initialize_rejected(self, tmp_path):
        gw = PersistenceGateway(db_path=tmp_path / "unused.db", pool_size=1)
        with pytest.raises(PersistenceError):
            await gw.query("SELECT 1")
