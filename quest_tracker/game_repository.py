"""
tracked_games statements.

Every write that touches more than one row (or any backlog row) runs inside a
single gateway transaction and finishes by re-reading the backlog priorities,
so a commit can only happen while the on-disk backlog is exactly 1..N.
"""

from typing import List, Optional, Sequence

from quest_tracker.constants import GameStatus, PRIORITIZED_STATUS, UNTRACKED_STATUS
from quest_tracker.database import PersistenceGateway, Transaction
from quest_tracker.exceptions import PersistenceError
from quest_tracker.logger import setup_logger
from quest_tracker.models import TrackedGame, utc_now_iso
from quest_tracker.record_mapper import COLUMNS, GameRecordMapper, record_mapper

logger = setup_logger()

_SELECT = f"SELECT {', '.join(COLUMNS)} FROM tracked_games"

_UPSERT_COLUMNS = [column for column in COLUMNS if column != "id"]

# date_added is written once and survives re-adding a previously removed game
UPSERT_GAME = f"""
    INSERT INTO tracked_games ({', '.join(COLUMNS)})
    VALUES ({', '.join(':' + column for column in COLUMNS)})
    ON CONFLICT(id) DO UPDATE SET
        {', '.join(f'{column} = excluded.{column}' for column in _UPSERT_COLUMNS if column != 'date_added')}
"""

UPDATE_STATUS = """
    UPDATE tracked_games
    SET status = :status,
        priority = :priority,
        personal_rating = :personal_rating,
        completion_date = :completion_date,
        notes = :notes,
        updated_at = :updated_at
    WHERE id = :id
"""

UPDATE_PRIORITY = """
    UPDATE tracked_games
    SET priority = :priority
    WHERE id = :id AND status = :status
"""

UPDATE_ANNOTATIONS = """
    UPDATE tracked_games
    SET personal_rating = :personal_rating,
        completion_date = :completion_date,
        notes = :notes,
        selected_platform_id = :selected_platform_id,
        selected_platform_name = :selected_platform_name
    WHERE id = :id AND status = :status
"""

UNTRACK_GAME = """
    UPDATE tracked_games
    SET status = :status,
        priority = NULL,
        updated_at = :updated_at
    WHERE id = :id
"""

_STATUS_COLUMNS = ("id", "status", "priority", "personal_rating", "completion_date", "notes", "updated_at")
_ANNOTATION_COLUMNS = ("id", "status", "personal_rating", "completion_date", "notes",
                       "selected_platform_id", "selected_platform_name")


class TrackedGameRepository:
    """Reads and writes tracked games through the persistence gateway"""

    def __init__(self, gateway: PersistenceGateway, mapper: GameRecordMapper = record_mapper):
        self.gateway = gateway
        self.mapper = mapper

    # ===== Reads =====

    async def fetch_bucket(self, status: GameStatus) -> List[TrackedGame]:
        """Get all games of one status in display order (backlog by priority)"""
        if status == PRIORITIZED_STATUS:
            order = "priority IS NULL, priority, updated_at, id"
        else:
            order = "updated_at, id"
        rows = await self.gateway.query(f"{_SELECT} WHERE status = ? ORDER BY {order}", (str(status),))
        return [self._from_row(row) for row in rows]

    async def fetch_game(self, game_id: int) -> Optional[TrackedGame]:
        """Get one game by id regardless of status"""
        rows = await self.gateway.query(f"{_SELECT} WHERE id = ?", (game_id,))
        return self._from_row(rows[0]) if rows else None

    # ===== Writes =====

    async def upsert_game(self, game: TrackedGame):
        """
        Insert a newly tracked game, or bring a previously removed one back.

        A row that was still in the persisted backlog and is now filed elsewhere
        leaves a hole there, so the remaining backlog is renumbered in its
        persisted order.
        """
        async def body(tx: Transaction):
            rows = await tx.query("SELECT status FROM tracked_games WHERE id = ?", (game.id,))
            left_backlog = (bool(rows) and rows[0]["status"] == str(PRIORITIZED_STATUS)
                            and game.status != PRIORITIZED_STATUS)

            await tx.execute(UPSERT_GAME, self.mapper.to_row(game))

            if left_backlog:
                remaining = await tx.query(
                    "SELECT id FROM tracked_games WHERE status = ? ORDER BY priority, updated_at, id",
                    (str(PRIORITIZED_STATUS),),
                )
                await self._write_priorities(tx, [row["id"] for row in remaining])
            if left_backlog or game.status == PRIORITIZED_STATUS:
                await self._verify_backlog(tx)

        await self.gateway.transaction(body)
        logger.debug(f"Upserted game {game.id} into {game.status}")

    async def write_status_change(self, game: TrackedGame, backlog_order: Optional[Sequence[int]] = None):
        """
        Persist a game's new status row, plus the renumbered backlog it left behind.

        Args:
            game: the moved game as it now sits in memory
            backlog_order: remaining backlog ids in order when the game left the backlog
        """
        async def body(tx: Transaction):
            affected = await tx.execute(UPDATE_STATUS, self.mapper.to_params(game, _STATUS_COLUMNS))
            if affected == 0:
                raise PersistenceError(f"Game {game.id} has no persisted row")
            if backlog_order is not None:
                await self._write_priorities(tx, backlog_order)
            if backlog_order is not None or game.status == PRIORITIZED_STATUS:
                await self._verify_backlog(tx)

        await self.gateway.transaction(body)
        logger.debug(f"Persisted status change of game {game.id} to {game.status}")

    async def write_priorities(self, backlog_order: Sequence[int]):
        """Bulk priority renumbering for every backlog row, in the given order"""
        async def body(tx: Transaction):
            await self._write_priorities(tx, backlog_order)
            await self._verify_backlog(tx)

        await self.gateway.transaction(body)
        logger.debug(f"Persisted backlog order for {len(backlog_order)} games")

    async def write_removal(self, game_id: int, backlog_order: Optional[Sequence[int]] = None):
        """Mark a game untracked, renumbering the backlog it left when given"""
        async def body(tx: Transaction):
            affected = await tx.execute(UNTRACK_GAME, {
                "id": game_id,
                "status": str(UNTRACKED_STATUS),
                "updated_at": utc_now_iso(),
            })
            if affected == 0:
                raise PersistenceError(f"Game {game_id} has no persisted row")
            if backlog_order is not None:
                await self._write_priorities(tx, backlog_order)
                await self._verify_backlog(tx)

        await self.gateway.transaction(body)
        logger.debug(f"Persisted removal of game {game_id}")

    async def write_annotations(self, game: TrackedGame):
        """Persist rating, notes, completion date and platform of one game"""
        affected = await self.gateway.execute(UPDATE_ANNOTATIONS, self.mapper.to_params(game, _ANNOTATION_COLUMNS))
        if affected == 0:
            raise PersistenceError(f"Game {game.id} has no persisted row in {game.status}")
        logger.debug(f"Persisted annotations of game {game.id}")

    # ===== Internals =====

    def _from_row(self, row) -> TrackedGame:
        try:
            return self.mapper.from_row(row)
        except (KeyError, ValueError) as e:
            raise PersistenceError(f"Unreadable row for game {row.get('id')}: {e}") from e

    @staticmethod
    async def _write_priorities(tx: Transaction, backlog_order: Sequence[int]):
        for position, game_id in enumerate(backlog_order, start=1):
            affected = await tx.execute(UPDATE_PRIORITY, {
                "id": game_id,
                "priority": position,
                "status": str(PRIORITIZED_STATUS),
            })
            if affected == 0:
                raise PersistenceError(f"Game {game_id} is not in the persisted backlog")

    @staticmethod
    async def _verify_backlog(tx: Transaction):
        rows = await tx.query(
            "SELECT priority FROM tracked_games WHERE status = ? ORDER BY priority",
            (str(PRIORITIZED_STATUS),),
        )
        priorities = [row["priority"] for row in rows]
        if priorities != list(range(1, len(priorities) + 1)):
            raise PersistenceError(f"Persisted backlog priorities are not contiguous: {priorities}")
