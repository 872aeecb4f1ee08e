"""
Collection sync controller.

Coordinates optimistic in-memory mutation with background persistence:

    Applying -> Persisting -> Confirmed
                          \\-> Reconciling (reread affected buckets, overwrite memory)

UI-facing calls (change_status, reorder, remove, update_annotations) are plain
synchronous methods: they mutate the StatusCollectionStore, queue the durable
write as an asyncio task, and return a SyncOperation handle immediately.

Write ordering:
- Every operation is chained, at issue time, behind the last queued operation
  of each bucket it touches (BucketWriteQueue), so writes to one bucket land in
  issue order while disjoint buckets proceed concurrently.
- Reconciliation runs inside the failed operation's slot; anything issued
  later on the same bucket waits for it.
- A reload bumps the bucket generation and overwrites optimistic state. Operations
  applied before a plain reload but not yet written are re-applied to the fresh
  buckets in issue order, and their write payloads are rebuilt from the result.
  A reload done by reconciliation does not re-apply them: those operations are
  superseded and reread their buckets instead of writing.

Persistence failures are retried zero times: they are logged, reconciled by a
reread and surfaced as a non-fatal SyncNotice.
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum, StrEnum, auto
from typing import Awaitable, Callable, Iterable, Optional

import msgspec

from quest_tracker.collection_store import StatusCollectionStore
from quest_tracker.constants import (
    ALL_STATUSES,
    DEFAULT_NEW_GAME_STATUS,
    GameStatus,
    PRIORITIZED_STATUS,
    UNTRACKED_STATUS,
    get_status_label,
)
from quest_tracker.exceptions import InvariantViolation, NotFoundError, PersistenceError, QuestTrackerError
from quest_tracker.game_repository import TrackedGameRepository
from quest_tracker.logger import setup_logger
from quest_tracker.metadata import MetadataLookupPort
from quest_tracker.models import Platform, TrackedGame, new_tracked_game, utc_now_iso
from quest_tracker.task_registry import TaskRegistry

logger = setup_logger()

Writer = Callable[[], Awaitable[None]]


# =============================================================================
# Operation Model
# =============================================================================

class OperationState(Enum):
    APPLYING = auto()
    PERSISTING = auto()
    CONFIRMED = auto()
    RECONCILING = auto()


class OperationKind(StrEnum):
    STATUS_CHANGE = "status_change"
    REORDER = "reorder"
    REMOVE = "remove"
    ADD = "add"
    ANNOTATE = "annotate"


class SyncNotice(msgspec.Struct, frozen=True):
    """
    Transient message for the UI layer (toast/snackbar).

    level is "success" for confirmed operations and "error" when an optimistic
    change was rolled back by reconciliation.
    """
    level: str
    title: str
    message: str
    statuses: tuple[GameStatus, ...] = ()
    game_id: Optional[int] = None


class SyncOperation:
    """Handle for one logical operation travelling through the state machine"""

    def __init__(self, kind: OperationKind, game_id: Optional[int], statuses: Iterable[GameStatus]):
        self.kind = kind
        self.game_id = game_id
        self.statuses = frozenset(statuses)
        self.state = OperationState.APPLYING
        self.error: Optional[BaseException] = None
        self.superseded = False
        self.generations: dict[GameStatus, int] = {}
        self._task: Optional[asyncio.Task] = None
        # Mutation result and the callables that turn it into a write and a notice
        self._result = None
        self._replay = None
        self._writer_for = None
        self._notice_for = None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> OperationState:
        """Wait for the terminal state. Cancelling the waiter does not cancel the write."""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self.state

    def __repr__(self):
        return f"<SyncOperation {self.kind} game={self.game_id} state={self.state.name}>"


# =============================================================================
# Bucket Write Queue
# =============================================================================

class BucketWriteQueue:
    """
    Per-bucket FIFO of background jobs.

    submit() is synchronous: it records the job as the new tail of every bucket
    it names before returning, so queue order is issue order even though the
    job body runs later.
    """

    def __init__(self, registry: TaskRegistry):
        self._registry = registry
        self._tails: dict[GameStatus, asyncio.Task] = {}

    def submit(self, statuses: Iterable[GameStatus], job: Callable[[], Awaitable], name: str) -> asyncio.Task:
        statuses = frozenset(statuses)
        predecessors = {
            self._tails[status] for status in statuses
            if status in self._tails and not self._tails[status].done()
        }

        async def run_after_predecessors():
            if predecessors:
                await asyncio.wait(predecessors)
            return await job()

        task = asyncio.get_running_loop().create_task(run_after_predecessors(), name=name)
        for status in statuses:
            self._tails[status] = task
        task.add_done_callback(lambda finished: self._release(finished, statuses))
        return self._registry.register(task, name)

    def _release(self, task: asyncio.Task, statuses: frozenset):
        for status in statuses:
            if self._tails.get(status) is task:
                del self._tails[status]

    def pending_statuses(self) -> set[GameStatus]:
        return {status for status, task in self._tails.items() if not task.done()}


# =============================================================================
# Controller
# =============================================================================

class CollectionSyncController:
    """
    The only component allowed to mutate the StatusCollectionStore.

    Args:
        repository: tracked_games statements over the persistence gateway
        store: in-memory buckets (a fresh one when omitted)
        metadata: lookup used when a game is tracked for the first time
        persistence_timeout: seconds before a write or reread counts as failed
        strict_invariants: re-raise InvariantViolation instead of reconciling
    """

    def __init__(
        self,
        repository: TrackedGameRepository,
        store: Optional[StatusCollectionStore] = None,
        metadata: Optional[MetadataLookupPort] = None,
        persistence_timeout: Optional[float] = None,
        strict_invariants: Optional[bool] = None,
        registry: Optional[TaskRegistry] = None,
    ):
        if persistence_timeout is None or strict_invariants is None:
            from quest_tracker.config import config_manager
            if persistence_timeout is None:
                persistence_timeout = config_manager.get_persistence_timeout()
            if strict_invariants is None:
                strict_invariants = config_manager.get_strict_invariants()

        self.repository = repository
        self.store = store if store is not None else StatusCollectionStore()
        self.metadata = metadata
        self.persistence_timeout = persistence_timeout
        self.strict_invariants = strict_invariants
        self.registry = registry if registry is not None else TaskRegistry()
        self._queue = BucketWriteQueue(self.registry)
        self._loading: set[GameStatus] = set()
        self._notice_listeners: list[Callable[[SyncNotice], None]] = []
        # Applied but not yet written, in issue order
        self._unwritten: list[SyncOperation] = []

    # ===== Read Side =====

    def snapshot(self, status: GameStatus) -> tuple[TrackedGame, ...]:
        return self.store.snapshot(status)

    def is_loading(self, status: GameStatus) -> bool:
        return status in self._loading

    def add_notice_listener(self, listener: Callable[[SyncNotice], None]):
        self._notice_listeners.append(listener)

    def remove_notice_listener(self, listener: Callable[[SyncNotice], None]):
        if listener in self._notice_listeners:
            self._notice_listeners.remove(listener)

    async def load_status(self, status: GameStatus) -> bool:
        """
        (Re)load one bucket from the database, queued behind pending writes to it.

        Returns:
            True when the bucket now mirrors the database, False if the read failed
        """
        self._loading.add(status)
        try:
            task = self._queue.submit({status}, lambda: self._reload(status), name=f"load-{status}")
            return await asyncio.shield(task)
        finally:
            if status not in self._queue.pending_statuses():
                self._loading.discard(status)

    async def load_initial(self, statuses: Optional[Iterable[GameStatus]] = None) -> dict[GameStatus, bool]:
        """Load the start-up buckets (configured defaults when statuses is omitted)"""
        if statuses is None:
            from quest_tracker.config import config_manager
            statuses = config_manager.get_default_statuses()
        results = {}
        for status in statuses:
            results[status] = await self.load_status(status)
        return results

    # ===== Optimistic Mutations =====

    def change_status(self, game_id: int, new_status: GameStatus, old_status: GameStatus,
                      personal_rating: Optional[float] = None) -> SyncOperation:
        """
        Move a game between buckets.

        Moving into completed stamps today's completion date (unless already set)
        and records personal_rating when given.

        Raises:
            NotFoundError: if the game is not in old_status
            InvalidStatusError: if new_status equals old_status
        """
        game = self.store.get(game_id, old_status)
        changes = {}
        if new_status == GameStatus.COMPLETED:
            if personal_rating is not None:
                changes["personal_rating"] = personal_rating
            if game.completion_date is None:
                changes["completion_date"] = datetime.now(timezone.utc).date().isoformat()

        def mutation():
            moved = self.store.move_game(game_id, old_status, new_status, **changes)
            backlog_order = self._backlog_order() if old_status == PRIORITIZED_STATUS else None
            return moved, backlog_order

        def replay(result):
            if self.store.status_of(game_id) == new_status:
                # The reload did not undo the move itself
                moved, _ = result
                return moved, self._backlog_order() if old_status == PRIORITIZED_STATUS else None
            return mutation()

        def writer_for(result):
            moved, backlog_order = result
            return lambda: self.repository.write_status_change(moved, backlog_order)

        def notice_for(result):
            moved, _ = result
            return SyncNotice(
                level="success",
                title="Game Updated",
                message=f"{moved.name} moved to {get_status_label(new_status)}",
                statuses=(new_status,),
                game_id=game_id,
            )

        return self._mutate(OperationKind.STATUS_CHANGE, game_id, {old_status, new_status},
                            mutation, writer_for, notice_for, replay=replay)

    def reorder(self, from_index: int, to_index: int,
                status: GameStatus = PRIORITIZED_STATUS) -> Optional[SyncOperation]:
        """
        Drag-reorder the backlog.

        Returns:
            The operation, or None when the game was dropped on its own position

        Raises:
            InvalidStatusError: for buckets other than the backlog
            RangeError: if an index is out of bounds
        """
        if from_index == to_index:
            # Still validates bucket and bounds; nothing to persist
            self.store.reorder(status, from_index, to_index)
            return None

        def mutation():
            self.store.reorder(status, from_index, to_index)
            return self._backlog_order()

        def replay(order):
            # Indices are meaningless after a reload; restore the order the user saw
            self.store.arrange(status, order)
            return self._backlog_order()

        def writer_for(order):
            return lambda: self.repository.write_priorities(order)

        return self._mutate(OperationKind.REORDER, None, {status}, mutation, writer_for, lambda _: None,
                            replay=replay)

    def remove(self, game_id: int, status: GameStatus) -> SyncOperation:
        """
        Stop tracking a game. The row is kept with the untracked status.

        Raises:
            NotFoundError: if the game is not in status
        """
        def mutation():
            removed = self.store.remove(game_id, status)
            backlog_order = self._backlog_order() if status == PRIORITIZED_STATUS else None
            return removed, backlog_order

        def replay(result):
            if game_id not in self.store:
                removed, _ = result
                return removed, self._backlog_order() if status == PRIORITIZED_STATUS else None
            return mutation()

        def writer_for(result):
            _, backlog_order = result
            return lambda: self.repository.write_removal(game_id, backlog_order)

        def notice_for(result):
            removed, _ = result
            return SyncNotice(
                level="success",
                title="Game Removed",
                message=f"{removed.name} removed",
                statuses=(status,),
                game_id=game_id,
            )

        return self._mutate(OperationKind.REMOVE, game_id, {status}, mutation, writer_for, notice_for,
                            extra_queue_statuses={UNTRACKED_STATUS}, replay=replay)

    def update_annotations(self, game_id: int, status: GameStatus, **changes) -> SyncOperation:
        """
        Change personal_rating, notes, completion_date or selected_platform.

        Raises:
            NotFoundError: if the game is not in status
            ValueError: for fields that are not annotations
        """
        def mutation():
            return self.store.update(game_id, status, **changes)

        def writer_for(updated):
            return lambda: self.repository.write_annotations(updated)

        return self._mutate(OperationKind.ANNOTATE, game_id, {status}, mutation, writer_for, lambda _: None)

    async def add_game(self, game_id: int, status: GameStatus = DEFAULT_NEW_GAME_STATUS,
                       platform: Optional[Platform] = None) -> Optional[SyncOperation]:
        """
        Start tracking a game, or re-file one that is already tracked.

        An already tracked game gets its platform updated and/or is moved to
        status. Otherwise a previously removed row is revived, or metadata is
        fetched once and a new entry is appended to the bucket.

        Returns:
            The last operation issued, None if nothing changed or the database
            could not be read

        Raises:
            NotFoundError: if no metadata exists for a brand new game
        """
        if game_id in self.store:
            return self._refile(game_id, status, platform)

        try:
            existing = await asyncio.wait_for(self.repository.fetch_game(game_id), self.persistence_timeout)
        except (PersistenceError, asyncio.TimeoutError) as e:
            logger.error(f"Could not look up game {game_id} before adding it: {e}", exc_info=True)
            self._notify(SyncNotice(level="error", title="Add Failed",
                                    message="Failed to add game to your collection. Please try again.",
                                    statuses=(status,), game_id=game_id))
            return None

        if existing is None:
            if self.metadata is None:
                raise NotFoundError(f"No metadata source to look up game {game_id}", game_id)
            metadata = await self.metadata.fetch_by_id(game_id)
            if metadata is None:
                raise NotFoundError(f"No metadata found for game {game_id}", game_id)
            game = new_tracked_game(metadata, status, platform)
            previous_status = None
        else:
            game = msgspec.structs.replace(
                existing,
                status=status,
                priority=None,
                updated_at=utc_now_iso(),
                selected_platform=platform if platform is not None else existing.selected_platform,
            )
            previous_status = existing.status

        # The game may have been added by another call while we were awaiting
        if game_id in self.store:
            return self._refile(game_id, status, platform)

        def mutation():
            return self.store.insert(game)

        def replay(added):
            if self.store.status_of(game_id) == status:
                return self.store.get(game_id, status)
            return mutation()

        def writer_for(added):
            return lambda: self.repository.upsert_game(added)

        def notice_for(added):
            return SyncNotice(
                level="success",
                title="Game Added",
                message=f"{added.name} added to {get_status_label(status)}",
                statuses=(status,),
                game_id=game_id,
            )

        extra = {previous_status} if previous_status is not None else set()
        return self._mutate(OperationKind.ADD, game_id, {status}, mutation,
                            writer_for, notice_for, extra_queue_statuses=extra, replay=replay)

    # ===== Lifecycle =====

    async def flush(self):
        """Wait for every queued write and reconciliation to finish"""
        await self.registry.wait_all()

    async def close(self, timeout: float = 3.0) -> int:
        """Cancel outstanding background work (shutdown)"""
        cancelled = await self.registry.cancel_all(timeout=timeout)
        self._unwritten.clear()
        return cancelled

    # ===== Internals =====

    def _refile(self, game_id: int, status: GameStatus, platform: Optional[Platform]) -> Optional[SyncOperation]:
        current = self.store.status_of(game_id)
        operation = None
        if platform is not None and self.store.get(game_id, current).selected_platform != platform:
            operation = self.update_annotations(game_id, current, selected_platform=platform)
        if current != status:
            operation = self.change_status(game_id, status, current)
        return operation

    def _backlog_order(self) -> list[int]:
        return [game.id for game in self.store.snapshot(PRIORITIZED_STATUS)]

    def _mutate(self, kind, game_id, statuses, mutation, writer_for, notice_for,
                extra_queue_statuses=frozenset(), replay=None) -> SyncOperation:
        """
        Apply mutation now and queue its write.

        replay(previous_result) re-applies the operation after a reload wiped
        its optimistic effect; by default the mutation is simply run again.
        """
        operation = SyncOperation(kind, game_id, statuses)

        # Applying: caller errors (NotFoundError, RangeError, ...) surface here untouched
        try:
            operation._result = mutation()
        except InvariantViolation:
            if self.strict_invariants:
                raise
            logger.error(f"Invariant violated while applying {kind} for game {game_id}; reconciling",
                         exc_info=True)
        else:
            operation._writer_for = writer_for
            operation._notice_for = notice_for
            operation._replay = replay if replay is not None else (lambda _: mutation())
            self._unwritten.append(operation)

        operation.generations = self._generations_of(operation)
        operation.state = OperationState.PERSISTING
        operation._task = self._queue.submit(
            operation.statuses | set(extra_queue_statuses),
            lambda: self._persist(operation),
            name=f"{kind}-{game_id if game_id is not None else 'bucket'}",
        )
        return operation

    def _generations_of(self, operation: SyncOperation) -> dict[GameStatus, int]:
        return {status: self.store.generation(status) for status in operation.statuses}

    def _rebase_unwritten(self, replay: bool):
        """
        Deal with unwritten operations whose buckets a load just replaced.

        With replay, each one is re-applied to the fresh buckets in issue order;
        one that no longer applies (game gone, backlog membership changed) is
        superseded. Without replay, all of them are superseded.
        """
        for operation in list(self._unwritten):
            if operation.superseded or operation.generations == self._generations_of(operation):
                continue
            if replay:
                try:
                    operation._result = operation._replay(operation._result)
                except (QuestTrackerError, InvariantViolation) as e:
                    logger.warning(f"{operation.kind} for game {operation.game_id} no longer applies "
                                   f"after reload: {e}")
                else:
                    operation.generations = self._generations_of(operation)
                    logger.debug(f"Re-applied {operation.kind} for game {operation.game_id} after reload")
                    continue
            operation.superseded = True

    async def _persist(self, operation: SyncOperation):
        if operation in self._unwritten:
            self._unwritten.remove(operation)

        if operation._writer_for is None:
            await self._reconcile(operation, "in-memory invariant violation")
            return

        if operation.superseded or operation.generations != self._generations_of(operation):
            operation.superseded = True
            logger.warning(f"{operation.kind} for game {operation.game_id} was overwritten by a reread "
                           f"before it could be written; rereading instead")
            await self._reconcile(operation, "superseded by a reread")
            return

        writer = operation._writer_for(operation._result)
        notice = operation._notice_for(operation._result)
        try:
            await asyncio.wait_for(writer(), self.persistence_timeout)
        except asyncio.TimeoutError:
            operation.error = PersistenceError(
                f"{operation.kind} write timed out after {self.persistence_timeout}s")
            logger.error(f"Persisting {operation.kind} for game {operation.game_id} timed out")
            await self._reconcile(operation, "write timed out")
            return
        except PersistenceError as e:
            operation.error = e
            logger.error(f"Persisting {operation.kind} for game {operation.game_id} failed: {e}", exc_info=True)
            await self._reconcile(operation, "write failed")
            return

        operation.state = OperationState.CONFIRMED
        logger.debug(f"Confirmed {operation.kind} for game {operation.game_id}")
        if notice is not None:
            self._notify(notice)

    async def _reconcile(self, operation: SyncOperation, reason: str):
        operation.state = OperationState.RECONCILING
        statuses = [status for status in ALL_STATUSES if status in operation.statuses]
        logger.warning(f"Reconciling {', '.join(statuses)} after {operation.kind} ({reason})")

        restored = [await self._reload(status, replay_unwritten=False) for status in statuses]

        if all(restored):
            message = "Your change could not be saved, the list was restored."
        else:
            message = "Your change could not be saved and the list could not be refreshed."
        self._notify(SyncNotice(
            level="error",
            title="Update Failed",
            message=message,
            statuses=tuple(statuses),
            game_id=operation.game_id,
        ))

    async def _reload(self, status: GameStatus, replay_unwritten: bool = True) -> bool:
        """Reread one bucket and overwrite memory with it. Runs inside a queue slot."""
        self._loading.add(status)
        try:
            games = await asyncio.wait_for(self.repository.fetch_bucket(status), self.persistence_timeout)
            games, repair_order = self._normalize(status, games)
            self.store.load(status, games)
            self._rebase_unwritten(replay_unwritten)
        except (PersistenceError, asyncio.TimeoutError) as e:
            logger.error(f"Error loading {status} games: {e}", exc_info=True)
            return False
        finally:
            self._loading.discard(status)
        logger.debug(f"Loaded {len(games)} {status} games")

        if repair_order is not None:
            logger.warning(f"Persisted {status} priorities were not contiguous; repairing")
            try:
                await asyncio.wait_for(self.repository.write_priorities(repair_order), self.persistence_timeout)
            except (PersistenceError, asyncio.TimeoutError) as e:
                logger.error(f"Could not repair {status} priorities: {e}", exc_info=True)
        return True

    @staticmethod
    def _normalize(status: GameStatus, games: list[TrackedGame]) -> tuple[list[TrackedGame], Optional[list[int]]]:
        """Bring a fresh read in line with the bucket invariants, reporting whether disk needs a repair."""
        if status != PRIORITIZED_STATUS:
            return [g if g.priority is None else msgspec.structs.replace(g, priority=None) for g in games], None

        if [g.priority for g in games] == list(range(1, len(games) + 1)):
            return games, None
        renumbered = [msgspec.structs.replace(g, priority=position) for position, g in enumerate(games, start=1)]
        return renumbered, [g.id for g in renumbered]

    def _notify(self, notice: SyncNotice):
        for listener in list(self._notice_listeners):
            try:
                listener(notice)
            except Exception as e:
                logger.error(f"Notice listener failed: {e}", exc_info=True)
