"""
In-memory status buckets for the tracked game collection.

The store is the single owner of the six ordered buckets. Every mutation is a
plain synchronous call that never suspends, validates its arguments before
touching anything, and re-checks the bucket invariants afterwards:

- a game id lives in exactly one bucket
- backlog priorities are exactly 1..N in list order
- every other bucket has no priorities at all

Each bucket also carries a generation counter that moves whenever its
contents are replaced wholesale by load(). The sync controller uses it to
detect optimistic mutations that a reload has already overwritten.
"""

from typing import Iterable, Optional

import msgspec

from quest_tracker.constants import ALL_STATUSES, GameStatus, PRIORITIZED_STATUS
from quest_tracker.exceptions import (
    InvalidStatusError,
    InvariantViolation,
    NotFoundError,
    RangeError,
)
from quest_tracker.logger import setup_logger
from quest_tracker.models import TrackedGame, utc_now_iso

logger = setup_logger()

# Fields callers may change without a status transition
ANNOTATION_FIELDS = frozenset({"personal_rating", "completion_date", "notes", "selected_platform"})


class StatusCollectionStore:
    """Authoritative in-memory view of the collection, one ordered list per status."""

    def __init__(self):
        self._buckets: dict[GameStatus, list[TrackedGame]] = {status: [] for status in ALL_STATUSES}
        self._generations: dict[GameStatus, int] = {status: 0 for status in ALL_STATUSES}
        # id -> bucket, kept in step with _buckets for exclusive membership
        self._membership: dict[int, GameStatus] = {}

    # ===== Queries =====

    def snapshot(self, status: GameStatus) -> tuple[TrackedGame, ...]:
        """Immutable copy of a bucket for rendering."""
        return tuple(self._buckets[status])

    def size(self, status: GameStatus) -> int:
        return len(self._buckets[status])

    def generation(self, status: GameStatus) -> int:
        return self._generations[status]

    def status_of(self, game_id: int) -> Optional[GameStatus]:
        return self._membership.get(game_id)

    def get(self, game_id: int, status: GameStatus) -> TrackedGame:
        return self._buckets[status][self._index_of(game_id, status)]

    def __contains__(self, game_id: int) -> bool:
        return game_id in self._membership

    # ===== Mutations =====

    def load(self, status: GameStatus, games: Iterable[TrackedGame]):
        """
        Replace a bucket's contents wholesale (initial load and reconciliation).

        The caller supplies backlog games already sorted by priority. Any id that
        is currently held by a different bucket is evicted from it first, since
        a fresh read is ground truth.
        """
        games = list(games)
        incoming_ids = {game.id for game in games}

        for other in ALL_STATUSES:
            if other == status:
                continue
            bucket = self._buckets[other]
            kept = [game for game in bucket if game.id not in incoming_ids]
            if len(kept) != len(bucket):
                logger.debug(f"Evicting {len(bucket) - len(kept)} stale game(s) from {other} while loading {status}")
                self._buckets[other] = self._renumbered(other, kept)
                self._generations[other] += 1
                self._check_invariants(other)

        for game in self._buckets[status]:
            self._membership.pop(game.id, None)
        self._buckets[status] = games
        for game in games:
            self._membership[game.id] = status
        self._generations[status] += 1

        self._check_invariants(status)

    def insert(self, game: TrackedGame) -> TrackedGame:
        """
        Append a newly tracked game to the end of its status bucket.

        Raises:
            InvalidStatusError: if the id is already tracked
        """
        if game.id in self._membership:
            raise InvalidStatusError(
                f"Game {game.id} is already tracked in {self._membership[game.id]}")

        bucket = self._buckets[game.status]
        added = msgspec.structs.replace(game, priority=self._append_priority(game.status))
        bucket.append(added)
        self._membership[added.id] = added.status

        self._check_invariants(added.status)
        return added

    def move_game(self, game_id: int, from_status: GameStatus, to_status: GameStatus,
                  **changes) -> TrackedGame:
        """
        Move a game to the end of another bucket.

        Joining the backlog ranks the game last (priority = size + 1); leaving it
        renumbers the remaining backlog 1..N in order. Any other destination
        clears the priority. Extra annotation changes (e.g. a completion rating)
        are applied to the moved game.

        Raises:
            InvalidStatusError: if from_status equals to_status
            NotFoundError: if the id is not in from_status's bucket
        """
        if from_status == to_status:
            raise InvalidStatusError(f"Game {game_id} is already in {to_status}")
        self._validate_annotations(changes)
        index = self._index_of(game_id, from_status)

        source = self._buckets[from_status]
        game = source.pop(index)
        self._buckets[from_status] = self._renumbered(from_status, source)

        moved = msgspec.structs.replace(
            game,
            status=to_status,
            priority=self._append_priority(to_status),
            updated_at=utc_now_iso(),
            **changes,
        )
        self._buckets[to_status].append(moved)
        self._membership[game_id] = to_status

        self._check_invariants(from_status)
        self._check_invariants(to_status)
        return moved

    def reorder(self, status: GameStatus, from_index: int, to_index: int) -> tuple[TrackedGame, ...]:
        """
        Move the backlog entry at from_index to to_index and renumber 1..N.

        Reordering to the same index changes nothing.

        Raises:
            InvalidStatusError: for any bucket other than the backlog
            RangeError: if either index is outside the bucket
        """
        if status != PRIORITIZED_STATUS:
            raise InvalidStatusError(f"Only the {PRIORITIZED_STATUS} bucket can be reordered, not {status}")

        bucket = self._buckets[status]
        for index in (from_index, to_index):
            if not 0 <= index < len(bucket):
                raise RangeError(f"Index {index} out of range for {status} of size {len(bucket)}",
                                 index, len(bucket))

        if from_index == to_index:
            return tuple(bucket)

        game = bucket.pop(from_index)
        bucket.insert(to_index, game)
        self._buckets[status] = self._renumbered(status, bucket)

        self._check_invariants(status)
        return tuple(self._buckets[status])

    def arrange(self, status: GameStatus, game_ids) -> tuple[TrackedGame, ...]:
        """
        Put the backlog into the given id order and renumber 1..N.

        Raises:
            InvalidStatusError: for any bucket other than the backlog
            NotFoundError: if game_ids is not exactly the bucket's ids
        """
        if status != PRIORITIZED_STATUS:
            raise InvalidStatusError(f"Only the {PRIORITIZED_STATUS} bucket can be reordered, not {status}")

        game_ids = list(game_ids)
        by_id = {game.id: game for game in self._buckets[status]}
        if len(game_ids) != len(by_id) or set(game_ids) != set(by_id):
            raise NotFoundError(f"Order {game_ids} does not match the {status} bucket {sorted(by_id)}")

        self._buckets[status] = self._renumbered(status, [by_id[game_id] for game_id in game_ids])

        self._check_invariants(status)
        return tuple(self._buckets[status])

    def remove(self, game_id: int, status: GameStatus) -> TrackedGame:
        """
        Drop a game from its bucket, renumbering the backlog if needed.

        Raises:
            NotFoundError: if the id is not in status's bucket
        """
        index = self._index_of(game_id, status)
        bucket = self._buckets[status]
        removed = bucket.pop(index)
        self._buckets[status] = self._renumbered(status, bucket)
        del self._membership[game_id]

        self._check_invariants(status)
        return removed

    def update(self, game_id: int, status: GameStatus, **changes) -> TrackedGame:
        """
        Change annotation fields of a game in place (position and priority untouched).

        Raises:
            NotFoundError: if the id is not in status's bucket
            ValueError: for fields that are not annotations
        """
        self._validate_annotations(changes)
        index = self._index_of(game_id, status)
        bucket = self._buckets[status]
        updated = msgspec.structs.replace(bucket[index], **changes)
        bucket[index] = updated

        self._check_invariants(status)
        return updated

    # ===== Internals =====

    def _index_of(self, game_id: int, status: GameStatus) -> int:
        for index, game in enumerate(self._buckets[status]):
            if game.id == game_id:
                return index
        raise NotFoundError(f"Game {game_id} is not in {status}", game_id)

    def _append_priority(self, status: GameStatus) -> Optional[int]:
        if status != PRIORITIZED_STATUS:
            return None
        return len(self._buckets[status]) + 1

    @staticmethod
    def _renumbered(status: GameStatus, games: list[TrackedGame]) -> list[TrackedGame]:
        if status != PRIORITIZED_STATUS:
            return games
        return [
            game if game.priority == position else msgspec.structs.replace(game, priority=position)
            for position, game in enumerate(games, start=1)
        ]

    @staticmethod
    def _validate_annotations(changes: dict):
        unknown = set(changes) - ANNOTATION_FIELDS
        if unknown:
            raise ValueError(f"Not annotation fields: {', '.join(sorted(unknown))}")

    def _check_invariants(self, status: GameStatus):
        bucket = self._buckets[status]

        ids = [game.id for game in bucket]
        if len(set(ids)) != len(ids):
            raise InvariantViolation(f"Duplicate ids in {status}: {ids}")

        for game in bucket:
            if game.status != status:
                raise InvariantViolation(f"Game {game.id} has status {game.status} but sits in {status}")
            if self._membership.get(game.id) != status:
                raise InvariantViolation(
                    f"Game {game.id} sits in {status} but is indexed under {self._membership.get(game.id)}")

        priorities = [game.priority for game in bucket]
        if status == PRIORITIZED_STATUS:
            if priorities != list(range(1, len(bucket) + 1)):
                raise InvariantViolation(f"Backlog priorities are not contiguous: {priorities}")
        elif any(priority is not None for priority in priorities):
            raise InvariantViolation(f"Priorities set outside the backlog in {status}: {priorities}")
