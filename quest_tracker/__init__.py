from .version import __version__
from .config import config_manager
from .constants import GameStatus, ALL_STATUSES, get_status_label, get_status_tab_name
from .logger import setup_logger
from .exceptions import (
    QuestTrackerError,
    NotFoundError,
    RangeError,
    InvalidStatusError,
    PersistenceError,
    InvariantViolation,
)
from .models import Platform, GameMetadata, TrackedGame, new_tracked_game, sort_by_release_date
from .collection_store import StatusCollectionStore
from .database import PersistenceGateway
from .game_repository import TrackedGameRepository
from .metadata import MetadataLookupPort, CachedMetadataLookup
from .sync_controller import CollectionSyncController, OperationState, SyncNotice, SyncOperation

__all__ = [
    "__version__",
    "config_manager",
    "GameStatus",
    "ALL_STATUSES",
    "get_status_label",
    "get_status_tab_name",
    "setup_logger",
    "QuestTrackerError",
    "NotFoundError",
    "RangeError",
    "InvalidStatusError",
    "PersistenceError",
    "InvariantViolation",
    "Platform",
    "GameMetadata",
    "TrackedGame",
    "new_tracked_game",
    "sort_by_release_date",
    "StatusCollectionStore",
    "PersistenceGateway",
    "TrackedGameRepository",
    "MetadataLookupPort",
    "CachedMetadataLookup",
    "CollectionSyncController",
    "OperationState",
    "SyncNotice",
    "SyncOperation",
]
