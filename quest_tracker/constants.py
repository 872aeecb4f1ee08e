from enum import StrEnum


class GameStatus(StrEnum):
    ONGOING = "ongoing"
    BACKLOG = "backlog"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    UNDISCOVERED = "undiscovered"
    DROPPED = "dropped"


# Bucket order used for display and for lock/queue ordering
ALL_STATUSES = (
    GameStatus.ONGOING,
    GameStatus.BACKLOG,
    GameStatus.COMPLETED,
    GameStatus.ON_HOLD,
    GameStatus.UNDISCOVERED,
    GameStatus.DROPPED,
)

# Only this bucket carries a persisted priority
PRIORITIZED_STATUS = GameStatus.BACKLOG

# Status written by "remove": the game stops being tracked but its row and
# cached metadata are kept so it can be rediscovered later
UNTRACKED_STATUS = GameStatus.UNDISCOVERED

DEFAULT_NEW_GAME_STATUS = GameStatus.BACKLOG

DEFAULT_LOADED_STATUSES = (
    GameStatus.ONGOING,
    GameStatus.BACKLOG,
    GameStatus.COMPLETED,
)

STATUS_LABELS = {
    GameStatus.ONGOING: "Ongoing",
    GameStatus.BACKLOG: "Backlog",
    GameStatus.COMPLETED: "Completed",
    GameStatus.ON_HOLD: "On Hold",
    GameStatus.UNDISCOVERED: "Undiscovered",
    GameStatus.DROPPED: "Dropped",
}

STATUS_TAB_NAMES = {
    GameStatus.ONGOING: "Ongoing",
    GameStatus.BACKLOG: "Backlog",
    GameStatus.COMPLETED: "Completed",
    GameStatus.ON_HOLD: "On Hold",
    GameStatus.UNDISCOVERED: "Discover",
    GameStatus.DROPPED: "Dropped",
}


def get_status_label(status: GameStatus) -> str:
    return STATUS_LABELS.get(status, str(status))


def get_status_tab_name(status: GameStatus) -> str:
    return STATUS_TAB_NAMES.get(status, STATUS_LABELS[GameStatus.ONGOING])
