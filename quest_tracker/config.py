import os
import threading
import configparser
from enum import StrEnum
from pathlib import Path

import appdirs

from .constants import GameStatus, DEFAULT_LOADED_STATUSES
from .logger import setup_logger

logger = setup_logger()

APP_NAME = "Quest-Tracker"
APP_AUTHOR = "NextQuest"


def get_config_dir() -> str:
    """Get the directory for storing configuration and the database"""
    return appdirs.user_config_dir(APP_NAME, APP_AUTHOR)


def get_config_path() -> str:
    """Get the path for storing configuration files"""
    return os.path.join(get_config_dir(), "config.ini")


class ConfigSection(StrEnum):
    DATABASE = "Database"
    SYNC = "Sync"
    LIBRARY = "Library"


DEFAULTS = {
    ConfigSection.DATABASE: {
        "Path": "",
        "PoolSize": "3",
    },
    ConfigSection.SYNC: {
        "PersistenceTimeoutSeconds": "5.0",
        "StrictInvariants": "false",
    },
    ConfigSection.LIBRARY: {
        "DefaultStatuses": ",".join(DEFAULT_LOADED_STATUSES),
    },
}


class ConfigManager(configparser.ConfigParser):
    _instance = None
    _instance_lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        # Double-checked locking so concurrent first calls share one instance
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, "initialized"):
            super().__init__()
            self.logger = setup_logger()
            self.config_path = get_config_path()
            self.read(self.config_path)

            # Fill in missing sections/keys in memory only; save() persists them
            for section, values in DEFAULTS.items():
                if not self.has_section(section):
                    self.add_section(section)
                for key, value in values.items():
                    if key not in self[section]:
                        self[section][key] = value

            self.initialized = True

    def save(self):
        os.makedirs(os.path.dirname(self.config_path), exist_ok=True)
        with open(self.config_path, "w") as configfile:
            self.write(configfile)

    def get_db_path(self) -> Path:
        configured = self[ConfigSection.DATABASE].get("Path", "").strip()
        if configured:
            return Path(configured)
        return Path(get_config_dir()) / "games.db"

    def set_db_path(self, path: str):
        self.logger.debug(f"Updating database path to {path}.")
        self[ConfigSection.DATABASE]["Path"] = path
        self.save()

    def get_pool_size(self) -> int:
        return max(1, self.getint(ConfigSection.DATABASE, "PoolSize", fallback=3))

    def get_persistence_timeout(self) -> float:
        timeout = self.getfloat(ConfigSection.SYNC, "PersistenceTimeoutSeconds", fallback=5.0)
        if timeout <= 0:
            raise ValueError(f"PersistenceTimeoutSeconds must be positive, got {timeout}")
        return timeout

    def set_persistence_timeout(self, seconds: float):
        self[ConfigSection.SYNC]["PersistenceTimeoutSeconds"] = str(seconds)
        self.save()

    def get_strict_invariants(self) -> bool:
        return self.getboolean(ConfigSection.SYNC, "StrictInvariants", fallback=False)

    def set_strict_invariants(self, enabled: bool):
        self[ConfigSection.SYNC]["StrictInvariants"] = "true" if enabled else "false"
        self.save()

    def get_default_statuses(self) -> list[GameStatus]:
        raw = self[ConfigSection.LIBRARY].get("DefaultStatuses", "")
        statuses = []
        for value in raw.split(","):
            value = value.strip()
            if not value:
                continue
            try:
                statuses.append(GameStatus(value))
            except ValueError:
                self.logger.warning(f"Ignoring unknown status '{value}' in DefaultStatuses")
        return statuses or list(DEFAULT_LOADED_STATUSES)


config_manager = ConfigManager()
