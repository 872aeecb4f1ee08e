import logging
import sys
from pathlib import Path

import appdirs

LOGGER_NAME = "QuestTracker"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def get_log_path(log_file_name: str) -> Path:
    """
    Resolve where the log file lives.
    param: log_file_name: filename to be used for the logfile.
    return: full path inside the per-user log directory.
    """
    log_dir = Path(appdirs.user_log_dir("Quest-Tracker", "NextQuest"))
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / log_file_name


def setup_logger(log_file_name="quest_tracker.log"):
    """
    Setups the initial logger.
    param: log_file_name: filename to be used for the logfile.
    return: logger instance created.
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Check if the logger has already been configured
    if not logger.handlers:
        logger.setLevel(logging.DEBUG)

        log_format = logging.Formatter(LOG_FORMAT)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(log_format)
        logger.addHandler(console_handler)

        try:
            file_handler = logging.FileHandler(get_log_path(log_file_name), encoding="utf-8")
        except OSError as e:
            logger.warning(f"File logging disabled, could not open log file: {e}")
        else:
            file_handler.setFormatter(log_format)
            logger.addHandler(file_handler)

        # Prevent propagation to avoid duplicate logs
        logger.propagate = False

    return logger


# Usage example
if __name__ == "__main__":
    logger = setup_logger()
    logger.info("This is a test log message")
    logger.info("This is a test logger.info message with an argument: %s", "test arg")
