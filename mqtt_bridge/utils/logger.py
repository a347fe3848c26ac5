import logging
import os
from typing import Optional


class Logger:
    """
    Process-wide logger for the bridge.

    Broker callbacks, the dispatcher, the forwarder thread and the streams all
    log through one named logger, so the LOG_LEVEL applied after the
    configuration is loaded takes effect on every thread at once.
    """

    _instance = None

    def __init__(self, log_level: str = "INFO", logger_name: Optional[str] = None):
        """
        Configure the named logger with a single console handler.

        Args:
            log_level (str): Initial level name, e.g. "INFO" or "DEBUG".
            logger_name (str, optional): Logger name. Defaults to APP_NAME, or
                "mqtt-bridge" when that is unset.
        """
        self.logger_name = logger_name or os.getenv("APP_NAME", "mqtt-bridge")
        self.logger = logging.getLogger(self.logger_name)

        # Re-running the constructor must not stack console handlers
        self.logger.handlers.clear()

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
        self.logger.addHandler(console_handler)

        self.set_level(log_level)

        self.logger.propagate = False

    def set_level(self, log_level: str) -> None:
        """Apply a level name; unknown names fall back to INFO."""
        level = getattr(logging, log_level.upper(), logging.INFO)
        self.logger.setLevel(level)
        self.logger.debug(f"Log level is now {logging.getLevelName(level)}")

    @classmethod
    def get_logger(cls, log_level: str = "INFO") -> logging.Logger:
        """
        Return the bridge logger, configuring it on first use.

        Modules call this at import time, before LOG_LEVEL has been read, so
        the first call always starts at INFO unless told otherwise.
        """
        if cls._instance is None:
            cls._instance = Logger(log_level=log_level)
        return cls._instance.logger

    @classmethod
    def update_level(cls, log_level: str) -> None:
        """Switch the bridge logger to the configured LOG_LEVEL."""
        if cls._instance is None:
            cls.get_logger(log_level=log_level)
        else:
            cls._instance.set_level(log_level)


logger = Logger.get_logger()
