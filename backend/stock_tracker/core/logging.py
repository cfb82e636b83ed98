import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Engine echo and per-request client logs drown out ledger events.
_QUIET_LOGGERS = ("sqlalchemy", "aiosqlite", "asyncpg", "httpx", "httpcore")


def setup_logging(level: str = "INFO") -> None:
    """Send application logs to stdout; safe to call once per app instance."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    if any(getattr(handler, "_stock_tracker", False) for handler in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler._stock_tracker = True  # type: ignore[attr-defined]
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
