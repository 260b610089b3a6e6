# enrollhub/core/logging_config.py - Logging setup driven by settings
import logging
from logging.handlers import RotatingFileHandler

from enrollhub.core.config import settings

FORMATS = {
    "simple": "%(levelname)s %(name)s: %(message)s",
    "detailed": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}


def setup_logging() -> None:
    """
    Configure root logging from settings.

    Adds a console handler and, when LOG_FILE_PATH is set, a rotating file
    handler. Safe to call more than once.
    """
    level = getattr(logging, settings.LOG_LEVEL, logging.INFO)
    formatter = logging.Formatter(FORMATS.get(settings.LOG_FORMAT, FORMATS["detailed"]))

    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, "_enrollhub", False) for h in root.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler._enrollhub = True
        root.addHandler(console_handler)

        if settings.LOG_FILE_PATH:
            file_handler = RotatingFileHandler(
                settings.LOG_FILE_PATH,
                maxBytes=settings.LOG_MAX_SIZE,
                backupCount=settings.LOG_BACKUP_COUNT,
            )
            file_handler.setFormatter(formatter)
            file_handler._enrollhub = True
            root.addHandler(file_handler)

    # Suppress excessive SQLAlchemy logging outside development
    if not settings.is_development or not settings.DEV_LOG_SQL:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
