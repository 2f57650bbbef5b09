"""Logging setup shared by the API process and scheduled jobs."""
import logging
import sys

from assessment_portal.core.settings import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging() -> logging.Logger:
    """Configure the root handler once and return the application logger."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)

    # SQLAlchemy echo is controlled separately through SQL_DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.sql_debug else logging.WARNING
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger("assessment_portal")
