import logging
import sys

from pythonjsonlogger import jsonlogger

from apollo.core.config import Settings

# loggers that flood stdout at INFO
_NOISY = ("sqlalchemy.engine", "sqlalchemy.pool", "httpx")


def configure_logging(settings: Settings) -> None:
    """
    Structured JSON logging to stdout. Extra fields passed through
    ``logger.info(..., extra={...})`` end up as top-level keys, next to
    the app name and environment.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # clear handlers if reloaded
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "name": "logger"},
            static_fields={"app": settings.app_name, "env": settings.environment},
        )
    )
    root.addHandler(handler)

    for name in ("uvicorn.access", "uvicorn.error", "apollo"):
        logging.getLogger(name).setLevel(level)
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)
