import logging
import os
from logging.config import dictConfig

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
CHATTY_CLIENT_LOGGERS = ("httpx", "httpcore", "openai")


def configure_logging() -> None:
    """Configure process logging from LEARNING_GPS_* environment flags.

    ``LEARNING_GPS_TELEMETRY_LOG_LEVEL`` controls the ``TELEMETRY {...}`` lines
    separately so event logs can be silenced without hiding planner logs.
    """
    level = os.getenv("LEARNING_GPS_LOG_LEVEL", "INFO").upper()
    telemetry_level = os.getenv("LEARNING_GPS_TELEMETRY_LOG_LEVEL", level).upper()
    debug_http = os.getenv("LEARNING_GPS_DEBUG_HTTP", "0") == "1"
    client_level = "DEBUG" if debug_http else "WARNING"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "planner": {"format": DEFAULT_LOG_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "planner",
                },
            },
            "root": {"handlers": ["console"], "level": level},
            "loggers": {
                "learning_gps": {"level": level},
                "learning_gps.telemetry": {"level": telemetry_level},
                **{name: {"level": client_level} for name in CHATTY_CLIENT_LOGGERS},
            },
        }
    )

    if debug_http:
        logging.getLogger("uvicorn.access").setLevel(logging.DEBUG)
