import logging.config
from pathlib import Path

SECURITY_LOGGER = "security"


def build_logging_config(level: str = "INFO", log_dir: str | None = None) -> dict:
    """
    dictConfig for the API.

    - root: console (+ app.log when log_dir is given)
    - "security": its own channel (security.log), does not propagate to root
    """
    handlers = {
        "console": {
            "level": level,
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    }
    root_handlers = ["console"]
    security_handlers = ["console"]

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "level": level,
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(Path(log_dir) / "app.log"),
            "maxBytes": 1024 * 1024 * 15,
            "backupCount": 10,
            "formatter": "verbose",
            "encoding": "utf-8",
        }
        handlers["security_file"] = {
            "level": "INFO",
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(Path(log_dir) / "security.log"),
            "maxBytes": 1024 * 1024 * 15,
            "backupCount": 10,
            "formatter": "verbose",
            "encoding": "utf-8",
        }
        root_handlers.append("file")
        security_handlers = ["security_file", "console"]

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "verbose": {
                "format": "{levelname} {asctime} {name} {process:d} {thread:d} {message}",
                "style": "{",
            },
            "simple": {
                "format": "{levelname} {name} {message}",
                "style": "{",
            },
        },
        "handlers": handlers,
        "loggers": {
            SECURITY_LOGGER: {
                "handlers": security_handlers,
                "level": "INFO",
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": "WARNING",
            },
        },
        "root": {
            "handlers": root_handlers,
            "level": level,
        },
    }


def configure_logging(app) -> None:
    log_dir = app.config.get("LOG_DIR") if app.config.get("LOG_TO_FILE") else None
    logging.config.dictConfig(build_logging_config(app.config.get("LOG_LEVEL", "INFO"), log_dir))
