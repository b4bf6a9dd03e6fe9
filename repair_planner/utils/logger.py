# repair_planner/utils/logger.py
from __future__ import annotations
import json as _json
import logging
import logging.handlers as _handlers
import os
from pathlib import Path
from typing import Any, Dict, Optional

from repair_planner.definitions import LOG_DIR

_TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
# third-party loggers that chatter at INFO (HTTP calls to the model, SQL echo)
_QUIET_LOGGERS = ("httpx", "anthropic", "sqlalchemy.engine", "aiosqlite")


def _settings() -> Dict[str, Any]:
    """Environment overrides, read when logging is initialised."""
    return {
        "app": os.getenv("APP_NAME", "repair-planner"),
        "level": os.getenv("LOG_LEVEL", "INFO").upper(),
        "json": os.getenv("LOG_JSON", "false").lower() == "true",
        "rotation": os.getenv("LOG_ROTATION", "time"),  # "time" or "size"
        "retention_days": int(os.getenv("LOG_RETENTION_DAYS", "7")),
        "max_bytes": int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024))),
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line; message and traceback are escaped properly."""

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "pid": record.process,
            "task": getattr(record, "taskName", None),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return _json.dumps(entry, default=str)


def _file_handler(path: Path, rotation: str, settings: Dict[str, Any]) -> logging.Handler:
    if rotation == "size":
        return _handlers.RotatingFileHandler(path, maxBytes=settings["max_bytes"], backupCount=5, encoding="utf-8")
    return _handlers.TimedRotatingFileHandler(
        path, when="midnight", backupCount=settings["retention_days"], encoding="utf-8"
    )


def init_logging(
    app_name: Optional[str] = None,
    level: Optional[str] = None,
    json: Optional[bool] = None,
    to_file: bool = True,
) -> None:
    """
    Configure the root logger once per process: console always, plus a rotating
    file under LOG_DIR unless `to_file` is False. Later calls are no-ops.
    """
    if getattr(init_logging, "_configured", False):
        return

    settings = _settings()
    lvl = getattr(logging, (level or settings["level"]).upper(), logging.INFO)
    use_json = settings["json"] if json is None else json
    formatter = JsonFormatter() if use_json else logging.Formatter(_TEXT_FORMAT, "%Y-%m-%d %H:%M:%S%z")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if to_file:
        log_dir = Path(LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(_file_handler(log_dir / f"{app_name or settings['app']}.log", settings["rotation"], settings))

    root = logging.getLogger()
    root.setLevel(lvl)
    for handler in handlers:
        handler.setLevel(lvl)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    init_logging._configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """log = get_logger(__name__); initialises logging with defaults on first use."""
    if not getattr(init_logging, "_configured", False):
        init_logging()
    return logging.getLogger(name)
