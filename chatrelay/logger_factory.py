import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_CONFIGURED = False
_FULL_ENABLED = False

_PATTERN = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S%z"
_NOISY_LIBS = (
    "discord",
    "discord.http",
    "discord.gateway",
    "discord.client",
    "httpx",
    "httpcore",
    "uvicorn.access",
)


class _TzFormatter(logging.Formatter):
    def __init__(self, *args, tz: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        # tz == "UTC" forces UTC, None/"system" uses the local zone,
        # anything else is tried as an IANA name with local as fallback
        import datetime as _dt
        if tz == "UTC":
            self._tz = _dt.timezone.utc
        elif tz is None or tz == "system":
            self._tz = _dt.datetime.now().astimezone().tzinfo
        else:
            try:
                self._tz = ZoneInfo(tz)
            except ZoneInfoNotFoundError:
                self._tz = _dt.datetime.now().astimezone().tzinfo

    def formatTime(self, record, datefmt=None):
        import datetime as _dt
        dt = _dt.datetime.fromtimestamp(record.created, tz=self._tz or _dt.datetime.now().astimezone().tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat()


def _env_flag(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    return str(raw).lower() in ("1", "true", "yes", "on")


def _rotating_handler(path: str, level: int, tz: Optional[str]) -> Optional[logging.Handler]:
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        handler = RotatingFileHandler(
            filename=path,
            mode="a",
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
            delay=False,
        )
    except OSError:
        # Log files are optional; console logging still works
        return None
    handler.setLevel(level)
    handler.setFormatter(_TzFormatter(_PATTERN, tz=tz, datefmt=_DATEFMT))
    return handler


def _level_for(level: Optional[str]) -> tuple[int, bool]:
    lvl = (level or "INFO").upper()
    if lvl not in ("INFO", "DEBUG", "FULL"):
        lvl = "INFO"
    return (logging.DEBUG if lvl in ("DEBUG", "FULL") else logging.INFO), lvl == "FULL"


def configure_logging(
    level: Optional[str] = None,
    tz: Optional[str] = None,
    lib_log_level: Optional[str] = None,
    console_to_file: bool | None = None,
    error_file: bool | None = None,
    log_dir: str = "logs",
) -> None:
    global _CONFIGURED, _FULL_ENABLED
    if _CONFIGURED:
        return
    py_level, _FULL_ENABLED = _level_for(level)

    root = logging.getLogger()
    root.setLevel(py_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setLevel(py_level)
    handler.setFormatter(_TzFormatter(_PATTERN, tz=tz, datefmt=_DATEFMT))
    root.addHandler(handler)

    # LOG_CONSOLE / LOG_ERRORS in the environment override the config values
    mirror_enabled = _env_flag("LOG_CONSOLE")
    if mirror_enabled is None:
        mirror_enabled = bool(console_to_file)
    if mirror_enabled:
        general = _rotating_handler(os.path.join(log_dir, "log.log"), py_level, tz)
        if general is not None:
            root.addHandler(general)

    errors_enabled = _env_flag("LOG_ERRORS")
    if error_file is not None:
        errors_enabled = bool(error_file)
    if errors_enabled:
        err_handler = _rotating_handler(os.path.join(log_dir, "errors.log"), logging.ERROR, tz)
        if err_handler is not None:
            root.addHandler(err_handler)

    lib_level_name = lib_log_level or os.getenv("LIB_LOG_LEVEL")
    lib_level = getattr(logging, lib_level_name.upper(), logging.WARNING) if lib_level_name else logging.WARNING
    for name in _NOISY_LIBS:
        logging.getLogger(name).setLevel(lib_level)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    # Unconfigured callers (tests, scripts) get INFO text output in UTC
    if not _CONFIGURED:
        configure_logging(level="INFO", tz="UTC")
    return logging.getLogger(name)


def is_full_enabled() -> bool:
    return _FULL_ENABLED
