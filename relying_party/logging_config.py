"""
Process-wide logging setup.

Application records (`relying_party.*`) go to one file per day under
LOG_DIR; the console handler on the root logger shows everything,
uvicorn included. Session ids are bearer credentials, so every handler
masks `Bearer <token>` and sensitive headers before output.
"""

import datetime
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import Settings, settings as default_settings

APP_LOGGER_NAME = "relying_party"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
REDACTED = "***REDACTED***"

_SENSITIVE_HEADERS = {"authorization", "proxy-authorization", "cookie", "set-cookie"}
_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+")

_LOGGING_CONFIGURED = False


def sanitize_headers_for_log(headers: Mapping[str, str]) -> dict[str, str]:
    """
    Copy of `headers` safe for logging: credential-bearing headers and any
    header whose name mentions a token, session or secret are masked.
    """
    sanitized: dict[str, str] = {}
    for name, value in headers.items():
        lower = name.lower()
        if lower in _SENSITIVE_HEADERS or any(
            word in lower for word in ("token", "session", "secret", "key")
        ):
            sanitized[name] = REDACTED
        else:
            sanitized[name] = value
    return sanitized


class BearerTokenFilter(logging.Filter):
    """Masks bearer tokens that end up inside log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "Bearer" in message:
            record.msg = _BEARER_RE.sub(rf"\1{REDACTED}", message)
            record.args = None
        return True


def _resolve_timezone(name: Optional[str]) -> datetime.tzinfo:
    if name:
        try:
            return ZoneInfo(name)
        except ZoneInfoNotFoundError:
            logging.getLogger(APP_LOGGER_NAME).warning(
                "Unknown LOG_TIMEZONE %r, using local time", name
            )
    return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc


class LocalTimezoneFormatter(logging.Formatter):
    """
    Renders `asctime` in LOG_TIMEZONE (system local time when unset) as
    ISO-8601 with milliseconds.
    """

    def __init__(self, fmt: str = LOG_FORMAT, *, timezone_name: Optional[str] = None) -> None:
        super().__init__(fmt)
        self.tz = _resolve_timezone(timezone_name)

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        stamp = datetime.datetime.fromtimestamp(record.created, tz=self.tz)
        return stamp.strftime(datefmt) if datefmt else stamp.isoformat(timespec="milliseconds")


class DailyFileHandler(logging.StreamHandler):
    """
    Writes to `<log_dir>/relying-party-YYYY-MM-DD.log`, switching files at
    midnight and keeping the newest `backup_count` files.
    """

    def __init__(self, log_dir: Path, *, prefix: str = "relying-party", backup_count: int = 7) -> None:
        self.log_dir = Path(log_dir)
        self.prefix = prefix
        self.backup_count = backup_count
        self.day: Optional[datetime.date] = None
        super().__init__()
        self._open_for(datetime.date.today())

    def _open_for(self, day: datetime.date) -> None:
        if self.day is not None:
            self.stream.close()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        path = self.log_dir / f"{self.prefix}-{day.isoformat()}.log"
        self.stream = path.open("a", encoding="utf-8")
        self.day = day
        self._prune()

    def _prune(self) -> None:
        files = sorted(self.log_dir.glob(f"{self.prefix}-*.log"))
        for stale in files[: max(0, len(files) - self.backup_count)]:
            stale.unlink(missing_ok=True)

    def emit(self, record: logging.LogRecord) -> None:
        today = datetime.date.today()
        if today != self.day:
            self.acquire()
            try:
                if today != self.day:
                    self._open_for(today)
            finally:
                self.release()
        super().emit(record)

    def close(self) -> None:
        self.acquire()
        try:
            if self.stream is not None and not self.stream.closed:
                self.stream.close()
        finally:
            self.release()
        super().close()


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure logging once per process from LOG_LEVEL, LOG_TIMEZONE and
    LOG_DIR. Later calls are no-ops.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    cfg = settings or default_settings
    level = logging.getLevelName(cfg.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    formatter = LocalTimezoneFormatter(timezone_name=cfg.log_timezone)
    redact = BearerTokenFilter()

    file_handler = DailyFileHandler(Path(cfg.log_dir))
    file_handler.setFormatter(formatter)
    file_handler.addFilter(redact)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(level)
    app_logger.addHandler(file_handler)

    root = logging.getLogger()
    root.setLevel(level)
    console = next(
        (
            h
            for h in root.handlers
            if type(h) is logging.StreamHandler
        ),
        None,
    )
    if console is None:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)
    console.addFilter(redact)

    _LOGGING_CONFIGURED = True


logger = logging.getLogger(APP_LOGGER_NAME)

__all__ = [
    "APP_LOGGER_NAME",
    "BearerTokenFilter",
    "DailyFileHandler",
    "LocalTimezoneFormatter",
    "REDACTED",
    "logger",
    "sanitize_headers_for_log",
    "setup_logging",
]
