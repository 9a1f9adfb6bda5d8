"""Logging configuration and redaction helpers."""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from urllib.parse import urlparse

from mihomo_helper.core.storage import FALLBACK_LOG_DIR, LOG_FILE_NAME

MAX_LOG_BYTES = 2 * 1024 * 1024
BACKUP_COUNT = 5


def _open_file_handler(log_path: Path) -> tuple[RotatingFileHandler | None, Path | None]:
    for candidate in (log_path, FALLBACK_LOG_DIR / LOG_FILE_NAME):
        try:
            return (
                RotatingFileHandler(candidate, maxBytes=MAX_LOG_BYTES, backupCount=BACKUP_COUNT),
                candidate,
            )
        except OSError:
            continue
    return None, None


def setup_logging(log_path: Path, level: str = "INFO") -> Path | None:
    """Send records to a rotating log file and the console.

    Returns the file actually used, or None when only the console is available.
    """
    root = logging.getLogger()
    if root.handlers:
        return log_path

    root.setLevel(level.upper())

    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler, used_path = _open_file_handler(log_path)
    if file_handler is not None:
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if used_path is None:
        logging.getLogger(__name__).warning("Unable to open log file %s; console only", log_path)
    else:
        logging.getLogger(__name__).info("Log file initialized at: %s", used_path)
    return used_path


_URL_PATTERN = re.compile(r"\b[\w+.-]+://[^\s]+")


def _redact_url(match: re.Match[str]) -> str:
    raw = match.group(0)
    try:
        parsed = urlparse(raw)
        port = f":{parsed.port}" if parsed.port else ""
    except ValueError:
        return "<redacted>"
    if not parsed.scheme or not parsed.hostname:
        return "<redacted>"
    return f"{parsed.scheme}://{parsed.hostname}{port}"


def redact(text: str) -> str:
    """Strip credentials, paths and queries from URLs embedded in ``text``."""
    if not text:
        return text
    return _URL_PATTERN.sub(_redact_url, text)
