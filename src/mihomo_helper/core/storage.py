"""Storage paths and JSON helpers."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import pwd
from typing import Any, Mapping

from platformdirs import site_config_path

logger = logging.getLogger(__name__)

APP_NAME = "mihomo-party-helper"
LOG_FILE_NAME = "party.mihomo.helper.log"
CONFIG_FILE_NAME = "config.json"

FALLBACK_LOG_DIR = Path("/tmp")
USERS_ROOT = Path("/Users")
ROOT_HOME = "/var/root"

_SKIPPED_USER_DIRS = {"Shared", ".localized"}


def get_config_path() -> Path:
    return Path(site_config_path(APP_NAME)) / CONFIG_FILE_NAME


def _current_user_home() -> str | None:
    try:
        return pwd.getpwuid(os.getuid()).pw_dir
    except KeyError:
        return None


def _first_user_dir(users_root: Path) -> Path | None:
    try:
        entries = sorted(users_root.iterdir())
    except OSError:
        return None
    for entry in entries:
        if entry.is_dir() and entry.name not in _SKIPPED_USER_DIRS:
            return entry
    return None


def find_user_home(
    env: Mapping[str, str] | None = None,
    *,
    users_root: Path = USERS_ROOT,
) -> Path | None:
    """Locate the home of the desktop user the helper works for.

    The helper usually runs as root, so ``HOME`` alone points at root's home.
    ``SUDO_USER`` wins, then a non-root ``HOME``, then the passwd entry, then
    the first real account under ``/Users``.
    """
    env = os.environ if env is None else env

    sudo_user = env.get("SUDO_USER", "")
    if sudo_user:
        home = users_root / sudo_user
        logger.info("Using SUDO_USER directory: %s", home)
        return home

    home_env = env.get("HOME", "")
    if home_env and home_env != ROOT_HOME:
        logger.info("Using HOME directory: %s", home_env)
        return Path(home_env)

    passwd_home = _current_user_home()
    if passwd_home and passwd_home != ROOT_HOME:
        logger.info("Using current user directory: %s", passwd_home)
        return Path(passwd_home)

    detected = _first_user_dir(users_root)
    if detected is not None:
        logger.info("Using detected user directory: %s", detected)
        return detected

    logger.warning("Unable to determine user home directory, using %s", FALLBACK_LOG_DIR)
    return None


def get_logs_dir(env: Mapping[str, str] | None = None, *, users_root: Path = USERS_ROOT) -> Path:
    home = find_user_home(env, users_root=users_root)
    if home is None:
        return FALLBACK_LOG_DIR
    return home / "Library" / "Application Support" / "mihomo-party" / "logs"


def get_log_path(env: Mapping[str, str] | None = None, *, users_root: Path = USERS_ROOT) -> Path:
    logs_dir = get_logs_dir(env, users_root=users_root)
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        return FALLBACK_LOG_DIR / LOG_FILE_NAME
    return logs_dir / LOG_FILE_NAME


def load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except json.JSONDecodeError:
        logger.warning("Ignoring corrupt JSON file: %s", path)
        return default
