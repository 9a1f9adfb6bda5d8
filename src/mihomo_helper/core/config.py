"""Helper configuration: defaults, optional JSON file, environment overrides."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
import logging
import os
from pathlib import Path
from typing import Any, Final, Mapping

from mihomo_helper.core.errors import ConfigError
from mihomo_helper.core.storage import get_config_path, load_json

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH: Final[str] = "/tmp/mihomo-party-helper.sock"
DEFAULT_SOCKET_MODE: Final[int] = 0o666
DEFAULT_SHUTDOWN_GRACE_S: Final[float] = 5.0
DEFAULT_REBIND_VERIFY_DELAY_S: Final[float] = 0.1

ENV_PREFIX: Final[str] = "MIHOMO_HELPER_"

_ENV_KEYS: Final[dict[str, str]] = {
    "socket_path": "SOCKET",
    "socket_mode": "SOCKET_MODE",
    "shutdown_grace_s": "SHUTDOWN_GRACE",
    "rebind_verify_delay_s": "REBIND_VERIFY_DELAY",
    "networksetup_path": "NETWORKSETUP",
    "command_timeout_s": "COMMAND_TIMEOUT",
    "log_level": "LOG_LEVEL",
}


@dataclass(frozen=True, slots=True)
class HelperConfig:
    socket_path: str = DEFAULT_SOCKET_PATH
    socket_mode: int = DEFAULT_SOCKET_MODE
    shutdown_grace_s: float = DEFAULT_SHUTDOWN_GRACE_S
    rebind_verify_delay_s: float = DEFAULT_REBIND_VERIFY_DELAY_S
    networksetup_path: str = "networksetup"
    # None means external commands may run indefinitely.
    command_timeout_s: float | None = None
    log_level: str = "INFO"


def _coerce(name: str, raw: Any) -> Any:
    try:
        if name == "socket_mode":
            if isinstance(raw, str):
                return int(raw, 8)
            if isinstance(raw, bool) or not isinstance(raw, int):
                raise TypeError(raw)
            return raw
        if name in {"shutdown_grace_s", "rebind_verify_delay_s"}:
            if isinstance(raw, bool):
                raise TypeError(raw)
            value = float(raw)
            if value < 0:
                raise ValueError(raw)
            return value
        if name == "command_timeout_s":
            if raw is None or raw == "":
                return None
            if isinstance(raw, bool):
                raise TypeError(raw)
            value = float(raw)
            if value <= 0:
                raise ValueError(raw)
            return value
        if not isinstance(raw, str) or not raw.strip():
            raise TypeError(raw)
        return raw.strip()
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Invalid value for {name}: {raw!r}",
            user_message=f"Configuration value {name} is invalid.",
        ) from exc


def _overrides_from_file(path: Path) -> dict[str, Any]:
    payload = load_json(path, default={})
    if not isinstance(payload, dict):
        logger.warning("Ignoring config file %s: expected a JSON object", path)
        return {}
    known = {f.name for f in fields(HelperConfig)}
    ignored = sorted(set(payload) - known)
    if ignored:
        logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(ignored))
    return {key: _coerce(key, value) for key, value in payload.items() if key in known}


def _overrides_from_env(env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, suffix in _ENV_KEYS.items():
        raw = env.get(ENV_PREFIX + suffix)
        if raw is not None:
            out[name] = _coerce(name, raw)
    return out


def load_config(path: Path | None = None, env: Mapping[str, str] | None = None) -> HelperConfig:
    config_path = path or get_config_path()
    env = os.environ if env is None else env

    config = HelperConfig()
    file_overrides = _overrides_from_file(config_path)
    if file_overrides:
        logger.info("Loaded config overrides from %s: %s", config_path, sorted(file_overrides))
        config = replace(config, **file_overrides)

    env_overrides = _overrides_from_env(env)
    if env_overrides:
        config = replace(config, **env_overrides)
    return config
