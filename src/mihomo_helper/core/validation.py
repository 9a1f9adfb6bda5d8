"""Request validation.

Request-derived strings end up as arguments to external commands, so every
value is checked here before anything is executed. Validation is pure: it
never touches the system.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Final, Union
from urllib.parse import urlparse

from mihomo_helper.core.errors import ValidationError

logger = logging.getLogger(__name__)

URL_FORBIDDEN_CHARS: Final[frozenset[str]] = frozenset("&|;`$(){}[]<>\\")
# Angle brackets stay legal in hosts so the same set can be shared with
# bypass keywords such as <local>.
HOST_FORBIDDEN_CHARS: Final[frozenset[str]] = URL_FORBIDDEN_CHARS - {"<", ">"}
ALLOWED_URL_SCHEMES: Final[frozenset[str]] = frozenset({"http", "https"})

_PORT_RE = re.compile(r"\+?[0-9]+")


@dataclass(frozen=True, slots=True)
class Disable:
    pass


@dataclass(frozen=True, slots=True)
class PacMode:
    url: str


@dataclass(frozen=True, slots=True)
class GlobalMode:
    host: str
    port: str
    bypass: tuple[str, ...] = ()


ConfigurationRequest = Union[Disable, PacMode, GlobalMode]


def _contains_any(value: str, chars: frozenset[str]) -> bool:
    return any(ch in chars for ch in value)


def _is_reserved_token(token: str) -> bool:
    return len(token) >= 2 and token.startswith("<") and token.endswith(">")


def split_bypass(raw: str) -> tuple[str, ...]:
    """Split a bypass string on commas, or on spaces when no comma is present."""
    separator = "," if "," in raw else " "
    return tuple(token.strip() for token in raw.split(separator) if token.strip())


def validate_pac_url(url: str) -> PacMode:
    if _contains_any(url, URL_FORBIDDEN_CHARS):
        raise ValidationError("url contains illegal characters")
    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise ValidationError(f"url is malformed: {exc}") from exc
    if parsed.scheme not in ALLOWED_URL_SCHEMES:
        raise ValidationError("url must use http or https protocol")
    if not parsed.netloc:
        raise ValidationError("url must include a host")
    return PacMode(url=url)


def validate_bypass(raw: str) -> tuple[str, ...]:
    tokens = split_bypass(raw)
    for token in tokens:
        if _is_reserved_token(token):
            continue
        if _contains_any(token, URL_FORBIDDEN_CHARS):
            raise ValidationError(f"bypass domain contains illegal characters: {token!r}")
    return tokens


def validate_global_proxy(host: str, port: str, bypass: str = "") -> GlobalMode:
    """Validate a manual proxy endpoint and its bypass list.

    ``port`` is accepted as non-negative integer text with an optional leading
    ``+``. It is not range-checked; networksetup rejects out-of-range ports per
    service.
    """
    if not host.strip():
        raise ValidationError("host must not be empty")
    if _contains_any(host, HOST_FORBIDDEN_CHARS):
        raise ValidationError("host contains illegal characters")
    if not _PORT_RE.fullmatch(port):
        raise ValidationError("port must be numeric")
    tokens = validate_bypass(bypass)
    logger.debug("Validated global proxy %s:%s bypass=%s", host, port, list(tokens))
    return GlobalMode(host=host, port=port, bypass=tokens)
