"""Network service discovery via ``networksetup -listnetworkserviceorder``."""

from __future__ import annotations

import logging
from typing import Final

from mihomo_helper.core.errors import EnumerationError, ExecutionError
from mihomo_helper.core.executor import CommandExecutor

logger = logging.getLogger(__name__)

LIST_SERVICES_OPERATION: Final[str] = "-listnetworkserviceorder"
DISABLED_MARKER: Final[str] = "*"


def parse_service_order(output: str) -> list[str]:
    """Extract service names, in priority order, from the service-order listing.

    Example input::

        An asterisk (*) denotes that a network service is disabled.
        (1) Wi-Fi
        (Hardware Port: Wi-Fi, Device: en0)

        (*) Thunderbolt Bridge
        (Hardware Port: Thunderbolt Bridge, Device: bridge0)
    """
    services: list[str] = []
    for line in output.splitlines():
        if not line.startswith("(") or ")" not in line or "Hardware Port:" in line:
            continue
        _, sep, remainder = line.partition(") ")
        if not sep:
            continue
        name = remainder.strip()
        if name.startswith(DISABLED_MARKER):
            name = name[len(DISABLED_MARKER):].strip()
        if not name or name == DISABLED_MARKER:
            continue
        logger.info("Found network service: %s", name)
        services.append(name)
    return services


def list_network_services(executor: CommandExecutor) -> list[str]:
    """Return the current services. Never cached: services change between calls."""
    try:
        result = executor.run(None, LIST_SERVICES_OPERATION).check()
    except ExecutionError as exc:
        raise EnumerationError(str(exc), user_message=exc.user_message) from exc

    services = parse_service_order(result.stdout)
    if not services:
        raise EnumerationError("no network services found")
    logger.info("Total network services found: %d", len(services))
    return services
