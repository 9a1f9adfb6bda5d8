"""Diagnostics collection."""

from __future__ import annotations

import os
import platform
import sys

from mihomo_helper.core.config import HelperConfig
from mihomo_helper.core.errors import EnumerationError
from mihomo_helper.core.executor import CommandExecutor, NetworkSetupExecutor
from mihomo_helper.core.services import list_network_services
from mihomo_helper.core.storage import get_config_path, get_logs_dir


def collect_diagnostics(config: HelperConfig, executor: CommandExecutor | None = None) -> str:
    executor = executor or NetworkSetupExecutor(
        config.networksetup_path, timeout_s=config.command_timeout_s
    )
    lines: list[str] = []
    lines.append("mihomo-party-helper diagnostics")
    lines.append("")

    lines.append("System")
    lines.append(f"- OS: {platform.system()} {platform.release()}")
    lines.append(f"- Arch: {platform.machine()}")
    lines.append(f"- Python: {sys.version.split()[0]}")
    lines.append(f"- Effective UID: {os.geteuid()}")
    lines.append("")

    lines.append("Tools")
    if isinstance(executor, NetworkSetupExecutor):
        available = "yes" if executor.is_available() else "no"
        lines.append(f"- {executor.binary}: {available}")
    else:
        lines.append(f"- executor: {type(executor).__name__}")
    lines.append("")

    lines.append("Paths")
    socket_state = "present" if os.path.lexists(config.socket_path) else "absent"
    lines.append(f"- Socket: {socket_state} ({config.socket_path})")
    lines.append(f"- Logs: {get_logs_dir()}")
    config_path = get_config_path()
    lines.append(f"- Config: {'present' if config_path.exists() else 'absent'} ({config_path})")
    lines.append("")

    lines.append("Network Services")
    try:
        services = list_network_services(executor)
    except EnumerationError as exc:
        lines.append(f"- Error listing services: {exc.user_message}")
    else:
        for index, service in enumerate(services, start=1):
            lines.append(f"- ({index}) {service}")
    lines.append("")

    return "\n".join(lines)
