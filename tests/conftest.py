from __future__ import annotations

from pathlib import Path
import shutil
import tempfile
from typing import Callable, Iterator, Sequence

import pytest

from mihomo_helper.core.executor import CommandResult

FailRule = Callable[[str | None, str, tuple[str, ...]], bool]


def service_listing(*services: str) -> str:
    lines = ["An asterisk (*) denotes that a network service is disabled."]
    for index, name in enumerate(services, start=1):
        lines.append(f"({index}) {name}")
        lines.append(f"(Hardware Port: {name}, Device: en{index - 1})")
        lines.append("")
    return "\n".join(lines)


class FakeExecutor:
    """Records networksetup calls and answers them without touching the system."""

    def __init__(
        self,
        services: Sequence[str] = ("Wi-Fi", "Ethernet"),
        *,
        fail: FailRule | None = None,
        listing: str | None = None,
        listing_rc: int = 0,
    ) -> None:
        self.listing = service_listing(*services) if listing is None else listing
        self.listing_rc = listing_rc
        self.fail = fail or (lambda _service, _op, _args: False)
        self.calls: list[tuple[str | None, str, tuple[str, ...]]] = []

    def run(self, service: str | None, operation: str, args: Sequence[str] = ()) -> CommandResult:
        call = (service, operation, tuple(args))
        self.calls.append(call)
        command = ("networksetup", operation, *([service] if service else []), *args)
        if operation == "-listnetworkserviceorder":
            stderr = "listing failed" if self.listing_rc else ""
            return CommandResult(command, self.listing_rc, stdout=self.listing, stderr=stderr)
        if self.fail(*call):
            return CommandResult(command, 1, stderr=f"{operation} refused")
        return CommandResult(command, 0)

    def calls_for(self, service: str) -> list[tuple[str, tuple[str, ...]]]:
        return [(op, args) for svc, op, args in self.calls if svc == service]


@pytest.fixture
def fake_executor() -> type[FakeExecutor]:
    return FakeExecutor


@pytest.fixture
def short_tmp() -> Iterator[Path]:
    # Unix socket paths are limited to ~104 bytes; pytest's tmp_path can exceed it.
    path = Path(tempfile.mkdtemp(prefix="mh-", dir="/tmp"))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
