"""Running `networksetup` commands.

Everything that touches the system goes through a ``CommandExecutor`` so the
enumerator and the applier can be exercised with a recording fake.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import shlex
import shutil
import subprocess
from typing import Protocol, Sequence

from mihomo_helper.core.errors import ExecutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def detail(self) -> str:
        return self.stderr.strip() or self.stdout.strip() or f"exit status {self.returncode}"

    def check(self) -> CommandResult:
        if not self.ok:
            raise ExecutionError(
                f"Command failed: {_format_cmd(self.command)}: {self.detail}",
                user_message=self.detail,
            )
        return self


class CommandExecutor(Protocol):
    def run(
        self,
        service: str | None,
        operation: str,
        args: Sequence[str] = (),
    ) -> CommandResult: ...


def _format_cmd(cmd: Sequence[str]) -> str:
    try:
        return shlex.join(cmd)
    except Exception:
        return str(list(cmd))


class NetworkSetupExecutor:
    """Runs ``networksetup <operation> [service] [args...]`` without a shell."""

    def __init__(self, binary: str = "networksetup", *, timeout_s: float | None = None) -> None:
        self.binary = binary
        self.timeout_s = timeout_s

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def build_command(self, service: str | None, operation: str, args: Sequence[str]) -> list[str]:
        cmd = [self.binary, operation]
        if service is not None:
            cmd.append(service)
        cmd.extend(args)
        return cmd

    def run(
        self,
        service: str | None,
        operation: str,
        args: Sequence[str] = (),
    ) -> CommandResult:
        cmd = self.build_command(service, operation, args)
        command_text = _format_cmd(cmd)
        logger.info("Running command: %s", command_text)
        try:
            completed = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("Command timed out: %s", command_text)
            raise ExecutionError(
                f"Command timed out: {command_text}",
                user_message=f"timed out after {self.timeout_s}s",
            ) from exc
        except OSError as exc:
            logger.error("Command execution failed: %s: %s", command_text, exc)
            raise ExecutionError(f"Command failed: {command_text}: {exc}", user_message=str(exc)) from exc

        result = CommandResult(
            command=tuple(cmd),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if result.ok:
            logger.info("Command result rc=0 cmd=%s", command_text)
        else:
            logger.error(
                "Command failed rc=%s cmd=%s stdout=%r stderr=%r",
                result.returncode,
                command_text,
                result.stdout.strip(),
                result.stderr.strip(),
            )
        return result
