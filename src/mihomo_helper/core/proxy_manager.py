"""Apply proxy settings across every network service.

A single request is fanned out over the enumerated services one at a time.
Each service is first reset (automatic proxy, auto discovery, web, secure web
and SOCKS proxies off) and then configured for the requested mode. A failing
command ends the work for that service only; the remaining services are still
attempted and the per-service outcomes are folded into one ``ApplyReport``.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Final, Literal, Sequence

from mihomo_helper.core.errors import ApplyFailedError, ExecutionError
from mihomo_helper.core.executor import CommandExecutor
from mihomo_helper.core.logging_setup import redact
from mihomo_helper.core.validation import ConfigurationRequest, Disable, GlobalMode, PacMode

logger = logging.getLogger(__name__)

ApplyStatus = Literal["full", "partial", "failed"]


@dataclass(frozen=True, slots=True)
class _Step:
    operation: str
    args: tuple[str, ...] = ()


_RESET_STEPS: Final[tuple[_Step, ...]] = (
    _Step("-setautoproxystate", ("off",)),
    _Step("-setproxyautodiscovery", ("off",)),
    _Step("-setwebproxystate", ("off",)),
    _Step("-setsecurewebproxystate", ("off",)),
    _Step("-setsocksfirewallproxystate", ("off",)),
)


@dataclass(frozen=True, slots=True)
class _ActionText:
    verb: str
    done: str
    everywhere: str


_PAC_TEXT = _ActionText(
    verb="set PAC proxy",
    done="PAC proxy set",
    everywhere="PAC proxy has been set for all services",
)
_GLOBAL_TEXT = _ActionText(
    verb="set global proxy",
    done="Global proxy set",
    everywhere="Global proxy has been set for all services",
)
_OFF_TEXT = _ActionText(
    verb="turn off proxy",
    done="Proxy turned off",
    everywhere="Proxy has been turned off for all services",
)


@dataclass(frozen=True, slots=True)
class ApplyOutcome:
    service: str
    succeeded: bool
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class ApplyReport:
    action: str
    outcomes: tuple[ApplyOutcome, ...]
    summary_all: str
    summary_some: str

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def status(self) -> ApplyStatus:
        if self.total and self.success_count == self.total:
            return "full"
        if self.success_count > 0:
            return "partial"
        return "failed"

    @property
    def errors(self) -> list[str]:
        return [o.detail or "unknown error" for o in self.outcomes if not o.succeeded]

    @property
    def message(self) -> str:
        status = self.status
        joined = "; ".join(self.errors)
        if status == "full":
            return self.summary_all
        if status == "partial":
            return (
                f"{self.summary_some} for {self.success_count}/{self.total} services. "
                f"Some errors occurred: {joined}"
            )
        return f"Failed to {self.action} for any service: {joined}"

    def raise_for_status(self) -> ApplyReport:
        if self.status == "failed":
            raise ApplyFailedError(self.message)
        return self


def _text_for(request: ConfigurationRequest) -> _ActionText:
    if isinstance(request, PacMode):
        return _PAC_TEXT
    if isinstance(request, GlobalMode):
        return _GLOBAL_TEXT
    if isinstance(request, Disable):
        return _OFF_TEXT
    raise TypeError(f"Unsupported configuration request: {request!r}")


def _steps_for(request: ConfigurationRequest) -> list[_Step]:
    steps = list(_RESET_STEPS)
    if isinstance(request, Disable):
        return steps
    if isinstance(request, PacMode):
        steps += [
            _Step("-setautoproxyurl", (request.url,)),
            _Step("-setautoproxystate", ("on",)),
            _Step("-setproxyautodiscovery", ("on",)),
        ]
        return steps
    if isinstance(request, GlobalMode):
        endpoint = (request.host, request.port)
        steps += [
            _Step("-setwebproxy", endpoint),
            _Step("-setsecurewebproxy", endpoint),
            _Step("-setsocksfirewallproxy", endpoint),
        ]
        if request.bypass:
            steps.append(_Step("-setproxybypassdomains", tuple(request.bypass)))
        return steps
    raise TypeError(f"Unsupported configuration request: {request!r}")


def describe_request(request: ConfigurationRequest) -> str:
    if isinstance(request, PacMode):
        return f"pac url={redact(request.url)}"
    if isinstance(request, GlobalMode):
        return f"global {request.host}:{request.port} bypass={list(request.bypass)}"
    return "off"


class ProxyConfigurator:
    """Drives one ``ConfigurationRequest`` through every service."""

    def __init__(self, executor: CommandExecutor) -> None:
        self.executor = executor

    def apply_to_service(self, service: str, request: ConfigurationRequest) -> ApplyOutcome:
        text = _text_for(request)
        try:
            for step in _steps_for(request):
                self.executor.run(service, step.operation, step.args).check()
        except ExecutionError as exc:
            detail = f"Failed to {text.verb} for {service}: {exc.user_message}"
            logger.error("%s", detail)
            return ApplyOutcome(service=service, succeeded=False, detail=detail)
        logger.info("Successfully applied %s to %s", describe_request(request), service)
        return ApplyOutcome(service=service, succeeded=True)

    def apply(self, services: Sequence[str], request: ConfigurationRequest) -> ApplyReport:
        text = _text_for(request)
        outcomes: list[ApplyOutcome] = []
        for service in services:
            logger.info("Applying %s to service: %s", describe_request(request), service)
            outcomes.append(self.apply_to_service(service, request))

        report = ApplyReport(
            action=text.verb,
            outcomes=tuple(outcomes),
            summary_all=text.everywhere,
            summary_some=text.done,
        )
        log = logger.info if report.status == "full" else logger.warning
        log(
            "Apply finished status=%s succeeded=%d/%d",
            report.status,
            report.success_count,
            report.total,
        )
        return report
