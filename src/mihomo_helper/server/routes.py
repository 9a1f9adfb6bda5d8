"""HTTP routes served on the helper socket.

``POST /pac`` and ``POST /global`` take JSON bodies; ``GET /off`` takes none.
Successful and partially successful applies are plain-text 200 responses
whose ``X-Apply-Status`` header says which of the two happened. Client errors
and server errors are JSON ``{"error": ...}``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TypeVar

from aiohttp import web
import pydantic

from mihomo_helper.core.errors import (
    ApplyFailedError,
    DecodeError,
    EnumerationError,
    ValidationError,
)
from mihomo_helper.core.executor import CommandExecutor
from mihomo_helper.core.logging_setup import redact
from mihomo_helper.core.proxy_manager import ApplyReport, ProxyConfigurator, describe_request
from mihomo_helper.core.services import list_network_services
from mihomo_helper.core.validation import (
    ConfigurationRequest,
    Disable,
    validate_global_proxy,
    validate_pac_url,
)

logger = logging.getLogger(__name__)

EXECUTOR_KEY = web.AppKey("executor", CommandExecutor)

STATUS_HEADER = "X-Apply-Status"
SUCCEEDED_HEADER = "X-Apply-Succeeded"
TOTAL_HEADER = "X-Apply-Total"


class _Payload(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore", strict=True)


class PacPayload(_Payload):
    url: str = ""


class GlobalPayload(_Payload):
    host: str = ""
    port: str = ""
    bypass: str = ""


_PayloadT = TypeVar("_PayloadT", bound=_Payload)


async def _decode(request: web.Request, model: type[_PayloadT]) -> _PayloadT:
    body = await request.text()
    try:
        return model.model_validate_json(body)
    except pydantic.ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise DecodeError(f"Malformed request body: {messages}", user_message=messages) from exc


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _configure(executor: CommandExecutor, config_request: ConfigurationRequest) -> ApplyReport:
    services = list_network_services(executor)
    logger.info("Available network services: %s", services)
    return ProxyConfigurator(executor).apply(services, config_request)


async def _apply(request: web.Request, config_request: ConfigurationRequest) -> web.Response:
    executor = request.app[EXECUTOR_KEY]
    try:
        report = await asyncio.to_thread(_configure, executor, config_request)
        report.raise_for_status()
    except EnumerationError as exc:
        logger.error("Failed to get network services: %s", exc)
        return _error(500, f"Failed to get network services: {exc.user_message}")
    except ApplyFailedError as exc:
        logger.error("%s", exc)
        return _error(500, exc.user_message)

    if report.status == "partial":
        logger.warning("Encountered some errors: %s", report.errors)
    return web.Response(
        text=report.message,
        headers={
            STATUS_HEADER: report.status,
            SUCCEEDED_HEADER: str(report.success_count),
            TOTAL_HEADER: str(report.total),
        },
    )


async def set_pac(request: web.Request) -> web.Response:
    logger.info("Received PAC proxy request")
    try:
        payload = await _decode(request, PacPayload)
        logger.info("Received PAC URL: %s", redact(payload.url))
        config_request = validate_pac_url(payload.url)
    except (DecodeError, ValidationError) as exc:
        logger.warning("PAC request rejected: %s", exc)
        return _error(400, exc.user_message)
    return await _apply(request, config_request)


async def set_global(request: web.Request) -> web.Response:
    logger.info("Received global proxy request")
    try:
        payload = await _decode(request, GlobalPayload)
        config_request = validate_global_proxy(payload.host, payload.port, payload.bypass)
    except (DecodeError, ValidationError) as exc:
        logger.warning("Global proxy request rejected: %s", exc)
        return _error(400, exc.user_message)
    logger.info("Received global proxy settings: %s", describe_request(config_request))
    return await _apply(request, config_request)


async def turn_off(request: web.Request) -> web.Response:
    logger.info("Received request to turn off proxy")
    return await _apply(request, Disable())


def create_app(executor: CommandExecutor) -> web.Application:
    app = web.Application()
    app[EXECUTOR_KEY] = executor
    app.router.add_post("/pac", set_pac)
    app.router.add_post("/global", set_global)
    app.router.add_get("/off", turn_off)
    logger.info("Routes registered: POST /pac, POST /global, GET /off")
    return app
