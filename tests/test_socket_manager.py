from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
import signal
import stat

import aiohttp
import pytest

from mihomo_helper.core.errors import SocketError
from mihomo_helper.server.routes import create_app
import mihomo_helper.server.socket_manager as sm
from mihomo_helper.server.socket_manager import SocketManager


async def _get_off(path: Path) -> tuple[int, str]:
    connector = aiohttp.UnixConnector(path=str(path))
    async with aiohttp.ClientSession(connector=connector) as session:
        async with session.get("http://localhost/off") as resp:
            return resp.status, await resp.text()


async def _wait_for(predicate, timeout_s: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout_s
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


def test_start_replaces_stale_file_and_sets_permissions(short_tmp, fake_executor) -> None:
    sock_path = short_tmp / "helper.sock"
    sock_path.write_text("stale", encoding="utf-8")

    async def scenario() -> None:
        manager = SocketManager(create_app(fake_executor()), sock_path, verify_delay_s=0)
        endpoint = await manager.start()
        try:
            assert endpoint.generation == 1
            assert stat.S_ISSOCK(sock_path.stat().st_mode)
            assert stat.S_IMODE(sock_path.stat().st_mode) == 0o666
            assert await _get_off(sock_path) == (200, "Proxy has been turned off for all services")
        finally:
            await manager.stop()
        assert not sock_path.exists()

    asyncio.run(scenario())


def test_recheck_is_noop_while_socket_exists(short_tmp, fake_executor) -> None:
    sock_path = short_tmp / "helper.sock"

    async def scenario() -> None:
        manager = SocketManager(create_app(fake_executor()), sock_path, verify_delay_s=0)
        await manager.start()
        try:
            assert await manager.recheck() is False
            assert manager.endpoint is not None and manager.endpoint.generation == 1
            assert manager.retired == ()
        finally:
            await manager.stop()

    asyncio.run(scenario())


def test_recheck_rebinds_deleted_socket(short_tmp, fake_executor) -> None:
    sock_path = short_tmp / "helper.sock"

    async def scenario() -> None:
        manager = SocketManager(create_app(fake_executor()), sock_path, verify_delay_s=0.01)
        first = await manager.start()
        try:
            sock_path.unlink()
            with pytest.raises(aiohttp.ClientConnectionError):
                await _get_off(sock_path)

            assert await manager.recheck() is True
            current = manager.endpoint
            assert current is not None and current.generation == 2
            assert manager.retired == (first,)
            assert stat.S_IMODE(sock_path.stat().st_mode) == 0o666
            assert await _get_off(sock_path) == (200, "Proxy has been turned off for all services")
        finally:
            await manager.stop()
        assert manager.retired == ()
        assert not sock_path.exists()

    asyncio.run(scenario())


def test_start_fails_when_directory_is_missing(short_tmp, fake_executor) -> None:
    sock_path = short_tmp / "missing" / "helper.sock"

    async def scenario() -> None:
        manager = SocketManager(create_app(fake_executor()), sock_path)
        with pytest.raises(SocketError):
            await manager.start()

    asyncio.run(scenario())


def test_signals_drive_rebind_and_shutdown(short_tmp, fake_executor) -> None:
    sock_path = short_tmp / "helper.sock"

    async def scenario() -> None:
        manager = SocketManager(
            create_app(fake_executor()), sock_path, shutdown_grace_s=0.5, verify_delay_s=0.01
        )
        serving = asyncio.create_task(manager.serve_until_stopped())
        await _wait_for(lambda: manager.endpoint is not None)

        sock_path.unlink()
        os.kill(os.getpid(), signal.SIGUSR1)
        await _wait_for(lambda: manager.endpoint is not None and manager.endpoint.generation == 2)
        await _wait_for(sock_path.exists)
        assert (await _get_off(sock_path))[0] == 200

        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(serving, timeout=5)
        assert manager.endpoint is None
        assert not sock_path.exists()

    asyncio.run(scenario())


def test_failed_rebind_keeps_previous_endpoint_and_retries(short_tmp, fake_executor, monkeypatch) -> None:
    sock_path = short_tmp / "helper.sock"

    def denied(_path, _mode):  # noqa: ANN001
        raise PermissionError(1, "denied")

    async def scenario() -> None:
        manager = SocketManager(create_app(fake_executor()), sock_path, verify_delay_s=0)
        first = await manager.start()
        try:
            sock_path.unlink()
            with monkeypatch.context() as patched:
                patched.setattr(sm.os, "chmod", denied)
                with pytest.raises(SocketError, match="permissions"):
                    await manager.recheck()

            assert manager.endpoint is first
            assert manager.endpoint.generation == 1
            assert manager.retired == ()
            assert not os.path.lexists(sock_path)

            assert await manager.recheck() is True
            assert manager.endpoint.generation == 2
            assert manager.retired == (first,)
            assert await _get_off(sock_path) == (200, "Proxy has been turned off for all services")
        finally:
            await manager.stop()

    asyncio.run(scenario())


def test_failed_site_start_removes_socket_file(short_tmp, fake_executor, monkeypatch) -> None:
    sock_path = short_tmp / "helper.sock"

    async def refuse(self):  # noqa: ANN001
        raise OSError(98, "cannot serve")

    async def scenario() -> None:
        manager = SocketManager(create_app(fake_executor()), sock_path, verify_delay_s=0)
        first = await manager.start()
        try:
            sock_path.unlink()
            with monkeypatch.context() as patched:
                patched.setattr(sm.web.SockSite, "start", refuse)
                with pytest.raises(SocketError, match="serve"):
                    await manager.recheck()

            assert manager.endpoint is first
            assert manager.retired == ()
            assert not os.path.lexists(sock_path)
            assert await manager.recheck() is True
        finally:
            await manager.stop()

    asyncio.run(scenario())


def test_recheck_signal_logs_failed_verification(short_tmp, fake_executor, monkeypatch, caplog) -> None:
    sock_path = short_tmp / "helper.sock"

    async def scenario() -> None:
        manager = SocketManager(create_app(fake_executor()), sock_path, verify_delay_s=0)
        await manager.start()
        try:
            sock_path.unlink()
            with monkeypatch.context() as patched:
                patched.setattr(sm.os.path, "lexists", lambda _path: False)
                await manager._recheck_from_signal()
            assert manager.endpoint is not None and manager.endpoint.generation == 2
        finally:
            await manager.stop()

    with caplog.at_level(logging.ERROR, logger="mihomo_helper.server.socket_manager"):
        asyncio.run(scenario())
    assert "Failed to recreate listener: Socket file verification failed" in caplog.text
