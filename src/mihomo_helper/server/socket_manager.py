"""Lifecycle of the helper's Unix socket.

The socket file lives in a shared, world-writable location and other programs
occasionally delete it. On ``SIGUSR1`` the manager checks the path and, if
the file is gone, binds a fresh listener at the same path serving the same
application.

The superseded listener is not closed when that happens. Closing it right
next to the re-creation of the socket file races with whoever removed the
file in the first place, so retired listeners are kept until shutdown. That
costs one idle listening socket per rebind; it is no longer reachable by
path.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import shutil
import signal
import socket

from aiohttp import web

from mihomo_helper.core.config import (
    DEFAULT_REBIND_VERIFY_DELAY_S,
    DEFAULT_SHUTDOWN_GRACE_S,
    DEFAULT_SOCKET_MODE,
)
from mihomo_helper.core.errors import SocketError

logger = logging.getLogger(__name__)

RECHECK_SIGNAL = signal.SIGUSR1
STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass(frozen=True, slots=True)
class SocketEndpoint:
    path: Path
    site: web.SockSite
    sock: socket.socket
    generation: int


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)


class SocketManager:
    def __init__(
        self,
        app: web.Application,
        path: str | Path,
        *,
        mode: int = DEFAULT_SOCKET_MODE,
        shutdown_grace_s: float = DEFAULT_SHUTDOWN_GRACE_S,
        verify_delay_s: float = DEFAULT_REBIND_VERIFY_DELAY_S,
    ) -> None:
        self.path = Path(path)
        self.mode = mode
        self.verify_delay_s = verify_delay_s
        self.runner = web.AppRunner(app, handle_signals=False, shutdown_timeout=shutdown_grace_s)
        self._lock = asyncio.Lock()
        self._endpoint: SocketEndpoint | None = None
        self._retired: list[SocketEndpoint] = []
        self._generation = 0
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def endpoint(self) -> SocketEndpoint | None:
        return self._endpoint

    @property
    def retired(self) -> tuple[SocketEndpoint, ...]:
        return tuple(self._retired)

    def _discard(self, sock: socket.socket) -> None:
        sock.close()
        # Later rechecks only rebind when the path is missing.
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to remove socket file %s: %s", self.path, exc)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(str(self.path))
        except OSError as exc:
            sock.close()
            raise SocketError(f"Failed to bind socket {self.path}: {exc}") from exc
        try:
            os.chmod(self.path, self.mode)
        except OSError as exc:
            logger.error("Failed to set socket permissions on %s: %s", self.path, exc)
            self._discard(sock)
            raise SocketError(f"Failed to set socket permissions on {self.path}: {exc}") from exc
        return sock

    async def _bind(self) -> SocketEndpoint:
        sock = self._create_socket()
        site = web.SockSite(self.runner, sock)
        try:
            await site.start()
        except OSError as exc:
            self._discard(sock)
            raise SocketError(f"Failed to serve on {self.path}: {exc}") from exc
        self._generation += 1
        return SocketEndpoint(path=self.path, site=site, sock=sock, generation=self._generation)

    async def start(self) -> SocketEndpoint:
        await self.runner.setup()
        async with self._lock:
            try:
                _remove_path(self.path)
                self._endpoint = await self._bind()
            except OSError as exc:
                await self.runner.cleanup()
                raise SocketError(f"Failed to remove existing socket file {self.path}: {exc}") from exc
            except SocketError:
                await self.runner.cleanup()
                raise
        logger.info("Server started, listening on %s", self.path)
        return self._endpoint

    async def recheck(self) -> bool:
        """Rebind if the socket file has disappeared. Returns True when rebound."""
        async with self._lock:
            if self._endpoint is None:
                logger.info("Socket recheck ignored: server is not running")
                return False
            if os.path.lexists(self.path):
                logger.info("Socket file exists, no need to recreate")
                return False
            logger.warning("Socket file %s not found, recreating listener", self.path)
            await self._rebind()
            return True

    async def _rebind(self) -> None:
        previous = self._endpoint
        try:
            _remove_path(self.path)
        except OSError as exc:
            logger.error("Failed to remove socket remnants at %s: %s", self.path, exc)

        endpoint = await self._bind()
        self._endpoint = endpoint
        if previous is not None:
            self._retired.append(previous)
            logger.info(
                "Listener generation %d retired without closing; %d retired in total",
                previous.generation,
                len(self._retired),
            )
        logger.info("New listener created (generation %d)", endpoint.generation)

        await asyncio.sleep(self.verify_delay_s)
        if not os.path.lexists(self.path):
            raise SocketError(f"Socket file verification failed: {self.path} is missing")
        logger.info("Socket file verified: %s", self.path)

    async def _recheck_from_signal(self) -> None:
        logger.info("Received %s, checking socket", RECHECK_SIGNAL.name)
        try:
            await self.recheck()
        except SocketError as exc:
            logger.error("Failed to recreate listener: %s", exc)

    def request_recheck(self) -> None:
        task = asyncio.get_running_loop().create_task(self._recheck_from_signal())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def stop(self) -> None:
        async with self._lock:
            if self._endpoint is None and not self._retired:
                return
            self._endpoint = None
            # Stops every site, retired ones included, then drains in-flight
            # requests for at most shutdown_timeout seconds.
            await self.runner.cleanup()
            self._retired.clear()
            try:
                _remove_path(self.path)
            except OSError as exc:
                logger.error("Failed to remove socket file %s: %s", self.path, exc)
        logger.info("Server shutdown completed")

    async def serve_until_stopped(self) -> None:
        loop = asyncio.get_running_loop()
        stopped = asyncio.Event()
        await self.start()
        for sig in STOP_SIGNALS:
            loop.add_signal_handler(sig, stopped.set)
        loop.add_signal_handler(RECHECK_SIGNAL, self.request_recheck)
        try:
            await stopped.wait()
            logger.info("Termination signal received, shutting down")
        finally:
            for sig in (*STOP_SIGNALS, RECHECK_SIGNAL):
                loop.remove_signal_handler(sig)
            for task in list(self._pending):
                task.cancel()
            await self.stop()
