"""Ephemeral HTTP listener on 127.0.0.1 for one OAuth redirect.

The listener is a FastAPI app served by an embedded uvicorn server on a socket
bound here, so the OS-assigned port is known before the auth URL is built.
Every request, whatever its method or path, goes to one handler.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from collections.abc import Awaitable, Callable, Iterator

import uvicorn
from fastapi import FastAPI, Request, Response

_log = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
_STARTUP_POLL_SECONDS = 0.01
_SHUTDOWN_TIMEOUT_SECONDS = 5.0
_ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

CallbackHandler = Callable[[Request], Awaitable[Response]]


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to its host."""

    def install_signal_handlers(self) -> None:
        return None

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def _build_app(handler: CallbackHandler) -> FastAPI:
    app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)

    @app.api_route("/{path:path}", methods=_ALL_METHODS, include_in_schema=False)
    async def _dispatch(request: Request, path: str) -> Response:
        return await handler(request)

    return app


class LoopbackListener:
    def __init__(self, handler: CallbackHandler, *, port: int = 0) -> None:
        self._handler = handler
        self._requested_port = port
        self._port: int | None = None
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def port(self) -> int | None:
        return self._port

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> int:
        """Bind, start serving, and return the bound port."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((LOOPBACK_HOST, self._requested_port))
        except OSError:
            sock.close()
            raise
        self._port = sock.getsockname()[1]
        config = uvicorn.Config(
            _build_app(self._handler),
            lifespan="off",
            log_level="warning",
            access_log=False,
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))
        while not self._server.started:
            if self._task.done():
                sock.close()
                await self._task
                raise OSError("loopback listener exited during startup")
            await asyncio.sleep(_STARTUP_POLL_SECONDS)
        _log.debug("Loopback listener started on port %s", self._port)
        return self._port

    def request_close(self) -> None:
        """Ask the server to stop once in-flight requests finish."""
        if self._server is not None:
            self._server.should_exit = True

    async def close(self, timeout: float = _SHUTDOWN_TIMEOUT_SECONDS) -> None:
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except TimeoutError:
            self._server.force_exit = True
            await self._task
        _log.debug("Loopback listener on port %s closed", self._port)
