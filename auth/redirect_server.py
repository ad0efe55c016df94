from __future__ import annotations

import asyncio
import socket
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

import uvicorn
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, Response
from starlette.routing import Route

from auth.errors import RedirectTimeout
from auth.models import RedirectResult
from sakura.constants import (
    LOGGER,
    REDIRECT_HOSTS,
    REDIRECT_PATH,
    REDIRECT_PORT,
    REDIRECT_TIMEOUT_SECONDS,
)

STARTUP_POLL_SECONDS = 0.01

_PAGE_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{title}</title>
  <style>
    body {{ font-family: Arial, sans-serif; padding: 24px; }}
    .card {{ max-width: 540px; margin: 0 auto; }}
  </style>
</head>
<body>
  <div class="card">
    <h1>{heading}</h1>
    <p>{message}</p>
  </div>
</body>
</html>
"""

SUCCESS_PAGE = _PAGE_TEMPLATE.format(
    title="Authorization Complete",
    heading="Login complete",
    message="You may close this tab and return to the launcher.",
)
FAILURE_PAGE = _PAGE_TEMPLATE.format(
    title="Authorization Failed",
    heading="Login failed",
    message="Please return to the launcher and try again.",
)


class PendingRedirect:
    """Handle for one authorization redirect. Resolves at most once."""

    def __init__(self, expected_state: str, on_complete: Callable[[], Awaitable[None]]) -> None:
        self.expected_state = expected_state
        self._on_complete = on_complete
        self._future: asyncio.Future[RedirectResult] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> None:
        self._future.cancel()

    async def handle(self, request: Request) -> Response:
        # Runs on the event loop, so the check-and-resolve below cannot interleave.
        if self._future.done():
            return PlainTextResponse(
                "This sign-in attempt has already been handled.", status_code=409
            )

        params = request.query_params
        result = RedirectResult(
            code=params.get("code") or None,
            state=params.get("state") or None,
            error=params.get("error") or None,
            error_description=params.get("error_description") or None,
        )
        self._future.set_result(result)

        if result.state is not None and result.state != self.expected_state:
            LOGGER.warning("Authorization redirect state does not match this attempt.")
            status_code, page = 400, FAILURE_PAGE
        elif result.error:
            LOGGER.warning("Authorization redirect returned error=%s", result.error)
            status_code, page = 400, FAILURE_PAGE
        else:
            status_code, page = 200, SUCCESS_PAGE

        return HTMLResponse(
            page,
            status_code=status_code,
            background=BackgroundTask(self._on_complete),
        )

    async def wait(self, timeout: float = REDIRECT_TIMEOUT_SECONDS) -> RedirectResult:
        try:
            return await asyncio.wait_for(self._future, timeout)
        except asyncio.TimeoutError:
            raise RedirectTimeout(timeout) from None


class RedirectListener:
    """Single-shot loopback HTTP endpoint for the OAuth redirect.

    Every ``listen`` call builds a fresh app and server on freshly bound
    sockets and tears both down on exit, so the same port can be reused by the
    next attempt. The redirect URI names ``localhost``, which browsers may
    resolve to either loopback address: the first host is required, the
    others are served when the machine has them.
    """

    def __init__(
        self,
        *,
        hosts: tuple[str, ...] = REDIRECT_HOSTS,
        port: int = REDIRECT_PORT,
        path: str = REDIRECT_PATH,
    ) -> None:
        self.hosts = hosts
        self.port = port
        self.path = path

    def _bind_one(self, host: str) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if family == socket.AF_INET6:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            sock.bind((host, self.port))
        except OSError:
            sock.close()
            raise
        return sock

    def _bind(self) -> list[socket.socket]:
        primary, *optional = self.hosts
        sockets = [self._bind_one(primary)]
        for host in optional:
            try:
                sockets.append(self._bind_one(host))
            except OSError as error:
                LOGGER.warning("Redirect listener not serving %s:%s: %s", host, self.port, error)
        return sockets

    @asynccontextmanager
    async def listen(self, expected_state: str) -> AsyncIterator[PendingRedirect]:
        sockets = self._bind()
        try:
            async def request_exit() -> None:
                server.should_exit = True

            pending = PendingRedirect(expected_state, on_complete=request_exit)
            app = Starlette(routes=[Route(self.path, pending.handle, methods=["GET"])])
            server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=self.hosts[0],
                    port=self.port,
                    lifespan="off",
                    access_log=False,
                    log_config=None,
                )
            )
            serve_task = asyncio.create_task(server.serve(sockets=sockets))
            try:
                await self._wait_started(server, serve_task)
                LOGGER.info(
                    "Waiting for authorization redirect on http://localhost:%s%s",
                    self.port,
                    self.path,
                )
                yield pending
            finally:
                pending.cancel()
                server.should_exit = True
                if not serve_task.done():
                    await serve_task
        finally:
            for sock in sockets:
                sock.close()

    async def wait_for_redirect(
        self,
        expected_state: str,
        timeout: float = REDIRECT_TIMEOUT_SECONDS,
    ) -> RedirectResult:
        async with self.listen(expected_state) as pending:
            return await pending.wait(timeout)

    @staticmethod
    async def _wait_started(server: uvicorn.Server, serve_task: asyncio.Task) -> None:
        while not server.started:
            if serve_task.cancelled():
                raise RuntimeError("Redirect listener was cancelled before it started.")
            if serve_task.done():
                raise RuntimeError("Redirect listener stopped before it started.") from (
                    serve_task.exception()
                )
            await asyncio.sleep(STARTUP_POLL_SECONDS)
