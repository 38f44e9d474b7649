"""Single-use local listener for the OAuth 2.0 authorization callback.

The listener is a tiny Starlette app served by uvicorn on the loopback
address.  It resolves exactly once, with the authorization code or with
one of :class:`AuthorizationDenied`, :class:`StateMismatch` or
:class:`MissingCode`, and is always torn down when the ``async with``
block exits.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import sys
import webbrowser
from html import escape
from typing import Iterator, Optional

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse
from starlette.routing import Route

from mcp_aggregator.constants import (
    OAUTH_CALLBACK_BIND,
    OAUTH_CALLBACK_PATH,
    OAUTH_CALLBACK_PORT,
    OAUTH_CALLBACK_TIMEOUT,
)
from mcp_aggregator.errors import (
    AuthError,
    AuthorizationDenied,
    AuthorizationTimeout,
    MissingCode,
    StateMismatch,
)

logger = logging.getLogger(__name__)

_SUCCESS_PAGE = (
    "<h1>Authorization successful!</h1>"
    "<p>You can close this window and return to the terminal.</p>"
)


class _CallbackServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the hosting process."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        pass


def open_browser(url: str) -> None:
    """Open *url* in the default browser, best effort.

    The URL is always printed so the user can complete the flow manually.
    """
    print("\n🔐 Opening browser for authorization...", file=sys.stderr)
    print("If the browser does not open, visit this URL:", file=sys.stderr)
    print(url, file=sys.stderr)
    try:
        if not webbrowser.open(url):
            logger.warning("No browser available to open the authorization URL.")
    except Exception as exc:
        logger.warning("Failed to open browser: %s", exc)


class CallbackListener:
    """Wait for one OAuth redirect on ``http://<host>:<port><path>``."""

    def __init__(
        self,
        expected_state: str,
        *,
        host: str = OAUTH_CALLBACK_BIND,
        port: int = OAUTH_CALLBACK_PORT,
        path: str = OAUTH_CALLBACK_PATH,
        timeout: float = OAUTH_CALLBACK_TIMEOUT,
    ) -> None:
        self.expected_state = expected_state
        self.host = host
        self.port = port
        self.path = path
        self.timeout = timeout
        self.app = Starlette(routes=[Route(path, self._handle_callback, methods=["GET"])])
        self._result: Optional[asyncio.Future] = None
        self._server: Optional[_CallbackServer] = None
        self._serve_task: Optional[asyncio.Task] = None

    def _arm(self) -> asyncio.Future:
        if self._result is None:
            self._result = asyncio.get_running_loop().create_future()
        return self._result

    async def _handle_callback(self, request: Request) -> HTMLResponse:
        result = self._arm()
        if result.done():
            return HTMLResponse("<h1>Authorization already handled</h1>", status_code=409)

        params = request.query_params
        error = params.get("error")
        if error:
            description = params.get("error_description", "")
            result.set_exception(
                AuthorizationDenied(f"Authorization failed: {error} - {description}")
            )
            return HTMLResponse(
                f"<h1>Authorization failed</h1><p>{escape(error)}: {escape(description)}</p>"
            )

        if params.get("state") != self.expected_state:
            result.set_exception(StateMismatch("State parameter mismatch"))
            return HTMLResponse("<h1>Invalid state parameter</h1>")

        code = params.get("code")
        if not code:
            result.set_exception(MissingCode("Missing authorization code"))
            return HTMLResponse("<h1>Missing authorization code</h1>")

        result.set_result(code)
        return HTMLResponse(_SUCCESS_PAGE)

    async def __aenter__(self) -> "CallbackListener":
        self._arm()

        # uvicorn exits the process when it cannot bind, so probe first.
        probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            probe.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            probe.bind((self.host, self.port))
        except OSError as exc:
            raise AuthError(
                f"Cannot start OAuth callback listener on {self.host}:{self.port}: {exc}"
            ) from exc
        finally:
            probe.close()

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_config=None,
            log_level="warning",
            lifespan="off",
        )
        self._server = _CallbackServer(config)
        self._serve_task = asyncio.create_task(self._server.serve(), name="oauth_callback_server")
        while not self._server.started:
            if self._serve_task.done():
                raise AuthError(f"OAuth callback listener on port {self.port} stopped unexpectedly.")
            await asyncio.sleep(0.05)
        logger.info(
            "✓ Callback server started on http://%s:%s%s", self.host, self.port, self.path
        )
        return self

    async def wait_for_code(self) -> str:
        """Suspend until the callback resolves or the timeout elapses."""
        result = self._arm()
        try:
            return await asyncio.wait_for(asyncio.shield(result), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise AuthorizationTimeout(
                f"No authorization callback received within {self.timeout:.0f}s"
            ) from None

    async def __aexit__(self, *exc_info: object) -> None:
        if self._result is not None and not self._result.done():
            self._result.cancel()
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await self._serve_task
            except Exception:
                logger.warning("OAuth callback listener did not stop cleanly.", exc_info=True)
            logger.debug("Callback server on port %s closed.", self.port)
        self._server = None
        self._serve_task = None
