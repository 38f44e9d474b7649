"""Starlette ASGI application factory and lifespan."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from mcp_aggregator.constants import SERVER_NAME, STREAMABLE_HTTP_PATH
from mcp_aggregator.display.console import (
    disp_console_status,
    gen_status_info,
    log_file_status,
)
from mcp_aggregator.server.gateway import AggregationGateway

logger = logging.getLogger(__name__)


class StreamableHTTPEndpoint:
    """ASGI endpoint that hands ``/mcp`` requests to the session manager."""

    def __init__(self, session_manager: StreamableHTTPSessionManager) -> None:
        self.session_manager = session_manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.session_manager.handle_request(scope, receive, send)


def _report(gateway: AggregationGateway, stage: str, status_msg: str, **kwargs: object) -> None:
    info = gen_status_info(gateway, status_msg, **kwargs)  # type: ignore[arg-type]
    disp_console_status(stage, info, is_final=stage == "Shutdown")
    log_file_status(info, logging.ERROR if kwargs.get("err_msg") else logging.INFO)


def create_app(gateway: AggregationGateway) -> Starlette:
    """Create the Starlette ASGI application serving *gateway*."""
    session_manager = StreamableHTTPSessionManager(app=gateway.mcp_server, stateless=True)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Lifespan startup: connecting upstream servers...")
        _report(gateway, "Initialization", "Connecting upstream servers...")
        try:
            await gateway.start()
            _report(
                gateway,
                "Ready",
                "Aggregator ready",
                tools=gateway.tools,
                resources=gateway.resources,
                prompts=gateway.prompts,
                conn_svrs_num=gateway.connected_upstreams,
                total_svrs_num=gateway.total_upstreams,
                failures=gateway.failures,
            )
            async with session_manager.run():
                yield
        finally:
            logger.info("Lifespan shutdown: disconnecting upstream servers...")
            await gateway.shutdown()
            _report(gateway, "Shutdown", "Aggregator stopped")

    application = Starlette(
        lifespan=lifespan,
        routes=[
            Route(
                STREAMABLE_HTTP_PATH,
                endpoint=StreamableHTTPEndpoint(session_manager),
                methods=["POST"],
            ),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Content-Type"],
            ),
        ],
    )
    application.state.gateway = gateway
    logger.info(
        "Starlette ASGI app '%s' created. Streamable HTTP on POST %s",
        SERVER_NAME,
        STREAMABLE_HTTP_PATH,
    )
    return application
