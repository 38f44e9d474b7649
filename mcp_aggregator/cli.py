"""CLI argument parsing and main entry point.

Subcommands:

* ``mcp-aggregator serve [port]`` connects all upstreams and serves them on
  one streamable HTTP endpoint.
* ``mcp-aggregator list``         shows the configured upstream servers.
* ``mcp-aggregator logout <id>``  deletes stored OAuth credentials.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import socket
import sys
from typing import List, Optional

import uvicorn

from mcp_aggregator.bridge.auth.credentials import CredentialStore
from mcp_aggregator.bridge.auth.oauth import OAuth2Client
from mcp_aggregator.config.loader import ServerConfigStore
from mcp_aggregator.constants import (
    CONFIG_ENV_VAR,
    CREDENTIALS_ENV_VAR,
    DEFAULT_CONFIG_FILE,
    DEFAULT_CREDENTIALS_FILE,
    DEFAULT_HOST,
    DEFAULT_PORT,
    SERVER_NAME,
    SERVER_VERSION,
)
from mcp_aggregator.errors import ConfigurationError

module_logger = logging.getLogger(__name__)


def _resolve_path(cli_value: Optional[str], env_var: str, default: str) -> str:
    """CLI flag, then environment variable, then default."""
    return os.path.abspath(cli_value or os.environ.get(env_var) or default)


def parse_port(value: Optional[str]) -> int:
    """Parse a TCP port; raises :class:`ValueError` when malformed."""
    if value is None:
        return DEFAULT_PORT
    text = value.strip()
    if not text.isdigit():
        raise ValueError(f"Invalid port '{value}': must be a number.")
    port = int(text)
    if not 1 <= port <= 65535:
        raise ValueError(f"Invalid port '{value}': must be between 1 and 65535.")
    return port


def _fail(message: str) -> None:
    module_logger.error(message)
    print(f"\n❌ Error: {message}\n", file=sys.stderr)
    sys.exit(1)


# ── ``mcp-aggregator serve`` ────────────────────────────────────────────


async def _run_server(
    host: str,
    port: int,
    config_store: ServerConfigStore,
    credentials_path: str,
    log_fpath: str,
    log_lvl: str,
) -> None:
    """Async main for the ``serve`` subcommand."""
    from mcp_aggregator.server.app import create_app
    from mcp_aggregator.server.gateway import AggregationGateway

    gateway = AggregationGateway(
        config_store.cfg_fpath,
        credentials_path,
        host=host,
        port=port,
        config_store=config_store,
        log_fpath=log_fpath,
        log_level=log_lvl,
    )
    uvicorn_cfg = uvicorn.Config(
        app=create_app(gateway),
        host=host,
        port=port,
        log_config=None,
        log_level=log_lvl.lower() if log_lvl == "DEBUG" else "warning",
    )
    uvicorn_svr = uvicorn.Server(uvicorn_cfg)

    module_logger.info("Preparing to start Uvicorn server: http://%s:%s", host, port)
    try:
        await uvicorn_svr.serve()
    finally:
        module_logger.info("%s has shut down or is shutting down.", SERVER_NAME)


def _cmd_serve(args: argparse.Namespace) -> None:
    """Entry-point for ``mcp-aggregator serve``."""
    from mcp_aggregator.display.logging_config import setup_logging

    try:
        port = parse_port(args.port)
    except ValueError as exc:
        _fail(str(exc))
        return

    log_fpath, log_lvl = setup_logging(args.log_level)
    module_logger.info(
        "---- %s v%s starting (file log level: %s) ----", SERVER_NAME, SERVER_VERSION, log_lvl
    )

    config_path = _resolve_path(args.config, CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE)
    credentials_path = _resolve_path(args.credentials, CREDENTIALS_ENV_VAR, DEFAULT_CREDENTIALS_FILE)
    module_logger.info("Configuration file path resolved to: %s", config_path)

    config_store = ServerConfigStore(config_path)
    try:
        config_store.load()
    except ConfigurationError as exc:
        _fail(str(exc))
        return

    # Verify the port before connecting upstreams during lifespan startup.
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        probe.bind((args.host, port))
    except OSError as e_bind:
        _fail(f"Port {port} on {args.host} is already in use: {e_bind}")
        return
    finally:
        probe.close()

    try:
        asyncio.run(
            _run_server(args.host, port, config_store, credentials_path, log_fpath, log_lvl)
        )
    except KeyboardInterrupt:
        module_logger.info("%s interrupted by KeyboardInterrupt.", SERVER_NAME)
    except Exception as e_fatal:
        module_logger.exception("%s encountered an uncaught fatal error: %s", SERVER_NAME, e_fatal)
        sys.exit(1)
    module_logger.info("%s application finished.", SERVER_NAME)


# ── ``mcp-aggregator list`` ─────────────────────────────────────────────


def _cmd_list(args: argparse.Namespace) -> None:
    config_path = _resolve_path(args.config, CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE)
    try:
        descriptors = ServerConfigStore(config_path).load_all()
    except ConfigurationError as exc:
        _fail(str(exc))
        return

    if not descriptors:
        print(f"No upstream servers configured in {config_path}.")
        return
    print(f"Configured upstream servers ({config_path}):")
    for d in descriptors:
        transport = d.transport
        target = getattr(transport, "url", None) or getattr(transport, "command", "")
        auth = getattr(transport, "auth", "none")
        print(f"  {d.id:<20} {d.display_name:<24} {d.transport_type:<16} auth={auth:<7} {target}")


# ── ``mcp-aggregator logout`` ───────────────────────────────────────────


def _cmd_logout(args: argparse.Namespace) -> None:
    credentials_path = _resolve_path(args.credentials, CREDENTIALS_ENV_VAR, DEFAULT_CREDENTIALS_FILE)
    client = OAuth2Client(args.upstream_id, CredentialStore(credentials_path))
    try:
        removed = asyncio.run(client.clear_credentials())
    except OSError as exc:
        _fail(f"Unable to update credential file {credentials_path}: {exc}")
        return
    if removed:
        print(f"✓ Credentials cleared for '{args.upstream_id}'.")
    else:
        print(f"No stored credentials for '{args.upstream_id}'.")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser with serve/list/logout subcommands."""
    parser = argparse.ArgumentParser(
        prog="mcp-aggregator",
        description=f"{SERVER_NAME} v{SERVER_VERSION}",
    )
    subparsers = parser.add_subparsers(dest="command")

    # ── serve ───────────────────────────────────────────────────
    sp_serve = subparsers.add_parser("serve", help="Run the aggregation gateway")
    sp_serve.add_argument(
        "port",
        nargs="?",
        default=None,
        help=f"Port to listen on (default: {DEFAULT_PORT})",
    )
    sp_serve.add_argument(
        "--host",
        type=str,
        default=DEFAULT_HOST,
        help=f"Host address (default: {DEFAULT_HOST})",
    )
    sp_serve.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Set file logging level (default: info)",
    )
    sp_serve.set_defaults(func=_cmd_serve)

    # ── list ────────────────────────────────────────────────────
    sp_list = subparsers.add_parser("list", help="List configured upstream servers")
    sp_list.set_defaults(func=_cmd_list)

    # ── logout ──────────────────────────────────────────────────
    sp_logout = subparsers.add_parser("logout", help="Delete stored OAuth credentials")
    sp_logout.add_argument("upstream_id", help="Upstream server id")
    sp_logout.set_defaults(func=_cmd_logout)

    for sp in (sp_serve, sp_list, sp_logout):
        sp.add_argument(
            "--config",
            type=str,
            default=None,
            metavar="PATH",
            help=f"Upstream server list (default: ${CONFIG_ENV_VAR} or {DEFAULT_CONFIG_FILE})",
        )
        sp.add_argument(
            "--credentials",
            type=str,
            default=None,
            metavar="PATH",
            help=(
                f"OAuth credential file (default: ${CREDENTIALS_ENV_VAR} "
                f"or {DEFAULT_CREDENTIALS_FILE})"
            ),
        )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Program entry point: parse arguments and dispatch to subcommand."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)
    else:
        args.func(args)
