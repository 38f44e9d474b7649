"""Console status display and log-file status writing."""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from mcp import types as mcp_types

from mcp_aggregator.constants import (
    AUTHOR,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_LEVEL,
    SERVER_NAME,
    SERVER_VERSION,
    STREAMABLE_HTTP_PATH,
)

logger = logging.getLogger(__name__)


def gen_status_info(
    gateway: Optional[object],
    status_msg: str,
    tools: Optional[List[mcp_types.Tool]] = None,
    resources: Optional[List[mcp_types.Resource]] = None,
    prompts: Optional[List[mcp_types.Prompt]] = None,
    err_msg: Optional[str] = None,
    conn_svrs_num: Optional[int] = None,
    total_svrs_num: Optional[int] = None,
    failures: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Generate a structured dictionary of status information."""
    host = getattr(gateway, "host", "N/A") if gateway else "N/A"
    port = getattr(gateway, "port", 0) if gateway else 0

    info: Dict[str, Any] = {
        "ts": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        "status_msg": status_msg,
        "host": host,
        "port": port,
        "log_fpath": getattr(gateway, "log_fpath", None) or DEFAULT_LOG_FILE,
        "log_lvl_cfg": getattr(gateway, "log_level", None) or DEFAULT_LOG_LEVEL,
        "streamable_http_url": (
            f"http://{host}:{port}{STREAMABLE_HTTP_PATH}" if port else "N/A"
        ),
        "cfg_fpath": getattr(gateway, "config_path", None) or "N/A",
        "err_msg": err_msg,
        "tools": tools or [],
        "resources": resources or [],
        "prompts": prompts or [],
    }
    if tools is not None:
        info["tools_count"] = len(tools)
    if resources is not None:
        info["resources_count"] = len(resources)
    if prompts is not None:
        info["prompts_count"] = len(prompts)
    if conn_svrs_num is not None:
        info["conn_svrs_num"] = conn_svrs_num
    if total_svrs_num is not None:
        info["total_svrs_num"] = total_svrs_num
    if failures:
        info["failures"] = dict(failures)
    return info


def disp_console_status(stage: str, status_info: Dict[str, Any], is_final: bool = False) -> None:
    """Print formatted status information to the console."""
    header = f" {SERVER_NAME} v{SERVER_VERSION} (by {AUTHOR}) "
    sep_char = "="
    line_len = 70

    if not hasattr(disp_console_status, "header_printed") or is_final:
        print(f"\n{sep_char * line_len}")
        print(f"{header:-^{line_len}}")
        print(f"{sep_char * line_len}")
        if not is_final:
            disp_console_status.header_printed = True  # type: ignore[attr-defined]
        elif hasattr(disp_console_status, "header_printed"):
            delattr(disp_console_status, "header_printed")

    print(f"[{status_info['ts']}] {stage} Status: {status_info['status_msg']}")

    if not is_final and stage == "Initialization":
        print(f"    Endpoint (streamable-http): {status_info['streamable_http_url']}")
        print(f"    Config File: {os.path.basename(status_info['cfg_fpath'])}")
        print(f"    Log File: {status_info['log_fpath']} (level: {status_info['log_lvl_cfg']})")

    if "total_svrs_num" in status_info and "conn_svrs_num" in status_info:
        print(
            f"    Upstream Servers: {status_info['conn_svrs_num']} / "
            f"{status_info['total_svrs_num']} connected"
        )
    for upstream_id, cause in status_info.get("failures", {}).items():
        print(f"    ✗ {upstream_id}: {cause}")

    if "tools_count" in status_info:
        print(f"    MCP Tools: {status_info['tools_count']} loaded")
    if "resources_count" in status_info:
        print(f"    MCP Resources: {status_info['resources_count']} loaded")
    if "prompts_count" in status_info:
        print(f"    MCP Prompts: {status_info['prompts_count']} loaded")

    if status_info.get("err_msg"):
        print(f"    !! Error: {status_info['err_msg']}")

    if is_final:
        print(f"    Log File: {status_info['log_fpath']}")
        print(f"{sep_char * line_len}\n")
    else:
        print("-" * line_len)


def log_file_status(status_info: Dict[str, Any], log_lvl: int = logging.INFO) -> None:
    """Write detailed status information to the log file."""
    log_lines = [
        f"Aggregator Status Update: {status_info['status_msg']}",
        f"  Streamable HTTP URL: {status_info['streamable_http_url']}",
        f"  Config File Used: {status_info['cfg_fpath']}",
        f"  Configured File Log Level: {status_info['log_lvl_cfg']}",
        f"  Actual Log File: {status_info['log_fpath']}",
    ]
    if "total_svrs_num" in status_info and "conn_svrs_num" in status_info:
        log_lines.append(
            f"  Upstream Servers: {status_info['conn_svrs_num']}/"
            f"{status_info['total_svrs_num']} connected"
        )
    for upstream_id, cause in status_info.get("failures", {}).items():
        log_lines.append(f"  Skipped upstream '{upstream_id}': {cause}")
    if status_info.get("err_msg"):
        log_lines.append(f"  Error Details: {status_info['err_msg']}")

    for cap_type_plural, cap_key_count, cap_list_key in [
        ("Tools", "tools_count", "tools"),
        ("Resources", "resources_count", "resources"),
        ("Prompts", "prompts_count", "prompts"),
    ]:
        if cap_key_count not in status_info:
            continue
        log_lines.append(f"  Loaded MCP {cap_type_plural} ({status_info[cap_key_count]}):")
        cap_list = status_info.get(cap_list_key, [])
        if not cap_list:
            log_lines.append(f"    No {cap_list_key} loaded.")
        for item in cap_list:
            desc = item.description.strip().split("\n")[0] if item.description else "-"
            log_lines.append(f"    - {item.name}, Description: {desc}")

    logger.log(log_lvl, "\n".join(log_lines))
