"""Console status output and logging setup."""

from mcp_aggregator.display.console import disp_console_status, gen_status_info, log_file_status
from mcp_aggregator.display.logging_config import secret_redaction_filter, setup_logging

__all__ = [
    "disp_console_status",
    "gen_status_info",
    "log_file_status",
    "secret_redaction_filter",
    "setup_logging",
]
