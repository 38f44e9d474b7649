"""Logging configuration setup."""

import copy
import logging
import logging.config
import os
import re
import sys
from datetime import datetime
from typing import Optional, Set, Tuple

from mcp_aggregator.constants import LOG_DIR

# ── Secret redaction filter ──────────────────────────────────────────────

_REDACTED = "***REDACTED***"


class SecretRedactionFilter(logging.Filter):
    """Logging filter that replaces registered secret values with a placeholder.

    Access tokens, refresh tokens and client secrets are registered as soon
    as they are acquired or loaded.
    """

    def __init__(self) -> None:
        super().__init__()
        self._secrets: Set[str] = set()
        self._pattern: Optional["re.Pattern[str]"] = None

    def register(self, value: Optional[str]) -> None:
        """Register a secret value for redaction."""
        if value and len(value) >= 4:
            self._secrets.add(value)
            escaped = sorted((re.escape(s) for s in self._secrets), key=len, reverse=True)
            self._pattern = re.compile("|".join(escaped))

    def redact(self, text: str) -> str:
        if self._pattern is None:
            return text
        return self._pattern.sub(_REDACTED, text)

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is not None:
            if isinstance(record.msg, str):
                record.msg = self.redact(record.msg)
            if record.args:
                if isinstance(record.args, dict):
                    record.args = {
                        k: self.redact(v) if isinstance(v, str) else v
                        for k, v in record.args.items()
                    }
                elif isinstance(record.args, tuple):
                    record.args = tuple(
                        self.redact(a) if isinstance(a, str) else a for a in record.args
                    )
        return True


# Module-level singleton; the auth layer registers values as it obtains them.
secret_redaction_filter = SecretRedactionFilter()

_APP_LOGGERS = (
    "mcp_aggregator",
    "mcp_aggregator.server",
    "mcp_aggregator.bridge",
    "mcp_aggregator.config",
    "mcp_aggregator.display",
    "mcp",
    "uvicorn",
    "uvicorn.error",
    "starlette",
)

BASE_LOG_CFG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple_file": {
            "format": ("%(asctime)s - %(name)25s:%(lineno)-4d - " "%(levelname)-7s - %(message)s"),
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "file_handler": {
            "class": "logging.FileHandler",
            "level": "DEBUG",
            "formatter": "simple_file",
            "filename": "temp_log_name.log",
            "encoding": "utf-8",
        },
    },
    "loggers": {
        "uvicorn.access": {
            "handlers": ["file_handler"],
            "propagate": False,
            "level": "WARNING",
        },
    },
    "root": {
        "handlers": ["file_handler"],
        "level": "WARNING",
    },
}


def build_log_config(log_fpath: str, log_lvl: str) -> dict:
    """Return the ``dictConfig`` mapping for *log_fpath* at *log_lvl*."""
    log_cfg: dict = copy.deepcopy(BASE_LOG_CFG)
    log_cfg["handlers"]["file_handler"]["filename"] = log_fpath
    for name in _APP_LOGGERS:
        log_cfg["loggers"][name] = {
            "handlers": ["file_handler"],
            "propagate": False,
            "level": log_lvl,
        }
    log_cfg["loggers"]["uvicorn.access"]["level"] = "INFO" if log_lvl == "DEBUG" else "WARNING"
    log_cfg["root"]["level"] = log_lvl if log_lvl == "DEBUG" else "WARNING"
    return log_cfg


def setup_logging(log_lvl_str: str, log_dir: str = LOG_DIR) -> Tuple[str, str]:
    """
    Set up the logging system.

    Uses a timestamped log file under *log_dir* and applies the requested
    level to the aggregator, SDK and server loggers.

    Returns:
        A tuple of (log_file_path, validated_log_level).
    """
    log_lvl_valid = log_lvl_str.upper()
    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if log_lvl_valid not in valid_levels:
        print(f"Warning: invalid log level '{log_lvl_str}'. Using 'INFO'.")
        log_lvl_valid = "INFO"

    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    os.makedirs(log_dir, exist_ok=True)
    log_fpath = os.path.join(log_dir, f"aggregator_{ts}_{log_lvl_valid}.log")

    try:
        logging.config.dictConfig(build_log_config(log_fpath, log_lvl_valid))
        for handler in logging.root.handlers:
            handler.addFilter(secret_redaction_filter)
        print(f"Logging initialized. File log level: {log_lvl_valid}, log file: {log_fpath}")
    except Exception as e_log_cfg:
        print(f"Error applying logging configuration: {e_log_cfg}", file=sys.stderr)

    return log_fpath, log_lvl_valid
