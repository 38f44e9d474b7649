"""Configuration file loading and validation.

Loads the persisted list of upstream descriptors from JSON (the
``mcp-servers.json`` format) or YAML, expands ``${ENV_VAR}`` placeholders
and validates every entry against :class:`UpstreamDescriptor`.

A file that cannot be read or parsed is fatal (:class:`ConfigurationError`).
An individual invalid entry is logged and skipped so that one bad
descriptor never prevents the other upstreams from being served.
"""

import json
import logging
import os
import re
import time
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from mcp_aggregator.config.schema import UpstreamDescriptor
from mcp_aggregator.errors import ConfigurationError

logger = logging.getLogger(__name__)

_YAML_EXTS = frozenset({".yaml", ".yml"})

# Regex for ${VAR_NAME}, captures the variable name inside ${}
_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")


def expand_env_vars(value: Any) -> Any:
    """Recursively expand ``${VAR}`` references in string values.

    - If the env var is not set, the placeholder is left unchanged.
    - Non-string leaves are returned as-is.
    - Dicts and lists are walked recursively.
    """
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(
            lambda m: os.environ.get(m.group(1), m.group(0)),
            value,
        )
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value


def _read_config_file(cfg_fpath: str) -> Any:
    """Read and parse a JSON or YAML config file from *cfg_fpath*.

    Raises :class:`ConfigurationError` on I/O or parse errors.
    """
    ext = os.path.splitext(cfg_fpath)[1].lower()
    try:
        with open(cfg_fpath, "r", encoding="utf-8") as f:
            if ext in _YAML_EXTS:
                return yaml.safe_load(f)
            return json.load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(
            f"Unable to parse configuration file: {cfg_fpath}\n  {exc}"
        ) from exc
    except OSError as exc:
        raise ConfigurationError(f"Error reading configuration file: {cfg_fpath}\n  {exc}") from exc


def _raw_entries(raw_data: Any) -> List[Any]:
    """Normalise the accepted top-level shapes into a list of entries.

    Accepted shapes::

        [ {"id": "alpha", ...}, ... ]
        {"servers": [ {...}, ... ]}
        {"servers": {"alpha": {...}, ...}}
    """
    if raw_data is None:
        return []
    if isinstance(raw_data, list):
        return raw_data
    if isinstance(raw_data, dict) and "servers" in raw_data:
        servers = raw_data["servers"]
        if servers is None:
            return []
        if isinstance(servers, list):
            return servers
        if isinstance(servers, dict):
            return [
                {"id": key, **body} if isinstance(body, dict) else body
                for key, body in servers.items()
            ]
    raise ConfigurationError(
        "Top-level configuration content must be a list of server entries "
        "or a mapping with a 'servers' key."
    )


def _format_validation_errors(exc: ValidationError) -> str:
    """Format Pydantic validation errors into a readable multi-line string."""
    lines: List[str] = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        lines.append(f"  • {loc}: {err['msg']}")
    return "\n".join(lines)


def validate_descriptors(raw_data: Any) -> List[UpstreamDescriptor]:
    """Validate already-parsed configuration data.

    Invalid or duplicate entries are logged and skipped.
    """
    entries = _raw_entries(expand_env_vars(raw_data))
    validated: List[UpstreamDescriptor] = []
    seen: Dict[str, int] = {}

    for i, entry in enumerate(entries):
        label = entry.get("id", f"#{i + 1}") if isinstance(entry, dict) else f"#{i + 1}"
        if not isinstance(entry, dict):
            logger.error(
                "Configuration entry %s must be an object; got %s (skipped).",
                label,
                type(entry).__name__,
            )
            continue
        try:
            descriptor = UpstreamDescriptor.model_validate(entry)
        except ValidationError as exc:
            logger.error(
                "Invalid configuration for upstream '%s', skipped "
                "(%d error(s)):\n%s",
                label,
                len(exc.errors()),
                _format_validation_errors(exc),
            )
            continue

        if descriptor.id in seen:
            logger.error(
                "Duplicate upstream id '%s' (entry #%d); the first definition "
                "(entry #%d) is kept.",
                descriptor.id,
                i + 1,
                seen[descriptor.id] + 1,
            )
            continue

        if not descriptor.is_uri_scheme:
            logger.error(
                "Upstream id '%s' is not a valid URI scheme; its resources cannot be "
                "served (tools and prompts are unaffected).",
                descriptor.id,
            )

        seen[descriptor.id] = i
        validated.append(descriptor)
        logger.debug(
            "Upstream '%s' (type=%s) validated.", descriptor.id, descriptor.transport_type
        )

    return validated


class ServerConfigStore:
    """Persisted list of upstream descriptors.

    Validated descriptors are served from memory.  Edits (:meth:`add`,
    :meth:`remove`, :meth:`mark_used`) are applied to the raw document as
    read from disk, so ``${ENV_VAR}`` placeholders are written back
    unexpanded.
    """

    def __init__(self, cfg_fpath: str) -> None:
        self.cfg_fpath = cfg_fpath
        self._servers: Optional[Dict[str, UpstreamDescriptor]] = None
        self._raw: Any = None

    @property
    def _is_yaml(self) -> bool:
        return os.path.splitext(self.cfg_fpath)[1].lower() in _YAML_EXTS

    def load(self) -> None:
        """(Re)load descriptors from disk.

        A missing file is treated as an empty configuration.

        Raises:
            ConfigurationError: On I/O errors, parse errors, or an
                unrecognised top-level shape.
        """
        logger.debug("Loading configuration file: %s", self.cfg_fpath)
        if os.path.exists(self.cfg_fpath):
            self._raw = _read_config_file(self.cfg_fpath)
            descriptors = validate_descriptors(self._raw)
            logger.info(
                "Configuration '%s' loaded. %d upstream(s) validated.",
                self.cfg_fpath,
                len(descriptors),
            )
        else:
            logger.warning(
                "Configuration file not found: %s (no upstreams configured).", self.cfg_fpath
            )
            self._raw = []
            descriptors = []
        self._servers = {d.id: d for d in descriptors}

    def _ensure_loaded(self) -> Dict[str, UpstreamDescriptor]:
        if self._servers is None:
            self.load()
        assert self._servers is not None
        return self._servers

    def load_all(self) -> List[UpstreamDescriptor]:
        """Return all descriptors, most recently used first, then newest."""
        servers = self._ensure_loaded()

        def sort_key(d: UpstreamDescriptor) -> tuple:
            return (d.last_used is not None, d.last_used or 0, d.created_at or 0)

        return sorted(servers.values(), key=sort_key, reverse=True)

    def get(self, upstream_id: str) -> Optional[UpstreamDescriptor]:
        return self._ensure_loaded().get(upstream_id)

    # ── Edits ────────────────────────────────────────────────────────

    def _raw_entry(self, upstream_id: str) -> Optional[Dict[str, Any]]:
        raw = self._raw
        if isinstance(raw, dict) and isinstance(raw.get("servers"), dict):
            body = raw["servers"].get(upstream_id)
            return body if isinstance(body, dict) else None
        for entry in _raw_entries(raw):
            if isinstance(entry, dict) and entry.get("id") == upstream_id:
                return entry
        return None

    def add(self, descriptor: UpstreamDescriptor) -> None:
        """Add (or replace) *descriptor* and save."""
        servers = self._ensure_loaded()
        if descriptor.created_at is None:
            descriptor = descriptor.model_copy(update={"created_at": _now_ms()})
        body = descriptor.model_dump(by_alias=True, exclude_none=True)

        self.remove(descriptor.id, save=False)
        if isinstance(self._raw, dict) and isinstance(self._raw.get("servers"), dict):
            body.pop("id")
            self._raw["servers"][descriptor.id] = body
        elif isinstance(self._raw, dict):
            self._raw.setdefault("servers", [])
            if self._raw["servers"] is None:
                self._raw["servers"] = []
            self._raw["servers"].append(body)
        else:
            self._raw = list(self._raw or [])
            self._raw.append(body)

        servers[descriptor.id] = descriptor
        self.save()
        logger.info("[%s] Upstream added to %s.", descriptor.id, self.cfg_fpath)

    def remove(self, upstream_id: str, *, save: bool = True) -> bool:
        """Remove *upstream_id*; returns ``False`` if it was not present."""
        servers = self._ensure_loaded()
        found = servers.pop(upstream_id, None) is not None
        raw = self._raw
        if isinstance(raw, dict) and isinstance(raw.get("servers"), dict):
            found = raw["servers"].pop(upstream_id, None) is not None or found
        else:
            entries = raw.get("servers") if isinstance(raw, dict) else raw
            if isinstance(entries, list):
                kept = [e for e in entries if not (isinstance(e, dict) and e.get("id") == upstream_id)]
                found = found or len(kept) != len(entries)
                entries[:] = kept
        if found and save:
            self.save()
            logger.info("[%s] Upstream removed from %s.", upstream_id, self.cfg_fpath)
        return found

    def mark_used(self, upstream_id: str) -> None:
        """Record the current time as ``lastUsed`` for *upstream_id*.

        JSON documents are saved.  YAML documents are only updated in memory:
        :meth:`save` cannot keep their comments, so only explicit edits
        (:meth:`add`, :meth:`remove`) rewrite them.
        """
        servers = self._ensure_loaded()
        descriptor = servers.get(upstream_id)
        entry = self._raw_entry(upstream_id)
        if descriptor is None or entry is None:
            return
        now = _now_ms()
        servers[upstream_id] = descriptor.model_copy(update={"last_used": now})
        entry["lastUsed"] = now
        if self._is_yaml:
            logger.debug("[%s] lastUsed kept in memory; %s left untouched.", upstream_id, self.cfg_fpath)
            return
        self.save()

    def save(self) -> None:
        """Write the raw document back in its original format."""
        parent = os.path.dirname(os.path.abspath(self.cfg_fpath))
        os.makedirs(parent, exist_ok=True)
        with open(self.cfg_fpath, "w", encoding="utf-8") as f:
            if self._is_yaml:
                yaml.safe_dump(self._raw, f, sort_keys=False)
            else:
                json.dump(self._raw, f, indent=2)
        logger.debug("Configuration saved to %s.", self.cfg_fpath)


def _now_ms() -> int:
    return int(time.time() * 1000)
