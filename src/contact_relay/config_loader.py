# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loading for the contact relay.

Two kinds of configuration are loaded once at startup:

- The origins file, a JSON object keyed by origin that yields the
  :class:`ConfigStore`.
- Process settings from environment variables, collected in
  :class:`Settings`.

Any problem raises :class:`~contact_relay.errors.StartupConfigError` so the
process never starts serving with a bad configuration.

Example:
    Origins file format (origins.json)::

        {
          "https://example.com": {
            "name": "Example",
            "toEmail": "owner@example.com",
            "smtp": {"host": "smtp.example.com", "port": 587, "secure": false,
                     "user": "relay@example.com", "pass": "secret"}
          }
        }

    Loading it::

        store = load_config_store("/etc/contact-relay/origins.json")
        store.resolve("https://example.com")
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from .errors import StartupConfigError
from .logger import get_logger
from .models import OriginConfig, describe_validation_error

logger = get_logger("config_loader")


class ConfigStore:
    """Immutable mapping from origin string to :class:`OriginConfig`.

    Built once at startup and passed to the application; lookups are O(1)
    and never mutate the store.
    """

    def __init__(self, origins: Mapping[str, OriginConfig]):
        if not origins:
            raise StartupConfigError("Config file must contain at least one origin")
        self._origins: Mapping[str, OriginConfig] = MappingProxyType(dict(origins))

    @classmethod
    def from_mapping(cls, data: Any) -> ConfigStore:
        """Validate a parsed origins document and build the store.

        Args:
            data: The decoded JSON document.

        Raises:
            StartupConfigError: If the document is not an object, an origin
                entry is incomplete or mistyped, or there are no origins.
        """
        if not isinstance(data, dict):
            raise StartupConfigError("Config file must be a JSON object")

        origins: dict[str, OriginConfig] = {}
        for origin, entry in data.items():
            if not isinstance(entry, dict):
                raise StartupConfigError(f"Config for origin {origin} must be a JSON object")
            values = dict(entry)
            if values.get("name") is None:
                values["name"] = origin
            try:
                origins[origin] = OriginConfig.model_validate(values)
            except ValidationError as exc:
                raise StartupConfigError(
                    f"Invalid config for origin {origin}: {describe_validation_error(exc)}"
                ) from None
        return cls(origins)

    @property
    def origins(self) -> Mapping[str, OriginConfig]:
        """Read-only view of the configured origins."""
        return self._origins

    def resolve(self, origin: str | None) -> OriginConfig | None:
        """Return the config bound to ``origin``, or None when unknown or absent."""
        if not origin:
            return None
        return self._origins.get(origin)

    def is_known(self, origin: str | None) -> bool:
        """Check whether ``origin`` is configured."""
        if not origin:
            return False
        return origin in self._origins

    def __contains__(self, origin: object) -> bool:
        return origin in self._origins

    def __len__(self) -> int:
        return len(self._origins)

    def __iter__(self) -> Iterator[str]:
        return iter(self._origins)


def load_config_store(config_path: str | os.PathLike[str]) -> ConfigStore:
    """Read and validate the origins file.

    Args:
        config_path: Path to the JSON origins file.

    Returns:
        The populated :class:`ConfigStore`.

    Raises:
        StartupConfigError: If the file is unreadable, not valid JSON, or
            fails validation.
    """
    path = Path(config_path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StartupConfigError(f"Failed to read config file at {path}: {exc}") from exc

    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        raise StartupConfigError(f"Invalid JSON in config file: {path}") from None

    store = ConfigStore.from_mapping(data)
    logger.info("Loaded %d origin(s) from %s", len(store), path)
    return store


@dataclass(frozen=True)
class Settings:
    """Process settings read from the environment.

    Attributes:
        config_file: Path of the origins JSON file.
        host: Interface to bind.
        port: HTTP listen port.
        log_level: Logging level name.
        log_format: ``json`` or ``text``.
        rate_limit: Requests allowed per client per window.
        rate_window_seconds: Length of a rate-limit window.
        rate_max_entries: Maximum number of client keys tracked.
        sweep_interval: Seconds between expired-entry sweeps (0 disables).
        smtp_pool_ttl: Seconds an SMTP connection may be reused; 0 opens a
            fresh transport per request.
        metrics_port: Port for the Prometheus exporter, or None.
    """

    config_file: str
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    log_format: str = "json"
    rate_limit: int = 5
    rate_window_seconds: float = 60.0
    rate_max_entries: int = 10_000
    sweep_interval: float = 60.0
    smtp_pool_ttl: int = 0
    metrics_port: int | None = None


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from environment variables.

    Environment variables:
        CONFIG_FILE: Path to the origins file (required)
        HOST: Bind address (default: 0.0.0.0)
        PORT: Listen port (default: 3000)
        LOG_LEVEL: Logging level (default: INFO)
        LOG_FORMAT: json or text (default: json)
        RELAY_RATE_LIMIT: Requests per window (default: 5)
        RELAY_RATE_WINDOW_SECONDS: Window length (default: 60)
        RELAY_RATE_MAX_ENTRIES: Tracked client keys (default: 10000)
        RELAY_SWEEP_INTERVAL: Seconds between sweeps (default: 60)
        RELAY_SMTP_POOL_TTL: SMTP connection reuse TTL (default: 0, no reuse)
        RELAY_METRICS_PORT: Prometheus exporter port (default: disabled)

    Args:
        environ: Mapping to read from; defaults to ``os.environ``.

    Raises:
        StartupConfigError: If CONFIG_FILE is missing or a numeric value
            cannot be parsed.
    """
    env = os.environ if environ is None else environ

    config_file = env.get("CONFIG_FILE")
    if not config_file:
        raise StartupConfigError("Missing required environment variable: CONFIG_FILE")

    def get_num(name: str, type_fn, default):
        raw = env.get(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            value = type_fn(raw)
        except ValueError:
            raise StartupConfigError(f"Invalid value for {name}: {raw!r}") from None
        if value < 0:
            raise StartupConfigError(f"Invalid value for {name}: {raw!r}")
        return value

    rate_max_entries = get_num("RELAY_RATE_MAX_ENTRIES", int, 10_000)
    if rate_max_entries < 1:
        raise StartupConfigError("RELAY_RATE_MAX_ENTRIES must be at least 1")

    return Settings(
        config_file=config_file,
        host=env.get("HOST") or "0.0.0.0",
        port=get_num("PORT", int, 3000),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        log_format=(env.get("LOG_FORMAT") or "json").lower(),
        rate_limit=get_num("RELAY_RATE_LIMIT", int, 5),
        rate_window_seconds=get_num("RELAY_RATE_WINDOW_SECONDS", float, 60.0),
        rate_max_entries=rate_max_entries,
        sweep_interval=get_num("RELAY_SWEEP_INTERVAL", float, 60.0),
        smtp_pool_ttl=get_num("RELAY_SMTP_POOL_TTL", int, 0),
        metrics_port=get_num("RELAY_METRICS_PORT", int, None),
    )
