"""
Process configuration from environment variables and an optional TOML file.

Environment:
    SERVER_MNEMONIC           — 25-word Algorand mnemonic (required to serve)
    HOST / PORT               — API bind address (default 127.0.0.1:3001)
    PINATA_JWT                — Pinata bearer token (client side upload)
    PURESTAKE_API_KEY         — token for the PureStake default endpoint
    DOCANCHOR_ENDPOINTS_FILE  — TOML file with [[endpoints]] tables
    DOCANCHOR_EXPLORER_URL    — transaction explorer prefix
    DOCANCHOR_PROBE_TIMEOUT   — per-endpoint liveness timeout in seconds
    DOCANCHOR_API_URL         — API base URL used by the client commands

Endpoint file format:
    [[endpoints]]
    name = "Local"
    url = "http://127.0.0.1"
    port = 4001
    token = "aaaa..."
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from docanchor import (
    API_DEFAULT_HOST,
    API_DEFAULT_PORT,
    CONFIRMATION_ROUNDS,
    DEFAULT_EXPLORER_URL,
    PROBE_TIMEOUT_SECS,
)
from docanchor.endpoints import EndpointDescriptor, default_endpoints

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Invalid configuration."""


def load_endpoints(path: str | Path) -> list[EndpointDescriptor]:
    """Load the ordered endpoint list from a TOML file."""
    path = Path(path)
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load endpoints from {path}: {e}") from e

    entries = data.get("endpoints")
    if not isinstance(entries, list) or not entries:
        raise ConfigError(f"{path} must define at least one [[endpoints]] table")
    try:
        return [EndpointDescriptor.from_dict(entry) for entry in entries]
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid endpoint in {path}: {e}") from e


@dataclass
class Settings:
    server_mnemonic: str = field(default="", repr=False)
    host: str = API_DEFAULT_HOST
    port: int = API_DEFAULT_PORT
    endpoints: list[EndpointDescriptor] = field(default_factory=default_endpoints)
    explorer_url: str = DEFAULT_EXPLORER_URL
    probe_timeout: float = PROBE_TIMEOUT_SECS
    confirmation_rounds: int = CONFIRMATION_ROUNDS

    @classmethod
    def from_env(cls) -> Settings:
        env = os.environ
        endpoints_file = env.get("DOCANCHOR_ENDPOINTS_FILE", "").strip()
        if endpoints_file:
            endpoints = load_endpoints(endpoints_file)
            logger.info("Loaded %d endpoints from %s", len(endpoints), endpoints_file)
        else:
            endpoints = default_endpoints(env.get("PURESTAKE_API_KEY", "").strip())

        try:
            port = int(env.get("PORT", API_DEFAULT_PORT))
            probe_timeout = float(env.get("DOCANCHOR_PROBE_TIMEOUT", PROBE_TIMEOUT_SECS))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        return cls(
            server_mnemonic=env.get("SERVER_MNEMONIC", ""),
            host=env.get("HOST", API_DEFAULT_HOST),
            port=port,
            endpoints=endpoints,
            explorer_url=env.get("DOCANCHOR_EXPLORER_URL", DEFAULT_EXPLORER_URL),
            probe_timeout=probe_timeout,
        )
