"""
Configuration Loader (``voucher_config.loader``).

Responsibility
--------------
Loads the engine YAML document and parses it into the typed
``voucher_config.schema`` dataclasses.  Runtime callers go through
``voucher_config.get_active_config()``.

Invariants enforced
-------------------
* Out-of-range values raise ``ConfigurationError`` naming the setting;
  there are no silent clamps.
* ``compute_checksum`` is deterministic and never covers secret material.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` / ``version``  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from voucher_config.schema import (
    DEFAULT_SECRET_ENV,
    BatchConfig,
    CodecConfig,
    DatabaseConfig,
    EngineConfig,
    SerialConfig,
    ShareLinkConfig,
)
from voucher_kernel.exceptions import ConfigurationError

MAX_CHUNK_SIZE = 1000

# Keys whose values must never reach a checksum or a log line.
_SECRET_KEYS = frozenset({"dev_secret", "secret"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _require(condition: bool, setting: str, reason: str) -> None:
    if not condition:
        raise ConfigurationError(setting, reason)


def parse_codec(data: dict[str, Any]) -> CodecConfig:
    secret_env = data.get("secret_env", DEFAULT_SECRET_ENV)
    _require(bool(secret_env), "codec.secret_env", "must name an environment variable")
    return CodecConfig(secret_env=secret_env, dev_secret=data.get("dev_secret"))


def parse_batch(data: dict[str, Any]) -> BatchConfig:
    config = BatchConfig(
        chunk_size=int(data.get("chunk_size", MAX_CHUNK_SIZE)),
        workers=int(data.get("workers", 1)),
        chunk_pause_seconds=float(data.get("chunk_pause_seconds", 0.0)),
    )
    _require(
        1 <= config.chunk_size <= MAX_CHUNK_SIZE,
        "batch.chunk_size", f"must be between 1 and {MAX_CHUNK_SIZE}",
    )
    _require(config.workers >= 1, "batch.workers", "must be at least 1")
    _require(config.chunk_pause_seconds >= 0, "batch.chunk_pause_seconds", "cannot be negative")
    return config


def parse_share_links(data: dict[str, Any]) -> ShareLinkConfig:
    config = ShareLinkConfig(
        default_expiry_hours=int(data.get("default_expiry_hours", 24)),
        max_expiry_hours=int(data.get("max_expiry_hours", 168)),
    )
    _require(config.max_expiry_hours >= 1, "share_links.max_expiry_hours", "must be positive")
    _require(
        1 <= config.default_expiry_hours <= config.max_expiry_hours,
        "share_links.default_expiry_hours",
        f"must be between 1 and max_expiry_hours ({config.max_expiry_hours})",
    )
    return config


def parse_serials(data: dict[str, Any]) -> SerialConfig:
    config = SerialConfig(max_attempts=int(data.get("max_attempts", 5)))
    _require(config.max_attempts >= 1, "serials.max_attempts", "must be at least 1")
    return config


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(url=data.get("url"), echo=bool(data.get("echo", False)))


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """Parse a full engine document.  Missing sections take their defaults."""
    return EngineConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        codec=parse_codec(data.get("codec") or {}),
        batch=parse_batch(data.get("batch") or {}),
        share_links=parse_share_links(data.get("share_links") or {}),
        serials=parse_serials(data.get("serials") or {}),
        database=parse_database(data.get("database") or {}),
        checksum=compute_checksum(data),
    )


def _without_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            k: _without_secrets(v) for k, v in data.items() if k not in _SECRET_KEYS
        }
    if isinstance(data, list):
        return [_without_secrets(v) for v in data]
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form, with secret keys removed."""
    canonical = json.dumps(_without_secrets(data), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
