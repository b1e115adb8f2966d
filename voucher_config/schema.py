"""
Engine configuration schema.

Frozen dataclasses parsed from YAML by ``voucher_config.loader``.  Defaults
match the packaged ``defaults.yaml``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_SECRET_ENV = "VOUCHER_SIGNING_SECRET"


@dataclass(frozen=True)
class CodecConfig:
    """Where the signing secret comes from.

    ``secret`` is filled in by ``get_active_config()``; it is excluded from
    ``repr`` and equality so it never shows up in logs or diffs.
    """

    secret_env: str = DEFAULT_SECRET_ENV
    dev_secret: str | None = field(default=None, repr=False, compare=False)
    secret: str | None = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class BatchConfig:
    chunk_size: int = 1000
    workers: int = 1
    chunk_pause_seconds: float = 0.0


@dataclass(frozen=True)
class ShareLinkConfig:
    default_expiry_hours: int = 24
    max_expiry_hours: int = 168


@dataclass(frozen=True)
class SerialConfig:
    max_attempts: int = 5


@dataclass(frozen=True)
class DatabaseConfig:
    url: str | None = None
    echo: bool = False


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration."""

    config_id: str
    version: int
    codec: CodecConfig = field(default_factory=CodecConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    share_links: ShareLinkConfig = field(default_factory=ShareLinkConfig)
    serials: SerialConfig = field(default_factory=SerialConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    checksum: str = ""
