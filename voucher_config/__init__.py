"""
voucher_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settings.
    It loads the packaged ``defaults.yaml`` (or a caller-supplied file),
    validates it, and resolves the signing secret from the environment.

Invariants enforced:
    - The signing secret is resolved exactly once per call, from the
      supplied environment mapping, and is never logged.
    - A configuration without a resolvable secret is rejected.

Audit relevance:
    Every successful call logs ``voucher_config_loaded`` with the config id,
    version and checksum.  The checksum excludes secret material.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path
from typing import Mapping

from voucher_config.loader import load_yaml_file, parse_engine_config
from voucher_config.schema import (
    BatchConfig,
    CodecConfig,
    DatabaseConfig,
    EngineConfig,
    SerialConfig,
    ShareLinkConfig,
)
from voucher_kernel.exceptions import ConfigurationError
from voucher_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
    require_secret: bool = True,
) -> EngineConfig:
    """Load, validate and return the engine configuration.

    Args:
        path: YAML document to load.  Defaults to the packaged defaults.
        environ: Environment mapping for secret lookup.  Defaults to
            ``os.environ``.
        require_secret: False for tooling that never signs or verifies
            (schema creation); ``codec.secret`` is then None when unset.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ConfigurationError: Invalid values or no signing secret.
    """
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_engine_config(load_yaml_file(source))

    env = os.environ if environ is None else environ
    secret = env.get(config.codec.secret_env) or config.codec.dev_secret
    if not secret and require_secret:
        raise ConfigurationError(
            "codec.secret",
            f"environment variable {config.codec.secret_env} is not set",
        )
    if config.codec.dev_secret and not env.get(config.codec.secret_env):
        logger.warning(
            "voucher_config_dev_secret_in_use",
            extra={"config_id": config.config_id},
        )

    config = replace(config, codec=replace(config.codec, secret=secret or None))
    logger.info(
        "voucher_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(source),
        },
    )
    return config


__all__ = [
    "BatchConfig",
    "CodecConfig",
    "DatabaseConfig",
    "EngineConfig",
    "SerialConfig",
    "ShareLinkConfig",
    "get_active_config",
]
