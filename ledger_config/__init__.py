"""
Ledger configuration (``ledger_config``).

YAML-backed runtime configuration for the ledger kernel.
``get_active_config()`` is the only public entry point.
"""

from __future__ import annotations

import os
from pathlib import Path

from ledger_config.loader import load_config
from ledger_config.schema import LedgerConfig, NotifierConfig
from ledger_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"
CONFIG_PATH_ENV = "LEDGER_CONFIG_PATH"


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """
    Load the active configuration.

    Resolution order: explicit ``path``, the ``LEDGER_CONFIG_PATH``
    environment variable, then the packaged ``sets/default.yaml``.

    Raises:
        FileNotFoundError: The resolved file does not exist.
        ValueError: The file parses but holds invalid values.
    """
    resolved = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    config = load_config(resolved)
    logger.info(
        "config_loaded",
        extra={
            "config_path": str(resolved),
            "config_name": config.name,
            "config_version": config.version,
            "checksum": config.checksum,
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "LedgerConfig",
    "NotifierConfig",
    "get_active_config",
]
