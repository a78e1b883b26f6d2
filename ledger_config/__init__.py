"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned ``LedgerConfig``
    through their constructor (or call this entrypoint when none is
    injected); nothing else reads YAML files.

Architecture position:
    Configuration -- sits above ``ledger_kernel`` and below
    ``ledger_services`` / ``ledger_modules``.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``KeyError`` / ``ValueError`` -- schema violations.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LEDGER_CONFIG_TRACE`` log entry with the source path and checksum,
    tying ledger postings to the configuration that governed them.
"""

from __future__ import annotations

from pathlib import Path

from ledger_config.loader import load_yaml_file, parse_config
from ledger_config.schema import LedgerConfig
from ledger_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a YAML configuration file.
            Defaults to the packaged ``defaults.yaml``.

    Returns:
        LedgerConfig -- frozen runtime configuration.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value fails validation.
    """
    path = config_path or _DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path))

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "config_path": str(path),
            "checksum": config.checksum,
            "base_currency": config.base_currency,
            "account_count": len(config.accounts),
            "rate_count": len(config.exchange_rates),
        },
    )
    return config


__all__ = ["get_active_config", "LedgerConfig"]
