"""
evoucher_config -- YAML configuration for the e-voucher engine.

Responsibility:
    Builds ``VoucherConfig`` and ``ReportingConfig`` from a configuration
    set (default ``sets/default.yaml``).  Services receive config objects;
    they never read files themselves.

Failure modes:
    - ``FileNotFoundError`` for a missing configuration file.
    - ``ValueError`` from the config dataclasses for invalid values.
    - ``TypeError`` for unknown keys in a section.
"""

from __future__ import annotations

from pathlib import Path

from evoucher_config.loader import compute_checksum, load_yaml_file, section
from evoucher_kernel.logging_config import get_logger
from evoucher_modules.reporting.config import ReportingConfig
from evoucher_modules.vouchers.config import VoucherConfig

logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_PATH = _DEFAULT_CONFIG_DIR / "default.yaml"


def _load(path: Path | None) -> dict:
    path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)
    logger.info(
        "EVOUCHER_CONFIG_TRACE",
        extra={
            "config_path": str(path),
            "config_id": data.get("config_id"),
            "config_version": data.get("version"),
            "checksum": compute_checksum(data),
        },
    )
    return data


def load_voucher_config(path: Path | None = None) -> VoucherConfig:
    """Voucher lifecycle and reconciliation settings from ``path``."""
    return VoucherConfig.from_dict(section(_load(path), "vouchers"))


def load_reporting_config(path: Path | None = None) -> ReportingConfig:
    """Report entity, currency and balance tolerance from ``path``."""
    return ReportingConfig.from_dict(section(_load(path), "reporting"))


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "load_reporting_config",
    "load_voucher_config",
]
