"""
xtracto Configuration
=====================

Runtime settings for the ERDDAP client, read from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# ============================================================================
# PATHS
# ============================================================================

PACKAGE_DIR = Path(__file__).parent.resolve()
DEFAULT_REGISTRY_PATH = PACKAGE_DIR / "data" / "erddap_datasets.csv"


def get_registry_path() -> Path:
    """Get the dataset registry table, honouring XTRACTO_REGISTRY."""
    return Path(os.environ.get("XTRACTO_REGISTRY", DEFAULT_REGISTRY_PATH))


def get_scratch_dir() -> Optional[Path]:
    """Get the directory for temporary downloads, creating it if necessary.

    Returns None when unset so the system temporary directory is used.
    """
    scratch = os.environ.get("XTRACTO_SCRATCH_DIR")
    if not scratch:
        return None
    scratch_dir = Path(scratch)
    scratch_dir.mkdir(parents=True, exist_ok=True)
    return scratch_dir


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ============================================================================
# RUNTIME CONFIGURATION
# ============================================================================

@dataclass
class Config:
    """Runtime configuration for xtracto."""

    # ERD ERDDAP server
    erddap_url: str = "https://coastwatch.pfeg.noaa.gov/erddap"

    # Timeouts
    download_timeout: float = 300.0

    # Ask the server for the current end of each time series before bounds checks
    refresh_max_time: bool = True

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        return cls(
            erddap_url=os.environ.get("XTRACTO_ERDDAP_URL", cls.erddap_url).rstrip("/"),
            download_timeout=float(os.environ.get("XTRACTO_TIMEOUT", cls.download_timeout)),
            refresh_max_time=_env_flag("XTRACTO_REFRESH_MAX_TIME", cls.refresh_max_time),
            log_level=os.environ.get("XTRACTO_LOG_LEVEL", cls.log_level).upper(),
        )


# Global config instance, built on first use
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration, reading the environment on first use."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Drop the global configuration so the environment is read again."""
    global _config
    _config = None
