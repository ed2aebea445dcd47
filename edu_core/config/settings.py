# =============================================================================
# edu_core/config/settings.py
# Application settings for storage locations and the remote authority
# =============================================================================
"""
Settings are resolved in this order:

1. Streamlit secrets, section ``[sync]`` in ``.streamlit/secrets.toml``::

       [sync]
       api_base_url = "https://example.onrender.com/api"
       data_dir = "local_data"
       request_timeout = 30
       sync_interval = 30

2. ``EDU_*`` environment variables (``EDU_API_BASE_URL``, ``EDU_DATA_DIR``,
   ``EDU_REQUEST_TIMEOUT``, ``EDU_SYNC_INTERVAL``, ``EDU_HEALTH_ENDPOINT``).
3. The defaults below.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

import streamlit as st

from edu_core.errors import ConfigurationError
from edu_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_API_BASE_URL = "https://patientkoala8765864.onrender.com/api"
DEFAULT_DATA_DIR = Path(__file__).parent.parent.parent / "local_data"

ENV_PREFIX = "EDU_"


@dataclass
class AppSettings:
    """Resolved configuration for the storage and sync layers."""
    api_base_url: str = DEFAULT_API_BASE_URL
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    request_timeout: float = 30.0
    sync_interval: float = 30.0
    health_endpoint: str = "/health"
    headers: Dict[str, str] = field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )

    @property
    def blob_db_path(self) -> Path:
        """SQLite file holding the blob namespace."""
        return self.data_dir / "blobs.db"

    @property
    def record_db_path(self) -> Path:
        """SQLite file holding the record namespace."""
        return self.data_dir / "records.db"

    @property
    def handle_dir(self) -> Path:
        """Scratch directory for transient display handles."""
        return self.data_dir / "handles"

    @property
    def log_dir(self) -> Path:
        """Directory for the rotating application log."""
        return self.data_dir / "logs"

    def with_overrides(self, **overrides: Any) -> AppSettings:
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


def _secrets_section() -> Dict[str, Any]:
    """Read the ``[sync]`` secrets section, empty when not configured."""
    try:
        if hasattr(st, "secrets") and "sync" in st.secrets:
            return dict(st.secrets["sync"])
    except Exception as e:
        # No secrets.toml outside a configured Streamlit deployment
        logger.debug(f"Streamlit secrets not available: {e}")
    return {}


def _coerce_positive_float(key: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Setting '{key}' must be a number, got {value!r}",
            config_key=key,
            expected_type="float",
        )
    if number <= 0:
        raise ConfigurationError(
            f"Setting '{key}' must be positive, got {number}",
            config_key=key,
            expected_type="float > 0",
        )
    return number


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> AppSettings:
    """
    Build AppSettings from secrets, environment and defaults.

    Args:
        overrides: Explicit values that win over every other source

    Returns:
        Resolved AppSettings

    Raises:
        ConfigurationError: If a numeric setting is invalid
    """
    merged: Dict[str, Any] = {}
    merged.update(_secrets_section())

    for name in ("api_base_url", "data_dir", "request_timeout", "sync_interval", "health_endpoint"):
        env_value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if env_value:
            merged[name] = env_value

    merged.update(overrides or {})

    settings = AppSettings()
    if merged.get("api_base_url"):
        settings.api_base_url = str(merged["api_base_url"]).rstrip("/")
    if merged.get("data_dir"):
        settings.data_dir = Path(merged["data_dir"])
    if "request_timeout" in merged:
        settings.request_timeout = _coerce_positive_float("request_timeout", merged["request_timeout"])
    if "sync_interval" in merged:
        settings.sync_interval = _coerce_positive_float("sync_interval", merged["sync_interval"])
    if merged.get("health_endpoint"):
        settings.health_endpoint = str(merged["health_endpoint"])
    if isinstance(merged.get("headers"), dict):
        settings.headers.update(merged["headers"])

    logger.debug(f"Settings loaded: api={settings.api_base_url} data_dir={settings.data_dir}")
    return settings
