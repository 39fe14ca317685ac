"""
otpshield/config.py
Engine configuration. Persists to otpshield_config.json.
Missing keys fall back to DEFAULT_CONFIG.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TRUSTED_SENDERS = [
    'HDFCBK', 'HDFC', 'HDFCBANK',
    'ICICIBNK', 'ICICI',
    'SBIBANK', 'SBI',
    'AXISBK', 'AXIS',
    'YESBNK', 'NETFLIX',
    'AMAZON', 'UBER', 'SWIGGY',
]

DEFAULT_CONFIG = {
    "db_path": "otpshield.db",
    "trusted_senders": DEFAULT_TRUSTED_SENDERS,
    "rating_cooldown_days": 30,
    "default_user_id": "default_user",
    "default_device_id": "unknown-device",
    "analysis_history_limit": 10,
    "call_history_limit": 100,
    "unusual_location_probability": 0.3,
    "api_host": "127.0.0.1",
    "api_port": 8765,
}

CONFIG_FILENAME = "otpshield_config.json"


def _config_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path.cwd()
    return root / CONFIG_FILENAME


def load_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """Load config from otpshield_config.json. Returns defaults if missing."""
    path = _config_path(project_root)
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("config root must be an object")
            return {**DEFAULT_CONFIG, **data}
        except (json.JSONDecodeError, OSError, ValueError) as e:
            logger.warning(f"Config load failed: {e}")
    return dict(DEFAULT_CONFIG)


def save_config(config: Dict[str, Any], project_root: Optional[Path] = None) -> Path:
    """Persist config to otpshield_config.json."""
    path = _config_path(project_root)
    path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    return path
