"""
Runtime settings: environment defaults (add-on options) overlaid by the
YAML file the UI writes through /api/settings.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger("homedigest.config")

CONFIG_PATH = Path(os.environ.get("HOMEDIGEST_CONFIG", "/config/homedigest_config.yaml"))

DEFAULTS: Dict[str, Any] = {
    "model": os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
    "digest_time": os.environ.get("DIGEST_TIME", "07:00"),
    "weekly_digest_day": os.environ.get("WEEKLY_DIGEST_DAY", "sunday"),
    "snapshot_interval_minutes": int(os.environ.get("SNAPSHOT_INTERVAL_MINUTES", "15")),
    "history_days": int(os.environ.get("HISTORY_DAYS", "7")),
    "notification_service": os.environ.get("NOTIFICATION_SERVICE", "persistent_notification.create"),
    "generation_timeout": float(os.environ.get("OPENAI_TIMEOUT", "120")),
    "language": os.environ.get("LANGUAGE", "en"),
    "log_level": os.environ.get("LOG_LEVEL", "INFO"),
}

# never echoed back over the API
SECRET_KEYS = {"openai_api_key"}


def load_config() -> dict:
    cfg = dict(DEFAULTS)
    if CONFIG_PATH.exists():
        try:
            cfg.update(yaml.safe_load(CONFIG_PATH.read_text()) or {})
        except yaml.YAMLError as e:
            logger.warning("Failed to load config %s: %s", CONFIG_PATH, e)
    return cfg


def save_config(data: dict) -> None:
    """Merge ``data`` into the YAML file; None values leave keys unchanged."""
    current: dict = {}
    if CONFIG_PATH.exists():
        current = yaml.safe_load(CONFIG_PATH.read_text()) or {}
    current.update({k: v for k, v in data.items() if v is not None})
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_PATH.write_text(yaml.safe_dump(current))
    logger.info("Saved settings: %s", ", ".join(sorted(k for k in data if data[k] is not None)))


def public_config() -> dict:
    return {k: v for k, v in load_config().items() if k not in SECRET_KEYS}


def openai_api_key() -> str | None:
    return load_config().get("openai_api_key") or os.environ.get("OPENAI_API_KEY")
