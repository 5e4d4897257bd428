"""
Runtime settings.

Resolution order: built-in defaults, then an optional JSON config file,
then ``PATHGRAPH_*`` environment variables. CLI flags override the result.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_ENV_KEYS = {
    "PATHGRAPH_DB": "db_path",
    "PATHGRAPH_BASE_URL": "base_url",
    "PATHGRAPH_LOG_LEVEL": "log_level",
    "PATHGRAPH_TIMEOUT": "request_timeout",
}


class Settings(BaseModel):
    """Where paths are stored and how statements are addressed and sent."""

    db_path: str = "./data/learning_paths.db"
    base_url: str = "http://localhost:8080"
    log_level: str = "INFO"
    request_timeout: float = 10.0


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Build :class:`Settings` from defaults, *config_path* and the environment."""
    values: Dict[str, Any] = {}

    if config_path:
        with open(config_path, "r", encoding="utf-8") as fh:
            values.update(json.load(fh))
        logger.info("Loaded config from %s", config_path)

    for env_key, field_name in _ENV_KEYS.items():
        raw = os.environ.get(env_key)
        if raw:
            values[field_name] = raw

    return Settings.model_validate(values)


def save_settings(settings: Settings, config_path: str) -> None:
    """Write *settings* as a JSON config file."""
    os.makedirs(os.path.dirname(os.path.abspath(config_path)), exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as fh:
        fh.write(settings.model_dump_json(indent=2))
    logger.info("Config saved → %s", config_path)
