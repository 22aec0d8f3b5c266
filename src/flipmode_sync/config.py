"""YAML configuration discovery and merging."""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

APP_DIR = "flipmode"

DEFAULTS: Dict[str, Any] = {
    "queue_url": "https://flipmode-d2c51311485b.herokuapp.com",
    "server_url": "http://localhost:5005",
    "vault": "./vault",
    "sync_folder": "Flipmode",
    "poll_interval": 10,
    "athlete_token": "",
    "coach_token": "",
    "current_season": 1,
    "current_episode": 1,
    "athlete_name": "Athlete",
    "request_timeout": 30,
}


class ConfigManager:
    """Finds ``<name>.yaml`` in the usual places and layers it over defaults."""

    @staticmethod
    def get_xdg_config_home() -> Path:
        xdg = os.environ.get("XDG_CONFIG_HOME")
        return Path(xdg) if xdg else Path.home() / ".config"

    @staticmethod
    def get_xdg_config_dirs() -> List[Path]:
        dirs = os.environ.get("XDG_CONFIG_DIRS", "/etc/xdg")
        return [Path(d) for d in dirs.split(":") if d]

    @classmethod
    def search_paths(cls, name: str) -> List[Path]:
        filename = f"{name}.yaml"
        paths = [cls.get_xdg_config_home() / APP_DIR / filename]
        paths += [d / APP_DIR / filename for d in cls.get_xdg_config_dirs()]
        paths.append(Path.cwd() / filename)
        paths.append(Path.home() / f".{APP_DIR}" / filename)
        return paths

    @classmethod
    def find_config(cls, name: str = "config", explicit_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Load the first config found, or None."""
        if explicit_path:
            path = Path(explicit_path)
            if not path.exists():
                logger.error(f"Config file not found: {explicit_path}")
                return None
            return cls.load_yaml(path)

        for path in cls.search_paths(name):
            if path.exists():
                config = cls.load_yaml(path)
                if config is not None:
                    logger.debug(f"Loaded config from {path}")
                    return config
        return None

    @staticmethod
    def load_yaml(path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Could not read config {path}: {e}")
            return None
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.error(f"Config {path} is not a mapping")
            return None
        return data

    @classmethod
    def merge_configs(cls, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge ``override`` into a copy of ``base``."""
        result = copy.deepcopy(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = cls.merge_configs(result[key], value)
            else:
                result[key] = value
        return result

    @classmethod
    def load(cls, explicit_path: Optional[str] = None) -> Dict[str, Any]:
        """Defaults overlaid with whatever config file is found."""
        found = cls.find_config("config", explicit_path) or {}
        return cls.merge_configs(DEFAULTS, found)


def apply_cli_overrides(config: Dict[str, Any], **kwargs) -> Dict[str, Any]:
    """Top-level overrides from CLI options; None means "not given"."""
    overrides = {k: v for k, v in kwargs.items() if v is not None}
    return ConfigManager.merge_configs(config, overrides)
