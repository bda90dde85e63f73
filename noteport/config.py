"""
Configuration for noteport.

Settings live in config.yaml. Any key the file leaves out keeps its built-in
default, so a config file only needs the values it changes.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULTS: Dict[str, Any] = {
    "import": {
        "decode_timeout": 10.0,
        "download_timeout": 10.0,
        "progress_interval": 10,
        "default_notebook": "General",
    },
    "evernote": {
        "db_filename": "RemoteGraph.sql",
        "documents_dirname": "internal_rteDoc",
        "resources_dirname": "resource-cache",
        "stack_prefix": "Stack:",
        "search_max_depth": 6,
        "search_max_entries": 20000,
    },
    "tree": {
        "default_stacks": {"html": "HTML", "markdown": "Markdown", "text": "Text"},
    },
    "paths": {
        "data_dir": "data",
        "log_file": "noteport.log",
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    },
}


def merge_settings(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return base with override applied, merging nested sections key by key."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_settings(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    Loads config.yaml and answers lookups against it.
    """

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        if not self.config_path.exists():
            logging.info(f"No configuration at {self.config_path}, using defaults")
            self._config = copy.deepcopy(DEFAULTS)
            return

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError("top level must be a mapping")
        except (OSError, ValueError, yaml.YAMLError) as e:
            logging.warning(f"Failed to load configuration from {self.config_path}, using defaults: {e}")
            self._config = copy.deepcopy(DEFAULTS)
            return

        self._config = merge_settings(DEFAULTS, loaded)
        logging.info(f"Configuration loaded from {self.config_path}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Look up a value by dotted path.

        Examples:
            config.get("import.decode_timeout")     # 10.0
            config.get("tree.default_stacks.html")  # "HTML"
        """
        value: Any = self._config
        for key in key_path.split('.'):
            if not isinstance(value, dict) or key not in value:
                return default
            value = value[key]
        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        return dict(self._config.get(section) or {})

    def reload(self) -> None:
        self._load_config()

    @property
    def decode_timeout(self) -> float:
        """Seconds allowed for one note document decode."""
        return float(self.get("import.decode_timeout"))

    @property
    def download_timeout(self) -> float:
        """Seconds allowed for one remote download."""
        return float(self.get("import.download_timeout"))

    @property
    def progress_interval(self) -> int:
        """Emit a progress event every N items."""
        return int(self.get("import.progress_interval"))

    @property
    def default_notebook(self) -> str:
        return self.get("import.default_notebook")

    @property
    def data_directory(self) -> str:
        return self.get("paths.data_dir")

    @property
    def log_filename(self) -> str:
        return self.get("paths.log_file")

    @property
    def evernote_layout(self) -> Dict[str, Any]:
        """File names and search limits of an Evernote data folder."""
        return self.get_section("evernote")

    @property
    def default_stacks(self) -> Dict[str, str]:
        """Stack name per tree kind for notes at the top of the tree."""
        return self.get("tree.default_stacks")


# Global configuration instance
config = ConfigManager()


def get_config() -> ConfigManager:
    return config
