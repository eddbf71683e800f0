import json
import logging
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)

# Package defaults (bundled with code)
PACKAGE_CONFIG_DIR = Path(__file__).parent / "defaults"

# User configs (in project root, gitignored)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
USER_CONFIG_DIR = PROJECT_ROOT / "config"

class ConfigLoader:
    """Load configuration with user overrides"""

    @staticmethod
    def load_config(config_name: str) -> Dict[str, Any]:
        """
        Load config with fallback: user config -> default config

        A user override that is not valid JSON is logged and skipped.

        Args:
            config_name: Name of the config file (e.g., 'rules.json')

        Raises:
            FileNotFoundError: If no config file was found
            json.JSONDecodeError: If the packaged default is not valid JSON

        Returns:
            Parsed JSON configuration
        """
        user_config_path = USER_CONFIG_DIR / config_name
        if user_config_path.exists():
            try:
                with open(user_config_path) as f:
                    return json.load(f)
            except json.JSONDecodeError as e:
                logger.warning(
                    "Ignoring malformed user config %s: %s", user_config_path, e
                )

        default_config_path = PACKAGE_CONFIG_DIR / config_name
        if default_config_path.exists():
            with open(default_config_path) as f:
                return json.load(f)

        raise FileNotFoundError(
            f"Config file '{config_name}' not found in:\n"
            f" - {user_config_path}\n"
            f" - {default_config_path}"
        )

    @staticmethod
    def load_or_empty(config_name: str) -> Dict[str, Any]:
        """Load a config, failing closed to an empty dict"""
        try:
            config = ConfigLoader.load_config(config_name)
        except (FileNotFoundError, json.JSONDecodeError) as e:
            logger.warning("Could not load config '%s': %s", config_name, e)
            return {}

        if not isinstance(config, dict):
            logger.warning("Config '%s' is not a JSON object, ignoring it", config_name)
            return {}
        return config

    @staticmethod
    def load_rules_config() -> Dict[str, Any]:
        """Load the built-in system classification rules"""
        return ConfigLoader.load_or_empty('rules.json')

    @staticmethod
    def load_tag_mapping_config() -> Dict[str, Any]:
        """Load the system default category -> subcategory -> tag mapping"""
        return ConfigLoader.load_or_empty('tag_mapping.json')

    @staticmethod
    def load_learning_config() -> Dict[str, Any]:
        """Load pattern-learning thresholds and special patterns"""
        return ConfigLoader.load_or_empty('learning.json')
