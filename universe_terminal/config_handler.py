# universe_terminal/config_handler.py

import os
import sys
import json
import re
import logging
from typing import Any, Dict, Optional

from universe_terminal.errors import ConfigurationError

# --- Module-specific logger ---
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "default_config.json"
USER_CONFIG_FILENAME = "user_config.json"

# Group 1 captures string literals so that comment markers inside them survive.
# Otherwise matches // to the end of the line, or /* ... */ across lines (non-greedy).
_COMMENT_PATTERN = re.compile(r'("(?:\\.|[^"\\])*")|//.*?$|/\*.*?\*/', re.DOTALL | re.MULTILINE)


def load_jsonc_file(filepath: str) -> Optional[Dict[str, Any]]:
    """
    Loads a JSON file that may contain single-line (//) and multi-line (/* */) comments.

    Args:
        filepath (str): The full path to the .jsonc or .json file.

    Returns:
        Optional[Dict[str, Any]]: A dictionary with the file's contents,
                                  or None if the file is not found or cannot be parsed.
    """
    if not os.path.exists(filepath):
        logger.info(f"Configuration file not found at: {filepath}")
        return None

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            file_content = f.read()

        content_without_comments = _COMMENT_PATTERN.sub(lambda m: m.group(1) or "", file_content)
        return json.loads(content_without_comments)

    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from {filepath}: {e}", exc_info=True)
        print(f"❌ Error: Could not parse the configuration file at {filepath}. Please check for syntax errors.", file=sys.stderr)
        return None
    except IOError as e:
        logger.error(f"Error reading file {filepath}: {e}", exc_info=True)
        print(f"❌ Error: Could not read the file at {filepath}.", file=sys.stderr)
        return None


def save_json_file(filepath: str, data: Dict[str, Any]) -> bool:
    """
    Saves a dictionary to a file in standard JSON format.

    Args:
        filepath (str): The full path where the file will be saved.
        data (Dict[str, Any]): The dictionary data to save.

    Returns:
        bool: True if saving was successful, False otherwise.
    """
    try:
        # Ensure the directory exists before writing
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, sort_keys=True, ensure_ascii=False)
        logger.debug(f"Successfully saved data to {filepath}")
        return True
    except IOError as e:
        logger.error(f"Error saving data to {filepath}: {e}", exc_info=True)
        return False
    except TypeError as e:
        logger.error(f"Data for {filepath} is not serializable: {e}", exc_info=True)
        return False


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """ Recursively merges two dictionaries; values from override win. """
    merged = base.copy()
    for key, value in override.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config_value(config_dict: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """Safely retrieves a value from a nested dict using a dot-separated path."""
    value: Any = config_dict
    for key in key_path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def load_configuration(config_dir: str) -> Dict[str, Any]:
    """
    Loads the mandatory default configuration and merges the optional user overrides.

    Raises:
        ConfigurationError: if the default configuration is missing or invalid.
    """
    default_config_path = os.path.join(config_dir, DEFAULT_CONFIG_FILENAME)
    user_config_path = os.path.join(config_dir, USER_CONFIG_FILENAME)

    base_config = load_jsonc_file(default_config_path)
    if base_config is None:
        error_msg = f"Default configuration file not found or failed to parse at '{default_config_path}'."
        logger.critical(error_msg)
        raise ConfigurationError(error_msg)
    logger.info(f"Successfully loaded base configuration from {default_config_path}")

    user_settings = load_jsonc_file(user_config_path)
    if user_settings:
        logger.info(f"Loaded and merged user configurations from {user_config_path}")
        return merge_configs(base_config, user_settings)

    logger.info(f"{user_config_path} not found or is invalid. No user configuration overrides applied.")
    return base_config
