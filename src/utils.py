"""
Configuration access and small helpers shared by the CLI and the engines.

Settings come from ``config_schema.yaml`` (defaults, types, allowed options)
overlaid with the user's ``config.yaml`` next to it. Invalid user values are
dropped back to their defaults with a warning instead of failing the run.
"""

import asyncio
import os
import time
from pathlib import Path

import yaml

from logger import log_debug

SRC_DIR = Path(__file__).parent
SCHEMA_PATH = SRC_DIR / "config_schema.yaml"
USER_CONFIG_PATH = SRC_DIR / "config.yaml"

_TYPE_MAP = {
    'str': str,
    'int': int,
    'float': (int, float),
    'bool': bool,
}


def _debug(msg: str):
    log_debug("config", msg)


class ConfigManager:
    """Process-wide settings, initialized once by the CLI."""
    _instance = None

    def __init__(self):
        self.config = None
        self.schema = None

    @classmethod
    def initialize(cls, schema_path=None, config_path=None):
        if cls._instance is not None:
            raise RuntimeError("ConfigManager is already initialized")
        instance = cls()
        instance.schema = instance.load_config_schema(schema_path)
        instance.config = instance.load_default_config()
        instance.load_user_config(config_path or USER_CONFIG_PATH)
        cls._instance = instance

    @classmethod
    def get_instance(cls) -> 'ConfigManager':
        if cls._instance is None:
            cls.initialize()
        if cls._instance.config is None:  # type: ignore
            cls._instance.config = {}  # type: ignore
        return cls._instance  # type: ignore

    @classmethod
    def _lookup(cls, keys):
        node = cls.get_instance().config
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        return node

    @classmethod
    def get_config_section(cls, *keys) -> dict:
        """A settings section by path, or {} when it doesn't exist."""
        section = cls._lookup(keys)
        return section if isinstance(section, dict) else {}

    @classmethod
    def get_config_value(cls, *keys):
        """A single setting by path, or None when it doesn't exist."""
        return cls._lookup(keys)

    @classmethod
    def set_config_value(cls, value, *keys):
        """Set a setting by path, creating missing sections on the way."""
        instance = cls.get_instance()
        node = instance.config
        for key in keys[:-1]:
            if not isinstance(node.get(key), dict):
                node[key] = {}
            node = node[key]
        node[keys[-1]] = value

    @staticmethod
    def load_config_schema(schema_path=None):
        with open(schema_path or SCHEMA_PATH, 'r', encoding='utf-8') as file:
            return yaml.safe_load(file)

    def load_default_config(self):
        """Defaults are the ``value`` of every leaf in the schema."""
        def defaults(item):
            if isinstance(item, dict):
                if 'value' in item:
                    return item['value']
                return {key: defaults(child) for key, child in item.items()}
            return item

        return {section: defaults(settings) for section, settings in self.schema.items()}

    @staticmethod
    def _reject(path, reason):
        print(f"[!] Config validation warning: '{path}' {reason}. Using default.")
        _debug(f"Rejected {path}: {reason}")
        return False

    def _validate_config_value(self, value, schema_item, path):
        """True when ``value`` fits the schema leaf; None is always allowed."""
        if not isinstance(schema_item, dict) or 'type' not in schema_item or value is None:
            return True

        expected = schema_item['type']
        python_type = _TYPE_MAP.get(expected)
        if python_type is not None:
            # bool is an int subclass; True is not a frame rate
            if isinstance(value, bool) and expected != 'bool':
                return self._reject(path, f"should be {expected}, got bool")
            if not isinstance(value, python_type):
                return self._reject(path, f"should be {expected}, got {type(value).__name__}")

        options = schema_item.get('options')
        if options and value not in options:
            return self._reject(path, f"value '{value}' not in allowed options {options}")
        return True

    def _validate_config_section(self, user_section, schema_section, path=""):
        """Reset invalid leaves of ``user_section`` to their defaults, in place."""
        if not isinstance(schema_section, dict) or not isinstance(user_section, dict):
            return

        for key, schema_value in schema_section.items():
            if key not in user_section or not isinstance(schema_value, dict):
                continue
            current_path = f"{path}.{key}" if path else key
            if 'type' in schema_value:
                if not self._validate_config_value(user_section[key], schema_value, current_path):
                    user_section[key] = schema_value.get('value')
            else:
                self._validate_config_section(user_section[key], schema_value, current_path)

    def load_user_config(self, config_path=USER_CONFIG_PATH):
        """Merge the user's file over the current settings, section by section."""
        def deep_update(target, overrides):
            for key, value in overrides.items():
                if isinstance(value, dict) and isinstance(target.get(key), dict):
                    deep_update(target[key], value)
                else:
                    target[key] = value

        if not config_path or not os.path.isfile(config_path):
            return
        try:
            with open(config_path, 'r', encoding='utf-8') as file:
                user_config = yaml.safe_load(file) or {}
        except yaml.YAMLError as e:
            print("Error in configuration file. Using default configuration.")
            _debug(f"Could not parse {config_path}: {e}")
            return
        if not isinstance(user_config, dict):
            print("Configuration file is not a mapping. Using default configuration.")
            return
        self._validate_config_section(user_config, self.schema)
        deep_update(self.config, user_config)
        _debug(f"Loaded user config from {config_path}")

    @classmethod
    def save_config(cls, config_path=USER_CONFIG_PATH):
        """
        Write the current settings to ``config_path``.

        Written to a temp file and renamed into place, retrying the rename
        while another process (an editor, an antivirus scan) holds the file.

        Raises:
            RuntimeError: the file stayed locked through every retry
        """
        instance = cls.get_instance()
        filepath = Path(config_path)
        temp_path = filepath.with_suffix('.tmp')

        with open(temp_path, 'w', encoding='utf-8') as file:
            yaml.safe_dump(instance.config, file, default_flow_style=False)
            file.flush()
            os.fsync(file.fileno())

        delay = 0.1
        for attempt in range(3):
            try:
                temp_path.replace(filepath)
                _debug(f"Saved config to {filepath}")
                return
            except PermissionError as e:
                if attempt == 2:
                    temp_path.unlink(missing_ok=True)
                    raise RuntimeError(f"Failed to save config due to file lock: {e}")
                time.sleep(delay)
                delay *= 2

    @classmethod
    def reload_config(cls, config_path=USER_CONFIG_PATH):
        """Rebuild the settings from the schema defaults and the user's file."""
        instance = cls.get_instance()
        instance.config = instance.load_default_config()
        instance.load_user_config(config_path)

    @classmethod
    def console_print(cls, message):
        """Print only when ``misc.print_to_terminal`` is on."""
        if cls._instance and (cls._instance.config or {}).get('misc', {}).get('print_to_terminal'):
            print(message)


def format_elapsed(seconds: int) -> str:
    """Render an elapsed-seconds counter as MM:SS."""
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


def threadsafe_callback(loop: asyncio.AbstractEventLoop, fn):
    """
    Wrap fn so calls from device or worker threads run on the event loop.

    Calls made on the loop's own thread run immediately.
    """
    def wrapper(*args):
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            fn(*args)
        elif not loop.is_closed():
            loop.call_soon_threadsafe(fn, *args)
    return wrapper
