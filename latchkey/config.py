"""
Config system - Layered configuration for sessions.

Sources, later overrides earlier:
    config files (YAML/JSON) < .env file < environment variables < overrides

Environment keys use a prefix and ``__`` for nesting:
``LATCHKEY_SESSION__COOKIE_NAME=APPSESS`` -> ``session.cookie_name``.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import types
from dataclasses import fields
from glob import glob
from pathlib import Path
from typing import Any, Dict, Optional, Type, Union, get_args, get_origin, get_type_hints

import yaml
from dotenv import dotenv_values

from latchkey.sessions.faults import SessionConfigFault
from latchkey.sessions.policy import SessionOptions

logger = logging.getLogger("latchkey.config")

DEFAULT_ENV_PREFIX = "LATCHKEY_"

_ENV_LITERALS = {
    "true": True, "yes": True,
    "false": False, "no": False,
    "none": None, "null": None,
}


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Example:
        >>> loader = ConfigLoader.load(paths=["latchkey.yaml"], env_file=".env")
        >>> loader.get("session.cookie_name", "SESSID")
        'APPSESS'
        >>> options = loader.session_options()
    """

    def __init__(self, env_prefix: str = DEFAULT_ENV_PREFIX):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}
        # dotted path -> raw string, for values that came from the environment
        self._env_raw: Dict[str, str] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[list[str]] = None,
        env_prefix: str = DEFAULT_ENV_PREFIX,
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from multiple sources.

        Args:
            paths: Config file paths (glob patterns supported)
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)

        Returns:
            Configured ConfigLoader instance

        Raises:
            ConfigError: A config file cannot be parsed
        """
        loader = cls(env_prefix=env_prefix)

        for pattern in paths or ():
            loader._load_from_files(pattern)

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env()

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _load_from_files(self, pattern: str):
        """Load config from JSON or YAML files."""
        matches = sorted(glob(pattern))
        if not matches:
            logger.debug(f"No config files match {pattern}")

        for path_str in matches:
            path = Path(path_str)

            if path.suffix == ".json":
                self._load_json_file(path)
            elif path.suffix in (".yaml", ".yml"):
                self._load_yaml_file(path)
            else:
                raise ConfigError(f"Unsupported config file type: {path}")

    def _load_json_file(self, path: Path):
        """Load config from JSON file."""
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot load config file {path}: {e}") from e
        self._merge_file_data(path, data)

    def _load_yaml_file(self, path: Path):
        """Load config from YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot load config file {path}: {e}") from e
        if data:
            self._merge_file_data(path, data)

    def _merge_file_data(self, path: Path, data: Any):
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        self._merge_dict(self.config_data, data)
        logger.debug(f"Loaded config from {path}")

    def _load_env_file(self, path: str):
        """Load config from .env file."""
        env_path = Path(path)
        if not env_path.exists():
            logger.debug(f"Env file {path} not found, skipping")
            return

        for key, value in dotenv_values(env_path).items():
            if key.startswith(self.env_prefix) and value is not None:
                self._set_nested(key, value)

    def _load_from_env(self):
        """Load config from environment variables."""
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str):
        """``LATCHKEY_SESSION__COOKIE_NAME`` -> ``{"session": {"cookie_name": ...}}``."""
        *parents, leaf = key[len(self.env_prefix):].lower().split("__")

        node = self.config_data
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child

        node[leaf] = self._parse_value(value)
        self._env_raw[".".join((*parents, leaf))] = value

    def _parse_value(self, value: str) -> Any:
        """Coerce an environment string into a config value."""
        lowered = value.strip().lower()
        if lowered in _ENV_LITERALS:
            return _ENV_LITERALS[lowered]

        if any(ch.isdigit() for ch in value):
            for number in (int, float):
                try:
                    return number(value)
                except ValueError:
                    continue

        if value.lstrip().startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                logger.debug("Env value looks like JSON but does not parse; kept as string")

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target (mappings merge, everything else replaces)."""
        for key, value in source.items():
            current = target.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                self._merge_dict(current, value)
            else:
                target[key] = copy.deepcopy(value)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, path: str, default: Any = None) -> Any:
        """Value at a dotted path (``"session.cookie_name"``) or ``default``."""
        node: Any = self.config_data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def to_dict(self) -> dict:
        """Deep copy of the merged configuration."""
        return copy.deepcopy(self.config_data)

    def session_options(self, section: str = "session") -> SessionOptions:
        """
        Build SessionOptions from a config section.

        Args:
            section: Dot path of the section holding session options

        Returns:
            Validated options (defaults for anything not configured)

        Raises:
            ConfigError: Unknown option, wrong type or invalid value
        """
        data = self.get(section, {}) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")

        known = SessionOptions.option_names()
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown session option(s): {', '.join(unknown)}")

        hints = get_type_hints(SessionOptions)
        data = self._restore_env_strings(section, data, hints)
        for field_info in fields(SessionOptions):
            name = field_info.name
            if name in data and not self._check_type(data[name], hints[name]):
                raise ConfigError(
                    f"Config field '{name}' expected {hints[name]}, "
                    f"got {type(data[name]).__name__}"
                )

        try:
            return SessionOptions.from_dict(data)
        except SessionConfigFault as e:
            raise ConfigError(e.message) from e

    def _restore_env_strings(self, section: str, data: dict, hints: dict) -> dict:
        """
        Undo env coercion for string options.

        ``LATCHKEY_SESSION__COOKIE_NAME=123`` parses as ``123``; a field typed
        ``str`` gets the raw ``"123"`` back. Explicit nulls stay ``None``, and a
        value that no longer matches its env string (replaced by an override)
        is left alone.
        """
        restored = dict(data)
        for name, value in data.items():
            hint = hints.get(name)
            if hint is None or value is None or isinstance(value, str) or not self._check_type("", hint):
                continue
            raw = self._env_raw.get(f"{section}.{name}")
            if raw is not None and self._parse_value(raw) == value:
                restored[name] = raw
        return restored

    def _check_type(self, value: Any, expected_type: Type) -> bool:
        """Basic type checking."""
        origin = get_origin(expected_type)
        if origin is types.UnionType or origin is Union:
            if value is None:
                return type(None) in get_args(expected_type)
            return any(self._check_type(value, arg) for arg in get_args(expected_type))

        # Handle generic types
        if origin:
            try:
                return isinstance(value, origin)
            except TypeError:
                return True

        # bool is an int subclass; refuse it for numeric fields
        if expected_type is int and isinstance(value, bool):
            return False
        if expected_type is type(None):
            return value is None

        try:
            return isinstance(value, expected_type)
        except TypeError:
            # For complex types, skip validation
            return True
