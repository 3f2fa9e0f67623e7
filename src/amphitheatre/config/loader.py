#!/usr/bin/env python3
"""
Configuration loader with multi-layer merging for the controller.

Layers (low to high priority):
1. System defaults (built-in presets)
2. User file (--config, YAML or JSON)
3. Environment variables (AMP_*)
4. User CLI (--set and dedicated options)

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import json
import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import yaml

from amphitheatre.core.errors import ConfigurationError, create_error_context

logger = logging.getLogger(__name__)

# Environment variable -> config path
ENV_VARS: Dict[str, Tuple[str, ...]] = {
    "AMP_KUBECONFIG": ("cluster", "kubeconfig"),
    "AMP_CONTEXT": ("cluster", "context"),
    "AMP_IN_CLUSTER": ("cluster", "in_cluster"),
    "AMP_REQUEST_TIMEOUT": ("cluster", "request_timeout"),
    "AMP_NAMESPACE": ("controller", "namespace"),
    "AMP_WORKERS": ("controller", "workers"),
    "AMP_MAX_CONCURRENT_WORKFLOWS": ("controller", "max_concurrent_workflows"),
    "AMP_RESYNC_INTERVAL": ("controller", "resync_interval"),
    "AMP_MAX_FAILURE_RETRIES": ("controller", "max_failure_retries"),
    "AMP_PUBLISH_EVENTS": ("controller", "publish_events"),
    "AMP_REGISTRY": ("builder", "registry"),
    "AMP_CLUSTER_BUILDER": ("builder", "cluster_builder"),
    "AMP_REGISTRY_USERNAME": ("builder", "username"),
    "AMP_REGISTRY_PASSWORD": ("builder", "password"),
}


def _scalar(value: str) -> Any:
    """Type a string the way YAML would ("4" -> 4, "true" -> True)."""
    try:
        return yaml.safe_load(value)
    except yaml.YAMLError:
        return value


def set_path(config: Dict[str, Any], path: Iterable[str], value: Any) -> None:
    keys = list(path)
    node = config
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[keys[-1]] = value


class ConfigLoader:
    """Layered configuration loader with preset support."""

    PRESET_DIR = Path(__file__).parent / "presets"

    @classmethod
    def load_preset(cls, preset_path: str = "defaults.json") -> Dict[str, Any]:
        """
        Load a preset JSON file.

        Args:
            preset_path: Relative path to preset file from PRESET_DIR

        Returns:
            Dict containing preset configuration, or empty dict if not found
        """
        full_path = cls.PRESET_DIR / preset_path
        if not full_path.exists():
            return {}

        try:
            with open(full_path, "r") as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Could not load preset %s: %s", preset_path, e)
            return {}

    @classmethod
    def deep_merge(cls, base: Dict, override: Dict) -> Dict:
        """
        Deep merge two dictionaries. Override wins conflicts.
        Nested dicts are merged, lists/primitives are replaced.

        Args:
            base: Base dictionary
            override: Override dictionary

        Returns:
            Merged dictionary
        """
        result = deepcopy(base)

        for key, value in override.items():
            if key.startswith("_"):
                result[key] = deepcopy(value)
                continue

            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls.deep_merge(result[key], value)
            else:
                result[key] = deepcopy(value)

        return result

    @classmethod
    def load_file(cls, path: Path) -> Dict[str, Any]:
        """
        Load a user configuration file (YAML or JSON).

        Raises:
            ConfigurationError: If the file is missing, unparsable or not a mapping
        """
        context = create_error_context(operation="load_config", file_path=str(path))
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                context=context,
                suggestions=["Check the path passed to --config"],
            )
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid configuration file {path}: {e}", context=context, cause=e)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file {path} must contain a mapping, got {type(data).__name__}",
                context=context,
            )
        return data

    @classmethod
    def load_env(cls, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        environ = os.environ if environ is None else environ
        config: Dict[str, Any] = {}
        for name, path in ENV_VARS.items():
            if name in environ and environ[name] != "":
                set_path(config, path, _scalar(environ[name]))
        return config

    @classmethod
    def parse_overrides(cls, assignments: Iterable[str]) -> Dict[str, Any]:
        """
        Parse ``dotted.key=value`` assignments from the command line.

        Raises:
            ConfigurationError: On an assignment without ``=``
        """
        config: Dict[str, Any] = {}
        for assignment in assignments:
            key, sep, value = assignment.partition("=")
            if not sep or not key.strip():
                raise ConfigurationError(
                    f"Invalid override '{assignment}'",
                    suggestions=["Use the form section.key=value, e.g. controller.workers=8"],
                )
            set_path(config, key.strip().split("."), _scalar(value))
        return config

    @classmethod
    def load(
        cls,
        config_file: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Load the complete configuration with all layers applied.

        Args:
            config_file: Optional user file
            overrides: Highest priority values (from the CLI)
            environ: Environment to read AMP_* variables from

        Returns:
            Merged configuration dictionary
        """
        config = cls.load_preset("defaults.json")
        if config_file is not None:
            config = cls.deep_merge(config, cls.load_file(Path(config_file)))
        config = cls.deep_merge(config, cls.load_env(environ))
        if overrides:
            config = cls.deep_merge(config, overrides)
        return config
