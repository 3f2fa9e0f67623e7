"""
Controller configuration.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .loader import ConfigLoader
from .settings import ControllerConfig, StepSettings


def load_config(config_file=None, overrides=None, environ=None) -> ControllerConfig:
    """Load every configuration layer and validate the result."""
    return ControllerConfig.from_dict(ConfigLoader.load(config_file, overrides, environ))


__all__ = ["ConfigLoader", "ControllerConfig", "StepSettings", "load_config"]
