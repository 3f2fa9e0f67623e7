#!/usr/bin/env python3
"""
CLI Package for amphitheatre

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .app import app, cli_main
from .constants import ExitCode
from .utils import load_application_file, setup_logging

__all__ = ["app", "cli_main", "ExitCode", "load_application_file", "setup_logging"]
