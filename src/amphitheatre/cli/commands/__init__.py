#!/usr/bin/env python3
"""
CLI Commands Package for amphitheatre

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .render import render
from .resolve import resolve
from .run import run

__all__ = ["render", "resolve", "run"]
