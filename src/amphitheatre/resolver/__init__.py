"""
Dependency resolver: actor graph, cycle detection and execution layers.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .graph import DependencyGraph, resolve

__all__ = ["DependencyGraph", "resolve"]
