#!/usr/bin/env python3
"""
Constants for the amphitheatre CLI

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""


# Exit codes
class ExitCode:
    """Exit codes for CLI commands."""

    SUCCESS = 0
    FAILURE = 1
    RESOLUTION_FAILURE = 2
    CLUSTER_FAILURE = 3
    INVALID_ARGS = 4

