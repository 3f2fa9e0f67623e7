"""
Image builders.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .base import Builder
from .kpack import KpackBuilder, build_state, image_tag

__all__ = ["Builder", "KpackBuilder", "build_state", "image_tag"]
