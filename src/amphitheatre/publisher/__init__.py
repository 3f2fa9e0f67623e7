"""
Event publishers for phase transitions.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .base import CompositePublisher, EventPublisher, LoggingEventPublisher, safe_publish
from .kubernetes import KubernetesEventPublisher

__all__ = [
    "CompositePublisher",
    "EventPublisher",
    "KubernetesEventPublisher",
    "LoggingEventPublisher",
    "safe_publish",
]
