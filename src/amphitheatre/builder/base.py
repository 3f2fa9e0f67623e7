#!/usr/bin/env python3
"""
Image builder interface.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from abc import ABC, abstractmethod
from typing import List

from amphitheatre.resources.types import ActorSpec, Application
from amphitheatre.workflow.cancellation import CancellationToken


class Builder(ABC):
    """Produces a runnable image reference from an actor's source."""

    # kinds of cluster objects the builder creates per actor
    owned_kinds: List[str] = []

    @abstractmethod
    async def build(self, actor: ActorSpec, token: CancellationToken, app: Application) -> str:
        """
        Build the actor's image.

        Args:
            actor: Actor whose source is built
            token: Cancellation token; long builds stop polling once it is set
            app: Owning Playbook (namespace and owner reference)

        Returns:
            Image reference to run

        Raises:
            BuildError: The build failed (retryable)
            OperationCancelled: The token was set while waiting
        """
