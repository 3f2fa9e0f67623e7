#!/usr/bin/env python3
"""
Unified error handling for amphitheatre.

Every error raised by the controller carries a category, an optional
structured context, a recoverable flag and remediation suggestions. The
recoverable flag is what the workflow engine and the reconciler consult to
decide between retrying with backoff and failing the current pass.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text


class ErrorCategory(Enum):
    """Error categories used for display and retry decisions."""

    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    RESOLUTION = "resolution"
    BUILD = "build"
    SYNC = "sync"
    CLUSTER = "cluster"
    TIMEOUT = "timeout"
    READINESS = "readiness"
    WORKFLOW = "workflow"
    RUNTIME = "runtime"


@dataclass
class ErrorContext:
    """Structured context attached to an error."""

    operation: Optional[str] = None
    phase: Optional[str] = None
    component: Optional[str] = None
    application: Optional[str] = None
    actor: Optional[str] = None
    resource: Optional[str] = None
    file_path: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class AmphitheatreError(Exception):
    """Base class of all amphitheatre errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.RUNTIME,
        context: Optional[ErrorContext] = None,
        recoverable: bool = False,
        suggestions: Optional[List[str]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context
        self.recoverable = recoverable
        self.suggestions = suggestions or []
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class ValidationError(AmphitheatreError):
    """Malformed Application or Actor specification."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.VALIDATION, recoverable=False, **kwargs)


class ConfigurationError(AmphitheatreError):
    """Invalid controller configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.CONFIGURATION, recoverable=False, **kwargs)


class ResolutionError(AmphitheatreError):
    """Dependency graph could not be resolved. Never retried."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.RESOLUTION, recoverable=False, **kwargs)


class CycleDetectedError(ResolutionError):
    """The declared dependencies contain a cycle."""

    def __init__(self, members: List[str], **kwargs):
        self.members = sorted(members)
        super().__init__(
            f"Dependency cycle detected between actors: {', '.join(self.members)}",
            suggestions=["Remove one of the dependencies forming the cycle"],
            **kwargs,
        )


class UnknownDependencyError(ResolutionError):
    """An actor depends on an actor that is not declared in the Application."""

    def __init__(self, actor: str, missing: str, **kwargs):
        self.actor = actor
        self.missing = missing
        super().__init__(
            f"Actor '{actor}' depends on unknown actor '{missing}'",
            suggestions=[f"Declare actor '{missing}' or drop it from '{actor}' dependencies"],
            **kwargs,
        )


class BuildError(AmphitheatreError):
    """The build backend failed to produce an image."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.BUILD, recoverable=True, **kwargs)


class SyncConflictError(AmphitheatreError):
    """A version-checked write lost against a concurrent modification."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.SYNC, recoverable=True, **kwargs)


class ClusterUnavailableError(AmphitheatreError):
    """The cluster API could not be reached or answered with a server error."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.CLUSTER, recoverable=True, **kwargs)


class ClusterRequestError(AmphitheatreError):
    """The cluster API rejected a request (4xx other than 404/409)."""

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        self.status = status
        super().__init__(message, ErrorCategory.CLUSTER, recoverable=False, **kwargs)


class ResourceNotFoundError(AmphitheatreError):
    """A cluster resource does not exist."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.CLUSTER, recoverable=False, **kwargs)


class StepTimeoutError(AmphitheatreError):
    """A workflow step attempt exceeded its timeout."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.TIMEOUT, recoverable=True, **kwargs)


class NotReadyError(AmphitheatreError):
    """Workloads exist but are not ready yet."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.READINESS, recoverable=True, **kwargs)


class WorkflowError(AmphitheatreError):
    """A workflow run failed after exhausting its retries."""

    def __init__(self, message: str, step: Optional[str] = None, **kwargs):
        self.step = step
        super().__init__(message, ErrorCategory.WORKFLOW, recoverable=False, **kwargs)


def is_recoverable(error: BaseException) -> bool:
    """Whether an error may be retried with backoff."""
    if isinstance(error, AmphitheatreError):
        return error.recoverable
    # Plain timeouts and OS level failures come from the transport.
    return isinstance(error, (TimeoutError, OSError))


def create_error_context(**kwargs) -> ErrorContext:
    """Convenience constructor for ErrorContext."""
    return ErrorContext(**kwargs)


_CATEGORY_STYLE = {
    ErrorCategory.VALIDATION: ("⚠️", "Validation Error"),
    ErrorCategory.CONFIGURATION: ("⚙️", "Configuration Error"),
    ErrorCategory.RESOLUTION: ("🔗", "Resolution Error"),
    ErrorCategory.BUILD: ("🔨", "Build Error"),
    ErrorCategory.SYNC: ("🔄", "Sync Error"),
    ErrorCategory.CLUSTER: ("🔌", "Cluster Error"),
    ErrorCategory.TIMEOUT: ("⏱️", "Timeout Error"),
    ErrorCategory.READINESS: ("⏳", "Readiness Error"),
    ErrorCategory.WORKFLOW: ("🚀", "Workflow Error"),
    ErrorCategory.RUNTIME: ("💥", "Runtime Error"),
}


class ErrorHandler:
    """Renders errors as Rich panels and logs them."""

    def __init__(self, console: Optional[Console] = None, verbose: bool = False):
        self.console = console or Console()
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)

    def handle_error(
        self,
        error: BaseException,
        context: Optional[ErrorContext] = None,
        show_traceback: bool = False,
    ) -> None:
        if isinstance(error, AmphitheatreError):
            emoji, title = _CATEGORY_STYLE[error.category]
            context = context or error.context
            suggestions = error.suggestions
        else:
            emoji, title = "💥", type(error).__name__
            suggestions = []

        body = Text(str(error), style="bold red")
        if context is not None:
            details = {k: v for k, v in vars(context).items() if v is not None}
            for key, value in details.items():
                body.append(f"\n{key}: ", style="dim")
                body.append(str(value))
        if suggestions:
            body.append("\n\nSuggestions:", style="bold yellow")
            for suggestion in suggestions:
                body.append(f"\n  • {suggestion}")

        self.console.print(Panel(body, title=f"{emoji} {title}", border_style="red"))
        self.logger.debug("Handled %s: %s", type(error).__name__, error)

        if self.verbose and show_traceback:
            cause = getattr(error, "cause", None)
            if cause is not None:
                self.console.print(f"[dim]Caused by: {type(cause).__name__}: {cause}[/dim]")
            self.console.print_exception()


_error_handler: Optional[ErrorHandler] = None


def set_error_handler(handler: Optional[ErrorHandler]) -> None:
    global _error_handler
    _error_handler = handler


def get_error_handler() -> Optional[ErrorHandler]:
    return _error_handler


def handle_error(
    error: BaseException,
    context: Optional[ErrorContext] = None,
    show_traceback: bool = False,
) -> None:
    """Route an error to the global handler, falling back to logging."""
    if _error_handler is None:
        logging.error("%s: %s", type(error).__name__, error)
        return
    _error_handler.handle_error(error, context=context, show_traceback=show_traceback)
