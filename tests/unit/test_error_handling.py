#!/usr/bin/env python3
"""
Unit tests for the amphitheatre unified error handling system.

Tests error types, context management, recoverability and the Rich
console integration.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import pytest
from unittest.mock import Mock, patch
from rich.console import Console

from amphitheatre.core.errors import (
    AmphitheatreError,
    BuildError,
    ClusterRequestError,
    ClusterUnavailableError,
    ConfigurationError,
    CycleDetectedError,
    ErrorCategory,
    ErrorContext,
    NotReadyError,
    ResolutionError,
    ResourceNotFoundError,
    StepTimeoutError,
    SyncConflictError,
    UnknownDependencyError,
    ValidationError,
    WorkflowError,
    ErrorHandler,
    create_error_context,
    get_error_handler,
    handle_error,
    is_recoverable,
    set_error_handler,
)


class TestErrorContext:
    """Test error context data structure."""

    def test_error_context_creation(self):
        """Test basic error context creation."""
        context = ErrorContext(operation="sync", phase="Syncing", component="SyncEngine")

        assert context.operation == "sync"
        assert context.phase == "Syncing"
        assert context.component == "SyncEngine"
        assert context.application is None
        assert context.actor is None
        assert context.file_path is None

    def test_create_error_context_function(self):
        """Test create_error_context convenience function."""
        context = create_error_context(
            operation="build",
            application="default/shop",
            actor="api",
            additional_info={"attempt": 2},
        )

        assert isinstance(context, ErrorContext)
        assert context.application == "default/shop"
        assert context.actor == "api"
        assert context.additional_info == {"attempt": 2}


class TestErrorHierarchy:
    """Test the error class hierarchy."""

    def test_base_error(self):
        context = create_error_context(operation="test")
        error = AmphitheatreError(
            "Base error", ErrorCategory.RUNTIME, context=context, suggestions=["Retry later"]
        )

        assert str(error) == "Base error"
        assert error.category == ErrorCategory.RUNTIME
        assert error.context == context
        assert error.recoverable is False
        assert error.suggestions == ["Retry later"]

    @pytest.mark.parametrize("error_class,category,recoverable", [
        (ValidationError, ErrorCategory.VALIDATION, False),
        (ConfigurationError, ErrorCategory.CONFIGURATION, False),
        (ResolutionError, ErrorCategory.RESOLUTION, False),
        (BuildError, ErrorCategory.BUILD, True),
        (SyncConflictError, ErrorCategory.SYNC, True),
        (ClusterUnavailableError, ErrorCategory.CLUSTER, True),
        (ResourceNotFoundError, ErrorCategory.CLUSTER, False),
        (StepTimeoutError, ErrorCategory.TIMEOUT, True),
        (NotReadyError, ErrorCategory.READINESS, True),
        (WorkflowError, ErrorCategory.WORKFLOW, False),
    ])
    def test_error_types(self, error_class, category, recoverable):
        """Test the category and recoverability of each error type."""
        error = error_class("Test message")

        assert isinstance(error, AmphitheatreError)
        assert error.category == category
        assert error.recoverable is recoverable
        assert is_recoverable(error) is recoverable

    def test_cycle_detected(self):
        error = CycleDetectedError(["c", "b"])
        assert isinstance(error, ResolutionError)
        assert error.members == ["b", "c"]
        assert error.suggestions

    def test_unknown_dependency(self):
        error = UnknownDependencyError(actor="api", missing="db")
        assert "'api' depends on unknown actor 'db'" in str(error)

    def test_cluster_request_error_keeps_status(self):
        error = ClusterRequestError("forbidden", status=403)
        assert error.status == 403
        assert error.recoverable is False

    def test_error_with_cause(self):
        original = OSError("connection reset")
        error = ClusterUnavailableError("list failed", cause=original)
        assert error.cause is original

    def test_transport_errors_are_recoverable(self):
        assert is_recoverable(TimeoutError()) is True
        assert is_recoverable(OSError()) is True
        assert is_recoverable(KeyError("x")) is False


class TestErrorHandler:
    """Test ErrorHandler functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.mock_console = Mock(spec=Console)
        self.error_handler = ErrorHandler(console=self.mock_console, verbose=False)

    def test_error_handler_creation(self):
        assert self.error_handler.console == self.mock_console
        assert self.error_handler.verbose is False
        assert self.error_handler.logger is not None

    def test_handle_structured_error(self):
        """Test handling of structured errors."""
        context = create_error_context(operation="parse_playbook", application="default/shop")
        error = ValidationError("Invalid actor name", context=context, suggestions=["Use lowercase"])

        self.error_handler.handle_error(error)

        self.mock_console.print.assert_called()
        panel = self.mock_console.print.call_args[0][0]
        assert hasattr(panel, "title")
        assert "Validation Error" in panel.title

    def test_handle_generic_error(self):
        """Test handling of generic Python exceptions."""
        self.error_handler.handle_error(ValueError("Generic"), context=create_error_context(operation="x"))

        panel = self.mock_console.print.call_args[0][0]
        assert "ValueError" in panel.title

    def test_handle_error_verbose_mode(self):
        """Test that verbose mode prints the cause and traceback."""
        verbose_handler = ErrorHandler(console=self.mock_console, verbose=True)
        error = BuildError("Build failed", cause=ValueError("bad buildpack"))

        verbose_handler.handle_error(error, show_traceback=True)

        assert self.mock_console.print.call_count >= 2
        self.mock_console.print_exception.assert_called()

    def test_error_categorization_display(self):
        """Test that categories display with the right emoji and title."""
        test_cases = [
            (ValidationError("Validation failed"), "⚠️", "Validation Error"),
            (ResolutionError("Cycle"), "🔗", "Resolution Error"),
            (BuildError("Build failed"), "🔨", "Build Error"),
            (ClusterUnavailableError("Down"), "🔌", "Cluster Error"),
            (WorkflowError("Stuck"), "🚀", "Workflow Error"),
        ]

        for error, expected_emoji, expected_title in test_cases:
            self.mock_console.reset_mock()
            self.error_handler.handle_error(error)

            panel = self.mock_console.print.call_args[0][0]
            assert expected_emoji in panel.title
            assert expected_title in panel.title


class TestGlobalErrorHandler:
    """Test global error handler functionality."""

    def test_set_and_get_error_handler(self):
        handler = ErrorHandler(console=Mock(spec=Console))
        set_error_handler(handler)
        assert get_error_handler() == handler

    def test_handle_error_function(self):
        mock_console = Mock(spec=Console)
        set_error_handler(ErrorHandler(console=mock_console))

        handle_error(ValidationError("Test error"), context=create_error_context(operation="test"))

        mock_console.print.assert_called()

    def test_handle_error_no_global_handler(self):
        """Test handle_error falls back to logging without a handler."""
        set_error_handler(None)

        with patch("amphitheatre.core.errors.logging") as mock_logging:
            handle_error(ValueError("Test error"))
            mock_logging.error.assert_called_once()
