"""
Pytest configuration and shared fixtures for amphitheatre tests.

Provides the in-memory cluster, a scripted builder and a recording event
publisher so the reconciler can be driven end to end without Kubernetes.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import pytest

from amphitheatre.core.errors import set_error_handler
from tests.fixtures.utils import FakeBuilder, InMemoryCluster, RecordingPublisher, fast_config


# ============================================================================
# Collaborator Fixtures
# ============================================================================

@pytest.fixture
def cluster():
    """Empty in-memory cluster; Deployments become ready when written."""
    return InMemoryCluster()


@pytest.fixture
def slow_cluster():
    """In-memory cluster whose Deployments never report readiness."""
    return InMemoryCluster(auto_ready=False)


@pytest.fixture
def builder():
    return FakeBuilder()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def config():
    """Controller configuration with immediate retries."""
    return fast_config()


@pytest.fixture(autouse=True)
def reset_error_handler():
    """Keep the global error handler from leaking between tests."""
    yield
    set_error_handler(None)


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "e2e: end-to-end scenarios against the in-memory cluster")
