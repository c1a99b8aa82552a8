"""Pytest configuration and fixtures for rollout tests."""

import logging
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from kubernetes import client

from helpers import KubectlRoutes
from sentinel_rollout.config import get_settings
from sentinel_rollout.kubectl import Kubectl
from sentinel_rollout.logger import DeployLogger
from sentinel_rollout.resources.base import utcnow


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Make every test start from default settings."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def deploy_logger():
    """Deploy logger scoped to a test context and namespace."""
    logger = logging.getLogger("sentinel_rollout.tests")
    logger.setLevel(logging.DEBUG)
    return DeployLogger(logger, context="minikube", namespace="test-ns")


@pytest.fixture
def mock_kubectl():
    """Mock kubectl client routing run() calls through KubectlRoutes."""
    kubectl = MagicMock(spec=Kubectl)
    kubectl.namespace = "test-ns"
    kubectl.context = "minikube"
    kubectl.routes = KubectlRoutes()
    kubectl.run.side_effect = kubectl.routes
    kubectl.server_version.return_value = (1, 28, 0)
    kubectl.server_dry_run_enabled.return_value = True
    return kubectl


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.context = "minikube"
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.apis = MagicMock(spec=client.ApisApi)
    mock_conn.apiextensions_v1 = MagicMock(spec=client.ApiextensionsV1Api)
    mock_conn.api_client = MagicMock(spec=client.ApiClient)
    return mock_conn


@pytest.fixture
def started_at():
    """A deploy start time a few seconds in the past."""
    return utcnow() - timedelta(seconds=10)
