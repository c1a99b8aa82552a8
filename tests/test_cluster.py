"""Tests for the typed cluster connection."""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from sentinel_rollout.cluster import ClusterConnection


@pytest.fixture
def connection():
    """Connection backed by a mock API client."""
    conn = ClusterConnection("minikube", api_client=MagicMock(spec=client.ApiClient))
    conn._core_v1 = MagicMock(spec=client.CoreV1Api)
    return conn


class TestClusterConnection:
    """Test cases for ClusterConnection."""

    def test_namespace_exists(self, connection):
        """Test that a readable namespace exists."""
        assert connection.namespace_exists("test-ns") is True
        connection.core_v1.read_namespace.assert_called_once_with(name="test-ns")

    def test_namespace_not_found(self, connection):
        """Test that a 404 means the namespace does not exist."""
        connection.core_v1.read_namespace.side_effect = ApiException(status=404)

        assert connection.namespace_exists("missing") is False

    def test_forbidden_is_raised(self, connection):
        """Test that non-transient API errors are raised without retrying."""
        connection.core_v1.read_namespace.side_effect = ApiException(status=403)

        with pytest.raises(ApiException):
            connection.namespace_exists("test-ns")
        assert connection.core_v1.read_namespace.call_count == 1

    def test_transient_errors_are_retried(self, connection, monkeypatch):
        """Test that server errors are retried before succeeding."""
        monkeypatch.setattr(ClusterConnection.namespace_exists.retry, "sleep", MagicMock())
        connection.core_v1.read_namespace.side_effect = [ApiException(status=503), MagicMock()]

        assert connection.namespace_exists("test-ns") is True
        assert connection.core_v1.read_namespace.call_count == 2

    def test_kubeconfig_failure(self):
        """Test that kubeconfig loading errors become ValueError."""
        with patch("sentinel_rollout.cluster.config.load_kube_config", side_effect=Exception("no such context")):
            with pytest.raises(ValueError, match="Failed to initialize cluster connection: no such context"):
                ClusterConnection("nope")

    def test_in_cluster_without_context(self):
        """Test that no context means in-cluster configuration."""
        with patch("sentinel_rollout.cluster.config.load_incluster_config") as load_incluster:
            ClusterConnection(None)

        load_incluster.assert_called_once()

    def test_close(self):
        """Test that closing releases the API client."""
        api_client = MagicMock(spec=client.ApiClient)

        with ClusterConnection("minikube", api_client=api_client) as conn:
            assert conn.api_client is api_client

        api_client.close.assert_called_once()
        with pytest.raises(RuntimeError, match="not initialized"):
            conn.api_client
