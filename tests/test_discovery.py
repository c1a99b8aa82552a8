"""Tests for cluster resource discovery."""

from unittest.mock import MagicMock

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from sentinel_rollout.discovery import ClusterResourceDiscovery


def resource_list(*resources):
    return client.V1APIResourceList(
        group_version="v1",
        resources=[
            client.V1APIResource(
                name=name,
                kind=kind,
                namespaced=namespaced,
                singular_name="",
                verbs=verbs,
            )
            for name, kind, namespaced, verbs in resources
        ],
    )


def api_group(name, version):
    group_version = f"{name}/{version}"
    gv = client.V1GroupVersionForDiscovery(group_version=group_version, version=version)
    return client.V1APIGroup(name=name, versions=[gv], preferred_version=gv)


CRD = {
    "apiVersion": "apiextensions.k8s.io/v1",
    "kind": "CustomResourceDefinition",
    "metadata": {"name": "widgets.example.com", "annotations": {"rollout.sentinel.io/prunable": "true"}},
    "spec": {"group": "example.com", "names": {"kind": "Widget"}, "versions": [{"name": "v1"}]},
}


def build_discovery(mock_cluster_connection, deploy_logger):
    mock_cluster_connection.core_v1.get_api_resources.return_value = resource_list(
        ("pods", "Pod", True, ["create", "delete", "get"]),
        ("pods/log", "Pod", True, ["get"]),
        ("nodes", "Node", False, ["delete", "get"]),
        ("namespaces", "Namespace", False, ["create", "delete"]),
    )
    mock_cluster_connection.apis.get_api_versions.return_value = client.V1APIGroupList(
        groups=[api_group("apps", "v1"), api_group("metrics.k8s.io", "v1beta1")]
    )

    def call_api(path, method, **kwargs):
        if path == "/apis/metrics.k8s.io/v1beta1":
            raise ApiException(status=503, reason="Service Unavailable")
        return resource_list(
            ("deployments", "Deployment", True, ["create", "delete"]),
            ("clusterthings", "ClusterThing", False, ["get"]),
        )

    mock_cluster_connection.api_client.call_api.side_effect = call_api
    return ClusterResourceDiscovery(mock_cluster_connection, "test-ns", deploy_logger)


class TestApiResources:
    """Test cases for API resource discovery."""

    def test_core_and_group_resources(self, mock_cluster_connection, deploy_logger):
        """Test that core and preferred group versions are merged, skipping subresources."""
        discovery = build_discovery(mock_cluster_connection, deploy_logger)

        kinds = [(r.group, r.version, r.kind) for r in discovery.api_resources]

        assert kinds == [
            ("", "v1", "Pod"),
            ("", "v1", "Node"),
            ("", "v1", "Namespace"),
            ("apps", "v1", "Deployment"),
            ("apps", "v1", "ClusterThing"),
        ]

    def test_unavailable_group_is_skipped(self, mock_cluster_connection, deploy_logger, caplog):
        """Test that an unavailable aggregated API does not fail discovery."""
        discovery = build_discovery(mock_cluster_connection, deploy_logger)

        discovery.api_resources

        assert "Skipping API group metrics.k8s.io/v1beta1: 503 Service Unavailable" in caplog.text

    def test_results_are_cached(self, mock_cluster_connection, deploy_logger):
        """Test that discovery only queries the cluster once."""
        discovery = build_discovery(mock_cluster_connection, deploy_logger)

        discovery.api_resources
        discovery.api_resources

        mock_cluster_connection.core_v1.get_api_resources.assert_called_once()

    def test_global_resource_kinds(self, mock_cluster_connection, deploy_logger):
        """Test that cluster-scoped kinds are reported as global."""
        discovery = build_discovery(mock_cluster_connection, deploy_logger)

        assert discovery.global_resource_kinds == ["Node", "Namespace", "ClusterThing"]


class TestCrds:
    """Test cases for CRD discovery."""

    def test_crds_built_from_cluster(self, mock_cluster_connection, deploy_logger):
        """Test that listed CRDs become CustomResourceDefinition resources."""
        mock_cluster_connection.apiextensions_v1.list_custom_resource_definition.return_value = MagicMock(
            items=[MagicMock()]
        )
        mock_cluster_connection.api_client.sanitize_for_serialization.return_value = CRD
        discovery = ClusterResourceDiscovery(mock_cluster_connection, "test-ns", deploy_logger)

        (crd,) = discovery.crds

        assert crd.crd_kind == "Widget"
        assert crd.prunable is True
        assert crd.context == "minikube"

