"""Tests for cluster connection and namespace resolution."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from kubernetes.config.config_exception import ConfigException

from kubectl_ran.errors import ClusterConfigError
from kubectl_ran.kube import load_cluster

CONTEXTS = [
    {"name": "dev", "context": {"cluster": "dev", "namespace": "team-dev"}},
    {"name": "prod", "context": {"cluster": "prod"}},
]


@pytest.fixture
def kube_config():
    with patch("kubectl_ran.kube.config") as config, patch("kubectl_ran.kube.client") as client:
        config.list_kube_config_contexts.return_value = (CONTEXTS, CONTEXTS[0])
        yield config, client


class TestLoadCluster:
    """load_cluster() namespace precedence."""

    def test_explicit_namespace_wins(self, kube_config):
        config, _ = kube_config
        cluster = load_cluster(kubeconfig="/tmp/kubeconfig", namespace="batch")

        assert cluster.namespace == "batch"
        config.load_kube_config.assert_called_once_with(config_file="/tmp/kubeconfig", context=None)

    def test_active_context_namespace(self, kube_config):
        assert load_cluster(kubeconfig="/tmp/kubeconfig").namespace == "team-dev"

    def test_selected_context_without_namespace(self, kube_config):
        config, _ = kube_config
        cluster = load_cluster(kubeconfig="/tmp/kubeconfig", context="prod")

        assert cluster.namespace == "default"
        config.load_kube_config.assert_called_once_with(config_file="/tmp/kubeconfig", context="prod")

    def test_api_is_core_v1(self, kube_config):
        _, client = kube_config
        cluster = load_cluster(kubeconfig="/tmp/kubeconfig")
        assert cluster.api is client.CoreV1Api.return_value

    def test_config_error(self, kube_config):
        config, _ = kube_config
        config.load_kube_config.side_effect = ConfigException("Invalid kube-config file.")

        with pytest.raises(ClusterConfigError, match="Invalid kube-config file"):
            load_cluster(kubeconfig="/tmp/kubeconfig")
