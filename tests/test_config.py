"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from userconfig_operator.config import (
    DEFAULT_RECONCILE_INTERVAL_SECONDS,
    DEFAULT_TOKEN_EXPIRATION_SECONDS,
    ConfigurationError,
    OperatorConfig,
)


class TestOperatorConfig:
    """Tests for OperatorConfig class."""

    def test_defaults(self) -> None:
        """Test that the defaults match the published resource."""
        config = OperatorConfig()

        assert config.api_version == "myoperator.01cloud.io/v1alpha1"
        assert config.finalizer == "myoperator.01cloud.io/finalizer"
        assert config.token_expiration_seconds == 86400 * 365
        assert config.fallback_api_group == "apps"
        assert config.kubeconfig_path == Path("/config")

    def test_managed_labels(self) -> None:
        labels = OperatorConfig().managed_labels("alice")

        assert labels == {
            "app.kubernetes.io/managed-by": "userconfig-operator",
            "userconfig.myoperator.01cloud.io/name": "alice",
        }

    def test_wildcard_fallback_group_rejected(self) -> None:
        """Test that unknown resources can never be granted the wildcard group."""
        with pytest.raises(ConfigurationError) as exc_info:
            OperatorConfig(fallback_api_group="*")

        assert "FALLBACK_API_GROUP" in str(exc_info.value)

    def test_core_fallback_group_allowed(self) -> None:
        assert OperatorConfig(fallback_api_group="").fallback_api_group == ""

    def test_invalid_crd_group(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            OperatorConfig(crd_group="not a group")

        assert "CRD_GROUP" in str(exc_info.value)

    def test_invalid_reconcile_interval(self) -> None:
        """Test that out-of-range reconcile interval raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            OperatorConfig(reconcile_interval_seconds=1)

        assert "RECONCILE_INTERVAL" in str(exc_info.value)

    def test_invalid_token_expiration(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            OperatorConfig(token_expiration_seconds=60)

        assert "TOKEN_EXPIRATION_SECONDS" in str(exc_info.value)

    def test_ca_data_requires_server(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            OperatorConfig(cluster_ca_data="Y2E=")

        assert "CLUSTER_SERVER" in str(exc_info.value)

    def test_errors_are_collected(self) -> None:
        """Test that every problem is reported at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            OperatorConfig(reconcile_interval_seconds=0, max_concurrent_reconciles=0)

        message = str(exc_info.value)
        assert "RECONCILE_INTERVAL" in message
        assert "MAX_CONCURRENT_RECONCILES" in message

    def test_from_env(self) -> None:
        """Test loading configuration from environment."""
        env = {
            "CRD_GROUP": "example.io",
            "FALLBACK_API_GROUP": "batch",
            "TOKEN_EXPIRATION_SECONDS": "3600",
            "KUBECONFIG_PATH": "/tmp/kubeconfig",
            "CLUSTER_SERVER": "https://k8s.example.io",
            "RECONCILE_INTERVAL": "60",
            "ENABLE_AUDIT_LOGGING": "false",
        }

        with patch.dict(os.environ, env, clear=True):
            config = OperatorConfig.from_env()

        assert config.crd_group == "example.io"
        assert config.finalizer == "example.io/finalizer"
        assert config.fallback_api_group == "batch"
        assert config.token_expiration_seconds == 3600
        assert config.kubeconfig_path == Path("/tmp/kubeconfig")
        assert config.cluster_server == "https://k8s.example.io"
        assert config.reconcile_interval_seconds == 60
        assert config.enable_audit_logging is False

    def test_from_env_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            config = OperatorConfig.from_env()

        assert config.reconcile_interval_seconds == DEFAULT_RECONCILE_INTERVAL_SECONDS
        assert config.token_expiration_seconds == DEFAULT_TOKEN_EXPIRATION_SECONDS
        assert config.cluster_server is None
        assert config.enable_audit_logging is True

    def test_from_env_non_integer(self) -> None:
        with (
            patch.dict(os.environ, {"RECONCILE_INTERVAL": "soon"}, clear=True),
            pytest.raises(ConfigurationError) as exc_info,
        ):
            OperatorConfig.from_env()

        assert "RECONCILE_INTERVAL must be an integer" in str(exc_info.value)
