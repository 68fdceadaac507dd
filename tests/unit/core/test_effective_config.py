"""Unit tests for core.effective_config module.

This file tests resolve_effective_config, which projects an application spec
and the environment defaults onto the configuration used to deploy a cluster.

# Test Coverage

The tests cover:
  - Required fields: imageName, jarURI
  - Derived Flink configuration keys and layering of flinkConfig
  - Parallelism, memory, CPU and rest.port validation
  - REST URL rendering and immutability

# Running Tests

Run with: pytest tests/unit/core/test_effective_config.py
"""

import pytest

from config import FlinkConfig
from core.effective_config import EffectiveConfig, resolve_effective_config
from core.exceptions import ConfigurationError

# =============================================================================
# Required Field Tests
# =============================================================================


class TestRequiredFields:
    """Test suite for mandatory spec fields."""

    def test_missing_image_raises(self, make_app, flink_config: FlinkConfig) -> None:
        with pytest.raises(ConfigurationError, match="imageName"):
            resolve_effective_config(make_app(image=""), flink_config)

    def test_missing_jar_raises(self, make_app, flink_config: FlinkConfig) -> None:
        with pytest.raises(ConfigurationError, match="jarURI"):
            resolve_effective_config(make_app(jarURI=None), flink_config)


# =============================================================================
# Resolution Tests
# =============================================================================


class TestResolution:
    """Test suite for the derived configuration."""

    def test_minimal_spec(self, make_app, flink_config: FlinkConfig) -> None:
        cfg = resolve_effective_config(make_app("app1", "flink"), flink_config)

        assert isinstance(cfg, EffectiveConfig)
        assert cfg.key == "flink/app1"
        assert cfg.cluster_id == "app1"
        assert cfg.image == "flink:1.17"
        assert cfg.rest_port == 8081
        assert cfg.rest_url == "http://app1-rest.flink:8081"
        assert cfg.flink_conf["execution.target"] == "kubernetes-application"
        assert cfg.flink_conf["kubernetes.cluster-id"] == "app1"
        assert cfg.flink_conf["kubernetes.namespace"] == "flink"
        assert cfg.flink_conf["pipeline.jars"] == "local:///opt/flink/job.jar"
        assert cfg.flink_conf["parallelism.default"] == "1"
        assert "execution.savepoint.path" not in cfg.flink_conf

    def test_full_spec(self, make_app, flink_config: FlinkConfig) -> None:
        app = make_app(
            imagePullPolicy="Always",
            imagePullSecrets=["a", "b"],
            entryClass="com.example.Job",
            mainArgs=["--x", "1"],
            parallelism=3,
            jobManagerResource={"mem": "1024m", "cpu": 1},
            taskManagerResource={"mem": "2g", "cpu": 0.5},
            savepointsDir="s3://sp",
            fromSavepoint="s3://sp/savepoint-1",
            allowNonRestoredState=True,
        )
        conf = resolve_effective_config(app, flink_config).flink_conf

        assert conf["kubernetes.container.image.pull-policy"] == "Always"
        assert conf["kubernetes.container.image.pull-secrets"] == "a;b"
        assert conf["$internal.application.main"] == "com.example.Job"
        assert conf["$internal.application.program-args"] == "--x;1"
        assert conf["parallelism.default"] == "3"
        assert conf["jobmanager.memory.process.size"] == "1024m"
        assert conf["taskmanager.memory.process.size"] == "2g"
        assert conf["kubernetes.jobmanager.cpu"] == "1.0"
        assert conf["kubernetes.taskmanager.cpu"] == "0.5"
        assert conf["state.savepoints.dir"] == "s3://sp"
        assert conf["execution.savepoint.path"] == "s3://sp/savepoint-1"
        assert conf["execution.savepoint.ignore-unclaimed-state"] == "true"

    def test_flink_config_overrides_derived_values(self, make_app) -> None:
        """Test configuration layering.

        **Why this test is important:**
          - Users must be able to override any derived Flink key
          - Environment defaults must never win over the application

        **What it tests:**
          - Environment defaults are applied
          - flinkConfig entries replace defaults and derived keys
          - rest.port from flinkConfig drives the REST URL
        """
        flink = FlinkConfig(default_conf={"state.backend": "rocksdb", "parallelism.default": "9"})
        app = make_app(flinkConfig={"parallelism.default": "7", "rest.port": "9091"})

        cfg = resolve_effective_config(app, flink)

        assert cfg.flink_conf["state.backend"] == "rocksdb"
        assert cfg.flink_conf["parallelism.default"] == "7"
        assert cfg.rest_port == 9091
        assert cfg.rest_url.endswith(":9091")

    def test_non_positive_parallelism_becomes_one(self, make_app, flink_config: FlinkConfig) -> None:
        cfg = resolve_effective_config(make_app(parallelism=0), flink_config)
        assert cfg.flink_conf["parallelism.default"] == "1"

    def test_config_is_immutable(self, make_app, flink_config: FlinkConfig) -> None:
        cfg = resolve_effective_config(make_app(), flink_config)
        with pytest.raises(TypeError):
            cfg.flink_conf["x"] = "y"  # type: ignore[index]


# =============================================================================
# Validation Tests
# =============================================================================


class TestValidation:
    """Test suite for rejected specs."""

    @pytest.mark.parametrize(
        ("spec", "match"),
        [
            ({"parallelism": "many"}, "parallelism"),
            ({"jobManagerResource": {"mem": "lots"}}, "jobManagerResource.mem"),
            ({"taskManagerResource": {"cpu": "fast"}}, "taskManagerResource.cpu"),
            ({"taskManagerResource": {"cpu": 0}}, "must be positive"),
            ({"flinkConfig": {"rest.port": "http"}}, "rest.port"),
            ({"flinkConfig": {"rest.port": "70000"}}, "out of range"),
        ],
    )
    def test_invalid_spec_raises(self, make_app, flink_config: FlinkConfig, spec: dict, match: str) -> None:
        with pytest.raises(ConfigurationError, match=match):
            resolve_effective_config(make_app(**spec), flink_config)
