"""
Unit tests for the layered configuration loader.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import json

import pytest

from amphitheatre.config import ConfigLoader, ControllerConfig, load_config
from amphitheatre.core.errors import ConfigurationError
from amphitheatre.workflow import RetryStrategy, StepName


class TestConfigLoader:
    """Merging of presets, files, environment and overrides."""

    def test_load_preset(self):
        preset = ConfigLoader.load_preset("defaults.json")
        assert preset["controller"]["workers"] == 4
        assert set(preset["steps"]) == {name.value for name in StepName}

    def test_missing_preset_is_empty(self):
        assert ConfigLoader.load_preset("nope.json") == {}

    def test_deep_merge(self):
        base = {"controller": {"workers": 4, "resync_interval": 120}, "list": [1, 2]}
        override = {"controller": {"workers": 8}, "list": [3]}
        merged = ConfigLoader.deep_merge(base, override)
        assert merged == {"controller": {"workers": 8, "resync_interval": 120}, "list": [3]}
        assert base["controller"]["workers"] == 4

    def test_load_env(self):
        env = {"AMP_WORKERS": "8", "AMP_IN_CLUSTER": "true", "AMP_NAMESPACE": "", "HOME": "/root"}
        assert ConfigLoader.load_env(env) == {
            "controller": {"workers": 8},
            "cluster": {"in_cluster": True},
        }

    def test_parse_overrides(self):
        overrides = ConfigLoader.parse_overrides(
            ["controller.resync_interval=30", "steps.build.timeout=600", "builder.registry=reg.local/x"]
        )
        assert overrides == {
            "controller": {"resync_interval": 30},
            "steps": {"build": {"timeout": 600}},
            "builder": {"registry": "reg.local/x"},
        }

    def test_parse_overrides_requires_assignment(self):
        with pytest.raises(ConfigurationError, match="Invalid override"):
            ConfigLoader.parse_overrides(["controller.workers"])

    def test_layer_priority(self, tmp_path):
        config_file = tmp_path / "amp.yaml"
        config_file.write_text("controller:\n  workers: 2\n  resync_interval: 45\n")
        merged = ConfigLoader.load(
            config_file,
            overrides={"controller": {"resync_interval": 10}},
            environ={"AMP_WORKERS": "6"},
        )
        assert merged["controller"]["workers"] == 6
        assert merged["controller"]["resync_interval"] == 10
        assert merged["controller"]["ready_requeue"] == 15

    def test_json_file(self, tmp_path):
        config_file = tmp_path / "amp.json"
        config_file.write_text(json.dumps({"builder": {"poll_interval": 1}}))
        assert ConfigLoader.load_file(config_file) == {"builder": {"poll_interval": 1}}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigLoader.load_file(tmp_path / "missing.yaml")

    def test_file_must_be_mapping(self, tmp_path):
        config_file = tmp_path / "amp.yaml"
        config_file.write_text("- one\n- two\n")
        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            ConfigLoader.load_file(config_file)

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "amp.yaml"
        config_file.write_text("controller: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid configuration file"):
            ConfigLoader.load_file(config_file)


class TestControllerConfig:
    """Validation of the merged configuration."""

    def test_defaults(self):
        config = load_config(environ={})
        assert config.workers == 4
        assert config.namespace is None
        assert config.max_failure_retries == 5
        assert config.failure_backoff.max_attempts == 5
        build = config.step(StepName.BUILD)
        assert build.timeout == 1800
        assert build.policy.max_attempts == 3
        assert build.policy.strategy is RetryStrategy.EXPONENTIAL_BACKOFF
        verify = config.step(StepName.VERIFY_READY)
        assert verify.policy.strategy is RetryStrategy.LINEAR_BACKOFF

    def test_overrides_reach_the_config(self):
        config = load_config(
            overrides={"controller": {"namespace": "team-a"}, "steps": {"sync": {"timeout": 5}}},
            environ={},
        )
        assert config.namespace == "team-a"
        assert config.step(StepName.SYNC).timeout == 5.0

    def test_registry_login_from_environment(self):
        config = load_config(environ={"AMP_REGISTRY_USERNAME": "robot", "AMP_REGISTRY_PASSWORD": "pw"})
        assert config.registry_username == "robot"
        assert config.registry_password == "pw"
        assert config.registry_secret == "amp-registry-credentials"

    def test_unbounded_step(self):
        config = load_config(overrides={"steps": {"build": {"timeout": None}}}, environ={})
        assert config.step(StepName.BUILD).timeout is None

    @pytest.mark.parametrize("overrides,message", [
        ({"controller": {"workers": 0}}, "workers must be > 0"),
        ({"controller": {"max_failure_retries": -1}}, "max_failure_retries must be >= 0"),
        ({"steps": {"deploy": {}}}, "Unknown step 'deploy'"),
        ({"steps": {"build": {"retry": {"strategy": "sometimes"}}}}, "Unknown retry strategy"),
        ({"steps": {"sync": {"timeout": 0}}}, "Timeout of step 'sync'"),
        ({"controller": {"workers": "many"}}, "Invalid configuration value"),
        ({"cluster": {"in_cluster": True, "kubeconfig": "/tmp/kc"}}, "mutually exclusive"),
        ({"builder": {"username": "robot"}}, "set together"),
    ])
    def test_invalid_values(self, overrides, message):
        with pytest.raises(ConfigurationError, match=message):
            load_config(overrides=overrides, environ={})

    def test_missing_step_settings(self):
        with pytest.raises(ConfigurationError, match="Missing settings for step 'resolve-inputs'"):
            ControllerConfig(steps={})
