#!/usr/bin/env python3
"""
Validated controller configuration.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from amphitheatre.core.errors import ConfigurationError
from amphitheatre.workflow.retry import RetryPolicy, RetryStrategy
from amphitheatre.workflow.steps import STEP_ORDER, StepName


@dataclass(frozen=True)
class StepSettings:
    timeout: Optional[float] = 60.0
    policy: RetryPolicy = field(default_factory=RetryPolicy)


def _optional(value: Any) -> Optional[str]:
    return None if value in (None, "") else str(value)


def _default_steps() -> Dict[StepName, StepSettings]:
    return {name: StepSettings() for name in STEP_ORDER}


@dataclass
class ControllerConfig:
    """Everything needed to construct and start the controller."""

    # cluster connection
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    in_cluster: bool = False
    request_timeout: float = 30.0
    watch_timeout: int = 300

    # scheduling
    namespace: Optional[str] = None
    workers: int = 4
    max_concurrent_workflows: int = 8
    resync_interval: float = 120.0
    error_requeue: float = 60.0
    ready_requeue: float = 15.0
    max_failure_retries: int = 5
    failure_backoff: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(base_delay=10.0, max_delay=300.0)
    )
    publish_events: bool = True

    steps: Dict[StepName, StepSettings] = field(default_factory=_default_steps)

    # builder
    registry: str = "harbor.amp-system.svc.cluster.local/library"
    cluster_builder: str = "amp-default-cluster-builder"
    service_account: str = "default"
    build_poll_interval: float = 5.0
    # push credentials provisioned into every Playbook namespace
    registry_username: Optional[str] = None
    registry_password: Optional[str] = None
    registry_secret: str = "amp-registry-credentials"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: On the first invalid value
        """
        positive = {
            "workers": self.workers,
            "max_concurrent_workflows": self.max_concurrent_workflows,
            "resync_interval": self.resync_interval,
            "request_timeout": self.request_timeout,
            "watch_timeout": self.watch_timeout,
            "build_poll_interval": self.build_poll_interval,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigurationError(f"{name} must be > 0, got {value}")
        for name, value in (("error_requeue", self.error_requeue),
                            ("ready_requeue", self.ready_requeue),
                            ("max_failure_retries", self.max_failure_retries)):
            if value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value}")
        if self.in_cluster and self.kubeconfig:
            raise ConfigurationError(
                "in_cluster and kubeconfig are mutually exclusive",
                suggestions=["Unset cluster.kubeconfig when running inside the cluster"],
            )
        if bool(self.registry_username) != bool(self.registry_password):
            raise ConfigurationError(
                "registry_username and registry_password must be set together",
                suggestions=["Set both builder.username and builder.password, or neither"],
            )
        for name in STEP_ORDER:
            if name not in self.steps:
                raise ConfigurationError(f"Missing settings for step '{name.value}'")
            timeout = self.steps[name].timeout
            if timeout is not None and timeout <= 0:
                raise ConfigurationError(f"Timeout of step '{name.value}' must be > 0, got {timeout}")

    def step(self, name: StepName) -> StepSettings:
        return self.steps[name]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ControllerConfig":
        """
        Build from a merged configuration dictionary (see ConfigLoader).

        Raises:
            ConfigurationError: On unknown steps, wrong types or invalid values
        """
        cluster = data.get("cluster") or {}
        controller = data.get("controller") or {}
        builder = data.get("builder") or {}

        try:
            steps = _default_steps()
            for raw_name, raw in (data.get("steps") or {}).items():
                try:
                    name = StepName(raw_name)
                except ValueError:
                    valid = ", ".join(n.value for n in STEP_ORDER)
                    raise ConfigurationError(
                        f"Unknown step '{raw_name}' in configuration",
                        suggestions=[f"Configure one of: {valid}"],
                    )
                raw = raw or {}
                steps[name] = StepSettings(
                    timeout=None if raw.get("timeout") is None else float(raw["timeout"]),
                    policy=RetryPolicy.from_dict(raw.get("retry") or {}),
                )

            max_failure_retries = int(controller.get("max_failure_retries", 5))
            backoff = dict(data.get("failure_backoff") or {})
            backoff.setdefault("strategy", RetryStrategy.EXPONENTIAL_BACKOFF.value)
            backoff["max_attempts"] = max(1, max_failure_retries)
            return cls(
                kubeconfig=cluster.get("kubeconfig"),
                context=cluster.get("context"),
                in_cluster=bool(cluster.get("in_cluster", False)),
                request_timeout=float(cluster.get("request_timeout", 30)),
                watch_timeout=int(cluster.get("watch_timeout", 300)),
                namespace=controller.get("namespace") or None,
                workers=int(controller.get("workers", 4)),
                max_concurrent_workflows=int(controller.get("max_concurrent_workflows", 8)),
                resync_interval=float(controller.get("resync_interval", 120)),
                error_requeue=float(controller.get("error_requeue", 60)),
                ready_requeue=float(controller.get("ready_requeue", 15)),
                max_failure_retries=max_failure_retries,
                failure_backoff=RetryPolicy.from_dict(backoff),
                publish_events=bool(controller.get("publish_events", True)),
                steps=steps,
                registry=str(builder.get("registry", cls.registry)),
                cluster_builder=str(builder.get("cluster_builder", cls.cluster_builder)),
                service_account=str(builder.get("service_account", cls.service_account)),
                build_poll_interval=float(builder.get("poll_interval", 5)),
                registry_username=_optional(builder.get("username")),
                registry_password=_optional(builder.get("password")),
                registry_secret=str(builder.get("secret_name", cls.registry_secret)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}", cause=e)
