#!/usr/bin/env python3
"""
Registry credentials for a Playbook's namespace.

Builds push their images with the namespace's build ServiceAccount, so
before the first build of a generation the controller makes sure that
namespace holds a ``kubernetes.io/dockerconfigjson`` Secret for the
registry and that the ServiceAccount references it both as a mountable
secret and as an image pull secret. Every call converges from whatever is
currently stored; nothing is written when the namespace is already set up.

The Secret and the ServiceAccount are shared by all Playbooks of a
namespace and carry no owner reference.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from amphitheatre.cluster.base import ClusterClient
from amphitheatre.config.settings import ControllerConfig
from amphitheatre.core.constants import FIELD_MANAGER, LABEL_MANAGED_BY

logger = logging.getLogger(__name__)

DOCKER_CONFIG_TYPE = "kubernetes.io/dockerconfigjson"
DOCKER_CONFIG_KEY = ".dockerconfigjson"


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


@dataclass(frozen=True)
class RegistryCredential:
    """Basic-auth login for one image registry."""

    server: str
    username: str
    password: str

    @classmethod
    def from_config(cls, config: ControllerConfig) -> Optional["RegistryCredential"]:
        """The configured credential, or None when the registry needs no login."""
        if not config.registry_username:
            return None
        return cls(
            server=config.registry.split("/", 1)[0],
            username=config.registry_username,
            password=config.registry_password or "",
        )

    def docker_config(self) -> str:
        auth = _b64(f"{self.username}:{self.password}")
        return json.dumps(
            {"auths": {self.server: {"username": self.username, "password": self.password, "auth": auth}}},
            sort_keys=True,
        )

    def secret(self, namespace: str, name: str) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "labels": {LABEL_MANAGED_BY: FIELD_MANAGER},
            },
            "type": DOCKER_CONFIG_TYPE,
            "data": {DOCKER_CONFIG_KEY: _b64(self.docker_config())},
        }


def _with_reference(refs: Optional[List[Dict[str, Any]]], name: str) -> List[Dict[str, Any]]:
    refs = list(refs or [])
    if not any(ref.get("name") == name for ref in refs):
        refs.append({"name": name})
    return refs


class CredentialProvisioner:
    """Keeps the registry Secret and the build ServiceAccount of a namespace in place."""

    def __init__(self, cluster: ClusterClient, config: ControllerConfig):
        self.cluster = cluster
        self.credential = RegistryCredential.from_config(config)
        self.secret_name = config.registry_secret
        self.service_account = config.service_account

    @property
    def enabled(self) -> bool:
        return self.credential is not None

    async def ensure(self, namespace: str) -> List[str]:
        """
        Converge the namespace's credentials.

        Returns:
            Kinds written, empty when everything was already in place

        Raises:
            SyncConflictError: A concurrent writer changed an object.
            ClusterUnavailableError: The cluster could not be reached.
        """
        if self.credential is None:
            return []
        written = []
        if await self._ensure_secret(namespace):
            written.append("Secret")
        if await self._ensure_service_account(namespace):
            written.append("ServiceAccount")
        if written:
            logger.info("Provisioned registry credentials in %s: %s", namespace, ", ".join(written))
        return written

    async def _ensure_secret(self, namespace: str) -> bool:
        desired = self.credential.secret(namespace, self.secret_name)
        observed = await self.cluster.get("Secret", namespace, self.secret_name)
        if observed is None:
            await self.cluster.create(desired)
            return True
        manifest = observed.manifest
        if manifest.get("type") == desired["type"] and manifest.get("data") == desired["data"]:
            return False
        if manifest.get("type") != desired["type"]:
            # the type of a Secret is immutable
            await self.cluster.delete("Secret", namespace, self.secret_name)
            await self.cluster.create(desired)
            return True
        updated = dict(manifest, data=desired["data"])
        await self.cluster.update(updated, observed.version)
        return True

    async def _ensure_service_account(self, namespace: str) -> bool:
        observed = await self.cluster.get("ServiceAccount", namespace, self.service_account)
        if observed is None:
            await self.cluster.create({
                "apiVersion": "v1",
                "kind": "ServiceAccount",
                "metadata": {"name": self.service_account, "namespace": namespace},
                "secrets": [{"name": self.secret_name}],
                "imagePullSecrets": [{"name": self.secret_name}],
            })
            return True
        manifest = dict(observed.manifest)
        secrets = _with_reference(manifest.get("secrets"), self.secret_name)
        pull_secrets = _with_reference(manifest.get("imagePullSecrets"), self.secret_name)
        unchanged = (
            secrets == (manifest.get("secrets") or [])
            and pull_secrets == (manifest.get("imagePullSecrets") or [])
        )
        if unchanged:
            return False
        manifest.update(secrets=secrets, imagePullSecrets=pull_secrets)
        await self.cluster.update(manifest, observed.version)
        return True
