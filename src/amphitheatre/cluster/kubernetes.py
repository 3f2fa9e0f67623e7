#!/usr/bin/env python3
"""
Kubernetes implementation of the cluster API collaborator.

Uses the official Kubernetes Python client (dynamic client) so every kind in
``KINDS`` is handled by the same code path. The client is synchronous; each
call runs in a worker thread and is bounded by ``request_timeout`` so no
reconcile task blocks for an unbounded time.

API errors are translated into the controller's error hierarchy:

- 404 -> ResourceNotFoundError (or None / False for get / delete)
- 409 -> SyncConflictError (retryable)
- 429, 5xx, transport errors, timeouts -> ClusterUnavailableError (retryable)
- other 4xx -> ClusterRequestError

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import asyncio
import copy
import logging
import threading
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from kubernetes import client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient
from urllib3.exceptions import HTTPError

from amphitheatre.cluster.base import (
    ClusterClient,
    ClusterObject,
    WatchEvent,
    kind_info,
    label_selector,
)
from amphitheatre.core.errors import (
    ClusterRequestError,
    ClusterUnavailableError,
    ConfigurationError,
    ResourceNotFoundError,
    SyncConflictError,
    create_error_context,
)

logger = logging.getLogger(__name__)

_END = object()


def load_api_client(
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
    in_cluster: bool = False,
) -> client.ApiClient:
    """
    Load cluster connection parameters.

    Raises:
        ConfigurationError: If no usable configuration is found.
    """
    try:
        if in_cluster:
            k8s_config.load_incluster_config()
        else:
            k8s_config.load_kube_config(config_file=kubeconfig, context=context)
    except (k8s_config.ConfigException, OSError) as e:
        raise ConfigurationError(
            f"Could not load Kubernetes configuration: {e}",
            context=create_error_context(operation="load_kube_config", file_path=kubeconfig),
            suggestions=[
                "Check that ~/.kube/config exists or pass --kubeconfig",
                "Use --in-cluster when running inside a pod",
            ],
            cause=e,
        )
    return client.ApiClient()


class KubernetesCluster(ClusterClient):
    """Cluster client backed by ``kubernetes.dynamic.DynamicClient``."""

    def __init__(
        self,
        api_client: Optional[client.ApiClient] = None,
        dynamic_client: Optional[DynamicClient] = None,
        request_timeout: float = 30.0,
        watch_timeout: int = 300,
    ):
        """
        Args:
            api_client: Configured API client (see ``load_api_client``)
            dynamic_client: Pre-built dynamic client, mostly for tests
            request_timeout: Upper bound for a single API call in seconds
            watch_timeout: Server side timeout of one watch stream in seconds
        """
        if dynamic_client is None:
            dynamic_client = DynamicClient(api_client or client.ApiClient())
        self.dynamic = dynamic_client
        self.request_timeout = request_timeout
        self.watch_timeout = watch_timeout
        self._resources: Dict[str, Any] = {}

    def _resource(self, kind: str):
        if kind not in self._resources:
            info = kind_info(kind)
            self._resources[kind] = self.dynamic.resources.get(
                api_version=info.api_version, kind=info.kind
            )
        return self._resources[kind]

    async def _call(self, operation: str, resource_id: str, func: Callable, **kwargs) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, **kwargs), timeout=self.request_timeout
            )
        except ApiException as e:
            raise self._translate(e, operation, resource_id)
        except asyncio.TimeoutError as e:
            raise ClusterUnavailableError(
                f"{operation} {resource_id} timed out after {self.request_timeout}s",
                context=create_error_context(operation=operation, resource=resource_id),
                cause=e,
            )
        except (HTTPError, OSError) as e:
            raise ClusterUnavailableError(
                f"{operation} {resource_id} failed: {e}",
                context=create_error_context(operation=operation, resource=resource_id),
                cause=e,
            )

    @staticmethod
    def _translate(e: ApiException, operation: str, resource_id: str) -> Exception:
        context = create_error_context(
            operation=operation, resource=resource_id, additional_info={"status": e.status}
        )
        message = f"{operation} {resource_id}: {e.status} {e.reason}"
        if e.status == 404:
            return ResourceNotFoundError(message, context=context, cause=e)
        if e.status == 409:
            return SyncConflictError(message, context=context, cause=e)
        if e.status == 429 or (e.status or 0) >= 500:
            return ClusterUnavailableError(message, context=context, cause=e)
        return ClusterRequestError(message, status=e.status, context=context, cause=e)

    @staticmethod
    def _as_object(result: Any) -> ClusterObject:
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        return ClusterObject(manifest=result)

    @staticmethod
    def _id(manifest: Dict[str, Any]) -> str:
        metadata = manifest.get("metadata") or {}
        return f"{manifest.get('kind')}/{metadata.get('namespace')}/{metadata.get('name')}"

    async def get(self, kind: str, namespace: str, name: str) -> Optional[ClusterObject]:
        resource = self._resource(kind)
        try:
            result = await self._call(
                "get", f"{kind}/{namespace}/{name}", resource.get, name=name, namespace=namespace
            )
        except ResourceNotFoundError:
            return None
        return self._as_object(result)

    async def create(self, manifest: Dict[str, Any]) -> ClusterObject:
        resource = self._resource(manifest["kind"])
        namespace = manifest["metadata"].get("namespace")
        result = await self._call(
            "create", self._id(manifest), resource.create, body=manifest, namespace=namespace
        )
        logger.debug("Created %s", self._id(manifest))
        return self._as_object(result)

    async def update(self, manifest: Dict[str, Any], expected_version: Optional[str]) -> ClusterObject:
        resource = self._resource(manifest["kind"])
        body = copy.deepcopy(manifest)
        body["metadata"]["resourceVersion"] = expected_version
        result = await self._call(
            "replace", self._id(manifest), resource.replace,
            body=body, namespace=body["metadata"].get("namespace"),
        )
        logger.debug("Replaced %s (was version %s)", self._id(manifest), expected_version)
        return self._as_object(result)

    async def update_status(
        self, manifest: Dict[str, Any], expected_version: Optional[str]
    ) -> ClusterObject:
        resource = self._resource(manifest["kind"])
        status_resource = resource.subresources["status"]
        body = copy.deepcopy(manifest)
        body["metadata"]["resourceVersion"] = expected_version
        result = await self._call(
            "replace_status", self._id(manifest), self.dynamic.replace,
            resource=status_resource, body=body,
            name=body["metadata"]["name"], namespace=body["metadata"].get("namespace"),
        )
        return self._as_object(result)

    async def delete(self, kind: str, namespace: str, name: str) -> bool:
        resource = self._resource(kind)
        try:
            await self._call(
                "delete", f"{kind}/{namespace}/{name}", resource.delete,
                name=name, namespace=namespace,
                body={"propagationPolicy": "Background"},
            )
        except ResourceNotFoundError:
            return False
        logger.debug("Deleted %s/%s/%s", kind, namespace, name)
        return True

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[ClusterObject]:
        resource = self._resource(kind)
        result = await self._call(
            "list", f"{kind}/{namespace or '*'}", resource.get,
            namespace=namespace, label_selector=label_selector(labels),
        )
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        return [ClusterObject(manifest=item) for item in result.get("items") or []]

    async def watch(self, kind: str, namespace: Optional[str] = None) -> AsyncIterator[WatchEvent]:
        """
        Stream events from a background thread into the event loop.

        The stream ends when the server closes the watch (``watch_timeout``);
        callers are expected to restart it.
        """
        resource = self._resource(kind)
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stop = threading.Event()

        def pump() -> None:
            try:
                for event in resource.watch(namespace=namespace, timeout=self.watch_timeout):
                    if stop.is_set():
                        break
                    loop.call_soon_threadsafe(queue.put_nowait, event)
            except Exception as e:
                loop.call_soon_threadsafe(queue.put_nowait, e)
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, _END)

        threading.Thread(target=pump, name=f"watch-{kind}", daemon=True).start()
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    return
                if isinstance(item, ApiException):
                    raise self._translate(item, "watch", kind)
                if isinstance(item, Exception):
                    raise ClusterUnavailableError(f"watch {kind} failed: {item}", cause=item)
                raw = item.get("raw_object") or item["object"]
                yield WatchEvent(type=item["type"], object=self._as_object(raw))
        finally:
            stop.set()
