"""Kr8s-based implementation of KubernetesController.

Uses the kr8s library for native async Kubernetes operations.

Routing model: the routing namespace of an environment holds two
ExternalName services, ``<app>-active`` and ``<app>-canary``, each resolving
to the ``<app>`` service inside one slot namespace. The primary Ingress
(provisioned by the chart) targets ``<app>-active``; a sibling canary
Ingress carrying the ingress-nginx canary annotations targets
``<app>-canary``. Switching the primary slot is therefore a patch of a
single field on a single object.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any

import kr8s
from kr8s.asyncio.objects import Deployment, Ingress, Namespace, Pod, Service

from src.infra.constants import DEFAULT_CONSTANTS, DeploymentConstants

from .controller import (
    CommandResult,
    KubernetesController,
    PodInfo,
    RouteRef,
    RouteState,
)


class Kr8sController(KubernetesController):
    """Kubernetes controller using kr8s library.

    All methods are natively async, leveraging kr8s's async API.

    Note: The kr8s API client is NOT cached because it's tied to the event loop
    that was running when created. When using run_sync() which calls asyncio.run(),
    each call creates a new event loop, making the cached API unusable.
    """

    def __init__(
        self,
        context: str | None = None,
        constants: DeploymentConstants | None = None,
    ) -> None:
        """Initialize the kr8s controller.

        Args:
            context: Kube context of the cluster binding. None uses the
                     kubeconfig's current context.
            constants: Optional deployment constants
        """
        self._context = context
        self.constants = constants or DEFAULT_CONSTANTS

    async def _get_api(self) -> Any:  # Returns kr8s._api.Api
        """Create a kr8s API client bound to this controller's context.

        Creates a new API client each call because kr8s clients are bound
        to the event loop they were created in.
        """
        return await kr8s.asyncio.api(context=self._context)

    # =========================================================================
    # Cluster Context
    # =========================================================================

    async def get_current_context(self) -> str:
        """Get the active kube context name."""
        try:
            api = await self._get_api()
            return api.auth.active_context or "unknown"
        except Exception:
            return "unknown"

    # =========================================================================
    # Namespace Operations
    # =========================================================================

    async def namespace_exists(self, namespace: str) -> bool:
        """Check if a namespace exists."""
        try:
            api = await self._get_api()
            ns = await Namespace.get(namespace, api=api)
            return ns is not None
        except kr8s.NotFoundError:
            return False
        except Exception:
            return False

    async def create_namespace(
        self,
        namespace: str,
        labels: dict[str, str] | None = None,
    ) -> CommandResult:
        """Create a namespace, succeeding if it already exists."""
        if await self.namespace_exists(namespace):
            return CommandResult(
                success=True, stdout=f'namespace "{namespace}" already exists'
            )
        try:
            api = await self._get_api()
            ns = Namespace(
                {
                    "apiVersion": "v1",
                    "kind": "Namespace",
                    "metadata": {"name": namespace, "labels": labels or {}},
                },
                api=api,
            )
            await ns.create()
            return CommandResult(success=True, stdout=f'namespace "{namespace}" created')
        except Exception as e:
            return CommandResult(success=False, stderr=str(e), returncode=1)

    async def delete_namespace(
        self,
        namespace: str,
        *,
        wait: bool = True,
        timeout: str = "120s",
    ) -> CommandResult:
        """Delete a Kubernetes namespace and all its resources."""
        try:
            api = await self._get_api()
            ns = await Namespace.get(namespace, api=api)
            await ns.delete()

            if wait:
                timeout_seconds = self._parse_timeout(timeout)
                try:
                    await asyncio.wait_for(
                        self._wait_for_namespace_deletion(namespace),
                        timeout=timeout_seconds,
                    )
                except TimeoutError:
                    return CommandResult(
                        success=False,
                        stderr=f"Timeout waiting for namespace {namespace} deletion",
                        returncode=1,
                    )

            return CommandResult(
                success=True, stdout=f'namespace "{namespace}" deleted'
            )
        except kr8s.NotFoundError:
            return CommandResult(
                success=False,
                stderr=f'namespace "{namespace}" not found',
                returncode=1,
            )
        except Exception as e:
            return CommandResult(success=False, stderr=str(e), returncode=1)

    async def _wait_for_namespace_deletion(self, namespace: str) -> None:
        """Wait until a namespace no longer exists."""
        while await self.namespace_exists(namespace):
            await asyncio.sleep(1)

    # =========================================================================
    # Workload Inspection
    # =========================================================================

    async def get_pods(self, namespace: str) -> list[PodInfo]:
        """Get all pods in a namespace with their status."""
        try:
            api = await self._get_api()
            result = []

            async for pod in Pod.list(namespace=namespace, api=api):
                metadata = pod.metadata
                spec = pod.spec
                status = pod.status

                phase = status.get("phase", "Unknown")
                container_statuses = status.get("containerStatuses", [])

                pod_status = phase
                restarts = 0
                ready = bool(container_statuses)

                for cs in container_statuses:
                    restarts += cs.get("restartCount", 0)
                    ready = ready and bool(cs.get("ready", False))
                    state = cs.get("state", {})
                    if "waiting" in state:
                        reason = state["waiting"].get("reason", "")
                        if reason:
                            pod_status = reason
                    elif "terminated" in state:
                        reason = state["terminated"].get("reason", "")
                        if reason == "Error":
                            pod_status = "Error"

                result.append(
                    PodInfo(
                        name=metadata.get("name", ""),
                        status=pod_status,
                        restarts=restarts,
                        ready=ready,
                        creation_timestamp=metadata.get("creationTimestamp", ""),
                        node=spec.get("nodeName", ""),
                    )
                )

            return result
        except Exception:
            return []

    async def rollout_status(
        self,
        namespace: str,
        *,
        timeout: str = "300s",
    ) -> CommandResult:
        """Wait until every deployment in the namespace reports all replicas ready."""
        timeout_seconds = self._parse_timeout(timeout)

        async def _all_ready() -> None:
            while True:
                api = await self._get_api()
                pending = []
                async for deployment in Deployment.list(namespace=namespace, api=api):
                    wanted = deployment.spec.get("replicas", 1)
                    ready = deployment.status.get("readyReplicas", 0) or 0
                    if ready < wanted:
                        pending.append(deployment.name)
                if not pending:
                    return
                await asyncio.sleep(2)

        try:
            await asyncio.wait_for(_all_ready(), timeout=timeout_seconds)
            return CommandResult(success=True, stdout=f"rollouts complete in {namespace}")
        except TimeoutError:
            return CommandResult(
                success=False,
                stderr=f"Timeout waiting for rollouts in {namespace}",
                returncode=1,
            )
        except Exception as e:
            return CommandResult(success=False, stderr=str(e), returncode=1)

    # =========================================================================
    # Routing Rules
    # =========================================================================

    async def get_route(self, route: RouteRef) -> RouteState:
        """Read primary/canary targets from the ExternalName services."""
        api = await self._get_api()
        state = RouteState()

        active = await self._get_service(api, route, self.constants.ACTIVE_SERVICE_SUFFIX)
        if active is not None:
            state.primary_namespace = self._namespace_from_external_name(
                active.spec.get("externalName", "")
            )

        canary = await self._get_service(api, route, self.constants.CANARY_SERVICE_SUFFIX)
        if canary is not None:
            state.canary_namespace = self._namespace_from_external_name(
                canary.spec.get("externalName", "")
            )

        try:
            ingress = await Ingress.get(
                route.application + self.constants.CANARY_INGRESS_SUFFIX,
                namespace=route.namespace,
                api=api,
            )
            annotations = dict(ingress.metadata.get("annotations", {}))
            state.annotations = annotations
            state.canary_weight = int(
                annotations.get(self.constants.CANARY_WEIGHT_ANNOTATION, "0") or 0
            )
        except kr8s.NotFoundError:
            state.canary_weight = 0

        return state

    async def set_primary_backend(
        self, route: RouteRef, namespace: str
    ) -> CommandResult:
        """Repoint the ``<app>-active`` ExternalName service in one patch."""
        try:
            api = await self._get_api()
            await self._upsert_external_service(
                api, route, self.constants.ACTIVE_SERVICE_SUFFIX, namespace
            )
            return CommandResult(
                success=True, stdout=f"primary route -> {namespace}"
            )
        except Exception as e:
            return CommandResult(success=False, stderr=str(e), returncode=1)

    async def set_canary_weight(
        self, route: RouteRef, namespace: str | None, weight: int
    ) -> CommandResult:
        """Point the canary service at a slot and set the canary weight."""
        if not 0 <= weight <= 100:
            return CommandResult(
                success=False, stderr=f"invalid canary weight {weight}", returncode=1
            )
        try:
            api = await self._get_api()
            if namespace is not None:
                await self._upsert_external_service(
                    api, route, self.constants.CANARY_SERVICE_SUFFIX, namespace
                )
            await self._upsert_canary_ingress(api, route, weight)
            return CommandResult(
                success=True, stdout=f"canary route -> {namespace} @ {weight}%"
            )
        except Exception as e:
            return CommandResult(success=False, stderr=str(e), returncode=1)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_service(
        self, api: Any, route: RouteRef, suffix: str
    ) -> Service | None:
        try:
            return await Service.get(
                route.application + suffix, namespace=route.namespace, api=api
            )
        except kr8s.NotFoundError:
            return None

    def _external_name(self, application: str, namespace: str) -> str:
        return f"{application}.{namespace}.svc.cluster.local"

    def _namespace_from_external_name(self, external_name: str) -> str | None:
        parts = external_name.split(".")
        if len(parts) < 2 or not parts[1]:
            return None
        return parts[1]

    async def _upsert_external_service(
        self, api: Any, route: RouteRef, suffix: str, namespace: str
    ) -> None:
        external_name = self._external_name(route.application, namespace)
        service = await self._get_service(api, route, suffix)
        if service is not None:
            await service.patch({"spec": {"externalName": external_name}})
            return

        service = Service(
            {
                "apiVersion": "v1",
                "kind": "Service",
                "metadata": {
                    "name": route.application + suffix,
                    "namespace": route.namespace,
                    "labels": {
                        self.constants.APP_LABEL: route.application,
                        self.constants.MANAGED_BY_LABEL: self.constants.MANAGED_BY_VALUE,
                    },
                },
                "spec": {"type": "ExternalName", "externalName": external_name},
            },
            api=api,
        )
        await service.create()

    async def _upsert_canary_ingress(
        self, api: Any, route: RouteRef, weight: int
    ) -> None:
        annotations = {
            self.constants.CANARY_ANNOTATION: "true",
            self.constants.CANARY_WEIGHT_ANNOTATION: str(weight),
        }
        name = route.application + self.constants.CANARY_INGRESS_SUFFIX
        try:
            ingress = await Ingress.get(name, namespace=route.namespace, api=api)
            await ingress.patch({"metadata": {"annotations": annotations}})
            return
        except kr8s.NotFoundError:
            pass

        # Clone the chart-provisioned primary ingress, swapping the backend
        primary = await Ingress.get(
            route.application + self.constants.PRIMARY_INGRESS_SUFFIX,
            namespace=route.namespace,
            api=api,
        )
        rules = copy.deepcopy(list(primary.spec.get("rules", [])))
        canary_service = route.application + self.constants.CANARY_SERVICE_SUFFIX
        for rule in rules:
            for path in rule.get("http", {}).get("paths", []):
                path.setdefault("backend", {}).setdefault("service", {})
                path["backend"]["service"]["name"] = canary_service

        spec: dict[str, Any] = {"rules": rules}
        if ingress_class := primary.spec.get("ingressClassName"):
            spec["ingressClassName"] = ingress_class

        ingress = Ingress(
            {
                "apiVersion": "networking.k8s.io/v1",
                "kind": "Ingress",
                "metadata": {
                    "name": name,
                    "namespace": route.namespace,
                    "annotations": annotations,
                    "labels": {
                        self.constants.APP_LABEL: route.application,
                        self.constants.MANAGED_BY_LABEL: self.constants.MANAGED_BY_VALUE,
                    },
                },
                "spec": spec,
            },
            api=api,
        )
        await ingress.create()

    def _parse_timeout(self, timeout: str) -> float:
        """Parse a timeout string like '120s' or '5m' to seconds."""
        if timeout.endswith("s"):
            return float(timeout[:-1])
        elif timeout.endswith("m"):
            return float(timeout[:-1]) * 60
        elif timeout.endswith("h"):
            return float(timeout[:-1]) * 3600
        else:
            return float(timeout)
