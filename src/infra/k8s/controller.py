"""Abstract Kubernetes controller interface.

Defines the contract for the cluster primitives the promotion pipeline
relies on: namespace CRUD, workload inspection and routing-rule mutation.
Backends (currently kr8s) implement this interface; tests substitute an
in-memory fake.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CommandResult:
    """Result of a command execution."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0


@dataclass
class PodInfo:
    """Information about a Kubernetes pod."""

    name: str
    status: str
    restarts: int = 0
    ready: bool = False
    creation_timestamp: str = ""
    node: str = ""


@dataclass(frozen=True)
class RouteRef:
    """Identifies the routing objects for one application/environment.

    Attributes:
        namespace: Routing namespace (e.g. "prod-orders")
        application: Application name, used to derive object names
    """

    namespace: str
    application: str


@dataclass
class RouteState:
    """Observed state of the routing rules.

    Attributes:
        primary_namespace: Slot namespace receiving non-canary traffic,
            or None when no primary rule exists yet
        canary_namespace: Slot namespace receiving canary traffic
        canary_weight: Percentage of traffic routed to the canary (0-100)
    """

    primary_namespace: str | None = None
    canary_namespace: str | None = None
    canary_weight: int = 0
    annotations: dict[str, str] = field(default_factory=dict)


# =============================================================================
# Abstract Controller
# =============================================================================


class KubernetesController(ABC):
    """Abstract base class for Kubernetes operations.

    All methods are async. Use `run_sync()` to call from synchronous code.

    Example:
        from src.infra.k8s import Kr8sController, run_sync

        controller = Kr8sController(context="aks-prod")
        route = run_sync(controller.get_route(RouteRef("prod-orders", "orders")))
    """

    # =========================================================================
    # Cluster Context
    # =========================================================================

    @abstractmethod
    async def get_current_context(self) -> str:
        """Get the active kube context name.

        Returns:
            Context name, or "unknown" if detection fails
        """
        ...

    # =========================================================================
    # Namespace Operations
    # =========================================================================

    @abstractmethod
    async def namespace_exists(self, namespace: str) -> bool:
        """Check if a namespace exists.

        Args:
            namespace: Namespace to check

        Returns:
            True if the namespace exists, False otherwise
        """
        ...

    @abstractmethod
    async def create_namespace(
        self,
        namespace: str,
        labels: dict[str, str] | None = None,
    ) -> CommandResult:
        """Create a namespace, succeeding if it already exists.

        Args:
            namespace: Namespace to create
            labels: Labels to stamp on the namespace

        Returns:
            CommandResult with creation status
        """
        ...

    @abstractmethod
    async def delete_namespace(
        self,
        namespace: str,
        *,
        wait: bool = True,
        timeout: str = "120s",
    ) -> CommandResult:
        """Delete a Kubernetes namespace and all its resources.

        Warning: This is a destructive operation.

        Args:
            namespace: Namespace to delete
            wait: Whether to wait for deletion to complete
            timeout: Maximum time to wait

        Returns:
            CommandResult with deletion status
        """
        ...

    # =========================================================================
    # Workload Inspection
    # =========================================================================

    @abstractmethod
    async def get_pods(self, namespace: str) -> list[PodInfo]:
        """Get all pods in a namespace.

        Args:
            namespace: Kubernetes namespace

        Returns:
            List of PodInfo, empty if the namespace has none
        """
        ...

    @abstractmethod
    async def rollout_status(
        self,
        namespace: str,
        *,
        timeout: str = "300s",
    ) -> CommandResult:
        """Wait for all deployments in a namespace to finish rolling out.

        Args:
            namespace: Kubernetes namespace
            timeout: Maximum time to wait

        Returns:
            CommandResult, successful when every rollout completed
        """
        ...

    # =========================================================================
    # Routing Rules
    # =========================================================================

    @abstractmethod
    async def get_route(self, route: RouteRef) -> RouteState:
        """Read the current primary and canary routing targets.

        Args:
            route: Routing objects to inspect

        Returns:
            RouteState; primary_namespace is None when nothing routes yet
        """
        ...

    @abstractmethod
    async def set_primary_backend(
        self, route: RouteRef, namespace: str
    ) -> CommandResult:
        """Point the primary routing rule at a slot namespace.

        This must be a single atomic update of one object so that traffic
        never observes a partially switched state.

        Args:
            route: Routing objects to update
            namespace: Slot namespace that becomes the primary backend

        Returns:
            CommandResult with update status
        """
        ...

    @abstractmethod
    async def set_canary_weight(
        self, route: RouteRef, namespace: str | None, weight: int
    ) -> CommandResult:
        """Route a percentage of traffic to a canary slot.

        Args:
            route: Routing objects to update
            namespace: Slot namespace receiving canary traffic
                       (None together with weight 0 disables the canary)
            weight: Percentage of traffic (0-100)

        Returns:
            CommandResult with update status
        """
        ...
