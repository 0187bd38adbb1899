"""Kubernetes infrastructure abstraction layer.

This module provides a clean abstraction over the cluster primitives used by
the promotion pipeline (namespaces, pods, routing rules).

Example:
    from src.infra.k8s import Kr8sController, RouteRef, run_sync

    controller = Kr8sController(context="aks-platform-prod")
    route = run_sync(controller.get_route(RouteRef("prod-orders", "orders")))
"""

from .controller import (
    CommandResult,
    KubernetesController,
    PodInfo,
    RouteRef,
    RouteState,
)
from .helpers import get_k8s_controller
from .kr8s_controller import Kr8sController
from .utils import run_sync

__all__ = [
    # Controller classes
    "KubernetesController",
    "Kr8sController",
    # Data classes
    "CommandResult",
    "PodInfo",
    "RouteRef",
    "RouteState",
    # Utilities
    "get_k8s_controller",
    "run_sync",
]
