from __future__ import annotations

from cachetools.func import lru_cache  # type: ignore

from src.infra.k8s.controller import KubernetesController


@lru_cache(maxsize=8)
def get_k8s_controller(context: str | None = None) -> KubernetesController:
    """Get a KubernetesController bound to one kube context.

    Each cluster binding gets its own controller so that a stage only ever
    talks to the cluster it was handed.

    Args:
        context: Kube context from the environment's cluster binding

    Returns:
        An instance of KubernetesController
    """
    from src.infra.k8s.kr8s_controller import Kr8sController

    return Kr8sController(context=context)
