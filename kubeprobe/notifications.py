"""Turn cache changes of chosen kinds into refresh signals."""

from __future__ import annotations

import logging
import queue
from typing import Any

from kubeprobe.client import KubernetesClient
from kubeprobe.store import ResourceKind

logger = logging.getLogger(__name__)


def trigger_on_resource_change(
    client: KubernetesClient, *args: ResourceKind
) -> queue.Queue[ResourceKind]:
    """A queue that receives the kind of every changed object of the given kinds."""
    kinds = {kind.value: kind for kind in args}
    refresh: queue.Queue[ResourceKind] = queue.Queue()

    def forward(obj: dict[str, Any]) -> None:
        kind = kinds.get(obj.get("kind", "") if isinstance(obj, dict) else "")
        logger.debug(
            "resource event type=%s forward=%s types=%s",
            obj.get("kind") if isinstance(obj, dict) else type(obj).__name__,
            kind is not None,
            sorted(kinds),
        )
        if kind is not None:
            refresh.put(kind)

    client.notify(forward)
    return refresh