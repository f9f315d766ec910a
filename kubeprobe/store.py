"""In-memory caches of Kubernetes objects, kept up to date by watch events."""

from __future__ import annotations

import copy
import enum
import threading
from collections.abc import Callable, Mapping
from typing import Any

from kubeprobe import transformers

Handler = Callable[[dict[str, Any]], None]


class ResourceKind(enum.Enum):
    """The kinds of objects the extension caches, valued by their API kind."""

    DAEMON_SET = "DaemonSet"
    DEPLOYMENT = "Deployment"
    POD = "Pod"
    NAMESPACE = "Namespace"
    REPLICA_SET = "ReplicaSet"
    SERVICE = "Service"
    STATEFUL_SET = "StatefulSet"
    EVENT = "Event"
    NODE = "Node"
    HORIZONTAL_POD_AUTOSCALER = "HorizontalPodAutoscaler"
    INGRESS = "Ingress"
    INGRESS_CLASS = "IngressClass"

    @property
    def namespaced(self) -> bool:
        return self not in _CLUSTER_SCOPED

    @property
    def transform(self) -> Callable[[Any], Any]:
        return _TRANSFORMERS[self]


_CLUSTER_SCOPED = frozenset({ResourceKind.NAMESPACE, ResourceKind.NODE, ResourceKind.INGRESS_CLASS})

_TRANSFORMERS: dict[ResourceKind, Callable[[Any], Any]] = {
    ResourceKind.DAEMON_SET: transformers.transform_daemonset,
    ResourceKind.DEPLOYMENT: transformers.transform_deployment,
    ResourceKind.POD: transformers.transform_pod,
    ResourceKind.NAMESPACE: transformers.transform_namespace,
    ResourceKind.REPLICA_SET: transformers.transform_replicaset,
    ResourceKind.SERVICE: transformers.transform_service,
    ResourceKind.STATEFUL_SET: transformers.transform_statefulset,
    ResourceKind.EVENT: transformers.transform_event,
    ResourceKind.NODE: transformers.transform_node,
    ResourceKind.HORIZONTAL_POD_AUTOSCALER: transformers.transform_hpa,
    ResourceKind.INGRESS: transformers.transform_ingress,
    ResourceKind.INGRESS_CLASS: transformers.transform_ingress_class,
}


class ResourceStore:
    """A cache of objects of one kind, keyed by namespace and name.

    Incoming objects are copied, stamped with the store's kind and trimmed by
    the kind's transformer. Subscribed handlers see every added, updated and
    deleted object.
    """

    def __init__(self, kind: ResourceKind) -> None:
        self.kind = kind
        self._items: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._handlers: list[Handler] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _prepare(self, obj: Mapping[str, Any]) -> tuple[tuple[str, str], dict[str, Any]]:
        item = copy.deepcopy(dict(obj))
        declared = item.setdefault("kind", self.kind.value)
        if declared != self.kind.value:
            raise ValueError(f"expected a {self.kind.value}, got a {declared}")
        metadata = item.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            raise ValueError(f"{self.kind.value} without metadata.name")
        namespace = metadata.get("namespace", "") if self.kind.namespaced else ""
        return (namespace, name), self.kind.transform(item)

    def _notify(self, obj: dict[str, Any]) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler(obj)

    def add(self, obj: Mapping[str, Any]) -> dict[str, Any]:
        """Cache an object and return the stored, trimmed copy."""
        key, item = self._prepare(obj)
        with self._lock:
            self._items[key] = item
        self._notify(item)
        return item

    def update(self, obj: Mapping[str, Any]) -> dict[str, Any]:
        """Replace the cached object with a newer version of it."""
        return self.add(obj)

    def delete(self, obj: Mapping[str, Any]) -> dict[str, Any] | None:
        """Remove an object; return what was cached, or None if it was unknown."""
        key, _ = self._prepare(obj)
        with self._lock:
            removed = self._items.pop(key, None)
        if removed is not None:
            self._notify(removed)
        return removed

    def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        """The cached object with this namespace and name, or None."""
        if not self.kind.namespaced:
            namespace = ""
        with self._lock:
            return self._items.get((namespace, name))

    def list(self, namespace: str | None = None) -> list[dict[str, Any]]:
        """All cached objects, or those of one namespace."""
        with self._lock:
            return [
                item
                for (item_namespace, _), item in self._items.items()
                if namespace is None or item_namespace == namespace
            ]

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a handler for changes; the returned callable removes it."""
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                self._handlers = [h for h in self._handlers if h != handler]

        return unsubscribe


def _check_expression(expression: Mapping[str, Any]) -> tuple[str, str, list[str]]:
    key = expression.get("key", "")
    operator = expression.get("operator", "")
    values = list(expression.get("values") or [])
    if not key:
        raise ValueError("label selector requirement without a key")
    if operator in ("In", "NotIn"):
        if not values:
            raise ValueError(f"for 'in', 'notin' operators, values set can't be empty ({key})")
    elif operator in ("Exists", "DoesNotExist"):
        if values:
            raise ValueError(f"values set must be empty for exists and does not exist ({key})")
    else:
        raise ValueError(f"{operator!r} is not a valid label selector operator")
    return key, operator, values


def match_label_selector(
    selector: Mapping[str, Any] | None, labels: Mapping[str, str] | None
) -> bool:
    """Whether labels satisfy a LabelSelector with matchLabels and matchExpressions.

    A missing selector matches nothing, an empty one matches everything.
    Raises ValueError for a malformed selector.
    """
    if selector is None:
        return False
    labels = labels or {}
    match_labels = selector.get("matchLabels") or {}
    expressions = [_check_expression(e) for e in selector.get("matchExpressions") or []]
    if any(labels.get(key) != value for key, value in match_labels.items()):
        return False
    for key, operator, values in expressions:
        present = key in labels
        if operator == "In" and not (present and labels[key] in values):
            return False
        if operator == "NotIn" and present and labels[key] in values:
            return False
        if operator == "Exists" and not present:
            return False
        if operator == "DoesNotExist" and present:
            return False
    return True