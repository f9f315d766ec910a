"""Read access to cached Kubernetes objects, shaped after the cluster's API."""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from kubeprobe.config import Specification
from kubeprobe.permissions import PermissionCheckResult
from kubeprobe.store import ResourceKind, ResourceStore, match_label_selector

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], None]

HAPROXY_CONTROLLER = "haproxy.org/ingress-controller/haproxy"
DEFAULT_CLASS_ANNOTATION = "ingressclass.kubernetes.io/is-default-class"

_DISCOVERY_EXCLUDE_LABELS = (
    "steadybit.com/discovery-disabled",
    "steadybit.com.discovery-disabled",
    "com.steadybit.agent",
)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def is_openshift(root_api_path: str) -> bool:
    """Whether the API root path belongs to an OpenShift cluster."""
    return root_api_path in ("/oapi", "oapi")


def is_excluded_from_discovery(metadata: Mapping[str, Any], config: Specification) -> bool:
    """Whether an object's labels opt it out of discovery."""
    if config.disable_discovery_excludes:
        return False
    labels = metadata.get("labels") or {}
    return any(
        label in labels and str(labels[label]).lower() == "true"
        for label in _DISCOVERY_EXCLUDE_LABELS
    )


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return _EPOCH
    else:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_running(pod: Mapping[str, Any]) -> bool:
    return (pod.get("status") or {}).get("phase") == "Running"


def _running(pods: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return [pod for pod in pods if _is_running(pod)]


def _selector_matches(selector: Mapping[str, str] | None, labels: Mapping[str, str]) -> bool:
    if selector is None:
        return False
    return all(labels.get(key) == value for key, value in selector.items())


class KubernetesClient:
    """Caches of cluster objects with the queries the extension runs on them.

    Which caches exist depends on the configuration and the granted
    permissions, as in a cluster with restricted access some kinds cannot be
    watched. Objects are fed into the caches through :meth:`store`.
    """

    def __init__(
        self,
        config: Specification,
        permissions: PermissionCheckResult,
        root_api_path: str = "",
    ) -> None:
        self.config = config
        self.permissions = permissions
        self.distribution = "openshift" if is_openshift(root_api_path) else "kubernetes"
        self._handlers: list[Handler] = []
        self._handlers_lock = threading.Lock()
        self._stores: dict[ResourceKind, ResourceStore] = {}

        rbac = config.uses_role_based_access_control()
        kinds = [
            ResourceKind.DAEMON_SET,
            ResourceKind.DEPLOYMENT,
            ResourceKind.POD,
        ]
        if permissions.can_read_namespaces() and not rbac:
            kinds.append(ResourceKind.NAMESPACE)
        kinds += [ResourceKind.REPLICA_SET, ResourceKind.SERVICE, ResourceKind.STATEFUL_SET]
        if not rbac:
            kinds.append(ResourceKind.NODE)
        if permissions.can_read_horizontal_pod_autoscalers():
            kinds.append(ResourceKind.HORIZONTAL_POD_AUTOSCALER)
        if not rbac and permissions.is_list_ingress_permitted():
            kinds.append(ResourceKind.INGRESS)
        if not rbac and permissions.is_list_ingress_classes_permitted():
            kinds.append(ResourceKind.INGRESS_CLASS)

        for kind in kinds:
            store = ResourceStore(kind)
            store.subscribe(self._do_notify)
            self._stores[kind] = store
        # Events are cached but do not trigger change notifications.
        self._stores[ResourceKind.EVENT] = ResourceStore(ResourceKind.EVENT)

    def store(self, kind: ResourceKind) -> ResourceStore:
        """The cache of one kind; KeyError if that kind is not watched."""
        try:
            return self._stores[kind]
        except KeyError:
            raise KeyError(f"{kind.value} objects are not watched") from None

    def _optional_store(self, kind: ResourceKind) -> ResourceStore | None:
        return self._stores.get(kind)

    def _scoped_list(self, kind: ResourceKind) -> list[dict[str, Any]]:
        store = self.store(kind)
        if self.config.uses_role_based_access_control():
            logger.info("Fetching %s for namespace %s", kind.value, self.config.namespace)
            return store.list(self.config.namespace)
        return store.list()

    def pods(self) -> list[dict[str, Any]]:
        return _running(self._scoped_list(ResourceKind.POD))

    def namespaces(self) -> list[dict[str, Any]]:
        if self.config.uses_role_based_access_control():
            return [{"kind": "Namespace", "metadata": {"name": self.config.namespace}}]
        store = self._optional_store(ResourceKind.NAMESPACE)
        if store is None:
            logger.error("Error while fetching namespaces: namespaces are not watched")
            return []
        return store.list()

    def pod_by_namespace_and_name(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self.store(ResourceKind.POD).get(namespace, name)

    def pods_by_label_selector(
        self, selector: Mapping[str, Any] | None, namespace: str
    ) -> list[dict[str, Any]] | None:
        """Running pods of a namespace matching a LabelSelector; None if it is invalid."""
        pods = self.store(ResourceKind.POD).list(namespace)
        try:
            matching = [
                pod
                for pod in pods
                if match_label_selector(selector, (pod.get("metadata") or {}).get("labels"))
            ]
            if not pods:
                match_label_selector(selector, {})
        except ValueError:
            logger.exception("Error while creating a selector %s", selector)
            return None
        return _running(matching)

    def deployments(self) -> list[dict[str, Any]]:
        return self._scoped_list(ResourceKind.DEPLOYMENT)

    def deployment_by_namespace_and_name(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self.store(ResourceKind.DEPLOYMENT).get(namespace, name)

    def services_by_pod(self, pod: Mapping[str, Any]) -> list[dict[str, Any]]:
        metadata = pod.get("metadata") or {}
        return self.services_matching_to_pod_labels(
            metadata.get("namespace", ""), metadata.get("labels") or {}
        )

    def services_matching_to_pod_labels(
        self, namespace: str, labels: Mapping[str, str] | None
    ) -> list[dict[str, Any]]:
        labels = labels or {}
        return [
            service
            for service in self.store(ResourceKind.SERVICE).list(namespace)
            if _selector_matches((service.get("spec") or {}).get("selector"), labels)
        ]

    def daemonsets(self) -> list[dict[str, Any]]:
        return self._scoped_list(ResourceKind.DAEMON_SET)

    def daemonset_by_namespace_and_name(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self.store(ResourceKind.DAEMON_SET).get(namespace, name)

    def replicaset_by_namespace_and_name(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self.store(ResourceKind.REPLICA_SET).get(namespace, name)

    def statefulsets(self) -> list[dict[str, Any]]:
        return self._scoped_list(ResourceKind.STATEFUL_SET)

    def statefulset_by_namespace_and_name(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self.store(ResourceKind.STATEFUL_SET).get(namespace, name)

    def nodes_ready_count(self) -> int:
        return sum(
            1
            for node in self.nodes()
            for condition in (node.get("status") or {}).get("conditions") or []
            if condition.get("type") == "Ready" and condition.get("status") == "True"
        )

    def nodes(self) -> list[dict[str, Any]]:
        if self.config.uses_role_based_access_control():
            return []
        store = self._optional_store(ResourceKind.NODE)
        return store.list() if store is not None else []

    def events(self, since: datetime) -> list[dict[str, Any]]:
        """Copies of events seen after ``since``, oldest first."""
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        recent = [
            (stamp, event)
            for event in self.store(ResourceKind.EVENT).list()
            if (stamp := _parse_timestamp(event.get("lastTimestamp"))) > since
        ]
        recent.sort(key=lambda pair: pair[0])
        return [copy.deepcopy(event) for _, event in recent]

    def horizontal_pod_autoscaler_by_namespace_and_deployment(
        self, namespace: str, reference: str
    ) -> dict[str, Any] | None:
        store = self._optional_store(ResourceKind.HORIZONTAL_POD_AUTOSCALER)
        if store is None:
            logger.error("Error while fetching horizontal pod autoscalers: not watched")
            return None
        for hpa in store.list(namespace):
            target = (hpa.get("spec") or {}).get("scaleTargetRef") or {}
            if target.get("kind") == "Deployment" and target.get("name") == reference:
                return hpa
        return None

    def ingresses(self) -> list[dict[str, Any]]:
        if self.config.uses_role_based_access_control():
            return []
        store = self._optional_store(ResourceKind.INGRESS)
        return store.list() if store is not None else []

    def ingress_classes(self) -> list[dict[str, Any]]:
        if self.config.uses_role_based_access_control():
            return []
        store = self._optional_store(ResourceKind.INGRESS_CLASS)
        return store.list() if store is not None else []

    def haproxy_ingress_classes(self) -> tuple[list[str], bool]:
        """Names of HAProxy ingress classes and whether one is the default."""
        names: list[str] = []
        has_default = False
        for ingress_class in self.ingress_classes():
            if (ingress_class.get("spec") or {}).get("controller") != HAPROXY_CONTROLLER:
                continue
            metadata = ingress_class.get("metadata") or {}
            names.append(metadata.get("name", ""))
            if (metadata.get("annotations") or {}).get(DEFAULT_CLASS_ANNOTATION) == "true":
                has_default = True
        return names, has_default

    def ingress_controller_by_class_name(self, class_name: str) -> str:
        for ingress_class in self.ingress_classes():
            if (ingress_class.get("metadata") or {}).get("name") == class_name:
                return (ingress_class.get("spec") or {}).get("controller", "")
        return ""

    def _do_notify(self, obj: dict[str, Any]) -> None:
        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler(obj)

    def notify(self, handler: Handler) -> None:
        """Call ``handler`` with every added, updated or deleted object."""
        with self._handlers_lock:
            if handler not in self._handlers:
                self._handlers.append(handler)

    def stop_notify(self, handler: Handler) -> None:
        with self._handlers_lock:
            self._handlers = [h for h in self._handlers if h != handler]