"""Checks of the cluster permissions the extension needs."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class PermissionCheckOutcome(str, enum.Enum):
    WARN = "warn"
    ERROR = "error"
    OK = "ok"


@dataclass(frozen=True)
class RequiredPermission:
    """A resource with the verbs the extension needs on it."""

    group: str
    resource: str
    verbs: tuple[str, ...]
    subresource: str = ""
    allow_graceful_failure: bool = False

    def key(self, verb: str) -> str:
        parts = [self.group] if self.group else []
        parts.append(self.resource)
        if self.subresource:
            parts.append(self.subresource)
        parts.append(verb)
        return "/".join(parts)


_READ = ("get", "list", "watch")
_SCALE = ("get", "update", "patch")

REQUIRED_PERMISSIONS: tuple[RequiredPermission, ...] = (
    RequiredPermission("apps", "deployments", _READ),
    RequiredPermission("apps", "replicasets", _READ),
    RequiredPermission("apps", "daemonsets", _READ),
    RequiredPermission("apps", "statefulsets", _READ),
    RequiredPermission("autoscaling", "horizontalpodautoscalers", _READ, allow_graceful_failure=True),
    RequiredPermission("", "services", _READ),
    RequiredPermission("", "pods", _READ),
    RequiredPermission("", "namespaces", _READ, allow_graceful_failure=True),
    RequiredPermission("", "nodes", _READ),
    RequiredPermission("", "events", _READ),
    RequiredPermission("apps", "deployments", ("patch",), allow_graceful_failure=True),
    RequiredPermission("apps", "deployments", _SCALE, subresource="scale", allow_graceful_failure=True),
    RequiredPermission("apps", "statefulsets", _SCALE, subresource="scale", allow_graceful_failure=True),
    RequiredPermission("", "pods", ("delete",), allow_graceful_failure=True),
    RequiredPermission("", "pods", ("create",), subresource="eviction", allow_graceful_failure=True),
    RequiredPermission("", "nodes", ("patch",), allow_graceful_failure=True),
    RequiredPermission("", "pods", ("create",), subresource="exec", allow_graceful_failure=True),
    RequiredPermission(
        "networking.k8s.io", "ingresses", ("get", "list", "watch", "update", "patch"),
        allow_graceful_failure=True,
    ),
    RequiredPermission("networking.k8s.io", "ingressclasses", _READ, allow_graceful_failure=True),
)


@dataclass
class PermissionCheckResult:
    """Outcome of each permission key, e.g. ``apps/deployments/get``."""

    permissions: dict[str, PermissionCheckOutcome] = field(default_factory=dict)

    def has_permissions(self, required: Iterable[str]) -> bool:
        return all(
            self.permissions.get(key) is PermissionCheckOutcome.OK for key in required
        )

    def can_read_horizontal_pod_autoscalers(self) -> bool:
        return self.has_permissions((
            "autoscaling/horizontalpodautoscalers/get",
            "autoscaling/horizontalpodautoscalers/list",
            "autoscaling/horizontalpodautoscalers/watch",
        ))

    def can_read_namespaces(self) -> bool:
        return self.has_permissions(("namespaces/get", "namespaces/list", "namespaces/watch"))

    def is_rollout_restart_permitted(self) -> bool:
        return self.has_permissions(("apps/deployments/patch",))

    def is_scale_deployment_permitted(self) -> bool:
        return self.has_permissions((
            "apps/deployments/scale/get",
            "apps/deployments/scale/update",
            "apps/deployments/scale/patch",
        ))

    def is_scale_statefulset_permitted(self) -> bool:
        return self.has_permissions((
            "apps/statefulsets/scale/get",
            "apps/statefulsets/scale/update",
            "apps/statefulsets/scale/patch",
        ))

    def is_delete_pod_permitted(self) -> bool:
        return self.has_permissions(("pods/delete",))

    def is_drain_node_permitted(self) -> bool:
        return self.has_permissions(("pods/eviction/create", "nodes/patch"))

    def is_list_ingress_permitted(self) -> bool:
        return self.has_permissions((
            "networking.k8s.io/ingresses/get",
            "networking.k8s.io/ingresses/list",
            "networking.k8s.io/ingresses/watch",
        ))

    def is_list_ingress_classes_permitted(self) -> bool:
        return self.has_permissions((
            "networking.k8s.io/ingressclasses/get",
            "networking.k8s.io/ingressclasses/list",
            "networking.k8s.io/ingressclasses/watch",
        ))

    def is_modify_ingress_permitted(self) -> bool:
        return self.has_permissions((
            "networking.k8s.io/ingresses/update",
            "networking.k8s.io/ingresses/patch",
        ))

    def is_taint_node_permitted(self) -> bool:
        return self.has_permissions(("pods/eviction/create", "nodes/patch"))

    def is_crash_loop_pod_permitted(self) -> bool:
        return self.has_permissions(("pods/exec/create",))


class MissingPermissionsError(RuntimeError):
    """Raised when a permission that is not optional is missing."""

    def __init__(self, result: PermissionCheckResult) -> None:
        self.result = result
        missing = sorted(
            key
            for key, outcome in result.permissions.items()
            if outcome is PermissionCheckOutcome.ERROR
        )
        super().__init__("Required permissions are missing: " + ", ".join(missing))


ReviewFunc = Callable[..., bool]


def check_permissions(review: ReviewFunc, namespace: str = "") -> PermissionCheckResult:
    """Ask ``review`` about every required permission.

    ``review`` is called with keyword arguments ``namespace``, ``verb``,
    ``group``, ``resource`` and ``subresource`` and returns whether the access
    is allowed. An exception from it counts as a denial.
    """
    result: dict[str, PermissionCheckOutcome] = {}
    failed = False
    for permission in REQUIRED_PERMISSIONS:
        for verb in permission.verbs:
            key = permission.key(verb)
            try:
                allowed = bool(
                    review(
                        namespace=namespace,
                        verb=verb,
                        group=permission.group,
                        resource=permission.resource,
                        subresource=permission.subresource,
                    )
                )
            except Exception:
                logger.exception("Failed to check permission %s", key)
                allowed = False
            if allowed:
                result[key] = PermissionCheckOutcome.OK
            elif permission.allow_graceful_failure:
                result[key] = PermissionCheckOutcome.WARN
            else:
                result[key] = PermissionCheckOutcome.ERROR
                failed = True

    _log_result(result)
    checked = PermissionCheckResult(result)
    if failed:
        raise MissingPermissionsError(checked)
    return checked


def _log_result(permissions: dict[str, PermissionCheckOutcome]) -> None:
    logger.info("Permission check results:")
    all_good = True
    for key, outcome in permissions.items():
        if outcome is PermissionCheckOutcome.OK:
            logger.debug("Permission granted: %s", key)
        elif outcome is PermissionCheckOutcome.WARN:
            logger.warning(
                "Permission missing, but not required. Some features may not "
                "work - see documentation for details: %s",
                key,
            )
            all_good = False
        else:
            logger.error("Permission missing: %s", key)
            all_good = False
    if all_good:
        logger.info("All permissions granted.")


def mock_all_permitted() -> PermissionCheckResult:
    """A result in which every required permission is granted."""
    return PermissionCheckResult({
        permission.key(verb): PermissionCheckOutcome.OK
        for permission in REQUIRED_PERMISSIONS
        for verb in permission.verbs
    })