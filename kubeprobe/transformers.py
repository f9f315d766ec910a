"""Trim cached Kubernetes objects down to the fields the extension reads.

Objects are plain dictionaries shaped like the Kubernetes API's JSON. Each
transformer changes an object of its own kind in place and returns it;
objects of any other kind are returned untouched.
"""

from __future__ import annotations

from typing import Any

INGRESS_CLASS_DEFAULT_ANNOTATION = "ingressclass.kubernetes.io/is-default-class"
INGRESS_CLASS_ANNOTATION = "kubernetes.io/ingress.class"


def _is_kind(obj: Any, kind: str) -> bool:
    return isinstance(obj, dict) and obj.get("kind") == kind


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.setdefault("metadata", {})


def _drop(mapping: dict[str, Any], *keys: str) -> None:
    for key in keys:
        mapping.pop(key, None)


def _pick(source: dict[str, Any] | None, *keys: str) -> dict[str, Any]:
    if not source:
        return {}
    return {key: source[key] for key in keys if key in source}


def _keep_annotation(metadata: dict[str, Any], annotation: str) -> None:
    value = (metadata.get("annotations") or {}).get(annotation, "")
    if value:
        metadata["annotations"] = {annotation: value}
    else:
        metadata.pop("annotations", None)


def transform_daemonset(obj: Any) -> Any:
    if not _is_kind(obj, "DaemonSet"):
        return obj
    _drop(_metadata(obj), "annotations", "managedFields")
    status = obj.get("status") or {}
    obj["status"] = {
        "numberReady": status.get("numberReady", 0),
        "desiredNumberScheduled": status.get("desiredNumberScheduled", 0),
    }
    return obj


def transform_deployment(obj: Any) -> Any:
    if not _is_kind(obj, "Deployment"):
        return obj
    _drop(_metadata(obj), "annotations", "managedFields")
    status = obj.get("status")
    if isinstance(status, dict):
        status.pop("conditions", None)
    return obj


def _trim_container(container: dict[str, Any]) -> dict[str, Any]:
    trimmed = _pick(container, "name", "imagePullPolicy", "livenessProbe", "readinessProbe")
    trimmed["resources"] = _pick(container.get("resources"), "limits", "requests")
    return trimmed


def transform_pod(obj: Any) -> Any:
    if not _is_kind(obj, "Pod"):
        return obj
    _drop(_metadata(obj), "annotations", "managedFields")
    spec = obj.get("spec") or {}
    new_spec = _pick(spec, "nodeName", "hostPID")
    new_spec["containers"] = [_trim_container(c) for c in spec.get("containers") or []]
    obj["spec"] = new_spec
    obj["status"] = _pick(obj.get("status"), "phase", "containerStatuses")
    return obj


def transform_namespace(obj: Any) -> Any:
    if not _is_kind(obj, "Namespace"):
        return obj
    _drop(_metadata(obj), "annotations", "managedFields")
    obj["spec"] = {}
    return obj


def transform_replicaset(obj: Any) -> Any:
    if not _is_kind(obj, "ReplicaSet"):
        return obj
    _drop(_metadata(obj), "annotations", "managedFields")
    obj["spec"] = {}
    obj["status"] = {}
    return obj


def transform_service(obj: Any) -> Any:
    if not _is_kind(obj, "Service"):
        return obj
    _drop(_metadata(obj), "labels", "annotations", "managedFields")
    obj["spec"] = _pick(obj.get("spec"), "selector")
    obj["status"] = {}
    return obj


def transform_statefulset(obj: Any) -> Any:
    if not _is_kind(obj, "StatefulSet"):
        return obj
    _drop(_metadata(obj), "annotations", "managedFields")
    status = obj.get("status") or {}
    obj["status"] = {"readyReplicas": status.get("readyReplicas", 0)}
    return obj


def transform_event(obj: Any) -> Any:
    if not _is_kind(obj, "Event"):
        return obj
    _drop(_metadata(obj), "managedFields")
    return obj


def transform_node(obj: Any) -> Any:
    if not _is_kind(obj, "Node"):
        return obj
    _drop(_metadata(obj), "annotations", "managedFields")
    obj["spec"] = {}
    obj["status"] = _pick(obj.get("status"), "conditions", "addresses")
    return obj


def transform_hpa(obj: Any) -> Any:
    if not _is_kind(obj, "HorizontalPodAutoscaler"):
        return obj
    _drop(_metadata(obj), "annotations", "managedFields")
    return obj


def transform_ingress_class(obj: Any) -> Any:
    if not _is_kind(obj, "IngressClass"):
        return obj
    metadata = _metadata(obj)
    _keep_annotation(metadata, INGRESS_CLASS_DEFAULT_ANNOTATION)
    metadata.pop("managedFields", None)
    return obj


def transform_ingress(obj: Any) -> Any:
    if not _is_kind(obj, "Ingress"):
        return obj
    metadata = _metadata(obj)
    _keep_annotation(metadata, INGRESS_CLASS_ANNOTATION)
    metadata.pop("managedFields", None)
    obj["spec"] = _pick(obj.get("spec"), "ingressClassName", "rules", "tls")
    return obj