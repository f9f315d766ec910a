"""Attributes shared by the discovered workload targets."""

from __future__ import annotations

import logging
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

CLUSTER_TARGET_TYPE = "com.steadybit.extension_kubernetes.kubernetes-cluster"

TOO_MANY_PODS = "too-many-pods"
UNKNOWN = "unknown"
HOSTNAME_LABEL = "kubernetes.io/hostname"

NODE_LABEL_FILTER = (
    "topology.kubernetes.io/region",
    "topology.kubernetes.io/zone",
    "kubernetes.io/arch",
    "kubernetes.io/os",
    "node.kubernetes.io/instance-type",
)

_POD_ATTRIBUTES = (
    "k8s.pod.name",
    "k8s.container.id",
    "k8s.container.id.stripped",
    "host.hostname",
    "host.domainname",
)


@dataclass(frozen=True)
class AttributeDescription:
    """A discovery attribute with its singular and plural label."""

    attribute: str
    label_one: str
    label_other: str


def describe_attributes() -> list[AttributeDescription]:
    """Labels of the attributes this extension contributes."""
    return [
        AttributeDescription("k8s.container.name", "Container name", "Container names"),
        AttributeDescription("k8s.namespace", "Namespace name", "Namespace names"),
        AttributeDescription("k8s.cluster-name", "Cluster name", "Cluster names"),
        AttributeDescription("k8s.deployment", "Deployment name", "Deployment names"),
        AttributeDescription("k8s.statefulset", "StatefulSet name", "StatefulSet names"),
        AttributeDescription("k8s.daemonset", "DaemonSet name", "DaemonSet names"),
        AttributeDescription("k8s.pod.name", "Pod name", "Pod names"),
    ]


def _metadata(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def _strip_runtime_prefix(container_id: str) -> str:
    _, separator, rest = container_id.partition("://")
    if not separator:
        raise ValueError(f"container id without runtime prefix: {container_id!r}")
    return rest


def get_pod_based_attributes(
    owner_type: str,
    owner: Mapping[str, Any],
    pods: Sequence[Mapping[str, Any]],
    nodes: Sequence[Mapping[str, Any]],
    max_pod_count: int = 50,
) -> dict[str, list[str]]:
    """Pod names, container ids, hosts and node labels of a workload's pods."""
    attributes: dict[str, list[str]] = {}
    if len(pods) > max_pod_count:
        logger.warning(
            "%s %s/%s has more than %d pods. Not listing pods, containers and hosts for this %s",
            owner_type, owner.get("namespace", ""), owner.get("name", ""), max_pod_count, owner_type,
        )
        for key in _POD_ATTRIBUTES:
            attributes[key] = [TOO_MANY_PODS]
        return attributes
    if not pods:
        return attributes

    pod_names: list[str] = []
    container_ids: list[str] = []
    stripped_ids: list[str] = []
    hostnames: dict[str, None] = {}
    fqdns: dict[str, None] = {}
    for pod in pods:
        pod_names.append(_metadata(pod).get("name", ""))
        for status in (pod.get("status") or {}).get("containerStatuses") or []:
            container_id = status.get("containerID", "")
            if not container_id:
                continue
            container_ids.append(container_id)
            stripped_ids.append(_strip_runtime_prefix(container_id))
        node_name = (pod.get("spec") or {}).get("nodeName", "")
        hostname, node_fqdns = get_node_hostname_and_fqdns(nodes, node_name)
        hostnames[hostname] = None
        fqdns.update(dict.fromkeys(node_fqdns))
        add_node_labels(nodes, node_name, attributes)

    attributes["k8s.pod.name"] = pod_names
    if container_ids:
        attributes["k8s.container.id"] = container_ids
    if stripped_ids:
        attributes["k8s.container.id.stripped"] = stripped_ids
    if hostnames:
        attributes["host.hostname"] = list(hostnames)
        attributes["host.domainname"] = list(fqdns)
    return attributes


def get_service_names(services: Sequence[Mapping[str, Any]]) -> dict[str, list[str]]:
    """The ``k8s.service.name`` attribute for a list of services."""
    if not services:
        return {}
    return {"k8s.service.name": [_metadata(service).get("name", "") for service in services]}


def get_node_hostname_and_fqdns(
    nodes: Sequence[Mapping[str, Any]], name: str
) -> tuple[str, list[str]]:
    """Hostname and domain names of the named node, or ``unknown``."""
    for node in nodes:
        if _metadata(node).get("name") == name:
            return get_hostname(node), get_domainnames(node)
    return UNKNOWN, [UNKNOWN]


def get_domainnames(node: Mapping[str, Any]) -> list[str]:
    """Internal DNS names of a node, falling back to its hostname."""
    names = [
        address.get("address", "")
        for address in (node.get("status") or {}).get("addresses") or []
        if address.get("type") == "InternalDNS"
    ]
    return names or [get_hostname(node)]


def get_hostname(node: Mapping[str, Any]) -> str:
    """The node's hostname label, or its name."""
    metadata = _metadata(node)
    labels = metadata.get("labels") or {}
    if HOSTNAME_LABEL in labels:
        return labels[HOSTNAME_LABEL]
    return metadata.get("name", "")


def add_node_labels(
    nodes: Sequence[Mapping[str, Any]],
    node_name: str,
    attributes: MutableMapping[str, list[str]],
) -> MutableMapping[str, list[str]]:
    """Add the selected labels of the named node as ``k8s.label.*`` attributes."""
    for node in nodes:
        metadata = _metadata(node)
        if metadata.get("name") != node_name:
            continue
        for key, value in (metadata.get("labels") or {}).items():
            if key not in NODE_LABEL_FILTER:
                continue
            attribute_key = f"k8s.label.{key}"
            existing = attributes.get(attribute_key)
            if existing is None:
                attributes[attribute_key] = [value]
            elif value not in existing:
                existing.append(value)
    return attributes