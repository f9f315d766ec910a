"""Follow owner references from an object up to the workloads that own it."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from kubeprobe.client import KubernetesClient


@dataclass(frozen=True)
class OwnerReference:
    name: str
    kind: str


@dataclass
class OwnerRefListWithResource:
    """The chain of owners found, with the owning deployment or daemonset."""

    owner_refs: list[OwnerReference] = field(default_factory=list)
    deployment: dict[str, Any] | None = None
    daemonset: dict[str, Any] | None = None

    def container_spec(self, container_name: str) -> dict[str, Any] | None:
        """The named container of the owning workload's pod template, or None."""
        workload = self.deployment if self.deployment is not None else self.daemonset
        if workload is None:
            return None
        containers = (
            ((workload.get("spec") or {}).get("template") or {}).get("spec") or {}
        ).get("containers") or []
        return next((c for c in containers if c.get("name") == container_name), None)


def _lookup(
    client: KubernetesClient, kind: str, namespace: str, name: str
) -> tuple[str, dict[str, Any]] | None:
    lookups = {
        "replicaset": client.replicaset_by_namespace_and_name,
        "daemonset": client.daemonset_by_namespace_and_name,
        "deployment": client.deployment_by_namespace_and_name,
        "statefulset": client.statefulset_by_namespace_and_name,
    }
    normalized = kind.lower()
    lookup = lookups.get(normalized)
    if lookup is None:
        return None
    resource = lookup(namespace, name)
    if resource is None:
        return None
    return normalized, resource


def _collect(
    client: KubernetesClient, metadata: Mapping[str, Any], result: OwnerRefListWithResource
) -> None:
    namespace = metadata.get("namespace", "")
    for ref in metadata.get("ownerReferences") or []:
        found = _lookup(client, ref.get("kind", ""), namespace, ref.get("name", ""))
        if found is None:
            continue
        kind, resource = found
        owner_metadata = resource.get("metadata") or {}
        result.owner_refs.append(OwnerReference(name=owner_metadata.get("name", ""), kind=kind))
        if kind == "deployment":
            result.deployment = resource
        elif kind == "daemonset":
            result.daemonset = resource
        _collect(client, owner_metadata, result)


def owner_references(
    client: KubernetesClient, metadata: Mapping[str, Any]
) -> OwnerRefListWithResource:
    """All owners of an object, nearest first, found in the client's caches."""
    result = OwnerRefListWithResource()
    _collect(client, metadata, result)
    return result