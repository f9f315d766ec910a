from kubeprobe.client import KubernetesClient
from kubeprobe.config import Specification
from kubeprobe.owners import OwnerRefListWithResource, OwnerReference, owner_references
from kubeprobe.permissions import mock_all_permitted
from kubeprobe.store import ResourceKind


def make_client():
    return KubernetesClient(Specification(cluster_name="dev"), mock_all_permitted())


def workload(kind, name, owners=(), containers=()):
    return {
        "kind": kind,
        "metadata": {
            "name": name,
            "namespace": "shop",
            "ownerReferences": [{"kind": k, "name": n} for k, n in owners],
        },
        "spec": {"template": {"spec": {"containers": [{"name": c} for c in containers]}}},
    }


def pod_meta(*owners):
    return {
        "name": "pod",
        "namespace": "shop",
        "ownerReferences": [{"kind": k, "name": n} for k, n in owners],
    }


def test_chain_through_replicaset_to_deployment():
    client = make_client()
    client.store(ResourceKind.DEPLOYMENT).add(workload("Deployment", "checkout", containers=["app"]))
    client.store(ResourceKind.REPLICA_SET).add(
        workload("ReplicaSet", "checkout-rs", owners=[("Deployment", "checkout")])
    )
    result = owner_references(client, pod_meta(("ReplicaSet", "checkout-rs")))
    assert result.owner_refs == [
        OwnerReference("checkout-rs", "replicaset"),
        OwnerReference("checkout", "deployment"),
    ]
    assert result.deployment["metadata"]["name"] == "checkout"
    assert result.daemonset is None
    assert result.container_spec("app") == {"name": "app"}
    assert result.container_spec("missing") is None


def test_daemonset_owner():
    client = make_client()
    client.store(ResourceKind.DAEMON_SET).add(workload("DaemonSet", "agent", containers=["probe"]))
    result = owner_references(client, pod_meta(("DaemonSet", "agent")))
    assert result.owner_refs == [OwnerReference("agent", "daemonset")]
    assert result.daemonset["metadata"]["name"] == "agent"
    assert result.container_spec("probe")["name"] == "probe"


def test_statefulset_owner_has_no_container_spec():
    client = make_client()
    client.store(ResourceKind.STATEFUL_SET).add(workload("StatefulSet", "db", containers=["db"]))
    result = owner_references(client, pod_meta(("StatefulSet", "db")))
    assert result.owner_refs == [OwnerReference("db", "statefulset")]
    assert result.container_spec("db") is None


def test_unknown_kind_and_missing_owner_are_skipped():
    client = make_client()
    result = owner_references(client, pod_meta(("Job", "batch"), ("ReplicaSet", "gone")))
    assert result.owner_refs == []
    assert result.deployment is None


def test_no_owner_references():
    result = owner_references(make_client(), {"name": "pod", "namespace": "shop"})
    assert result == OwnerRefListWithResource()


def test_kind_is_matched_case_insensitively():
    client = make_client()
    client.store(ResourceKind.DEPLOYMENT).add(workload("Deployment", "web"))
    result = owner_references(client, pod_meta(("DEPLOYMENT", "web")))
    assert result.owner_refs == [OwnerReference("web", "deployment")]