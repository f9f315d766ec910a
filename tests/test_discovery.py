import pytest

from kubeprobe.discovery import (
    add_node_labels,
    describe_attributes,
    get_domainnames,
    get_hostname,
    get_node_hostname_and_fqdns,
    get_pod_based_attributes,
    get_service_names,
)


def _node(name, labels=None, addresses=None):
    return {
        "metadata": {"name": name, "labels": labels or {}},
        "status": {"addresses": addresses or []},
    }


def _pod(name, node_name, container_ids=()):
    return {
        "metadata": {"name": name},
        "spec": {"nodeName": node_name},
        "status": {"containerStatuses": [{"containerID": cid} for cid in container_ids]},
    }


@pytest.mark.parametrize(
    "labels, attributes, expected",
    [
        (
            {"topology.kubernetes.io/region": "eu-central-1"},
            {},
            {"k8s.label.topology.kubernetes.io/region": ["eu-central-1"]},
        ),
        (
            {"topology.kubernetes.io/region": "eu-central-1"},
            {"k8s.label.topology.kubernetes.io/region": ["us-central-1"]},
            {"k8s.label.topology.kubernetes.io/region": ["us-central-1", "eu-central-1"]},
        ),
        (
            {"topology.kubernetes.io/region": "eu-central-1"},
            {"k8s.label.topology.kubernetes.io/region": ["eu-central-1"]},
            {"k8s.label.topology.kubernetes.io/region": ["eu-central-1"]},
        ),
        (
            {"topology.kubernetes.io/ignore-me": "foobar"},
            {},
            {},
        ),
    ],
    ids=[
        "should add label to attributes",
        "should append label to existing attributes",
        "should not append same label twice",
        "should not add filtered label",
    ],
)
def test_add_node_labels(labels, attributes, expected):
    nodes = [_node("node1", labels)]
    assert add_node_labels(nodes, "node1", attributes) == expected


def test_add_node_labels_ignores_other_nodes():
    nodes = [_node("node2", {"topology.kubernetes.io/zone": "zone-b"})]
    assert add_node_labels(nodes, "node1", {}) == {}


def test_describe_attributes():
    descriptions = describe_attributes()
    assert descriptions[0].attribute == "k8s.container.name"
    assert descriptions[0].label_one == "Container name"
    assert descriptions[-1].attribute == "k8s.pod.name"
    assert len({d.attribute for d in descriptions}) == len(descriptions)


def test_pod_based_attributes_too_many_pods():
    pods = [_pod("a", "node1"), _pod("b", "node1")]
    result = get_pod_based_attributes("deployment", {"name": "shop"}, pods, [], 1)
    assert set(result) == {
        "k8s.pod.name",
        "k8s.container.id",
        "k8s.container.id.stripped",
        "host.hostname",
        "host.domainname",
    }
    assert all(value == ["too-many-pods"] for value in result.values())


def test_pod_based_attributes_without_pods():
    assert get_pod_based_attributes("deployment", {"name": "shop"}, [], [], 50) == {}


def test_pod_based_attributes():
    nodes = [
        _node(
            "node1",
            {"kubernetes.io/hostname": "host-a", "topology.kubernetes.io/zone": "zone-a"},
            [{"type": "InternalDNS", "address": "host-a.internal"}, {"type": "InternalIP", "address": "10.0.0.1"}],
        )
    ]
    pods = [
        _pod("shop-1", "node1", ["containerd://abc", ""]),
        _pod("shop-2", "node1", ["docker://def"]),
    ]
    result = get_pod_based_attributes("deployment", {"name": "shop"}, pods, nodes, 50)
    assert result == {
        "k8s.pod.name": ["shop-1", "shop-2"],
        "k8s.container.id": ["containerd://abc", "docker://def"],
        "k8s.container.id.stripped": ["abc", "def"],
        "host.hostname": ["host-a"],
        "host.domainname": ["host-a.internal"],
        "k8s.label.topology.kubernetes.io/zone": ["zone-a"],
    }


def test_pod_based_attributes_unknown_node():
    result = get_pod_based_attributes("daemonset", {"name": "agent"}, [_pod("p", "gone")], [], 50)
    assert result["host.hostname"] == ["unknown"]
    assert result["host.domainname"] == ["unknown"]
    assert "k8s.container.id" not in result


def test_pod_based_attributes_rejects_container_id_without_prefix():
    with pytest.raises(ValueError):
        get_pod_based_attributes("deployment", {}, [_pod("p", "n", ["abc"])], [], 50)


def test_service_names():
    services = [{"metadata": {"name": "web"}}, {"metadata": {"name": "api"}}]
    assert get_service_names(services) == {"k8s.service.name": ["web", "api"]}
    assert get_service_names([]) == {}


def test_hostname_prefers_label():
    assert get_hostname(_node("node1", {"kubernetes.io/hostname": "host-a"})) == "host-a"
    assert get_hostname(_node("node1")) == "node1"


def test_domainnames_fall_back_to_hostname():
    assert get_domainnames(_node("node1")) == ["node1"]
    node = _node("node1", addresses=[{"type": "InternalDNS", "address": "n1.local"}])
    assert get_domainnames(node) == ["n1.local"]


def test_node_hostname_and_fqdns():
    nodes = [_node("node1", addresses=[{"type": "InternalDNS", "address": "n1.local"}])]
    assert get_node_hostname_and_fqdns(nodes, "node1") == ("node1", ["n1.local"])
    assert get_node_hostname_and_fqdns(nodes, "other") == ("unknown", ["unknown"])