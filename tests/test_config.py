import logging

import pytest

from kubeprobe.config import (
    ConfigurationError,
    Specification,
    load_configuration,
    validate_configuration,
)


def _env(**extra):
    env = {"STEADYBIT_EXTENSION_CLUSTER_NAME": "dev-cluster"}
    env.update(extra)
    return env


def test_defaults_when_only_cluster_name_is_set():
    config = load_configuration(_env())
    assert config.cluster_name == "dev-cluster"
    assert config.label_filter == (
        "controller-revision-hash",
        "pod-template-generation",
        "pod-template-hash",
    )
    assert config.active_advice_list == ("*",)
    assert config.advice_single_replica_min_replicas == 2
    assert config.discovery_max_pod_count == 50
    assert config.namespace == ""
    assert config.disable_discovery_excludes is False
    assert config.discovery_attributes_excludes_pod == ()


def test_missing_cluster_name_raises():
    with pytest.raises(ConfigurationError):
        load_configuration({})


def test_empty_cluster_name_counts_as_set():
    config = Specification.from_environ({"STEADYBIT_EXTENSION_CLUSTER_NAME": ""})
    assert config.cluster_name == ""


def test_values_are_parsed_from_environment():
    config = Specification.from_environ(
        _env(
            STEADYBIT_EXTENSION_DISCOVERY_MAX_POD_COUNT="7",
            STEADYBIT_EXTENSION_DISABLE_DISCOVERY_EXCLUDES="true",
            STEADYBIT_EXTENSION_DISCOVERY_DISABLED_STATEFUL_SET="1",
            STEADYBIT_EXTENSION_DISCOVERY_ATTRIBUTES_EXCLUDES_POD="a,b",
            STEADYBIT_EXTENSION_NAMESPACE="shop",
        )
    )
    assert config.discovery_max_pod_count == 7
    assert config.disable_discovery_excludes is True
    assert config.discovery_disabled_statefulset is True
    assert config.discovery_attributes_excludes_pod == ("a", "b")
    assert config.namespace == "shop"


def test_empty_list_variable_gives_empty_tuple():
    config = Specification.from_environ(_env(STEADYBIT_EXTENSION_LABEL_FILTER=""))
    assert config.label_filter == ()


def test_invalid_bool_raises():
    with pytest.raises(ConfigurationError):
        Specification.from_environ(
            _env(STEADYBIT_EXTENSION_DISCOVERY_DISABLED_POD="maybe")
        )


def test_invalid_int_raises():
    with pytest.raises(ConfigurationError):
        Specification.from_environ(
            _env(STEADYBIT_EXTENSION_DISCOVERY_MAX_POD_COUNT="many")
        )


def test_role_based_access_control_follows_namespace():
    assert not load_configuration(_env()).uses_role_based_access_control()
    restricted = load_configuration(_env(STEADYBIT_EXTENSION_NAMESPACE="shop"))
    assert restricted.uses_role_based_access_control()


def test_validate_logs_when_excludes_disabled(caplog):
    config = Specification(cluster_name="dev-cluster", disable_discovery_excludes=True)
    with caplog.at_level(logging.INFO, logger="kubeprobe.config"):
        validate_configuration(config)
    assert "Discovery excludes are disabled" in caplog.text


def test_validate_is_silent_by_default(caplog):
    with caplog.at_level(logging.INFO, logger="kubeprobe.config"):
        validate_configuration(Specification(cluster_name="dev-cluster"))
    assert caplog.records == []