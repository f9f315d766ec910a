import pytest

from kubeprobe.permissions import (
    REQUIRED_PERMISSIONS,
    MissingPermissionsError,
    PermissionCheckOutcome,
    PermissionCheckResult,
    RequiredPermission,
    check_permissions,
    mock_all_permitted,
)

ALL_CHECKS = [
    "can_read_horizontal_pod_autoscalers",
    "can_read_namespaces",
    "is_rollout_restart_permitted",
    "is_scale_deployment_permitted",
    "is_scale_statefulset_permitted",
    "is_delete_pod_permitted",
    "is_drain_node_permitted",
    "is_list_ingress_permitted",
    "is_list_ingress_classes_permitted",
    "is_modify_ingress_permitted",
    "is_taint_node_permitted",
    "is_crash_loop_pod_permitted",
]


def test_key_with_group_and_subresource():
    permission = RequiredPermission("apps", "deployments", ("get",), subresource="scale")
    assert permission.key("get") == "apps/deployments/scale/get"


def test_key_without_group():
    permission = RequiredPermission("", "pods", ("delete",))
    assert permission.key("delete") == "pods/delete"


def test_outcome_values():
    assert PermissionCheckOutcome("ok") is PermissionCheckOutcome.OK
    assert PermissionCheckOutcome.WARN.value == "warn"
    assert PermissionCheckOutcome.ERROR.value == "error"


@pytest.mark.parametrize("check", ALL_CHECKS)
def test_mock_all_permitted_grants_every_check(check):
    assert getattr(mock_all_permitted(), check)() is True


@pytest.mark.parametrize("check", ALL_CHECKS)
def test_empty_result_grants_nothing(check):
    assert getattr(PermissionCheckResult(), check)() is False


def test_warn_outcome_is_not_a_grant():
    result = PermissionCheckResult({"pods/delete": PermissionCheckOutcome.WARN})
    assert result.is_delete_pod_permitted() is False
    result.permissions["pods/delete"] = PermissionCheckOutcome.OK
    assert result.is_delete_pod_permitted() is True


def test_drain_needs_both_keys():
    result = PermissionCheckResult({"pods/eviction/create": PermissionCheckOutcome.OK})
    assert result.is_drain_node_permitted() is False
    result.permissions["nodes/patch"] = PermissionCheckOutcome.OK
    assert result.is_drain_node_permitted() is True


def test_check_permissions_all_allowed_matches_mock():
    calls = []

    def review(**kwargs):
        calls.append(kwargs)
        return True

    result = check_permissions(review, "shop")
    assert result.permissions == mock_all_permitted().permissions
    assert {call["namespace"] for call in calls} == {"shop"}
    assert len(calls) == sum(len(p.verbs) for p in REQUIRED_PERMISSIONS)


def test_optional_permission_denied_gives_warn():
    def review(*, namespace, verb, group, resource, subresource):
        return not (resource == "pods" and verb == "delete")

    result = check_permissions(review, "")
    assert result.permissions["pods/delete"] is PermissionCheckOutcome.WARN
    assert result.is_delete_pod_permitted() is False
    assert result.can_read_namespaces() is True


def test_required_permission_denied_raises():
    def review(*, namespace, verb, group, resource, subresource):
        return resource != "events"

    with pytest.raises(MissingPermissionsError) as info:
        check_permissions(review, "")
    outcomes = info.value.result.permissions
    assert outcomes["events/get"] is PermissionCheckOutcome.ERROR
    assert outcomes["apps/deployments/get"] is PermissionCheckOutcome.OK
    assert "events/list" in str(info.value)


def test_review_exception_counts_as_denied():
    def review(*, namespace, verb, group, resource, subresource):
        if resource == "horizontalpodautoscalers":
            raise ConnectionError("unreachable")
        return True

    result = check_permissions(review, "")
    assert result.permissions["autoscaling/horizontalpodautoscalers/list"] is PermissionCheckOutcome.WARN
    assert result.can_read_horizontal_pod_autoscalers() is False
    assert result.is_list_ingress_permitted() is True