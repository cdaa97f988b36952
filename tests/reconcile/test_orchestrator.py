# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from collections.abc import Iterator
from datetime import timedelta
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from asg_reconciler.model.group_spec import GroupSpec, InvalidGroupSpecError
from asg_reconciler.observability.error_codes import ErrorCode
from asg_reconciler.reconcile.context import ReconcileContext
from asg_reconciler.reconcile.errors import (
    CapacityTimeoutError,
    PartialCreateError,
    ProviderError,
)
from asg_reconciler.reconcile.orchestrator import AsgReconciler
from asg_reconciler.util.session_manager import AwsClients
from tests.test_utils.fake_clock import FakeClock
from tests.test_utils.mock_clients import (
    client_error,
    describe_groups_always,
    make_group,
    mock_context,
)

ORCHESTRATOR = "asg_reconciler.reconcile.orchestrator"

INVALID_PROFILE = client_error(
    "ValidationError", "Invalid IAM Instance Profile name", "CreateAutoScalingGroup"
)


def spec(**fields: Any) -> GroupSpec:
    base: dict[str, Any] = {
        "name": "my-group",
        "min_size": 1,
        "max_size": 3,
        "launch_configuration": "my-lc",
    }
    base.update(fields)
    return GroupSpec.from_document(base)


@pytest.fixture
def waits() -> Iterator[dict[str, MagicMock]]:
    with patch(f"{ORCHESTRATOR}.wait_for_capacity") as capacity, patch(
        f"{ORCHESTRATOR}.wait_for_drain"
    ) as drain, patch(f"{ORCHESTRATOR}.wait_for_deletion") as deletion:
        yield {"capacity": capacity, "drain": drain, "deletion": deletion}


@pytest.fixture
def reconciler(clients: AwsClients, context: ReconcileContext) -> AsgReconciler:
    clients.autoscaling.get_paginator.return_value = describe_groups_always(
        make_group()
    )
    return AsgReconciler(context)


def called_methods(clients: AwsClients) -> list[str]:
    return [
        name
        for name, _, _ in clients.autoscaling.mock_calls
        if name and "." not in name and name != "get_paginator"
    ]


# create


def test_create_sends_request_and_returns_document(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    result = reconciler.create(spec(desired_capacity=2))

    clients.autoscaling.create_auto_scaling_group.assert_called_once()
    request = clients.autoscaling.create_auto_scaling_group.call_args.kwargs
    assert request["AutoScalingGroupName"] == "my-group"
    assert request["DesiredCapacity"] == 2
    waits["capacity"].assert_called_once()
    assert result.exists
    assert result.document is not None
    assert result.document["name"] == "my-group"
    assert result.instance_refresh_token
    assert not result.needs_refresh


def test_create_generates_name_from_prefix(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    desired = GroupSpec.from_document(
        {
            "name_prefix": "web-",
            "min_size": 0,
            "max_size": 1,
            "launch_configuration": "lc",
        }
    )

    result = reconciler.create(desired)

    name = clients.autoscaling.create_auto_scaling_group.call_args.kwargs[
        "AutoScalingGroupName"
    ]
    assert name.startswith("web-")
    assert result.group_name == name


def test_create_with_lifecycle_hooks_is_two_phase(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    reconciler.create(
        spec(
            desired_capacity=2,
            initial_lifecycle_hook=[
                {
                    "name": "hook",
                    "lifecycle_transition": "autoscaling:EC2_INSTANCE_LAUNCHING",
                }
            ],
        )
    )

    assert called_methods(clients) == [
        "create_auto_scaling_group",
        "put_lifecycle_hook",
        "update_auto_scaling_group",
    ]
    create = clients.autoscaling.create_auto_scaling_group.call_args.kwargs
    assert (create["MinSize"], create["MaxSize"]) == (0, 0)
    clients.autoscaling.update_auto_scaling_group.assert_called_once_with(
        AutoScalingGroupName="my-group", MinSize=1, MaxSize=3, DesiredCapacity=2
    )


def test_create_retries_invalid_instance_profile(
    reconciler: AsgReconciler,
    clients: AwsClients,
    fake_clock: FakeClock,
    waits: dict[str, MagicMock],
) -> None:
    clients.autoscaling.create_auto_scaling_group.side_effect = [
        INVALID_PROFILE,
        {},
    ]

    reconciler.create(spec())

    assert clients.autoscaling.create_auto_scaling_group.call_count == 2
    assert fake_clock.sleeps == [1.0]


def test_create_gives_up_after_retry_timeout(
    clients: AwsClients, fake_clock: FakeClock, waits: dict[str, MagicMock]
) -> None:
    context = mock_context(
        clients, fake_clock, create_retry_timeout=timedelta(seconds=2)
    )
    clients.autoscaling.create_auto_scaling_group.side_effect = INVALID_PROFILE

    with pytest.raises(ProviderError) as exc_info:
        AsgReconciler(context).create(spec())

    assert exc_info.value.error_code == ErrorCode.CREATE_FAILED
    assert exc_info.value.provider_error_code == "ValidationError"
    # two attempts inside the window, one at the deadline and the final check
    assert clients.autoscaling.create_auto_scaling_group.call_count == 4
    waits["capacity"].assert_not_called()


def test_create_does_not_retry_other_errors(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    clients.autoscaling.create_auto_scaling_group.side_effect = client_error(
        "AlreadyExists"
    )

    with pytest.raises(ProviderError) as exc_info:
        reconciler.create(spec())

    assert not isinstance(exc_info.value, PartialCreateError)
    assert exc_info.value.error_code == ErrorCode.CREATE_FAILED
    assert clients.autoscaling.create_auto_scaling_group.call_count == 1


def test_create_retries_lifecycle_hook_notification_errors(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    clients.autoscaling.put_lifecycle_hook.side_effect = [
        client_error(
            "ValidationError",
            "Unable to publish test message to notification target arn:aws:sns:x",
        ),
        {},
    ]

    reconciler.create(
        spec(
            initial_lifecycle_hook=[
                {
                    "name": "hook",
                    "lifecycle_transition": "autoscaling:EC2_INSTANCE_LAUNCHING",
                    "notification_target_arn": "arn:aws:sns:x",
                    "role_arn": "arn:aws:iam::123456789012:role/hook",
                }
            ]
        )
    )

    assert clients.autoscaling.put_lifecycle_hook.call_count == 2
    clients.autoscaling.update_auto_scaling_group.assert_called_once()


def test_lifecycle_hook_notification_error_is_retried_for_any_code(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    clients.autoscaling.put_lifecycle_hook.side_effect = [
        client_error(
            "InvalidParameterValue",
            "Unable to publish test message to notification target arn:aws:sns:x",
        ),
        {},
    ]

    reconciler.create(
        spec(
            initial_lifecycle_hook=[
                {
                    "name": "hook",
                    "lifecycle_transition": "autoscaling:EC2_INSTANCE_LAUNCHING",
                    "notification_target_arn": "arn:aws:sns:x",
                    "role_arn": "arn:aws:iam::123456789012:role/hook",
                }
            ]
        )
    )

    assert clients.autoscaling.put_lifecycle_hook.call_count == 2


def test_failed_lifecycle_hook_is_partial_create(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    clients.autoscaling.put_lifecycle_hook.side_effect = client_error("AccessDenied")

    with pytest.raises(PartialCreateError) as exc_info:
        reconciler.create(
            spec(
                initial_lifecycle_hook=[
                    {
                        "name": "hook",
                        "lifecycle_transition": "autoscaling:EC2_INSTANCE_LAUNCHING",
                    }
                ]
            )
        )

    assert exc_info.value.group_name == "my-group"
    assert exc_info.value.error_code == ErrorCode.LIFECYCLE_HOOKS_FAILED
    clients.autoscaling.update_auto_scaling_group.assert_not_called()


def test_capacity_timeout_after_create_is_partial_create(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    waits["capacity"].side_effect = CapacityTimeoutError(
        "my-group", ErrorCode.CAPACITY_TIMEOUT, "Need at least 2 healthy instances"
    )

    with pytest.raises(PartialCreateError) as exc_info:
        reconciler.create(
            spec(desired_capacity=2, suspended_processes=["AZRebalance"])
        )

    assert exc_info.value.error_code == ErrorCode.CAPACITY_TIMEOUT
    assert isinstance(exc_info.value.error, CapacityTimeoutError)
    clients.autoscaling.suspend_processes.assert_not_called()


def test_partial_create_message_names_the_group_once(
    reconciler: AsgReconciler, waits: dict[str, MagicMock]
) -> None:
    waits["capacity"].side_effect = CapacityTimeoutError(
        "my-group", ErrorCode.CAPACITY_TIMEOUT, "Need at least 2 healthy instances"
    )

    with pytest.raises(PartialCreateError) as exc_info:
        reconciler.create(spec(desired_capacity=2))

    assert str(exc_info.value).count("for auto scaling group") == 1
    assert exc_info.value.message == "Need at least 2 healthy instances"


def test_create_applies_processes_and_metrics(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    reconciler.create(
        spec(
            suspended_processes=["AZRebalance"],
            enabled_metrics=["GroupMaxSize"],
            metrics_granularity="1Minute",
        )
    )

    clients.autoscaling.suspend_processes.assert_called_once_with(
        AutoScalingGroupName="my-group", ScalingProcesses=["AZRebalance"]
    )
    clients.autoscaling.enable_metrics_collection.assert_called_once_with(
        AutoScalingGroupName="my-group",
        Metrics=["GroupMaxSize"],
        Granularity="1Minute",
    )
    clients.autoscaling.resume_processes.assert_not_called()


def test_invalid_spec_is_rejected_before_any_call(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    desired = GroupSpec.from_document(
        {"name": "my-group", "min_size": 0, "max_size": 1}
    )

    with pytest.raises(InvalidGroupSpecError):
        reconciler.create(desired)

    clients.autoscaling.create_auto_scaling_group.assert_not_called()


# read


def test_read_existing_group(reconciler: AsgReconciler) -> None:
    result = reconciler.read(spec())

    assert result.exists
    assert result.instance_refresh_token is None


def test_read_missing_group(
    reconciler: AsgReconciler, clients: AwsClients
) -> None:
    clients.autoscaling.get_paginator.return_value = describe_groups_always(None)

    result = reconciler.read(spec())

    assert not result.exists
    assert result.document is None


def test_read_describe_failure(reconciler: AsgReconciler, clients: AwsClients) -> None:
    clients.autoscaling.get_paginator.return_value.paginate.side_effect = (
        client_error("AccessDenied")
    )

    with pytest.raises(ProviderError) as exc_info:
        reconciler.read(spec())

    assert exc_info.value.error_code == ErrorCode.DESCRIBE_FAILED


# update


def test_update_runs_steps_in_order(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    events: list[str] = []
    clients.autoscaling.update_auto_scaling_group.side_effect = (
        lambda **kwargs: events.append("update")
    )
    clients.autoscaling.create_or_update_tags.side_effect = (
        lambda **kwargs: events.append("tags")
    )
    clients.autoscaling.enable_metrics_collection.side_effect = (
        lambda **kwargs: events.append("metrics")
    )
    clients.autoscaling.suspend_processes.side_effect = (
        lambda **kwargs: events.append("processes")
    )
    waits["capacity"].side_effect = lambda *args: events.append("capacity")

    with patch(f"{ORCHESTRATOR}.reconcile_load_balancers") as load_balancers, patch(
        f"{ORCHESTRATOR}.reconcile_target_groups"
    ) as target_groups:
        load_balancers.side_effect = lambda *args: events.append("load_balancers")
        target_groups.side_effect = lambda *args: events.append("target_groups")
        reconciler.update(
            spec(desired_capacity=1),
            spec(
                desired_capacity=2,
                tag=[{"key": "team", "value": "x", "propagate_at_launch": False}],
                load_balancers=["lb-a"],
                target_group_arns=["arn:tg"],
                enabled_metrics=["GroupMaxSize"],
                suspended_processes=["AZRebalance"],
            ),
        )

    assert events == [
        "update",
        "tags",
        "load_balancers",
        "target_groups",
        "capacity",
        "metrics",
        "processes",
    ]


def test_update_skips_unchanged_steps(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    with patch(f"{ORCHESTRATOR}.reconcile_load_balancers") as load_balancers:
        result = reconciler.update(
            spec(load_balancers=["lb-a"]), spec(max_size=5, load_balancers=["lb-a"])
        )

    clients.autoscaling.update_auto_scaling_group.assert_called_once_with(
        AutoScalingGroupName="my-group",
        NewInstancesProtectedFromScaleIn=False,
        MaxSize=5,
    )
    load_balancers.assert_not_called()
    waits["capacity"].assert_not_called()
    clients.autoscaling.create_or_update_tags.assert_not_called()
    assert not result.needs_refresh
    assert result.instance_refresh_token is None


def test_update_issues_refresh_token_for_launch_changes(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    result = reconciler.update(spec(), spec(launch_configuration="my-lc-2"))

    assert result.needs_refresh
    assert result.instance_refresh_token
    assert (
        clients.autoscaling.update_auto_scaling_group.call_args.kwargs[
            "LaunchConfigurationName"
        ]
        == "my-lc-2"
    )


def test_update_carries_prior_name(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    desired = GroupSpec.from_document(
        {"min_size": 1, "max_size": 4, "launch_configuration": "my-lc"}
    )

    result = reconciler.update(spec(), desired)

    assert result.group_name == "my-group"
    assert (
        clients.autoscaling.update_auto_scaling_group.call_args.kwargs[
            "AutoScalingGroupName"
        ]
        == "my-group"
    )


def test_update_rejects_rename(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    with pytest.raises(InvalidGroupSpecError):
        reconciler.update(spec(), spec(name="other-group"))

    clients.autoscaling.update_auto_scaling_group.assert_not_called()


def test_update_failure_stops_later_steps(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    clients.autoscaling.update_auto_scaling_group.side_effect = client_error(
        "ValidationError", "bad request"
    )

    with pytest.raises(ProviderError) as exc_info:
        reconciler.update(
            spec(),
            spec(tag=[{"key": "team", "value": "x", "propagate_at_launch": False}]),
        )

    assert exc_info.value.error_code == ErrorCode.UPDATE_FAILED
    clients.autoscaling.create_or_update_tags.assert_not_called()


# delete


def test_delete_missing_group_is_a_no_op(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    clients.autoscaling.get_paginator.return_value = describe_groups_always(None)

    reconciler.delete(spec())

    clients.autoscaling.update_auto_scaling_group.assert_not_called()
    clients.autoscaling.delete_auto_scaling_group.assert_not_called()
    waits["deletion"].assert_not_called()


def test_delete_drains_group_with_capacity(
    reconciler: AsgReconciler,
    clients: AwsClients,
    context: ReconcileContext,
    waits: dict[str, MagicMock],
) -> None:
    reconciler.delete(spec())

    assert called_methods(clients) == [
        "update_auto_scaling_group",
        "delete_auto_scaling_group",
    ]
    clients.autoscaling.update_auto_scaling_group.assert_called_once_with(
        AutoScalingGroupName="my-group", MinSize=0, MaxSize=0, DesiredCapacity=0
    )
    clients.autoscaling.delete_auto_scaling_group.assert_called_once_with(
        AutoScalingGroupName="my-group", ForceDelete=False
    )
    waits["drain"].assert_called_once_with(context, "my-group")
    waits["deletion"].assert_called_once_with(context, "my-group")


def test_force_delete_skips_drain(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    reconciler.delete(spec(force_delete=True))

    clients.autoscaling.update_auto_scaling_group.assert_not_called()
    waits["drain"].assert_not_called()
    clients.autoscaling.delete_auto_scaling_group.assert_called_once_with(
        AutoScalingGroupName="my-group", ForceDelete=True
    )


def test_delete_empty_group_skips_drain(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    clients.autoscaling.get_paginator.return_value = describe_groups_always(
        make_group(min_size=0, desired_capacity=0)
    )

    reconciler.delete(spec())

    clients.autoscaling.update_auto_scaling_group.assert_not_called()
    clients.autoscaling.delete_auto_scaling_group.assert_called_once()


def test_delete_retries_while_in_use(
    reconciler: AsgReconciler,
    clients: AwsClients,
    fake_clock: FakeClock,
    waits: dict[str, MagicMock],
) -> None:
    clients.autoscaling.delete_auto_scaling_group.side_effect = [
        client_error("ResourceInUse", "instances still running"),
        client_error("ScalingActivityInProgress", "scaling"),
        {},
    ]

    reconciler.delete(spec(force_delete=True))

    assert clients.autoscaling.delete_auto_scaling_group.call_count == 3
    assert fake_clock.sleeps == [1.0, 2.0]
    waits["deletion"].assert_called_once()


def test_delete_treats_not_found_as_deleted(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    clients.autoscaling.delete_auto_scaling_group.side_effect = client_error(
        "InvalidGroup.NotFound", "not found"
    )

    reconciler.delete(spec(force_delete=True))

    waits["deletion"].assert_called_once()


def test_delete_failure(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    clients.autoscaling.delete_auto_scaling_group.side_effect = client_error(
        "AccessDenied"
    )

    with pytest.raises(ProviderError) as exc_info:
        reconciler.delete(spec(force_delete=True))

    assert exc_info.value.error_code == ErrorCode.DELETE_FAILED
    assert isinstance(exc_info.value.error, ClientError)
    waits["deletion"].assert_not_called()


def test_drain_failure(
    reconciler: AsgReconciler, clients: AwsClients, waits: dict[str, MagicMock]
) -> None:
    clients.autoscaling.update_auto_scaling_group.side_effect = client_error(
        "AccessDenied"
    )

    with pytest.raises(ProviderError) as exc_info:
        reconciler.drain("my-group")

    assert exc_info.value.error_code == ErrorCode.DRAIN_FAILED
    waits["drain"].assert_not_called()
