# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Final, NoReturn, Optional

from botocore.exceptions import ClientError

from asg_reconciler.model.group_spec import GroupSpec
from asg_reconciler.model.observed_state import GroupObservedState
from asg_reconciler.observability.error_codes import ErrorCode
from asg_reconciler.observability.powertools_logging import powertools_logger
from asg_reconciler.reconcile.context import ReconcileContext
from asg_reconciler.reconcile.errors import (
    AttachmentTimeoutError,
    CapacityTimeoutError,
    DeleteTimeoutError,
    DrainTimeoutError,
    ProviderError,
    ReconcileError,
)
from asg_reconciler.reconcile.state_reader import get_group
from asg_reconciler.util.duration import format_duration
from asg_reconciler.util.polling import Pending, PollResult, poll_until
from asg_reconciler.util.session_manager import AwsClients

if TYPE_CHECKING:
    from mypy_boto3_autoscaling.type_defs import ActivityTypeDef
else:
    ActivityTypeDef = object

logger: Final = powertools_logger()

HEALTHY: Final = "healthy"
IN_SERVICE: Final = "InService"
ELB_IN_SERVICE: Final = "InService"
TARGET_HEALTHY: Final = "healthy"

# instance id -> state, per load balancer name or target group arn
InstanceStates = dict[str, dict[str, str]]


@dataclass(frozen=True)
class CapacityCounts:
    healthy: int
    elb_healthy: int


CapacitySatisfiedFunc = Callable[[CapacityCounts], tuple[bool, str]]


class AttachmentKind(str, Enum):
    LOAD_BALANCER = "load balancer"
    TARGET_GROUP = "target group"


class AttachmentTransition(str, Enum):
    ADDING = "Adding"
    REMOVING = "Removing"


def capacity_satisfied_create(spec: GroupSpec) -> CapacitySatisfiedFunc:
    """a freshly created group needs at least the requested number of healthy instances"""
    min_asg: Final = (
        spec.desired_capacity
        if spec.desired_capacity is not None and spec.desired_capacity > 0
        else spec.min_size
    )
    min_elb: Final = (
        spec.wait_for_elb_capacity
        if spec.wait_for_elb_capacity is not None and spec.wait_for_elb_capacity > 0
        else spec.min_elb_capacity or 0
    )

    def satisfied(counts: CapacityCounts) -> tuple[bool, str]:
        if counts.healthy < min_asg:
            return (
                False,
                f"Need at least {min_asg} healthy instances in ASG, have {counts.healthy}",
            )
        if counts.elb_healthy < min_elb:
            return (
                False,
                f"Need at least {min_elb} healthy instances in ELB, have {counts.elb_healthy}",
            )
        return True, ""

    return satisfied


def capacity_satisfied_update(spec: GroupSpec) -> CapacitySatisfiedFunc:
    """an updated group needs exactly the requested number of healthy instances"""
    want_asg: Final = spec.desired_capacity or 0
    want_elb: Final = spec.wait_for_elb_capacity or 0

    def satisfied(counts: CapacityCounts) -> tuple[bool, str]:
        if want_asg > 0 and counts.healthy != want_asg:
            return (
                False,
                f"Need exactly {want_asg} healthy instances in ASG, have {counts.healthy}",
            )
        if want_elb > 0 and counts.elb_healthy != want_elb:
            return (
                False,
                f"Need exactly {want_elb} healthy instances in ELB, have {counts.elb_healthy}",
            )
        return True, ""

    return satisfied


def get_elb_instance_states(
    clients: AwsClients, observed: GroupObservedState
) -> InstanceStates:
    states: InstanceStates = {}
    for load_balancer_name in observed.load_balancer_names:
        response = clients.elb.describe_instance_health(
            LoadBalancerName=load_balancer_name
        )
        states[load_balancer_name] = {
            instance["InstanceId"]: instance.get("State", "")
            for instance in response.get("InstanceStates", [])
            if "InstanceId" in instance
        }
    return states


def get_target_group_instance_states(
    clients: AwsClients, observed: GroupObservedState
) -> InstanceStates:
    states: InstanceStates = {}
    for target_group_arn in observed.target_group_arns:
        response = clients.elbv2.describe_target_health(
            TargetGroupArn=target_group_arn
        )
        states[target_group_arn] = {
            description["Target"]["Id"]: description.get("TargetHealth", {}).get(
                "State", ""
            )
            for description in response.get("TargetHealthDescriptions", [])
            if "Target" in description
        }
    return states


def count_healthy_instances(
    observed: GroupObservedState,
    elb_states: InstanceStates,
    target_group_states: InstanceStates,
) -> CapacityCounts:
    """
    Count the instances that count toward capacity.

    An instance is healthy when the group reports it Healthy and InService. It is
    also ELB healthy when every attached classic load balancer reports it InService
    and every attached target group reports it healthy.
    """
    healthy = 0
    elb_healthy = 0
    for instance in observed.instances:
        instance_id = instance.get("InstanceId", "")
        if instance.get("HealthStatus", "").lower() != HEALTHY:
            logger.debug(f"Instance {instance_id} is not healthy")
            continue
        if instance.get("LifecycleState") != IN_SERVICE:
            logger.debug(f"Instance {instance_id} is not in service")
            continue
        healthy += 1

        in_all_load_balancers = all(
            states.get(instance_id) == ELB_IN_SERVICE for states in elb_states.values()
        )
        in_all_target_groups = all(
            states.get(instance_id) == TARGET_HEALTHY
            for states in target_group_states.values()
        )
        if in_all_load_balancers and in_all_target_groups:
            elb_healthy += 1

    return CapacityCounts(healthy=healthy, elb_healthy=elb_healthy)


def wait_for_capacity(
    context: ReconcileContext,
    spec: GroupSpec,
    satisfied: CapacitySatisfiedFunc,
) -> Optional[CapacityCounts]:
    """
    Block until the group reaches the capacity `satisfied` asks for.

    A zero wait_for_capacity_timeout skips waiting entirely.

    :param context: reconciliation context
    :param spec: spec with a resolved name, supplies the timeout
    :param satisfied: capacity predicate, see `capacity_satisfied_create` and
        `capacity_satisfied_update`
    :return: the satisfying counts, or None when waiting was skipped
    """
    group_name: Final = spec.group_name
    timeout: Final = spec.wait_for_capacity_timeout
    if timeout <= timedelta(0):
        logger.warning(
            f"Skipping capacity wait for {group_name}, wait_for_capacity_timeout is 0"
        )
        return None

    logger.info(
        f"Waiting up to {format_duration(timeout)} for capacity of {group_name}"
    )

    def attempt() -> CapacityCounts | Pending:
        observed = get_group(context.clients, group_name)
        if observed is None:
            raise ReconcileError(
                group_name,
                ErrorCode.CAPACITY_TIMEOUT,
                "Auto Scaling Group not found while waiting for capacity",
            )
        counts = count_healthy_instances(
            observed,
            get_elb_instance_states(context.clients, observed),
            get_target_group_instance_states(context.clients, observed),
        )
        ok, reason = satisfied(counts)
        logger.debug(f"{group_name} has {counts}: {reason or 'satisfied'}")
        if ok:
            return counts
        return Pending(reason)

    result: PollResult[CapacityCounts] = poll_until(
        attempt,
        timeout=timeout,
        backoff=context.backoff,
        clock=context.clock,
        final_check=True,
    )
    if result.satisfied:
        return result.value
    if result.failed:
        _raise_failure(result, group_name, ErrorCode.DESCRIBE_FAILED)

    activity = latest_scaling_activity(context.clients, group_name)
    message = f"Waiting up to {format_duration(timeout)}: {result.reason}"
    if activity:
        message = f"{message}. Most recent activity: {activity}"
    logger.error(f"Capacity wait for {group_name} timed out: {message}")
    raise CapacityTimeoutError(group_name, ErrorCode.CAPACITY_TIMEOUT, message)


def latest_scaling_activity(clients: AwsClients, group_name: str) -> str:
    """describe the most recent scaling activity, for inclusion in timeout errors"""
    try:
        response = clients.autoscaling.describe_scaling_activities(
            AutoScalingGroupName=group_name, MaxRecords=1
        )
    except ClientError as err:
        logger.warning(f"Unable to describe scaling activities of {group_name}: {err}")
        return ""

    activities: list[ActivityTypeDef] = response.get("Activities", [])
    if not activities:
        return ""
    activity = activities[0]
    description = activity.get("Description", "")
    status = activity.get("StatusCode", "")
    status_message = activity.get("StatusMessage")
    if status_message:
        return f"{description} ({status}: {status_message})"
    return f"{description} ({status})"


def _describe_attachments(kind: AttachmentKind) -> tuple[str, str, str]:
    if kind == AttachmentKind.LOAD_BALANCER:
        return (
            "describe_load_balancers",
            "LoadBalancers",
            "LoadBalancerName",
        )
    return (
        "describe_load_balancer_target_groups",
        "LoadBalancerTargetGroups",
        "LoadBalancerTargetGroupARN",
    )


def wait_for_attachment_state(
    context: ReconcileContext,
    group_name: str,
    kind: AttachmentKind,
    transition: AttachmentTransition,
) -> None:
    """
    Block until no attachment of `kind` is in the `transition` state.

    Every attempt pages through the attachments starting from the first page. As
    soon as one attachment is still transitioning the pass ends and the next attempt
    starts over, so a pass only succeeds when it reads every page without finding a
    transitioning attachment.
    """
    operation, items_key, name_key = _describe_attachments(kind)

    def attempt() -> bool | Pending:
        paginator = context.clients.autoscaling.get_paginator(operation)
        for page in paginator.paginate(AutoScalingGroupName=group_name):
            for item in page.get(items_key, []):
                if item.get("State") == transition.value:
                    name = item.get(name_key)
                    return Pending(
                        f"{kind.value} {name} is in state {transition.value}"
                    )
        return True

    result: PollResult[bool] = poll_until(
        attempt,
        timeout=context.attachment_wait_timeout,
        backoff=context.backoff,
        clock=context.clock,
    )
    if result.satisfied:
        return
    if result.failed:
        _raise_failure(result, group_name, ErrorCode.ATTACHMENT_FAILED)

    logger.error(
        f"Waiting for {kind.value} attachments of {group_name} timed out: {result.reason}"
    )
    raise AttachmentTimeoutError(
        group_name, ErrorCode.ATTACHMENT_TIMEOUT, result.reason
    )


def wait_for_drain(context: ReconcileContext, group_name: str) -> None:
    """block until the group has no instances left, a missing group counts as drained"""

    def attempt() -> int | Pending:
        observed = get_group(context.clients, group_name)
        if observed is None:
            return 0
        if observed.instance_count == 0:
            return 0
        return Pending(f"Group still has {observed.instance_count} instances")

    result: PollResult[int] = poll_until(
        attempt,
        timeout=context.delete_timeout,
        backoff=context.backoff,
        clock=context.clock,
        final_check=True,
    )
    if result.satisfied:
        return
    if result.failed:
        _raise_failure(result, group_name, ErrorCode.DRAIN_FAILED)
    raise DrainTimeoutError(group_name, ErrorCode.DRAIN_TIMEOUT, result.reason)


def wait_for_deletion(context: ReconcileContext, group_name: str) -> None:
    def attempt() -> bool | Pending:
        if get_group(context.clients, group_name) is None:
            return True
        return Pending("Auto Scaling Group still exists")

    result: PollResult[bool] = poll_until(
        attempt,
        timeout=context.delete_timeout,
        backoff=context.backoff,
        clock=context.clock,
        final_check=True,
    )
    if result.satisfied:
        return
    if result.failed:
        _raise_failure(result, group_name, ErrorCode.DELETE_FAILED)
    raise DeleteTimeoutError(group_name, ErrorCode.DELETE_TIMEOUT, result.reason)


def _raise_failure(
    result: PollResult[Any], group_name: str, error_code: ErrorCode
) -> NoReturn:
    error: Final = result.error
    if isinstance(error, ReconcileError):
        raise error
    if error is None:
        raise ReconcileError(group_name, error_code, result.reason)
    logger.error(f"{error_code.value} for {group_name}: {error}")
    raise ProviderError(group_name, error_code, error) from error
