# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Final, Generic, Optional, TypeVar

from botocore.exceptions import ClientError

from asg_reconciler.model.tags import IgnoreTagsConfig, TagCollection
from asg_reconciler.observability.error_codes import ErrorCode
from asg_reconciler.observability.powertools_logging import powertools_logger
from asg_reconciler.reconcile.context import ReconcileContext
from asg_reconciler.reconcile.errors import ProviderError
from asg_reconciler.reconcile.waiter import (
    AttachmentKind,
    AttachmentTransition,
    wait_for_attachment_state,
)
from asg_reconciler.util.pagination import chunked
from asg_reconciler.util.session_manager import AwsClients

T = TypeVar("T")

logger: Final = powertools_logger()

ATTACHMENT_BATCH_SIZE: Final = 10  # provider limit per attach/detach call


@dataclass(frozen=True)
class SetDiff(Generic[T]):
    to_add: frozenset[T]
    to_remove: frozenset[T]

    @classmethod
    def between(cls, old: Iterable[T], new: Iterable[T]) -> "SetDiff[T]":
        old_set: Final = frozenset(old)
        new_set: Final = frozenset(new)
        return cls(to_add=new_set - old_set, to_remove=old_set - new_set)

    @property
    def empty(self) -> bool:
        return not self.to_add and not self.to_remove


def _apply_in_batches(
    context: ReconcileContext,
    group_name: str,
    kind: AttachmentKind,
    transition: AttachmentTransition,
    items: Iterable[str],
    call: Callable[[list[str]], Any],
) -> None:
    for batch in chunked(sorted(items), ATTACHMENT_BATCH_SIZE):
        logger.info(
            f"{transition.value} {len(batch)} {kind.value}(s) for {group_name}",
            extra={"batch": batch},
        )
        try:
            call(batch)
        except ClientError as err:
            logger.error(
                f"Failed {transition.value.lower()} {kind.value}(s) for {group_name}: {err}"
            )
            raise ProviderError(group_name, ErrorCode.ATTACHMENT_FAILED, err) from err
        wait_for_attachment_state(context, group_name, kind, transition)


def reconcile_load_balancers(
    context: ReconcileContext,
    group_name: str,
    old: Iterable[str],
    new: Iterable[str],
) -> SetDiff[str]:
    """
    Detach removed and attach added classic load balancers.

    Each call carries at most ATTACHMENT_BATCH_SIZE names and is followed by a wait
    until none of the group's load balancers is still transitioning.
    """
    diff: Final[SetDiff[str]] = SetDiff.between(old, new)
    autoscaling: Final = context.clients.autoscaling

    _apply_in_batches(
        context,
        group_name,
        AttachmentKind.LOAD_BALANCER,
        AttachmentTransition.REMOVING,
        diff.to_remove,
        lambda batch: autoscaling.detach_load_balancers(
            AutoScalingGroupName=group_name, LoadBalancerNames=batch
        ),
    )
    _apply_in_batches(
        context,
        group_name,
        AttachmentKind.LOAD_BALANCER,
        AttachmentTransition.ADDING,
        diff.to_add,
        lambda batch: autoscaling.attach_load_balancers(
            AutoScalingGroupName=group_name, LoadBalancerNames=batch
        ),
    )
    return diff


def reconcile_target_groups(
    context: ReconcileContext,
    group_name: str,
    old: Iterable[str],
    new: Iterable[str],
) -> SetDiff[str]:
    """same as `reconcile_load_balancers`, for target group arns"""
    diff: Final[SetDiff[str]] = SetDiff.between(old, new)
    autoscaling: Final = context.clients.autoscaling

    _apply_in_batches(
        context,
        group_name,
        AttachmentKind.TARGET_GROUP,
        AttachmentTransition.REMOVING,
        diff.to_remove,
        lambda batch: autoscaling.detach_load_balancer_target_groups(
            AutoScalingGroupName=group_name, TargetGroupARNs=batch
        ),
    )
    _apply_in_batches(
        context,
        group_name,
        AttachmentKind.TARGET_GROUP,
        AttachmentTransition.ADDING,
        diff.to_add,
        lambda batch: autoscaling.attach_load_balancer_target_groups(
            AutoScalingGroupName=group_name, TargetGroupARNs=batch
        ),
    )
    return diff


def reconcile_suspended_processes(
    clients: AwsClients,
    group_name: str,
    old: Iterable[str],
    new: Iterable[str],
) -> SetDiff[str]:
    diff: Final[SetDiff[str]] = SetDiff.between(old, new)
    try:
        if diff.to_remove:
            clients.autoscaling.resume_processes(
                AutoScalingGroupName=group_name,
                ScalingProcesses=sorted(diff.to_remove),
            )
        if diff.to_add:
            clients.autoscaling.suspend_processes(
                AutoScalingGroupName=group_name,
                ScalingProcesses=sorted(diff.to_add),
            )
    except ClientError as err:
        logger.error(f"Failed to update suspended processes of {group_name}: {err}")
        raise ProviderError(
            group_name, ErrorCode.SUSPENDED_PROCESSES_FAILED, err
        ) from err
    return diff


def reconcile_metrics(
    clients: AwsClients,
    group_name: str,
    old: Iterable[str],
    new: Iterable[str],
    granularity: str,
) -> SetDiff[str]:
    diff: Final[SetDiff[str]] = SetDiff.between(old, new)
    try:
        if diff.to_remove:
            clients.autoscaling.disable_metrics_collection(
                AutoScalingGroupName=group_name, Metrics=sorted(diff.to_remove)
            )
        if diff.to_add:
            clients.autoscaling.enable_metrics_collection(
                AutoScalingGroupName=group_name,
                Metrics=sorted(diff.to_add),
                Granularity=granularity,
            )
    except ClientError as err:
        logger.error(f"Failed to update metrics collection of {group_name}: {err}")
        raise ProviderError(
            group_name, ErrorCode.METRICS_COLLECTION_FAILED, err
        ) from err
    return diff


def update_tags(
    clients: AwsClients,
    group_name: str,
    old: TagCollection,
    new: TagCollection,
    ignore_config: Optional[IgnoreTagsConfig] = None,
) -> None:
    """
    Delete tags whose keys were removed and upsert tags that were added or changed.

    Provider-managed and ignored keys are left alone on both sides.
    """
    old_managed: Final = old.managed(ignore_config)
    new_managed: Final = new.managed(ignore_config)
    removed: Final = old_managed.removed(new_managed)
    updated: Final = old_managed.updated(new_managed)

    try:
        if len(removed) > 0:
            logger.info(f"Removing tags {sorted(removed.keys())} from {group_name}")
            clients.autoscaling.delete_tags(Tags=removed.to_request_tags(group_name))
        if len(updated) > 0:
            logger.info(f"Updating tags {sorted(updated.keys())} on {group_name}")
            clients.autoscaling.create_or_update_tags(
                Tags=updated.to_request_tags(group_name)
            )
    except ClientError as err:
        logger.error(f"Failed to update tags of {group_name}: {err}")
        raise ProviderError(group_name, ErrorCode.TAGGING_FAILED, err) from err
