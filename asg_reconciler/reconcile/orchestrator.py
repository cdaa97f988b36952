# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Final, Optional

from botocore.exceptions import ClientError

from asg_reconciler.model.group_spec import GroupSpec, InvalidGroupSpecError
from asg_reconciler.model.observed_state import AsgSize, GroupObservedState
from asg_reconciler.observability.error_codes import ErrorCode
from asg_reconciler.observability.powertools_logging import powertools_logger
from asg_reconciler.reconcile.context import ReconcileContext
from asg_reconciler.reconcile.errors import (
    PartialCreateError,
    ProviderError,
    ReconcileError,
    error_message_of,
    is_client_error,
)
from asg_reconciler.reconcile.set_reconciler import (
    reconcile_load_balancers,
    reconcile_metrics,
    reconcile_suspended_processes,
    reconcile_target_groups,
    update_tags,
)
from asg_reconciler.reconcile.state_reader import (
    GROUP_NOT_FOUND,
    GroupDocument,
    flatten_group,
    get_group,
)
from asg_reconciler.reconcile.translator import (
    build_create_request,
    build_lifecycle_hook_requests,
    build_update_request,
)
from asg_reconciler.reconcile.waiter import (
    capacity_satisfied_create,
    capacity_satisfied_update,
    wait_for_capacity,
    wait_for_deletion,
    wait_for_drain,
)
from asg_reconciler.util.polling import Pending, poll_until
from asg_reconciler.util.unique_id import prefixed_unique_id

logger: Final = powertools_logger()

INVALID_IAM_INSTANCE_PROFILE: Final = "Invalid IAM Instance Profile"
UNABLE_TO_PUBLISH_TEST_MESSAGE: Final = (
    "Unable to publish test message to notification target"
)
VALIDATION_ERROR: Final = "ValidationError"
RESOURCE_IN_USE: Final = "ResourceInUse"
SCALING_ACTIVITY_IN_PROGRESS: Final = "ScalingActivityInProgress"


@dataclass(frozen=True)
class ReconcileResult:
    group_name: str
    document: Optional[GroupDocument]
    needs_refresh: bool = False
    instance_refresh_token: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.document is not None


def new_instance_refresh_token() -> str:
    return prefixed_unique_id("")


@contextmanager
def _partial_create(group_name: str, error_code: ErrorCode) -> Iterator[None]:
    """report any failure after the bare group exists as a partial creation"""
    try:
        yield
    except PartialCreateError:
        raise
    except ProviderError as err:
        raise PartialCreateError(group_name, err.error_code, err.error) from err
    except ReconcileError as err:
        raise PartialCreateError(group_name, err.error_code, err) from err
    except ClientError as err:
        raise PartialCreateError(group_name, error_code, err) from err


class AsgReconciler:
    """
    Drives one auto scaling group toward a GroupSpec.

    All provider access goes through the clients on the context. Every wait is bounded
    by a timeout from either the spec or the context.
    """

    def __init__(self, context: ReconcileContext) -> None:
        self._context: Final = context
        self._autoscaling: Final = context.clients.autoscaling

    def create(self, spec: GroupSpec) -> ReconcileResult:
        """
        Create the group and bring it to its initial configuration.

        With initial lifecycle hooks the group is first created empty, the hooks are
        put, and only then is the real capacity applied, so that no instance launches
        before its hooks exist.

        :param spec: desired state; a name is generated when only a prefix is given
        :return: the refreshed group with a new instance refresh token
        """
        spec = spec.with_resolved_name()
        group_name: Final = spec.group_name
        create_request, deferred_update = build_create_request(spec)

        logger.info(f"Creating auto scaling group {group_name}")
        logger.debug(
            "CreateAutoScalingGroup request", extra={"request": create_request}
        )
        self._create_group(group_name, create_request)

        if deferred_update is not None:
            with _partial_create(group_name, ErrorCode.LIFECYCLE_HOOKS_FAILED):
                self._put_lifecycle_hooks(spec)
            with _partial_create(group_name, ErrorCode.INITIAL_CAPACITY_FAILED):
                logger.info(f"Applying initial capacity to {group_name}")
                self._autoscaling.update_auto_scaling_group(**deferred_update)

        with _partial_create(group_name, ErrorCode.CAPACITY_TIMEOUT):
            wait_for_capacity(self._context, spec, capacity_satisfied_create(spec))

        with _partial_create(group_name, ErrorCode.SUSPENDED_PROCESSES_FAILED):
            reconcile_suspended_processes(
                self._context.clients, group_name, (), spec.suspended_processes
            )

        with _partial_create(group_name, ErrorCode.METRICS_COLLECTION_FAILED):
            reconcile_metrics(
                self._context.clients,
                group_name,
                (),
                spec.enabled_metrics,
                spec.metrics_granularity,
            )

        return self._result(
            spec, needs_refresh=False, token=new_instance_refresh_token()
        )

    def read(self, spec: GroupSpec) -> ReconcileResult:
        return self._result(spec)

    def update(self, prior: GroupSpec, desired: GroupSpec) -> ReconcileResult:
        """
        Apply the differences between `prior` and `desired` to an existing group.

        Steps run in order: group attributes, tags, load balancers, target groups,
        capacity wait, metrics collection and suspended processes. A step that fails
        leaves the steps after it unapplied.

        :param prior: the spec the group was last reconciled with
        :param desired: the new desired state
        :return: the refreshed group; a new refresh token is issued when instances
            must be replaced to pick up the change
        """
        desired = self._carry_name(prior, desired)
        group_name: Final = desired.group_name
        plan: Final = build_update_request(prior, desired)

        logger.info(f"Updating auto scaling group {group_name}")
        logger.debug("UpdateAutoScalingGroup request", extra={"request": plan.request})
        try:
            self._autoscaling.update_auto_scaling_group(**plan.request)
        except ClientError as err:
            logger.error(f"Error updating auto scaling group {group_name}: {err}")
            raise ProviderError(group_name, ErrorCode.UPDATE_FAILED, err) from err

        update_tags(
            self._context.clients,
            group_name,
            prior.tags,
            desired.tags,
            self._context.ignore_tags,
        )

        if prior.load_balancers != desired.load_balancers:
            reconcile_load_balancers(
                self._context,
                group_name,
                prior.load_balancers,
                desired.load_balancers,
            )

        if prior.target_group_arns != desired.target_group_arns:
            reconcile_target_groups(
                self._context,
                group_name,
                prior.target_group_arns,
                desired.target_group_arns,
            )

        if plan.should_wait_for_capacity:
            wait_for_capacity(
                self._context, desired, capacity_satisfied_update(desired)
            )

        if prior.enabled_metrics != desired.enabled_metrics:
            reconcile_metrics(
                self._context.clients,
                group_name,
                prior.enabled_metrics,
                desired.enabled_metrics,
                desired.metrics_granularity,
            )

        if prior.suspended_processes != desired.suspended_processes:
            reconcile_suspended_processes(
                self._context.clients,
                group_name,
                prior.suspended_processes,
                desired.suspended_processes,
            )

        return self._result(
            desired,
            needs_refresh=plan.needs_refresh,
            token=new_instance_refresh_token() if plan.needs_refresh else None,
        )

    def delete(self, spec: GroupSpec) -> None:
        """
        Drain and delete the group. A group that does not exist is already deleted.
        """
        group_name: Final = spec.group_name
        observed = self._describe(group_name)
        if observed is None:
            logger.warning(
                f"Auto scaling group {group_name} not found, nothing to delete"
            )
            return

        logger.info(
            f"Auto scaling group {group_name} has size {observed.size} "
            f"and {observed.instance_count} instances"
        )
        if observed.has_capacity:
            self.drain(group_name, force_delete=spec.force_delete)

        logger.info(f"Deleting auto scaling group {group_name}")
        self._delete_group(group_name, spec.force_delete)
        wait_for_deletion(self._context, group_name)
        logger.info(f"Auto scaling group {group_name} deleted")

    def drain(self, group_name: str, *, force_delete: bool = False) -> None:
        """scale the group to zero and wait for its instances to terminate"""
        if force_delete:
            logger.info(f"Skipping drain of {group_name}, force_delete is set")
            return

        logger.info(f"Draining auto scaling group {group_name}")
        stopped: Final = AsgSize.stopped()
        try:
            self._autoscaling.update_auto_scaling_group(
                AutoScalingGroupName=group_name,
                MinSize=stopped.min_size,
                MaxSize=stopped.max_size,
                DesiredCapacity=stopped.desired_size,
            )
        except ClientError as err:
            logger.error(f"Error setting capacity of {group_name} to zero: {err}")
            raise ProviderError(group_name, ErrorCode.DRAIN_FAILED, err) from err

        wait_for_drain(self._context, group_name)

    def _create_group(self, group_name: str, request: dict[str, Any]) -> None:
        try:
            self._retry_provider_call(
                lambda: self._autoscaling.create_auto_scaling_group(**request),
                retryable=lambda err: is_client_error(
                    err, VALIDATION_ERROR, INVALID_IAM_INSTANCE_PROFILE
                ),
                timeout=self._context.create_retry_timeout,
            )
        except ClientError as err:
            logger.error(f"Error creating auto scaling group {group_name}: {err}")
            raise ProviderError(group_name, ErrorCode.CREATE_FAILED, err) from err

    def _put_lifecycle_hooks(self, spec: GroupSpec) -> None:
        for request in build_lifecycle_hook_requests(
            spec.group_name, spec.initial_lifecycle_hooks
        ):
            logger.info(
                f"Putting lifecycle hook {request['LifecycleHookName']} on {spec.group_name}"
            )
            self._retry_provider_call(
                lambda: self._autoscaling.put_lifecycle_hook(**request),
                retryable=lambda err: isinstance(err, ClientError)
                and UNABLE_TO_PUBLISH_TEST_MESSAGE in error_message_of(err),
                timeout=self._context.lifecycle_hook_retry_timeout,
            )

    def _delete_group(self, group_name: str, force_delete: bool) -> None:
        def delete() -> bool:
            try:
                self._autoscaling.delete_auto_scaling_group(
                    AutoScalingGroupName=group_name, ForceDelete=force_delete
                )
            except ClientError as err:
                if is_client_error(err, GROUP_NOT_FOUND):
                    logger.warning(f"Auto scaling group {group_name} already deleted")
                    return True
                raise
            return True

        try:
            self._retry_provider_call(
                delete,
                retryable=lambda err: is_client_error(err, RESOURCE_IN_USE)
                or is_client_error(err, SCALING_ACTIVITY_IN_PROGRESS),
                timeout=self._context.delete_timeout,
            )
        except ClientError as err:
            logger.error(f"Error deleting auto scaling group {group_name}: {err}")
            raise ProviderError(group_name, ErrorCode.DELETE_FAILED, err) from err

    def _retry_provider_call(
        self,
        call: Callable[[], Any],
        *,
        retryable: Callable[[ClientError], bool],
        timeout: timedelta,
    ) -> Any:
        """
        Call `call` until it stops failing with a retryable ClientError.

        Once `timeout` has passed one final attempt is made, and a retryable error
        from that attempt is raised like any other.
        """
        last_error: Optional[ClientError] = None

        def attempt() -> Any:
            nonlocal last_error
            try:
                return call()
            except ClientError as err:
                if not retryable(err):
                    raise
                logger.info(f"Retrying after transient error: {error_message_of(err)}")
                last_error = err
                return Pending(error_message_of(err))

        result = poll_until(
            attempt,
            timeout=timeout,
            backoff=self._context.backoff,
            clock=self._context.clock,
            final_check=True,
        )
        if result.satisfied:
            return result.value
        if result.error is not None:
            raise result.error
        if last_error is None:
            raise RuntimeError(f"retry ended without an outcome: {result.reason}")
        raise last_error

    def _describe(self, group_name: str) -> Optional[GroupObservedState]:
        try:
            return get_group(self._context.clients, group_name)
        except ClientError as err:
            logger.error(f"Error describing auto scaling group {group_name}: {err}")
            raise ProviderError(group_name, ErrorCode.DESCRIBE_FAILED, err) from err

    def _result(
        self,
        spec: GroupSpec,
        *,
        needs_refresh: bool = False,
        token: Optional[str] = None,
    ) -> ReconcileResult:
        observed = self._describe(spec.group_name)
        if observed is None:
            logger.warning(f"Auto scaling group {spec.group_name} not found")
            return ReconcileResult(group_name=spec.group_name, document=None)
        return ReconcileResult(
            group_name=spec.group_name,
            document=flatten_group(observed, spec, self._context.ignore_tags),
            needs_refresh=needs_refresh,
            instance_refresh_token=token,
        )

    @staticmethod
    def _carry_name(prior: GroupSpec, desired: GroupSpec) -> GroupSpec:
        if not desired.name:
            return replace(desired, name=prior.group_name)
        if desired.name != prior.group_name:
            raise InvalidGroupSpecError(
                f"name of auto scaling group {prior.group_name} cannot be changed to {desired.name}"
            )
        return desired
