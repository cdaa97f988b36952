# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Optional, TypeAlias

from asg_reconciler.model.group_spec import (
    GroupSpec,
    InstancesDistribution,
    InvalidGroupSpecError,
    LaunchTemplateOverride,
    LaunchTemplateSpecification,
    LifecycleHookSpec,
    MixedInstancesPolicy,
)
from asg_reconciler.model.observed_state import DEFAULT_TERMINATION_POLICY
from asg_reconciler.model.tags import TagCollection

if TYPE_CHECKING:
    from mypy_boto3_autoscaling.type_defs import (
        InstancesDistributionTypeDef,
        LaunchTemplateOverridesTypeDef,
        LaunchTemplateSpecificationTypeDef,
        MixedInstancesPolicyTypeDef,
    )
else:
    InstancesDistributionTypeDef = object
    LaunchTemplateOverridesTypeDef = object
    LaunchTemplateSpecificationTypeDef = object
    MixedInstancesPolicyTypeDef = object

CreateRequest: TypeAlias = dict[str, Any]
UpdateRequest: TypeAlias = dict[str, Any]
LifecycleHookRequest: TypeAlias = dict[str, Any]

SUBNET_SEPARATOR: Final = ","


@dataclass(frozen=True)
class UpdatePlan:
    request: UpdateRequest
    needs_refresh: bool
    should_wait_for_capacity: bool


def build_create_request(
    spec: GroupSpec,
) -> tuple[CreateRequest, Optional[UpdateRequest]]:
    """
    Translate a spec into a CreateAutoScalingGroup request.

    When initial lifecycle hooks are configured the group is created with zero
    capacity and a second UpdateAutoScalingGroup request carrying the real bounds is
    returned, to be sent once the hooks exist. Otherwise the second element is None.

    :param spec: spec with a resolved name
    :return: (create request, deferred capacity update or None)
    """
    name: Final = spec.group_name
    spec.validate_capacity()
    _require_single_launch_source(spec)

    request: CreateRequest = {
        "AutoScalingGroupName": name,
        "NewInstancesProtectedFromScaleIn": spec.protect_from_scale_in,
    }
    deferred: Optional[UpdateRequest] = None

    if spec.initial_lifecycle_hooks:
        request["MinSize"] = 0
        request["MaxSize"] = 0
        deferred = {
            "AutoScalingGroupName": name,
            "MinSize": spec.min_size,
            "MaxSize": spec.max_size,
        }
        if spec.desired_capacity is not None:
            deferred["DesiredCapacity"] = spec.desired_capacity
    else:
        request["MinSize"] = spec.min_size
        request["MaxSize"] = spec.max_size
        if spec.desired_capacity is not None:
            request["DesiredCapacity"] = spec.desired_capacity

    if spec.launch_configuration:
        request["LaunchConfigurationName"] = spec.launch_configuration
    if spec.launch_template is not None:
        request["LaunchTemplate"] = expand_launch_template_specification(
            spec.launch_template
        )
    if spec.mixed_instances_policy is not None:
        request["MixedInstancesPolicy"] = expand_mixed_instances_policy(
            spec.mixed_instances_policy
        )

    if spec.availability_zones:
        request["AvailabilityZones"] = sorted(spec.availability_zones)

    tags = spec.tags.managed()
    if len(tags) > 0:
        request["Tags"] = tags.to_request_tags(name)

    if spec.default_cooldown is not None:
        request["DefaultCooldown"] = spec.default_cooldown
    if spec.health_check_type:
        request["HealthCheckType"] = spec.health_check_type
    if spec.health_check_grace_period:
        request["HealthCheckGracePeriod"] = spec.health_check_grace_period
    if spec.placement_group:
        request["PlacementGroup"] = spec.placement_group
    if spec.load_balancers:
        request["LoadBalancerNames"] = sorted(spec.load_balancers)
    if spec.vpc_zone_identifier:
        request["VPCZoneIdentifier"] = expand_vpc_zone_identifier(
            spec.vpc_zone_identifier
        )
    if spec.termination_policies:
        request["TerminationPolicies"] = list(spec.termination_policies)
    if spec.target_group_arns:
        request["TargetGroupARNs"] = sorted(spec.target_group_arns)
    if spec.service_linked_role_arn:
        request["ServiceLinkedRoleARN"] = spec.service_linked_role_arn
    if spec.max_instance_lifetime:
        request["MaxInstanceLifetime"] = spec.max_instance_lifetime

    return request, deferred


def _require_single_launch_source(spec: GroupSpec) -> None:
    sources = spec.launch_sources()
    if len(sources) == 0:
        raise InvalidGroupSpecError(
            "One of launch_configuration, launch_template, or mixed_instances_policy must be set for an auto scaling group"
        )
    if len(sources) > 1:
        raise InvalidGroupSpecError(
            f"Only one launch source may be set for an auto scaling group, found {', '.join(sources)}"
        )


def build_lifecycle_hook_requests(
    group_name: str, hooks: Iterable[LifecycleHookSpec]
) -> list[LifecycleHookRequest]:
    requests = []
    for hook in hooks:
        request: LifecycleHookRequest = {
            "AutoScalingGroupName": group_name,
            "LifecycleHookName": hook.name,
        }
        if hook.default_result:
            request["DefaultResult"] = hook.default_result
        if hook.heartbeat_timeout is not None and hook.heartbeat_timeout > 0:
            request["HeartbeatTimeout"] = hook.heartbeat_timeout
        if hook.lifecycle_transition:
            request["LifecycleTransition"] = hook.lifecycle_transition
        if hook.notification_metadata:
            request["NotificationMetadata"] = hook.notification_metadata
        if hook.notification_target_arn:
            request["NotificationTargetARN"] = hook.notification_target_arn
        if hook.role_arn:
            request["RoleARN"] = hook.role_arn
        requests.append(request)
    return requests


def build_update_request(prior: GroupSpec, desired: GroupSpec) -> UpdatePlan:
    """
    Build the UpdateAutoScalingGroup request for the fields that differ.

    Fields the provider computes when left unset (desired capacity, cooldown, health
    check type, zones, subnets, service linked role) only count as changed when the
    desired spec sets them.
    """
    request: UpdateRequest = {
        "AutoScalingGroupName": desired.group_name,
        "NewInstancesProtectedFromScaleIn": desired.protect_from_scale_in,
    }
    needs_refresh = False
    should_wait_for_capacity = False

    if _computed_changed(prior.default_cooldown, desired.default_cooldown):
        request["DefaultCooldown"] = desired.default_cooldown

    if _computed_changed(prior.desired_capacity, desired.desired_capacity):
        request["DesiredCapacity"] = desired.desired_capacity
        should_wait_for_capacity = True

    if prior.launch_configuration != desired.launch_configuration:
        if desired.launch_configuration:
            request["LaunchConfigurationName"] = desired.launch_configuration
        needs_refresh = True

    if prior.launch_template != desired.launch_template:
        if desired.launch_template is not None:
            request["LaunchTemplate"] = expand_launch_template_specification(
                desired.launch_template
            )
        needs_refresh = True

    if prior.mixed_instances_policy != desired.mixed_instances_policy:
        if desired.mixed_instances_policy is not None:
            request["MixedInstancesPolicy"] = expand_mixed_instances_policy(
                desired.mixed_instances_policy
            )
        needs_refresh = True

    if prior.min_size != desired.min_size:
        request["MinSize"] = desired.min_size
        should_wait_for_capacity = True

    if prior.max_size != desired.max_size:
        request["MaxSize"] = desired.max_size

    if prior.max_instance_lifetime != desired.max_instance_lifetime:
        request["MaxInstanceLifetime"] = desired.max_instance_lifetime or 0

    if prior.health_check_grace_period != desired.health_check_grace_period:
        request["HealthCheckGracePeriod"] = desired.health_check_grace_period

    if _computed_changed(prior.health_check_type, desired.health_check_type):
        request["HealthCheckGracePeriod"] = desired.health_check_grace_period
        request["HealthCheckType"] = desired.health_check_type

    if desired.vpc_zone_identifier and (
        prior.vpc_zone_identifier != desired.vpc_zone_identifier
    ):
        request["VPCZoneIdentifier"] = expand_vpc_zone_identifier(
            desired.vpc_zone_identifier
        )
        needs_refresh = True

    if desired.availability_zones and (
        prior.availability_zones != desired.availability_zones
    ):
        request["AvailabilityZones"] = sorted(desired.availability_zones)
        needs_refresh = True

    if prior.placement_group != desired.placement_group:
        request["PlacementGroup"] = desired.placement_group or ""
        needs_refresh = True

    if prior.termination_policies != desired.termination_policies:
        # an emptied list has to be reset explicitly or the provider keeps the old one
        request["TerminationPolicies"] = list(desired.termination_policies) or [
            DEFAULT_TERMINATION_POLICY
        ]

    if _computed_changed(
        prior.service_linked_role_arn, desired.service_linked_role_arn
    ):
        request["ServiceLinkedRoleARN"] = desired.service_linked_role_arn

    if propagated_tags_changed(prior.tags, desired.tags):
        needs_refresh = True

    return UpdatePlan(
        request=request,
        needs_refresh=needs_refresh,
        should_wait_for_capacity=should_wait_for_capacity,
    )


def _computed_changed(prior: Any, desired: Any) -> bool:
    return desired is not None and prior != desired


def propagated_tags_changed(old: TagCollection, new: TagCollection) -> bool:
    """instances must be relaunched to pick up a change in launch-time tags"""
    return old.propagated() != new.propagated()


def expand_vpc_zone_identifier(subnets: Iterable[str]) -> str:
    return SUBNET_SEPARATOR.join(sorted(subnets))


def expand_launch_template_specification(
    launch_template: LaunchTemplateSpecification,
) -> LaunchTemplateSpecificationTypeDef:
    specification: LaunchTemplateSpecificationTypeDef = {}
    # the provider accepts exactly one of id and name, prefer the id when both are known
    if launch_template.id:
        specification["LaunchTemplateId"] = launch_template.id
    elif launch_template.name:
        specification["LaunchTemplateName"] = launch_template.name
    if launch_template.version:
        specification["Version"] = launch_template.version
    return specification


def expand_launch_template_override(
    override: LaunchTemplateOverride,
) -> LaunchTemplateOverridesTypeDef:
    expanded: LaunchTemplateOverridesTypeDef = {}
    if override.instance_type:
        expanded["InstanceType"] = override.instance_type
    if override.weighted_capacity:
        expanded["WeightedCapacity"] = override.weighted_capacity
    return expanded


def expand_instances_distribution(
    distribution: InstancesDistribution,
) -> InstancesDistributionTypeDef:
    expanded: InstancesDistributionTypeDef = {}
    if distribution.on_demand_allocation_strategy:
        expanded["OnDemandAllocationStrategy"] = (
            distribution.on_demand_allocation_strategy
        )
    if distribution.on_demand_base_capacity is not None:
        expanded["OnDemandBaseCapacity"] = distribution.on_demand_base_capacity
    if distribution.on_demand_percentage_above_base_capacity is not None:
        expanded["OnDemandPercentageAboveBaseCapacity"] = (
            distribution.on_demand_percentage_above_base_capacity
        )
    if distribution.spot_allocation_strategy:
        expanded["SpotAllocationStrategy"] = distribution.spot_allocation_strategy
    if distribution.spot_instance_pools:
        expanded["SpotInstancePools"] = distribution.spot_instance_pools
    if distribution.spot_max_price is not None:
        expanded["SpotMaxPrice"] = distribution.spot_max_price
    return expanded


def expand_mixed_instances_policy(
    policy: MixedInstancesPolicy,
) -> MixedInstancesPolicyTypeDef:
    launch_template: dict[str, Any] = {
        "LaunchTemplateSpecification": expand_launch_template_specification(
            policy.launch_template.specification
        ),
    }
    if policy.launch_template.overrides:
        launch_template["Overrides"] = [
            expand_launch_template_override(override)
            for override in policy.launch_template.overrides
        ]

    expanded: MixedInstancesPolicyTypeDef = {"LaunchTemplate": launch_template}  # type: ignore[typeddict-item]
    if policy.instances_distribution is not None:
        expanded["InstancesDistribution"] = expand_instances_distribution(
            policy.instances_distribution
        )
    return expanded
