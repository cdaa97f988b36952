# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from typing import TYPE_CHECKING, Any, Final, Optional

from botocore.exceptions import ClientError

from asg_reconciler.model.group_spec import (
    DEFAULT_METRICS_GRANULARITY,
    GroupSpec,
)
from asg_reconciler.model.observed_state import GroupObservedState
from asg_reconciler.model.tags import IgnoreTagsConfig, TagStyle
from asg_reconciler.observability.powertools_logging import powertools_logger
from asg_reconciler.reconcile.errors import is_client_error
from asg_reconciler.util.duration import format_duration
from asg_reconciler.util.session_manager import AwsClients

if TYPE_CHECKING:
    from mypy_boto3_autoscaling.type_defs import (
        InstancesDistributionTypeDef,
        LaunchTemplateSpecificationTypeDef,
        MixedInstancesPolicyTypeDef,
    )
else:
    InstancesDistributionTypeDef = object
    LaunchTemplateSpecificationTypeDef = object
    MixedInstancesPolicyTypeDef = object

logger: Final = powertools_logger()

GroupDocument = dict[str, Any]

GROUP_NOT_FOUND: Final = "InvalidGroup.NotFound"


def get_group(clients: AwsClients, name: str) -> Optional[GroupObservedState]:
    """
    Describe a single auto scaling group by exact name.

    :param clients: service clients
    :param name: auto scaling group name
    :return: the observed group, or None when no group of that name exists
    """
    paginator: Final = clients.autoscaling.get_paginator(
        "describe_auto_scaling_groups"
    )
    try:
        for page in paginator.paginate(AutoScalingGroupNames=[name]):
            for group in page["AutoScalingGroups"]:
                # the name filter is not guaranteed to be an exact match
                if group["AutoScalingGroupName"] == name:
                    return GroupObservedState(group)
    except ClientError as err:
        if is_client_error(err, GROUP_NOT_FOUND):
            return None
        raise
    return None


def flatten_group(
    observed: GroupObservedState,
    spec: Optional[GroupSpec] = None,
    ignore_config: Optional[IgnoreTagsConfig] = None,
) -> GroupDocument:
    """
    Flatten an observed group back into the declarative document shape.

    Fields the provider does not report (force_delete, the capacity wait settings,
    lifecycle hooks and name_prefix) are echoed from `spec` when one is given.

    :param observed: the group as described by the provider
    :param spec: the spec the caller manages the group with, if any
    :param ignore_config: tag keys that must never be reported
    :return: the group document
    """
    group: Final = observed.group

    document: GroupDocument = {
        "name": observed.name,
        "arn": observed.arn,
        "min_size": group["MinSize"],
        "max_size": group["MaxSize"],
        "desired_capacity": group["DesiredCapacity"],
        "default_cooldown": group.get("DefaultCooldown"),
        "health_check_type": group.get("HealthCheckType"),
        "health_check_grace_period": group.get("HealthCheckGracePeriod"),
        "availability_zones": sorted(group.get("AvailabilityZones", [])),
        "vpc_zone_identifier": sorted(observed.vpc_zone_identifier),
        "launch_configuration": group.get("LaunchConfigurationName"),
        "launch_template": _flatten_launch_template(group.get("LaunchTemplate")),
        "mixed_instances_policy": _flatten_mixed_instances_policy(
            group.get("MixedInstancesPolicy")
        ),
        "load_balancers": sorted(observed.load_balancer_names),
        "target_group_arns": sorted(observed.target_group_arns),
        "suspended_processes": sorted(observed.suspended_processes),
        "enabled_metrics": sorted(observed.enabled_metrics),
        "metrics_granularity": observed.metrics_granularity
        or DEFAULT_METRICS_GRANULARITY,
        "placement_group": group.get("PlacementGroup"),
        "service_linked_role_arn": group.get("ServiceLinkedRoleARN"),
        "max_instance_lifetime": group.get("MaxInstanceLifetime"),
        "protect_from_scale_in": group.get("NewInstancesProtectedFromScaleIn", False),
        "termination_policies": _flatten_termination_policies(observed, spec),
    }
    document.update(_flatten_tags(observed, spec, ignore_config))

    if spec is not None:
        document["name_prefix"] = spec.name_prefix
        document["force_delete"] = spec.force_delete
        document["wait_for_capacity_timeout"] = format_duration(
            spec.wait_for_capacity_timeout
        )
        document["min_elb_capacity"] = spec.min_elb_capacity
        document["wait_for_elb_capacity"] = spec.wait_for_elb_capacity
        document["initial_lifecycle_hook"] = [
            {
                "name": hook.name,
                "lifecycle_transition": hook.lifecycle_transition,
                "default_result": hook.default_result,
                "heartbeat_timeout": hook.heartbeat_timeout,
                "notification_metadata": hook.notification_metadata,
                "notification_target_arn": hook.notification_target_arn,
                "role_arn": hook.role_arn,
            }
            for hook in spec.initial_lifecycle_hooks
        ]

    return document


def _flatten_termination_policies(
    observed: GroupObservedState, spec: Optional[GroupSpec]
) -> list[str]:
    # the provider reports ["Default"] for a group created without policies
    if (spec is None or not spec.termination_policies) and (
        observed.uses_only_default_termination_policy
    ):
        return []
    return observed.termination_policies


def _flatten_tags(
    observed: GroupObservedState,
    spec: Optional[GroupSpec],
    ignore_config: Optional[IgnoreTagsConfig],
) -> GroupDocument:
    tags = observed.tags.managed(ignore_config)
    style = spec.tag_style if spec is not None else TagStyle.NONE

    if spec is not None and style == TagStyle.ITEMIZED:
        return {"tag": tags.only(spec.tags).to_itemized()}
    if spec is not None and style == TagStyle.MAP:
        return {"tags": tags.only(spec.tags).to_string_maps()}
    logger.debug(
        f"No tag representation configured for {observed.name}, reporting all tags"
    )
    return {"tag": tags.to_itemized()}


def _flatten_launch_template_specification(
    specification: LaunchTemplateSpecificationTypeDef,
) -> dict[str, Any]:
    return {
        "id": specification.get("LaunchTemplateId"),
        "name": specification.get("LaunchTemplateName"),
        "version": specification.get("Version"),
    }


def _flatten_launch_template(
    specification: Optional[LaunchTemplateSpecificationTypeDef],
) -> list[dict[str, Any]]:
    if not specification:
        return []
    return [_flatten_launch_template_specification(specification)]


def _flatten_instances_distribution(
    distribution: Optional[InstancesDistributionTypeDef],
) -> list[dict[str, Any]]:
    if not distribution:
        return []
    return [
        {
            "on_demand_allocation_strategy": distribution.get(
                "OnDemandAllocationStrategy"
            ),
            "on_demand_base_capacity": distribution.get("OnDemandBaseCapacity"),
            "on_demand_percentage_above_base_capacity": distribution.get(
                "OnDemandPercentageAboveBaseCapacity"
            ),
            "spot_allocation_strategy": distribution.get("SpotAllocationStrategy"),
            "spot_instance_pools": distribution.get("SpotInstancePools"),
            "spot_max_price": distribution.get("SpotMaxPrice"),
        }
    ]


def _flatten_mixed_instances_policy(
    policy: Optional[MixedInstancesPolicyTypeDef],
) -> list[dict[str, Any]]:
    if not policy:
        return []

    launch_template: Final = policy.get("LaunchTemplate", {})
    specification: Final = launch_template.get("LaunchTemplateSpecification", {})

    return [
        {
            "instances_distribution": _flatten_instances_distribution(
                policy.get("InstancesDistribution")
            ),
            "launch_template": [
                {
                    "launch_template_specification": [
                        {
                            "launch_template_id": specification.get(
                                "LaunchTemplateId"
                            ),
                            "launch_template_name": specification.get(
                                "LaunchTemplateName"
                            ),
                            "version": specification.get("Version"),
                        }
                    ],
                    "override": [
                        {
                            "instance_type": override.get("InstanceType"),
                            "weighted_capacity": override.get("WeightedCapacity"),
                        }
                        for override in launch_template.get("Overrides", [])
                    ],
                }
            ],
        }
    ]
