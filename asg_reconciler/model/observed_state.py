# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from asg_reconciler.model.tags import TagCollection

if TYPE_CHECKING:
    from mypy_boto3_autoscaling.type_defs import (
        AutoScalingGroupTypeDef,
        InstanceTypeDef,
    )
else:
    AutoScalingGroupTypeDef = object
    InstanceTypeDef = object

DEFAULT_TERMINATION_POLICY: Final = "Default"


@dataclass(frozen=True)
class AsgSize:
    min_size: int
    desired_size: int
    max_size: int

    def __str__(self) -> str:
        return f"{self.min_size}-{self.desired_size}-{self.max_size}"

    @classmethod
    def from_group(cls, group: AutoScalingGroupTypeDef) -> "AsgSize":
        return cls(
            min_size=group["MinSize"],
            desired_size=group["DesiredCapacity"],
            max_size=group["MaxSize"],
        )

    @classmethod
    def stopped(cls) -> "AsgSize":
        return cls(min_size=0, desired_size=0, max_size=0)


@dataclass(frozen=True)
class GroupObservedState:
    """read-only view over one DescribeAutoScalingGroups result"""

    group: AutoScalingGroupTypeDef

    @property
    def name(self) -> str:
        return self.group["AutoScalingGroupName"]

    @property
    def arn(self) -> str:
        return self.group.get("AutoScalingGroupARN", "")

    @property
    def size(self) -> AsgSize:
        return AsgSize.from_group(self.group)

    @property
    def instances(self) -> list[InstanceTypeDef]:
        return list(self.group.get("Instances", []))

    @property
    def instance_count(self) -> int:
        return len(self.group.get("Instances", []))

    @property
    def has_capacity(self) -> bool:
        return self.instance_count > 0 or self.group.get("DesiredCapacity", 0) > 0

    @property
    def load_balancer_names(self) -> list[str]:
        return list(self.group.get("LoadBalancerNames", []))

    @property
    def target_group_arns(self) -> list[str]:
        return list(self.group.get("TargetGroupARNs", []))

    @property
    def suspended_processes(self) -> set[str]:
        return {
            process["ProcessName"]
            for process in self.group.get("SuspendedProcesses", [])
            if "ProcessName" in process
        }

    @property
    def enabled_metrics(self) -> set[str]:
        return {
            metric["Metric"]
            for metric in self.group.get("EnabledMetrics", [])
            if "Metric" in metric
        }

    @property
    def metrics_granularity(self) -> str | None:
        metrics = self.group.get("EnabledMetrics", [])
        if not metrics:
            return None
        return metrics[0].get("Granularity")

    @property
    def tags(self) -> TagCollection:
        return TagCollection.from_observed(self.group.get("Tags", []))

    @property
    def termination_policies(self) -> list[str]:
        return list(self.group.get("TerminationPolicies", []))

    @property
    def uses_only_default_termination_policy(self) -> bool:
        return self.termination_policies == [DEFAULT_TERMINATION_POLICY]

    @property
    def vpc_zone_identifier(self) -> list[str]:
        value = self.group.get("VPCZoneIdentifier", "")
        return [subnet for subnet in value.split(",") if subnet] if value else []
