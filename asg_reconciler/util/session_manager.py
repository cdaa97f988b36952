# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from boto3 import Session
from botocore.config import Config as _Config

if TYPE_CHECKING:
    from mypy_boto3_autoscaling.client import AutoScalingClient
    from mypy_boto3_elb.client import ElasticLoadBalancingClient
    from mypy_boto3_elbv2.client import ElasticLoadBalancingv2Client
else:
    AutoScalingClient = object
    ElasticLoadBalancingClient = object
    ElasticLoadBalancingv2Client = object


def get_boto_config(user_agent_extra: Optional[str] = None) -> _Config:
    """Returns a boto3 config with standard retries and `user_agent_extra`"""
    return _Config(
        retries={"max_attempts": 10, "mode": "standard"},
        user_agent_extra=user_agent_extra,
    )


@dataclass(frozen=True)
class AwsClients:
    """service clients, passed explicitly to every reconciliation operation"""

    autoscaling: AutoScalingClient
    elb: ElasticLoadBalancingClient
    elbv2: ElasticLoadBalancingv2Client

    @classmethod
    def from_session(
        cls,
        session: Optional[Session] = None,
        *,
        region: Optional[str] = None,
        user_agent_extra: Optional[str] = None,
    ) -> "AwsClients":
        session = session or Session()
        config = get_boto_config(user_agent_extra)

        def client(service_name: str) -> Any:
            return session.client(
                service_name,
                region_name=region or session.region_name,
                config=config,
            )

        return cls(
            autoscaling=client("autoscaling"),
            elb=client("elb"),
            elbv2=client("elbv2"),
        )
