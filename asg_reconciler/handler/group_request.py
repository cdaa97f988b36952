# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from collections.abc import Mapping
from dataclasses import replace
from typing import (
    TYPE_CHECKING,
    Any,
    Final,
    Literal,
    NotRequired,
    TypedDict,
    TypeGuard,
    cast,
)

from asg_reconciler.handler.environments.reconciler_environment import ReconcilerEnv
from asg_reconciler.model.group_spec import GroupSpec
from asg_reconciler.observability.powertools_logging import (
    powertools_logger,
    should_log_events,
)
from asg_reconciler.reconcile.errors import ReconcileError
from asg_reconciler.reconcile.orchestrator import AsgReconciler, ReconcileResult
from asg_reconciler.reconcile.state_reader import GroupDocument
from asg_reconciler.util.validation import ValidationException, validate_string

if TYPE_CHECKING:
    from aws_lambda_powertools.utilities.typing import LambdaContext
else:
    LambdaContext = object

logger: Final = powertools_logger()

REQUEST_TYPES: Final = ("Create", "Update", "Delete", "Read")


class GroupRequest(TypedDict):
    RequestType: Literal["Create", "Update", "Delete", "Read"]
    ResourceProperties: Mapping[str, Any]
    OldResourceProperties: NotRequired[Mapping[str, Any]]
    PhysicalResourceId: NotRequired[str]


class GroupResponse(TypedDict):
    PhysicalResourceId: str
    Exists: bool
    NeedsRefresh: bool
    Data: NotRequired[GroupDocument]
    InstanceRefreshToken: NotRequired[str]


def validate_group_request(  # NOSONAR -- (duplicate-returns) function is expected to return true or throw an error per the TypeGuard spec
    untyped_dict: Mapping[str, Any],
) -> TypeGuard[GroupRequest]:
    validate_string(untyped_dict, "RequestType", required=True)
    validate_string(untyped_dict, "PhysicalResourceId", required=False)

    if untyped_dict["RequestType"] not in REQUEST_TYPES:
        raise ValidationException(
            f"RequestType must be one of {', '.join(REQUEST_TYPES)}, found {untyped_dict['RequestType']}"
        )
    for key in ("ResourceProperties", "OldResourceProperties"):
        value = untyped_dict.get(key)
        if value is None and key == "OldResourceProperties":
            continue
        if not isinstance(value, Mapping):
            raise ValidationException(f"{key} must be an object, found {type(value)}")
    if untyped_dict["RequestType"] == "Update" and not untyped_dict.get(
        "OldResourceProperties"
    ):
        raise ValidationException("Update requests require OldResourceProperties")
    return True


@logger.inject_lambda_context(log_event=False)
def lambda_handler(event: dict[str, Any], context: LambdaContext) -> GroupResponse:
    env: Final = ReconcilerEnv.from_env()
    if should_log_events(logger):
        logger.debug(event)

    validate_group_request(event)
    request: Final = cast(GroupRequest, event)

    reconciler: Final = AsgReconciler(env.to_context())
    return handle_group_request(reconciler, request)


def handle_group_request(
    reconciler: AsgReconciler, request: GroupRequest
) -> GroupResponse:
    """
    Dispatch one request to the reconciler.

    Documents are parsed into GroupSpecs here. The physical resource id, when given,
    is the name of the group and takes precedence over the name in the properties.
    """
    request_type: Final = request["RequestType"]
    physical_id: Final = request.get("PhysicalResourceId")
    desired: Final = _parse_spec(request["ResourceProperties"], physical_id)

    try:
        if request_type == "Create":
            return _to_response(reconciler.create(desired))

        if request_type == "Read":
            return _to_response(reconciler.read(desired))

        if request_type == "Update":
            prior = _parse_spec(request["OldResourceProperties"], physical_id)
            return _to_response(reconciler.update(prior, desired))

        reconciler.delete(desired)
        return {
            "PhysicalResourceId": desired.group_name,
            "Exists": False,
            "NeedsRefresh": False,
        }
    except ReconcileError as err:
        logger.error(f"{request_type} of auto scaling group failed: {err}")
        raise


def _parse_spec(properties: Mapping[str, Any], physical_id: str | None) -> GroupSpec:
    spec = GroupSpec.from_document(properties)
    if physical_id:
        spec = replace(spec, name=physical_id, name_prefix=None)
    return spec


def _to_response(result: ReconcileResult) -> GroupResponse:
    response: GroupResponse = {
        "PhysicalResourceId": result.group_name,
        "Exists": result.exists,
        "NeedsRefresh": result.needs_refresh,
    }
    if result.document is not None:
        response["Data"] = result.document
    if result.instance_refresh_token:
        response["InstanceRefreshToken"] = result.instance_refresh_token
    return response
