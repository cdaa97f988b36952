# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from typing import Optional

from botocore.exceptions import ClientError

from asg_reconciler.observability.error_codes import ErrorCode


class ReconcileError(Exception):
    """base for every failure surfaced by a reconciliation phase"""

    def __init__(self, group_name: str, error_code: ErrorCode, message: str) -> None:
        super().__init__(
            f"{error_code.value} for auto scaling group {group_name}: {message}"
        )
        self.group_name = group_name
        self.error_code = error_code
        self.message = message


class ProviderError(ReconcileError):
    """an unclassified provider error, never retried"""

    def __init__(
        self, group_name: str, error_code: ErrorCode, error: Exception
    ) -> None:
        message = error.message if isinstance(error, ReconcileError) else str(error)
        super().__init__(group_name, error_code, message)
        self.error = error

    @property
    def provider_error_code(self) -> Optional[str]:
        if isinstance(self.error, ClientError):
            return self.error.response.get("Error", {}).get("Code")
        return None


class PartialCreateError(ProviderError):
    """the group exists but a later creation step failed; nothing was rolled back"""


class ConvergenceTimeoutError(ReconcileError):
    """observed state did not reach the target condition before the deadline"""


class CapacityTimeoutError(ConvergenceTimeoutError):
    pass


class AttachmentTimeoutError(ConvergenceTimeoutError):
    pass


class DrainTimeoutError(ConvergenceTimeoutError):
    pass


class DeleteTimeoutError(ConvergenceTimeoutError):
    pass


def error_code_of(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "")
    return ""


def error_message_of(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Message", "")
    return str(error)


def is_client_error(error: Exception, code: str, message_fragment: str = "") -> bool:
    """true if `error` is a ClientError with `code` whose message contains `message_fragment`"""
    return (
        isinstance(error, ClientError)
        and error_code_of(error) == code
        and message_fragment in error_message_of(error)
    )
