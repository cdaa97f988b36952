# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from enum import Enum


class ErrorCode(str, Enum):
    CREATE_FAILED = "CreateFailed"
    LIFECYCLE_HOOKS_FAILED = "LifecycleHooksFailed"
    INITIAL_CAPACITY_FAILED = "InitialCapacityFailed"
    CAPACITY_TIMEOUT = "CapacityTimeout"
    ATTACHMENT_FAILED = "AttachmentFailed"
    ATTACHMENT_TIMEOUT = "AttachmentTimeout"
    UPDATE_FAILED = "UpdateFailed"
    TAGGING_FAILED = "TaggingFailed"
    SUSPENDED_PROCESSES_FAILED = "SuspendedProcessesFailed"
    METRICS_COLLECTION_FAILED = "MetricsCollectionFailed"
    DESCRIBE_FAILED = "DescribeFailed"
    DRAIN_FAILED = "DrainFailed"
    DRAIN_TIMEOUT = "DrainTimeout"
    DELETE_FAILED = "DeleteFailed"
    DELETE_TIMEOUT = "DeleteTimeout"
