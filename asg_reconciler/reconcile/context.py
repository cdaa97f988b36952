# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from dataclasses import dataclass, field
from datetime import timedelta

from asg_reconciler.model.tags import IgnoreTagsConfig
from asg_reconciler.util.polling import Backoff, Clock
from asg_reconciler.util.session_manager import AwsClients


@dataclass(frozen=True)
class ReconcileContext:
    """everything a reconciliation needs besides the group spec itself"""

    clients: AwsClients
    delete_timeout: timedelta = timedelta(minutes=10)
    create_retry_timeout: timedelta = timedelta(minutes=1)
    lifecycle_hook_retry_timeout: timedelta = timedelta(minutes=5)
    attachment_wait_timeout: timedelta = timedelta(minutes=10)
    backoff: Backoff = Backoff()
    clock: Clock = field(default_factory=Clock)
    ignore_tags: IgnoreTagsConfig = IgnoreTagsConfig()
