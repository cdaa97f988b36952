# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from dataclasses import dataclass
from datetime import timedelta
from os import environ
from typing import Optional

from boto3 import Session

from asg_reconciler.model.tags import IgnoreTagsConfig
from asg_reconciler.reconcile.context import ReconcileContext
from asg_reconciler.util.app_env_utils import AppEnvError, env_to_duration, env_to_list
from asg_reconciler.util.polling import Backoff
from asg_reconciler.util.session_manager import AwsClients


@dataclass(frozen=True)
class ReconcilerEnv:
    user_agent_extra: str

    delete_timeout: timedelta
    create_retry_timeout: timedelta
    lifecycle_hook_retry_timeout: timedelta
    attachment_wait_timeout: timedelta
    poll_min_interval: timedelta
    poll_max_interval: timedelta

    ignore_tag_keys: list[str]
    ignore_tag_key_prefixes: list[str]

    @staticmethod
    def from_env() -> "ReconcilerEnv":
        def duration(name: str, default: str) -> timedelta:
            return env_to_duration(name, environ.get(name, default))

        env = ReconcilerEnv(
            user_agent_extra=environ.get("USER_AGENT_EXTRA", "asg-reconciler"),
            delete_timeout=duration("DELETE_TIMEOUT", "10m"),
            create_retry_timeout=duration("CREATE_RETRY_TIMEOUT", "1m"),
            lifecycle_hook_retry_timeout=duration("LIFECYCLE_HOOK_RETRY_TIMEOUT", "5m"),
            attachment_wait_timeout=duration("ATTACHMENT_WAIT_TIMEOUT", "10m"),
            poll_min_interval=duration("POLL_MIN_INTERVAL", "500ms"),
            poll_max_interval=duration("POLL_MAX_INTERVAL", "10s"),
            ignore_tag_keys=env_to_list(environ.get("IGNORE_TAG_KEYS", "")),
            ignore_tag_key_prefixes=env_to_list(
                environ.get("IGNORE_TAG_KEY_PREFIXES", "")
            ),
        )
        if env.poll_min_interval <= timedelta(0):
            raise AppEnvError("POLL_MIN_INTERVAL must be greater than zero")
        if env.poll_min_interval > env.poll_max_interval:
            raise AppEnvError(
                "POLL_MIN_INTERVAL must not be greater than POLL_MAX_INTERVAL"
            )
        return env

    def ignore_tags(self) -> IgnoreTagsConfig:
        return IgnoreTagsConfig(
            keys=frozenset(self.ignore_tag_keys),
            key_prefixes=tuple(self.ignore_tag_key_prefixes),
        )

    def to_context(self, session: Optional[Session] = None) -> ReconcileContext:
        return ReconcileContext(
            clients=AwsClients.from_session(
                session, user_agent_extra=self.user_agent_extra
            ),
            delete_timeout=self.delete_timeout,
            create_retry_timeout=self.create_retry_timeout,
            lifecycle_hook_retry_timeout=self.lifecycle_hook_retry_timeout,
            attachment_wait_timeout=self.attachment_wait_timeout,
            backoff=Backoff(
                min_interval=self.poll_min_interval,
                max_interval=self.poll_max_interval,
            ),
            ignore_tags=self.ignore_tags(),
        )
