# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from datetime import timedelta

from asg_reconciler.util.duration import InvalidDurationError, parse_duration


class AppEnvError(RuntimeError):
    pass


def env_to_list(value: str) -> list[str]:
    items = []
    for item in value.split(","):
        stripped = item.strip()
        if stripped:
            items.append(stripped)
    return items


def env_to_duration(name: str, value: str) -> timedelta:
    try:
        duration = parse_duration(value)
    except InvalidDurationError as err:
        raise AppEnvError(f"{name} cannot be parsed as a duration: {err}") from err
    if duration < timedelta(0):
        raise AppEnvError(f"{name} must be greater than zero, found {value}")
    return duration
