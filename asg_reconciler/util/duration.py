# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import re
from datetime import timedelta
from typing import Final

DURATION_FORMAT: Final = (
    "a sequence of decimal numbers with unit suffixes, e.g. 300ms, 1.5h or 2h45m"
)
"""human-readable duration format that can be displayed to users if an input fails parse_duration"""

_UNITS: Final[dict[str, float]] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT: Final = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


class InvalidDurationError(ValueError):
    pass


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration string such as "10m", "1h30m" or "-1.5s" into a timedelta.

    A bare "0" (optionally signed) is accepted without a unit. Every other component
    must carry one of the units ns, us, ms, s, m or h.

    :param value: the duration string
    :return: the parsed duration, which may be negative
    """
    text = value.strip()
    if not text:
        raise InvalidDurationError(
            f"invalid duration {value!r}, must be {DURATION_FORMAT}"
        )

    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text == "0":
        return timedelta(0)

    seconds = 0.0
    position = 0
    while position < len(text):
        match = _COMPONENT.match(text, position)
        if not match:
            raise InvalidDurationError(
                f"invalid duration {value!r}, must be {DURATION_FORMAT}"
            )
        seconds += float(match.group(1)) * _UNITS[match.group(2)]
        position = match.end()

    if position == 0:
        raise InvalidDurationError(
            f"invalid duration {value!r}, must be {DURATION_FORMAT}"
        )

    return timedelta(seconds=sign * seconds)


def format_duration(duration: timedelta) -> str:
    """inverse of parse_duration for whole-millisecond durations, e.g. 1h30m0s"""
    total_ms = round(duration.total_seconds() * 1000)
    if total_ms == 0:
        return "0s"
    sign = "-" if total_ms < 0 else ""
    total_ms = abs(total_ms)
    if total_ms < 1000:
        return f"{sign}{total_ms}ms"

    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    seconds, millis = divmod(remainder, 1000)
    seconds_part = f"{seconds}.{millis:03d}".rstrip("0") if millis else str(seconds)

    result = sign
    if hours:
        result += f"{hours}h"
    if hours or minutes:
        result += f"{minutes}m"
    return f"{result}{seconds_part}s"
