# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import itertools
import threading
from datetime import datetime, timezone
from typing import Final

UNIQUE_ID_SUFFIX_LENGTH: Final = 28

_counter: Final = itertools.count(1)
_lock: Final = threading.Lock()


def prefixed_unique_id(prefix: str) -> str:
    """
    Build an id that sorts after every id previously returned by this process.

    The suffix is a UTC timestamp with microseconds followed by an 8 digit hex
    counter, so ids generated within the same microsecond stay unique.
    """
    with _lock:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        counter = next(_counter) & 0xFFFFFFFF
    return f"{prefix}{timestamp}{counter:08x}"
