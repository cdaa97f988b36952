# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from collections.abc import Iterable, Iterator
from typing import TypeVar

T = TypeVar("T")


def chunked(items: Iterable[T], chunk_size: int) -> Iterator[list[T]]:
    """split `items` into consecutive lists of at most `chunk_size` elements"""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, found {chunk_size}")
    array = list(items)
    for i in range(0, len(array), chunk_size):
        yield array[i : i + chunk_size]
