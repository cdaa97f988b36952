# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Typed representations of an auto scaling group on both sides of a reconciliation.

Desired state
    `GroupSpec` is a frozen dataclass parsed once from an untyped group document by
    `GroupSpec.from_document`. Raises `InvalidGroupSpecError` on validation error.
    Nothing downstream of the parser inspects the untyped document again.

Observed state
    `GroupObservedState` wraps one DescribeAutoScalingGroups result and exposes the
    fields a reconciliation compares against. It is re-fetched on every pass and
    never mutated.

Tags
    `TagCollection` is the canonical, key-indexed tag set shared by the declarative
    representations and the provider's tag descriptions. `IgnoreTagsConfig` names
    the keys that are never managed.
"""
from .group_spec import GroupSpec, InvalidGroupSpecError
from .observed_state import GroupObservedState
from .tags import IgnoreTagsConfig, TagCollection

__all__ = [
    "GroupObservedState",
    "GroupSpec",
    "IgnoreTagsConfig",
    "InvalidGroupSpecError",
    "TagCollection",
]
