# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Final, Optional

from asg_reconciler.util.validation import ValidationException

if TYPE_CHECKING:
    from mypy_boto3_autoscaling.type_defs import TagDescriptionTypeDef, TagTypeDef
else:
    TagDescriptionTypeDef = object
    TagTypeDef = object

AWS_TAG_PREFIX: Final = "aws:"
TAG_RESOURCE_TYPE: Final = "auto-scaling-group"


class TagProvenance(str, Enum):
    DECLARED = "declared"
    OBSERVED = "observed"
    IGNORED = "ignored"


class TagStyle(str, Enum):
    """which of the two declarative tag representations a caller uses"""

    ITEMIZED = "tag"
    MAP = "tags"
    NONE = "none"


@dataclass(frozen=True)
class TagEntry:
    key: str
    value: str
    propagate_at_launch: bool = False
    provenance: TagProvenance = TagProvenance.DECLARED

    def same_as(self, other: "TagEntry") -> bool:
        return (
            self.value == other.value
            and self.propagate_at_launch == other.propagate_at_launch
        )


@dataclass(frozen=True)
class IgnoreTagsConfig:
    keys: frozenset[str] = frozenset()
    key_prefixes: tuple[str, ...] = ()

    def ignores(self, key: str) -> bool:
        return key in self.keys or any(
            key.startswith(prefix) for prefix in self.key_prefixes
        )


def _to_bool(key: str, value: Any) -> bool:
    # the map representation may carry the flag as a string
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "t", "1"}:
            return True
        if normalized in {"false", "f", "0", ""}:
            return False
    raise ValidationException(
        f"propagate_at_launch of tag {key} must be a bool, found {value!r}"
    )


class TagCollection:
    """
    Canonical, key-indexed set of auto scaling group tags.

    Both declarative representations (the itemized `tag` blocks and the `tags` list
    of string maps) as well as the tag descriptions returned by the provider are
    normalized into this type. Each entry records where it came from, and entries
    that must not be managed are marked IGNORED rather than silently dropped until
    `without_ignored` is called.
    """

    def __init__(self, entries: Iterable[TagEntry] = ()) -> None:
        self._entries: dict[str, TagEntry] = {}
        for entry in entries:
            self._entries[entry.key] = entry

    @classmethod
    def from_declared(cls, items: Iterable[Mapping[str, Any]]) -> "TagCollection":
        entries = []
        for item in items:
            key = item.get("key")
            value = item.get("value")
            if not isinstance(key, str) or not key:
                raise ValidationException(f"tag key must be a string, found {key!r}")
            if not isinstance(value, str):
                raise ValidationException(
                    f"value of tag {key} must be a string, found {value!r}"
                )
            entries.append(
                TagEntry(
                    key=key,
                    value=value,
                    propagate_at_launch=_to_bool(
                        key, item.get("propagate_at_launch", False)
                    ),
                    provenance=TagProvenance.DECLARED,
                )
            )
        return cls(entries)

    @classmethod
    def from_observed(
        cls, descriptions: Iterable[TagDescriptionTypeDef]
    ) -> "TagCollection":
        return cls(
            TagEntry(
                key=description["Key"],
                value=description.get("Value", ""),
                propagate_at_launch=description.get("PropagateAtLaunch", False),
                provenance=TagProvenance.OBSERVED,
            )
            for description in descriptions
        )

    def __iter__(self) -> Iterator[TagEntry]:
        return iter(sorted(self._entries.values(), key=lambda entry: entry.key))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TagCollection):
            return NotImplemented
        if self._entries.keys() != other._entries.keys():
            return False
        return all(
            entry.same_as(other._entries[key]) for key, entry in self._entries.items()
        )

    def __repr__(self) -> str:
        return f"TagCollection({list(self)!r})"

    def get(self, key: str) -> Optional[TagEntry]:
        return self._entries.get(key)

    def keys(self) -> set[str]:
        return set(self._entries.keys())

    def mark_ignored(
        self, ignore_config: Optional[IgnoreTagsConfig] = None
    ) -> "TagCollection":
        """flag provider-managed (aws:) keys and globally ignored keys as IGNORED"""

        def is_ignored(key: str) -> bool:
            if key.startswith(AWS_TAG_PREFIX):
                return True
            return ignore_config is not None and ignore_config.ignores(key)

        return TagCollection(
            (
                replace(entry, provenance=TagProvenance.IGNORED)
                if is_ignored(entry.key)
                else entry
            )
            for entry in self._entries.values()
        )

    def without_ignored(self) -> "TagCollection":
        return TagCollection(
            entry
            for entry in self._entries.values()
            if entry.provenance != TagProvenance.IGNORED
        )

    def managed(
        self, ignore_config: Optional[IgnoreTagsConfig] = None
    ) -> "TagCollection":
        return self.mark_ignored(ignore_config).without_ignored()

    def only(self, other: "TagCollection") -> "TagCollection":
        """keep the entries whose keys also appear in `other`"""
        return TagCollection(
            entry for key, entry in self._entries.items() if key in other
        )

    def removed(self, new: "TagCollection") -> "TagCollection":
        """entries of this collection whose keys are absent from `new`"""
        return TagCollection(
            entry for key, entry in self._entries.items() if key not in new
        )

    def updated(self, new: "TagCollection") -> "TagCollection":
        """entries of `new` that are missing from or differ in this collection"""
        changed = []
        for key, entry in new._entries.items():
            current = self._entries.get(key)
            if current is None or not current.same_as(entry):
                changed.append(entry)
        return TagCollection(changed)

    def propagated(self) -> dict[str, str]:
        return {
            key: entry.value
            for key, entry in self._entries.items()
            if entry.propagate_at_launch
        }

    def to_request_tags(self, group_name: str) -> list[TagTypeDef]:
        return [
            {
                "ResourceId": group_name,
                "ResourceType": TAG_RESOURCE_TYPE,
                "Key": entry.key,
                "Value": entry.value,
                "PropagateAtLaunch": entry.propagate_at_launch,
            }
            for entry in self
        ]

    def to_itemized(self) -> list[dict[str, Any]]:
        return [
            {
                "key": entry.key,
                "value": entry.value,
                "propagate_at_launch": entry.propagate_at_launch,
            }
            for entry in self
        ]

    def to_string_maps(self) -> list[dict[str, str]]:
        return [
            {
                "key": entry.key,
                "value": entry.value,
                "propagate_at_launch": str(entry.propagate_at_launch).lower(),
            }
            for entry in self
        ]
