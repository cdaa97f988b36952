# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from collections.abc import Mapping
from typing import Any, Optional, TypeGuard, cast


class ValidationException(Exception):
    pass


def require_int(untyped_dict: Mapping[str, Any], key: str) -> int:
    validate_int(untyped_dict, key, True)
    return cast(int, untyped_dict[key])


def require_str(untyped_dict: Mapping[str, Any], key: str) -> str:
    validate_string(untyped_dict, key, True)
    return cast(str, untyped_dict[key])


def optional_int(untyped_dict: Mapping[str, Any], key: str) -> Optional[int]:
    validate_int(untyped_dict, key, False)
    return cast(Optional[int], untyped_dict.get(key))


def optional_str(untyped_dict: Mapping[str, Any], key: str) -> Optional[str]:
    """empty strings are treated as unset"""
    validate_string(untyped_dict, key, False)
    return cast(Optional[str], untyped_dict.get(key)) or None


def optional_bool(untyped_dict: Mapping[str, Any], key: str, default: bool) -> bool:
    validate_bool(untyped_dict, key, False)
    value = untyped_dict.get(key)
    return default if value is None else cast(bool, value)


def optional_string_list(untyped_dict: Mapping[str, Any], key: str) -> list[str]:
    validate_string_list(untyped_dict, key, False)
    return list(cast(list[str], untyped_dict.get(key) or []))


def optional_mapping_list(
    untyped_dict: Mapping[str, Any], key: str
) -> list[Mapping[str, Any]]:
    value = untyped_dict.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationException(f"{key} must be a list, found {type(value)}")
    for item in value:
        if not isinstance(item, Mapping):
            raise ValidationException(
                f"All elements of {key} must be objects, found {type(item)}"
            )
    return cast(list[Mapping[str, Any]], value)


def optional_mapping(
    untyped_dict: Mapping[str, Any], key: str
) -> Optional[Mapping[str, Any]]:
    """single nested blocks are accepted either bare or as a one element list"""
    value = untyped_dict.get(key)
    if value is None:
        return None
    if isinstance(value, list):
        if len(value) == 0:
            return None
        if len(value) > 1:
            raise ValidationException(f"{key} accepts at most one element")
        value = value[0]
    if not isinstance(value, Mapping):
        raise ValidationException(f"{key} must be an object, found {type(value)}")
    return value


def validate_int(  # NOSONAR -- (duplicate-returns) function is expected to return true or throw an error per the TypeGuard spec
    untyped_dict: Mapping[str, Any], key: str, required: bool = True
) -> TypeGuard[Mapping[str, Any]]:
    """
    :param untyped_dict: a mapping of strings to unknown values
    :param key: the key to check
    :param required: if true, an error will be thrown if the value is missing, if false, no error will be thrown
    :return: true if the value stored at {key} is an int. a ValidationException will be raised otherwise
    """
    value = untyped_dict.get(key, None)
    if value is None:
        if required:
            raise ValidationException(f"required key {key} is missing")
        else:
            return True
    if type(value) is not int:
        raise ValidationException(f"{key} must be an int, found {type(value)}")
    return True


def validate_bool(  # NOSONAR -- (duplicate-returns) function is expected to return true or throw an error per the TypeGuard spec
    untyped_dict: Mapping[str, Any], key: str, required: bool = True
) -> TypeGuard[Mapping[str, Any]]:
    value = untyped_dict.get(key, None)
    if value is None:
        if required:
            raise ValidationException(f"required key {key} is missing")
        else:
            return True
    if type(value) is not bool:
        raise ValidationException(f"{key} must be a bool, found {type(value)}")
    return True


def validate_string(  # NOSONAR -- (duplicate-returns) function is expected to return true or throw an error per the TypeGuard spec
    untyped_dict: Mapping[str, Any], key: str, required: bool = True
) -> TypeGuard[Mapping[str, Any]]:
    """
    :param untyped_dict: a mapping of strings to unknown values
    :param key: the key to check
    :param required: if true, an error will be thrown if the value is missing, if false, no error will be thrown
    :return: true if the value stored at {key} is a str. a ValidationException will be raised otherwise
    """
    value = untyped_dict.get(key, None)
    if value is None:
        if required:
            raise ValidationException(f"required key {key} is missing")
        else:
            return True
    if type(value) is not str:
        raise ValidationException(f"{key} must be a string, found {type(value)}")
    return True


def validate_string_list(  # NOSONAR -- (duplicate-returns) function is expected to return true or throw an error per the TypeGuard spec
    untyped_dict: Mapping[str, Any], key: str, required: bool = True
) -> TypeGuard[Mapping[str, Any]]:
    """
    :param untyped_dict: a mapping of strings to unknown values
    :param key: the key to check
    :param required: if true, an error will be thrown if the value is missing, if false, no error will be thrown
    :return: true if the value stored at {key} is a list[str]. a ValidationException will be raised otherwise
    """
    value = untyped_dict.get(key, None)
    if value is None:
        if required:
            raise ValidationException(f"required key {key} is missing")
        else:
            return True
    if not isinstance(value, (list, set, frozenset, tuple)):
        raise ValidationException(f"{key} must be a list, found {type(value)}")
    for item in value:
        if type(item) is not str:
            raise ValidationException(
                f"All elements of {key} must be strings, found {type(item)}"
            )
    return True
