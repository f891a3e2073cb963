# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

import typing
from typing import Any, Optional, Type, cast

from .errors import VerificationError

T = typing.TypeVar("T")


class ApiObjectError(VerificationError):
    pass


def typename(type: type) -> str:
    CONTENT_TYPE_NAMES = {"dict": "Map", "str": "String",
                          "int": "Integer", "bool": "Boolean", "list": "List"}
    if type.__name__ not in CONTENT_TYPE_NAMES:
        return type.__name__
    return CONTENT_TYPE_NAMES[type.__name__]


def lookup(obj: dict, path: str) -> Any:
    """
    Follow a dotted path (e.g. "status.currentPrimary") through nested dicts.
    Returns None as soon as a component is missing.
    """
    value: Any = obj
    for key in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
        if value is None:
            return None
    return value


def _dget(d: dict, path: str, what: str, default_value: Optional[T], expected_type: Type[T]) -> T:
    value = lookup(d, path)
    if value is None:
        if default_value is None:
            raise ApiObjectError(f"{path} is mandatory, but is not set", what)
        return default_value
    if not isinstance(value, expected_type):
        raise ApiObjectError(
            f"{path} expected to be a {typename(expected_type)} but is {typename(type(value))}", what)
    return cast(T, value)


def dget_dict(d: dict, path: str, what: str, default_value: Optional[dict] = None) -> dict:
    return _dget(d, path, what, default_value, dict)


def dget_list(d: dict, path: str, what: str, default_value: Optional[list] = None) -> list:
    return _dget(d, path, what, default_value, list)


def dget_str(d: dict, path: str, what: str, *, default_value: Optional[str] = None) -> str:
    return _dget(d, path, what, default_value, str)


def dget_int(d: dict, path: str, what: str, *, default_value: Optional[int] = None) -> int:
    return _dget(d, path, what, default_value, int)
