"""String and number format checks.

String formats are checked with the JSON Schema 2020-12 format checker from
``jsonschema``; OpenAPI adds ``byte`` and the integer width formats on top.
Formats nobody knows are not checked: an unknown format never produces a
violation.
"""

import base64
import binascii
from typing import Callable

from jsonschema import Draft202012Validator

_FORMAT_CHECKER = Draft202012Validator.FORMAT_CHECKER

INT32_RANGE = (-(2**31), 2**31 - 1)
INT64_RANGE = (-(2**63), 2**63 - 1)


def _is_byte(value: str) -> bool:
    try:
        base64.b64decode(value, validate=True)
    except binascii.Error:
        return False
    return True


OPENAPI_STRING_FORMATS: dict[str, Callable[[str], bool]] = {
    "byte": _is_byte,
}

INTEGER_FORMATS = {
    "int32": INT32_RANGE,
    "int64": INT64_RANGE,
}


def check_string_format(fmt: str, value: str) -> bool:
    """True when value satisfies fmt, or fmt is not a known format."""
    checker = OPENAPI_STRING_FORMATS.get(fmt)
    if checker is not None:
        return checker(value)
    return _FORMAT_CHECKER.conforms(value, fmt)


def check_integer_format(fmt: str, value: int) -> bool:
    bounds = INTEGER_FORMATS.get(fmt)
    if bounds is None:
        return True
    return bounds[0] <= value <= bounds[1]
