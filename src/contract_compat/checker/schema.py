"""Structural matching of concrete values against Schema trees.

The matcher never raises for data mismatches: every problem becomes a
finding carrying two locations, one into the interaction value and one
into the specification document.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, NamedTuple

from contract_compat.checker.formats import check_integer_format, check_string_format
from contract_compat.checker.result import Violation, ViolationCode, make_violation
from contract_compat.config import AdditionalPropertiesPolicy
from contract_compat.errors import MalformedSpecification
from contract_compat.parser.base import (
    AnySchema,
    ArraySchema,
    CompositeSchema,
    NumberSchema,
    ObjectSchema,
    RefSchema,
    Schema,
    StringSchema,
)

_EXPECTED_TYPES = {
    "object": "object",
    "array": "array",
    "string": "string",
    "number": "number",
    "integer": "integer",
    "boolean": "boolean",
    "null": "null",
}


class _Finding(NamedTuple):
    message: str
    value_location: str
    spec_location: str
    value: Any
    constraint: str


@dataclass(frozen=True)
class _Context:
    direction: str
    # (reference, value location) pairs currently being expanded
    active: frozenset[tuple[str, str]] = frozenset()


@dataclass
class _ObjectShape:
    """Object constraints gathered from one object schema or an allOf of them."""

    properties: dict[str, list[tuple[Schema, str]]] = field(default_factory=dict)
    required: dict[str, str] = field(default_factory=dict)
    additional: list[tuple[Any, str]] = field(default_factory=list)
    bounds: list[tuple[str, int, str]] = field(default_factory=list)
    composed: bool = False


def json_type(value: Any) -> str:
    """JSON type name of a Python value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def is_type(value: Any, expected: str) -> bool:
    actual = json_type(value)
    if expected == "number":
        return actual in ("integer", "number")
    if expected == "integer":
        return actual == "integer" or (actual == "number" and value.is_integer())
    return actual == expected


def json_equal(a: Any, b: Any) -> bool:
    """Equality that keeps booleans apart from numbers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(json_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(json_equal(a[k], b[k]) for k in a)
    return a == b


def _display(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _relative(location: str, base: str) -> str:
    return location[len(base):].lstrip(".") if location.startswith(base) else location


class SchemaMatcher:
    """Validates values against schemas of one specification.

    Holds only read-only data, so a single matcher can be shared between
    worker threads.
    """

    def __init__(self, definitions: Mapping[str, Schema], policy: AdditionalPropertiesPolicy):
        self._definitions = definitions
        self._policy = AdditionalPropertiesPolicy(policy)

    def validate(
        self,
        value: Any,
        schema: Schema,
        value_location: str,
        spec_location: str,
        *,
        code: ViolationCode,
        interaction_index: int = 0,
        interaction_description: str = "",
        direction: str = "request",
    ) -> list[Violation]:
        """Check value against schema, returning one violation per problem found."""
        findings = self._check(value, schema, value_location, spec_location, _Context(direction))
        return [
            make_violation(
                code,
                finding.message,
                interaction_index=interaction_index,
                interaction_description=interaction_description,
                interaction_location=finding.value_location,
                spec_location=finding.spec_location,
                value=finding.value,
                constraint=finding.constraint,
            )
            for finding in findings
        ]

    def matches(self, value: Any, schema: Schema, direction: str = "request") -> bool:
        return not self._check(value, schema, "", "", _Context(direction))

    def resolve(self, schema: Schema) -> Schema:
        """Follow back-references until a concrete schema is reached."""
        seen = set()
        while isinstance(schema, RefSchema):
            if schema.ref in seen:
                break
            seen.add(schema.ref)
            schema = self._definition(schema.ref)
        return schema

    def _definition(self, ref: str) -> Schema:
        try:
            return self._definitions[ref]
        except KeyError:
            raise MalformedSpecification(f"unresolved reference {ref}") from None

    def _check(self, value: Any, schema: Schema, vloc: str, sloc: str, ctx: _Context) -> list[_Finding]:
        if value is None and schema.nullable:
            return []
        if isinstance(schema, RefSchema):
            return self._check_ref(value, schema, vloc, sloc, ctx)
        if isinstance(schema, CompositeSchema):
            return self._check_composite(value, schema, vloc, sloc, ctx)

        expected = _EXPECTED_TYPES.get(schema.kind)
        if expected and not is_type(value, expected):
            return [_Finding(
                f"must be {expected} but was {json_type(value)}", vloc, f"{sloc}.type", value, "type"
            )]
        if schema.enum is not None and not any(json_equal(value, allowed) for allowed in schema.enum):
            allowed = ", ".join(_display(v) for v in schema.enum)
            return [_Finding(
                f"must be equal to one of the allowed values: {allowed} (was {_display(value)})",
                vloc, f"{sloc}.enum", value, "enum",
            )]

        if isinstance(schema, ObjectSchema):
            shape = _ObjectShape()
            _add_object(schema, sloc, shape)
            return self._check_object(value, shape, vloc, ctx)
        if isinstance(schema, ArraySchema):
            return self._check_array(value, schema, vloc, sloc, ctx)
        if isinstance(schema, StringSchema):
            return _check_string(value, schema, vloc, sloc)
        if isinstance(schema, NumberSchema):
            return _check_number(value, schema, vloc, sloc)
        return []

    def _check_ref(self, value: Any, schema: RefSchema, vloc: str, sloc: str, ctx: _Context) -> list[_Finding]:
        key = (schema.ref, vloc)
        # Re-entering a reference without consuming any of the value matches.
        if key in ctx.active:
            return []
        target = self._definition(schema.ref)
        return self._check(value, target, vloc, sloc, _Context(ctx.direction, ctx.active | {key}))

    @staticmethod
    def _child_location(schema: CompositeSchema, sloc: str, index: int) -> str:
        return sloc if schema.inline else f"{sloc}.{schema.operator}.{index}"

    def _check_composite(
        self, value: Any, schema: CompositeSchema, vloc: str, sloc: str, ctx: _Context
    ) -> list[_Finding]:
        if schema.operator == "allOf":
            shape = _ObjectShape()
            if self._collect(schema, sloc, shape, frozenset()) and shape.additional:
                if not isinstance(value, dict):
                    first = shape.additional[0][1]
                    return [_Finding(
                        f"must be object but was {json_type(value)}", vloc, f"{first}.type", value, "type"
                    )]
                return self._check_object(value, shape, vloc, ctx)

            findings = []
            for i, child in enumerate(schema.children):
                findings.extend(self._check(value, child, vloc, self._child_location(schema, sloc, i), ctx))
            return findings

        results = [
            self._check(value, child, vloc, self._child_location(schema, sloc, i), ctx)
            for i, child in enumerate(schema.children)
        ]
        passed = [i for i, result in enumerate(results) if not result]
        if schema.operator == "anyOf" and passed:
            return []
        if schema.operator == "oneOf" and len(passed) == 1:
            return []

        keyword_location = sloc if schema.inline else f"{sloc}.{schema.operator}"
        if passed:
            matched = ", ".join(str(i) for i in passed)
            return [_Finding(
                f"must match exactly one schema in oneOf (matched {matched})",
                vloc, keyword_location, value, schema.operator,
            )]

        # Nearest miss: the child with the fewest findings, earliest on ties.
        nearest = min(range(len(results)), key=lambda i: len(results[i]))
        details = "; ".join(
            f"{_relative(f.value_location, vloc)}: {f.message}" if f.value_location != vloc else f.message
            for f in results[nearest]
        )
        qualifier = "exactly one schema in oneOf" if schema.operator == "oneOf" else "at least one schema in anyOf"
        return [_Finding(
            f"must match {qualifier} (closest: {schema.operator}[{nearest}]: {details})",
            vloc, keyword_location, value, schema.operator,
        )]

    def _collect(self, schema: Schema, sloc: str, shape: _ObjectShape, seen: frozenset[str]) -> bool:
        """Merge an object-shaped schema into shape; False when it is not object-shaped."""
        if isinstance(schema, RefSchema):
            if schema.ref in seen:
                return True
            return self._collect(self._definition(schema.ref), sloc, shape, seen | {schema.ref})
        if isinstance(schema, AnySchema):
            return schema.enum is None
        if isinstance(schema, ObjectSchema):
            if schema.enum is not None:
                return False
            _add_object(schema, sloc, shape)
            return True
        if isinstance(schema, CompositeSchema) and schema.operator == "allOf":
            shape.composed = True
            return all(
                self._collect(child, self._child_location(schema, sloc, i), shape, seen)
                for i, child in enumerate(schema.children)
            )
        return False

    def _check_object(self, value: dict, shape: _ObjectShape, vloc: str, ctx: _Context) -> list[_Finding]:
        findings = []
        for name, required_location in shape.required.items():
            if name in value or self._exempt(shape.properties.get(name, []), ctx.direction):
                continue
            findings.append(_Finding(
                f"must have required property '{name}'", vloc, required_location, None, "required"
            ))

        for key, item in value.items():
            item_location = f"{vloc}.{key}"
            declared = shape.properties.get(key)
            if declared:
                for prop_schema, prop_location in declared:
                    findings.extend(self._check(item, prop_schema, item_location, prop_location, ctx))
            else:
                findings.extend(self._check_additional(key, item, item_location, shape, ctx))

        for bound, limit, location in shape.bounds:
            count = len(value)
            if bound == "min" and count < limit:
                findings.append(_Finding(
                    f"must NOT have fewer than {limit} properties (was {count})", vloc, location, value, "minProperties"
                ))
            elif bound == "max" and count > limit:
                findings.append(_Finding(
                    f"must NOT have more than {limit} properties (was {count})", vloc, location, value, "maxProperties"
                ))
        return findings

    def _check_additional(
        self, key: str, item: Any, item_location: str, shape: _ObjectShape, ctx: _Context
    ) -> list[_Finding]:
        findings = []
        rejected = False
        for additional, location in shape.additional:
            keyword_location = f"{location}.additionalProperties"
            if additional is None:
                additional = self._policy == AdditionalPropertiesPolicy.PERMISSIVE
            if additional is False:
                # One rejection per key, however many allOf parts forbid it.
                if rejected:
                    continue
                rejected = True
                if shape.composed:
                    message, constraint = f"must NOT have unevaluated properties - {key}", "unevaluatedProperties"
                else:
                    message, constraint = f"must NOT have additional properties - {key}", "additionalProperties"
                findings.append(_Finding(message, item_location, keyword_location, item, constraint))
            elif additional is not True:
                findings.extend(self._check(item, additional, item_location, keyword_location, ctx))
        return findings

    @staticmethod
    def _exempt(declared: list[tuple[Schema, str]], direction: str) -> bool:
        """Read-only properties are not required in requests, write-only ones not in responses."""
        if not declared:
            return False
        if direction == "request":
            return all(prop.read_only for prop, _ in declared)
        return all(prop.write_only for prop, _ in declared)

    def _check_array(self, value: list, schema: ArraySchema, vloc: str, sloc: str, ctx: _Context) -> list[_Finding]:
        findings = []
        count = len(value)
        if schema.min_items is not None and count < schema.min_items:
            findings.append(_Finding(
                f"must NOT have fewer than {schema.min_items} items (was {count})",
                vloc, f"{sloc}.minItems", value, "minItems",
            ))
        if schema.max_items is not None and count > schema.max_items:
            findings.append(_Finding(
                f"must NOT have more than {schema.max_items} items (was {count})",
                vloc, f"{sloc}.maxItems", value, "maxItems",
            ))
        if schema.unique_items:
            seen: dict[str, int] = {}
            for i, item in enumerate(value):
                canonical = json.dumps(item, sort_keys=True, default=str)
                if canonical in seen:
                    findings.append(_Finding(
                        f"must NOT have duplicate items (items {seen[canonical]} and {i} are identical)",
                        vloc, f"{sloc}.uniqueItems", value, "uniqueItems",
                    ))
                    break
                seen[canonical] = i

        for i, item in enumerate(value):
            findings.extend(self._check(item, schema.items, f"{vloc}[{i}]", f"{sloc}.items", ctx))
        return findings


def _check_string(value: str, schema: StringSchema, vloc: str, sloc: str) -> list[_Finding]:
    findings = []
    length = len(value)
    if schema.min_length is not None and length < schema.min_length:
        findings.append(_Finding(
            f"must NOT have fewer than {schema.min_length} characters (was {length})",
            vloc, f"{sloc}.minLength", value, "minLength",
        ))
    if schema.max_length is not None and length > schema.max_length:
        findings.append(_Finding(
            f"must NOT have more than {schema.max_length} characters (was {length})",
            vloc, f"{sloc}.maxLength", value, "maxLength",
        ))
    if schema.pattern is not None and not re.search(schema.pattern, value):
        findings.append(_Finding(
            f'must match pattern "{schema.pattern}"', vloc, f"{sloc}.pattern", value, "pattern"
        ))
    if schema.format is not None and not check_string_format(schema.format, value):
        findings.append(_Finding(
            f'must match format "{schema.format}"', vloc, f"{sloc}.format", value, "format"
        ))
    return findings


def _check_number(value: int | float, schema: NumberSchema, vloc: str, sloc: str) -> list[_Finding]:
    findings = []
    if schema.minimum is not None and value < schema.minimum:
        findings.append(_Finding(
            f"must be >= {schema.minimum} (was {value})", vloc, f"{sloc}.minimum", value, "minimum"
        ))
    if schema.exclusive_minimum is not None and value <= schema.exclusive_minimum:
        findings.append(_Finding(
            f"must be > {schema.exclusive_minimum} (was {value})",
            vloc, f"{sloc}.exclusiveMinimum", value, "exclusiveMinimum",
        ))
    if schema.maximum is not None and value > schema.maximum:
        findings.append(_Finding(
            f"must be <= {schema.maximum} (was {value})", vloc, f"{sloc}.maximum", value, "maximum"
        ))
    if schema.exclusive_maximum is not None and value >= schema.exclusive_maximum:
        findings.append(_Finding(
            f"must be < {schema.exclusive_maximum} (was {value})",
            vloc, f"{sloc}.exclusiveMaximum", value, "exclusiveMaximum",
        ))
    if schema.multiple_of:
        quotient = value / schema.multiple_of
        if abs(quotient - round(quotient)) > 1e-9:
            findings.append(_Finding(
                f"must be multiple of {schema.multiple_of} (was {value})",
                vloc, f"{sloc}.multipleOf", value, "multipleOf",
            ))
    if schema.kind == "integer" and schema.format is not None and not check_integer_format(schema.format, int(value)):
        findings.append(_Finding(
            f'must match format "{schema.format}" (was {value})', vloc, f"{sloc}.format", value, "format"
        ))
    return findings


def _add_object(schema: ObjectSchema, sloc: str, shape: _ObjectShape) -> None:
    for name, prop in schema.properties.items():
        shape.properties.setdefault(name, []).append((prop, f"{sloc}.properties.{name}"))
    for name in schema.required:
        shape.required.setdefault(name, f"{sloc}.required")
    shape.additional.append((schema.additional_properties, sloc))
    if schema.min_properties is not None:
        shape.bounds.append(("min", schema.min_properties, f"{sloc}.minProperties"))
    if schema.max_properties is not None:
        shape.bounds.append(("max", schema.max_properties, f"{sloc}.maxProperties"))
