# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""
Schema-driven validation of parsed descriptor trees.

A schema is an ordered mapping of field names to FieldConstraint objects.
Validation walks the tree depth-first in schema declaration order, and array
items in ascending index order, and stops at the first violation. The raised
JsonValidationError carries the JSON path of the offending node, for example
``$.microfrontends[1].apiClaims[0].type``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Pattern, Sequence, Tuple

from bundle_cli.errors import BundleCliError

# Keys matching this pattern are rendered as `.key`, anything else as `['key']`
_PLAIN_KEY_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")


class JsonValidationError(BundleCliError):
    """Raised at the first structural violation found in a descriptor."""

    def __init__(self, message: str, json_path: str):
        self.message = message
        self.json_path = json_path
        super().__init__(f"{message} (position: {json_path})")


class FieldType(str, Enum):
    """Runtime types a constrained field may have."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    MAP = "map"
    UNION = "union"


@dataclass(frozen=True)
class PatternRule:
    """Regular expression a string must fully match, with user guidance on failure."""

    regex: Pattern[str]
    message: str


@dataclass(frozen=True)
class UnionConstraint:
    """Object whose shape is picked by the value of a discriminator field."""

    discriminator: str
    variants: Mapping[str, "ObjectConstraints"]


@dataclass(frozen=True)
class FieldConstraint:
    """
    Constraints on a single field.

    Attributes:
        type: Expected runtime type.
        required: Whether the field must be present and not null.
        pattern: Optional pattern for string fields.
        allowed_values: Optional closed set of accepted values.
        properties: Nested constraints for OBJECT fields.
        items: Constraint applied to every element of ARRAY fields.
        union: Variant selection for UNION fields.
        value_type: Type of every value of MAP fields.
    """

    type: FieldType
    required: bool = False
    pattern: Optional[PatternRule] = None
    allowed_values: Optional[Tuple[Any, ...]] = None
    properties: Optional["ObjectConstraints"] = None
    items: Optional["FieldConstraint"] = None
    union: Optional[UnionConstraint] = None
    value_type: Optional[FieldType] = None


ObjectConstraints = Dict[str, FieldConstraint]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


_TYPE_CHECKS = {
    FieldType.STRING: lambda value: isinstance(value, str),
    FieldType.NUMBER: _is_number,
    FieldType.BOOLEAN: lambda value: isinstance(value, bool),
    FieldType.OBJECT: lambda value: isinstance(value, Mapping),
    FieldType.ARRAY: lambda value: isinstance(value, (list, tuple)),
    FieldType.MAP: lambda value: isinstance(value, Mapping),
    FieldType.UNION: lambda value: isinstance(value, Mapping),
}


def _type_label(field_type: FieldType) -> str:
    """Return the user-facing name of a type with its article ("a string", "an object")."""
    label = "object" if field_type in (FieldType.MAP, FieldType.UNION) else field_type.value
    article = "an" if label[0] in "aeiou" else "a"
    return f"{article} {label}"


def member_path(json_path: str, key: str) -> str:
    """Extend a JSON path with an object member."""
    if _PLAIN_KEY_PATTERN.fullmatch(key):
        return f"{json_path}.{key}"
    escaped = key.replace("\\", "\\\\").replace("'", "\\'")
    return f"{json_path}['{escaped}']"


def validate_object_constraints(
    node: Any, constraints: ObjectConstraints, json_path: str = "$"
) -> Any:
    """
    Validate a parsed object tree against a constraint schema.

    Args:
        node: The parsed document, usually the result of json/yaml loading.
        constraints: Ordered field constraints for the root object.
        json_path: Path of ``node`` inside the whole document.

    Returns:
        The unchanged node, for call chaining.

    Raises:
        JsonValidationError: On the first violation, in schema declaration order.
    """
    if not isinstance(node, Mapping):
        raise JsonValidationError(
            f"Descriptor is not valid. Should be {_type_label(FieldType.OBJECT)}", json_path
        )
    _validate_properties(node, constraints, json_path)
    return node


def _validate_properties(
    node: Mapping[str, Any], constraints: ObjectConstraints, json_path: str
) -> None:
    for name, constraint in constraints.items():
        path = member_path(json_path, name)
        value = node.get(name)
        if value is None:
            if constraint.required:
                raise JsonValidationError(f'Field "{name}" is required', path)
            continue
        _validate_value(name, value, constraint, path)


def _validate_value(name: str, value: Any, constraint: FieldConstraint, path: str) -> None:
    _check_type(name, value, constraint.type, path)

    if (
        constraint.pattern is not None
        and isinstance(value, str)
        and not constraint.pattern.regex.fullmatch(value)
    ):
        raise JsonValidationError(
            f'Field "{name}" is not valid. {constraint.pattern.message}', path
        )

    if constraint.allowed_values is not None and value not in constraint.allowed_values:
        raise _not_allowed_error(name, constraint.allowed_values, path)

    if constraint.type == FieldType.MAP and constraint.value_type is not None:
        _validate_map(name, value, constraint.value_type, path)
    elif constraint.type == FieldType.OBJECT and constraint.properties is not None:
        _validate_properties(value, constraint.properties, path)
    elif constraint.type == FieldType.UNION and constraint.union is not None:
        _validate_union(value, constraint.union, path)
    elif constraint.type == FieldType.ARRAY and constraint.items is not None:
        for index, item in enumerate(value):
            _validate_value(name, item, constraint.items, f"{path}[{index}]")


def _check_type(name: str, value: Any, field_type: FieldType, path: str) -> None:
    if _TYPE_CHECKS[field_type](value):
        return
    if field_type == FieldType.ARRAY:
        raise JsonValidationError(f'Field "{name}" should be an array', path)
    raise JsonValidationError(
        f'Field "{name}" is not valid. Should be {_type_label(field_type)}', path
    )


def _validate_map(
    name: str, value: Mapping[str, Any], value_type: FieldType, path: str
) -> None:
    for key, item in value.items():
        if not _TYPE_CHECKS[value_type](item):
            raise JsonValidationError(
                f'Field "{name}" is not valid. '
                f"Should be a key-value map of {value_type.value}s",
                member_path(path, str(key)),
            )


def _validate_union(node: Mapping[str, Any], union: UnionConstraint, path: str) -> None:
    name = union.discriminator
    discriminator_path = member_path(path, name)
    discriminator = node.get(name)

    if discriminator is None:
        raise JsonValidationError(f'Field "{name}" is required', discriminator_path)
    _check_type(name, discriminator, FieldType.STRING, discriminator_path)

    variant = union.variants.get(discriminator)
    if variant is None:
        raise _not_allowed_error(name, tuple(union.variants), discriminator_path)

    _validate_properties(node, variant, path)


def _not_allowed_error(name: str, allowed: Sequence[Any], path: str) -> JsonValidationError:
    values = ", ".join(str(value) for value in allowed)
    return JsonValidationError(f'Field "{name}" is not valid. Allowed values are: {values}', path)
