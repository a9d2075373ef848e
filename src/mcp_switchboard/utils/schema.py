"""
Checks tool arguments against a tool's ``inputSchema``.

Covers the JSON Schema subset MCP servers publish in practice: ``type`` (single
or list), ``required``, ``properties``, ``additionalProperties: false``,
``enum``, ``items`` and numeric ``minimum``/``maximum``. Unknown keywords are
ignored, so an unusual schema never blocks a call the server would accept.
"""
from collections.abc import Mapping
from typing import Any


def json_type_name(value: Any) -> str:
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
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def _matches_type(expected: str, value: Any) -> bool:
    actual = json_type_name(value)
    if expected == "number":
        return actual in ("integer", "number")
    if expected == "integer":
        return actual == "integer" or (actual == "number" and float(value).is_integer())
    return actual == expected


def validate_arguments(schema: Mapping[str, Any], arguments: Mapping[str, Any] | None) -> list[str]:
    """Returns human-readable violations; an empty list means the arguments are acceptable."""
    errors: list[str] = []
    _validate_node(schema, dict(arguments or {}), "arguments", errors)
    return errors


def _validate_node(schema: Any, value: Any, path: str, errors: list[str]) -> None:
    if not isinstance(schema, Mapping):
        return

    expected = schema.get("type")
    if expected is not None:
        expected_types = expected if isinstance(expected, list) else [expected]
        if not any(_matches_type(t, value) for t in expected_types):
            errors.append(f"{path}: expected {' or '.join(expected_types)}, got {json_type_name(value)}")
            return

    if "enum" in schema and value not in schema["enum"]:
        allowed = ", ".join(repr(option) for option in schema["enum"])
        errors.append(f"{path}: {value!r} is not one of {allowed}")

    if json_type_name(value) in ("integer", "number"):
        if "minimum" in schema and value < schema["minimum"]:
            errors.append(f"{path}: {value} is less than the minimum of {schema['minimum']}")
        if "maximum" in schema and value > schema["maximum"]:
            errors.append(f"{path}: {value} is greater than the maximum of {schema['maximum']}")

    if isinstance(value, Mapping):
        properties = schema.get("properties") or {}
        for name in schema.get("required", []):
            if name not in value:
                errors.append(f"{path}: missing required property '{name}'")
        for name, item in value.items():
            if name in properties:
                _validate_node(properties[name], item, f"{path}.{name}", errors)
            elif schema.get("additionalProperties") is False:
                errors.append(f"{path}: unexpected property '{name}'")

    if isinstance(value, list) and isinstance(schema.get("items"), Mapping):
        for index, item in enumerate(value):
            _validate_node(schema["items"], item, f"{path}[{index}]", errors)
