from __future__ import annotations

import json
from typing import Any, TypeVar

from pydantic import BaseModel, RootModel, ValidationError

from .errors import InvalidSchemaError, SchemaViolationError

M = TypeVar("M", bound=BaseModel)

DEFAULT_SCHEMA_NAME = "structured_output"

# Keywords strict structured-output mode refuses.
_DROPPED_KEYWORDS = frozenset({"default"})
# Keywords whose values map names to sub-schemas.
_NAMED_SUBSCHEMAS = frozenset({"properties", "$defs", "definitions"})
_COMBINATORS = ("anyOf", "oneOf", "allOf")
_TYPED_KEYWORDS = frozenset({"type", "$ref", "enum", "const", *_COMBINATORS})
# Positions holding a sub-schema that must itself be typed.
_SINGLE_SUBSCHEMAS = ("items", "additionalProperties")
_LIST_SUBSCHEMAS = ("prefixItems", *_COMBINATORS)


def ensure_schema_model(schema: Any) -> type[BaseModel]:
    if not (isinstance(schema, type) and issubclass(schema, BaseModel)):
        raise InvalidSchemaError(f"Output schema must be a pydantic BaseModel subclass, got {schema!r}.")
    return schema


def to_strict_json_schema(schema: type[BaseModel]) -> dict[str, Any]:
    """
    Render a pydantic model as a JSON Schema accepted by strict structured output.

    The root must be a plain object. Every object node is closed
    (`additionalProperties: false`) and lists all of its properties as
    required. Open-ended objects (`dict[...]`, `Any`, `extra="allow"`)
    cannot be closed and are rejected.
    """
    schema = ensure_schema_model(schema)
    if issubclass(schema, RootModel):
        raise InvalidSchemaError(f"{schema.__name__}: RootModel schemas have no object root.")

    doc = schema.model_json_schema()
    if doc.get("type") != "object" or any(k in doc for k in _COMBINATORS):
        raise InvalidSchemaError(f"{schema.__name__}: schema root must be a single object type.")
    return _strictify(doc, "#")


def _strictify(node: Any, path: str) -> Any:
    if isinstance(node, list):
        return [_strictify(item, f"{path}/{i}") for i, item in enumerate(node)]
    if not isinstance(node, dict):
        return node

    out: dict[str, Any] = {}
    for key, value in node.items():
        if key in _DROPPED_KEYWORDS:
            continue
        if key in _NAMED_SUBSCHEMAS and isinstance(value, dict):
            out[key] = {name: _strictify(sub, f"{path}/{key}/{name}") for name, sub in value.items()}
        else:
            out[key] = _strictify(value, f"{path}/{key}")

    for where, sub in _subschemas(out, path):
        if isinstance(sub, dict) and not _TYPED_KEYWORDS.intersection(sub):
            raise InvalidSchemaError(f"Untyped schema at {where} is not allowed in strict mode.")

    if out.get("type") == "object":
        extra = out.get("additionalProperties", False)
        if extra is not False or "properties" not in out:
            raise InvalidSchemaError(f"Open-ended object at {path} is not allowed in strict mode.")
        out["additionalProperties"] = False
        out["required"] = list(out["properties"])
    return out


def _subschemas(node: dict[str, Any], path: str) -> list[tuple[str, Any]]:
    found = [(f"{path}/properties/{name}", sub) for name, sub in node.get("properties", {}).items()]
    found += [(f"{path}/{key}", node[key]) for key in _SINGLE_SUBSCHEMAS if isinstance(node.get(key), dict)]
    for key in _LIST_SUBSCHEMAS:
        found += [(f"{path}/{key}/{i}", sub) for i, sub in enumerate(node.get(key) or ())]
    return found


def validate_output(schema: type[M], value: Any) -> M:
    try:
        return schema.model_validate(value)
    except ValidationError as e:
        diagnostics = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in e.errors()
        ]
        raise SchemaViolationError(
            f"Output does not match {schema.__name__}: {e.error_count()} validation error(s).",
            diagnostics=diagnostics,
            raw_body=value,
        ) from e


def schema_hint(schema: type[BaseModel]) -> str:
    """Advisory schema text appended to the user prompt in JSON mode."""
    doc = json.dumps(schema.model_json_schema(), indent=2)
    return (
        "\n\nRespond with a single JSON value that conforms to this JSON Schema "
        "(guidance only, do not repeat the schema):\n"
        f"{doc}"
    )
