"""Convert typed parameter declarations into plain JSON schema.

Tool parameters are declared as pydantic models.  The inference endpoint
only accepts a small JSON-Schema subset, so :func:`convert` inlines
references, collapses nullable unions and drops every key outside that
subset (``$schema``, ``title``, ``$defs``, ``additionalProperties``...).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from finchat.errors import SchemaUnsupported

ALLOWED_KEYS = (
    "type",
    "properties",
    "required",
    "enum",
    "description",
    "default",
    "items",
)


def convert(params: type[BaseModel] | dict) -> dict:
    """Return the endpoint-safe schema for *params*.

    Args:
        params: A pydantic model class, or an already generated JSON
            schema dict.

    Raises:
        SchemaUnsupported: On recursive or unresolvable references and on
            unions other than ``X | None``.
    """
    if isinstance(params, type) and issubclass(params, BaseModel):
        raw = params.model_json_schema()
    elif isinstance(params, dict):
        raw = params
    else:
        raise SchemaUnsupported(
            f"Expected a pydantic model or dict, got {type(params).__name__}"
        )
    return _clean(raw, raw.get("$defs", {}), ())


def _clean(node: dict, defs: dict, ancestors: tuple[str, ...]) -> dict:
    if not isinstance(node, dict):
        raise SchemaUnsupported(f"Schema node must be an object: {node!r}")

    if "$ref" in node:
        name = node["$ref"].rsplit("/", 1)[-1]
        if name in ancestors:
            raise SchemaUnsupported(f"Recursive reference to '{name}'")
        if name not in defs:
            raise SchemaUnsupported(f"Unresolvable reference '{node['$ref']}'")
        merged = {**defs[name], **_without(node, "$ref")}
        return _clean(merged, defs, ancestors + (name,))

    for union_key in ("anyOf", "oneOf", "allOf"):
        if union_key in node:
            variants = [v for v in node[union_key] if v.get("type") != "null"]
            if len(variants) != 1:
                raise SchemaUnsupported(
                    f"'{union_key}' with {len(variants)} non-null variants"
                )
            merged = {**variants[0], **_without(node, union_key)}
            return _clean(merged, defs, ancestors)

    if "const" in node and "enum" not in node:
        node = {**_without(node, "const"), "enum": [node["const"]]}

    out: dict[str, Any] = {}
    for key in ALLOWED_KEYS:
        if key not in node:
            continue
        value = node[key]
        if key == "properties":
            value = {
                prop: _clean(sub, defs, ancestors)
                for prop, sub in value.items()
            }
        elif key == "items":
            value = _clean(value, defs, ancestors)
        elif key == "default" and value is None:
            continue
        out[key] = value
    return out


def _without(node: dict, key: str) -> dict:
    return {k: v for k, v in node.items() if k != key}
