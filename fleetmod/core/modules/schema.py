from __future__ import annotations

import copy
import json
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft7Validator, Draft202012Validator


Schema = Dict[str, Any]

_VALIDATORS = {
    "draft7": Draft7Validator,
    "draft2020-12": Draft202012Validator,
}

# Where shared sub-schemas live: draft 7 uses "definitions", 2020-12 "$defs".
DEFINITION_KEYWORDS = ("definitions", "$defs")

EVENT_TYPES = ("atomic", "aggregation", "correlation")


@lru_cache(maxsize=512)
def _compiled(schema_json: str, draft: str) -> Any:
    cls = _VALIDATORS.get(draft, Draft7Validator)
    schema = json.loads(schema_json)
    cls.check_schema(schema)
    return cls(schema)


def validator_for(schema: Schema, draft: str = "draft7") -> Any:
    """
    Checked validator for schema, built once per distinct schema and draft.

    A merge asks for the same node schemas over and over; the canonical JSON
    text is the cache key. Raises jsonschema.SchemaError for a malformed schema.
    """
    return _compiled(json.dumps(schema, sort_keys=True), str(draft or "draft7"))


def is_valid(value: Any, schema: Any, *, draft: str = "draft7") -> bool:
    if schema is True or schema is None:
        return True
    if schema is False:
        return False
    try:
        return bool(validator_for(schema, draft).is_valid(value))
    except Exception:  # noqa: BLE001
        # an unusable schema (bad $ref, malformed keyword) never validates anything
        return False


def definitions_of(schema: Any) -> Dict[str, Any]:
    if not isinstance(schema, dict):
        return {}
    defs = schema.get("definitions")
    return dict(defs) if isinstance(defs, dict) else {}


def root_definitions(schema: Any) -> Dict[str, Dict[str, Any]]:
    """
    Every definitions block of schema, keyed by its keyword.
    """
    if not isinstance(schema, dict):
        return {}
    return {kw: dict(schema[kw]) for kw in DEFINITION_KEYWORDS if isinstance(schema.get(kw), dict)}


def sub_schema(node: Any, definitions: Dict[str, Dict[str, Any]]) -> Any:
    """
    Standalone schema for a nested node: the node itself plus the root
    definitions blocks so "#/definitions/..." and "#/$defs/..." references
    keep resolving.
    """
    if not isinstance(node, dict):
        return node
    out = dict(node)
    for kw, defs in definitions.items():
        own = out.get(kw)
        out[kw] = {**own, **defs} if isinstance(own, dict) else defs
    return out


def _unescape(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def resolve_ref(schema: Schema, ref: str) -> Optional[Any]:
    """
    Resolve a local JSON pointer reference ("#/definitions/x") against schema.
    Remote references are not followed.
    """
    if not ref.startswith("#"):
        return None
    node: Any = schema
    pointer = ref[1:]
    if not pointer:
        return node
    for token in pointer.lstrip("/").split("/"):
        token = _unescape(token)
        if isinstance(node, dict) and token in node:
            node = node[token]
        elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
            node = node[int(token)]
        else:
            return None
    return node


def expand_schemas(schema: Any) -> Tuple[List[Any], str]:
    """
    Split a schema into the alternatives a merge should try, following a
    top-level $ref first. Returns (schemas, mode) where mode is one of
    "allOf", "anyOf" or "oneOf" (a plain schema is a single "oneOf").
    """
    if not isinstance(schema, dict):
        return [schema], "oneOf"
    defs = root_definitions(schema)
    ref = schema.get("$ref")
    if isinstance(ref, str) and ref:
        target = resolve_ref(schema, ref)
        if isinstance(target, dict):
            return expand_schemas(sub_schema(target, defs))
        rest = {k: v for k, v in schema.items() if k != "$ref"}
        return [rest], "oneOf"
    for mode in ("allOf", "anyOf", "oneOf"):
        items = schema.get(mode)
        if isinstance(items, list) and items:
            return [sub_schema(s, defs) for s in items if s is not None], mode
    return [schema], "oneOf"


# ---- built-in definitions injected into action/event schemas ----
def action_schema_definitions(defs: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    out = dict(defs or {})
    out["base.action"] = {
        "type": "object",
        "properties": {
            "priority": {"type": "integer", "minimum": 1, "maximum": 100},
            "fields": {"type": "array", "items": {"type": "string"}, "uniqueItems": True},
        },
        "additionalProperties": True,
        "required": ["priority", "fields"],
    }
    return out


def event_schema_definitions(defs: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    out = dict(defs or {})
    out["fields"] = {"type": "array", "items": {"type": "string"}, "uniqueItems": True}
    out["actions"] = {
        "type": "array",
        "items": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "module_name": {"type": "string"},
                "priority": {"type": "integer", "minimum": 1, "maximum": 100},
                "fields": {"$ref": "#/definitions/fields"},
            },
            "additionalProperties": False,
            "required": ["name", "module_name", "priority", "fields"],
        },
    }
    for event_type in EVENT_TYPES:
        out[f"types.{event_type}"] = {"type": "string", "default": event_type, "enum": [event_type]}
    out["events.atomic"] = {
        "type": "object",
        "properties": {
            "type": {"$ref": "#/definitions/types.atomic"},
            "actions": {"$ref": "#/definitions/actions"},
            "fields": {"$ref": "#/definitions/fields"},
        },
        "required": ["type", "actions", "fields"],
    }
    out["events.complex"] = {
        "type": "object",
        "properties": {
            "type": {"type": "string"},
            "actions": {"$ref": "#/definitions/actions"},
            "fields": {"$ref": "#/definitions/fields"},
            "seq": {
                "type": "array",
                "minItems": 1,
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "min_count": {"type": "integer", "minimum": 1},
                    },
                    "required": ["name", "min_count"],
                },
            },
            "group_by": {"type": "array", "minItems": 1, "uniqueItems": True, "items": {"type": "string"}},
            "max_count": {"type": "integer", "minimum": 0},
            "max_time": {"type": "integer", "minimum": 0},
        },
        "required": ["type", "actions", "fields", "seq", "group_by", "max_count", "max_time"],
    }
    for event_type, max_seq in (("aggregation", 1), ("correlation", 20)):
        out[f"events.{event_type}"] = {
            "allOf": [
                {"$ref": "#/definitions/events.complex"},
                {
                    "type": "object",
                    "properties": {
                        "type": {"$ref": f"#/definitions/types.{event_type}"},
                        "seq": {"type": "array", "maxItems": max_seq},
                    },
                    "required": ["type", "seq"],
                },
            ]
        }
    return out


def with_action_definitions(schema: Schema) -> Schema:
    out = copy.deepcopy(schema or {})
    out["definitions"] = action_schema_definitions(definitions_of(out))
    return out


def with_event_definitions(schema: Schema) -> Schema:
    out = copy.deepcopy(schema or {})
    out["definitions"] = event_schema_definitions(definitions_of(out))
    return out
