"""
Schema-guided merge of a user's current value into a new default value.

The default carries the *shape* (the new version's structure) and the current
value carries the *content* (what the user configured). Whatever part of the
current value still validates against the schema is kept; everything else is
taken from the default.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Protocol

from fleetmod.core.modules.schema import Schema, expand_schemas, is_valid, root_definitions, sub_schema


class MergeStrategy(Protocol):
    def __call__(self, current: Any, default: Any, schema: Schema) -> Any: ...


# JSON kinds; int and float are both "number", bool is not a number.
NULL, BOOLEAN, STRING, NUMBER, ARRAY, OBJECT, UNKNOWN = "null", "boolean", "string", "number", "array", "object", "unknown"


def json_kind(v: Any) -> str:
    if v is None:
        return NULL
    if isinstance(v, bool):
        return BOOLEAN
    if isinstance(v, str):
        return STRING
    if isinstance(v, (int, float)):
        return NUMBER
    if isinstance(v, (list, tuple)):
        return ARRAY
    if isinstance(v, dict):
        return OBJECT
    return UNKNOWN


def _is_simple(v: Any) -> bool:
    return json_kind(v) not in (ARRAY, OBJECT)


def _is_simple_array(items: List[Any]) -> bool:
    return all(_is_simple(i) for i in items)


def _is_mixed_array(items: List[Any]) -> bool:
    return len({json_kind(i) for i in items}) > 1


def merge_plain(current: Any, default: Any) -> Any:
    """
    Structural merge without a schema: keep the default's layout, fill it
    with current values where the JSON kinds agree.
    """
    kc, kd = json_kind(current), json_kind(default)
    if kc != kd:
        return default

    if kd in (BOOLEAN, STRING, NUMBER):
        return current

    if kd == ARRAY:
        if (
            _is_simple_array(current)
            and _is_simple_array(default)
            and not _is_mixed_array(current)
            and not _is_mixed_array(default)
        ):
            if current and default and json_kind(current[0]) == json_kind(default[0]):
                return current
            if not default:
                return current
            return default
        out: List[Any] = []
        for i, dv in enumerate(default):
            if i < len(current):
                out.append(merge_plain(current[i], dv))
            elif not _is_simple(dv):
                out.append(dv)
        return out

    if kd == OBJECT:
        return {k: (merge_plain(current[k], dv) if k in current else dv) for k, dv in default.items()}

    return default


class SchemaMerger:
    """
    Default merge strategy. Callable as merger(current, default, schema).

    Values are handled as plain JSON-like data (dict/list/str/number/bool/None).
    The result never aliases either input.
    """

    def __init__(self, draft: str = "draft7"):
        self.draft = draft

    def __call__(self, current: Any, default: Any, schema: Schema) -> Any:
        return copy.deepcopy(self.merge(current, default, schema))

    def merge(self, current: Any, default: Any, schema: Schema, force: bool = False) -> Any:
        if self._valid(current, schema):
            return current
        if force:
            return default

        kc, kd = json_kind(current), json_kind(default)
        if kc != kd:
            return default
        if kd == ARRAY:
            return self._merge_array(list(current), list(default), schema)
        if kd == OBJECT:
            return self._merge_object(current, default, schema)
        return self.merge(merge_plain(current, default), default, schema, force=True)

    def _valid(self, value: Any, schema: Any) -> bool:
        return is_valid(value, schema, draft=self.draft)

    # ---- arrays ----
    def _merge_array_items(self, current: List[Any], default: List[Any], schema: Schema) -> List[Any]:
        items_schema = sub_schema(schema["items"], root_definitions(schema))
        max_items = int(schema.get("maxItems") or 0)
        min_items = int(schema.get("minItems") or 0)

        out: List[Any] = []
        for i, cv in enumerate(current):
            if max_items and len(out) >= max_items:
                break
            if self._valid(cv, items_schema):
                out.append(cv)
            elif i < len(default):
                # try to repair the item from the default at the same position
                fixed = self.merge(cv, default[i], items_schema)
                if self._valid(fixed, items_schema):
                    out.append(fixed)

        # top up to minItems from the tail of the default
        i = len(default) - 1
        while i >= 0 and min_items and len(out) < min_items:
            if self._valid(default[i], items_schema):
                out.append(default[i])
            i -= 1
        return out

    def _merge_array(self, current: List[Any], default: List[Any], schema: Schema) -> Any:
        # an emptied list is either unset or removed on purpose; the default wins
        if not current:
            return default

        result: Any = current
        schemas, mode = expand_schemas(schema)
        only = len(schemas) == 1
        for sch in schemas:
            cur = result if isinstance(result, list) else []
            if not isinstance(sch, dict) or sch.get("items") is None:
                result = self.merge(merge_plain(result, default), default, sch, force=only)
            else:
                merged = self._merge_array_items(cur, default, sch)
                if not merged and default:
                    # nothing survived validation, the item format has changed
                    result = default
                else:
                    result = self.merge(merged, default, sch, force=only)
            if mode != "allOf":
                break
        return result

    # ---- objects ----
    def _add_required_keys(self, current: Dict[str, Any], default: Dict[str, Any], out: Dict[str, Any], schema: Schema) -> None:
        required = schema.get("required") or []
        props = schema.get("properties") or {}
        defs = root_definitions(schema)
        for k, dv in default.items():
            if k not in required:
                continue
            if k not in current:
                out[k] = dv
            elif k in props:
                key_schema = sub_schema(props[k], defs)
                if self._valid(current[k], key_schema):
                    out[k] = current[k]
                else:
                    out[k] = self.merge(current[k], dv, key_schema)
            else:
                out[k] = current[k]

    def _add_current_keys(self, current: Dict[str, Any], default: Dict[str, Any], out: Dict[str, Any], schema: Schema) -> None:
        props = schema.get("properties") or {}
        defs = root_definitions(schema)
        extra_allowed = schema.get("additionalProperties", True) is not False
        max_props = int(schema.get("maxProperties") or 0)
        for k, cv in current.items():
            if max_props and len(out) >= max_props:
                break
            if k in out:
                continue
            if k in props:
                key_schema = sub_schema(props[k], defs)
                if self._valid(cv, key_schema):
                    out[k] = cv
                elif k in default and self._valid(default[k], key_schema):
                    out[k] = self.merge(cv, default[k], key_schema)
                # otherwise the key is invalid and optional: dropped
            elif extra_allowed:
                out[k] = cv
            # keys no longer allowed by the schema are dropped

    def _add_default_keys(self, default: Dict[str, Any], out: Dict[str, Any], schema: Schema) -> None:
        min_props = int(schema.get("minProperties") or 0)
        for k, dv in default.items():
            if not min_props or len(out) >= min_props:
                break
            if k not in out:
                out[k] = dv

    def _merge_object(self, current: Dict[str, Any], default: Dict[str, Any], schema: Schema) -> Any:
        result: Any = current
        schemas, mode = expand_schemas(schema)
        only = len(schemas) == 1
        for sch in schemas:
            cur = result if isinstance(result, dict) else {}
            sch_dict: Dict[str, Any] = sch if isinstance(sch, dict) else {}
            out: Dict[str, Any] = {}
            self._add_required_keys(cur, default, out, sch_dict)
            self._add_current_keys(cur, default, out, sch_dict)
            self._add_default_keys(default, out, sch_dict)
            result = self.merge(out, default, sch, force=only)
            if mode != "allOf":
                break
        return result


_default_merger: Optional[SchemaMerger] = None


def default_merger() -> SchemaMerger:
    global _default_merger
    if _default_merger is None:
        _default_merger = SchemaMerger()
    return _default_merger
