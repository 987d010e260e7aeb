"""
Instance reconciliation: carry a customized module instance over to a new
module definition.

Each config kind is reconciled by its own function returning (value, ok).
`ok` is False when the merged value failed validation and the definition's
default was used instead; that fallback happens per kind, so one broken
sub-document never blocks the whole upgrade.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from fleetmod.core.errors import ReconcileError
from fleetmod.core.modules.merge import MergeStrategy, default_merger
from fleetmod.core.modules.models import (
    ActionConfig,
    ActionConfigItem,
    DependencyItem,
    EventConfig,
    EventConfigAction,
    EventConfigItem,
    ModuleDefinition,
    ModuleInstance,
    SecureConfig,
    SecureParameter,
)
from fleetmod.core.modules.schema import (
    Schema,
    is_valid,
    root_definitions,
    sub_schema,
    with_action_definitions,
    with_event_definitions,
)
from fleetmod.core.modules.secure import SecureParamCrypto, decrypt_definition, decrypt_instance


def _try_merge(merger: MergeStrategy, current: Any, default: Any, schema: Schema) -> Tuple[Any, bool]:
    try:
        return merger(current, default, schema), True
    except Exception:  # noqa: BLE001
        # a failing merge strategy is handled like a failed validation
        return None, False


def _draft_of(merger: MergeStrategy) -> str:
    return getattr(merger, "draft", "draft7")


def clear_map_keys(current: Dict[str, Any], default: Dict[str, Any]) -> Dict[str, Any]:
    """
    Result has exactly the default's keys; values come from current where present.
    """
    return {k: copy.deepcopy(current[k] if k in current else dv) for k, dv in default.items()}


def filter_actions_by_fields(actions: Iterable[EventConfigAction], fields: List[str]) -> List[EventConfigAction]:
    """
    Keep the actions whose required fields are all produced by the event.
    """
    have = set(fields)
    return [a for a in actions if set(a.fields) <= have]


# ---- per-kind reconciliation ----
def reconcile_config(
    current: Dict[str, Any],
    default: Dict[str, Any],
    schema: Schema,
    merger: MergeStrategy,
) -> Tuple[Dict[str, Any], bool]:
    union = copy.deepcopy(current)
    for k, v in default.items():
        if k not in union:
            union[k] = copy.deepcopy(v)

    merged, ok = _try_merge(merger, union, default, schema)
    if not ok or not isinstance(merged, dict):
        return copy.deepcopy(default), False
    # top-level keys follow the new default exactly
    merged = clear_map_keys(merged, default)
    if not is_valid(merged, schema, draft=_draft_of(merger)):
        return copy.deepcopy(default), False
    return merged, True


def reconcile_secure_config(
    current: SecureConfig,
    default: SecureConfig,
    schema: Schema,
    merger: MergeStrategy,
) -> Tuple[SecureConfig, bool]:
    cur_wire = {k: p.model_dump() for k, p in current.items()}
    def_wire = {k: p.model_dump() for k, p in default.items()}
    merged, ok = reconcile_config(cur_wire, def_wire, schema, merger)
    if not ok:
        return copy.deepcopy(default), False
    try:
        return {k: SecureParameter.model_validate(v) for k, v in merged.items()}, True
    except ValidationError:
        return copy.deepcopy(default), False


def _action_wire(actions: ActionConfig) -> Dict[str, Any]:
    return {k: a.model_dump(mode="json") for k, a in actions.items()}


def _event_wire(events: EventConfig) -> Dict[str, Any]:
    return {k: e.model_dump(mode="json") for k, e in events.items()}


def reconcile_action_config(
    current: ActionConfig,
    default: ActionConfig,
    schema: Schema,
    merger: MergeStrategy,
) -> Tuple[ActionConfig, bool]:
    result: ActionConfig = {}
    for name, dflt in default.items():
        cur = current.get(name)
        if cur is None:
            result[name] = dflt.model_copy(deep=True)
            continue
        result[name] = ActionConfigItem(
            priority=dflt.priority,
            fields=list(dflt.fields),
            config=clear_map_keys(cur.config, dflt.config),
        )

    full_schema = with_action_definitions(schema)
    def_wire = _action_wire(default)
    merged, ok = _try_merge(merger, _action_wire(result), def_wire, full_schema)
    if not ok or not isinstance(merged, dict):
        return copy.deepcopy(default), False
    merged = clear_map_keys(merged, def_wire)
    if not is_valid(merged, full_schema, draft=_draft_of(merger)):
        return copy.deepcopy(default), False
    try:
        return {k: ActionConfigItem.model_validate(v) for k, v in merged.items()}, True
    except ValidationError:
        return copy.deepcopy(default), False


def _merge_event_item(
    current: EventConfigItem,
    default: EventConfigItem,
    schema: Schema,
    merger: MergeStrategy,
) -> EventConfigItem:
    merged, ok = _try_merge(merger, current.model_dump(mode="json"), default.model_dump(mode="json"), schema)
    if not ok:
        return default.model_copy(deep=True)
    try:
        return EventConfigItem.model_validate(merged)
    except ValidationError:
        return default.model_copy(deep=True)


def reconcile_event_config(
    current: EventConfig,
    default: EventConfig,
    schema: Schema,
    merger: MergeStrategy,
) -> Tuple[EventConfig, bool]:
    full_schema = with_event_definitions(schema)
    defs = root_definitions(full_schema)
    props = full_schema.get("properties") or {}

    result: EventConfig = {}
    for name, dflt in default.items():
        cur = current.get(name)
        if cur is None:
            result[name] = dflt.model_copy(deep=True)
            continue
        item = cur.model_copy(deep=True)
        item.fields = list(dflt.fields)
        item.actions = filter_actions_by_fields(item.actions, item.fields)
        item.config = clear_map_keys(cur.config, dflt.config)
        if name in props:
            item = _merge_event_item(item, dflt, sub_schema(props[name], defs), merger)
        result[name] = item

    if not is_valid(_event_wire(result), full_schema, draft=_draft_of(merger)):
        return copy.deepcopy(default), False
    return result, True


def prune_dynamic_dependencies(deps: Iterable[DependencyItem], events: EventConfig) -> List[DependencyItem]:
    """
    Keep a dynamic dependency only while some event action still calls its module.
    """
    called = {a.module_name for e in events.values() for a in e.actions}
    return [d.model_copy(deep=True) for d in deps if d.module_name in called]


# ---- entry point ----
def reconcile(
    instance: Optional[ModuleInstance],
    definition: Optional[ModuleDefinition],
    crypto: SecureParamCrypto,
    *,
    merger: Optional[MergeStrategy] = None,
    logger: Any = None,
) -> ModuleInstance:
    """
    Build the new state of `instance` for `definition`.

    Inputs are never mutated. Secure values come back in plaintext; the caller
    re-encrypts before persisting. Raises DecryptFailedError when a secure set
    cannot be decrypted and ReconcileError for unusable inputs or an invalid
    result.
    """
    if instance is None:
        raise ReconcileError("Module instance is missing.")
    if definition is None:
        raise ReconcileError("Module definition is missing.")
    if instance.info.name != definition.info.name:
        raise ReconcileError(
            "Module instance and definition belong to different modules.",
            instance=instance.info.name,
            definition=definition.info.name,
        )

    merger = merger or default_merger()
    old = instance.model_copy(deep=True)
    new_def = definition.model_copy(deep=True)
    decrypt_instance(crypto, old)
    decrypt_definition(crypto, new_def)

    result = new_def.to_instance()
    result.id = old.id
    result.policy_id = old.policy_id
    result.status = old.status
    result.join_date = old.join_date
    result.last_update = old.last_update

    module = f"{new_def.info.name}@{new_def.info.version}"

    def _fallback(kind: str, ok: bool) -> None:
        if not ok and logger:
            logger.warning(f"[reconcile] {module}: {kind} did not fit the new schema, using defaults.")

    result.current_config, ok = reconcile_config(
        old.current_config, new_def.default_config, new_def.config_schema, merger
    )
    _fallback("config", ok)

    result.secure_current_config, ok = reconcile_secure_config(
        old.secure_current_config, new_def.secure_default_config, new_def.secure_config_schema, merger
    )
    _fallback("secure config", ok)

    result.current_action_config, ok = reconcile_action_config(
        old.current_action_config, new_def.default_action_config, new_def.action_config_schema, merger
    )
    _fallback("action config", ok)

    result.current_event_config, ok = reconcile_event_config(
        old.current_event_config, new_def.default_event_config, new_def.event_config_schema, merger
    )
    _fallback("event config", ok)

    result.dynamic_dependencies = prune_dynamic_dependencies(old.dynamic_dependencies, result.current_event_config)

    try:
        return result.validate_state()
    except ValidationError as e:
        raise ReconcileError(
            "Reconciled module instance is invalid.",
            module=module,
            errors=[err.get("msg") for err in e.errors()],
        ) from e
