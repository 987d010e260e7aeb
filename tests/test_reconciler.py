from __future__ import annotations

from datetime import datetime, timezone

import pytest

from fleetmod.core.errors import DecryptFailedError, ReconcileError
from fleetmod.core.modules.models import ModuleStatus
from fleetmod.core.modules.reconciler import (
    clear_map_keys,
    filter_actions_by_fields,
    reconcile,
    reconcile_config,
)
from fleetmod.core.modules.merge import SchemaMerger
from fleetmod.core.modules.models import EventConfigAction
from fleetmod.core.modules.secure import encrypt_definition, encrypt_instance

from .helpers.fakes import ExplodingMerger
from .helpers.module_builders import build_definition, build_instance


NEW_UPDATE = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _action(name, module_name, fields, priority=10):
    return {"name": name, "module_name": module_name, "priority": priority, "fields": fields}


def _dep(module_name):
    return {"module_name": module_name, "type": "to_make_action"}


def _old_definition():
    return build_definition(
        "scanner",
        "1.0.0",
        default_config={"level": 1, "mode": "fast", "gone": 1},
        secure_default_config={
            "token": {"server_only": True, "value": "old-default"},
            "gone": {"server_only": True, "value": "x"},
        },
        default_action_config={"scan": {"priority": 9, "fields": ["a", "b"], "x": 1, "stale": 2}},
        default_event_config={
            "ev_login": {"type": "atomic", "fields": ["ip", "user", "host"], "actions": []},
            "ev_stale": {"type": "atomic", "fields": [], "actions": []},
        },
    )


def _new_definition(**overrides):
    data = dict(
        config_schema={
            "type": "object",
            "properties": {
                "level": {"type": "integer", "minimum": 0},
                "mode": {"type": "string", "enum": ["fast", "full"]},
                "new": {"type": "boolean"},
            },
            "required": ["level", "mode", "new"],
            "additionalProperties": False,
        },
        default_config={"level": 1, "mode": "fast", "new": True},
        secure_default_config={
            "token": {"server_only": True, "value": "new-default"},
            "extra": {"server_only": False, "value": 5},
        },
        default_action_config={"scan": {"priority": 5, "fields": ["a"], "x": 0}},
        default_event_config={
            "ev_login": {
                "type": "atomic",
                "fields": ["ip", "user"],
                "actions": [_action("block", "firewall", ["ip"])],
                "threshold": 3,
            },
            "ev_new": {"type": "atomic", "fields": [], "actions": []},
        },
        last_update=NEW_UPDATE,
    )
    data.update(overrides)
    return build_definition("scanner", "1.1.0", **data)


def _customized_instance():
    return build_instance(
        _old_definition(),
        id=42,
        policy_id=7,
        status="inactive",
        last_update=datetime(2024, 3, 1, tzinfo=timezone.utc),
        current_config={"level": 7, "mode": "turbo", "gone": 1},
        secure_current_config={
            "token": {"server_only": True, "value": "user-set"},
            "gone": {"server_only": True, "value": "x"},
        },
        current_action_config={"scan": {"priority": 9, "fields": ["a", "b"], "config": {"x": 1, "stale": 2}}},
        current_event_config={
            "ev_login": {
                "type": "atomic",
                "fields": ["ip", "user", "host"],
                "actions": [
                    _action("block", "firewall", ["ip"], priority=50),
                    _action("notify", "mailer", ["host"]),
                ],
                "threshold": 7,
                "old_key": 1,
            },
            "ev_stale": {"type": "atomic", "fields": [], "actions": [_action("x", "legacy", [])]},
        },
        dynamic_dependencies=[_dep("firewall"), _dep("mailer"), _dep("legacy")],
    )


@pytest.fixture
def encrypted_pair(crypto):
    inst = encrypt_instance(crypto, _customized_instance())
    new_def = encrypt_definition(crypto, _new_definition())
    return inst, new_def


def test_action_priority_and_fields_follow_default_and_stale_keys_drop(crypto):
    new_def = _new_definition()
    res = reconcile(_customized_instance(), new_def, crypto)
    scan = res.current_action_config["scan"]
    assert scan.priority == 5
    assert scan.fields == ["a"]
    assert scan.config == {"x": 1}
    assert scan.model_dump() == {"priority": 5, "fields": ["a"], "x": 1}


def test_plain_config_keeps_valid_values_and_repairs_invalid(crypto):
    res = reconcile(_customized_instance(), _new_definition(), crypto)
    assert res.current_config == {"level": 7, "mode": "fast", "new": True}


def test_secure_config_is_merged_in_plaintext(crypto, encrypted_pair):
    inst, new_def = encrypted_pair
    res = reconcile(inst, new_def, crypto)
    assert res.secure_current_config["token"].value == "user-set"
    assert res.secure_current_config["extra"].value == 5
    assert "gone" not in res.secure_current_config
    assert res.secure_default_config["token"].value == "new-default"
    assert not crypto.is_encrypted(res.secure_current_config)


def test_event_config_fields_actions_and_sub_config(crypto):
    res = reconcile(_customized_instance(), _new_definition(), crypto)
    ev = res.current_event_config["ev_login"]
    assert ev.fields == ["ip", "user"]
    # notify needs "host", which the event no longer produces
    assert [a.name for a in ev.actions] == ["block"]
    assert ev.actions[0].priority == 50
    assert ev.config == {"threshold": 7}
    assert "ev_new" in res.current_event_config
    assert "ev_stale" not in res.current_event_config


def test_event_item_is_merged_against_its_sub_schema(crypto):
    schema = {
        "type": "object",
        "properties": {
            "ev_login": {
                "allOf": [
                    {"$ref": "#/definitions/events.atomic"},
                    {
                        "type": "object",
                        "properties": {"threshold": {"type": "integer", "maximum": 10}},
                        "required": ["threshold"],
                    },
                ]
            }
        },
        "required": ["ev_login"],
    }
    inst = _customized_instance()
    inst.current_event_config["ev_login"].config["threshold"] = 70
    res = reconcile(inst, _new_definition(event_config_schema=schema), crypto)
    ev = res.current_event_config["ev_login"]
    assert ev.config == {"threshold": 3}
    assert ev.actions[0].priority == 50


def test_key_sets_follow_new_default(crypto):
    new_def = _new_definition()
    res = reconcile(_customized_instance(), new_def, crypto)
    assert set(res.current_config) == set(new_def.default_config)
    assert set(res.current_action_config) == set(new_def.default_action_config)
    assert set(res.current_event_config) == set(new_def.default_event_config)


def test_dynamic_dependencies_follow_event_actions(crypto):
    inst = _customized_instance()
    res = reconcile(inst, _new_definition(), crypto)
    called = {a.module_name for e in res.current_event_config.values() for a in e.actions}
    assert [d.module_name for d in res.dynamic_dependencies] == ["firewall"]
    for dep in inst.dynamic_dependencies:
        assert (dep in res.dynamic_dependencies) == (dep.module_name in called)


def test_identity_fields_are_restored(crypto):
    res = reconcile(_customized_instance(), _new_definition(), crypto)
    assert res.id == 42
    assert res.policy_id == 7
    assert res.status == ModuleStatus.inactive
    assert res.join_date is not None
    assert res.last_update == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert res.last_module_update == NEW_UPDATE
    assert str(res.info.version) == "1.1.0"


def test_reconcile_is_idempotent(crypto, encrypted_pair):
    inst, new_def = encrypted_pair
    first = reconcile(inst, new_def, crypto)
    second = reconcile(first, new_def, crypto)
    assert second.model_dump() == first.model_dump()

    again = reconcile(encrypt_instance(crypto, first.model_copy(deep=True)), new_def, crypto)
    assert again.model_dump() == first.model_dump()


def test_inputs_are_not_mutated(crypto, encrypted_pair):
    inst, new_def = encrypted_pair
    inst_before, def_before = inst.model_dump(), new_def.model_dump()
    reconcile(inst, new_def, crypto)
    assert inst.model_dump() == inst_before
    assert new_def.model_dump() == def_before


def test_decrypt_failure_aborts(crypto, other_crypto):
    inst = encrypt_instance(other_crypto, _customized_instance())
    with pytest.raises(DecryptFailedError):
        reconcile(inst, _new_definition(), crypto)


def test_failing_merge_falls_back_per_kind(crypto, logger):
    new_def = _new_definition()
    res = reconcile(_customized_instance(), new_def, crypto, merger=ExplodingMerger(), logger=logger)
    assert res.current_config == new_def.default_config
    assert res.current_action_config["scan"].model_dump() == new_def.default_action_config["scan"].model_dump()
    warnings = logger.messages("WARNING")
    assert any("scanner@1.1.0" in w and "action config" in w for w in warnings)
    assert all("user-set" not in w for w in warnings)


def test_config_that_cannot_validate_uses_default(crypto, logger):
    new_def = _new_definition(
        config_schema={"type": "object", "required": ["must"]},
        default_config={"a": 1},
    )
    inst = build_instance(new_def, current_config={"a": 5})
    res = reconcile(inst, new_def, crypto, logger=logger)
    assert res.current_config == {"a": 1}
    assert any(": config did not fit" in w for w in logger.messages("WARNING"))


def test_caller_errors(crypto):
    new_def = _new_definition()
    with pytest.raises(ReconcileError):
        reconcile(None, new_def, crypto)
    with pytest.raises(ReconcileError):
        reconcile(_customized_instance(), None, crypto)
    other = build_instance(build_definition("collector"))
    with pytest.raises(ReconcileError) as ei:
        reconcile(other, new_def, crypto)
    assert ei.value.context == {"instance": "collector", "definition": "scanner"}


def test_invalid_result_is_an_error(crypto):
    broken = _customized_instance().model_copy(update={"join_date": None})
    with pytest.raises(ReconcileError):
        reconcile(broken, _new_definition(), crypto)


def test_clear_map_keys_and_action_filter():
    assert clear_map_keys({"x": 1, "stale": 2}, {"x": 0, "y": 9}) == {"x": 1, "y": 9}
    acts = [
        EventConfigAction(name="a", module_name="m", priority=1, fields=["ip"]),
        EventConfigAction(name="b", module_name="m", priority=1, fields=["ip", "host"]),
        EventConfigAction(name="c", module_name="m", priority=1, fields=[]),
    ]
    assert [a.name for a in filter_actions_by_fields(acts, ["ip"])] == ["a", "c"]


def test_reconcile_config_reports_fallback():
    schema = {"type": "object", "properties": {"a": {"type": "integer"}}, "additionalProperties": False}
    value, ok = reconcile_config({"a": 2, "b": 1}, {"a": 1}, schema, SchemaMerger())
    assert (value, ok) == ({"a": 2}, True)
    value, ok = reconcile_config({"a": 2}, {"a": 1}, schema, ExplodingMerger())
    assert (value, ok) == ({"a": 1}, False)


def test_reconcile_config_with_2020_defs_repairs_only_the_bad_key():
    schema = {
        "$defs": {"level": {"type": "integer", "minimum": 1}},
        "type": "object",
        "properties": {"level": {"$ref": "#/$defs/level"}, "mode": {"enum": ["a", "b"]}},
    }
    merged, ok = reconcile_config(
        {"level": 7, "mode": "zzz"}, {"level": 1, "mode": "a"}, schema, SchemaMerger(draft="draft2020-12")
    )
    assert ok is True
    assert merged == {"level": 7, "mode": "a"}
