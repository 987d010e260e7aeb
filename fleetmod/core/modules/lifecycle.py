from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from fleetmod.core.errors import FleetError, ReconcileError
from fleetmod.core.modules.merge import MergeStrategy
from fleetmod.core.modules.models import ModuleDefinition, ModuleInstance
from fleetmod.core.modules.reconciler import reconcile
from fleetmod.core.modules.secure import SecureParamCrypto, decrypt_instance, encrypt_instance, validate_encryption


def needs_upgrade(instance: ModuleInstance, definition: ModuleDefinition) -> bool:
    return (
        instance.info.name == definition.info.name
        and str(instance.info.version) == str(definition.info.version)
        and instance.last_module_update != definition.last_update
    )


def upgrade_policy_modules(
    instances: Iterable[ModuleInstance],
    definition: ModuleDefinition,
    crypto: SecureParamCrypto,
    *,
    files_checksums: Optional[Dict[str, Dict[str, str]]] = None,
    merger: Optional[MergeStrategy] = None,
    logger: Any = None,
) -> List[ModuleInstance]:
    """
    Re-apply an edited definition to every policy instance of the same name
    and version that has not seen this edit yet.

    Returned instances are validated and re-encrypted, ready to persist. The
    first failure aborts the run.
    """
    updated: List[ModuleInstance] = []
    for inst in instances:
        if not needs_upgrade(inst, definition):
            continue
        try:
            res = reconcile(inst, definition, crypto, merger=merger, logger=logger)
            if files_checksums is not None:
                res.files_checksums = dict(files_checksums)
            encrypt_instance(crypto, res)
            validate_encryption(crypto, res)
        except FleetError as e:
            if logger:
                logger.error(f"[upgrade] {definition.info.name} in policy {inst.policy_id}: {e.code}")
            raise ReconcileError(
                f"Failed to upgrade module in policy {inst.policy_id}.",
                module=definition.info.name,
                policy_id=inst.policy_id,
                cause=e.code,
            ) from e
        updated.append(res)

    if logger:
        logger.info(
            f"[upgrade] {definition.info.name}@{definition.info.version}: {len(updated)} policy module(s) updated."
        )
    return updated


def detach_module(instances: Iterable[ModuleInstance], module_name: str) -> List[ModuleInstance]:
    """
    Copies of `instances` with every event action and dynamic dependency
    targeting `module_name` removed. Used when that module leaves a policy.
    """
    out: List[ModuleInstance] = []
    for inst in instances:
        res = inst.model_copy(deep=True)
        for event in res.current_event_config.values():
            event.actions = [a for a in event.actions if a.module_name != module_name]
        res.dynamic_dependencies = [d for d in res.dynamic_dependencies if d.module_name != module_name]
        out.append(res)
    return out


@dataclass
class ModuleChanges:
    id: bool = False
    name: bool = False
    system: bool = False
    template: bool = False
    version: bool = False
    policy_id: bool = False
    join_date: bool = False
    last_module_update: bool = False
    state: bool = False
    secure_default_config: bool = False
    secure_current_config: bool = False

    def identity_changed(self) -> bool:
        return any(v for k, v in asdict(self).items() if not k.startswith("secure_"))

    def changed(self) -> List[str]:
        return [k for k, v in asdict(self).items() if v]


def compare_module_changes(
    module_in: ModuleInstance,
    module_db: ModuleInstance,
    crypto: SecureParamCrypto,
) -> ModuleChanges:
    """
    Report which fields a client may not change differ between an incoming
    instance and the stored one. Secure sets are compared in plaintext, on
    copies; the inputs keep their encryption state.
    """
    a = decrypt_instance(crypto, module_in.model_copy(deep=True))
    b = decrypt_instance(crypto, module_db.model_copy(deep=True))

    def _plain(params: Any) -> Dict[str, Any]:
        return {k: p.model_dump() for k, p in params.items()}

    return ModuleChanges(
        id=a.id != b.id,
        name=a.info.name != b.info.name,
        system=a.info.system != b.info.system,
        template=a.info.template != b.info.template,
        version=str(a.info.version) != str(b.info.version),
        policy_id=a.policy_id != b.policy_id,
        join_date=a.join_date != b.join_date,
        last_module_update=a.last_module_update != b.last_module_update,
        state=a.state != b.state,
        secure_default_config=_plain(a.secure_default_config) != _plain(b.secure_default_config),
        secure_current_config=_plain(a.secure_current_config) != _plain(b.secure_current_config),
    )
