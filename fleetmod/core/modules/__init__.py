"""
Module definitions, policy instances and their lifecycle.

Definitions are versioned templates; instances carry the user's config for one
policy. Upgrading an instance to a new definition goes through `reconcile`,
which keeps every customization the new schemas still accept.
"""

from fleetmod.core.modules.lifecycle import ModuleChanges, compare_module_changes, detach_module, upgrade_policy_modules
from fleetmod.core.modules.models import ModuleDefinition, ModuleInstance
from fleetmod.core.modules.reconciler import reconcile
from fleetmod.core.modules.secure import SecureParamCrypto

__all__ = [
    "ModuleChanges",
    "ModuleDefinition",
    "ModuleInstance",
    "SecureParamCrypto",
    "compare_module_changes",
    "detach_module",
    "reconcile",
    "upgrade_policy_modules",
]
