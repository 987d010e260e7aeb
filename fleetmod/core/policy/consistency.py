"""
Dependency consistency of the modules joined to a policy, a group or an agent.

A pure evaluation over already loaded instances. Nothing here raises: a
dependency that cannot be resolved is reported as unsatisfied.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from fleetmod.core.modules.models import DependencyItem, DependencyType, ModuleInstance
from fleetmod.core.policy.models import (
    Agent,
    AgentDependency,
    ConsistencyReport,
    GroupDependency,
    PolicyDependency,
)
from fleetmod.core.semver import is_satisfied


THIS_MODULE = "this"

_MODULE_DEPENDENCY_TYPES = {
    DependencyType.to_receive_data,
    DependencyType.to_send_data,
    DependencyType.to_make_action,
}


def covers_os(provider: Dict[str, List[str]], consumer: Dict[str, List[str]]) -> bool:
    """
    True if provider runs on every OS family of consumer, with at least the
    same architectures.
    """
    for family, archs in consumer.items():
        if family not in provider:
            return False
        if not set(archs) <= set(provider[family]):
            return False
    return True


def dependency_satisfied(module: ModuleInstance, dep: DependencyItem, modules: Sequence[ModuleInstance]) -> bool:
    if dep.type not in _MODULE_DEPENDENCY_TYPES:
        return False
    for other in modules:
        if other is module or other.info.name != dep.module_name:
            continue
        if not covers_os(other.info.os, module.info.os):
            continue
        if is_satisfied(str(other.info.version), dep.min_module_version):
            return True
    return False


def policy_consistency(modules: Sequence[ModuleInstance], *, this_name: str = THIS_MODULE) -> ConsistencyReport:
    report = ConsistencyReport()
    for mod in modules:
        for dep in mod.dependencies():
            if dep.module_name == this_name or dep.type == DependencyType.agent_version:
                continue
            ok = dependency_satisfied(mod, dep, modules)
            report.consistent = report.consistent and ok
            report.dependencies.append(
                PolicyDependency(status=ok, source_module_name=mod.info.name, **dep.model_dump())
            )
    return report


def _policy_of(modules: Sequence[ModuleInstance], name: str) -> int:
    for mod in modules:
        if mod.info.name == name:
            return mod.policy_id
    return 0


def group_consistency(modules: Sequence[ModuleInstance], *, this_name: str = THIS_MODULE) -> ConsistencyReport:
    report = policy_consistency(modules, this_name=this_name)
    report.dependencies = [
        GroupDependency(policy_id=_policy_of(modules, d.source_module_name), **d.model_dump())
        for d in report.dependencies
    ]
    return report


def agent_consistency(
    modules: Sequence[ModuleInstance],
    agent: Optional[Agent],
    *,
    this_name: str = THIS_MODULE,
) -> ConsistencyReport:
    """
    Group verdicts plus one verdict per agent_version dependency, checked
    against the version the agent reports.
    """
    report = group_consistency(modules, this_name=this_name)
    report.dependencies = [AgentDependency(**d.model_dump()) for d in report.dependencies]

    agent_version = agent.version if agent is not None else ""
    for mod in modules:
        for dep in mod.dependencies():
            if dep.type != DependencyType.agent_version:
                continue
            ok = is_satisfied(agent_version, dep.min_agent_version)
            report.consistent = report.consistent and ok
            report.dependencies.append(
                AgentDependency(
                    status=ok,
                    source_module_name=mod.info.name,
                    policy_id=mod.policy_id,
                    **dep.model_dump(),
                )
            )
    return report
