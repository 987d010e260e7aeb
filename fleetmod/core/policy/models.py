from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny

from fleetmod.core.modules.models import DependencyItem


class Agent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int = Field(default=0, ge=0)
    hash: str = ""
    version: str = ""
    group_id: int = Field(default=0, ge=0)


# Verdicts. Each scope adds its stamp on top of the previous one, so the wire
# form stays flat: {"status", "module_name", ..., "source_module_name", "policy_id"}.
class ModuleDependency(DependencyItem):
    status: bool = False


class PolicyDependency(ModuleDependency):
    source_module_name: str = ""


class GroupDependency(PolicyDependency):
    policy_id: int = Field(default=0, ge=0)


class AgentDependency(GroupDependency):
    pass


class ConsistencyReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    consistent: bool = True
    dependencies: List[SerializeAsAny[PolicyDependency]] = Field(default_factory=list)

    def unsatisfied(self) -> List[PolicyDependency]:
        return [d for d in self.dependencies if not d.status]
