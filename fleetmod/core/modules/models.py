"""
Module definition/instance models.

A definition is the immutable template of one module version; an instance is
that template attached to a policy together with the user's "current" config.
Action and event items carry a free-form sub-config which is flat on the wire
(keys sit next to "priority"/"fields") and nested under `.config` in memory.
"""

from __future__ import annotations

import copy
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_serializer, model_validator


OS_FAMILIES = {"windows", "linux", "darwin"}
OS_ARCHS = {"386", "amd64", "arm64"}

_SOLID = re.compile(r"[a-zA-Z0-9_.-]+")


def _split_flat(data: Any, known: Iterable[str]) -> Any:
    if not isinstance(data, dict):
        return data
    known = set(known)
    out: Dict[str, Any] = {k: v for k, v in data.items() if k in known}
    cfg: Dict[str, Any] = {}
    nested = data.get("config")
    if isinstance(nested, dict):
        cfg.update(nested)
    for k, v in data.items():
        if k in known or (k == "config" and isinstance(nested, dict)):
            continue
        cfg[k] = v
    out["config"] = cfg
    return out


def _unique(v: List[str], what: str) -> List[str]:
    if len(set(v)) != len(v):
        raise ValueError(f"{what} must be unique")
    return v


class ModuleTemplate(str, Enum):
    generic = "generic"
    empty = "empty"
    collector = "collector"
    detector = "detector"
    responder = "responder"
    custom = "custom"


class ModuleState(str, Enum):
    draft = "draft"
    release = "release"


class ModuleStatus(str, Enum):
    joined = "joined"
    inactive = "inactive"


class DependencyType(str, Enum):
    to_receive_data = "to_receive_data"
    to_send_data = "to_send_data"
    to_make_action = "to_make_action"
    agent_version = "agent_version"


class EventType(str, Enum):
    atomic = "atomic"
    aggregation = "aggregation"
    correlation = "correlation"


class SemVersion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    major: int = Field(default=0, ge=0)
    minor: int = Field(default=0, ge=0)
    patch: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, v: Any) -> Any:
        if isinstance(v, str):
            parts = (v.strip().split("-")[0].split(".") + ["0", "0", "0"])[:3]
            try:
                return {"major": int(parts[0]), "minor": int(parts[1]), "patch": int(parts[2])}
            except ValueError as e:
                raise ValueError(f"invalid version {v!r}") from e
        return v

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class ModuleInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    template: ModuleTemplate = ModuleTemplate.generic
    version: SemVersion = Field(default_factory=SemVersion)
    os: Dict[str, List[str]]
    system: bool = False
    actions: List[str] = Field(default_factory=list)
    events: List[str] = Field(default_factory=list)
    fields: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name_solid(cls, v: str) -> str:
        if not _SOLID.fullmatch(v):
            raise ValueError("module name contains invalid characters")
        return v

    @field_validator("os")
    @classmethod
    def _os_known(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        if not v:
            raise ValueError("at least one OS family is required")
        for family, archs in v.items():
            if family not in OS_FAMILIES:
                raise ValueError(f"unknown OS family {family!r}")
            if not archs:
                raise ValueError(f"OS family {family!r} has no architectures")
            _unique(archs, f"architectures of {family}")
            for arch in archs:
                if arch not in OS_ARCHS:
                    raise ValueError(f"unknown architecture {arch!r}")
        return v


class SecureParameter(BaseModel):
    model_config = ConfigDict(extra="forbid")

    server_only: bool
    value: Any


class DependencyItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    module_name: str = ""
    min_module_version: str = ""
    min_agent_version: str = ""
    type: DependencyType

    @model_validator(mode="after")
    def _module_name_required(self) -> "DependencyItem":
        if self.type != DependencyType.agent_version and not self.module_name:
            raise ValueError("module_name is required unless type is agent_version")
        return self


class ActionConfigItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    priority: int = Field(ge=1, le=100)
    fields: List[str] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _split(cls, data: Any) -> Any:
        return _split_flat(data, ("priority", "fields"))

    @field_validator("fields")
    @classmethod
    def _fields_unique(cls, v: List[str]) -> List[str]:
        return _unique(v, "fields")

    @model_serializer(mode="wrap")
    def _flatten(self, handler: Any) -> Dict[str, Any]:
        data = handler(self)
        out = dict(data.pop("config", None) or {})
        out.update(data)
        return out


class EventConfigAction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    module_name: str = Field(min_length=1)
    priority: int = Field(ge=1, le=100)
    fields: List[str] = Field(default_factory=list)

    @field_validator("fields")
    @classmethod
    def _fields_unique(cls, v: List[str]) -> List[str]:
        return _unique(v, "fields")


class EventConfigSeq(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    min_count: int = Field(ge=1)


_COMPLEX_KEYS = ("seq", "group_by", "max_count", "max_time")


class EventConfigItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: EventType
    fields: List[str] = Field(default_factory=list)
    actions: List[EventConfigAction] = Field(default_factory=list)
    seq: List[EventConfigSeq] = Field(default_factory=list)
    group_by: List[str] = Field(default_factory=list)
    max_count: int = Field(default=0, ge=0, le=10_000_000)
    max_time: int = Field(default=0, ge=0, le=10_000_000)
    config: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _split(cls, data: Any) -> Any:
        data = _split_flat(data, ("type", "fields", "actions") + _COMPLEX_KEYS)
        if isinstance(data, dict):
            # complex events may carry explicit nulls on the wire
            for k in ("seq", "group_by"):
                if k in data and data[k] is None:
                    data[k] = []
        return data

    @field_validator("fields", "group_by")
    @classmethod
    def _lists_unique(cls, v: List[str], info: ValidationInfo) -> List[str]:
        return _unique(v, str(info.field_name))

    @model_serializer(mode="wrap")
    def _flatten(self, handler: Any) -> Dict[str, Any]:
        data = handler(self)
        out = dict(data.pop("config", None) or {})
        out.update(data)
        if self.type == EventType.atomic:
            for k in _COMPLEX_KEYS:
                out.pop(k, None)
        return out


SecureConfig = Dict[str, SecureParameter]
ActionConfig = Dict[str, ActionConfigItem]
EventConfig = Dict[str, EventConfigItem]


class ModuleDefinition(BaseModel):
    """
    One released (or draft) module version. Immutable once released: a new
    version is a new definition.
    """

    model_config = ConfigDict(extra="forbid")

    id: int = Field(default=0, ge=0)
    tenant_id: int = Field(default=0, ge=0)
    config_schema: Dict[str, Any] = Field(default_factory=dict)
    default_config: Dict[str, Any] = Field(default_factory=dict)
    secure_config_schema: Dict[str, Any] = Field(default_factory=dict)
    secure_default_config: SecureConfig = Field(default_factory=dict)
    static_dependencies: List[DependencyItem] = Field(default_factory=list)
    fields_schema: Dict[str, Any] = Field(default_factory=dict)
    action_config_schema: Dict[str, Any] = Field(default_factory=dict)
    event_config_schema: Dict[str, Any] = Field(default_factory=dict)
    default_action_config: ActionConfig = Field(default_factory=dict)
    default_event_config: EventConfig = Field(default_factory=dict)
    changelog: Dict[str, Any] = Field(default_factory=dict)
    locale: Dict[str, Any] = Field(default_factory=dict)
    info: ModuleInfo
    state: ModuleState = ModuleState.draft
    last_update: Optional[datetime] = None

    def to_instance(self) -> "ModuleInstance":
        d = self.model_copy(deep=True)
        return ModuleInstance(
            status=ModuleStatus.joined,
            config_schema=d.config_schema,
            default_config=d.default_config,
            current_config=copy.deepcopy(d.default_config),
            secure_config_schema=d.secure_config_schema,
            secure_default_config=d.secure_default_config,
            secure_current_config=copy.deepcopy(d.secure_default_config),
            static_dependencies=d.static_dependencies,
            dynamic_dependencies=[],
            fields_schema=d.fields_schema,
            action_config_schema=d.action_config_schema,
            event_config_schema=d.event_config_schema,
            default_action_config=d.default_action_config,
            current_action_config=copy.deepcopy(d.default_action_config),
            default_event_config=d.default_event_config,
            current_event_config=copy.deepcopy(d.default_event_config),
            changelog=d.changelog,
            locale=d.locale,
            info=d.info,
            state=d.state,
            last_module_update=d.last_update,
        )


class ModuleInstance(BaseModel):
    """
    A module attached to a policy: a definition snapshot plus current config.
    """

    model_config = ConfigDict(extra="forbid")

    id: int = Field(default=0, ge=0)
    policy_id: int = Field(default=0, ge=0)
    status: ModuleStatus = ModuleStatus.joined
    join_date: Optional[datetime] = None
    config_schema: Dict[str, Any] = Field(default_factory=dict)
    default_config: Dict[str, Any] = Field(default_factory=dict)
    current_config: Dict[str, Any] = Field(default_factory=dict)
    secure_config_schema: Dict[str, Any] = Field(default_factory=dict)
    secure_default_config: SecureConfig = Field(default_factory=dict)
    secure_current_config: SecureConfig = Field(default_factory=dict)
    static_dependencies: List[DependencyItem] = Field(default_factory=list)
    dynamic_dependencies: List[DependencyItem] = Field(default_factory=list)
    fields_schema: Dict[str, Any] = Field(default_factory=dict)
    action_config_schema: Dict[str, Any] = Field(default_factory=dict)
    event_config_schema: Dict[str, Any] = Field(default_factory=dict)
    default_action_config: ActionConfig = Field(default_factory=dict)
    current_action_config: ActionConfig = Field(default_factory=dict)
    default_event_config: EventConfig = Field(default_factory=dict)
    current_event_config: EventConfig = Field(default_factory=dict)
    changelog: Dict[str, Any] = Field(default_factory=dict)
    locale: Dict[str, Any] = Field(default_factory=dict)
    info: ModuleInfo
    state: ModuleState = ModuleState.draft
    last_module_update: Optional[datetime] = None
    last_update: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    files_checksums: Dict[str, Dict[str, str]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _join_date_with_last_update(self) -> "ModuleInstance":
        if self.last_update is not None and self.join_date is None:
            raise ValueError("join_date is required when last_update is set")
        return self

    def dependencies(self) -> List[DependencyItem]:
        return list(self.static_dependencies) + list(self.dynamic_dependencies)

    def validate_state(self) -> "ModuleInstance":
        """
        Re-run full validation over the wire form (raises pydantic.ValidationError).
        """
        return type(self).model_validate(self.model_dump())
