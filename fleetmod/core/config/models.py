from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CryptoConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")
    key_path: str = "secure/db.key"
    key_env_var: str = "FLEETMOD_DB_KEY"
    value_prefix: str = Field(default="enc", max_length=32)

    @field_validator("value_prefix")
    @classmethod
    def _no_dot(cls, v: str) -> str:
        # the prefix is separated from the ciphertext by a dot
        if "." in v:
            raise ValueError("value_prefix must not contain '.'")
        return v


class LoggingConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")
    log_dir: str = "logs"
    level: str = "INFO"
    max_bytes: int = Field(default=1_000_000, ge=10_000)
    backup_count: int = Field(default=5, ge=0, le=50)
    console: bool = True

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        v = str(v).upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return v


class ReconcileConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")
    schema_draft: str = "draft7"
    this_module_name: str = Field(default="this", min_length=1)

    @field_validator("schema_draft")
    @classmethod
    def _known_draft(cls, v: str) -> str:
        if v not in {"draft7", "draft2020-12"}:
            raise ValueError(f"unsupported JSON Schema draft {v!r}")
        return v


class FleetConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    crypto: CryptoConfigFile
    logging: LoggingConfigFile
    reconcile: ReconcileConfigFile
