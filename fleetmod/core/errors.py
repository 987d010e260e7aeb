from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from fleetmod.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class FleetError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return f"{self.code}: {self.user_message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Core types ----
class ConfigError(FleetError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class KeyUnavailableError(FleetError):
    def __init__(self, user_message: str = "The config encryption key is unavailable.", **ctx: Any):
        super().__init__("key_unavailable", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class DecryptFailedError(FleetError):
    def __init__(self, user_message: str = "Failed to decrypt secure parameters.", **ctx: Any):
        super().__init__("decrypt_failed", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class EncryptFailedError(FleetError):
    def __init__(self, user_message: str = "Failed to encrypt secure parameters.", **ctx: Any):
        super().__init__("encrypt_failed", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class SecureConfigError(FleetError):
    def __init__(self, user_message: str = "Secure config is not encrypted.", **ctx: Any):
        super().__init__("secure_config_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class ReconcileError(FleetError):
    def __init__(self, user_message: str = "Module instance could not be reconciled.", **ctx: Any):
        super().__init__("reconcile_error", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)
