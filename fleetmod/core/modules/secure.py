from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from fleetmod.core.crypto import AESEncryptor, KeyGetter, ValueEncryptor
from fleetmod.core.errors import DecryptFailedError, EncryptFailedError, SecureConfigError
from fleetmod.core.modules.models import ModuleDefinition, ModuleInstance, SecureConfig


class SecureParamCrypto:
    """
    Encrypts the `value` of every parameter in a secure config set.

    Sets are mutated in place. Each call is independent: if the third of three
    sets fails, the first two stay encrypted.
    """

    def __init__(self, value_encryptor: ValueEncryptor, logger: Any = None):
        self.values = value_encryptor
        self.logger = logger

    @classmethod
    def from_key_getter(cls, key_getter: KeyGetter, prefix: str = "", logger: Any = None) -> "SecureParamCrypto":
        return cls(ValueEncryptor(AESEncryptor(key_getter), prefix=prefix), logger=logger)

    @property
    def key_id(self) -> str:
        return self.values.encryptor.key_id

    def is_encrypted(self, params: Optional[SecureConfig]) -> bool:
        if not params:
            return False
        for p in params.values():
            if p.value is None:
                continue
            if not isinstance(p.value, str) or not p.value:
                return False
            if not self.values.is_format_match(p.value):
                return False
        return True

    def encrypt(self, *sets: Optional[SecureConfig]) -> None:
        for params in sets:
            for name, p in (params or {}).items():
                try:
                    raw = json.dumps(p.value).encode("utf-8")
                except (TypeError, ValueError) as e:
                    raise EncryptFailedError(f"Secure parameter {name!r} is not JSON serializable.", param=name) from e
                p.value = self.values.encrypt_value(raw)

    def decrypt(self, *sets: Optional[SecureConfig]) -> None:
        for params in sets:
            for name, p in (params or {}).items():
                if p.value is None:
                    continue
                try:
                    p.value = self._decrypt_one(name, p.value)
                except DecryptFailedError:
                    if self.logger:
                        self.logger.error(f"Failed to decrypt secure parameter {name!r}.")
                    raise

    def _decrypt_one(self, name: str, value: Any) -> Any:
        if not isinstance(value, str):
            raise DecryptFailedError(f"Secure parameter {name!r} is not an encrypted string.", param=name)
        raw = self.values.decrypt_value(value)
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecryptFailedError(f"Secure parameter {name!r} did not decrypt to JSON.", param=name) from e


# ---- owner helpers ----
def _secure_sets(owner: Any) -> Dict[str, SecureConfig]:
    if isinstance(owner, ModuleInstance):
        return {
            "secure_default_config": owner.secure_default_config,
            "secure_current_config": owner.secure_current_config,
        }
    if isinstance(owner, ModuleDefinition):
        return {"secure_default_config": owner.secure_default_config}
    raise TypeError(f"unsupported secure config owner: {type(owner).__name__}")


def _encrypt_owner(crypto: SecureParamCrypto, owner: Any) -> None:
    for params in _secure_sets(owner).values():
        if params and not crypto.is_encrypted(params):
            crypto.encrypt(params)


def _decrypt_owner(crypto: SecureParamCrypto, owner: Any) -> None:
    for params in _secure_sets(owner).values():
        if crypto.is_encrypted(params):
            crypto.decrypt(params)


def encrypt_definition(crypto: SecureParamCrypto, definition: ModuleDefinition) -> ModuleDefinition:
    _encrypt_owner(crypto, definition)
    return definition


def decrypt_definition(crypto: SecureParamCrypto, definition: ModuleDefinition) -> ModuleDefinition:
    _decrypt_owner(crypto, definition)
    return definition


def encrypt_instance(crypto: SecureParamCrypto, instance: ModuleInstance) -> ModuleInstance:
    _encrypt_owner(crypto, instance)
    return instance


def decrypt_instance(crypto: SecureParamCrypto, instance: ModuleInstance) -> ModuleInstance:
    _decrypt_owner(crypto, instance)
    return instance


def instance_is_encrypted(crypto: SecureParamCrypto, instance: ModuleInstance) -> bool:
    return crypto.is_encrypted(instance.secure_default_config) or crypto.is_encrypted(instance.secure_current_config)


def unencrypted_sets(crypto: SecureParamCrypto, owner: Any) -> List[str]:
    return [name for name, params in _secure_sets(owner).items() if params and not crypto.is_encrypted(params)]


def validate_encryption(crypto: SecureParamCrypto, owner: Any) -> None:
    """
    Raise SecureConfigError unless every non-empty secure set of the owner is
    encrypted. Used before persisting.
    """
    bad = unencrypted_sets(crypto, owner)
    if bad:
        raise SecureConfigError(f"Secure config is not encrypted: {', '.join(bad)}.", sets=bad)
