from __future__ import annotations

import base64
import binascii
import hashlib
import os
import secrets
from dataclasses import dataclass
from typing import Callable, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from fleetmod.core.errors import DecryptFailedError, EncryptFailedError, KeyUnavailableError


KEY_SIZE = 32
NONCE_SIZE = 12

KeyGetter = Callable[[], bytes]


def key_id_from_key_bytes(key: bytes) -> str:
    h = hashlib.sha256(key).hexdigest()
    return h[:16]


def generate_db_key_bytes() -> bytes:
    # AES-256 key
    return secrets.token_bytes(KEY_SIZE)


def write_db_key(path: str, key_bytes: bytes) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "wb") as f:
        f.write(key_bytes)


def best_effort_restrict_permissions(path: str) -> None:
    """
    Best-effort permissions tightening.
    On Windows this is limited; on POSIX it sets 0o600.
    """
    try:
        if os.name != "nt":
            os.chmod(path, 0o600)
    except OSError:
        return


def _check_key(key: bytes, source: str) -> bytes:
    if len(key) != KEY_SIZE:
        raise KeyUnavailableError(f"Config encryption key must be {KEY_SIZE} bytes (AES-256), got {len(key)}.", source=source)
    return key


def key_from_file(path: str) -> KeyGetter:
    def _get() -> bytes:
        if not os.path.exists(path):
            raise KeyUnavailableError(f"Config encryption key not found at {path!r}.", source="file", path=path)
        with open(path, "rb") as f:
            b = f.read()
        return _check_key(b, "file")

    return _get


def key_from_env(var: str) -> KeyGetter:
    """
    Key getter reading a standard-base64 encoded 32 byte key from an env var.
    """

    def _get() -> bytes:
        raw = os.environ.get(var, "")
        if not raw:
            raise KeyUnavailableError(f"Environment variable {var} is not set.", source="env", var=var)
        try:
            b = base64.b64decode(raw.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise KeyUnavailableError(f"Environment variable {var} is not valid base64.", source="env", var=var) from e
        return _check_key(b, "env")

    return _get


def key_from_bytes(key: bytes) -> KeyGetter:
    return lambda: _check_key(bytes(key), "bytes")


class AESEncryptor:
    """
    AES-256-GCM with a random 12 byte nonce prepended to the sealed data.
    """

    def __init__(self, key_getter: KeyGetter):
        key = key_getter()
        self._aes = AESGCM(_check_key(key, "getter"))
        self.key_id = key_id_from_key_bytes(key)

    def encrypt(self, data: bytes) -> bytes:
        nonce = secrets.token_bytes(NONCE_SIZE)
        return nonce + self._aes.encrypt(nonce, data, None)

    def decrypt(self, data: bytes) -> bytes:
        if len(data) < NONCE_SIZE:
            raise DecryptFailedError("Ciphertext is shorter than the nonce.")
        nonce, ct = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            return self._aes.decrypt(nonce, ct, None)
        except InvalidTag as e:
            raise DecryptFailedError("Ciphertext was rejected (wrong key or tampered data).") from e


@dataclass
class ValueEncryptor:
    """
    Turns bytes into the opaque string stored in place of a secure value.

    Format: "<prefix>.<base64(nonce||ciphertext)>", or bare base64 when no
    prefix is configured.
    """

    encryptor: AESEncryptor
    prefix: str = ""

    def __post_init__(self) -> None:
        self._head = f"{self.prefix}." if self.prefix else ""

    def encrypt_value(self, b: bytes) -> str:
        try:
            sealed = self.encryptor.encrypt(b)
        except (ValueError, TypeError) as e:
            raise EncryptFailedError(f"Failed to encrypt data: {e}") from e
        return self._head + base64.b64encode(sealed).decode("ascii")

    def decrypt_value(self, s: str) -> bytes:
        ciphered = self._ciphered(s)
        if ciphered is None:
            raise DecryptFailedError("Invalid encrypted value format.")
        return self.encryptor.decrypt(ciphered)

    def is_format_match(self, s: str) -> bool:
        return self._ciphered(s) is not None

    def _ciphered(self, s: str) -> Optional[bytes]:
        if self._head and not s.startswith(self._head):
            return None
        try:
            return base64.b64decode(s[len(self._head):].encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError):
            return None
