from __future__ import annotations

import base64

import pytest

from fleetmod.core.crypto import (
    AESEncryptor,
    NONCE_SIZE,
    ValueEncryptor,
    generate_db_key_bytes,
    key_from_bytes,
    key_from_env,
    key_from_file,
    key_id_from_key_bytes,
    write_db_key,
)
from fleetmod.core.errors import DecryptFailedError, KeyUnavailableError


def test_aesgcm_round_trip_uses_fresh_nonce():
    enc = AESEncryptor(key_from_bytes(generate_db_key_bytes()))
    a = enc.encrypt(b"hello fleet")
    b = enc.encrypt(b"hello fleet")
    assert a != b
    assert a[:NONCE_SIZE] != b[:NONCE_SIZE]
    assert enc.decrypt(a) == b"hello fleet"


def test_wrong_key_is_rejected():
    sealed = AESEncryptor(key_from_bytes(generate_db_key_bytes())).encrypt(b"x")
    other = AESEncryptor(key_from_bytes(generate_db_key_bytes()))
    with pytest.raises(DecryptFailedError):
        other.decrypt(sealed)


def test_short_ciphertext_is_rejected():
    enc = AESEncryptor(key_from_bytes(generate_db_key_bytes()))
    with pytest.raises(DecryptFailedError):
        enc.decrypt(b"123")


def test_key_id_matches_key():
    key = generate_db_key_bytes()
    enc = AESEncryptor(key_from_bytes(key))
    assert enc.key_id == key_id_from_key_bytes(key)
    assert len(enc.key_id) == 16


def test_value_format_with_prefix():
    ve = ValueEncryptor(AESEncryptor(key_from_bytes(generate_db_key_bytes())), prefix="enc")
    s = ve.encrypt_value(b'"secret"')
    assert s.startswith("enc.")
    assert ve.is_format_match(s)
    assert not ve.is_format_match("secret")
    assert not ve.is_format_match("other." + s[len("enc."):])
    assert ve.decrypt_value(s) == b'"secret"'


def test_value_format_without_prefix_is_bare_base64():
    ve = ValueEncryptor(AESEncryptor(key_from_bytes(generate_db_key_bytes())))
    s = ve.encrypt_value(b"1")
    assert base64.b64decode(s, validate=True)
    with pytest.raises(DecryptFailedError):
        ve.decrypt_value("not base64 !!")


def test_key_from_file(tmp_path):
    path = str(tmp_path / "secure" / "db.key")
    with pytest.raises(KeyUnavailableError):
        key_from_file(path)()
    key = generate_db_key_bytes()
    write_db_key(path, key)
    assert key_from_file(path)() == key


def test_key_from_file_wrong_length(tmp_path):
    path = str(tmp_path / "db.key")
    write_db_key(path, b"short")
    with pytest.raises(KeyUnavailableError):
        AESEncryptor(key_from_file(path))


def test_key_from_env(monkeypatch):
    key = generate_db_key_bytes()
    monkeypatch.setenv("FLEETMOD_TEST_KEY", base64.b64encode(key).decode("ascii"))
    assert key_from_env("FLEETMOD_TEST_KEY")() == key

    monkeypatch.setenv("FLEETMOD_TEST_KEY", "%%%")
    with pytest.raises(KeyUnavailableError):
        key_from_env("FLEETMOD_TEST_KEY")()

    monkeypatch.delenv("FLEETMOD_TEST_KEY")
    with pytest.raises(KeyUnavailableError) as ei:
        key_from_env("FLEETMOD_TEST_KEY")()
    assert ei.value.code == "key_unavailable"
