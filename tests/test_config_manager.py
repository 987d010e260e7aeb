from __future__ import annotations

import base64
import json
import os

import pytest

from fleetmod.core.config.manager import ConfigManager
from fleetmod.core.config.paths import ConfigFsPaths
from fleetmod.core.crypto import generate_db_key_bytes, write_db_key
from fleetmod.core.errors import ConfigError, KeyUnavailableError
from fleetmod.core.modules.models import SecureParameter

from .helpers.fakes import RecordingLogger


def test_missing_files_are_created_with_defaults(config_manager):
    cfg = config_manager.get()
    assert cfg.crypto.value_prefix == "enc"
    assert cfg.crypto.key_env_var == "FLEETMOD_DB_KEY"
    assert cfg.logging.level == "INFO"
    assert cfg.reconcile.this_module_name == "this"
    for name in ("crypto.json", "logging.json", "reconcile.json"):
        assert os.path.exists(os.path.join(config_manager.fs.config_dir, name))


def test_corrupt_json_is_moved_aside_and_defaults_used(tmp_config_root):
    with open(tmp_config_root.logging, "w", encoding="utf-8") as f:
        f.write("{not json")
    logger = RecordingLogger()
    cm = ConfigManager(fs=tmp_config_root, logger=logger)
    cfg = cm.load_all()
    assert cfg.logging.level == "INFO"
    backups = os.listdir(tmp_config_root.backups_dir)
    assert any("logging.json" in b and "corrupt" in b for b in backups)
    assert logger.messages("WARNING")


def test_invalid_content_raises(tmp_config_root):
    with open(tmp_config_root.reconcile, "w", encoding="utf-8") as f:
        json.dump({"schema_draft": "draft3"}, f)
    with pytest.raises(ConfigError):
        ConfigManager(fs=tmp_config_root).load_all()


def test_save_validates_then_writes_atomically(config_manager):
    data = config_manager.get().logging.model_dump()
    data["level"] = "debug"
    config_manager.save_non_sensitive("logging.json", data)
    with open(config_manager.fs.logging, "r", encoding="utf-8") as f:
        assert json.load(f)["level"] == "debug"
    assert config_manager.get().logging.level == "DEBUG"
    assert any(b.startswith("logging.json.") and "prewrite" in b for b in os.listdir(config_manager.fs.backups_dir))

    bad = dict(data, unknown_field=1)
    with pytest.raises(ConfigError):
        config_manager.save_non_sensitive("logging.json", bad)
    with pytest.raises(ConfigError):
        config_manager.save_non_sensitive("nope.json", {})


def test_read_only_manager_writes_nothing(tmp_path):
    fs = ConfigFsPaths(root=str(tmp_path))
    cm = ConfigManager(fs=fs, read_only=True)
    cfg = cm.load_all()
    assert cfg.crypto.key_path == "secure/db.key"
    assert not os.path.exists(fs.config_dir)
    with pytest.raises(ConfigError):
        cm.save_non_sensitive("logging.json", {})


def test_build_crypto_from_key_file(config_manager, monkeypatch):
    monkeypatch.delenv("FLEETMOD_DB_KEY", raising=False)
    with pytest.raises(KeyUnavailableError):
        config_manager.build_crypto()

    write_db_key(config_manager.fs.resolve("secure/db.key"), generate_db_key_bytes())
    crypto = config_manager.build_crypto()
    params = {"p": SecureParameter(server_only=False, value="v")}
    crypto.encrypt(params)
    assert params["p"].value.startswith("enc.")


def test_build_crypto_prefers_env_key(config_manager, monkeypatch):
    key = generate_db_key_bytes()
    monkeypatch.setenv("FLEETMOD_DB_KEY", base64.b64encode(key).decode("ascii"))
    # no key file on disk: the env key is enough
    crypto = config_manager.build_crypto()
    assert len(crypto.key_id) == 16


def test_build_merger_uses_configured_draft(config_manager):
    assert config_manager.build_merger().draft == "draft7"
