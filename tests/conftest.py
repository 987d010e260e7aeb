from __future__ import annotations

import os

import pytest

from fleetmod.core.config.manager import ConfigManager
from fleetmod.core.config.paths import ConfigFsPaths
from fleetmod.core.crypto import generate_db_key_bytes, key_from_bytes
from fleetmod.core.modules.secure import SecureParamCrypto

from .helpers.fakes import RecordingLogger


@pytest.fixture
def tmp_config_root(tmp_path):
    """
    Provides an isolated root with config/ and secure/ under tmp_path.
    """
    fs = ConfigFsPaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    os.makedirs(fs.secure_dir, exist_ok=True)
    return fs


@pytest.fixture
def config_manager(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=None, read_only=False)
    cm.load_all()
    return cm


@pytest.fixture
def db_key():
    return generate_db_key_bytes()


@pytest.fixture
def crypto(db_key):
    return SecureParamCrypto.from_key_getter(key_from_bytes(db_key), prefix="enc")


@pytest.fixture
def other_crypto():
    return SecureParamCrypto.from_key_getter(key_from_bytes(generate_db_key_bytes()), prefix="enc")


@pytest.fixture
def logger():
    return RecordingLogger()
