from __future__ import annotations

import os
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ValidationError

from fleetmod.core.config.io import ReadResult, atomic_write_json, quarantine_corrupt, read_json_file
from fleetmod.core.config.models import CryptoConfigFile, FleetConfig, LoggingConfigFile, ReconcileConfigFile
from fleetmod.core.config.paths import ConfigFsPaths
from fleetmod.core.crypto import key_from_env, key_from_file
from fleetmod.core.errors import ConfigError
from fleetmod.core.modules.merge import SchemaMerger
from fleetmod.core.modules.secure import SecureParamCrypto


CONFIG_FILES: Dict[str, Type[BaseModel]] = {
    "crypto.json": CryptoConfigFile,
    "logging.json": LoggingConfigFile,
    "reconcile.json": ReconcileConfigFile,
}

MAX_BACKUPS = 10


class ConfigManager:
    def __init__(self, *, fs: Optional[ConfigFsPaths] = None, logger: Any = None, read_only: bool = False):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger
        self.read_only = read_only
        self._cfg: Optional[FleetConfig] = None

    # ---------- public API ----------
    def load_all(self) -> FleetConfig:
        if not self.read_only:
            os.makedirs(self.fs.config_dir, exist_ok=True)
            os.makedirs(self.fs.backups_dir, exist_ok=True)

        files = self._load_raw_files()
        self._cfg = self._validate_all(files)
        return self._cfg

    def get(self) -> FleetConfig:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def save_non_sensitive(self, filename: str, data: Dict[str, Any]) -> None:
        """
        Validate, then write atomically (previous file kept under backups/).
        """
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        model = CONFIG_FILES.get(filename)
        if model is None:
            raise ConfigError(f"Unknown config file {filename!r}.", filename=filename)
        if not isinstance(data, dict):
            raise ConfigError("Config data must be an object.", filename=filename)
        try:
            model.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"{filename} invalid: {e.errors()[0].get('msg')}", filename=filename) from e
        path = os.path.join(self.fs.config_dir, filename)
        atomic_write_json(path, data, self.fs.backups_dir, max_backups=MAX_BACKUPS)
        self.load_all()

    def build_crypto(self) -> SecureParamCrypto:
        """
        Secure parameter crypto keyed from the environment when the configured
        variable is set, otherwise from the key file.
        """
        c = self.get().crypto
        if os.environ.get(c.key_env_var):
            getter = key_from_env(c.key_env_var)
        else:
            getter = key_from_file(self.fs.resolve(c.key_path))
        return SecureParamCrypto.from_key_getter(getter, prefix=c.value_prefix, logger=self.logger)

    def build_merger(self) -> SchemaMerger:
        return SchemaMerger(draft=self.get().reconcile.schema_draft)

    # ---------- internals ----------
    def _load_raw_files(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for name, model in CONFIG_FILES.items():
            path = os.path.join(self.fs.config_dir, name)
            rr: ReadResult = read_json_file(path)
            if rr.ok:
                out[name] = rr.data
                continue
            if rr.error and rr.error != "missing" and not self.read_only:
                moved = quarantine_corrupt(path, self.fs.backups_dir)
                if self.logger:
                    self.logger.warning(f"Config {name} unreadable ({rr.error}); moved to {moved}, using defaults.")
            data = model().model_dump()
            if not self.read_only:
                atomic_write_json(path, data, self.fs.backups_dir, max_backups=MAX_BACKUPS)
            out[name] = data
        return out

    def _validate_all(self, files: Dict[str, Dict[str, Any]]) -> FleetConfig:
        try:
            return FleetConfig(
                crypto=CryptoConfigFile.model_validate(files["crypto.json"]),
                logging=LoggingConfigFile.model_validate(files["logging.json"]),
                reconcile=ReconcileConfigFile.model_validate(files["reconcile.json"]),
            )
        except ValidationError as e:
            raise ConfigError(f"Config invalid: {e}") from e
