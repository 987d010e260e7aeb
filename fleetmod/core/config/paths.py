from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ConfigFsPaths:
    root: str = "."

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def secure_dir(self) -> str:
        return os.path.join(self.root, "secure")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.config_dir, "backups")

    # Files
    @property
    def crypto(self) -> str:
        return os.path.join(self.config_dir, "crypto.json")

    @property
    def logging(self) -> str:
        return os.path.join(self.config_dir, "logging.json")

    @property
    def reconcile(self) -> str:
        return os.path.join(self.config_dir, "reconcile.json")

    def resolve(self, path: str) -> str:
        """
        Relative paths in config files are relative to the root.
        """
        return path if os.path.isabs(path) else os.path.join(self.root, path)
