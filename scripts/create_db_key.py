from __future__ import annotations

import os

from fleetmod.core.config import ConfigManager
from fleetmod.core.config.paths import ConfigFsPaths
from fleetmod.core.crypto import best_effort_restrict_permissions, generate_db_key_bytes, key_id_from_key_bytes, write_db_key


def main() -> None:
    fs = ConfigFsPaths(".")
    cm = ConfigManager(fs=fs, logger=None)
    cfg = cm.load_all()
    key_path = fs.resolve(cfg.crypto.key_path)

    if os.path.exists(key_path):
        print(f"DB key already exists at: {key_path}")
        return

    key = generate_db_key_bytes()
    write_db_key(key_path, key)
    best_effort_restrict_permissions(key_path)
    print(f"Created DB key at: {key_path}")
    print(f"Key fingerprint (key_id): {key_id_from_key_bytes(key)}")


if __name__ == "__main__":
    main()
