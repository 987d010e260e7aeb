from __future__ import annotations

import argparse
import json
import sys

from fleetmod.core.config import ConfigManager
from fleetmod.core.config.paths import ConfigFsPaths
from fleetmod.core.errors import FleetError
from fleetmod.core.logger import get_logger, setup_logging
from fleetmod.core.modules.models import ModuleDefinition, ModuleInstance
from fleetmod.core.modules.reconciler import reconcile
from fleetmod.core.modules.secure import encrypt_instance


def _load(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def main() -> None:
    ap = argparse.ArgumentParser(description="Upgrade a policy module instance to a module definition.")
    ap.add_argument("--instance", required=True, help="module instance JSON (secure values encrypted)")
    ap.add_argument("--definition", required=True, help="module definition JSON (secure values encrypted)")
    ap.add_argument("--out", default="", help="write the result here instead of stdout")
    args = ap.parse_args()

    cm = ConfigManager(fs=ConfigFsPaths("."), logger=None)
    cfg = cm.load_all()
    lc = cfg.logging
    setup_logging(cm.fs.resolve(lc.log_dir), lc.level, max_bytes=lc.max_bytes, backup_count=lc.backup_count, console=lc.console)
    logger = get_logger("reconcile")
    cm.logger = logger

    try:
        crypto = cm.build_crypto()
        instance = ModuleInstance.model_validate(_load(args.instance))
        definition = ModuleDefinition.model_validate(_load(args.definition))
        result = reconcile(instance, definition, crypto, merger=cm.build_merger(), logger=logger)
        encrypt_instance(crypto, result)
    except FleetError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        sys.exit(1)

    text = result.model_dump_json(indent=2)
    if args.out:
        with open(args.out, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        print(f"Wrote {args.out}")
    else:
        print(text)


if __name__ == "__main__":
    main()
