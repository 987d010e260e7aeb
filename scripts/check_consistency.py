from __future__ import annotations

import argparse
import json

from fleetmod.core.config import ConfigManager
from fleetmod.core.config.paths import ConfigFsPaths
from fleetmod.core.modules.models import ModuleInstance
from fleetmod.core.policy.consistency import agent_consistency, group_consistency, policy_consistency
from fleetmod.core.policy.models import Agent


def main() -> None:
    ap = argparse.ArgumentParser(description="Check dependency consistency of a set of module instances.")
    ap.add_argument("--modules", required=True, help="JSON list of module instances")
    ap.add_argument("--agent-version", default="", help="version reported by the agent (agent scope)")
    ap.add_argument("--scope", choices=["policy", "group", "agent"], default="policy")
    args = ap.parse_args()

    cfg = ConfigManager(fs=ConfigFsPaths("."), logger=None, read_only=True).load_all()
    this_name = cfg.reconcile.this_module_name

    with open(args.modules, "r", encoding="utf-8") as f:
        modules = [ModuleInstance.model_validate(m) for m in json.load(f)]

    if args.scope == "agent":
        report = agent_consistency(modules, Agent(version=args.agent_version), this_name=this_name)
    elif args.scope == "group":
        report = group_consistency(modules, this_name=this_name)
    else:
        report = policy_consistency(modules, this_name=this_name)
    print(report.model_dump_json(indent=2))


if __name__ == "__main__":
    main()
