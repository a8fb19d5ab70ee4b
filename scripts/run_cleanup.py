#!/usr/bin/env python3
"""Run the cleanup reapers once from a shell, outside of the HTTP surface."""
from __future__ import annotations

import argparse
import asyncio
import json

from deploy_claim.app.dependencies import CLEANUP_KINDS, run_scheduled_cleanup
from deploy_claim.app.observability import configure_logging
from deploy_claim.app.settings import DeployClaimSettings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--kind",
        choices=[*CLEANUP_KINDS, "all"],
        default="all",
        help="Resource kind to reap (default: all)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List what would be deleted without deleting anything",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    configure_logging(json_output=False)
    kinds = CLEANUP_KINDS if args.kind == "all" else (args.kind,)
    report = asyncio.run(
        run_scheduled_cleanup(
            DeployClaimSettings.from_env(), kinds=kinds, dry_run=args.dry_run,
        )
    )
    print(json.dumps(report.to_payload(), indent=2))
    return 0 if report.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
