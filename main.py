"""iCloud Photos album synchronizer entrypoint."""

import argparse
import sys
from typing import List, Optional

from icloud_photos_sync import config
from icloud_photos_sync.errors import ICloudSyncError
from icloud_photos_sync.logger import get_logger, setup_logging
from icloud_photos_sync.reconcile import OperationKind, SyncPlan
from icloud_photos_sync.sync import SyncOrchestrator

PLAN_ICONS = {
    OperationKind.CREATE: "🆕",
    OperationKind.UPDATE: "♻️",
    OperationKind.STASH: "📦",
    OperationKind.DELETE: "🗑️",
}


def parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Synchronize the iCloud Photos album hierarchy into a local library index."
    )
    parser.add_argument(
        "--config",
        help="Path to the JSON config file (defaults to $SYNC_CONFIG_PATH or sync_config.json).",
    )
    parser.add_argument(
        "--fail-on-mfa",
        dest="fail_on_mfa",
        action="store_true",
        help="Fail instead of prompting when an MFA code is required.",
    )
    parser.add_argument(
        "--refresh-token",
        dest="refresh_token",
        action="store_true",
        help="Ignore the stored trust token and acquire a new one (requires MFA).",
    )
    parser.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        help="Compute and print the sync plan without changing the local library.",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level.",
    )
    parser.add_argument(
        "--log-to-cli",
        dest="log_to_cli",
        action="store_true",
        help="Log to the terminal instead of the log file in the data directory.",
    )
    return parser.parse_args(argv)


def print_plan(plan: SyncPlan, *, dry_run: bool) -> None:
    if plan.is_empty:
        print("ℹ️ Local library already matches iCloud; nothing to do.")
        return
    heading = "📝 Planned changes (dry run)" if dry_run else "✅ Applied changes"
    print(f"{heading}: {plan.summary()}")
    for operation in plan:
        print(f"   {PLAN_ICONS[operation.kind]} {operation.kind.value:<6} {operation.album.name} ({operation.album.id})")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_cli_args(argv)
    try:
        app_config = config.load_app_config(args.config)
    except config.ConfigError as exc:
        print(f"❌ {exc}")
        return 1

    if args.fail_on_mfa:
        app_config.account.fail_on_mfa = True
    if args.refresh_token:
        app_config.account.refresh_token = True
    if args.log_level:
        app_config.logging.level = args.log_level
    if args.log_to_cli:
        app_config.logging.log_to_cli = True

    log_file = setup_logging(app_config.paths.data_dir, app_config.logging.level, app_config.logging.log_to_cli)
    logger = get_logger("cli", app_config.logging.logger_names)
    if log_file:
        print(f"🗒️ Logging to {log_file}")
    print(f"☁️ Syncing iCloud Photos for {app_config.account.username} into {app_config.paths.data_dir}")

    orchestrator = SyncOrchestrator.from_config(app_config, dry_run=args.dry_run)
    try:
        result = orchestrator.run()
    except ICloudSyncError as exc:
        logger.error("Sync failed: %s", exc)
        print(f"❌ {exc}")
        return 1
    except KeyboardInterrupt:
        print("❌ Interrupted")
        return 1

    print_plan(result.plan, dry_run=args.dry_run)
    if result.warning_count:
        print(f"⚠️  {result.warning_count} warning(s) recorded; see the log for details")
    return 0


if __name__ == "__main__":
    sys.exit(main())
