"""
AD Housekeeping Runner

Runs one housekeeping routine against Active Directory: query, classify,
diff and reconcile. Configuration defaults to dry run; pass --apply to make
changes.
"""

import argparse
import functools
import logging
import os
import sys

from dotenv import load_dotenv

from directory.adapters.ldap_adapter import DEFAULT_ATTRIBUTES, LDAPDirectoryAdapter
from directory.exceptions import DirectoryError, ValidationFailedError
from housekeeping.config import HousekeepingConfig, get_ldap_config
from housekeeping.differ import NON_COMPLIANT_ACTIONS
from housekeeping.reconciler import Reconciler
from housekeeping.routines import ROUTINES, get_routine

logger = logging.getLogger(__name__)


def handle_keyboard_interrupt(exit_message="Housekeeping interrupted by user"):
    """Decorator to handle KeyboardInterrupt and exit gracefully."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except KeyboardInterrupt:
                logger.info(f"\n{exit_message}")
                sys.exit(1)

        return wrapper

    return decorator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="AD Housekeeping - Reconcile directory objects with their desired state"
    )
    parser.add_argument("routine", choices=sorted(ROUTINES), help="Housekeeping routine to run")
    parser.add_argument(
        "--config",
        help="JSON configuration file (default: HOUSEKEEPING_CONFIG_FILE env var)",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_const",
        const=True,
        help="Simulate actions without making changes (the configured default)",
    )
    mode.add_argument(
        "--apply",
        dest="dry_run",
        action="store_const",
        const=False,
        help="Apply corrective actions to the directory",
    )

    parser.add_argument(
        "--strict",
        dest="strict_mode",
        action="store_const",
        const=True,
        help="Remove memberships that are not desired for the classification",
    )
    parser.add_argument(
        "--disable-non-compliant",
        action="store_const",
        const=True,
        help="Disable (or delete) objects that match no tier rule",
    )
    parser.add_argument(
        "--non-compliant-action",
        choices=NON_COMPLIANT_ACTIONS,
        help="What to do with non-compliant objects (default: disable)",
    )
    parser.add_argument("--stale-days", type=int, help="Inactivity threshold for stale routines")
    parser.add_argument("--workers", dest="max_workers", type=int, help="Records reconciled concurrently")
    parser.add_argument("--report", metavar="CSV", help="Write planned actions and errors to a CSV file")
    parser.add_argument(
        "--log",
        nargs="?",
        const="ad_housekeeping.log",
        help="Enable logging to file (default: ad_housekeeping.log)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    return parser


def setup_logging(log_file, log_level) -> None:
    level = getattr(logging, log_level)
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )
    if log_file:
        logger.info(f"Logging to file: {log_file}")


@handle_keyboard_interrupt("Housekeeping interrupted by user")
def main(argv=None):
    """Main entry point for the ad-housekeeping command."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log, args.log_level)

    logger.info("Loading environment variables...")
    load_dotenv()

    overrides = {
        "dry_run": args.dry_run,
        "strict_mode": args.strict_mode,
        "disable_non_compliant": args.disable_non_compliant,
        "non_compliant_action": args.non_compliant_action,
        "stale_days": args.stale_days,
        "max_workers": args.max_workers,
    }

    try:
        config = HousekeepingConfig.load(config_file=args.config, overrides=overrides)
        ldap_config = get_ldap_config()
    except ValidationFailedError as e:
        logger.error(f"❌ Invalid configuration: {e}")
        sys.exit(1)

    attributes = list(DEFAULT_ATTRIBUTES)
    if config.tier_attribute and config.tier_attribute not in attributes:
        attributes.append(config.tier_attribute)
    ldap_config["attributes"] = attributes

    if config.dry_run:
        logger.info("*** DRY RUN MODE - No changes will be made ***")

    routine = get_routine(args.routine)
    logger.info(f"Routine: {routine.name} - {routine.description}")
    logger.info(f"Directory server: {ldap_config['server']}")

    try:
        with LDAPDirectoryAdapter(ldap_config) as adapter:
            if not adapter.test_connection():
                logger.error(f"❌ Directory {ldap_config['server']} did not answer the connection test")
                sys.exit(1)
            result = Reconciler.from_config(adapter, config).run(routine, config)
    except DirectoryError as e:
        logger.error(f"❌ Housekeeping aborted [{e.kind.value}]: {e}")
        sys.exit(1)

    for line in result.summary_lines():
        print(line)

    if args.report:
        result.to_dataframe().to_csv(args.report, index=False)
        logger.info(f"Report written to {args.report}")

    if result.succeeded:
        logger.info("✅ Housekeeping completed without errors")
    else:
        logger.error(f"❌ Housekeeping completed with {len(result.errors)} error(s)")
    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
