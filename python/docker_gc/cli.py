"""
Command-line entry point for docker-gc.

Usage examples:
  # Run a cycle if the minimum interval has passed since the last one
  docker-gc

  # Run immediately, ignoring the interval
  docker-gc --force

  # Show what would be deleted without deleting or recording anything
  docker-gc --dry-run --force

  # Custom state directory and interval, write a JSON report
  docker-gc --state-dir /srv/docker-gc --min-interval 7200 --report

  # Check engine and state directory only
  docker-gc --check

  # Print the effective configuration
  docker-gc --config /etc/docker-gc/config.yaml --show-config
"""

import argparse
import os
import sys
from typing import List, Optional

from docker_gc.config_manager import ConfigManager, ConfigValidationError
from docker_gc.docker_client import DockerClient, DockerCommandError
from docker_gc.error_utils import ActionableError, create_config_error, create_state_dir_error
from docker_gc.gc_cycle import GCCycle
from docker_gc.health_checks import HealthChecker
from docker_gc.logging_utils import get_logger, log_exception, setup_logging
from docker_gc.report_utils import save_json
from docker_gc.run_gate import RunLock, RunLockHeldError, should_run
from docker_gc.state_store import StateStore

logger = get_logger(__name__)

REPORT_FILE_NAME = "gc-cycle.json"


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="docker-gc",
        description="Remove containers and images that stayed unused across two garbage collection cycles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Usage examples:", 1)[1],
    )

    parser.add_argument(
        '--config',
        help='Path to config.yaml (default: CONFIG_FILE env var or ./config.yaml)'
    )

    parser.add_argument(
        '--state-dir',
        help='Directory holding the generational state (default: from config)'
    )

    parser.add_argument(
        '--min-interval',
        type=int,
        help='Minimum seconds between cycles (default: from config, 3600)'
    )

    parser.add_argument(
        '--force',
        action='store_true',
        help='Run even if the minimum interval has not elapsed'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Report what would be deleted; delete nothing and leave state untouched'
    )

    parser.add_argument(
        '--report',
        action='store_true',
        help='Write a timestamped JSON report of the cycle to the reports directory'
    )

    parser.add_argument(
        '--check',
        action='store_true',
        help='Run health checks only and exit'
    )

    parser.add_argument(
        '--show-config',
        action='store_true',
        help='Show the effective configuration and exit'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        type=str.upper,
        help='Logging level (default: from config, INFO)'
    )

    return parser.parse_args(argv)


def load_config(config_file: Optional[str]) -> ConfigManager:
    """Load and validate configuration; None falls back to CONFIG_FILE or ./config.yaml"""
    return ConfigManager(config_file=config_file)


def run_cycle(args: argparse.Namespace, cm: ConfigManager, docker_client, checker: HealthChecker,
              state_store: StateStore, min_interval: int, dry_run: bool) -> int:
    """Gate, check and run one cycle while the caller holds the run lock"""
    state_dir = str(state_store.state_dir)
    try:
        if not should_run(state_store, min_interval, force=args.force):
            return 0

        # Engine must answer before any state is touched
        for check in checker.run_all_checks():
            if not check.status:
                logger.error(f"❌ {check.message}")
                for i, suggestion in enumerate((check.details or {}).get("suggestions", []), 1):
                    logger.error(f"   {i}. {suggestion}")
                return 1

        result = GCCycle(docker_client, state_store, cm, dry_run=dry_run).run()

        if args.report or cm.is_report_enabled():
            save_json(os.path.join(cm.get_output_dir(), REPORT_FILE_NAME), result.to_dict(), timestamp=True)

        if result.errors:
            logger.warning(f"⚠️  Cycle finished with {len(result.errors)} failed deletion(s)")
        else:
            logger.info("✅ Garbage collection cycle completed")
        return 0

    except ActionableError as e:
        logger.error(str(e))
        return 1
    except DockerCommandError as e:
        logger.error(f"❌ Engine enumeration failed, cycle aborted without changes: {e}")
        return 1
    except OSError as e:
        log_exception(logger, f"❌ Could not persist state in {state_dir}", e)
        return 1
    except KeyboardInterrupt:
        logger.warning("\n⚠️  Operation interrupted by user")
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main function; returns the process exit code"""
    args = parse_arguments(argv)

    try:
        cm = load_config(args.config)
    except ConfigValidationError as e:
        setup_logging()
        logger.error(f"❌ {e}")
        return 1

    if args.show_config:
        cm.print_config()
        return 0

    setup_logging(args.log_level or cm.get_log_level())

    state_dir = args.state_dir or cm.get_state_dir()
    min_interval = args.min_interval if args.min_interval is not None else cm.get_min_interval()
    dry_run = args.dry_run or cm.is_dry_run()

    if min_interval < 0:
        logger.error(str(create_config_error("min_interval", min_interval, "must be a non-negative number of seconds")))
        return 1

    docker_client = DockerClient(cm)
    checker = HealthChecker(docker_client, state_dir)

    if args.check:
        healthy = checker.print_health_report(checker.run_all_checks())
        return 0 if healthy else 1

    try:
        state_store = StateStore(state_dir)
    except OSError as e:
        logger.error(str(create_state_dir_error(state_dir, e)))
        return 1

    try:
        with RunLock(state_dir):
            return run_cycle(args, cm, docker_client, checker, state_store, min_interval, dry_run)
    except RunLockHeldError as e:
        logger.info(f"{e}; skipping this invocation")
        return 0
    except OSError as e:
        # Lock file could not be opened or locked
        logger.error(str(create_state_dir_error(state_dir, e)))
        return 1


if __name__ == "__main__":
    sys.exit(main())
