"""Command-line interface for batchpurge."""

import argparse
import asyncio
import os
import sys

from . import __version__
from .filters import FILTERS, get_filter
from .policy import DEFAULT_BATCH_SIZE, RetentionPolicy, UnknownPolicyError, load_policies
from .retention import DEFAULT_WORKERS, async_main


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="batchpurge - delete files and directories older than a retention period, in batches",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--conf-file",
        default=os.getenv("BATCHPURGE_CONF_FILE"),
        help="JSON file defining data retention policies",
    )

    parser.add_argument(
        "--policy",
        default=os.getenv("BATCHPURGE_POLICY"),
        help="Name of the policy to apply from --conf-file (all policies if omitted)",
    )

    parser.add_argument(
        "--path",
        help="Path (or glob pattern) to apply retention on",
    )

    parser.add_argument(
        "--num-days",
        type=float,
        help="Retention period for --path, in days",
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        default=int(os.getenv("BATCHPURGE_BATCH_SIZE", str(DEFAULT_BATCH_SIZE))),
        help="Maximum paths found and deleted per batch with --path",
    )

    parser.add_argument(
        "--delete",
        action="store_true",
        help="Actually delete data; without it only a dry run is performed",
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=int(os.getenv("BATCHPURGE_WORKERS", str(DEFAULT_WORKERS))),
        help="Maximum concurrent delete operations",
    )

    parser.add_argument(
        "--files-only",
        action="store_true",
        default=os.getenv("BATCHPURGE_FILES_ONLY", "").lower() in ("1", "true", "yes"),
        help="Never collapse a fully expired directory into a single delete",
    )

    parser.add_argument(
        "--path-filter",
        type=str.upper,
        default=os.getenv("BATCHPURGE_PATH_FILTER", "ACCEPTS_ALL"),
        choices=sorted(FILTERS),
        help="Directory filter (MARKED_AS_DONT_DELETE skips any path containing DONT_DELETE)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("BATCHPURGE_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"batchpurge {__version__}",
    )

    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> str | None:
    """Return an error message if the option combination is invalid."""
    config_mode = args.conf_file is not None or args.policy is not None
    path_mode = args.path is not None or args.num_days is not None

    if config_mode and path_mode:
        return "Please provide either --conf-file and --policy, or --path and --num-days."
    if args.conf_file is None and args.path is None:
        return "Both configuration and path are empty, exiting."
    if args.path is not None and args.num_days is None:
        return "Path is given but --num-days is missing, exiting."
    if args.workers < 1:
        return f"--workers must be >= 1, got {args.workers}"
    return None


def load_requested_policies(args: argparse.Namespace) -> dict[str, RetentionPolicy]:
    if args.conf_file is not None:
        return load_policies(args.conf_file)
    return {args.path: RetentionPolicy.for_path(args.path, args.num_days, args.batch_size)}


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI."""
    args = parse_args(argv)

    error = validate_args(args)
    if error:
        print(error, file=sys.stderr)
        sys.exit(1)

    try:
        policies = load_requested_policies(args)
        asyncio.run(
            async_main(
                policies=policies,
                policy_name=args.policy,
                dry_run=not args.delete,
                include_directories=not args.files_only,
                max_workers=args.workers,
                path_filter=get_filter(args.path_filter),
                log_level=args.log_level,
            )
        )

        sys.exit(0)

    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        sys.exit(130)
    except UnknownPolicyError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
