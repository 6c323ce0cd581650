"""
Command line entry point for uploading Google Takeout archives to S3.
"""
import argparse
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from takeout_s3_migration.config import MigrationConfig
from takeout_s3_migration.exceptions import (
    AuthenticationError,
    ConfigurationError,
    JournalError,
    MigrationError,
)
from takeout_s3_migration.orchestrator import MigrationOrchestrator, MigrationResult, expand_inputs
from takeout_s3_migration.utils.cancellation import CancellationContext
from takeout_s3_migration.utils.logging_config import setup_logging
from takeout_s3_migration.utils.metrics import save_statistics

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SETUP_ERROR = 1
EXIT_USAGE_ERROR = 2

# argparse destination -> (config section, field)
FLAG_OVERRIDES = {
    'endpoint': ('s3', 'endpoint'),
    'region': ('s3', 'region'),
    'bucket': ('s3', 'bucket'),
    'access_key': ('s3', 'access_key'),
    'secret_key': ('s3', 'secret_key'),
    'use_ssl': ('s3', 'use_ssl'),
    'prefix': ('s3', 'prefix'),
    'disable_checksums': ('s3', 'disable_checksums'),
    'concurrency': ('upload', 'concurrency'),
    'max_archives': ('upload', 'max_concurrent_archives'),
    'dry_run': ('upload', 'dry_run'),
    'resume': ('upload', 'resume'),
    'journal': ('upload', 'journal_path'),
    'preserve_metadata': ('upload', 'preserve_metadata'),
    'skip_existing': ('upload', 'skip_existing'),
    'progress': ('upload', 'show_progress'),
    'log_level': ('logging', 'level'),
    'log_file': ('logging', 'file'),
}


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog='takeout-s3-upload',
        description='Upload Google Takeout archives to S3-compatible storage'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    upload = subparsers.add_parser(
        'upload',
        help='Upload Google Takeout archives to S3',
        description='Upload one or more Google Takeout zip files or extracted '
                    'directories to an S3-compatible bucket'
    )
    upload.add_argument(
        'paths',
        nargs='+',
        metavar='PATH',
        help='Takeout zip files, directories, or glob patterns with --glob'
    )
    upload.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to a YAML configuration file'
    )
    upload.add_argument(
        '--log-level',
        type=str.upper,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Log level (default: INFO)'
    )
    upload.add_argument(
        '--log-file',
        type=str,
        default=None,
        help='Also write logs to this file (rotated)'
    )
    upload.add_argument(
        '--stats-file',
        type=str,
        default=None,
        help='Write per-archive statistics to this JSON file'
    )

    s3 = upload.add_argument_group('S3 destination')
    s3.add_argument('--endpoint', default=None, help='S3 endpoint URL')
    s3.add_argument('--region', default=None, help='S3 region (default: us-east-1)')
    s3.add_argument('--bucket', default=None, help='S3 bucket name')
    s3.add_argument('--access-key', default=None, help='S3 access key (or S3_ACCESS_KEY)')
    s3.add_argument('--secret-key', default=None, help='S3 secret key (or S3_SECRET_KEY)')
    s3.add_argument('--use-ssl', action=argparse.BooleanOptionalAction, default=None,
                    help='Use SSL for the S3 connection (default: true)')
    s3.add_argument('--prefix', default=None, help='Prefix for S3 object keys')
    s3.add_argument('--disable-checksums', action=argparse.BooleanOptionalAction, default=None,
                    help='Disable checksum headers for providers such as Backblaze B2')

    behaviour = upload.add_argument_group('Upload behaviour')
    behaviour.add_argument('--concurrency', type=int, default=None,
                           help='Concurrent file uploads within each archive (default: 4)')
    behaviour.add_argument('--max-archives', type=int, default=None,
                           help='Archives processed simultaneously (default: 3)')
    behaviour.add_argument('--dry-run', action=argparse.BooleanOptionalAction, default=None,
                           help='Simulate the upload without transferring anything')
    behaviour.add_argument('--resume', action=argparse.BooleanOptionalAction, default=None,
                           help='Skip files recorded in the journal (default: true)')
    behaviour.add_argument('--journal', default=None,
                           help='Journal path; each archive gets its own journal derived from it')
    behaviour.add_argument('--preserve-metadata', action=argparse.BooleanOptionalAction, default=None,
                           help='Store Takeout metadata as object metadata (default: true)')
    behaviour.add_argument('--skip-existing', action=argparse.BooleanOptionalAction, default=None,
                           help='Skip files that already exist in the bucket (default: true)')
    behaviour.add_argument('-g', '--glob', action='store_true',
                           help='Treat input paths as glob patterns')
    behaviour.add_argument('--progress', action=argparse.BooleanOptionalAction, default=None,
                           help='Show progress bars')
    return parser


def load_config(args: argparse.Namespace) -> MigrationConfig:
    """
    Build the configuration from the optional YAML file and the command line.

    Flags given on the command line take precedence over the file.

    Raises:
        ConfigurationError: If the file or a value is invalid
    """
    config_dict: Dict[str, Any] = {}
    if args.config:
        try:
            config_dict = MigrationConfig.load_yaml_dict(args.config)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    for dest, (section, key) in FLAG_OVERRIDES.items():
        value = getattr(args, dest, None)
        if value is not None:
            if not config_dict.get(section):
                config_dict[section] = {}
            config_dict[section][key] = value

    try:
        return MigrationConfig.from_dict(config_dict)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def install_signal_handlers(ctx: CancellationContext) -> Dict[int, Any]:
    """Cancel ``ctx`` on SIGINT/SIGTERM. Returns the previous handlers."""
    def handler(signum, _frame):
        logger.warning(f"Received {signal.Signals(signum).name}, shutting down gracefully...")
        ctx.cancel(f"interrupted by {signal.Signals(signum).name}")

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handler)
    return previous


def restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def log_summary(result: MigrationResult) -> None:
    logger.info("=" * 60)
    logger.info("Upload summary")
    logger.info("=" * 60)
    for name, stats in sorted(result.statistics.items()):
        logger.info(f"  {name}: {stats.uploaded_files} uploaded, {stats.skipped_files} skipped, "
                    f"{stats.failed_files} failed of {stats.total_files} "
                    f"({stats.speed_mbps:.2f} MB/s)")
    logger.info(f"Total: {result.uploaded_files} uploaded, {result.skipped_files} skipped, "
                f"{result.failed_files} failed")
    if result.failed_archives:
        logger.warning(f"Archives with failures: {', '.join(result.failed_archives)}")
    logger.info("=" * 60)


def run_upload(args: argparse.Namespace) -> int:
    """Run the ``upload`` command and return the process exit code."""
    try:
        config = load_config(args)
    except ConfigurationError as e:
        setup_logging(level=args.log_level or "INFO")
        logger.error(f"Configuration error: {e}")
        return EXIT_SETUP_ERROR

    app_logger = setup_logging(
        log_file=config.logging.file,
        level=config.logging.level,
        enable_json=config.logging.json,
    )

    archives = expand_inputs(args.paths, use_glob=args.glob)
    if not archives:
        logger.error("No archives found for the given paths")
        return EXIT_SETUP_ERROR

    ctx = CancellationContext()
    previous_handlers = install_signal_handlers(ctx)
    result: Optional[MigrationResult] = None
    try:
        orchestrator = MigrationOrchestrator(config, logger=app_logger)
        result = orchestrator.run(archives, ctx=ctx)
    except (ConfigurationError, AuthenticationError, JournalError) as e:
        logger.error(f"Upload could not start: {e}")
        return EXIT_SETUP_ERROR
    except MigrationError as e:
        # Failed files and archives are reported, not fatal
        logger.error(f"Upload finished with errors:\n{e}")
        result = e.result
    finally:
        restore_signal_handlers(previous_handlers)
        ctx.close()

    if result is not None:
        log_summary(result)
        if args.stats_file:
            save_statistics(result.statistics.values(), args.stats_file)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else EXIT_USAGE_ERROR

    if args.command == 'upload':
        return run_upload(args)
    parser.print_help()
    return EXIT_USAGE_ERROR


if __name__ == '__main__':
    sys.exit(main())
