"""Command line entry point."""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import DEFAULT_CONFIG_FILE, load_config
from .errors import ConfigError
from .pipeline import DatabaseBuilder, RunOptions

logger = logging.getLogger("dnsdb")

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None) -> None:
    """Configure the dnsdb logger once."""
    if getattr(logger, "_dnsdb_configured", False):
        return

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if verbose:
        logger.setLevel(logging.DEBUG)
    elif quiet:
        logger.setLevel(logging.ERROR)
    else:
        logger.setLevel(logging.INFO)

    logger._dnsdb_configured = True


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="dnsdb",
        description="Build DNS filter lookup databases from blocklists",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("-configfile", "--configfile", dest="configfile", default=DEFAULT_CONFIG_FILE,
                        help="Configuration file to use")
    parser.add_argument("--timeout", type=int, default=None,
                        help="HTTP timeout in seconds (overrides the configuration)")
    parser.add_argument("--force", action="store_true",
                        help="Rebuild even when destinations are up to date")
    parser.add_argument("--dry-run", action="store_true",
                        help="Check sources without writing any database")
    parser.add_argument("--log-file", default=None,
                        help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Verbose logging")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Quiet mode")
    parser.add_argument("--version", action="version", version=f"dnsdb {__version__}")

    return parser.parse_args(argv)


def print_summary(stats: dict) -> None:
    print("\n" + "=" * 60)
    print(" " * 25 + "SUMMARY")
    print("=" * 60)
    print(f"Total lists:        {stats['total_lists']}")
    print(f"Successful:         {stats['successful']}")
    print(f"Skipped:            {stats['skipped']}")
    print(f"Failed:             {stats['failed']}")
    print(f"Items written:      {stats['items']:,}")
    if stats.get('rejected_lines', 0) > 0:
        print(f"Rejected lines:     {stats['rejected_lines']:,}")
    print(f"Runtime:            {stats.get('elapsed_time', 'N/A')}")
    print("=" * 60 + "\n")


def main(argv: Optional[List[str]] = None) -> int:
    """Main function."""
    args = parse_arguments(argv)
    setup_logging(args.verbose, args.quiet, args.log_file)

    try:
        config = load_config(args.configfile)
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    if args.timeout is not None and args.timeout > 0:
        config.timeout = args.timeout

    options = RunOptions(force=args.force, dry_run=args.dry_run, quiet=args.quiet)
    builder = DatabaseBuilder(config, options)

    try:
        stats = builder.run()
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return 1

    if not args.quiet:
        print_summary(stats)
    return 0


if __name__ == "__main__":
    sys.exit(main())
