"""
run_checker.py - Main Application Entry Point
==============================================
This is the main script that runs a full lookup session.

What it does:
-------------
1. Loads configuration from environment variables (.env file)
2. Imports and validates one or more input files
3. Looks up every subject's test results, several requests at a time
4. Logs the summary counters and any errors
5. Writes the consolidated results to an Excel or CSV file

Usage:
------
    python -m resultcheck.run_checker input.xlsx
    python -m resultcheck.run_checker a.xlsx b.csv --output-dir reports
    python -m resultcheck.run_checker input.xlsx --start-timestamp 2026-01-01T00:00:00Z
    python -m resultcheck.run_checker input.xlsx --dry-run

Command Line Options:
---------------------
    input_files        : One or more .xlsx / .xls / .csv files (required)
    --output-dir       : Directory for the output file (default: "out")
    --format           : xlsx or csv (default: xlsx)
    --start-timestamp  : Only fetch results produced after this timestamp
    --concurrency      : Max requests in flight (overrides RESULTS_CONCURRENCY)
    --dry-run          : Import and validate without making API calls
    --debug            : Enable debug logging
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
import time
from pathlib import Path

from .client import ResultsClient
from .config import load_settings, validate_settings
from .errors import ConfigError
from .exporter import export_results
from .loader import import_files
from .orchestrator import retrieve_results
from .subjects import Session


# Default output directory for result files
OUTPUT_DIR = "out"

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%H:%M:%S'
)

logger = logging.getLogger(__name__)


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        description='Look up test results for a batch of national IDs and passports',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m resultcheck.run_checker input.xlsx
  python -m resultcheck.run_checker a.xlsx b.csv --format csv
  python -m resultcheck.run_checker input.xlsx --dry-run
        """
    )
    parser.add_argument(
        'input_files',
        nargs='+',
        help='Input Excel (.xlsx, .xls) or CSV files'
    )
    parser.add_argument(
        '--output-dir',
        default=OUTPUT_DIR,
        help=f'Directory for the output file (default: {OUTPUT_DIR})'
    )
    parser.add_argument(
        '--format',
        choices=('xlsx', 'csv'),
        default='xlsx',
        help='Output file format (default: xlsx)'
    )
    parser.add_argument(
        '--start-timestamp',
        help='Only fetch results produced after this timestamp'
    )
    parser.add_argument(
        '--concurrency',
        type=int,
        help='Max requests in flight'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Import and validate input without making API calls'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    return parser.parse_args(argv)


def log_import_summary(session: Session):
    stats = session.input_stats
    logger.info("-" * 50)
    logger.info(f"Rows read:       {stats.total_read}")
    logger.info(f"Unique IDs:      {len(session.subjects)}")
    logger.info(f"Duplicate IDs:   {stats.duplicate}")
    logger.info(f"Invalid IDs:     {stats.invalid}")
    logger.info("-" * 50)


def log_result_summary(session: Session):
    stats = session.stats
    total = len(session.subjects)
    logger.info("-" * 50)
    logger.info(f"Retrieved {stats.retrieved} of {total}")
    for name, value in stats.as_dict().items():
        logger.info(f"  {name:<20} {value}")
    logger.info("-" * 50)


def run_checker(argv=None) -> int:
    """
    Main execution logic.

    Returns:
        Process exit code: 0 on success, 1 on configuration or input errors
    """
    args = parse_arguments(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    session = Session()

    try:
        # ---------------------------------------------------------------------
        # STEP 1: Configuration, with command-line overrides
        # ---------------------------------------------------------------------
        settings = load_settings()
        overrides = {}
        if args.concurrency is not None:
            overrides['concurrency_limit'] = args.concurrency
        if args.start_timestamp is not None:
            overrides['start_timestamp'] = args.start_timestamp
        settings = validate_settings(dataclasses.replace(settings, **overrides))

        logger.info(f"Base URL: {settings.base_url}")
        logger.info(f"Concurrency: {settings.concurrency_limit}")

        # ---------------------------------------------------------------------
        # STEP 2: Import
        # ---------------------------------------------------------------------
        import_files(session, args.input_files)
        log_import_summary(session)

        if args.dry_run:
            logger.info("DRY RUN MODE - No API calls will be made")
            return 0

        if not session.subjects:
            logger.warning("Nothing to look up")
            return 0

        # ---------------------------------------------------------------------
        # STEP 3: Retrieval
        # ---------------------------------------------------------------------
        total = len(session.subjects)

        def on_progress(outstanding: int):
            logger.info(f"Progress: {outstanding} of {total} remaining")

        start_time = time.time()
        with ResultsClient(settings) as client:
            report = asyncio.run(retrieve_results(session, client, on_progress=on_progress))
        logger.info(f"Retrieval complete in {time.time() - start_time:.1f} seconds")

        if report.stopped:
            logger.error("Stopped early after an authentication failure, check RESULTS_API_KEY")

        log_result_summary(session)

        # ---------------------------------------------------------------------
        # STEP 4: Export
        # ---------------------------------------------------------------------
        export_results(session, args.output_dir, args.format)
        return 0

    except KeyboardInterrupt:
        logger.warning("Interrupted by user. Saving partial results...")
        if session.subjects:
            export_results(session, Path(args.output_dir), args.format)
        return 1

    except ConfigError as e:
        session.log(f"ERROR: {e}", level=logging.ERROR)
        return 1

    except (RuntimeError, FileNotFoundError, ValueError) as e:
        logger.error(f"Fatal error: {e}")
        return 1


def main():
    sys.exit(run_checker())


if __name__ == '__main__':
    main()
