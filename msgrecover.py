#!/usr/bin/env python3
"""
msgrecover - Message database extraction and diagnostics

Reads a chat.db / sms.db read-only, rebuilds messages, contacts and
conversations, and prints a diagnostics report covering duplicate contacts
and chats, orphaned messages, undecodable payloads and missing attachments.

Usage:
    msgrecover.py <db_path> [--attachment-root DIR] [--workers N] [--verbose]
"""

import argparse
import json
import signal
import sys
import threading
from pathlib import Path

# Add current directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from common.config import ExtractionConfig  # noqa: E402
from common.env_loader import load_dotenv_file  # noqa: E402
from common.errors import ExtractionCancelled, SourceReadFailure  # noqa: E402
from common.failure_tracker import FailureTracker  # noqa: E402
from common.logging_config import default_log_file, get_logger, setup_logging  # noqa: E402
from extraction.diagnostics import format_report  # noqa: E402
from extraction.filesystem import AttachmentFilesystem  # noqa: E402
from extraction.pipeline import ExtractionPipeline  # noqa: E402
from extraction.source import SQLiteSource  # noqa: E402

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Extract a message database and report on its integrity.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Diagnostics for the local database
  %(prog)s ~/Library/Messages/chat.db

  # Database copied off a Mac, attachments next to it
  %(prog)s /backup/chat.db --attachment-root /backup

  # Skip the filesystem check and write the report as JSON
  %(prog)s /backup/chat.db --no-attachment-check --json report.json

  # Verbose logging, 8 workers, failure report under ./out/issues/
  %(prog)s /backup/chat.db --verbose --workers 8 --issues-dir out
        """,
    )

    parser.add_argument(
        "db_path",
        help="Path to chat.db or sms.db",
    )
    parser.add_argument(
        "--attachment-root",
        metavar="DIR",
        help="Directory holding the Attachments folder (overrides env/.env MSGRECOVER_ATTACHMENT_ROOT)",
    )
    parser.add_argument(
        "--workers",
        "-w",
        type=int,
        help="Number of parallel workers (default: CPU count - 1)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        metavar="N",
        help="Message rows decoded per worker task (default: 500)",
    )
    parser.add_argument(
        "--no-attachment-check",
        action="store_true",
        help="Do not look for attachment files on disk",
    )
    parser.add_argument(
        "--json",
        metavar="PATH",
        help="Also write the diagnostics report as JSON",
    )
    parser.add_argument(
        "--issues-dir",
        metavar="DIR",
        help="Write issues/failure-report.json under DIR",
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show progress bars",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to .env file to load (default: ./.env if present)",
    )
    return parser


def main(argv=None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load .env early (CLI > env > .env precedence is enforced by ExtractionConfig.from_env)
    load_dotenv_file(args.env_file)

    log_file = default_log_file() if args.verbose else None
    setup_logging(verbose=args.verbose, log_file=log_file)

    try:
        config = ExtractionConfig.from_env(
            workers=args.workers,
            batch_size=args.batch_size,
            attachment_root=args.attachment_root,
            check_attachments=False if args.no_attachment_check else None,
            show_progress=True if args.progress else None,
        )
    except ValueError as e:
        parser.error(str(e))
        return 2

    cancel_event = threading.Event()

    def handle_interrupt(signum, frame):
        print("\nCancelling...", file=sys.stderr)
        cancel_event.set()

    signal.signal(signal.SIGINT, handle_interrupt)

    tracker = FailureTracker(args.db_path)
    try:
        with SQLiteSource(args.db_path) as source:
            pipeline = ExtractionPipeline(
                source,
                AttachmentFilesystem(config.attachment_root),
                config,
                tracker,
            )
            result = pipeline.run(cancel_event)
    except SourceReadFailure as e:
        logger.error(str(e))
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except ExtractionCancelled:
        print("Cancelled; no report produced.", file=sys.stderr)
        return 130

    print("\n".join(format_report(result.report)))

    if args.json:
        with open(args.json, "w", encoding="utf-8") as f:
            json.dump(result.report.to_dict(), f, indent=2, ensure_ascii=False)
        print(f"Report written to {args.json}")

    if args.issues_dir:
        tracker.save_report(Path(args.issues_dir))

    return 0


if __name__ == "__main__":
    sys.exit(main())
