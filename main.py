# main.py
"""
Main orchestration script for the Component Request PDF Mailer.

Handles:
- Loading the configuration from .env.
- Google API Authentication (OAuth 2.0).
- Finding form response rows that are not yet marked as processed.
- Feeding them, one at a time, to the row processor (fill template,
  export PDF, store it in Drive, email it, mark the row).
- Watching the data sheet for new rows when run with --watch.
"""
from __future__ import annotations
import argparse
import sys
import time
from collections import Counter
from datetime import datetime

import config
import google_services
from row_processor import EditEvent, RowProcessor, RowQueue, RowWatcher


def get_timestamp() -> str:
    """Returns the current timestamp in a standard format for logging."""
    return datetime.now().strftime('%Y-%m-%d %H:%M:%S')


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Turn form response rows into request PDFs, store them in Drive and email them.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                 # Process every pending row once
  python main.py --row 12        # Process sheet row 12 only
  python main.py --watch         # Keep polling the data sheet for new rows
        """
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--row", type=int, help="Sheet row number to process (2 or higher)")
    mode.add_argument("--once", action="store_true", help="Process all pending rows once and exit (default)")
    mode.add_argument("--watch", action="store_true", help="Poll the data sheet and process new rows as they appear")
    return parser.parse_args(argv)


def submit_pending(watcher: RowWatcher, row_queue: RowQueue) -> int:
    """
    Queues the pending rows that are new or were edited since they were last
    queued; returns how many were accepted. A row rejected by a full queue is
    offered again on the next scan.
    """
    rows = watcher.changed_rows()
    accepted = 0
    for row, fingerprint in rows:
        if row_queue.submit(row):
            watcher.mark_submitted(row, fingerprint)
            accepted += 1
    if rows:
        print(f"[INFO] {len(rows)} new or edited row(s) found, {accepted} queued.")
    return accepted


def print_summary(counts: Counter, started: float):
    print(f"\n=== {get_timestamp()} Processing Finished ===")
    print(f"  Total Run Time: {time.time() - started:.2f} seconds")
    print("-" * 50)
    print(f"  - Rows Handled:                {sum(counts.values())}")
    for outcome, count in sorted(counts.items()):
        print(f"  - {outcome:<28} {count}")
    print("-" * 50)


def main(argv: list[str] | None = None) -> int:
    """ Main function to orchestrate the request processing. """
    args = parse_args(argv)
    started = time.time()
    print(f"=== {get_timestamp()} Component Request Processing Starting ===")

    # --- Configuration ---
    try:
        settings = config.load_settings()
    except config.ConfigError as e:
        print(f"[ERROR] {e}")
        return 1

    # --- Authenticate ---
    print(f"\n=== {get_timestamp()} AUTHENTICATION ===")
    creds = google_services.authenticate()
    if not creds:
        print("[ERROR] Google Authentication failed.")
        return 1
    sheets, drive, exporter = google_services.build_services(creds, settings.spreadsheet_id)
    processor = RowProcessor(settings, sheets, drive, exporter)

    # --- Single Row ---
    if args.row is not None:
        outcome = processor.handle_edit(EditEvent(settings.data_sheet_name, args.row))
        if outcome is None:
            print(f"[ERROR] Row {args.row} is not a data row.")
            return 1
        print_summary(Counter({outcome: 1}), started)
        return 0

    row_queue = RowQueue(processor, max_size=settings.queue_max_size)
    watcher = RowWatcher(settings, sheets)
    row_queue.start()

    # --- Watch Loop ---
    if args.watch:
        print(f"\n=== {get_timestamp()} Watching '{settings.data_sheet_name}' every {settings.poll_interval_seconds:.0f}s ===")
        try:
            while True:
                try:
                    submit_pending(watcher, row_queue)
                except Exception as e:
                    print(f"[ERROR] Failed to scan '{settings.data_sheet_name}': {e}")
                time.sleep(settings.poll_interval_seconds)
        except KeyboardInterrupt:
            print("\n[INFO] Stopping. Waiting for queued rows to finish...")
        row_queue.stop()
        print_summary(row_queue.outcome_counts, started)
        return 0

    # --- One Pass ---
    print(f"\n=== {get_timestamp()} Scanning '{settings.data_sheet_name}' ===")
    if not submit_pending(watcher, row_queue):
        print("[INFO] No pending rows found.")
    row_queue.join()
    row_queue.stop()
    print_summary(row_queue.outcome_counts, started)
    return 0


# --- Script Entry Point ---
if __name__ == '__main__':
    sys.exit(main())
