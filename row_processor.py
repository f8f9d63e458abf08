# row_processor.py
"""
Processes one form response row into an emailed request PDF.

For an edited data row the processor:
- takes the process-wide template lock (bounded wait),
- skips rows already carrying the processed marker or missing required fields,
- fills the request template (a disposable copy, or the shared sheet),
- exports it as PDF, stores it in the output Drive folder and emails it,
- writes the processed marker once the email has been sent.

Also provides the edit-event filter, a single-worker serializing queue with
backpressure, the scan that finds rows still waiting to be processed, and a
watcher that reports a waiting row again only after it has been edited.
"""
from __future__ import annotations
import hashlib
import queue
import threading
import time
import traceback
from collections import Counter
from dataclasses import dataclass
from typing import Callable

import email_sender
from config import Settings
from google_services import parse_a1
from template_filler import build_aliases, build_cell_map, changed_cells, fill_template_grid, format_request_date

# --- Row outcomes ---
PROCESSED = 'PROCESSED'
ALREADY_PROCESSED = 'ALREADY_PROCESSED'
MISSING_DATA = 'MISSING_DATA'
LOCK_TIMEOUT = 'LOCK_TIMEOUT'
EMAIL_FAILED = 'EMAIL_FAILED'
ERROR = 'ERROR'
INVALID_ROW = 'INVALID_ROW'

HEADER_ROW = 1

# Guards the template for every processor in this process.
TEMPLATE_LOCK = threading.Lock()


@dataclass
class EditEvent:
    """An edit notification: which sheet changed and on which row."""
    sheet_name: str
    row: int


class RowProcessor:

    def __init__(self, settings: Settings, sheets, drive, exporter,
                 send_email: Callable[..., bool] | None = None,
                 lock: threading.Lock | None = None):
        self.settings = settings
        self.sheets = sheets
        self.drive = drive
        self.exporter = exporter
        self.send_email = send_email or email_sender.send_email_with_attachment
        self.lock = lock if lock is not None else TEMPLATE_LOCK

    def handle_edit(self, event: EditEvent) -> str | None:
        """Processes the edited row if it is a data row of the data table; ignores anything else."""
        if event.sheet_name != self.settings.data_sheet_name or event.row <= HEADER_ROW:
            return None
        return self.process_row(event.row)

    def process_row(self, row: int) -> str:
        """
        Runs the full request workflow for one data row.

        Returns one of the outcome constants. Failures inside the workflow are
        printed and reported as ERROR; the processed marker is then left untouched
        so a later edit of the row retries it.
        """
        if row <= HEADER_ROW:
            print(f"  [WARNING] Row {row} is the header or invalid. Ignoring.")
            return INVALID_ROW

        if not self.lock.acquire(timeout=self.settings.lock_timeout_seconds):
            print(f"  [ERROR] Could not acquire the template lock within {self.settings.lock_timeout_seconds}s. Row {row} not processed.")
            return LOCK_TIMEOUT
        try:
            return self._process_locked(row)
        except Exception as e:
            print(f"  [ERROR] Failed to process row {row}: {type(e).__name__}: {e}")
            traceback.print_exc()
            return ERROR
        finally:
            self.lock.release()

    def _process_locked(self, row: int) -> str:
        s = self.settings

        status = self.sheets.read_cell(s.data_sheet_name, row, s.status_column)
        if str(status).strip() == s.processed_marker:
            print(f"  [SKIP] Row {row} already marked '{s.processed_marker}'.")
            return ALREADY_PROCESSED

        fields = self.sheets.read_row_values(s.data_sheet_name, row, s.first_field_column, s.field_count)
        missing = [index for index in s.required_fields if not str(fields[index]).strip()]
        if missing:
            print(f"  [WARNING] Missing required data in row {row} (field indexes {missing}). Skipping.")
            return MISSING_DATA

        timestamp = self.sheets.read_cell(s.data_sheet_name, row, s.timestamp_column, render='UNFORMATTED_VALUE')
        formatted_date = format_request_date(timestamp, s.date_format)
        pdf_name = f"Request-{fields[0]}.pdf"
        print(f"  [INFO] Row {row}: request '{fields[0]}' dated {formatted_date}")

        pdf = self._render_request(formatted_date, fields)
        print(f"  [SUCCESS] Rendered {pdf_name} ({len(pdf)} bytes)")

        folder_id = self.drive.get_or_create_folder(s.output_folder_name)
        file_id = self.drive.create_file(folder_id, pdf_name, pdf)
        print(f"  [INFO] Stored {pdf_name} in '{s.output_folder_name}' (file {file_id})")

        recipients = email_sender.resolve_recipients(s, str(fields[1]))
        if not self.send_email(s, recipients, pdf_name, pdf):
            print(f"  [WARNING] Email for row {row} was not sent. Row left unprocessed.")
            return EMAIL_FAILED

        self.sheets.write_cell(s.data_sheet_name, row, s.status_column, s.processed_marker)
        print(f"  [SUCCESS] Row {row} marked '{s.processed_marker}'.")
        return PROCESSED

    # --- Template handling ---

    def _render_request(self, formatted_date: str, fields: list) -> bytes:
        s = self.settings
        if s.template_mode == 'copy':
            sheet_id, title = self.sheets.copy_sheet(s.template_sheet_name)
            try:
                grid = self.sheets.read_grid(title) if s.fill_mode == 'tokens' else []
                self.sheets.write_cells(title, self._request_cells(grid, formatted_date, fields))
                return self._export(title, sheet_id)
            finally:
                self.sheets.delete_sheet(sheet_id)

        # Shared template: filled in place, optionally restored afterwards.
        title = s.template_sheet_name
        sheet_id = self.sheets.get_sheet_id(title)
        snapshot = self.sheets.read_grid(title)
        cells = self._request_cells(snapshot, formatted_date, fields)
        try:
            self.sheets.write_cells(title, cells)
            return self._export(title, sheet_id)
        finally:
            if s.restore_template:
                self._restore(title, snapshot, cells)

    def _request_cells(self, grid: list[list], formatted_date: str, fields: list) -> dict[str, object]:
        """The template cells to write for one request, keyed by A1 address."""
        s = self.settings
        if s.fill_mode == 'cells':
            return build_cell_map(s, formatted_date, fields)
        aliases = build_aliases(formatted_date, fields, s.first_field_column)
        return changed_cells(grid, fill_template_grid(grid, aliases))

    def _export(self, title: str, sheet_id: int) -> bytes:
        s = self.settings
        if s.force_refresh:
            # Rewriting A1 makes the export see the freshly written values.
            value = self.sheets.read_cell(title, 1, 1, render='FORMULA')
            self.sheets.write_cell(title, 1, 1, value)
        if s.render_delay_seconds > 0:
            time.sleep(s.render_delay_seconds)
        return self.exporter.export_pdf(s.spreadsheet_id, sheet_id, s.pdf_layout)

    def _restore(self, title: str, snapshot: list[list], cells: dict[str, object]):
        """Puts back the snapshot value of every cell the request wrote; cells outside it are blanked."""
        original = {}
        for address in cells:
            row, column = parse_a1(address)
            value = ''
            if row <= len(snapshot) and column <= len(snapshot[row - 1]):
                value = snapshot[row - 1][column - 1]
            original[address] = '' if value is None else value
        self.sheets.write_cells(title, original)
        print(f"  [INFO] Template '{title}' restored.")


# ===========================================================
# --- Serializing Queue ---
# ===========================================================

_STOP = object()


class RowQueue:
    """
    Feeds rows to one worker thread so at most one request renders at a time.

    submit() rejects a row when the queue is full and ignores a row that is
    already waiting.
    """

    def __init__(self, processor: RowProcessor, max_size: int = 100):
        self.processor = processor
        self._queue: queue.Queue = queue.Queue(maxsize=max_size)
        self._pending: set[int] = set()
        self._pending_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self.outcome_counts: Counter = Counter()

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._worker_loop, name='row-processor-worker', daemon=True)
        self._thread.start()

    def submit(self, row: int) -> bool:
        with self._pending_lock:
            if row in self._pending:
                return True
            try:
                self._queue.put_nowait(row)
            except queue.Full:
                print(f"  [WARNING] Queue full ({self._queue.maxsize} rows). Row {row} rejected.")
                return False
            self._pending.add(row)
        return True

    def pending(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def join(self):
        """Blocks until every submitted row has been processed."""
        self._queue.join()

    def stop(self):
        """Lets the worker finish the rows already queued, then stops it."""
        if not self._thread:
            return
        self._queue.put(_STOP)
        self._thread.join()
        self._thread = None

    def _worker_loop(self):
        while True:
            row = self._queue.get()
            if row is _STOP:
                self._queue.task_done()
                return
            print(f"\n--- Processing Sheet Row {row} ---")
            outcome = ERROR
            try:
                outcome = self.processor.process_row(row)
            finally:
                with self._pending_lock:
                    self._pending.discard(row)
                self.outcome_counts[outcome] += 1
                self._queue.task_done()
            print(f"--- Row {row} Finished. Status: [{outcome}] ---")


def _pending_row_values(settings: Settings, sheets) -> list[tuple[int, list]]:
    last_column = max(settings.timestamp_column, settings.status_column,
                      settings.first_field_column + settings.field_count - 1)
    first_data_row = HEADER_ROW + 1
    rows = sheets.read_rows(settings.data_sheet_name, first_data_row, last_column)
    pending = []
    for offset, values in enumerate(rows):
        timestamp = values[settings.timestamp_column - 1] if len(values) >= settings.timestamp_column else ''
        status = values[settings.status_column - 1] if len(values) >= settings.status_column else ''
        if str(timestamp).strip() and str(status).strip() != settings.processed_marker:
            pending.append((first_data_row + offset, values))
    return pending


def find_pending_rows(settings: Settings, sheets) -> list[int]:
    """Returns the data rows that have a timestamp but no processed marker yet."""
    return [row for row, _ in _pending_row_values(settings, sheets)]


def row_fingerprint(values: list) -> str:
    """Stable digest of a row's cell values; changes whenever any cell is edited."""
    text = '\x1f'.join('' if value is None else str(value) for value in values).rstrip('\x1f')
    return hashlib.sha1(text.encode('utf-8')).hexdigest()


class RowWatcher:
    """
    Turns repeated scans of the data sheet into edit events.

    A pending row is reported once, and again only after its values change.
    A row whose last attempt failed (email not sent, missing data, error) is
    therefore not retried until someone edits it.
    """

    def __init__(self, settings: Settings, sheets):
        self.settings = settings
        self.sheets = sheets
        self._seen: dict[int, str] = {}

    def changed_rows(self) -> list[tuple[int, str]]:
        """Returns (row, fingerprint) for pending rows that are new or edited since they were last submitted."""
        changed = []
        current = {}
        for row, values in _pending_row_values(self.settings, self.sheets):
            fingerprint = row_fingerprint(values)
            current[row] = fingerprint
            if self._seen.get(row) != fingerprint:
                changed.append((row, fingerprint))
        # Rows no longer pending (processed or cleared) are forgotten.
        for row in list(self._seen):
            if row not in current:
                del self._seen[row]
        return changed

    def mark_submitted(self, row: int, fingerprint: str):
        self._seen[row] = fingerprint
