# Shared pytest fixtures: in-memory stand-ins for the Google collaborators
from __future__ import annotations
import threading
import time

import pytest

from config import Settings
from google_services import parse_a1

DATA_SHEET = 'Form Responses 1'
TEMPLATE_SHEET = 'Request Template'
TIMESTAMP = '11/09/2024 10:15:00'

TEMPLATE_GRID = [
    ['Component Request', '{{Date}}'],
    ['Request ID', '{{ColumC}}'],
    ['Email', '{{ColumD}}'],
    ['Part', 'Part {{ColumE}} / {{ColumE}}'],
    ['Notes', 'no token here'],
    ['Unknown', '{{ColumZZZ}}'],
]


def make_row(request_id: str, email: str, part: str, status: str = '', timestamp=TIMESTAMP) -> list:
    """A 40-column form response: timestamp in A, fields in C..AN, status in AN."""
    row = [''] * 40
    row[0] = timestamp
    row[2] = request_id
    row[3] = email
    row[4] = part
    for column in range(6, 40):
        row[column - 1] = f"F{column}"
    row[39] = status
    return row


class FakeSheetsStore:
    def __init__(self):
        self.cells: dict[str, dict[tuple[int, int], object]] = {}
        self.sheet_ids: dict[str, int] = {}
        self.writes: list[tuple] = []
        self.deleted: list[int] = []
        self._next_id = 100
        self._mutex = threading.Lock()

    # --- test helpers ---
    def add_sheet(self, name: str, grid: list[list]):
        self.sheet_ids[name] = self._next_id
        self._next_id += 1
        self.cells[name] = {}
        self._put_grid(name, grid)

    def title_for(self, sheet_id: int) -> str:
        return next(name for name, sid in self.sheet_ids.items() if sid == sheet_id)

    def value(self, name: str, row: int, column: int):
        return self.cells[name].get((row, column), '')

    def grid(self, name: str) -> list[list]:
        cells = self.cells[name]
        if not cells:
            return []
        height = max(r for r, _ in cells)
        width = max(c for _, c in cells)
        return [[cells.get((r, c), '') for c in range(1, width + 1)] for r in range(1, height + 1)]

    def _put_grid(self, name: str, grid: list[list]):
        for r, row in enumerate(grid, start=1):
            for c, value in enumerate(row, start=1):
                self.cells[name][(r, c)] = value

    # --- tabular store interface ---
    def get_sheet_id(self, sheet_name: str) -> int:
        return self.sheet_ids[sheet_name]

    def read_cell(self, sheet_name, row, column, render='FORMATTED_VALUE'):
        return self.value(sheet_name, row, column)

    def read_row_values(self, sheet_name, row, column, count):
        return [self.value(sheet_name, row, column + i) for i in range(count)]

    def read_rows(self, sheet_name, start_row, num_columns):
        grid = self.grid(sheet_name)
        return [row[:num_columns] for row in grid[start_row - 1:]]

    def read_grid(self, sheet_name):
        return self.grid(sheet_name)

    def write_cell(self, sheet_name, row, column, value):
        self.writes.append(('cell', sheet_name, row, column, value))
        self.cells[sheet_name][(row, column)] = value

    def write_cells(self, sheet_name, cells):
        if not cells:
            return
        self.writes.append(('cells', sheet_name, dict(cells)))
        # Widen the window between cell writes so interleaving would show up.
        for address, value in cells.items():
            self.cells[sheet_name][parse_a1(address)] = value
            time.sleep(0.001)

    def copy_sheet(self, sheet_name):
        with self._mutex:
            title = f"Copy {self._next_id} of {sheet_name}"
            self.add_sheet(title, self.grid(sheet_name))
            return self.sheet_ids[title], title

    def delete_sheet(self, sheet_id):
        title = self.title_for(sheet_id)
        self.deleted.append(sheet_id)
        del self.cells[title]
        del self.sheet_ids[title]


class FakeExporter:
    """Renders by capturing the sheet's current grid."""

    def __init__(self, store: FakeSheetsStore, delay: float = 0.0, error: Exception | None = None):
        self.store = store
        self.delay = delay
        self.error = error
        self.exports: list[dict] = []

    def export_pdf(self, spreadsheet_id, sheet_id, layout):
        if self.error is not None:
            raise self.error
        title = self.store.title_for(sheet_id)
        time.sleep(self.delay)
        self.exports.append({
            'spreadsheet_id': spreadsheet_id,
            'sheet_id': sheet_id,
            'title': title,
            'grid': self.store.grid(title),
        })
        return b'%PDF-1.4 fake request'


class FakeDriveStore:
    def __init__(self):
        self.folders: dict[str, str] = {}
        self.files: list[tuple[str, str, bytes]] = []

    def get_or_create_folder(self, name):
        if name not in self.folders:
            self.folders[name] = f"folder-{len(self.folders) + 1}"
        return self.folders[name]

    def create_file(self, folder_id, name, content, mime_type='application/pdf'):
        self.files.append((folder_id, name, content))
        return f"file-{len(self.files)}"


class FakeMailer:
    def __init__(self, result: bool = True):
        self.result = result
        self.sent: list[dict] = []

    def __call__(self, settings, recipients, attachment_name, attachment):
        self.sent.append({'recipients': list(recipients), 'name': attachment_name, 'content': attachment})
        return self.result


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        spreadsheet_id='spreadsheet-123',
        email_sender='requests@example.com',
        email_password='app-password',
        email_override=True,
        override_recipients=['ops@example.com', 'lead@example.com'],
        lock_timeout_seconds=5,
    )


@pytest.fixture()
def sheets() -> FakeSheetsStore:
    store = FakeSheetsStore()
    header = ['Timestamp', 'Email Address'] + [f"Field {i}" for i in range(3, 41)]
    store.add_sheet(DATA_SHEET, [
        header,
        make_row('REQ-100', 'a@x.com', 'PN1'),
        make_row('REQ-200', 'b@x.com', 'PN2'),
    ])
    store.add_sheet(TEMPLATE_SHEET, TEMPLATE_GRID)
    return store


@pytest.fixture()
def drive() -> FakeDriveStore:
    return FakeDriveStore()


@pytest.fixture()
def exporter(sheets) -> FakeExporter:
    return FakeExporter(sheets)


@pytest.fixture()
def mailer() -> FakeMailer:
    return FakeMailer()
