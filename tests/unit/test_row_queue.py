from __future__ import annotations

import threading

import row_processor
from conftest import DATA_SHEET, make_row
from row_processor import RowProcessor, RowQueue, RowWatcher, find_pending_rows, row_fingerprint


def test_submit_rejects_when_full(settings, sheets, drive, exporter, mailer) -> None:
    processor = RowProcessor(settings, sheets, drive, exporter, send_email=mailer, lock=threading.Lock())
    row_queue = RowQueue(processor, max_size=2)

    assert row_queue.submit(2) is True
    assert row_queue.submit(3) is True
    assert row_queue.submit(4) is False
    assert row_queue.pending() == 2


def test_submit_ignores_row_already_waiting(settings, sheets, drive, exporter, mailer) -> None:
    processor = RowProcessor(settings, sheets, drive, exporter, send_email=mailer, lock=threading.Lock())
    row_queue = RowQueue(processor, max_size=1)

    assert row_queue.submit(2) is True
    assert row_queue.submit(2) is True
    assert row_queue.pending() == 1


def test_worker_processes_rows_in_order(settings, sheets, drive, exporter, mailer) -> None:
    processor = RowProcessor(settings, sheets, drive, exporter, send_email=mailer, lock=threading.Lock())
    row_queue = RowQueue(processor, max_size=10)
    row_queue.start()

    for row in (2, 3, 2):
        row_queue.submit(row)
    row_queue.join()
    row_queue.stop()

    assert [mail['name'] for mail in mailer.sent] == ['Request-REQ-100.pdf', 'Request-REQ-200.pdf']
    # A resubmitted row that was already done only hits the idempotence guard
    assert row_queue.outcome_counts[row_processor.PROCESSED] == 2
    assert row_queue.outcome_counts[row_processor.ALREADY_PROCESSED] <= 1
    assert row_queue.pending() == 0


def test_stop_without_start_is_harmless(settings, sheets, drive, exporter, mailer) -> None:
    processor = RowProcessor(settings, sheets, drive, exporter, send_email=mailer)
    RowQueue(processor).stop()


def test_find_pending_rows(settings, sheets) -> None:
    sheets._put_grid(DATA_SHEET, [
        [], [], [],
        make_row('REQ-300', 'c@x.com', 'PN3', status='Processed'),
        make_row('', '', '', timestamp=''),
        make_row('REQ-500', '', '', status='Pending'),
    ])

    assert find_pending_rows(settings, sheets) == [2, 3, 6]


def test_find_pending_rows_handles_short_rows(settings, sheets) -> None:
    sheets.cells[DATA_SHEET] = {(1, 1): 'Timestamp', (2, 1): '11/09/2024 10:15:00'}
    assert find_pending_rows(settings, sheets) == [2]


def test_watcher_reports_each_row_once_until_edited(settings, sheets) -> None:
    watcher = RowWatcher(settings, sheets)

    first = watcher.changed_rows()
    assert [row for row, _ in first] == [2, 3]
    for row, fingerprint in first:
        watcher.mark_submitted(row, fingerprint)

    assert watcher.changed_rows() == []

    sheets.write_cell(DATA_SHEET, 2, 5, 'PN1-B')
    assert [row for row, _ in watcher.changed_rows()] == [2]


def test_watcher_offers_unsubmitted_rows_again(settings, sheets) -> None:
    watcher = RowWatcher(settings, sheets)
    row, fingerprint = watcher.changed_rows()[0]
    watcher.mark_submitted(row, fingerprint)

    assert [r for r, _ in watcher.changed_rows()] == [3]


def test_watcher_forgets_processed_rows(settings, sheets) -> None:
    watcher = RowWatcher(settings, sheets)
    for row, fingerprint in watcher.changed_rows():
        watcher.mark_submitted(row, fingerprint)

    sheets.write_cell(DATA_SHEET, 2, 40, 'Processed')
    assert watcher.changed_rows() == []
    assert set(watcher._seen) == {3}

    # Clearing the marker by hand counts as an edit
    sheets.write_cell(DATA_SHEET, 2, 40, '')
    assert [row for row, _ in watcher.changed_rows()] == [2]


def test_row_fingerprint_ignores_trailing_blanks() -> None:
    assert row_fingerprint(['a', 'b']) == row_fingerprint(['a', 'b', '', None])
    assert row_fingerprint(['a', 'b']) != row_fingerprint(['a', 'c'])
