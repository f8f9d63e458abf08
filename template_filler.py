# template_filler.py
"""
Fills the request template with the values of one form row.

Two mechanisms are supported:
- Token substitution: every template cell is scanned for `{{Date}}` and
  `{{Colum<Letter>}}` tokens, where <Letter> is the data table column the
  value came from (e.g. `{{ColumC}}` is the request ID).
- Fixed cells: a declarative table maps template cell addresses (B10, B11, ...)
  to data field indexes.

Also turns the submission timestamp into the date string shown on the request.
"""
from __future__ import annotations
import re
from datetime import datetime, timedelta

from config import Settings
from google_services import column_letter

DATE_TOKEN = '{{Date}}'
EMPTY_TEMPLATE_CELL = 'N/A' # Written for template cells that carry no value at all

# Any {{...}} token; unknown tokens are left untouched.
TOKEN_PATTERN = re.compile(r'\{\{[^{}]+\}\}')

# Spreadsheet serial dates count days from this epoch.
SERIAL_EPOCH = datetime(1899, 12, 30)

# Formats tried, in order, when the timestamp arrives as text.
TIMESTAMP_FORMATS = [
    '%m/%d/%Y %H:%M:%S', '%m/%d/%Y', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d',
    '%d/%m/%Y %H:%M:%S', '%d/%m/%Y', '%d-%b-%Y %H:%M:%S',
]


# ===========================================================
# --- Dates ---
# ===========================================================

def parse_timestamp(value) -> datetime | None:
    """
    Converts a timestamp cell into a datetime.

    Accepts a spreadsheet serial number (as returned for unformatted date cells),
    a datetime, or text in one of TIMESTAMP_FORMATS. Returns None if nothing matches.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return SERIAL_EPOCH + timedelta(days=float(value))
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def format_request_date(value, date_format: str = '%d/%m/%Y') -> str:
    """Formats the submission timestamp for the template; unparseable values are used as-is."""
    parsed = parse_timestamp(value)
    if parsed is None:
        fallback = '' if value is None else str(value)
        print(f"  [WARNING] Could not parse timestamp '{fallback}'. Using it verbatim.")
        return fallback
    return parsed.strftime(date_format)


# ===========================================================
# --- Token Substitution ---
# ===========================================================

def _as_text(value) -> str:
    return '' if value is None else str(value)


def build_aliases(formatted_date: str, fields: list, first_field_column: int) -> dict[str, str]:
    """Maps each placeholder token to the text it is replaced with."""
    aliases = {DATE_TOKEN: formatted_date}
    for index, value in enumerate(fields):
        aliases[f"{{{{Colum{column_letter(first_field_column + index)}}}}}"] = _as_text(value)
    return aliases


def substitute_tokens(text: str, aliases: dict[str, str]) -> str:
    """Replaces every known token in one pass; replacement text is never re-scanned."""
    return TOKEN_PATTERN.sub(lambda match: aliases.get(match.group(0), match.group(0)), text)


def fill_template_grid(grid: list[list], aliases: dict[str, str]) -> list[list]:
    """
    Returns a copy of the template grid with every token substituted.

    Cells without a token keep their original value (and type); cells that
    hold None become the literal 'N/A'.
    """
    filled = []
    for row in grid:
        new_row = []
        for cell in row:
            if cell is None:
                new_row.append(EMPTY_TEMPLATE_CELL)
            elif isinstance(cell, str) and '{{' in cell:
                new_row.append(substitute_tokens(cell, aliases))
            else:
                new_row.append(cell)
        filled.append(new_row)
    return filled


def changed_cells(grid: list[list], filled: list[list]) -> dict[str, object]:
    """Returns {'B2': value, ...} for the cells of `filled` that differ from `grid`."""
    changes = {}
    for r, (row, new_row) in enumerate(zip(grid, filled), start=1):
        for c, (cell, new_cell) in enumerate(zip(row, new_row), start=1):
            if cell != new_cell:
                changes[f"{column_letter(c)}{r}"] = new_cell
    return changes


# ===========================================================
# --- Fixed Cells ---
# ===========================================================

def build_cell_map(settings: Settings, formatted_date: str, fields: list) -> dict[str, str]:
    """
    Maps fixed template addresses to row values.

    Field i is written to <fixed_cell_column><fixed_cell_start_row + i> for the
    first `fixed_cell_count` fields; the date goes to `date_cell` when configured.
    """
    cells = {}
    for index in range(min(settings.fixed_cell_count, len(fields))):
        address = f"{settings.fixed_cell_column}{settings.fixed_cell_start_row + index}"
        cells[address] = _as_text(fields[index])
    if settings.date_cell:
        cells[settings.date_cell] = formatted_date
    return cells
