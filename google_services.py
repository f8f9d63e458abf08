# google_services.py
"""
Thin wrappers over the Google APIs the row processor talks to.

Handles:
- Google Authentication (OAuth 2.0, token.json reuse and refresh).
- The tabular store: reading/writing cells and ranges of the spreadsheet,
  copying and deleting sheets (Sheets API v4).
- The file store: finding/creating the output folder and uploading the PDF
  (Drive API v3).
- The document renderer: exporting one sheet of the spreadsheet as PDF.
"""
from __future__ import annotations
import io
import os
import re
import traceback

from google.auth.transport.requests import AuthorizedSession, Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload

import config
from config import PdfLayout

FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'
PDF_MIME_TYPE = 'application/pdf'
EXPORT_URL_TEMPLATE = 'https://docs.google.com/spreadsheets/d/{spreadsheet_id}/export'
EXPORT_TIMEOUT_SECONDS = 120


class RenderError(Exception):
    """Raised when the spreadsheet export does not return a PDF."""


# ===========================================================
# --- A1 Notation Helpers ---
# ===========================================================

def column_letter(column: int) -> str:
    """Converts a 1-based column number to its sheet letter (1 -> A, 27 -> AA)."""
    if column < 1:
        raise ValueError(f"Column numbers start at 1, got {column}")
    letters = ''
    while column:
        column, remainder = divmod(column - 1, 26)
        letters = chr(ord('A') + remainder) + letters
    return letters


def column_number(letters: str) -> int:
    """Converts a sheet column letter to its 1-based number (A -> 1, AA -> 27)."""
    number = 0
    for char in letters.upper():
        number = number * 26 + (ord(char) - ord('A') + 1)
    return number


def parse_a1(address: str) -> tuple[int, int]:
    """Splits a single-cell address such as 'B10' into (row, column)."""
    match = re.fullmatch(r'([A-Za-z]+)(\d+)', address.strip())
    if not match:
        raise ValueError(f"Not a single-cell A1 address: '{address}'")
    return int(match.group(2)), column_number(match.group(1))


def quote_sheet_name(sheet_name: str) -> str:
    return "'" + sheet_name.replace("'", "''") + "'"


def a1_range(sheet_name: str, row: int, column: int, num_rows: int = 1, num_columns: int = 1) -> str:
    """Builds an A1 range such as 'Form Responses 1'!C5:AN5."""
    start = f"{column_letter(column)}{row}"
    if num_rows == 1 and num_columns == 1:
        return f"{quote_sheet_name(sheet_name)}!{start}"
    end = f"{column_letter(column + num_columns - 1)}{row + num_rows - 1}"
    return f"{quote_sheet_name(sheet_name)}!{start}:{end}"


# ===========================================================
# --- Authentication ---
# ===========================================================

def _save_token(creds: Credentials, token_path: str):
    try:
        with open(token_path, 'w') as token_file:
            token_file.write(creds.to_json())
        print(f"[INFO] Token saved to {os.path.basename(token_path)}")
    except OSError as e:
        print(f"[WARNING] Error saving token file: {e}")


def authenticate(token_path: str = config.TOKEN_FILE, credentials_path: str = config.CREDENTIALS_FILE) -> Credentials | None:
    """
    Handles Google Authentication using OAuth 2.0 credentials.

    Loads existing tokens from token.json, refreshes if expired,
    or initiates the OAuth flow for the user if no valid token exists.

    Returns:
        Credentials | None: Valid Google API credentials object, or None on failure.
    """
    creds = None

    if os.path.exists(token_path):
        try:
            creds = Credentials.from_authorized_user_file(token_path, config.SCOPES)
            print(f"[INFO] Loaded credentials from {os.path.basename(token_path)}")
        except ValueError as e:
            print(f"[WARNING] Error loading token file '{os.path.basename(token_path)}': {e}. Will attempt re-authentication.")
            creds = None

    if creds and creds.valid:
        print("[SUCCESS] Existing credentials are valid.")
        return creds

    if creds and creds.expired and creds.refresh_token:
        print("[INFO] Credentials expired. Attempting to refresh token...")
        try:
            creds.refresh(Request())
            print("[SUCCESS] Token refreshed successfully.")
            _save_token(creds, token_path)
            return creds
        except Exception as e:
            print(f"[ERROR] Failed to refresh token: {e}")
            print("  >>> Will proceed to full re-authentication.")

    print("[INFO] No valid credentials found. Starting OAuth 2.0 flow...")
    if not os.path.exists(credentials_path):
        print(f"[ERROR] OAuth credentials file ('{os.path.basename(credentials_path)}') not found.")
        print("  >>> Please download your OAuth 2.0 Client ID credentials from Google Cloud Console and save as 'credentials.json'.")
        return None
    try:
        flow = InstalledAppFlow.from_client_secrets_file(credentials_path, config.SCOPES)
        print("[ACTION] Please follow the prompts in your web browser to authorize access.")
        creds = flow.run_local_server(port=0)
        print("[SUCCESS] OAuth flow completed.")
        _save_token(creds, token_path)
        return creds
    except Exception as e:
        print(f"[ERROR] An error occurred during the OAuth authentication flow: {e}")
        traceback.print_exc()
        return None


# ===========================================================
# --- Tabular Store (Sheets API) ---
# ===========================================================

class SheetsStore:
    """Cell and range access to one spreadsheet."""

    def __init__(self, service, spreadsheet_id: str):
        self.service = service
        self.spreadsheet_id = spreadsheet_id
        self._sheet_ids: dict[str, int] = {}

    def _values(self):
        return self.service.spreadsheets().values()

    def get_sheet_id(self, sheet_name: str) -> int:
        """Returns the stable numeric id (gid) of a sheet by its title."""
        if sheet_name not in self._sheet_ids:
            meta = self.service.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id,
                fields='sheets.properties(sheetId,title)'
            ).execute()
            for sheet in meta.get('sheets', []):
                props = sheet.get('properties', {})
                self._sheet_ids[props.get('title')] = props.get('sheetId')
        if sheet_name not in self._sheet_ids:
            raise KeyError(f"Sheet '{sheet_name}' not found in spreadsheet {self.spreadsheet_id}")
        return self._sheet_ids[sheet_name]

    def read_range(self, range_a1: str, render: str = 'FORMATTED_VALUE') -> list[list]:
        result = self._values().get(
            spreadsheetId=self.spreadsheet_id,
            range=range_a1,
            valueRenderOption=render,
            dateTimeRenderOption='SERIAL_NUMBER'
        ).execute()
        return result.get('values', [])

    def read_cell(self, sheet_name: str, row: int, column: int, render: str = 'FORMATTED_VALUE'):
        values = self.read_range(a1_range(sheet_name, row, column), render=render)
        if not values or not values[0]:
            return ''
        return values[0][0]

    def read_row_values(self, sheet_name: str, row: int, column: int, count: int) -> list:
        """Reads `count` cells of one row, padding trailing empty cells with ''."""
        values = self.read_range(a1_range(sheet_name, row, column, 1, count))
        row_values = list(values[0]) if values else []
        return row_values + [''] * (count - len(row_values))

    def read_rows(self, sheet_name: str, start_row: int, num_columns: int) -> list[list]:
        """Reads columns A..<num_columns> from `start_row` down to the last used row."""
        return self.read_range(f"{quote_sheet_name(sheet_name)}!A{start_row}:{column_letter(num_columns)}")

    def read_grid(self, sheet_name: str) -> list[list]:
        """Reads the used range of a sheet as a rectangular grid (formulas kept as formulas)."""
        grid = self.read_range(quote_sheet_name(sheet_name), render='FORMULA')
        width = max((len(row) for row in grid), default=0)
        return [list(row) + [''] * (width - len(row)) for row in grid]

    def write_cell(self, sheet_name: str, row: int, column: int, value):
        self._values().update(
            spreadsheetId=self.spreadsheet_id,
            range=a1_range(sheet_name, row, column),
            valueInputOption='USER_ENTERED',
            body={'values': [[value]]}
        ).execute()

    def write_cells(self, sheet_name: str, cells: dict[str, object]):
        """Writes several single cells given as {'B10': value, ...} in one request."""
        if not cells:
            return
        data = [
            {'range': f"{quote_sheet_name(sheet_name)}!{address}", 'values': [[value]]}
            for address, value in cells.items()
        ]
        self._values().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={'valueInputOption': 'USER_ENTERED', 'data': data}
        ).execute()

    def copy_sheet(self, sheet_name: str) -> tuple[int, str]:
        """Duplicates a sheet inside the same spreadsheet. Returns (sheet_id, title) of the copy."""
        props = self.service.spreadsheets().sheets().copyTo(
            spreadsheetId=self.spreadsheet_id,
            sheetId=self.get_sheet_id(sheet_name),
            body={'destinationSpreadsheetId': self.spreadsheet_id}
        ).execute()
        return props['sheetId'], props['title']

    def delete_sheet(self, sheet_id: int):
        self.service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={'requests': [{'deleteSheet': {'sheetId': sheet_id}}]}
        ).execute()


# ===========================================================
# --- File Store (Drive API) ---
# ===========================================================

class DriveStore:
    """Output folder lookup/creation and file upload."""

    def __init__(self, service):
        self.service = service

    def find_folders_by_name(self, name: str) -> list[str]:
        escaped = name.replace('\\', '\\\\').replace("'", "\\'")
        result = self.service.files().list(
            q=f"name = '{escaped}' and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false",
            spaces='drive',
            fields='files(id, name)'
        ).execute()
        return [f['id'] for f in result.get('files', [])]

    def create_folder(self, name: str) -> str:
        folder = self.service.files().create(
            body={'name': name, 'mimeType': FOLDER_MIME_TYPE},
            fields='id'
        ).execute()
        print(f"  [INFO] Created Drive folder '{name}' ({folder.get('id')})")
        return folder['id']

    def get_or_create_folder(self, name: str) -> str:
        # First match wins; duplicates created concurrently elsewhere are not merged.
        folder_ids = self.find_folders_by_name(name)
        if folder_ids:
            return folder_ids[0]
        return self.create_folder(name)

    def create_file(self, folder_id: str, name: str, content: bytes, mime_type: str = PDF_MIME_TYPE) -> str:
        media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=False)
        created = self.service.files().create(
            body={'name': name, 'parents': [folder_id]},
            media_body=media,
            fields='id'
        ).execute()
        return created['id']


# ===========================================================
# --- Document Renderer (Spreadsheet PDF export) ---
# ===========================================================

class PdfExporter:
    """Renders one sheet of a spreadsheet to PDF bytes through the export endpoint."""

    def __init__(self, session, timeout: float = EXPORT_TIMEOUT_SECONDS):
        self.session = session
        self.timeout = timeout

    def export_pdf(self, spreadsheet_id: str, sheet_id: int, layout: PdfLayout) -> bytes:
        params = layout.to_query_params()
        params['gid'] = str(sheet_id)
        response = self.session.get(
            EXPORT_URL_TEMPLATE.format(spreadsheet_id=spreadsheet_id),
            params=params,
            timeout=self.timeout
        )
        if response.status_code != 200:
            raise RenderError(f"PDF export failed for sheet {sheet_id}: HTTP {response.status_code}")
        content = response.content
        if not content.startswith(b'%PDF'):
            raise RenderError(f"PDF export for sheet {sheet_id} did not return a PDF document")
        return content


def build_services(creds: Credentials, spreadsheet_id: str) -> tuple[SheetsStore, DriveStore, PdfExporter]:
    """Builds the three collaborators from one set of credentials."""
    sheets_service = build('sheets', 'v4', credentials=creds, cache_discovery=False)
    drive_service = build('drive', 'v3', credentials=creds, cache_discovery=False)
    return (
        SheetsStore(sheets_service, spreadsheet_id),
        DriveStore(drive_service),
        PdfExporter(AuthorizedSession(creds)),
    )
