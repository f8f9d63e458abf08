# config.py
"""
Configuration module for the Component Request PDF Mailer.

Loads environment variables, defines constants for Google API scopes,
file paths and email server settings, and builds the explicit `Settings`
structure that is handed to every collaborator at startup (sheet names,
column layout, template behaviour, override recipients, PDF layout).
"""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Mapping

from dotenv import load_dotenv

# --- Environment Variable Loading ---
# Ensure you have a .env file in the project root with at least:
# SPREADSHEET_ID=YOUR_SHEET_ID
# EMAIL_SENDER=your_email@example.com
# EMAIL_PASSWORD=your_email_app_password
load_dotenv()

# --- Google API Configuration ---
SCOPES = [
    'https://www.googleapis.com/auth/spreadsheets', # Read form rows, fill template, write status
    'https://www.googleapis.com/auth/drive'         # Export PDF, find/create output folder, upload
]

# --- File Paths ---
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
CREDENTIALS_FILE = os.path.join(BASE_DIR, 'credentials.json') # Google OAuth 2.0 Client Secrets file
TOKEN_FILE = os.path.join(BASE_DIR, 'token.json')             # Stores user's access and refresh tokens

# --- Email Server Configuration ---
SMTP_SERVER = os.getenv('SMTP_SERVER', 'smtp.gmail.com')
SMTP_PORT = int(os.getenv('SMTP_PORT', '465'))  # 465=SSL, 587=STARTTLS
EMAIL_USE_SSL = (SMTP_PORT == 465)

# --- Data Table Column Layout (1-based sheet columns) ---
TIMESTAMP_COLUMN = 1       # Column A: form submission timestamp
FIRST_FIELD_COLUMN = 3     # Column C: request ID, first of the data fields
FIELD_COUNT = 38           # Columns C..AN
STATUS_COLUMN = 40         # Column AN: processed marker
REQUIRED_FIELDS = (0, 1, 2) # Request ID, recipient email, part number
PROCESSED_MARKER = 'Processed'

# --- Recognised modes ---
FILL_MODES = ('tokens', 'cells')
TEMPLATE_MODES = ('copy', 'shared')

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off'}


class ConfigError(Exception):
    """Raised when the environment does not describe a usable configuration."""


@dataclass
class PdfLayout:
    """Layout parameters sent with the spreadsheet PDF export request."""
    size: str = 'A4'
    portrait: bool = True
    fit_to_width: bool = True
    gridlines: bool = False
    repeat_frozen_rows: bool = False
    sheet_names: bool = False
    print_title: bool = False
    page_numbers: bool = False
    top_margin: float = 0.5
    bottom_margin: float = 0.25
    left_margin: float = 0.5
    right_margin: float = 0.5

    def to_query_params(self) -> dict[str, str]:
        def flag(value: bool) -> str:
            return 'true' if value else 'false'

        return {
            'format': 'pdf',
            'size': self.size,
            'portrait': flag(self.portrait),
            'fitw': flag(self.fit_to_width),
            'gridlines': flag(self.gridlines),
            'fzr': flag(self.repeat_frozen_rows),
            'sheetnames': flag(self.sheet_names),
            'printtitle': flag(self.print_title),
            'pagenumbers': flag(self.page_numbers),
            'top_margin': str(self.top_margin),
            'bottom_margin': str(self.bottom_margin),
            'left_margin': str(self.left_margin),
            'right_margin': str(self.right_margin),
            'attachment': 'true',
        }


@dataclass
class Settings:
    """Everything the row processor and its collaborators need, resolved once at startup."""
    spreadsheet_id: str
    email_sender: str
    email_password: str
    email_override: bool = True
    override_recipients: list[str] = field(default_factory=list)
    app_title: str = 'Generate and send PDFs'
    output_folder_name: str = 'Component Requests PDFs'
    data_sheet_name: str = 'Form Responses 1'
    template_sheet_name: str = 'Request Template'

    timestamp_column: int = TIMESTAMP_COLUMN
    first_field_column: int = FIRST_FIELD_COLUMN
    field_count: int = FIELD_COUNT
    status_column: int = STATUS_COLUMN
    required_fields: tuple[int, ...] = REQUIRED_FIELDS
    processed_marker: str = PROCESSED_MARKER

    fill_mode: str = 'tokens'
    template_mode: str = 'copy'
    restore_template: bool = True
    date_format: str = '%d/%m/%Y'
    force_refresh: bool = True
    render_delay_seconds: float = 0.0

    # Fixed-cell mode: field i goes to <fixed_cell_column><fixed_cell_start_row + i>
    fixed_cell_column: str = 'B'
    fixed_cell_start_row: int = 10
    fixed_cell_count: int = 36
    date_cell: str | None = None

    lock_timeout_seconds: float = 10.0
    queue_max_size: int = 100
    poll_interval_seconds: float = 60.0

    smtp_server: str = SMTP_SERVER
    smtp_port: int = SMTP_PORT
    pdf_layout: PdfLayout = field(default_factory=PdfLayout)

    @property
    def email_use_ssl(self) -> bool:
        return self.smtp_port == 465


def _parse_bool(name: str, raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean (true/false), got '{raw}'")


def _parse_number(name: str, raw: str | None, default, cast):
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'") from None


def _parse_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(',') if item.strip()]


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """
    Builds the Settings structure from environment variables.

    Args:
        env (Mapping[str, str] | None): Variables to read. Defaults to os.environ
            (already populated from .env by load_dotenv at import time).

    Returns:
        Settings: The validated configuration.

    Raises:
        ConfigError: If required variables are missing or a value is not recognised.
    """
    env = os.environ if env is None else env
    print("[INFO] Loading configuration from environment variables...")

    # --- Validation: Check if essential environment variables are set ---
    required = ('SPREADSHEET_ID', 'EMAIL_SENDER', 'EMAIL_PASSWORD')
    missing_vars = [name for name in required if not env.get(name)]
    if missing_vars:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing_vars)}")

    defaults = Settings(spreadsheet_id='', email_sender='', email_password='')
    smtp_port = _parse_number('SMTP_PORT', env.get('SMTP_PORT'), SMTP_PORT, int)

    settings = Settings(
        spreadsheet_id=env['SPREADSHEET_ID'],
        email_sender=env['EMAIL_SENDER'],
        email_password=env['EMAIL_PASSWORD'],
        email_override=_parse_bool('EMAIL_OVERRIDE', env.get('EMAIL_OVERRIDE'), defaults.email_override),
        override_recipients=_parse_list(env.get('EMAIL_ADDRESS_OVERRIDE')),
        app_title=env.get('APP_TITLE') or defaults.app_title,
        output_folder_name=env.get('OUTPUT_FOLDER_NAME') or defaults.output_folder_name,
        data_sheet_name=env.get('DATA_SHEET_NAME') or defaults.data_sheet_name,
        template_sheet_name=env.get('REQUEST_TEMPLATE_SHEET_NAME') or defaults.template_sheet_name,
        fill_mode=(env.get('FILL_MODE') or defaults.fill_mode).strip().lower(),
        template_mode=(env.get('TEMPLATE_MODE') or defaults.template_mode).strip().lower(),
        restore_template=_parse_bool('RESTORE_TEMPLATE', env.get('RESTORE_TEMPLATE'), defaults.restore_template),
        date_format=env.get('DATE_FORMAT') or defaults.date_format,
        force_refresh=_parse_bool('FORCE_REFRESH', env.get('FORCE_REFRESH'), defaults.force_refresh),
        render_delay_seconds=_parse_number('RENDER_DELAY_SECONDS', env.get('RENDER_DELAY_SECONDS'), defaults.render_delay_seconds, float),
        date_cell=env.get('DATE_CELL') or None,
        lock_timeout_seconds=_parse_number('LOCK_TIMEOUT_SECONDS', env.get('LOCK_TIMEOUT_SECONDS'), defaults.lock_timeout_seconds, float),
        queue_max_size=_parse_number('QUEUE_MAX_SIZE', env.get('QUEUE_MAX_SIZE'), defaults.queue_max_size, int),
        poll_interval_seconds=_parse_number('POLL_INTERVAL_SECONDS', env.get('POLL_INTERVAL_SECONDS'), defaults.poll_interval_seconds, float),
        smtp_server=env.get('SMTP_SERVER') or SMTP_SERVER,
        smtp_port=smtp_port,
    )

    if settings.fill_mode not in FILL_MODES:
        raise ConfigError(f"FILL_MODE must be one of {FILL_MODES}, got '{settings.fill_mode}'")
    if settings.template_mode not in TEMPLATE_MODES:
        raise ConfigError(f"TEMPLATE_MODE must be one of {TEMPLATE_MODES}, got '{settings.template_mode}'")
    if settings.email_override and not settings.override_recipients:
        raise ConfigError("EMAIL_OVERRIDE is enabled but EMAIL_ADDRESS_OVERRIDE lists no addresses")
    if settings.queue_max_size < 1:
        raise ConfigError("QUEUE_MAX_SIZE must be at least 1")

    print("[SUCCESS] Configuration loaded successfully.")
    return settings
