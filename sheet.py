"""
Google Sheets access for the fleet document register.

Values come from gspread; explicit cell colors come from the Sheets v4 REST
API because gspread does not expose formatting on get_all_values().
"""

import logging
from datetime import date

import google.auth.transport.requests
import gspread
import httpx
from google.oauth2.service_account import Credentials as ServiceCredentials
from gspread.utils import DateTimeOption, ValueRenderOption, rowcol_to_a1

from colors import rgb_to_hex
from config import ConfigError, Settings
from documents import record_id, soonest_days_left
from expiry import classify_status

log = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
FORMAT_FIELDS = "sheets.data.rowData.values.userEnteredFormat(backgroundColor,textFormat.foregroundColor)"
BATCH_SIZE = 500


def open_spreadsheet(settings: Settings) -> tuple[ServiceCredentials, gspread.Spreadsheet]:
    creds = ServiceCredentials.from_service_account_file(settings.credentials_path, scopes=SCOPES)
    gc = gspread.authorize(creds)
    return creds, gc.open_by_key(settings.sheet_id)


def get_worksheet(spreadsheet: gspread.Spreadsheet, settings: Settings) -> gspread.Worksheet:
    """Register tab by gid, else by name, else the first tab."""
    if settings.sheet_gid is not None:
        for ws in spreadsheet.worksheets():
            if ws.id == settings.sheet_gid:
                return ws
        raise ConfigError(f"No worksheet found with gid={settings.sheet_gid}")
    if settings.sheet_tab_name:
        try:
            return spreadsheet.worksheet(settings.sheet_tab_name)
        except gspread.exceptions.WorksheetNotFound:
            raise ConfigError(f"No worksheet named '{settings.sheet_tab_name}'") from None
    return spreadsheet.sheet1


def read_config_tab(spreadsheet: gspread.Spreadsheet, title: str) -> dict[str, str]:
    """Read an optional two-column key/value tab. Missing tab gives {}."""
    if not title:
        return {}
    try:
        ws = spreadsheet.worksheet(title)
    except gspread.exceptions.WorksheetNotFound:
        return {}

    overrides = {}
    for row in ws.get_all_values():
        if len(row) < 2:
            continue
        key, value = row[0].strip(), row[1].strip()
        if not key or key.lower() == "key":
            continue
        overrides[key] = value
    log.info("Loaded %d setting(s) from '%s' tab", len(overrides), title)
    return overrides


# ---------------------------------------------------------------------------
# Cell formatting
# ---------------------------------------------------------------------------

def parse_format_rows(row_data: list[dict], columns: dict[str, int], first_col: int) -> list[dict]:
    """Convert REST rowData into [{header: {"font": hex, "background": hex}}] per row.

    *columns* maps header -> 0-based sheet column; *first_col* is the 0-based
    column the fetched range starts at.
    """
    result = []
    for row in row_data:
        cells = row.get("values", [])
        formats = {}
        for header, col in columns.items():
            j = col - first_col
            fmt = cells[j].get("userEnteredFormat", {}) if 0 <= j < len(cells) else {}
            formats[header] = {
                "font": rgb_to_hex(fmt.get("textFormat", {}).get("foregroundColor")),
                "background": rgb_to_hex(fmt.get("backgroundColor")),
            }
        result.append(formats)
    return result


def fetch_formatting(
    creds: ServiceCredentials,
    settings: Settings,
    title: str,
    columns: dict[str, int],
    total_rows: int,
) -> dict[int, dict]:
    """Fetch explicit font/background colors for *columns*.

    Returns a dict mapping data row index (0-based, header excluded) -> formats.
    """
    if not columns or total_rows <= 0:
        return {}

    creds_copy = creds.with_scopes(["https://www.googleapis.com/auth/spreadsheets.readonly"])
    creds_copy.refresh(google.auth.transport.requests.Request())

    first_col = min(columns.values())
    last_col = max(columns.values())
    sheet_ref = "'" + title.replace("'", "''") + "'"

    result = {}
    for start in range(2, total_rows + 2, BATCH_SIZE):
        end = min(start + BATCH_SIZE - 1, total_rows + 1)
        range_str = f"{sheet_ref}!{rowcol_to_a1(start, first_col + 1)}:{rowcol_to_a1(end, last_col + 1)}"
        resp = httpx.get(
            f"{SHEETS_API}/{settings.sheet_id}",
            headers={"Authorization": f"Bearer {creds_copy.token}"},
            params={"ranges": range_str, "fields": FORMAT_FIELDS},
            timeout=60,
        )
        resp.raise_for_status()
        data = resp.json()

        rows = data.get("sheets", [{}])[0].get("data", [{}])[0].get("rowData", [])
        for i, formats in enumerate(parse_format_rows(rows, columns, first_col)):
            result[start - 2 + i] = formats

    return result


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def build_records(all_rows: list[list], settings: Settings, formats: dict[int, dict] | None = None) -> list[dict]:
    """Turn raw sheet values (header row first) into record dicts."""
    if not all_rows:
        return []
    headers = [str(h).strip() for h in all_rows[0]]
    records = []
    for i, row in enumerate(all_rows[1:]):
        values = {h: (row[j] if j < len(row) else "") for j, h in enumerate(headers) if h}
        records.append({"row": i + 2, "values": values, "formats": (formats or {}).get(i, {})})
    return records


def check_columns(headers: list[str], settings: Settings) -> None:
    required = [settings.id_column, *settings.date_columns]
    missing = [c for c in required if c not in headers]
    if missing:
        raise ConfigError(f"Register is missing required column(s): {', '.join(missing)}")
    for optional in (settings.inspection_column, settings.label_column,
                     settings.plant_column, settings.location_column):
        if optional and optional not in headers:
            log.warning("Column '%s' not found in register, ignoring", optional)


def read_records(worksheet: gspread.Worksheet, creds: ServiceCredentials, settings: Settings) -> list[dict]:
    """Read every register row with the explicit colors of its date cells.

    Values are read unformatted so date cells arrive as serial numbers,
    independent of the spreadsheet locale. Dates typed as text stay strings.
    """
    all_rows = worksheet.get_all_values(
        value_render_option=ValueRenderOption.unformatted,
        date_time_render_option=DateTimeOption.serial_number,
    )
    if not all_rows:
        raise ConfigError(f"Register tab '{worksheet.title}' is empty")

    headers = [str(h).strip() for h in all_rows[0]]
    check_columns(headers, settings)

    date_cols = {c: headers.index(c) for c in settings.date_columns}
    log.info("Fetching date cell formatting for %d rows...", len(all_rows) - 1)
    formats = fetch_formatting(creds, settings, worksheet.title, date_cols, len(all_rows) - 1)

    records = build_records(all_rows, settings, formats)
    log.info("Loaded %d row(s) from '%s'", len(records), worksheet.title)
    return records


# ---------------------------------------------------------------------------
# Whole-row status write-back
# ---------------------------------------------------------------------------

def status_cells(records: list[dict], headers: list[str], today: date, settings: Settings) -> list[gspread.Cell]:
    """Cells to write for the optional Status / Days Left columns."""
    targets = {}
    for column in (settings.status_column, settings.days_left_column):
        if not column:
            continue
        if column not in headers:
            log.warning("Column '%s' not found in register, not writing it", column)
            continue
        targets[column] = headers.index(column) + 1

    cells = []
    if not targets:
        return cells
    for record in records:
        if not record_id(record, settings):
            continue
        days_left = soonest_days_left(record, today, settings)
        if settings.status_column in targets:
            cells.append(gspread.Cell(record["row"], targets[settings.status_column], classify_status(days_left)))
        if settings.days_left_column in targets:
            cells.append(gspread.Cell(
                record["row"], targets[settings.days_left_column],
                "" if days_left is None else days_left,
            ))
    return cells


def sync_status_column(worksheet: gspread.Worksheet, records: list[dict], today: date, settings: Settings) -> int:
    """Write each record's whole-row status in one batched update. Returns cells written."""
    if not settings.status_column and not settings.days_left_column:
        return 0
    headers = [h.strip() for h in worksheet.row_values(1)]
    cells = status_cells(records, headers, today, settings)
    if cells:
        worksheet.update_cells(cells, value_input_option="USER_ENTERED")
    log.info("Updated %d status cell(s)", len(cells))
    return len(cells)
