"""
Notification audit log, kept as a tab in the register spreadsheet.

Entries are buffered during the run and written with a single append_rows
call. The tab is trimmed from the top so it never grows past max_rows.
"""

import logging

import gspread

log = logging.getLogger(__name__)

HEADERS = [
    "Timestamp",
    "Document ID",
    "Document Type",
    "Days Left",
    "Recipient",
    "Channel",
    "Kind",
    "Status",
    "Error",
]

FIELDS = [
    "timestamp",
    "record_id",
    "document_type",
    "days_left",
    "recipient",
    "channel",
    "kind",
    "status",
    "error",
]


def get_or_create_log_tab(spreadsheet: gspread.Spreadsheet, title: str) -> gspread.Worksheet:
    """Return the log worksheet, creating it with a header row if it doesn't exist."""
    try:
        return spreadsheet.worksheet(title)
    except gspread.exceptions.WorksheetNotFound:
        log.info("Creating new tab '%s'", title)
        ws = spreadsheet.add_worksheet(title=title, rows=1000, cols=len(HEADERS))
        ws.append_row(HEADERS, value_input_option="RAW")
        return ws


class SheetAuditLog:
    def __init__(self, worksheet: gspread.Worksheet, max_rows: int = 5000):
        self.worksheet = worksheet
        self.max_rows = max_rows
        self.pending: list[dict] = []

    def append(self, entry: dict) -> None:
        self.pending.append(entry)

    def flush(self) -> int:
        """Write buffered entries. Returns the number of rows written."""
        if not self.pending:
            return 0
        rows = [[entry.get(f, "") for f in FIELDS] for entry in self.pending]
        self.worksheet.append_rows(rows, value_input_option="RAW")
        written = len(rows)
        self.pending = []
        log.info("Wrote %d audit log row(s) to '%s'", written, self.worksheet.title)
        self._trim()
        return written

    def _trim(self) -> None:
        # Row 1 is the header; data rows are 2..N
        data_rows = len(self.worksheet.col_values(1)) - 1
        excess = data_rows - self.max_rows
        if self.max_rows > 0 and excess > 0:
            self.worksheet.delete_rows(2, 1 + excess)
            log.info("Trimmed %d old audit log row(s)", excess)
