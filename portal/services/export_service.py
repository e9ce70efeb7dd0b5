"""
Roster export — CSV document and Google Sheets.

Both exports share one row layout (ROSTER_HEADERS / roster_row), one row per
registration, newest first.

Sheet layout
------------
Row 1: Club and season title
Row 2: Export timestamp
Row 3: blank
Row 4: Column headers (bold, blue)
Row 5…: One row per registration; paid rows tinted green, waitlist amber
"""
from __future__ import annotations

import csv
import io
import logging
import re
from datetime import datetime
from typing import List, Optional

import gspread_asyncio
from google.oauth2.service_account import Credentials

from portal.config import settings
from portal.models.models import Club, Registration, RegistrationStatus
from portal.services.division_service import format_cents

logger = logging.getLogger(__name__)

ROSTER_HEADERS = [
    "Player First Name",
    "Player Last Name",
    "Date of Birth",
    "Gender",
    "Division",
    "Guardian First Name",
    "Guardian Last Name",
    "Guardian Email",
    "Guardian Phone",
    "Address",
    "City",
    "State",
    "Zip",
    "Status",
    "Payment",
    "Payment Date",
    "Headshot",
    "DOB Document",
    "Medical Conditions",
    "Allergies",
    "Emergency Contact",
    "Emergency Phone",
    "Registered At",
]

# ── Colour palette (RGB 0-1 float for Sheets API) ────────────────────────────
COLOUR = {
    "header_bg": {"red": 0.176, "green": 0.310, "blue": 0.576},
    "header_fg": {"red": 1.0,   "green": 1.0,   "blue": 1.0},
    "paid":      {"red": 0.851, "green": 0.918, "blue": 0.827},
    "waitlist":  {"red": 1.0,   "green": 0.949, "blue": 0.800},
}


def _date(value) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


def roster_row(registration: Registration) -> List[str]:
    player   = registration.player
    guardian = player.guardian
    return [
        player.first_name or "",
        player.last_name or "",
        _date(player.date_of_birth),
        player.gender or "",
        registration.division or "",
        guardian.first_name or "",
        guardian.last_name or "",
        guardian.email or "",
        guardian.phone or "",
        guardian.address_line1 or "",
        guardian.city or "",
        guardian.state or "",
        guardian.postal_code or "",
        registration.status or "",
        format_cents(registration.payment_amount_cents) if registration.payment_amount_cents else "",
        _date(registration.payment_date),
        "Yes" if player.headshot_file_id else "No",
        "Yes" if player.dob_document_file_id else "No",
        player.medical_conditions or "",
        player.allergies or "",
        player.emergency_contact_name or "",
        player.emergency_contact_phone or "",
        _date(registration.created_at),
    ]


def export_filename(club: Club, season_slug: str) -> str:
    name = re.sub(r"\s+", "_", club.name)
    return f"{name}_registrations_{season_slug}.csv"


def build_roster_csv(registrations: List[Registration]) -> bytes:
    """CSV bytes (UTF-8 with BOM so spreadsheet apps pick the encoding up)."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(ROSTER_HEADERS)
    for r in registrations:
        writer.writerow(roster_row(r))
    return buf.getvalue().encode("utf-8-sig")


# ── Google Sheets ─────────────────────────────────────────────────────────────

async def export_to_sheets(
    club: Club,
    season_slug: str,
    registrations: List[Registration],
) -> Optional[str]:
    """
    Write the roster to a worksheet named after the club season.
    Returns the spreadsheet URL, or None if Sheets is not configured.
    """
    if not settings.sheets_enabled:
        logger.warning("Google Sheets export requested but not configured.")
        return None

    creds_info = settings.google_credentials
    scopes = [
        "https://spreadsheets.google.com/feeds",
        "https://www.googleapis.com/auth/drive",
    ]

    def _make_credentials():
        return Credentials.from_service_account_info(creds_info, scopes=scopes)

    agcm = gspread_asyncio.AsyncioGspreadClientManager(_make_credentials)
    agc  = await agcm.authorize()
    spreadsheet = await agc.open_by_key(settings.GOOGLE_SPREADSHEET_ID)

    sheet_title = f"{club.name} {season_slug}"[:100]
    try:
        worksheet = await spreadsheet.worksheet(sheet_title)
        await worksheet.clear()
    except Exception:
        worksheet = await spreadsheet.add_worksheet(
            title=sheet_title, rows=max(len(registrations) + 10, 100), cols=len(ROSTER_HEADERS)
        )
    sheet_id = worksheet.ws.id

    all_rows: list[list] = [
        [f"{club.name}  |  {season_slug}"],
        [f"Exported: {datetime.now().strftime('%Y-%m-%d %H:%M')}"],
        [],
        ROSTER_HEADERS,
    ]
    width = len(ROSTER_HEADERS)
    format_requests: list[dict] = [
        _fmt_range(sheet_id, 4, 1, 4, width, bg=COLOUR["header_bg"], fg=COLOUR["header_fg"], bold=True),
    ]

    current_row = 5
    for r in registrations:
        all_rows.append(roster_row(r))
        if r.status == RegistrationStatus.WAITLIST:
            format_requests.append(_fmt_range(sheet_id, current_row, 1, current_row, width, bg=COLOUR["waitlist"]))
        elif r.status not in (RegistrationStatus.DRAFT, RegistrationStatus.CANCELLED):
            format_requests.append(_fmt_range(sheet_id, current_row, 1, current_row, width, bg=COLOUR["paid"]))
        current_row += 1

    await worksheet.update(all_rows, "A1")

    try:
        await spreadsheet.batch_update({"requests": format_requests})
    except Exception as fmt_err:
        logger.warning("Could not apply formatting: %s", fmt_err)

    return f"https://docs.google.com/spreadsheets/d/{settings.GOOGLE_SPREADSHEET_ID}"


def _fmt_range(
    sheet_id: int,
    start_row: int,
    start_col: int,
    end_row: int,
    end_col: int,
    bg: Optional[dict] = None,
    fg: Optional[dict] = None,
    bold: bool = False,
) -> dict:
    """Sheets API repeatCell request (1-based, inclusive rows / columns)."""
    fmt: dict = {}
    if bg:
        fmt["backgroundColor"] = bg
    if fg or bold:
        fmt["textFormat"] = {}
        if fg:
            fmt["textFormat"]["foregroundColor"] = fg
        if bold:
            fmt["textFormat"]["bold"] = True

    return {
        "repeatCell": {
            "range": {
                "sheetId":          sheet_id,
                "startRowIndex":    start_row - 1,
                "endRowIndex":      end_row,
                "startColumnIndex": start_col - 1,
                "endColumnIndex":   end_col,
            },
            "cell": {"userEnteredFormat": fmt},
            "fields": "userEnteredFormat(backgroundColor,textFormat)",
        }
    }
