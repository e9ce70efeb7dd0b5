"""
Weigh-in tickets.

Players in weight-verified divisions get a QR ticket with their
confirmation. The code carries `WEIGHIN:<token>`; the token is the
registration's `checkin_token`, which an admin scans (or types) at the
weigh-in table. Rendering uses `segno`, a pure-Python QR encoder.
"""
from __future__ import annotations

import io
import uuid
from typing import Optional

import segno

TICKET_PREFIX = "WEIGHIN:"


def make_checkin_token() -> str:
    """Random UUID4 token for one registration."""
    return str(uuid.uuid4())


def ticket_payload(token: str) -> str:
    return f"{TICKET_PREFIX}{token}"


def parse_ticket_payload(text: str) -> Optional[str]:
    """
    Token from scanned or typed ticket text, or None if it is not a ticket.
    A bare token is accepted as well.
    """
    text = text.strip()
    if text.upper().startswith(TICKET_PREFIX):
        text = text[len(TICKET_PREFIX):]
    return text.lower() if is_valid_token(text) else None


def is_valid_token(token: str) -> bool:
    try:
        val = uuid.UUID(token, version=4)
    except (ValueError, AttributeError):
        return False
    return str(val) == token.lower()


def render_ticket(token: str, scale: int = 10, border: int = 2) -> io.BytesIO:
    """
    PNG of the ticket QR code as a seeked buffer, ready for aiogram's
    BufferedInputFile.
    """
    qr  = segno.make_qr(ticket_payload(token), error="H")
    buf = io.BytesIO()
    qr.save(buf, kind="png", scale=scale, border=border)
    buf.seek(0)
    return buf
