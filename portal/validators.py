"""
Input validation for wizard text handlers — Pydantic v2 models.

Used to validate guardian-supplied text before it enters the wizard
aggregate. Keeps validation logic out of handler code and makes it
trivially testable.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Literal, Optional, Tuple

from pydantic import BaseModel, ValidationError, field_validator

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MIN_PLAYER_AGE = 4
MAX_PLAYER_AGE = 25

# Accepted date-of-birth spellings besides ISO (YYYY-MM-DD)
_DOB_FORMATS = ("%m/%d/%Y", "%d.%m.%Y")


def _blank_to_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


def _years_before(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        # Feb 29 → Feb 28
        return today.replace(year=today.year - years, day=28)


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value.strip()))


def is_valid_phone(value: str) -> bool:
    digits = re.sub(r"\D", "", value)
    return len(digits) in (10, 11)


class GuardianData(BaseModel):
    """
    Parent / guardian details collected on the first wizard step.

    Attributes
    ----------
    email, first_name, last_name : required
    phone                        : optional, 10 or 11 digits
    address_*                    : optional free text
    """

    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_email(v):
            raise ValueError("Please enter a valid email address")
        return v.lower()

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        if len(v) > 100:
            raise ValueError("Name must be at most 100 characters")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        v = _blank_to_none(v)
        if v is not None and not is_valid_phone(v):
            raise ValueError("Please enter a valid phone number")
        return v

    @field_validator("address_line1", "address_line2", "city", "state", "postal_code")
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class PlayerData(BaseModel):
    """
    One player as entered on the Players step.

    date_of_birth accepts ISO dates plus MM/DD/YYYY and DD.MM.YYYY; the
    player must be between 4 and 25 years old today.
    """

    first_name: str
    last_name: str
    date_of_birth: date
    gender: Literal["male", "female", "other"]
    medical_conditions: Optional[str] = None
    allergies: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        if len(v) > 100:
            raise ValueError("Name must be at most 100 characters")
        return v

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def parse_date_of_birth(cls, v):
        if isinstance(v, str):
            raw = v.strip()
            for fmt in _DOB_FORMATS:
                try:
                    return datetime.strptime(raw, fmt).date()
                except ValueError:
                    continue
            return raw
        return v

    @field_validator("date_of_birth")
    @classmethod
    def validate_age_range(cls, v: date) -> date:
        today = date.today()
        oldest   = _years_before(today, MAX_PLAYER_AGE)
        youngest = _years_before(today, MIN_PLAYER_AGE)
        if not (oldest <= v <= youngest):
            raise ValueError(
                f"Player must be between {MIN_PLAYER_AGE} and {MAX_PLAYER_AGE} years old"
            )
        return v

    @field_validator(
        "medical_conditions", "allergies", "emergency_contact_name",
        "emergency_contact_phone", "emergency_contact_relationship",
    )
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)


def _placeholder_player() -> dict:
    return {
        "first_name": "x",
        "last_name": "x",
        "date_of_birth": _years_before(date.today(), 10),
        "gender": "other",
    }


_PLACEHOLDERS = {
    GuardianData: lambda: {"email": "guardian@example.com", "first_name": "x", "last_name": "x"},
    PlayerData: _placeholder_player,
}


def check_field(model: type[BaseModel], name: str, value: Any) -> Tuple[Any, Optional[str]]:
    """
    Validate a single field of GuardianData / PlayerData as it is typed in.
    Returns (cleaned value, None) or (None, message for that field).
    """
    try:
        obj = model(**{**_PLACEHOLDERS[model](), name: value})
    except ValidationError as exc:
        for err in exc.errors():
            if err.get("loc", ())[:1] == (name,):
                return None, err.get("msg", "Invalid value").removeprefix("Value error, ")
        return None, "Invalid value"
    return getattr(obj, name), None


def format_validation_error(exc: ValidationError) -> str:
    """Turn a ValidationError into short per-field lines for a chat reply."""
    lines = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "Invalid value").removeprefix("Value error, ")
        lines.append(f"• {field}: {msg}" if field else f"• {msg}")
    return "\n".join(lines)
