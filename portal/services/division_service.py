"""
Division and fee rules.

Eligibility is fixed at a season-wide cutoff (Aug 31) rather than at each
player's birthday, following the governing body's age-bracketing rules:

  age on cutoff  <8  → U8   (non-contact "flag" play)
                 <10 → U10  (weight verification)
                 <12 → U12  (weight verification)
                 <14 → U14
                 <16 → U16  / GU15 for girls
                 <18 → U18  / GU18 for girls
                 else Adult

Everything here is pure and total; date strings are parsed and range-checked
in portal.validators before they reach these functions.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

CUTOFF_MONTH = 8
CUTOFF_DAY   = 31


class Division:
    U8    = "U8"
    U10   = "U10"
    U12   = "U12"
    U14   = "U14"
    U16   = "U16"
    GU15  = "GU15"
    U18   = "U18"
    GU18  = "GU18"
    ADULT = "Adult"

    # Youngest first; used to check bucket ordering
    ORDER = (U8, U10, U12, U14, U16, GU15, U18, GU18, ADULT)

    WEIGHT_VERIFIED = frozenset({U10, U12})
    NON_CONTACT     = frozenset({U8})


@dataclass(frozen=True)
class FeeSchedule:
    """Governing-body fee per player, in cents."""
    flag:    int
    contact: int


# ─────────────────────────── Age ─────────────────────────────────────────────

def age_as_of_cutoff(
    dob: date,
    today: Optional[date] = None,
    cutoff_month: int = CUTOFF_MONTH,
    cutoff_day: int = CUTOFF_DAY,
) -> int:
    """
    Age in whole years on the most recently passed cutoff date.

    Before this year's cutoff the previous year's cutoff is the reference;
    on the cutoff day itself this year's cutoff applies.
    """
    today = today or date.today()
    cutoff = date(today.year, cutoff_month, cutoff_day)
    if today < cutoff:
        cutoff = date(today.year - 1, cutoff_month, cutoff_day)

    age = cutoff.year - dob.year
    if (cutoff.month, cutoff.day) < (dob.month, dob.day):
        age -= 1
    return age


# ─────────────────────────── Division ────────────────────────────────────────

def division_for(dob: date, gender: str, today: Optional[date] = None) -> str:
    """Competitive division from date of birth and gender."""
    age = age_as_of_cutoff(dob, today)
    female = gender == "female"

    if age < 8:
        return Division.U8
    if age < 10:
        return Division.U10
    if age < 12:
        return Division.U12
    if age < 14:
        return Division.U14
    if age < 16:
        return Division.GU15 if female else Division.U16
    if age < 18:
        return Division.GU18 if female else Division.U18
    return Division.ADULT


def requires_weight_verification(division: str) -> bool:
    return division in Division.WEIGHT_VERIFIED


def is_non_contact_division(division: str) -> bool:
    return division in Division.NON_CONTACT


# ─────────────────────────── Fees ────────────────────────────────────────────

def governing_body_fee(division: str, fee_schedule: FeeSchedule) -> int:
    if is_non_contact_division(division):
        return fee_schedule.flag
    return fee_schedule.contact


def registration_fee(division: str, club_dues_cents: int, fee_schedule: FeeSchedule) -> int:
    """Club dues plus the governing-body fee for one player."""
    return club_dues_cents + governing_body_fee(division, fee_schedule)


def total_due(
    divisions: Iterable[str],
    club_dues_cents: int,
    fee_schedule: FeeSchedule,
) -> int:
    return sum(registration_fee(d, club_dues_cents, fee_schedule) for d in divisions)


def format_cents(cents: int) -> str:
    """1600 → '$16.00'"""
    return f"${cents / 100:,.2f}"
