"""
Unit tests — Division and fee rules (division_service.py).

Ages are counted on the most recent Aug 31 cutoff. Reference dates:
  - TODAY = 2025-10-01 → cutoff 2025-08-31
  - 2025-08-30         → cutoff 2024-08-31
"""
from __future__ import annotations

from datetime import date, timedelta

import pytest

from portal.services.division_service import (
    Division,
    FeeSchedule,
    age_as_of_cutoff,
    division_for,
    format_cents,
    governing_body_fee,
    is_non_contact_division,
    registration_fee,
    requires_weight_verification,
    total_due,
)

TODAY = date(2025, 10, 1)
FEES = FeeSchedule(flag=1600, contact=3000)

LADDER = {
    "male":   [Division.U8, Division.U10, Division.U12, Division.U14, Division.U16, Division.U18, Division.ADULT],
    "female": [Division.U8, Division.U10, Division.U12, Division.U14, Division.GU15, Division.GU18, Division.ADULT],
    "other":  [Division.U8, Division.U10, Division.U12, Division.U14, Division.U16, Division.U18, Division.ADULT],
}


# ─────────────────────────── Cutoff age ──────────────────────────────────────

@pytest.mark.parametrize("dob,today,expected", [
    (date(2017, 3, 15), TODAY,             8),   # after this year's cutoff
    (date(2017, 3, 15), date(2025, 8, 30), 7),   # before it: last year's cutoff
    (date(2017, 3, 15), date(2025, 8, 31), 8),   # on the cutoff day
    (date(2017, 8, 31), TODAY,             8),   # birthday on the cutoff
    (date(2017, 9, 1),  TODAY,             7),   # birthday one day after
    (date(2000, 2, 29), TODAY,             25),  # leap-day birthday
])
def test_age_as_of_cutoff(dob: date, today: date, expected: int) -> None:
    assert age_as_of_cutoff(dob, today) == expected


# ─────────────────────────── Division ────────────────────────────────────────

@pytest.mark.parametrize("dob,gender,expected", [
    (date(2019, 5, 1),  "male",   Division.U8),
    (date(2017, 3, 15), "male",   Division.U10),
    (date(2014, 2, 10), "female", Division.U12),
    (date(2012, 1, 1),  "male",   Division.U14),
    (date(2011, 1, 1),  "male",   Division.U16),
    (date(2011, 1, 1),  "female", Division.GU15),
    (date(2011, 1, 1),  "other",  Division.U16),
    (date(2009, 1, 1),  "male",   Division.U18),
    (date(2009, 1, 1),  "female", Division.GU18),
    (date(2007, 1, 1),  "female", Division.ADULT),
])
def test_division_for(dob: date, gender: str, expected: str) -> None:
    assert division_for(dob, gender, TODAY) == expected


def test_division_is_stable_under_recomputation() -> None:
    dob = date(2014, 6, 30)
    first = division_for(dob, "female", TODAY)
    assert all(division_for(dob, "female", TODAY) == first for _ in range(5))


@pytest.mark.parametrize("gender", ["male", "female", "other"])
def test_division_is_monotonic_in_age(gender: str) -> None:
    """Walking from youngest to oldest never lands in a younger bucket."""
    ladder = LADDER[gender]
    dob = date(2021, 8, 31)
    previous = 0
    while dob > date(1999, 1, 1):
        rank = ladder.index(division_for(dob, gender, TODAY))
        assert rank >= previous, f"{dob} ({gender}) dropped to {ladder[rank]}"
        previous = rank
        dob -= timedelta(days=23)


def test_end_to_end_u10_scenario() -> None:
    division = division_for(date(2017, 3, 15), "male", TODAY)
    assert age_as_of_cutoff(date(2017, 3, 15), TODAY) == 8
    assert division == Division.U10
    assert requires_weight_verification(division) is True
    assert governing_body_fee(division, FEES) == FEES.contact


# ─────────────────────────── Division flags ──────────────────────────────────

@pytest.mark.parametrize("division", Division.ORDER)
def test_weight_verification_only_u10_u12(division: str) -> None:
    assert requires_weight_verification(division) is (division in ("U10", "U12"))


@pytest.mark.parametrize("division", Division.ORDER)
def test_non_contact_only_u8(division: str) -> None:
    assert is_non_contact_division(division) is (division == "U8")


# ─────────────────────────── Fees ────────────────────────────────────────────

@pytest.mark.parametrize("fees", [FEES, FeeSchedule(flag=1, contact=2), FeeSchedule(flag=4500, contact=1200)])
@pytest.mark.parametrize("division", Division.ORDER)
def test_governing_body_fee(division: str, fees: FeeSchedule) -> None:
    expected = fees.flag if division == Division.U8 else fees.contact
    assert governing_body_fee(division, fees) == expected


def test_registration_fee_adds_dues() -> None:
    assert registration_fee(Division.U8, 25000, FEES) == 26600
    assert registration_fee(Division.U14, 25000, FEES) == 28000


def test_two_player_total() -> None:
    total = total_due([Division.U8, Division.U12], 25000, FEES)
    assert total == 25000 + 1600 + 25000 + 3000 == 54600
    assert format_cents(total) == "$546.00"


def test_total_for_no_players_is_zero() -> None:
    assert total_due([], 25000, FEES) == 0


@pytest.mark.parametrize("cents,expected", [
    (0,       "$0.00"),
    (1600,    "$16.00"),
    (123456,  "$1,234.56"),
])
def test_format_cents(cents: int, expected: str) -> None:
    assert format_cents(cents) == expected
