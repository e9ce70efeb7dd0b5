"""
Tests — Admin operations: status changes, weigh-in, dashboard figures,
roster export and weigh-in tickets.
"""
from __future__ import annotations

import csv
import io

import pytest

from portal.models.models import Club, RegistrationStatus
from portal.services.export_service import ROSTER_HEADERS, build_roster_csv, export_filename
from portal.services.notification_service import format_confirmation, format_status_change
from portal.services.qr_service import (
    is_valid_token,
    make_checkin_token,
    parse_ticket_payload,
    render_ticket,
    ticket_payload,
)
from portal.services.reconciliation_service import ConfirmationNotice, handle_event
from portal.services.registration_service import (
    StatusTransitionError,
    get_registration,
    get_registration_by_checkin_token,
    list_payments,
    list_registrations,
    mark_weight_verified,
    payment_totals,
    prepare_checkout,
    registration_stats,
    update_registration_status,
)

from conftest import TODAY, checkout_event


@pytest.fixture
async def drafts(async_session, club_season, guardian, two_players) -> list[int]:
    """Registration ids of the U8 and U12 players, still in draft."""
    club, season = club_season
    two_players.players[1].allergies = 'nuts, "tree" pollen'
    quote = await prepare_checkout(async_session, club, season, guardian, two_players, today=TODAY)
    await async_session.commit()
    return quote.registration_ids


@pytest.fixture
async def paid(session_factory, drafts) -> list[int]:
    await handle_event(session_factory, checkout_event(drafts))
    return drafts


# ─────────────────────────── Status changes ──────────────────────────────────

class TestStatusChanges:
    async def test_paid_is_never_set_manually(self, session_factory, drafts) -> None:
        async with session_factory() as session:
            with pytest.raises(StatusTransitionError, match="automatically"):
                await update_registration_status(session, drafts[0], RegistrationStatus.PAID)

    async def test_draft_can_be_cancelled(self, session_factory, drafts) -> None:
        async with session_factory() as session:
            r = await update_registration_status(session, drafts[0], RegistrationStatus.CANCELLED)
            assert r.status == RegistrationStatus.CANCELLED

    async def test_draft_cannot_skip_payment(self, session_factory, drafts) -> None:
        async with session_factory() as session:
            with pytest.raises(StatusTransitionError, match="Cannot move"):
                await update_registration_status(session, drafts[0], RegistrationStatus.SUBMITTED)

    async def test_unknown_status_and_registration(self, session_factory, drafts) -> None:
        async with session_factory() as session:
            with pytest.raises(StatusTransitionError, match="Unknown status"):
                await update_registration_status(session, drafts[0], "archived")
            with pytest.raises(StatusTransitionError, match="not found"):
                await update_registration_status(session, 9999, RegistrationStatus.CANCELLED)

    async def test_paid_follows_the_chain(self, session_factory, paid) -> None:
        chain = [
            RegistrationStatus.SUBMITTED,
            RegistrationStatus.PENDING_VERIFICATION,
            RegistrationStatus.VERIFIED,
            RegistrationStatus.COMPLETE,
        ]
        async with session_factory() as session:
            for status in chain:
                r = await update_registration_status(session, paid[0], status)
                assert r.status == status
            with pytest.raises(StatusTransitionError):
                await update_registration_status(session, paid[0], RegistrationStatus.CANCELLED)

    async def test_waitlist_notice_text(self, session_factory, drafts) -> None:
        async with session_factory() as session:
            r = await update_registration_status(session, drafts[0], RegistrationStatus.WAITLIST)
            text = format_status_change(r)
        assert "Waitlist" in text
        assert "Sam Jones" in text
        assert "season is full" in text


# ─────────────────────────── Weigh-in ────────────────────────────────────────

class TestWeighIn:
    async def test_flag_division_is_not_weighed(self, session_factory, paid) -> None:
        async with session_factory() as session:
            with pytest.raises(StatusTransitionError, match="does not require"):
                await mark_weight_verified(session, paid[0])

    async def test_draft_is_not_weighed(self, session_factory, drafts) -> None:
        async with session_factory() as session:
            with pytest.raises(StatusTransitionError, match="Only paid"):
                await mark_weight_verified(session, drafts[1])

    async def test_paid_contact_player(self, session_factory, paid) -> None:
        async with session_factory() as session:
            r = await mark_weight_verified(session, paid[1], weight_kg=41.5)
            assert r.weight_verified
            assert r.weight_kg == 41.5

    async def test_ticket_lookup(self, session_factory, paid) -> None:
        async with session_factory() as session:
            r = await get_registration(session, paid[1])
            token = parse_ticket_payload(ticket_payload(r.checkin_token))
            found = await get_registration_by_checkin_token(session, token)
        assert found.id == paid[1]
        assert found.player.display_name == "Alex Jones"


# ─────────────────────────── Dashboard ───────────────────────────────────────

async def test_stats_count_a_shared_checkout_once(session_factory, club_season, paid) -> None:
    club, season = club_season
    async with session_factory() as session:
        stats = await registration_stats(session, club.id, season.slug)
    assert stats.total == 2
    assert stats.paid == 2
    assert stats.drafts == 0
    assert stats.revenue_cents == 54600
    assert stats.awaiting_weigh_in == 1
    assert stats.by_division == {"U8": 1, "U12": 1}


async def test_stats_for_drafts(session_factory, club_season, drafts) -> None:
    club, season = club_season
    async with session_factory() as session:
        stats = await registration_stats(session, club.id, season.slug)
    assert stats.drafts == 2
    assert stats.revenue_cents == 0
    assert stats.by_status == {RegistrationStatus.DRAFT: 2}


async def test_payment_totals(session_factory, club_season, paid) -> None:
    club, _ = club_season
    async with session_factory() as session:
        totals = payment_totals(await list_payments(session, club.id))
    assert totals.count == 2
    assert totals.total_cents == 54600
    assert totals.club_cents == 50000
    assert totals.governing_body_cents == 4600


# ─────────────────────────── Export ──────────────────────────────────────────

async def test_roster_csv(session_factory, club_season, paid) -> None:
    club, season = club_season
    async with session_factory() as session:
        registrations = await list_registrations(session, club.id, season.slug)
    data = build_roster_csv(registrations)

    assert data.startswith(b"\xef\xbb\xbf")
    rows = list(csv.reader(io.StringIO(data.decode("utf-8-sig"))))
    assert rows[0] == ROSTER_HEADERS
    assert len(rows[0]) == 23
    assert len(rows) == 3

    by_name = {row[0]: dict(zip(ROSTER_HEADERS, row)) for row in rows[1:]}
    alex = by_name["Alex"]
    assert alex["Allergies"] == 'nuts, "tree" pollen'
    assert alex["Division"] == "U12"
    assert alex["Status"] == RegistrationStatus.PAID
    assert alex["Payment"] == "$546.00"
    assert alex["Headshot"] == "Yes"
    assert alex["Guardian Email"] == "pat.jones@example.com"


def test_empty_roster_has_headers_only() -> None:
    rows = list(csv.reader(io.StringIO(build_roster_csv([]).decode("utf-8-sig"))))
    assert rows == [ROSTER_HEADERS]


def test_export_filename() -> None:
    club = Club(name="Riverside  Rugby Club", slug="riverside")
    assert export_filename(club, "2025-fall") == "Riverside_Rugby_Club_registrations_2025-fall.csv"


# ─────────────────────────── Weigh-in tickets ────────────────────────────────

class TestTickets:
    def test_token_format(self) -> None:
        token = make_checkin_token()
        assert is_valid_token(token)
        assert token != make_checkin_token()

    def test_parse(self) -> None:
        token = make_checkin_token()
        assert parse_ticket_payload(ticket_payload(token)) == token
        assert parse_ticket_payload(f"  weighin:{token.upper()} ") == token
        assert parse_ticket_payload(token) == token
        assert parse_ticket_payload("WEIGHIN:not-a-token") is None
        assert parse_ticket_payload("hello") is None

    def test_render_png(self) -> None:
        assert render_ticket(make_checkin_token()).read(8) == b"\x89PNG\r\n\x1a\n"


# ─────────────────────────── Confirmation text ───────────────────────────────

def test_confirmation_text() -> None:
    notice = ConfirmationNotice(
        guardian_telegram_id=1,
        guardian_name="Pat <Jones>",
        guardian_email="pat@example.com",
        club_name="Riverside Rugby Club",
        club_email="info@riverside.example.org",
        players=[{"name": "Sam Jones", "division": "U8"}],
        total_paid="$266.00",
        payment_reference="pi_1",
        practice_location="Riverside Park",
        documents_complete=False,
        documents_upload_url="https://register.example.org/riverside/documents/1",
    )
    text = format_confirmation(notice)
    assert "Pat &lt;Jones&gt;" in text
    assert "$266.00" in text
    assert "Riverside Park" in text
    assert "Documents still needed" in text
    assert "/riverside/documents/1" in text
    assert "info@riverside.example.org" in text
