"""
Integration tests — Payment reconciliation (reconciliation_service.py).

Registrations are prepared the way the bot does it (prepare_checkout), then
Stripe events are applied through handle_event. Every check of the outcome
uses a fresh session so that only committed state is observed.
"""
from __future__ import annotations

import json
import time

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from portal.models.models import NotificationLog, Payment, Registration, RegistrationStatus
from portal.services import reconciliation_service
from portal.services.reconciliation_service import (
    ReconciliationError,
    ReconcileOutcome,
    WebhookSignatureError,
    handle_event,
    parse_registration_ids,
    payment_reference_of,
    verify_webhook,
)
from portal.services.registration_service import prepare_checkout

from conftest import TODAY, FakeSender, checkout_event, sign_payload, signed_event


async def _prepare(async_session, club_season, guardian, data) -> list[int]:
    club, season = club_season
    quote = await prepare_checkout(async_session, club, season, guardian, data, today=TODAY)
    await async_session.commit()
    return quote.registration_ids


async def _rows(session_factory, model) -> list:
    async with session_factory() as session:
        result = await session.execute(select(model).order_by(model.id))
        return list(result.scalars().all())


# ─────────────────────────── checkout.session.completed ──────────────────────

async def test_paid_registrations_and_ledger(
    session_factory, async_session, club_season, guardian, two_players, fake_sender
) -> None:
    ids = await _prepare(async_session, club_season, guardian, two_players)

    result = await handle_event(session_factory, checkout_event(ids), fake_sender)
    assert result.outcome == ReconcileOutcome.APPLIED
    assert result.payment_reference == "pi_test_001"
    assert result.delivered is True

    regs = await _rows(session_factory, Registration)
    assert [r.status for r in regs] == [RegistrationStatus.PAID] * 2
    assert all(r.payment_reference == "pi_test_001" for r in regs)
    assert all(r.payment_amount_cents == 54600 for r in regs)
    assert all(r.club_dues_paid for r in regs)
    # Only the U12 player is weighed in
    assert regs[0].checkin_token is None
    assert regs[1].checkin_token is not None

    payments = await _rows(session_factory, Payment)
    assert [(p.club_portion_cents, p.governing_body_portion_cents) for p in payments] == [
        (25000, 1600), (25000, 3000),
    ]
    assert sum(p.total_amount_cents for p in payments) == 54600
    assert {p.checkout_session_id for p in payments} == {"cs_test_001"}

    [log] = await _rows(session_factory, NotificationLog)
    assert log.delivered is True
    assert log.sent_at is not None


async def test_confirmation_notice(
    session_factory, async_session, club_season, guardian, two_players, fake_sender
) -> None:
    ids = await _prepare(async_session, club_season, guardian, two_players)
    await handle_event(session_factory, checkout_event(ids), fake_sender)

    [notice] = fake_sender.sent
    assert notice.guardian_telegram_id == 555001
    assert notice.club_name == "Riverside Rugby Club"
    assert notice.total_paid == "$546.00"
    assert notice.players == [
        {"name": "Sam Jones", "division": "U8"},
        {"name": "Alex Jones", "division": "U12"},
    ]
    assert notice.practice_location == "Riverside Park, Field 2"
    assert notice.documents_complete
    assert notice.documents_upload_url is None
    assert [name for name, _ in notice.weigh_in_tickets] == ["Alex Jones"]


async def test_missing_documents_link(
    session_factory, async_session, club_season, guardian, two_players, fake_sender
) -> None:
    two_players.players[0].headshot = None
    ids = await _prepare(async_session, club_season, guardian, two_players)
    await handle_event(session_factory, checkout_event(ids), fake_sender)

    notice = fake_sender.sent[0]
    assert not notice.documents_complete
    assert notice.documents_upload_url == f"https://register.example.org/riverside/documents/{ids[0]}"


async def test_replay_changes_nothing(
    session_factory, async_session, club_season, guardian, two_players, fake_sender
) -> None:
    ids = await _prepare(async_session, club_season, guardian, two_players)

    first  = await handle_event(session_factory, checkout_event(ids), fake_sender)
    replay = await handle_event(
        session_factory, checkout_event(ids, event_id="evt_test_002"), fake_sender
    )

    assert first.outcome == ReconcileOutcome.APPLIED
    assert replay.outcome == ReconcileOutcome.ALREADY_APPLIED
    assert replay.notice is None
    assert len(fake_sender.sent) == 1
    assert len(await _rows(session_factory, Payment)) == 2
    assert len(await _rows(session_factory, NotificationLog)) == 1


async def test_failure_part_way_leaves_nothing_paid(
    session_factory, async_session, club_season, guardian, two_players, fake_sender, monkeypatch
) -> None:
    ids = await _prepare(async_session, club_season, guardian, two_players)

    def broken_token() -> str:
        raise SQLAlchemyError("connection lost")

    # The U8 registration is processed first; the U12 one fails on its token
    monkeypatch.setattr(reconciliation_service, "make_checkin_token", broken_token)

    with pytest.raises(ReconciliationError):
        await handle_event(session_factory, checkout_event(ids), fake_sender)

    regs = await _rows(session_factory, Registration)
    assert [r.status for r in regs] == [RegistrationStatus.DRAFT] * 2
    assert all(r.payment_reference is None for r in regs)
    assert await _rows(session_factory, Payment) == []
    assert await _rows(session_factory, NotificationLog) == []
    assert fake_sender.sent == []


async def test_unknown_registration_rolls_back(
    session_factory, async_session, club_season, guardian, two_players
) -> None:
    ids = await _prepare(async_session, club_season, guardian, two_players)

    with pytest.raises(ReconciliationError, match="Unknown registration"):
        await handle_event(session_factory, checkout_event(ids + [9999]))

    regs = await _rows(session_factory, Registration)
    assert {r.status for r in regs} == {RegistrationStatus.DRAFT}


async def test_cancelled_registration_is_not_paid(
    session_factory, async_session, club_season, guardian, two_players
) -> None:
    ids = await _prepare(async_session, club_season, guardian, two_players)
    registration = await async_session.get(Registration, ids[0])
    registration.status = RegistrationStatus.CANCELLED
    await async_session.commit()

    with pytest.raises(ReconciliationError):
        await handle_event(session_factory, checkout_event(ids))


async def test_no_registration_ids(session_factory) -> None:
    event = checkout_event([])
    result = await handle_event(session_factory, event)
    assert result.outcome == ReconcileOutcome.NO_REGISTRATIONS


async def test_failed_delivery_is_recorded(
    session_factory, async_session, club_season, guardian, two_players
) -> None:
    ids = await _prepare(async_session, club_season, guardian, two_players)

    result = await handle_event(session_factory, checkout_event(ids), FakeSender(fail=True))
    assert result.outcome == ReconcileOutcome.APPLIED
    assert result.delivered is False

    [log] = await _rows(session_factory, NotificationLog)
    assert log.delivered is False
    assert log.sent_at is None
    regs = await _rows(session_factory, Registration)
    assert {r.status for r in regs} == {RegistrationStatus.PAID}


# ─────────────────────────── Other events ────────────────────────────────────

async def test_payment_failed_is_logged_only(session_factory) -> None:
    event = {
        "type": "payment_intent.payment_failed",
        "data": {"object": {"id": "pi_x", "last_payment_error": {"message": "card declined"}}},
    }
    result = await handle_event(session_factory, event)
    assert result.outcome == ReconcileOutcome.PAYMENT_FAILED
    assert result.payment_reference == "pi_x"


async def test_unhandled_event_ignored(session_factory) -> None:
    result = await handle_event(session_factory, {"type": "customer.created", "data": {"object": {}}})
    assert result.outcome == ReconcileOutcome.IGNORED


# ─────────────────────────── Helpers ─────────────────────────────────────────

@pytest.mark.parametrize("raw,expected", [
    ("12,13",      [12, 13]),
    (" 12 , 13 ,", [12, 13]),
    ("12,12",      [12]),
    ("",           []),
    (None,         []),
])
def test_parse_registration_ids(raw, expected) -> None:
    assert parse_registration_ids(raw) == expected


@pytest.mark.parametrize("raw", ["12,abc", "12,²", "١٢", "-3"])
def test_parse_registration_ids_rejects_garbage(raw: str) -> None:
    with pytest.raises(ReconciliationError):
        parse_registration_ids(raw)


def test_payment_reference_falls_back_to_session() -> None:
    assert payment_reference_of({"id": "cs_1", "payment_intent": "pi_1"}) == "pi_1"
    assert payment_reference_of({"id": "cs_1", "payment_intent": {"id": "pi_2"}}) == "pi_2"
    assert payment_reference_of({"id": "cs_1", "payment_intent": None}) == "cs_1"


# ─────────────────────────── Signature ───────────────────────────────────────

class TestVerifyWebhook:
    def test_valid(self) -> None:
        payload, header = signed_event(checkout_event([1]))
        event = verify_webhook(payload, header)
        assert event["type"] == "checkout.session.completed"

    def test_missing_header(self) -> None:
        payload, _ = signed_event(checkout_event([1]))
        with pytest.raises(WebhookSignatureError, match="Missing"):
            verify_webhook(payload, None)

    def test_wrong_secret(self) -> None:
        payload, header = signed_event(checkout_event([1]), secret="whsec_other")
        with pytest.raises(WebhookSignatureError, match="Invalid signature"):
            verify_webhook(payload, header)

    def test_tampered_payload(self) -> None:
        payload, header = signed_event(checkout_event([1]))
        with pytest.raises(WebhookSignatureError):
            verify_webhook(payload.replace(b"54600", b"100"), header)

    def test_stale_timestamp(self) -> None:
        payload = json.dumps(checkout_event([1]))
        header = sign_payload(payload, timestamp=int(time.time()) - 3600)
        with pytest.raises(WebhookSignatureError):
            verify_webhook(payload.encode("utf-8"), header)
