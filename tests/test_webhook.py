"""
Tests — Stripe webhook endpoint and checkout return pages (webhooks/stripe_webhook.py).

The aiohttp application is served in-process with aiohttp.test_utils.
"""
from __future__ import annotations

from typing import AsyncGenerator

import pytest
from aiohttp import test_utils
from sqlalchemy import select

from portal.config import settings
from portal.models.models import Registration, RegistrationStatus
from portal.services.registration_service import prepare_checkout
from portal.webhooks import build_web_app

from conftest import TODAY, WEBHOOK_SECRET, checkout_event, signed_event


@pytest.fixture
async def client(session_factory, fake_sender) -> AsyncGenerator[test_utils.TestClient, None]:
    app = build_web_app(session_factory, sender=fake_sender, webhook_secret=WEBHOOK_SECRET)
    async with test_utils.TestClient(test_utils.TestServer(app)) as c:
        yield c


async def _post(client: test_utils.TestClient, payload: bytes, header: str | None):
    headers = {"Content-Type": "application/json"}
    if header is not None:
        headers["Stripe-Signature"] = header
    return await client.post(settings.WEBHOOK_PATH, data=payload, headers=headers)


async def test_bad_signature_is_400(client) -> None:
    payload, header = signed_event(checkout_event([1]), secret="whsec_other")
    resp = await _post(client, payload, header)
    assert resp.status == 400
    assert "error" in await resp.json()


async def test_missing_signature_is_400(client) -> None:
    payload, _ = signed_event(checkout_event([1]))
    resp = await _post(client, payload, None)
    assert resp.status == 400


async def test_checkout_completed_is_applied(
    client, session_factory, async_session, club_season, guardian, two_players, fake_sender
) -> None:
    club, season = club_season
    quote = await prepare_checkout(async_session, club, season, guardian, two_players, today=TODAY)
    await async_session.commit()

    payload, header = signed_event(checkout_event(quote.registration_ids))
    resp = await _post(client, payload, header)

    assert resp.status == 200
    assert await resp.json() == {"received": True}
    assert len(fake_sender.sent) == 1
    async with session_factory() as session:
        statuses = (await session.execute(select(Registration.status))).scalars().all()
    assert set(statuses) == {RegistrationStatus.PAID}


async def test_unknown_registration_is_500(client) -> None:
    payload, header = signed_event(checkout_event([4242]))
    resp = await _post(client, payload, header)
    assert resp.status == 500
    assert await resp.json() == {"error": "Database update failed"}


async def test_non_ascii_digit_in_metadata_is_500(client) -> None:
    event = checkout_event([1])
    event["data"]["object"]["metadata"]["registration_ids"] = "1,²"
    payload, header = signed_event(event)
    resp = await _post(client, payload, header)
    assert resp.status == 500


async def test_other_events_acknowledged(client) -> None:
    payload, header = signed_event({"id": "evt_x", "type": "charge.refunded", "data": {"object": {}}})
    resp = await _post(client, payload, header)
    assert resp.status == 200


async def test_return_pages(client, club_season) -> None:
    resp = await client.get("/riverside/success", params={"session_id": "cs_test_001"})
    assert resp.status == 200
    assert "Riverside Rugby Club" in await resp.text()

    resp = await client.get("/riverside")
    assert resp.status == 200
    assert "Payment cancelled" in await resp.text()


async def test_unknown_club_page_is_404(client, session_factory) -> None:
    resp = await client.get("/nowhere/success")
    assert resp.status == 404
