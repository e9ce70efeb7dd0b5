"""
Shared pytest fixtures for the club registration tests.

Sets required environment variables BEFORE any portal module is imported so
that pydantic-settings and SQLAlchemy engine initialisation use safe test
values.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from datetime import date
from types import SimpleNamespace
from typing import AsyncGenerator, List, Optional

# ── Set env vars before any portal import ─────────────────────────────────────
os.environ.setdefault("BOT_TOKEN", "123456:test-token-for-pytest")
os.environ.setdefault("ADMIN_IDS", "123456789")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("APP_URL", "https://register.example.org")

# ── Third-party ───────────────────────────────────────────────────────────────
import pytest
from aiogram.fsm.context import FSMContext
from aiogram.fsm.storage.base import StorageKey
from aiogram.fsm.storage.memory import MemoryStorage
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# ── Portal imports (safe after env vars are set) ──────────────────────────────
from portal.models.base import Base
from portal.services.checkout_service import CheckoutRequest
from portal.services.reconciliation_service import ConfirmationNotice
from portal.services.registration_service import create_club, create_season, upsert_guardian
from portal.validators import GuardianData
from portal.wizard.state import PlayerDraft, RegistrationData

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]

# After the 2025 cutoff: ages are counted on 2025-08-31
TODAY = date(2025, 10, 1)


# ── DB fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory bound to an isolated in-memory SQLite database.

    A single connection is shared (StaticPool) so every session opened from
    the factory sees the same database, as the webhook does in production.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A fresh AsyncSession on the per-test database."""
    async with session_factory() as session:
        yield session


# ── Domain helpers ────────────────────────────────────────────────────────────

def guardian_data(**overrides) -> GuardianData:
    fields = {
        "email": "pat.jones@example.com",
        "first_name": "Pat",
        "last_name": "Jones",
        "phone": "555-123-4567",
    }
    fields.update(overrides)
    return GuardianData(**fields)


def player_draft(
    pid: str,
    first_name: str,
    dob: date,
    gender: str = "male",
    division: Optional[str] = None,
    with_documents: bool = False,
    last_name: str = "Jones",
) -> PlayerDraft:
    from portal.services.division_service import division_for
    from portal.wizard.state import Attachment

    draft = PlayerDraft(
        id=pid,
        first_name=first_name,
        last_name=last_name,
        date_of_birth=dob,
        gender=gender,
        division=division or division_for(dob, gender, TODAY),
    )
    if with_documents:
        draft.headshot     = Attachment(file_id=f"photo-{pid}", name="photo.jpg")
        draft.dob_document = Attachment(file_id=f"dob-{pid}", name="birth.pdf")
    return draft


@pytest.fixture
async def club_season(async_session):
    """Club with flag 1600 / contact 3000 fees and 25000 dues, plus an active season."""
    club = await create_club(
        async_session,
        name="Riverside Rugby Club",
        slug="riverside",
        contact_email="info@riverside.example.org",
        club_dues_cents=25000,
        flag_fee_cents=1600,
        contact_fee_cents=3000,
        practice_location="Riverside Park, Field 2",
        practice_schedule="Tuesdays and Thursdays, 6pm",
    )
    season = await create_season(async_session, club, "2025-fall", "Fall 2025")
    await async_session.commit()
    return club, season


@pytest.fixture
async def guardian(async_session):
    g = await upsert_guardian(async_session, telegram_id=555001, data=guardian_data())
    await async_session.commit()
    return g


@pytest.fixture
def two_players() -> RegistrationData:
    """A U8 and a U12 player (ages on the 2025 cutoff: 6 and 11)."""
    return RegistrationData(
        guardian=guardian_data(),
        players=[
            player_draft("p-u8", "Sam", date(2019, 5, 1), with_documents=True),
            player_draft("p-u12", "Alex", date(2014, 2, 10), with_documents=True),
        ],
    )


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeGateway:
    """Checkout gateway recording every request instead of calling Stripe."""

    def __init__(self, url: str = "https://checkout.example.com/c/pay_123") -> None:
        self.url = url
        self.calls: List[dict] = []

    async def create_session(
        self,
        request: CheckoutRequest,
        success_url: str,
        cancel_url: str,
        connected_account: Optional[str] = None,
    ) -> str:
        self.calls.append({
            "request": request,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "connected_account": connected_account,
        })
        return self.url


class FakeSender:
    """Confirmation sender that records notices."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[ConfirmationNotice] = []

    async def send_confirmation(self, notice: ConfirmationNotice) -> bool:
        if self.fail:
            raise RuntimeError("telegram is down")
        self.sent.append(notice)
        return True


class FakeMessage:
    """Chat message that records what the bot answers."""

    def __init__(self, user_id: int = 555001, photo: Optional[list] = None, document=None) -> None:
        self.from_user = SimpleNamespace(id=user_id, first_name="Pat")
        self.photo = photo
        self.document = document
        self.answers: List[str] = []

    async def answer(self, text: str, **kwargs) -> None:
        self.answers.append(text)

    async def edit_text(self, text: str, **kwargs) -> None:
        self.answers.append(text)


class FakeCallback:
    """Button press; `alerts` holds the callback answers."""

    def __init__(self, user_id: int = 555001) -> None:
        self.from_user = SimpleNamespace(id=user_id, first_name="Pat")
        self.message = FakeMessage(user_id)
        self.alerts: List[Optional[str]] = []

    async def answer(self, text: Optional[str] = None, **kwargs) -> None:
        self.alerts.append(text)


@pytest.fixture
def fsm_state() -> FSMContext:
    return FSMContext(storage=MemoryStorage(), key=StorageKey(bot_id=1, chat_id=555001, user_id=555001))


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fake_sender() -> FakeSender:
    return FakeSender()


# ── Stripe webhook helpers ────────────────────────────────────────────────────

def checkout_event(
    registration_ids: List[int],
    payment_intent: str = "pi_test_001",
    amount_total: int = 54600,
    session_id: str = "cs_test_001",
    event_id: str = "evt_test_001",
) -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_intent": payment_intent,
                "amount_total": amount_total,
                "metadata": {"registration_ids": ",".join(str(i) for i in registration_ids)},
            }
        },
    }


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header value for `payload`."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def signed_event(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    payload = json.dumps(event)
    return payload.encode("utf-8"), sign_payload(payload, secret)
