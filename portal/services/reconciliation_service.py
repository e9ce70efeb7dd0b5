"""
Payment reconciliation — applies Stripe webhook events to registrations.

checkout.session.completed
    1. metadata.registration_ids (comma-joined) → registrations
    2. one transaction:
         every registration → paid (reference, date, amount charged)
         one payments row per registration (club / governing-body split)
         notification_log claim for the payment reference
    3. after commit: best-effort confirmation to the guardian

The payment reference (payment intent id, else the checkout session id) is
the idempotency key. A replay finds the registrations already paid under
that reference and changes nothing; a concurrent duplicate loses on the
unique constraints and is treated the same way.

payment_intent.payment_failed is logged only. Other event types are
acknowledged and ignored.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

import stripe
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from portal.config import settings
from portal.models.models import (
    Club,
    NotificationLog,
    NotificationType,
    Payment,
    PaymentStatus,
    Player,
    Registration,
    RegistrationStatus,
    Season,
)
from portal.services.division_service import (
    FeeSchedule,
    format_cents,
    governing_body_fee,
    requires_weight_verification,
)
from portal.services.qr_service import make_checkin_token

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_FAILED     = "payment_intent.payment_failed"


class WebhookSignatureError(Exception):
    """Webhook payload is unsigned, wrongly signed or unreadable."""


class ReconciliationError(Exception):
    """The event could not be applied; the transaction was rolled back."""


class ReconcileOutcome(str, Enum):
    APPLIED          = "applied"
    ALREADY_APPLIED  = "already_applied"
    NO_REGISTRATIONS = "no_registrations"
    PAYMENT_FAILED   = "payment_failed"
    IGNORED          = "ignored"


@dataclass
class ConfirmationNotice:
    guardian_telegram_id: int
    guardian_name: str
    guardian_email: str
    club_name: str
    club_email: str
    players: List[Dict[str, str]]                  # [{"name": ..., "division": ...}]
    total_paid: str                                # "$546.00"
    payment_reference: str
    practice_location: Optional[str] = None
    practice_schedule: Optional[str] = None
    documents_complete: bool = True
    documents_upload_url: Optional[str] = None
    weigh_in_tickets: List[Tuple[str, str]] = field(default_factory=list)   # (player name, token)


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    registration_ids: List[int] = field(default_factory=list)
    payment_reference: Optional[str] = None
    notice: Optional[ConfirmationNotice] = None
    delivered: Optional[bool] = None


class ConfirmationSender(Protocol):
    async def send_confirmation(self, notice: ConfirmationNotice) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ── Signature ─────────────────────────────────────────────────────────────────

def verify_webhook(
    payload: bytes,
    sig_header: Optional[str],
    secret: Optional[str] = None,
    tolerance: Optional[int] = None,
) -> Dict[str, Any]:
    """Check the Stripe-Signature header and return the decoded event."""
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    tolerance = settings.WEBHOOK_TOLERANCE if tolerance is None else tolerance
    if not sig_header:
        raise WebhookSignatureError("Missing signature")
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")

    try:
        text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(text, sig_header, secret, tolerance)
    except (UnicodeDecodeError, stripe.SignatureVerificationError) as e:
        raise WebhookSignatureError("Invalid signature") from e

    try:
        event = json.loads(text)
    except ValueError as e:
        raise WebhookSignatureError("Invalid payload") from e
    if not isinstance(event, dict) or "type" not in event:
        raise WebhookSignatureError("Invalid payload")
    return event


# ── Event dispatch ────────────────────────────────────────────────────────────

async def handle_event(
    session_factory: async_sessionmaker[AsyncSession],
    event: Dict[str, Any],
    sender: Optional[ConfirmationSender] = None,
) -> ReconcileResult:
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == CHECKOUT_COMPLETED:
        result = await reconcile_checkout(session_factory, obj)
        if result.notice is not None and sender is not None:
            result.delivered = await _deliver(session_factory, sender, result.notice)
        return result

    if event_type == PAYMENT_FAILED:
        error = (obj.get("last_payment_error") or {}).get("message")
        logger.warning("Payment failed: %s (%s)", obj.get("id"), error or "no reason given")
        return ReconcileResult(ReconcileOutcome.PAYMENT_FAILED, payment_reference=obj.get("id"))

    logger.info("Unhandled event type: %s", event_type)
    return ReconcileResult(ReconcileOutcome.IGNORED)


def parse_registration_ids(raw: Optional[str]) -> List[int]:
    """'12, 13' → [12, 13]; raises ReconciliationError on non-numeric ids."""
    ids: List[int] = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        if not (part.isascii() and part.isdigit()):
            raise ReconciliationError(f"Malformed registration id in metadata: {part!r}")
        if int(part) not in ids:
            ids.append(int(part))
    return ids


def payment_reference_of(checkout: Dict[str, Any]) -> Optional[str]:
    intent = checkout.get("payment_intent")
    if isinstance(intent, dict):
        intent = intent.get("id")
    return intent or checkout.get("id")


async def reconcile_checkout(
    session_factory: async_sessionmaker[AsyncSession],
    checkout: Dict[str, Any],
) -> ReconcileResult:
    ids = parse_registration_ids((checkout.get("metadata") or {}).get("registration_ids"))
    reference = payment_reference_of(checkout)
    if not ids:
        logger.error("No registration ids in checkout session %s metadata", checkout.get("id"))
        return ReconcileResult(ReconcileOutcome.NO_REGISTRATIONS, payment_reference=reference)
    if not reference:
        raise ReconciliationError("Checkout session has no payment reference")

    async with session_factory() as session:
        try:
            async with session.begin():
                result = await _apply_payment(
                    session,
                    ids,
                    reference,
                    amount_total=checkout.get("amount_total"),
                    checkout_session_id=checkout.get("id"),
                )
        except IntegrityError:
            logger.info("Payment %s was applied concurrently; treating as replay", reference)
            return ReconcileResult(ReconcileOutcome.ALREADY_APPLIED, ids, reference)
        except SQLAlchemyError as e:
            logger.error("Reconciliation of %s failed: %s", reference, e)
            raise ReconciliationError(f"Database error while applying {reference}") from e

    if result.outcome == ReconcileOutcome.APPLIED:
        logger.info("Payment %s applied to registrations %s", reference, ids)
    return result


async def _apply_payment(
    session: AsyncSession,
    ids: List[int],
    reference: str,
    amount_total: Optional[int],
    checkout_session_id: Optional[str],
) -> ReconcileResult:
    rows = await session.execute(
        select(Registration)
        .where(Registration.id.in_(ids))
        .options(
            selectinload(Registration.player).selectinload(Player.guardian),
            selectinload(Registration.club),
        )
        .with_for_update()
    )
    by_id = {r.id: r for r in rows.scalars().all()}

    missing = [i for i in ids if i not in by_id]
    if missing:
        raise ReconciliationError(f"Unknown registration(s): {missing}")
    registrations = [by_id[i] for i in ids]

    to_pay: List[Registration] = []
    for r in registrations:
        if r.status in RegistrationStatus.PAYABLE:
            to_pay.append(r)
        elif r.payment_reference != reference:
            raise ReconciliationError(
                f"Registration {r.id} is {r.status} and cannot be paid by {reference}"
            )

    if not to_pay:
        return ReconcileResult(ReconcileOutcome.ALREADY_APPLIED, ids, reference)

    dues_by_season = await _season_dues(session, registrations)
    paid_at = _utcnow()
    lines: List[Tuple[Registration, int, int]] = []

    for r in registrations:
        club = r.club
        dues = dues_by_season.get((r.club_id, r.season), club.club_dues_cents)
        fee  = governing_body_fee(r.division, FeeSchedule(club.flag_fee_cents, club.contact_fee_cents))
        lines.append((r, dues, fee))
        if r not in to_pay:
            continue

        r.status               = RegistrationStatus.PAID
        r.club_dues_paid       = True
        r.payment_reference    = reference
        r.payment_date         = paid_at
        r.payment_amount_cents = amount_total
        if requires_weight_verification(r.division) and not r.checkin_token:
            r.checkin_token = make_checkin_token()

        session.add(Payment(
            registration_id=r.id,
            club_id=r.club_id,
            guardian_id=r.player.guardian_id,
            total_amount_cents=dues + fee,
            club_portion_cents=dues,
            governing_body_portion_cents=fee,
            platform_fee_cents=0,
            payment_reference=reference,
            checkout_session_id=checkout_session_id,
            status=PaymentStatus.SUCCEEDED,
        ))

    first    = registrations[0]
    guardian = first.player.guardian
    club     = first.club

    claimed = (await session.execute(
        select(NotificationLog.id).where(NotificationLog.payment_reference == reference)
    )).scalar_one_or_none()

    notice: Optional[ConfirmationNotice] = None
    if claimed is None:
        session.add(NotificationLog(
            payment_reference=reference,
            notification_type=NotificationType.REGISTRATION_CONFIRMATION,
            guardian_id=guardian.id,
            club_id=club.id,
            recipient=guardian.email,
            delivered=False,
        ))
        notice = _build_notice(registrations, lines, reference)

    await session.flush()
    return ReconcileResult(ReconcileOutcome.APPLIED, ids, reference, notice)


async def _season_dues(
    session: AsyncSession,
    registrations: List[Registration],
) -> Dict[Tuple[int, str], int]:
    club_ids = {r.club_id for r in registrations}
    rows = await session.execute(
        select(Season)
        .where(Season.club_id.in_(club_ids))
        .options(selectinload(Season.club))
    )
    return {(s.club_id, s.slug): s.dues_cents for s in rows.scalars().all()}


def _build_notice(
    registrations: List[Registration],
    lines: List[Tuple[Registration, int, int]],
    reference: str,
) -> ConfirmationNotice:
    first    = registrations[0]
    guardian = first.player.guardian
    club: Club = first.club

    documents_complete = all(r.player.documents_complete for r in registrations)
    return ConfirmationNotice(
        guardian_telegram_id=guardian.telegram_id,
        guardian_name=guardian.display_name,
        guardian_email=guardian.email,
        club_name=club.name,
        club_email=club.contact_email,
        players=[{"name": r.player.display_name, "division": r.division} for r in registrations],
        total_paid=format_cents(sum(dues + fee for _, dues, fee in lines)),
        payment_reference=reference,
        practice_location=club.practice_location,
        practice_schedule=club.practice_schedule,
        documents_complete=documents_complete,
        documents_upload_url=None if documents_complete
        else settings.documents_url(club.slug, first.id),
        weigh_in_tickets=[
            (r.player.display_name, r.checkin_token)
            for r in registrations
            if r.checkin_token and requires_weight_verification(r.division)
        ],
    )


# ── Delivery ──────────────────────────────────────────────────────────────────

async def _deliver(
    session_factory: async_sessionmaker[AsyncSession],
    sender: ConfirmationSender,
    notice: ConfirmationNotice,
) -> bool:
    try:
        delivered = await sender.send_confirmation(notice)
    except Exception as e:
        logger.error("Confirmation for %s failed: %s", notice.payment_reference, e)
        delivered = False

    try:
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(NotificationLog)
                    .where(NotificationLog.payment_reference == notice.payment_reference)
                    .values(delivered=delivered, sent_at=_utcnow() if delivered else None)
                )
    except SQLAlchemyError as e:
        logger.warning("Could not record delivery for %s: %s", notice.payment_reference, e)
    return delivered
