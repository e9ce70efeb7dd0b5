"""
Registration service — clubs, seasons, guardians, checkout preparation and
the admin queries over registrations and payments.

All functions receive an AsyncSession and are plain async functions, so they
can be exercised directly against an in-memory database.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.models.models import (
    Club,
    Guardian,
    Payment,
    PaymentStatus,
    Player,
    Registration,
    RegistrationStatus,
    Season,
)
from portal.services.checkout_service import CheckoutError
from portal.services.division_service import (
    FeeSchedule,
    governing_body_fee,
    requires_weight_verification,
)
from portal.services.draft_service import apply_guardian, sync_players
from portal.validators import GuardianData
from portal.wizard.state import RegistrationData

logger = logging.getLogger(__name__)


class StatusTransitionError(Exception):
    """Raised for a registration status change that is not allowed."""


def fee_schedule_for(club: Club) -> FeeSchedule:
    return FeeSchedule(flag=club.flag_fee_cents, contact=club.contact_fee_cents)


# ── Clubs & seasons ───────────────────────────────────────────────────────────

async def create_club(
    session: AsyncSession,
    name: str,
    slug: str,
    contact_email: str,
    club_dues_cents: int,
    flag_fee_cents: int,
    contact_fee_cents: int,
    practice_location: Optional[str] = None,
    practice_schedule: Optional[str] = None,
    stripe_account_id: Optional[str] = None,
) -> Club:
    club = Club(
        name=name,
        slug=slug,
        contact_email=contact_email,
        club_dues_cents=club_dues_cents,
        flag_fee_cents=flag_fee_cents,
        contact_fee_cents=contact_fee_cents,
        practice_location=practice_location,
        practice_schedule=practice_schedule,
        stripe_account_id=stripe_account_id,
    )
    session.add(club)
    await session.flush()
    return club


async def create_season(
    session: AsyncSession,
    club: Club,
    slug: str,
    name: str,
    is_active: bool = True,
    club_dues_cents: Optional[int] = None,
    max_players: Optional[int] = None,
) -> Season:
    """Create a season; activating it deactivates the club's other seasons."""
    if is_active:
        others = await session.execute(
            select(Season).where(Season.club_id == club.id, Season.is_active.is_(True))
        )
        for other in others.scalars():
            other.is_active = False

    season = Season(
        club_id=club.id,
        slug=slug,
        name=name,
        is_active=is_active,
        club_dues_cents=club_dues_cents,
        max_players=max_players,
        club=club,
    )
    session.add(season)
    await session.flush()
    return season


async def get_club(session: AsyncSession, club_id: int) -> Optional[Club]:
    return await session.get(Club, club_id)


async def get_club_by_slug(session: AsyncSession, slug: str) -> Optional[Club]:
    result = await session.execute(select(Club).where(Club.slug == slug))
    return result.scalar_one_or_none()


async def get_active_season(session: AsyncSession, club_id: int) -> Optional[Season]:
    result = await session.execute(
        select(Season)
        .where(Season.club_id == club_id, Season.is_active.is_(True))
        .options(selectinload(Season.club))
        .order_by(Season.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_clubs_with_active_season(session: AsyncSession) -> List[Tuple[Club, Season]]:
    result = await session.execute(
        select(Season)
        .where(Season.is_active.is_(True))
        .options(selectinload(Season.club))
        .order_by(Season.id)
    )
    return [(s.club, s) for s in result.scalars().all()]


# ── Guardians ─────────────────────────────────────────────────────────────────

async def get_guardian_by_telegram_id(
    session: AsyncSession,
    telegram_id: int,
) -> Optional[Guardian]:
    result = await session.execute(
        select(Guardian).where(Guardian.telegram_id == telegram_id)
    )
    return result.scalar_one_or_none()


async def upsert_guardian(
    session: AsyncSession,
    telegram_id: int,
    data: GuardianData,
) -> Guardian:
    """Create or update the guardian identified by a Telegram user id."""
    guardian = await get_guardian_by_telegram_id(session, telegram_id)
    if guardian is None:
        guardian = Guardian(telegram_id=telegram_id)
        session.add(guardian)
    apply_guardian(guardian, data)
    await session.flush()
    return guardian


# ── Checkout preparation ──────────────────────────────────────────────────────

@dataclass
class QuoteLine:
    registration: Registration
    player_name: str
    division: str
    club_dues_cents: int
    governing_body_fee_cents: int

    @property
    def total_cents(self) -> int:
        return self.club_dues_cents + self.governing_body_fee_cents


@dataclass
class CheckoutQuote:
    lines: List[QuoteLine] = field(default_factory=list)
    waitlisted: List[str] = field(default_factory=list)       # player names placed on waitlist
    already_paid: List[str] = field(default_factory=list)     # player names past draft

    @property
    def registration_ids(self) -> List[int]:
        return [line.registration.id for line in self.lines]

    @property
    def player_names(self) -> List[str]:
        return [line.player_name for line in self.lines]

    @property
    def total_cents(self) -> int:
        return sum(line.total_cents for line in self.lines)


async def _taken_places(session: AsyncSession, club_id: int, season_slug: str) -> int:
    """Registrations holding a place in the season (paid or later)."""
    result = await session.execute(
        select(func.count(Registration.id)).where(
            Registration.club_id == club_id,
            Registration.season == season_slug,
            Registration.status.not_in(
                (RegistrationStatus.DRAFT, RegistrationStatus.WAITLIST, RegistrationStatus.CANCELLED)
            ),
        )
    )
    return result.scalar_one()


async def prepare_checkout(
    session: AsyncSession,
    club: Club,
    season: Season,
    guardian: Guardian,
    data: RegistrationData,
    client_total_cents: Optional[int] = None,
    today: Optional[date] = None,
) -> CheckoutQuote:
    """
    Persist the wizard aggregate and compute what is owed.

    The amount is recomputed from the persisted registrations' divisions and
    the club fee columns; `client_total_cents` is only compared and logged.
    Registrations beyond the season cap are moved to the waitlist and left
    out of the checkout.
    """
    if data.guardian is not None:
        apply_guardian(guardian, data.guardian)

    by_client_id = await sync_players(
        session, guardian, club.id, season.slug, data.players, current_step=4, today=today
    )

    fees  = fee_schedule_for(club)
    dues  = season.dues_cents
    quote = CheckoutQuote()
    taken = await _taken_places(session, club.id, season.slug) if season.max_players else 0

    for draft in data.players:
        registration = by_client_id[draft.id]
        if registration.status not in RegistrationStatus.PAYABLE:
            quote.already_paid.append(draft.display_name)
            continue

        if season.max_players and taken >= season.max_players:
            registration.status = RegistrationStatus.WAITLIST
            quote.waitlisted.append(draft.display_name)
            continue
        if registration.status == RegistrationStatus.WAITLIST:
            # Waitlisted registrations only return via an admin
            quote.waitlisted.append(draft.display_name)
            continue

        taken += 1
        quote.lines.append(QuoteLine(
            registration=registration,
            player_name=draft.display_name,
            division=registration.division,
            club_dues_cents=dues,
            governing_body_fee_cents=governing_body_fee(registration.division, fees),
        ))

    await session.flush()

    if not quote.lines:
        if quote.waitlisted:
            raise CheckoutError("The season is full. Your players have been placed on the waitlist.")
        raise CheckoutError("There is nothing left to pay for these players.")

    if client_total_cents is not None and client_total_cents != quote.total_cents:
        logger.warning(
            "Client total %d differs from recomputed total %d for guardian id=%d; using recomputed",
            client_total_cents, quote.total_cents, guardian.id,
        )
    return quote


# ── Admin queries ─────────────────────────────────────────────────────────────

def _registration_options():
    return (
        selectinload(Registration.player).selectinload(Player.guardian),
        selectinload(Registration.club),
        selectinload(Registration.payments),
    )


async def get_registration(session: AsyncSession, registration_id: int) -> Optional[Registration]:
    result = await session.execute(
        select(Registration)
        .where(Registration.id == registration_id)
        .options(*_registration_options())
    )
    return result.scalar_one_or_none()


async def list_registrations(
    session: AsyncSession,
    club_id: int,
    season_slug: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Registration]:
    q = (
        select(Registration)
        .where(Registration.club_id == club_id)
        .options(*_registration_options())
        .order_by(Registration.created_at.desc(), Registration.id.desc())
    )
    if season_slug:
        q = q.where(Registration.season == season_slug)
    if status:
        q = q.where(Registration.status == status)
    result = await session.execute(q)
    return list(result.scalars().all())


async def get_guardian_registrations(
    session: AsyncSession,
    telegram_id: int,
) -> List[Registration]:
    result = await session.execute(
        select(Registration)
        .join(Player, Registration.player_id == Player.id)
        .join(Guardian, Player.guardian_id == Guardian.id)
        .where(Guardian.telegram_id == telegram_id)
        .options(selectinload(Registration.player), selectinload(Registration.club))
        .order_by(Registration.created_at.desc(), Registration.id.desc())
    )
    return list(result.scalars().all())


# ── Documents after payment ───────────────────────────────────────────────────

DOCUMENT_COLUMNS = {
    "headshot":     "headshot_file_id",
    "dob_document": "dob_document_file_id",
}


class DocumentUploadError(Exception):
    pass


def missing_documents(player: Player) -> List[str]:
    return [kind for kind, column in DOCUMENT_COLUMNS.items() if not getattr(player, column)]


async def _owned_registration(
    session: AsyncSession,
    registration_id: int,
    telegram_id: int,
) -> Registration:
    registration = await get_registration(session, registration_id)
    if (
        registration is None
        or registration.player.guardian.telegram_id != telegram_id
        or registration.status == RegistrationStatus.CANCELLED
    ):
        raise DocumentUploadError("Registration not found.")
    return registration


async def registrations_missing_documents(
    session: AsyncSession,
    registration_id: int,
    telegram_id: int,
) -> List[Registration]:
    """
    Registrations from the same checkout as `registration_id` whose player
    still lacks a headshot or DOB proof. Raises DocumentUploadError when the
    registration does not belong to this Telegram user.
    """
    registration = await _owned_registration(session, registration_id, telegram_id)
    if registration.payment_reference is None:
        batch = [registration]
    else:
        result = await session.execute(
            select(Registration)
            .where(
                Registration.payment_reference == registration.payment_reference,
                Registration.status != RegistrationStatus.CANCELLED,
            )
            .options(*_registration_options())
            .order_by(Registration.id)
        )
        batch = [r for r in result.scalars().all()
                 if r.player.guardian_id == registration.player.guardian_id]
    return [r for r in batch if missing_documents(r.player)]


async def attach_player_document(
    session: AsyncSession,
    registration_id: int,
    telegram_id: int,
    kind: str,
    file_id: str,
) -> Player:
    """Store a Telegram file_id as the player's headshot or DOB proof."""
    if kind not in DOCUMENT_COLUMNS:
        raise DocumentUploadError(f"Unknown document: {kind}")
    registration = await _owned_registration(session, registration_id, telegram_id)
    player = registration.player
    setattr(player, DOCUMENT_COLUMNS[kind], file_id)
    await session.flush()
    logger.info(
        "Registration #%d: %s stored for player #%d", registration.id, kind, player.id
    )
    return player


async def update_registration_status(
    session: AsyncSession,
    registration_id: int,
    new_status: str,
) -> Registration:
    """
    Manual status change. PAID is reachable only through payment
    reconciliation, never from here.
    """
    registration = await get_registration(session, registration_id)
    if registration is None:
        raise StatusTransitionError("Registration not found.")
    if new_status == RegistrationStatus.PAID:
        raise StatusTransitionError("Paid status is set automatically when payment is received.")
    if new_status not in RegistrationStatus.ALL:
        raise StatusTransitionError(f"Unknown status: {new_status}")

    allowed = RegistrationStatus.ADMIN_TRANSITIONS.get(registration.status, ())
    if new_status not in allowed:
        raise StatusTransitionError(
            f"Cannot move from {registration.status_label} to "
            f"{RegistrationStatus.LABELS[new_status]}."
        )

    previous = registration.status
    registration.status = new_status
    await session.flush()
    logger.info("Registration id=%d: %s → %s", registration.id, previous, new_status)
    return registration


async def mark_weight_verified(
    session: AsyncSession,
    registration_id: int,
    weight_kg: Optional[float] = None,
) -> Registration:
    registration = await get_registration(session, registration_id)
    if registration is None:
        raise StatusTransitionError("Registration not found.")
    if not requires_weight_verification(registration.division):
        raise StatusTransitionError(f"{registration.division} does not require weight verification.")
    if registration.status in (RegistrationStatus.DRAFT, RegistrationStatus.CANCELLED):
        raise StatusTransitionError("Only paid registrations can be weighed in.")
    registration.weight_verified = True
    if weight_kg is not None:
        registration.weight_kg = weight_kg
    await session.flush()
    return registration


async def get_registration_by_checkin_token(
    session: AsyncSession,
    token: str,
) -> Optional[Registration]:
    result = await session.execute(
        select(Registration)
        .where(Registration.checkin_token == token)
        .options(*_registration_options())
    )
    return result.scalar_one_or_none()


# ── Dashboard ─────────────────────────────────────────────────────────────────

PAID_STATUSES = (
    RegistrationStatus.PAID,
    RegistrationStatus.SUBMITTED,
    RegistrationStatus.PENDING_VERIFICATION,
    RegistrationStatus.VERIFIED,
    RegistrationStatus.COMPLETE,
)


@dataclass
class RegistrationStats:
    total: int = 0
    paid: int = 0
    drafts: int = 0
    revenue_cents: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_division: Dict[str, int] = field(default_factory=dict)
    awaiting_weigh_in: int = 0


async def registration_stats(
    session: AsyncSession,
    club_id: int,
    season_slug: Optional[str] = None,
) -> RegistrationStats:
    registrations = await list_registrations(session, club_id, season_slug)
    stats = RegistrationStats(total=len(registrations))
    stats.by_status   = dict(Counter(r.status for r in registrations))
    stats.by_division = dict(Counter(r.division for r in registrations))

    seen_refs: set[str] = set()
    for r in registrations:
        if r.status in PAID_STATUSES:
            stats.paid += 1
            if requires_weight_verification(r.division) and not r.weight_verified:
                stats.awaiting_weigh_in += 1
        elif r.status == RegistrationStatus.DRAFT:
            stats.drafts += 1

        # payment_amount_cents is the checkout total, shared by every
        # registration paid in the same checkout
        if r.payment_reference and r.payment_reference not in seen_refs:
            seen_refs.add(r.payment_reference)
            stats.revenue_cents += r.payment_amount_cents or 0
    return stats


@dataclass
class PaymentTotals:
    count: int = 0
    total_cents: int = 0
    club_cents: int = 0
    governing_body_cents: int = 0


async def list_payments(session: AsyncSession, club_id: int) -> List[Payment]:
    result = await session.execute(
        select(Payment)
        .where(Payment.club_id == club_id)
        .options(
            selectinload(Payment.registration).selectinload(Registration.player),
            selectinload(Payment.guardian),
        )
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    return list(result.scalars().all())


def payment_totals(payments: List[Payment]) -> PaymentTotals:
    totals = PaymentTotals()
    for p in payments:
        if p.status != PaymentStatus.SUCCEEDED:
            continue
        totals.count += 1
        totals.club_cents           += p.club_portion_cents
        totals.governing_body_cents += p.governing_body_portion_cents
        totals.total_cents          += p.total_amount_cents
    return totals
