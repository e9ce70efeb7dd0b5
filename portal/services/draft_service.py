"""
Draft persistence.

A draft is keyed by (club, season, guardian) and lives in ordinary rows:
the guardian row, one player row per child and one `draft`-status
registration per player for that club season. The furthest wizard step is
stored per registration in the typed `draft_step` column; resume uses the
maximum across them.

Only registrations still in `draft` are touched; anything paid or later is
left alone even if the same player appears in the snapshot.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from portal.models.models import Guardian, Player, Registration, RegistrationStatus
from portal.services.division_service import division_for
from portal.validators import GuardianData
from portal.wizard.state import Attachment, PlayerDraft, RegistrationData

logger = logging.getLogger(__name__)

GUARDIAN_FIELDS = (
    "email", "first_name", "last_name", "phone",
    "address_line1", "address_line2", "city", "state", "postal_code",
)

PLAYER_FIELDS = (
    "first_name", "last_name", "date_of_birth", "gender",
    "medical_conditions", "allergies", "emergency_contact_name",
    "emergency_contact_phone", "emergency_contact_relationship",
)


@dataclass
class Draft:
    guardian: Optional[GuardianData]
    players: List[PlayerDraft] = field(default_factory=list)
    current_step: int = 0


# ── Write ─────────────────────────────────────────────────────────────────────

def apply_guardian(guardian: Guardian, data: GuardianData) -> None:
    for name in GUARDIAN_FIELDS:
        setattr(guardian, name, getattr(data, name))


async def sync_players(
    session: AsyncSession,
    guardian: Guardian,
    club_id: int,
    season_slug: str,
    players: List[PlayerDraft],
    current_step: Optional[int],
    today: Optional[date] = None,
) -> Dict[str, Registration]:
    """
    Upsert player rows and their registrations for the club season.

    Matching: the registration carrying the wizard's client id first, then
    (first_name, last_name, date_of_birth) among the guardian's players.
    Returns {client id → registration} for every player in the snapshot,
    including registrations that are no longer in draft.
    """
    existing_players = list((await session.execute(
        select(Player)
        .where(Player.guardian_id == guardian.id)
        .options(selectinload(Player.registrations))
    )).scalars().all())

    by_identity = {
        (p.first_name, p.last_name, p.date_of_birth): p for p in existing_players
    }
    by_temp_id = {
        r.client_temp_id: (p, r)
        for p in existing_players
        for r in p.registrations
        if r.club_id == club_id and r.season == season_slug and r.client_temp_id
    }

    result: Dict[str, Registration] = {}
    for draft in players:
        player, registration = by_temp_id.get(draft.id, (None, None))
        if player is None:
            player = by_identity.get((draft.first_name, draft.last_name, draft.date_of_birth))

        if player is None:
            player = Player(guardian_id=guardian.id, registrations=[])
            session.add(player)
            existing_players.append(player)

        editable = registration is None or registration.status == RegistrationStatus.DRAFT
        if registration is None:
            registration = next(
                (r for r in player.registrations if r.club_id == club_id and r.season == season_slug),
                None,
            )
            editable = registration is None or registration.status == RegistrationStatus.DRAFT

        if not editable:
            result[draft.id] = registration
            continue

        for name in PLAYER_FIELDS:
            setattr(player, name, getattr(draft, name))
        # Stored documents are kept until replaced
        if draft.headshot is not None:
            player.headshot_file_id = draft.headshot.file_id
        if draft.dob_document is not None:
            player.dob_document_file_id = draft.dob_document.file_id
        by_identity[(player.first_name, player.last_name, player.date_of_birth)] = player

        division = division_for(draft.date_of_birth, draft.gender, today)
        if registration is None:
            registration = Registration(
                club_id=club_id,
                season=season_slug,
                division=division,
                status=RegistrationStatus.DRAFT,
                draft_step=current_step,
                client_temp_id=draft.id,
            )
            player.registrations.append(registration)
        else:
            registration.division       = division
            registration.client_temp_id = draft.id
            if current_step is not None:
                registration.draft_step = max(registration.draft_step or 0, current_step)
        result[draft.id] = registration

    await session.flush()
    return result


async def save_draft(
    session: AsyncSession,
    club_id: int,
    season_slug: str,
    guardian_id: int,
    data: RegistrationData,
    current_step: int,
    today: Optional[date] = None,
) -> bool:
    """Upsert the draft snapshot. Store errors are logged and reported as False."""
    try:
        guardian = await session.get(Guardian, guardian_id)
        if guardian is None:
            logger.warning("Draft save skipped: guardian id=%d not found", guardian_id)
            return False
        if data.guardian is not None:
            apply_guardian(guardian, data.guardian)
        await sync_players(
            session, guardian, club_id, season_slug, data.players, current_step, today
        )
    except SQLAlchemyError as e:
        logger.warning(
            "Draft save failed (club=%d season=%s guardian=%d): %s",
            club_id, season_slug, guardian_id, e,
        )
        return False
    return True


# ── Read ──────────────────────────────────────────────────────────────────────

def guardian_data_from_row(guardian: Guardian) -> Optional[GuardianData]:
    try:
        return GuardianData(**{name: getattr(guardian, name) for name in GUARDIAN_FIELDS})
    except ValidationError as e:
        logger.warning("Stored guardian id=%d does not validate: %s", guardian.id, e)
        return None


def player_draft_from_row(
    player: Player,
    registration: Registration,
    today: Optional[date] = None,
) -> PlayerDraft:
    return PlayerDraft(
        id=registration.client_temp_id or f"r{registration.id}",
        division=division_for(player.date_of_birth, player.gender, today),
        headshot=Attachment(file_id=player.headshot_file_id, name="headshot")
        if player.headshot_file_id else None,
        dob_document=Attachment(file_id=player.dob_document_file_id, name="date of birth proof")
        if player.dob_document_file_id else None,
        **{name: getattr(player, name) for name in PLAYER_FIELDS},
    )


async def load_draft(
    session: AsyncSession,
    club_id: int,
    season_slug: str,
    guardian_id: int,
    today: Optional[date] = None,
) -> Optional[Draft]:
    """The guardian's draft for the club season, or None when no draft registration exists."""
    registrations = list((await session.execute(
        select(Registration)
        .join(Player, Registration.player_id == Player.id)
        .where(
            Player.guardian_id == guardian_id,
            Registration.club_id == club_id,
            Registration.season == season_slug,
            Registration.status == RegistrationStatus.DRAFT,
        )
        .options(selectinload(Registration.player))
        .order_by(Registration.id)
    )).scalars().all())

    if not registrations:
        return None

    guardian = await session.get(Guardian, guardian_id)
    return Draft(
        guardian=guardian_data_from_row(guardian) if guardian else None,
        players=[player_draft_from_row(r.player, r, today) for r in registrations],
        current_step=max(r.draft_step or 0 for r in registrations),
    )


def make_draft_persister(
    session_factory: async_sessionmaker[AsyncSession],
    club_id: int,
    season_slug: str,
    guardian_id: int,
) -> Callable[[RegistrationData, int], Awaitable[bool]]:
    """Coroutine used by DraftAutoSaver; every save runs in its own session."""

    async def persist(data: RegistrationData, step: int) -> bool:
        async with session_factory() as session:
            ok = await save_draft(session, club_id, season_slug, guardian_id, data, step)
            if not ok:
                await session.rollback()
                return False
            try:
                await session.commit()
            except SQLAlchemyError as e:
                logger.warning("Draft commit failed for guardian=%d: %s", guardian_id, e)
                await session.rollback()
                return False
        return True

    return persist
