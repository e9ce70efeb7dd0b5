"""
Admin panel: club dashboards, registration control, payments, weigh-in
check and club / season setup commands.

Every handler carries the IsAdmin filter after its callback-data filter, so
non-admins only hear "access denied" for admin buttons.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from aiogram import F, Router
from aiogram.filters import Command, CommandObject
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message
from aiogram.utils.text_decorations import html_decoration as hd
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.keyboards import (
    AdminPanelCb,
    ClubCb,
    RegistrationCb,
    admin_main_menu,
    back_to_dashboard_kb,
    cancel_admin_input_kb,
    club_dashboard_kb,
    club_list_kb,
    registration_detail_kb,
    registration_list_kb,
)
from portal.middlewares import IsAdmin
from portal.models.models import Registration, RegistrationStatus
from portal.services.division_service import format_cents, requires_weight_verification
from portal.services.notification_service import TelegramNotifier
from portal.services.qr_service import parse_ticket_payload
from portal.services.registration_service import (
    StatusTransitionError,
    create_club,
    create_season,
    get_active_season,
    get_club,
    get_club_by_slug,
    get_registration,
    get_registration_by_checkin_token,
    list_clubs_with_active_season,
    list_payments,
    list_registrations,
    mark_weight_verified,
    payment_totals,
    registration_stats,
    update_registration_status,
)
from portal.states import AdminStates

logger = logging.getLogger(__name__)
router = Router(name="admin_panel")


# ── Admin home (back) ─────────────────────────────────────────────────────────

@router.callback_query(AdminPanelCb.filter(F.action == "back"), IsAdmin())
async def cq_admin_home(callback: CallbackQuery, state: FSMContext) -> None:
    await state.clear()
    await callback.message.edit_text(
        "⚡ <b>Club administration</b>\n\nChoose a section:",
        reply_markup=admin_main_menu(),
    )
    await callback.answer()


# ── Dashboards ────────────────────────────────────────────────────────────────

@router.callback_query(AdminPanelCb.filter(F.action == "clubs"), IsAdmin())
async def cq_club_list(callback: CallbackQuery, session: AsyncSession) -> None:
    clubs = await list_clubs_with_active_season(session)
    if not clubs:
        await callback.answer(
            "No club has an active season. Use /newclub and /newseason first.",
            show_alert=True,
        )
        return
    await callback.message.edit_text(
        "🏟 <b>Club dashboards</b>\n\nChoose a club:",
        reply_markup=club_list_kb(clubs, action="dashboard"),
    )
    await callback.answer()


@router.callback_query(ClubCb.filter(F.action == "dashboard"), IsAdmin())
async def cq_club_dashboard(
    callback: CallbackQuery,
    callback_data: ClubCb,
    session: AsyncSession,
) -> None:
    club = await get_club(session, callback_data.club_id)
    season = await get_active_season(session, callback_data.club_id) if club else None
    if season is None:
        await callback.answer("No active season for this club.", show_alert=True)
        return

    stats = await registration_stats(session, club.id, season.slug)
    by_status = "\n".join(
        f"  {RegistrationStatus.EMOJI[s]} {RegistrationStatus.LABELS[s]}: <b>{stats.by_status[s]}</b>"
        for s in RegistrationStatus.ALL
        if stats.by_status.get(s)
    ) or "  <i>none yet</i>"
    by_division = ", ".join(
        f"{d}: {n}" for d, n in sorted(stats.by_division.items())
    ) or "—"
    cap = f" / {season.max_players}" if season.max_players else ""

    text = (
        f"🏟 <b>{hd.quote(club.name)}</b> · {hd.quote(season.name)}\n\n"
        f"👥 Registrations: <b>{stats.total}</b>\n"
        f"💳 Paid: <b>{stats.paid}</b>{cap}\n"
        f"📝 Drafts: <b>{stats.drafts}</b>\n"
        f"💰 Revenue: <b>{format_cents(stats.revenue_cents)}</b>\n"
        f"⚖️ Awaiting weigh-in: <b>{stats.awaiting_weigh_in}</b>\n\n"
        f"<b>By status</b>\n{by_status}\n\n"
        f"<b>By division</b>\n  {by_division}"
    )
    await callback.message.edit_text(text, reply_markup=club_dashboard_kb(club.id))
    await callback.answer()


# ── Registrations ─────────────────────────────────────────────────────────────

def _registration_card(r: Registration) -> str:
    player   = r.player
    guardian = player.guardian
    lines = [
        f"👤 <b>{hd.quote(player.display_name)}</b>",
        f"🎂 {player.date_of_birth:%Y-%m-%d} · 🏷 {r.division}",
        f"🏟 {hd.quote(r.club.name)}, {hd.quote(r.season)}",
        f"📌 {r.status_emoji} {r.status_label}",
        "",
        f"👪 {hd.quote(guardian.display_name)}",
        f"📧 {hd.quote(guardian.email)}",
    ]
    if guardian.phone:
        lines.append(f"📞 {hd.quote(guardian.phone)}")
    lines.append("")
    lines.append(
        f"📎 Documents: headshot {'✅' if player.headshot_file_id else '❌'}, "
        f"DOB proof {'✅' if player.dob_document_file_id else '❌'}"
    )
    if requires_weight_verification(r.division):
        weight = f" ({r.weight_kg:g} kg)" if r.weight_kg else ""
        lines.append(f"⚖️ Weight verified: {'✅' + weight if r.weight_verified else '❌'}")
    if r.payment_reference:
        paid_on = f" on {r.payment_date:%Y-%m-%d}" if r.payment_date else ""
        lines.append(
            f"💳 {format_cents(r.payment_amount_cents or 0)}{paid_on}\n"
            f"    <code>{hd.quote(r.payment_reference)}</code>"
        )
    if player.medical_conditions or player.allergies:
        lines.append(
            f"🩺 {hd.quote(player.medical_conditions or '—')} · "
            f"🥜 {hd.quote(player.allergies or '—')}"
        )
    return "\n".join(lines)


@router.callback_query(RegistrationCb.filter(F.action == "list"), IsAdmin())
async def cq_registration_list(
    callback: CallbackQuery,
    callback_data: RegistrationCb,
    session: AsyncSession,
) -> None:
    season = await get_active_season(session, callback_data.club_id)
    registrations = await list_registrations(
        session,
        callback_data.club_id,
        season.slug if season else None,
        callback_data.status or None,
    )
    label = RegistrationStatus.LABELS.get(callback_data.status, "All")
    text = f"👥 <b>Registrations</b> · {label} — {len(registrations)}"
    if not registrations:
        text += "\n\n<i>No registrations.</i>"
    elif len(registrations) > 50:
        text += "\n<i>Showing the 50 most recent. Export for the full roster.</i>"
    await callback.message.edit_text(
        text,
        reply_markup=registration_list_kb(registrations, callback_data.club_id),
    )
    await callback.answer()


@router.callback_query(RegistrationCb.filter(F.action == "view"), IsAdmin())
async def cq_registration_detail(
    callback: CallbackQuery,
    callback_data: RegistrationCb,
    session: AsyncSession,
) -> None:
    r = await get_registration(session, callback_data.rid)
    if not r:
        await callback.answer("Registration not found.", show_alert=True)
        return
    await callback.message.edit_text(_registration_card(r), reply_markup=registration_detail_kb(r))
    await callback.answer()


@router.callback_query(RegistrationCb.filter(F.action == "set"), IsAdmin())
async def cq_set_status(
    callback: CallbackQuery,
    callback_data: RegistrationCb,
    session: AsyncSession,
) -> None:
    try:
        r = await update_registration_status(session, callback_data.rid, callback_data.status)
    except StatusTransitionError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    await TelegramNotifier(callback.bot).send_status_change(r)
    await callback.message.edit_text(_registration_card(r), reply_markup=registration_detail_kb(r))
    await callback.answer(f"{r.status_emoji} {r.status_label}")


@router.callback_query(RegistrationCb.filter(F.action == "weigh"), IsAdmin())
async def cq_mark_weighed(
    callback: CallbackQuery,
    callback_data: RegistrationCb,
    session: AsyncSession,
) -> None:
    try:
        r = await mark_weight_verified(session, callback_data.rid)
    except StatusTransitionError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    logger.info("Weight verified for registration id=%d", r.id)
    await callback.message.edit_text(_registration_card(r), reply_markup=registration_detail_kb(r))
    await callback.answer("⚖️ Weight verified")


# ── Payments ──────────────────────────────────────────────────────────────────

@router.callback_query(RegistrationCb.filter(F.action == "payments"), IsAdmin())
async def cq_payments(
    callback: CallbackQuery,
    callback_data: RegistrationCb,
    session: AsyncSession,
) -> None:
    payments = await list_payments(session, callback_data.club_id)
    totals = payment_totals(payments)
    lines = [
        f"💰 <b>Payments</b> — {totals.count} succeeded\n",
        f"Total: <b>{format_cents(totals.total_cents)}</b>",
        f"  Club dues: {format_cents(totals.club_cents)}",
        f"  Governing body: {format_cents(totals.governing_body_cents)}",
        "",
    ]
    for p in payments[:30]:
        lines.append(
            f"• {p.created_at:%Y-%m-%d} {hd.quote(p.registration.player.display_name)}: "
            f"{format_cents(p.total_amount_cents)} ({p.status})"
        )
    if len(payments) > 30:
        lines.append(f"<i>…and {len(payments) - 30} more</i>")
    await callback.message.edit_text(
        "\n".join(lines),
        reply_markup=back_to_dashboard_kb(callback_data.club_id),
    )
    await callback.answer()


# ── Weigh-in ticket check ─────────────────────────────────────────────────────

@router.callback_query(AdminPanelCb.filter(F.action == "weigh_in"), IsAdmin())
async def cq_weigh_in_entry(callback: CallbackQuery, state: FSMContext) -> None:
    await state.set_state(AdminStates.weigh_in_token)
    await callback.message.edit_text(
        "⚖️ <b>Weigh-in check</b>\n\n"
        "Scan the player's ticket with any QR reader and send the text here "
        "(<code>WEIGHIN:…</code> or just the code).",
        reply_markup=cancel_admin_input_kb(),
    )
    await callback.answer()


@router.message(AdminStates.weigh_in_token, IsAdmin())
async def msg_weigh_in_token(message: Message, session: AsyncSession, state: FSMContext) -> None:
    token = parse_ticket_payload(message.text or "")
    if token is None:
        await message.answer(
            "⚠️ That does not look like a weigh-in ticket. Try again:",
            reply_markup=cancel_admin_input_kb(),
        )
        return

    r = await get_registration_by_checkin_token(session, token)
    if r is None:
        await message.answer("❌ <b>Ticket not found.</b>", reply_markup=cancel_admin_input_kb())
        return

    await state.clear()
    header = (
        "ℹ️ <b>Already weighed in</b>" if r.weight_verified
        else "⚖️ <b>Ticket found.</b> Weigh the player, then confirm below."
    )
    await message.answer(f"{header}\n\n{_registration_card(r)}", reply_markup=registration_detail_kb(r))


# ── Setup commands ────────────────────────────────────────────────────────────

def _parse_cents(raw: str) -> Optional[int]:
    """'150', '150.5' or '$150.50' → cents."""
    try:
        value = Decimal(raw.strip().lstrip("$"))
    except InvalidOperation:
        return None
    if value < 0:
        return None
    return int((value * 100).to_integral_value())


def _split_args(command: CommandObject) -> list[str]:
    return [part.strip() for part in (command.args or "").split("|")]


@router.message(Command("newclub"), IsAdmin())
async def cmd_new_club(message: Message, command: CommandObject, session: AsyncSession) -> None:
    usage = (
        "Usage:\n<code>/newclub Name | slug | contact e-mail | dues $ | flag fee $ | contact fee $</code>"
    )
    parts = _split_args(command)
    if len(parts) != 6 or not all(parts):
        await message.answer(usage)
        return

    name, slug, email, *amounts = parts
    cents = [_parse_cents(a) for a in amounts]
    if any(c is None for c in cents):
        await message.answer(f"⚠️ Amounts must be non-negative numbers.\n\n{usage}")
        return
    if await get_club_by_slug(session, slug.lower()):
        await message.answer(f"⚠️ A club with slug <code>{hd.quote(slug)}</code> already exists.")
        return

    dues, flag, contact = cents
    club = await create_club(session, name, slug.lower(), email, dues, flag, contact)
    logger.info("Club created: %s (%s) by admin %d", club.name, club.slug, message.from_user.id)
    await message.answer(
        f"✅ Club <b>{hd.quote(club.name)}</b> created.\n"
        f"Dues {format_cents(dues)}, flag {format_cents(flag)}, contact {format_cents(contact)}.\n\n"
        f"Open a season with <code>/newseason {hd.quote(club.slug)} | slug | Season name | max players</code>"
    )


@router.message(Command("newseason"), IsAdmin())
async def cmd_new_season(message: Message, command: CommandObject, session: AsyncSession) -> None:
    usage = "Usage:\n<code>/newseason club-slug | season-slug | Season name | max players (optional)</code>"
    parts = _split_args(command)
    if len(parts) not in (3, 4) or not all(parts[:3]):
        await message.answer(usage)
        return

    club = await get_club_by_slug(session, parts[0].lower())
    if club is None:
        await message.answer(f"⚠️ Unknown club <code>{hd.quote(parts[0])}</code>.")
        return

    max_players = None
    if len(parts) == 4 and parts[3]:
        if not parts[3].isdigit() or int(parts[3]) == 0:
            await message.answer(f"⚠️ Max players must be a positive whole number.\n\n{usage}")
            return
        max_players = int(parts[3])

    try:
        season = await create_season(session, club, parts[1].lower(), parts[2], max_players=max_players)
    except IntegrityError:
        await session.rollback()
        await message.answer(f"⚠️ Season <code>{hd.quote(parts[1])}</code> already exists for this club.")
        return

    logger.info("Season %s opened for club %s", season.slug, club.slug)
    cap = f", {max_players} places" if max_players else ""
    await message.answer(
        f"✅ Season <b>{hd.quote(season.name)}</b> is open for registration at "
        f"<b>{hd.quote(club.name)}</b>{cap}."
    )
