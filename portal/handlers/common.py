"""
Common handlers: /start, main menu routing, "my registrations".
"""
import logging

from aiogram import F, Router
from aiogram.filters import CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message
from aiogram.utils.text_decorations import html_decoration as hd
from sqlalchemy.ext.asyncio import AsyncSession

from portal.keyboards import MainMenuCb, admin_main_menu, back_to_main, guardian_main_menu
from portal.services.division_service import requires_weight_verification
from portal.services.registration_service import get_guardian_registrations
from portal.wizard import savers

logger = logging.getLogger(__name__)
router = Router(name="common")


# ── /start ────────────────────────────────────────────────────────────────────

@router.message(CommandStart())
async def cmd_start(message: Message, state: FSMContext, is_admin: bool) -> None:
    await state.clear()
    savers.discard(message.from_user.id)
    name = hd.quote(message.from_user.first_name or "")

    if is_admin:
        text = (
            f"⚡ <b>Club administration</b> — {name}\n\n"
            f"Review registrations, move them through the season,\n"
            f"check weigh-in tickets and export rosters.\n\n"
            f"Choose a section:"
        )
        await message.answer(text, reply_markup=admin_main_menu())
        return

    text = (
        f"🏉 Welcome, {name}!\n\n"
        f"Here you can:\n"
        f"• 📝 Register your children for the season\n"
        f"• 💳 Pay club dues and governing-body fees in one checkout\n"
        f"• 📋 Follow each registration's status\n\n"
        f"Your progress is saved as you go, so you can stop and come back any time."
    )
    await message.answer(text, reply_markup=guardian_main_menu())


# ── Main menu callback ────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "main"))
async def cq_main_menu(callback: CallbackQuery, is_admin: bool, state: FSMContext) -> None:
    await state.clear()
    savers.discard(callback.from_user.id)
    if is_admin:
        text = "⚡ <b>Club administration</b>\n\nChoose a section:"
        kb   = admin_main_menu()
    else:
        text = "🏉 <b>Main menu</b>\n\nChoose an action:"
        kb   = guardian_main_menu()

    await callback.message.edit_text(text, reply_markup=kb)
    await callback.answer()


@router.callback_query(F.data == "noop")
async def cq_noop(callback: CallbackQuery) -> None:
    await callback.answer()


# ── My registrations ──────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "my_registrations"))
async def cq_my_registrations(callback: CallbackQuery, session: AsyncSession) -> None:
    registrations = await get_guardian_registrations(session, callback.from_user.id)
    if not registrations:
        await callback.message.edit_text(
            "📋 <b>My registrations</b>\n\n<i>Nothing here yet.</i>",
            reply_markup=back_to_main(),
        )
        await callback.answer()
        return

    lines = [f"📋 <b>My registrations</b> — {len(registrations)}\n"]
    for r in registrations:
        line = (
            f"{r.status_emoji} <b>{hd.quote(r.player.display_name)}</b> · {r.division}\n"
            f"    {hd.quote(r.club.name)}, {hd.quote(r.season)}: {r.status_label}"
        )
        if requires_weight_verification(r.division) and r.checkin_token and not r.weight_verified:
            line += "\n    ⚖️ Weigh-in pending, bring your ticket"
        lines.append(line)

    await callback.message.edit_text("\n".join(lines), reply_markup=back_to_main())
    await callback.answer()
