"""
Global fallback handler — included LAST in the dispatcher.

Catches any callback query that no other router handled: stale keyboards
after a restart (MemoryStorage is wiped) or a wizard button pressed after the
session state moved on.
"""
import logging

from aiogram import Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery

from portal.keyboards import admin_main_menu, guardian_main_menu

logger = logging.getLogger(__name__)
router = Router(name="fallback")


@router.callback_query()
async def cq_fallback(
    callback: CallbackQuery,
    state: FSMContext,
    is_admin: bool = False,
) -> None:
    await callback.answer("⚠️ This button has expired. Please start again.", show_alert=True)
    await state.clear()
    try:
        kb = admin_main_menu() if is_admin else guardian_main_menu()
        await callback.message.edit_text(
            "🔄 <b>Session reset.</b> Back to the main menu:",
            reply_markup=kb,
        )
    except TelegramBadRequest as e:
        logger.debug("Fallback could not edit message: %s", e)
