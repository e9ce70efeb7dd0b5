"""
Main menu keyboards — guardian vs. admin.
"""
from typing import List, Tuple

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from portal.keyboards.callbacks import AdminPanelCb, ClubCb, MainMenuCb
from portal.models.models import Club, Season


def guardian_main_menu() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="📝 Register a player",  callback_data=MainMenuCb(action="register").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="📋 My registrations",   callback_data=MainMenuCb(action="my_registrations").pack()),
    )
    return builder.as_markup()


def admin_main_menu() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="🏟 Club dashboards",    callback_data=AdminPanelCb(action="clubs").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="⚖️ Weigh-in check",     callback_data=AdminPanelCb(action="weigh_in").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="📝 Register a player",  callback_data=MainMenuCb(action="register").pack()),
    )
    return builder.as_markup()


def back_to_main() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🔙 Main menu", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()


def club_list_kb(clubs: List[Tuple[Club, Season]], action: str = "select") -> InlineKeyboardMarkup:
    """Clubs with an open season; `action` picks guardian registration or admin dashboard."""
    builder = InlineKeyboardBuilder()
    for club, season in clubs:
        builder.row(
            InlineKeyboardButton(
                text=f"🏉 {club.name} · {season.name}",
                callback_data=ClubCb(action=action, club_id=club.id).pack(),
            )
        )
    back = AdminPanelCb(action="back") if action == "dashboard" else MainMenuCb(action="main")
    builder.row(InlineKeyboardButton(text="🔙 Back", callback_data=back.pack()))
    return builder.as_markup()
