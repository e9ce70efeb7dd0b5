"""
Keyboards for the admin panel: dashboards, registration control, export.
"""
from typing import List

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from portal.keyboards.callbacks import AdminPanelCb, ClubCb, ExportCb, RegistrationCb
from portal.models.models import Registration, RegistrationStatus
from portal.services.division_service import requires_weight_verification

# Status filters offered on the dashboard, in lifecycle order
STATUS_FILTERS = (
    RegistrationStatus.DRAFT,
    RegistrationStatus.PAID,
    RegistrationStatus.SUBMITTED,
    RegistrationStatus.PENDING_VERIFICATION,
    RegistrationStatus.VERIFIED,
    RegistrationStatus.COMPLETE,
    RegistrationStatus.WAITLIST,
    RegistrationStatus.CANCELLED,
)


def club_dashboard_kb(club_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(
            text="👥 All registrations",
            callback_data=RegistrationCb(action="list", club_id=club_id).pack(),
        )
    )
    filters = [
        InlineKeyboardButton(
            text=f"{RegistrationStatus.EMOJI[s]} {RegistrationStatus.LABELS[s].split(' - ')[0]}",
            callback_data=RegistrationCb(action="list", club_id=club_id, status=s).pack(),
        )
        for s in STATUS_FILTERS
    ]
    for i in range(0, len(filters), 2):
        builder.row(*filters[i:i + 2])
    builder.row(
        InlineKeyboardButton(
            text="💰 Payments",
            callback_data=RegistrationCb(action="payments", club_id=club_id).pack(),
        )
    )
    builder.row(
        InlineKeyboardButton(text="📄 Export CSV",    callback_data=ExportCb(action="csv", club_id=club_id).pack()),
        InlineKeyboardButton(text="📤 Google Sheets", callback_data=ExportCb(action="sheets", club_id=club_id).pack()),
    )
    builder.row(InlineKeyboardButton(text="🔙 Clubs", callback_data=AdminPanelCb(action="clubs").pack()))
    return builder.as_markup()


def registration_list_kb(registrations: List[Registration], club_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for r in registrations[:50]:
        builder.row(
            InlineKeyboardButton(
                text=f"{r.status_emoji} {r.player.display_name} · {r.division}",
                callback_data=RegistrationCb(action="view", club_id=club_id, rid=r.id).pack(),
            )
        )
    builder.row(
        InlineKeyboardButton(text="🔙 Dashboard", callback_data=ClubCb(action="dashboard", club_id=club_id).pack())
    )
    return builder.as_markup()


def registration_detail_kb(r: Registration) -> InlineKeyboardMarkup:
    """Only the transitions allowed from the current status are offered."""
    builder = InlineKeyboardBuilder()
    for target in RegistrationStatus.ADMIN_TRANSITIONS.get(r.status, ()):
        builder.row(
            InlineKeyboardButton(
                text=f"➡️ {RegistrationStatus.EMOJI[target]} {RegistrationStatus.LABELS[target]}",
                callback_data=RegistrationCb(action="set", club_id=r.club_id, rid=r.id, status=target).pack(),
            )
        )
    if (
        requires_weight_verification(r.division)
        and not r.weight_verified
        and r.status not in (RegistrationStatus.DRAFT, RegistrationStatus.CANCELLED)
    ):
        builder.row(
            InlineKeyboardButton(
                text="⚖️ Mark weight verified",
                callback_data=RegistrationCb(action="weigh", club_id=r.club_id, rid=r.id).pack(),
            )
        )
    builder.row(
        InlineKeyboardButton(
            text="🔙 Registrations",
            callback_data=RegistrationCb(action="list", club_id=r.club_id).pack(),
        )
    )
    return builder.as_markup()


def back_to_dashboard_kb(club_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="🔙 Dashboard", callback_data=ClubCb(action="dashboard", club_id=club_id).pack())
    )
    return builder.as_markup()


def cancel_admin_input_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="❌ Cancel", callback_data=AdminPanelCb(action="back").pack()))
    return builder.as_markup()
