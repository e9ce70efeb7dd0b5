"""
Guardian notifications over Telegram.

The registration confirmation replaces the welcome e-mail: it goes to the
chat of the guardian who paid, followed by a weigh-in QR ticket for each
player in a weight-verified division. Delivery problems (blocked bot,
deleted chat) are logged and reported as False, never raised.
"""
from __future__ import annotations

import logging

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import BufferedInputFile
from aiogram.utils.text_decorations import html_decoration as hd

from portal.models.models import Registration, RegistrationStatus
from portal.services.qr_service import render_ticket
from portal.services.reconciliation_service import ConfirmationNotice

logger = logging.getLogger(__name__)


def format_confirmation(notice: ConfirmationNotice) -> str:
    players = "\n".join(
        f"• {hd.quote(p['name'])} — {hd.quote(p['division'])}" for p in notice.players
    )
    lines = [
        f"🎉 <b>Welcome to {hd.quote(notice.club_name)}!</b>",
        "",
        f"Hi {hd.quote(notice.guardian_name)}, your registration is confirmed.",
        "",
        "<b>Players</b>",
        players,
        "",
        f"💳 Total paid: <b>{notice.total_paid}</b>",
    ]
    if notice.practice_location or notice.practice_schedule:
        lines.append("")
        if notice.practice_location:
            lines.append(f"📍 Practice: {hd.quote(notice.practice_location)}")
        if notice.practice_schedule:
            lines.append(f"🗓 Schedule: {hd.quote(notice.practice_schedule)}")

    lines.append("")
    if notice.documents_complete:
        lines.append("📄 All documents received.")
    else:
        lines.append("📄 <b>Documents still needed:</b> headshot and proof of date of birth.")
        if notice.documents_upload_url:
            lines.append(f"Upload them here: {hd.quote(notice.documents_upload_url)}")

    lines += [
        "",
        "<b>What happens next</b>",
        "1. The club registers your player(s) with the governing body (usually 24-48 hours).",
        "2. Watch for the governing body's verification e-mail and check your spam folder.",
        "3. See you at practice!",
        "",
        f"Questions? Contact {hd.quote(notice.club_email)}",
    ]
    return "\n".join(lines)


def format_status_change(registration: Registration) -> str:
    player = registration.player
    text = (
        f"{registration.status_emoji} <b>Registration update</b>\n\n"
        f"👤 {hd.quote(player.display_name)} ({hd.quote(registration.division)})\n"
        f"🏟 {hd.quote(registration.club.name)}, {hd.quote(registration.season)}\n"
        f"Status: <b>{registration.status_label}</b>"
    )
    if registration.status == RegistrationStatus.WAITLIST:
        text += "\n\nThe season is full. The club will contact you if a place opens up."
    return text


class TelegramNotifier:
    """Sends guardian notifications through the bot."""

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def send_confirmation(self, notice: ConfirmationNotice) -> bool:
        chat_id = notice.guardian_telegram_id
        try:
            await self.bot.send_message(chat_id=chat_id, text=format_confirmation(notice))
        except TelegramAPIError as e:
            logger.warning("Could not send confirmation to telegram_id=%d: %s", chat_id, e)
            return False

        for player_name, token in notice.weigh_in_tickets:
            await self.send_weigh_in_ticket(chat_id, player_name, token)
        return True

    async def send_weigh_in_ticket(self, chat_id: int, player_name: str, token: str) -> bool:
        photo = BufferedInputFile(render_ticket(token).read(), filename=f"weigh-in-{token[:8]}.png")
        try:
            await self.bot.send_photo(
                chat_id=chat_id,
                photo=photo,
                caption=(
                    f"⚖️ <b>Weigh-in ticket</b> for {hd.quote(player_name)}\n"
                    f"Show this code at the weigh-in table.\n<code>{token}</code>"
                ),
            )
        except TelegramAPIError as e:
            logger.warning("Could not send weigh-in ticket to telegram_id=%d: %s", chat_id, e)
            return False
        return True

    async def send_status_change(self, registration: Registration) -> bool:
        chat_id = registration.player.guardian.telegram_id
        try:
            await self.bot.send_message(chat_id=chat_id, text=format_status_change(registration))
        except TelegramAPIError as e:
            logger.warning("Could not notify guardian telegram_id=%d: %s", chat_id, e)
            return False
        return True
