"""
Admin export handler — CSV roster document and Google Sheets roster.
"""
import logging

from aiogram import F, Router
from aiogram.types import BufferedInputFile, CallbackQuery
from aiogram.utils.text_decorations import html_decoration as hd
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import settings
from portal.keyboards import ExportCb
from portal.middlewares import IsAdmin
from portal.services.export_service import build_roster_csv, export_filename, export_to_sheets
from portal.services.registration_service import get_active_season, get_club, list_registrations

logger = logging.getLogger(__name__)
router = Router(name="admin_export")


async def _roster(session: AsyncSession, club_id: int):
    club = await get_club(session, club_id)
    if club is None:
        return None, None, []
    season = await get_active_season(session, club.id)
    season_slug = season.slug if season else "all"
    registrations = await list_registrations(session, club.id, season.slug if season else None)
    return club, season_slug, registrations


@router.callback_query(ExportCb.filter(F.action == "csv"), IsAdmin())
async def cq_export_csv(
    callback: CallbackQuery,
    callback_data: ExportCb,
    session: AsyncSession,
) -> None:
    club, season_slug, registrations = await _roster(session, callback_data.club_id)
    if club is None:
        await callback.answer("Club not found.", show_alert=True)
        return
    if not registrations:
        await callback.answer("No registrations to export.", show_alert=True)
        return

    await callback.answer("⏳ Building CSV…")
    document = BufferedInputFile(build_roster_csv(registrations), filename=export_filename(club, season_slug))
    await callback.message.answer_document(
        document,
        caption=f"📄 {hd.quote(club.name)} · {hd.quote(season_slug)}: {len(registrations)} registrations",
    )
    logger.info("CSV roster exported: club=%s season=%s rows=%d", club.slug, season_slug, len(registrations))


@router.callback_query(ExportCb.filter(F.action == "sheets"), IsAdmin())
async def cq_export_sheets(
    callback: CallbackQuery,
    callback_data: ExportCb,
    session: AsyncSession,
) -> None:
    if not settings.sheets_enabled:
        await callback.answer(
            "Google Sheets is not configured. Set GOOGLE_CREDENTIALS_JSON and GOOGLE_SPREADSHEET_ID.",
            show_alert=True,
        )
        return

    club, season_slug, registrations = await _roster(session, callback_data.club_id)
    if club is None:
        await callback.answer("Club not found.", show_alert=True)
        return

    await callback.answer("⏳ Exporting…")
    try:
        url = await export_to_sheets(club, season_slug, registrations)
    except Exception as e:
        logger.exception("Sheets export failed: %s", e)
        await callback.message.answer(f"❌ Export failed: <code>{hd.quote(str(e))}</code>")
        return

    if url:
        await callback.message.answer(
            f"✅ <b>Export complete!</b>\n\n📊 <a href=\"{hd.quote(url)}\">Open the spreadsheet</a>"
        )
    else:
        await callback.message.answer("⚠️ Google Sheets is not configured.")
