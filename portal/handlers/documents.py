"""
Missing documents after payment.

The confirmation message links to /start docs_<registration_id>; from there
the guardian sends the headshot and DOB proof for every player of that
checkout that still lacks them.
"""
import logging
from typing import List, Optional

from aiogram import F, Router
from aiogram.filters import CommandObject, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import Message
from aiogram.utils.text_decorations import html_decoration as hd
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import DOCS_DEEP_LINK_PREFIX
from portal.keyboards import ATTACHMENT_LABELS, back_to_main
from portal.models.models import Registration
from portal.services.registration_service import (
    DocumentUploadError,
    attach_player_document,
    missing_documents,
    registrations_missing_documents,
)
from portal.states import DocumentStates
from portal.wizard import savers

logger = logging.getLogger(__name__)
router = Router(name="documents")


def parse_documents_payload(args: Optional[str]) -> Optional[int]:
    if not args or not args.startswith(DOCS_DEEP_LINK_PREFIX):
        return None
    raw = args[len(DOCS_DEEP_LINK_PREFIX):]
    if not (raw.isascii() and raw.isdigit()):
        return None
    return int(raw)


async def _ask_next(message: Message, state: FSMContext, pending: List[Registration]) -> None:
    if not pending:
        await state.clear()
        await message.answer(
            "✅ <b>All documents received.</b> Thank you!",
            reply_markup=back_to_main(),
        )
        return

    registration = pending[0]
    kind = missing_documents(registration.player)[0]
    await state.update_data(target={"registration_id": registration.id, "kind": kind})
    await state.set_state(DocumentStates.upload)
    await message.answer(
        f"📎 Send the <b>{ATTACHMENT_LABELS[kind]}</b> for "
        f"{hd.quote(registration.player.display_name)} as a photo or a file.",
        reply_markup=back_to_main(),
    )


@router.message(CommandStart(deep_link=True, magic=F.args.startswith(DOCS_DEEP_LINK_PREFIX)))
async def cmd_start_documents(
    message: Message,
    command: CommandObject,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    await state.clear()
    savers.discard(message.from_user.id)

    registration_id = parse_documents_payload(command.args)
    try:
        if registration_id is None:
            raise DocumentUploadError("Registration not found.")
        pending = await registrations_missing_documents(session, registration_id, message.from_user.id)
    except DocumentUploadError as e:
        await message.answer(f"⚠️ {e}", reply_markup=back_to_main())
        return

    await state.update_data(documents_for=registration_id)
    await _ask_next(message, state, pending)


@router.message(DocumentStates.upload, F.photo | F.document)
async def msg_document(message: Message, session: AsyncSession, state: FSMContext) -> None:
    data   = await state.get_data()
    target = data.get("target")
    origin = data.get("documents_for")
    if not target or origin is None:
        await state.clear()
        await message.answer("⚠️ This upload has expired. Open the link from your confirmation again.")
        return

    file_id = message.photo[-1].file_id if message.photo else message.document.file_id
    try:
        await attach_player_document(
            session, target["registration_id"], message.from_user.id, target["kind"], file_id
        )
        pending = await registrations_missing_documents(session, origin, message.from_user.id)
    except DocumentUploadError as e:
        await state.clear()
        await message.answer(f"⚠️ {e}", reply_markup=back_to_main())
        return

    await message.answer(f"✔️ {ATTACHMENT_LABELS[target['kind']]} saved.")
    await _ask_next(message, state, pending)


@router.message(DocumentStates.upload)
async def msg_document_hint(message: Message) -> None:
    await message.answer("📎 Please send a photo or a file.", reply_markup=back_to_main())
