"""
Guardian registration wizard.

Flow:
  Register → choose club → Your Info → Player(s) → Documents → Medical → Review & Pay

The RegistrationWizard is rebuilt from FSM storage on every update and
written back after it changes. Once a guardian row exists, every change is
also auto-saved as a draft (DraftAutoSaver, one per Telegram user).
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple, Union

from aiogram import F, Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import StateFilter
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message
from aiogram.utils.text_decorations import html_decoration as hd
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.keyboards import (
    ATTACHMENT_LABELS,
    WAIVER_LABELS,
    ClubCb,
    MainMenuCb,
    WizardCb,
    back_to_main,
    checkout_kb,
    club_list_kb,
    documents_step_kb,
    gender_kb,
    guardian_step_kb,
    medical_step_kb,
    player_form_kb,
    players_step_kb,
    prompt_kb,
    review_step_kb,
)
from portal.models.base import AsyncSessionFactory
from portal.models.models import Club, Gender, Guardian, Season
from portal.services.checkout_service import CheckoutError, CheckoutGateway, CheckoutRequest, create_checkout
from portal.services.division_service import format_cents, requires_weight_verification
from portal.services.draft_service import guardian_data_from_row, load_draft, make_draft_persister
from portal.services.registration_service import (
    CheckoutQuote,
    fee_schedule_for,
    get_active_season,
    get_club,
    get_guardian_by_telegram_id,
    list_clubs_with_active_season,
    prepare_checkout,
    upsert_guardian,
)
from portal.states import WizardStates
from portal.validators import GuardianData, PlayerData, check_field, format_validation_error
from portal.wizard import (
    Attachment,
    DraftAutoSaver,
    PlayerNotFound,
    RegistrationData,
    RegistrationWizard,
    TransitionRejected,
    WizardError,
    WizardEvent,
    WizardStep,
    savers,
)
from portal.wizard.machine import MEDICAL_FIELDS

logger = logging.getLogger(__name__)
router = Router(name="registration")

# (field, prompt, optional)
GUARDIAN_PROMPTS = [
    ("email",         "📧 Your <b>e-mail address</b>:",                  False),
    ("first_name",    "👤 Your <b>first name</b>:",                      False),
    ("last_name",     "👤 Your <b>last name</b>:",                       False),
    ("phone",         "📞 <b>Phone number</b> (optional):",              True),
    ("address_line1", "🏠 <b>Street address</b> (optional):",            True),
    ("address_line2", "🏠 <b>Apartment, suite, etc.</b> (optional):",    True),
    ("city",          "🏙 <b>City</b> (optional):",                      True),
    ("state",         "🗺 <b>State</b> (optional):",                     True),
    ("postal_code",   "📮 <b>ZIP / postal code</b> (optional):",         True),
]

PLAYER_PROMPTS = [
    ("first_name",    "👤 Player's <b>first name</b>:"),
    ("last_name",     "👤 Player's <b>last name</b>:"),
    ("date_of_birth", "🎂 Player's <b>date of birth</b> (YYYY-MM-DD or MM/DD/YYYY):"),
]

MEDICAL_PROMPTS = dict(zip(MEDICAL_FIELDS, [
    "🩺 <b>Medical conditions</b> we should know about:",
    "🥜 <b>Allergies</b>:",
    "🆘 <b>Emergency contact</b> name:",
    "📞 <b>Emergency contact phone</b>:",
    "👪 Emergency contact <b>relationship</b> to the player:",
]))

CLEAR_MARK = "-"
MAX_MEDICAL_LENGTH = 500


# ── Wizard context ────────────────────────────────────────────────────────────

@dataclass
class WizardContext:
    wizard: RegistrationWizard
    club: Club
    season: Season
    guardian_id: Optional[int]


def _bind_autosave(ctx: WizardContext, user_id: int) -> None:
    if ctx.guardian_id is None:
        return
    saver = savers.get_or_create(
        user_id,
        lambda: DraftAutoSaver(
            make_draft_persister(AsyncSessionFactory, ctx.club.id, ctx.season.slug, ctx.guardian_id)
        ),
    )
    ctx.wizard.on_change = lambda w: saver.schedule(w.data, w.max_step)


async def _load(state: FSMContext, session: AsyncSession, user_id: int) -> Optional[WizardContext]:
    data = await state.get_data()
    if "wizard" not in data:
        return None
    season = await session.get(Season, data["season_id"], options=[selectinload(Season.club)])
    if season is None:
        return None
    ctx = WizardContext(
        wizard=RegistrationWizard.from_state(data["wizard"]),
        club=season.club,
        season=season,
        guardian_id=data.get("guardian_id"),
    )
    _bind_autosave(ctx, user_id)
    return ctx


async def _store(state: FSMContext, ctx: WizardContext) -> None:
    await state.update_data(wizard=ctx.wizard.to_state(), guardian_id=ctx.guardian_id)


async def _expired(callback: CallbackQuery) -> None:
    await callback.answer("⚠️ This registration session has expired. Start again from the menu.", show_alert=True)


# ── Rendering ─────────────────────────────────────────────────────────────────

def _guardian_summary(g: GuardianData) -> str:
    lines = [f"👤 {hd.quote(g.display_name)}", f"📧 {hd.quote(g.email)}"]
    if g.phone:
        lines.append(f"📞 {hd.quote(g.phone)}")
    address = ", ".join(
        x for x in (g.address_line1, g.address_line2, g.city, g.state, g.postal_code) if x
    )
    if address:
        lines.append(f"🏠 {hd.quote(address)}")
    return "\n".join(lines)


def _render(ctx: WizardContext, user_id: int) -> Tuple[str, InlineKeyboardMarkup]:
    wizard = ctx.wizard
    step = wizard.step
    header = (
        f"🏉 <b>{hd.quote(ctx.club.name)}</b> · {hd.quote(ctx.season.name)}\n"
        f"Step {step + 1}/{len(WizardStep)} — <b>{step.title}</b>"
    )
    status = savers.status_label(user_id)
    if status:
        header += f"   <i>{status}</i>"

    players = wizard.data.players
    if step == WizardStep.GUARDIAN:
        body = (
            _guardian_summary(wizard.data.guardian)
            if wizard.data.guardian
            else "Tell us about yourself, the parent or guardian paying for registration."
        )
        kb = guardian_step_kb(wizard)

    elif step == WizardStep.PLAYERS:
        if players:
            body = "\n".join(
                f"• {hd.quote(p.display_name)}, born {p.date_of_birth:%Y-%m-%d}: <b>{p.division}</b>"
                + (" ⚖️ weigh-in required" if p.needs_weigh_in else "")
                for p in players
            )
        else:
            body = "No players yet. Add every child you are registering this season."
        kb = players_step_kb(wizard)

    elif step == WizardStep.DOCUMENTS:
        rows = []
        for p in players:
            marks = "  ".join(
                f"{'✅' if getattr(p, kind) else '❌'} {label}"
                for kind, label in ATTACHMENT_LABELS.items()
            )
            rows.append(f"👤 {hd.quote(p.display_name)}\n    {marks}")
        body = (
            "Upload a headshot and proof of date of birth for each player.\n"
            "You can also skip this and upload later.\n\n" + "\n".join(rows)
        )
        kb = documents_step_kb(wizard)

    elif step == WizardStep.MEDICAL:
        rows = []
        for p in players:
            filled = sum(1 for f in MEDICAL_FIELDS if getattr(p, f))
            rows.append(f"🩺 {hd.quote(p.display_name)}: {filled}/{len(MEDICAL_FIELDS)} fields")
        body = "All medical fields are optional. Tap a player to fill them in.\n\n" + "\n".join(rows)
        kb = medical_step_kb(wizard)

    else:
        fees = fee_schedule_for(ctx.club)
        dues = ctx.season.dues_cents
        lines = [
            f"• {hd.quote(p.display_name)} ({p.division}): "
            f"dues {format_cents(d)} + governing body {format_cents(f)} = <b>{format_cents(d + f)}</b>"
            for p, d, f in wizard.fee_lines(dues, fees)
        ]
        total = format_cents(wizard.total_cents(dues, fees))
        waivers = "\n".join(
            f"{'☑️' if getattr(wizard.data.waivers, name) else '⬜️'} {label}"
            for name, label in WAIVER_LABELS.items()
        )
        guardian = _guardian_summary(wizard.data.guardian) if wizard.data.guardian else "—"
        body = (
            f"{guardian}\n\n<b>Players</b>\n" + "\n".join(lines) +
            f"\n\n💳 <b>Total: {total}</b>\n\n<b>Waivers</b>\n{waivers}"
        )
        if not wizard.data.waivers.all_accepted:
            body += "\n\n<i>Accept all three waivers to continue to payment.</i>"
        kb = review_step_kb(wizard, total)

    return f"{header}\n\n{body}", kb


async def _show(target: Union[CallbackQuery, Message], ctx: WizardContext, user_id: int) -> None:
    text, kb = _render(ctx, user_id)
    if isinstance(target, CallbackQuery):
        try:
            await target.message.edit_text(text, reply_markup=kb)
            return
        except TelegramBadRequest as e:
            if "message is not modified" in str(e):
                return
            logger.debug("Could not edit wizard message: %s", e)
        await target.message.answer(text, reply_markup=kb)
    else:
        await target.answer(text, reply_markup=kb)


async def _commit(
    target: Union[CallbackQuery, Message],
    state: FSMContext,
    ctx: WizardContext,
    user_id: int,
) -> None:
    """Store the wizard, return to the step screen and show it."""
    await _store(state, ctx)
    await state.set_state(WizardStates.step)
    await _show(target, ctx, user_id)


# ── Entry ─────────────────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "register"))
async def cq_choose_club(callback: CallbackQuery, session: AsyncSession) -> None:
    clubs = await list_clubs_with_active_season(session)
    if not clubs:
        await callback.answer("No club is taking registrations right now.", show_alert=True)
        return
    await callback.message.edit_text(
        "🏉 <b>Choose a club to register with:</b>",
        reply_markup=club_list_kb(clubs),
    )
    await callback.answer()


@router.callback_query(ClubCb.filter(F.action == "select"))
async def cq_club_selected(
    callback: CallbackQuery,
    callback_data: ClubCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    user_id = callback.from_user.id
    savers.discard(user_id)

    club = await get_club(session, callback_data.club_id)
    season = await get_active_season(session, club.id) if club else None
    if season is None:
        await callback.answer("Registration for this club is closed.", show_alert=True)
        return

    guardian = await get_guardian_by_telegram_id(session, user_id)
    wizard: Optional[RegistrationWizard] = None
    notice = None
    if guardian is not None:
        draft = await load_draft(session, club.id, season.slug, guardian.id)
        if draft is not None:
            wizard = RegistrationWizard.resume(draft.guardian, draft.players, draft.current_step)
            notice = "📝 Welcome back! Your saved draft has been restored."
        else:
            wizard = RegistrationWizard(RegistrationData(guardian=guardian_data_from_row(guardian)))
    if wizard is None:
        wizard = RegistrationWizard()

    await state.clear()
    await state.set_data({
        "club_id": club.id,
        "season_id": season.id,
        "guardian_id": guardian.id if guardian else None,
    })
    ctx = WizardContext(wizard, club, season, guardian.id if guardian else None)
    _bind_autosave(ctx, user_id)
    await _commit(callback, state, ctx, user_id)
    await callback.answer(notice)


# ── Navigation ────────────────────────────────────────────────────────────────

@router.callback_query(
    WizardCb.filter(F.action.in_({"next", "back", "goto"})),
    WizardStates.step,
)
async def cq_navigate(
    callback: CallbackQuery,
    callback_data: WizardCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    user_id = callback.from_user.id
    ctx = await _load(state, session, user_id)
    if ctx is None:
        await _expired(callback)
        return

    event = WizardEvent(callback_data.action)
    target = WizardStep(callback_data.step) if event == WizardEvent.GOTO else None
    try:
        ctx.wizard.fire(event, target)
    except TransitionRejected as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    await _commit(callback, state, ctx, user_id)
    await callback.answer()


@router.callback_query(WizardCb.filter(F.action == "goto"))
async def cq_goto_from_checkout(
    callback: CallbackQuery,
    callback_data: WizardCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    """'Back to review' under a payment link, sent as a new message."""
    user_id = callback.from_user.id
    ctx = await _load(state, session, user_id)
    if ctx is None:
        await _expired(callback)
        return
    try:
        ctx.wizard.go_to(WizardStep(callback_data.step))
    except TransitionRejected as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await _commit(callback, state, ctx, user_id)
    await callback.answer()


@router.callback_query(WizardCb.filter(F.action == "exit"))
async def cq_save_and_exit(callback: CallbackQuery, state: FSMContext) -> None:
    user_id = callback.from_user.id
    saver = savers.get(user_id)
    if saver is not None:
        await saver.flush()
    savers.discard(user_id)
    await state.clear()
    await callback.message.edit_text(
        "💾 <b>Your registration has been saved.</b>\n\n"
        "Choose <i>Register a player</i> and the same club to continue where you left off.",
        reply_markup=back_to_main(),
    )
    await callback.answer()


@router.message(WizardStates.step)
async def msg_use_buttons(message: Message) -> None:
    await message.answer("👆 Please use the buttons above to continue.")


# ── Guardian ──────────────────────────────────────────────────────────────────

async def _ask_guardian_field(target: Union[CallbackQuery, Message], state: FSMContext) -> None:
    data = await state.get_data()
    idx = data["field_idx"]
    name, prompt, optional = GUARDIAN_PROMPTS[idx]
    current = data["form"].get(name)
    text = f"({idx + 1}/{len(GUARDIAN_PROMPTS)}) {prompt}"
    if current:
        text += f"\n<i>Current: {hd.quote(str(current))}</i>"
    elif optional:
        text += f"\n<i>Send {CLEAR_MARK} to leave it blank.</i>"
    kb = prompt_kb(can_keep=bool(current) or optional, keep_label="⏭ Keep" if current else "⏭ Skip")
    message = target.message if isinstance(target, CallbackQuery) else target
    await message.answer(text, reply_markup=kb)


@router.callback_query(WizardCb.filter(F.action == "guardian"), WizardStates.step)
async def cq_guardian_form(
    callback: CallbackQuery,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    ctx = await _load(state, session, callback.from_user.id)
    if ctx is None:
        await _expired(callback)
        return
    form = ctx.wizard.data.guardian.model_dump() if ctx.wizard.data.guardian else {}
    await state.update_data(form=form, field_idx=0)
    await state.set_state(WizardStates.guardian_form)
    await _ask_guardian_field(callback, state)
    await callback.answer()


async def _advance_guardian_form(
    message: Message,
    state: FSMContext,
    session: AsyncSession,
    user_id: int,
) -> None:
    data = await state.get_data()
    idx = data["field_idx"] + 1
    if idx < len(GUARDIAN_PROMPTS):
        await state.update_data(field_idx=idx)
        await _ask_guardian_field(message, state)
        return

    try:
        guardian_data = GuardianData(**data["form"])
    except ValidationError as e:
        await message.answer(f"⚠️ Please check your details:\n{format_validation_error(e)}")
        await state.update_data(field_idx=0)
        await _ask_guardian_field(message, state)
        return

    ctx = await _load(state, session, user_id)
    if ctx is None:
        await state.clear()
        await message.answer("⚠️ This registration session has expired. Start again from the menu.")
        return

    guardian = await upsert_guardian(session, user_id, guardian_data)
    if ctx.guardian_id is None:
        ctx.guardian_id = guardian.id
        _bind_autosave(ctx, user_id)

    ctx.wizard.submit_guardian(guardian_data)
    if ctx.wizard.step == WizardStep.GUARDIAN:
        ctx.wizard.next()
    await _commit(message, state, ctx, user_id)


@router.message(WizardStates.guardian_form, F.text)
async def msg_guardian_field(message: Message, session: AsyncSession, state: FSMContext) -> None:
    data = await state.get_data()
    name, _, optional = GUARDIAN_PROMPTS[data["field_idx"]]
    raw = message.text.strip()
    if optional and raw == CLEAR_MARK:
        raw = None

    value, error = check_field(GuardianData, name, raw)
    if error:
        await message.answer(f"⚠️ {error}. Please try again:", reply_markup=prompt_kb())
        return

    form = dict(data["form"])
    form[name] = value
    await state.update_data(form=form)
    await _advance_guardian_form(message, state, session, message.from_user.id)


# ── Players ───────────────────────────────────────────────────────────────────

async def _ask_player_field(target: Union[CallbackQuery, Message], state: FSMContext, ctx: WizardContext) -> None:
    idx = (await state.get_data())["field_idx"]
    name, prompt = PLAYER_PROMPTS[idx]
    current = ctx.wizard.editing.values.get(name) if ctx.wizard.editing else None
    text = f"({idx + 1}/{len(PLAYER_PROMPTS) + 1}) {prompt}"
    if current:
        text += f"\n<i>Current: {hd.quote(str(current))}</i>"
    message = target.message if isinstance(target, CallbackQuery) else target
    await message.answer(text, reply_markup=prompt_kb(can_keep=bool(current)))


async def _open_player_form(callback: CallbackQuery, state: FSMContext, ctx: WizardContext) -> None:
    await _store(state, ctx)
    await state.update_data(field_idx=0)
    await state.set_state(WizardStates.player_form)
    await _ask_player_field(callback, state, ctx)


@router.callback_query(WizardCb.filter(F.action.in_({"add", "edit"})), WizardStates.step)
async def cq_player_form(
    callback: CallbackQuery,
    callback_data: WizardCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    ctx = await _load(state, session, callback.from_user.id)
    if ctx is None:
        await _expired(callback)
        return
    try:
        if callback_data.action == "add":
            ctx.wizard.start_new_player()
        else:
            ctx.wizard.edit_player(callback_data.pid)
    except WizardError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await _open_player_form(callback, state, ctx)
    await callback.answer()


async def _advance_player_form(
    message: Message,
    state: FSMContext,
    ctx: WizardContext,
) -> None:
    idx = (await state.get_data())["field_idx"] + 1
    await _store(state, ctx)
    if idx < len(PLAYER_PROMPTS):
        await state.update_data(field_idx=idx)
        await _ask_player_field(message, state, ctx)
        return
    await state.set_state(WizardStates.player_gender)
    current = ctx.wizard.editing.values.get("gender")
    text = f"({idx + 1}/{len(PLAYER_PROMPTS) + 1}) 🚻 Player's <b>gender</b>:"
    if current:
        text += f"\n<i>Current: {Gender.LABELS.get(current, current)}</i>"
    await message.answer(text, reply_markup=gender_kb())


@router.message(WizardStates.player_form, F.text)
async def msg_player_field(message: Message, session: AsyncSession, state: FSMContext) -> None:
    ctx = await _load(state, session, message.from_user.id)
    if ctx is None or ctx.wizard.editing is None:
        await state.clear()
        await message.answer("⚠️ This registration session has expired. Start again from the menu.")
        return

    name, _ = PLAYER_PROMPTS[(await state.get_data())["field_idx"]]
    value, error = check_field(PlayerData, name, message.text.strip())
    if error:
        await message.answer(f"⚠️ {error}. Please try again:", reply_markup=prompt_kb())
        return
    if isinstance(value, date):
        value = value.isoformat()
    ctx.wizard.set_edit_field(name, value)
    await _advance_player_form(message, state, ctx)


@router.callback_query(WizardCb.filter(F.action == "gender"), WizardStates.player_gender)
async def cq_player_gender(
    callback: CallbackQuery,
    callback_data: WizardCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    ctx = await _load(state, session, callback.from_user.id)
    if ctx is None or ctx.wizard.editing is None or callback_data.field not in Gender.ALL:
        await _expired(callback)
        return

    ctx.wizard.set_edit_field("gender", callback_data.field)
    await _store(state, ctx)
    await state.set_state(WizardStates.player_review)

    values = ctx.wizard.editing.values
    division = ctx.wizard.editing_division
    text = (
        f"👤 <b>{hd.quote(values.get('first_name', ''))} {hd.quote(values.get('last_name', ''))}</b>\n"
        f"🎂 {values.get('date_of_birth')}\n"
        f"🚻 {Gender.LABELS[callback_data.field]}\n"
        f"🏷 Division: <b>{division}</b>"
    )
    if division and requires_weight_verification(division):
        text += "\n⚖️ This division requires an in-person weigh-in."
    await callback.message.edit_text(text, reply_markup=player_form_kb())
    await callback.answer()


@router.callback_query(WizardCb.filter(F.action == "save"), WizardStates.player_review)
async def cq_save_player(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    user_id = callback.from_user.id
    ctx = await _load(state, session, user_id)
    if ctx is None or ctx.wizard.editing is None:
        await _expired(callback)
        return
    try:
        player = ctx.wizard.save_player()
    except ValidationError as e:
        await callback.message.answer(f"⚠️ Please check the player details:\n{format_validation_error(e)}")
        await _open_player_form(callback, state, ctx)
        await callback.answer()
        return

    await _commit(callback, state, ctx, user_id)
    await callback.answer(f"✅ {player.display_name} saved ({player.division})")


@router.callback_query(WizardCb.filter(F.action == "redo"), WizardStates.player_review)
async def cq_redo_player(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    ctx = await _load(state, session, callback.from_user.id)
    if ctx is None or ctx.wizard.editing is None:
        await _expired(callback)
        return
    await _open_player_form(callback, state, ctx)
    await callback.answer()


@router.callback_query(WizardCb.filter(F.action == "remove"), WizardStates.step)
async def cq_remove_player(
    callback: CallbackQuery,
    callback_data: WizardCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    user_id = callback.from_user.id
    ctx = await _load(state, session, user_id)
    if ctx is None:
        await _expired(callback)
        return
    try:
        ctx.wizard.remove_player(callback_data.pid)
    except PlayerNotFound as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await _commit(callback, state, ctx, user_id)
    await callback.answer("🗑 Player removed")


# ── Keep / cancel in any form ─────────────────────────────────────────────────

@router.callback_query(WizardCb.filter(F.action == "keep"), WizardStates.guardian_form)
async def cq_keep_guardian_field(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    data = await state.get_data()
    name, _, optional = GUARDIAN_PROMPTS[data["field_idx"]]
    if not data["form"].get(name) and not optional:
        await callback.answer("This field is required.", show_alert=True)
        return
    await callback.answer()
    await _advance_guardian_form(callback.message, state, session, callback.from_user.id)


@router.callback_query(WizardCb.filter(F.action == "keep"), WizardStates.player_form)
async def cq_keep_player_field(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    ctx = await _load(state, session, callback.from_user.id)
    if ctx is None or ctx.wizard.editing is None:
        await _expired(callback)
        return
    await callback.answer()
    await _advance_player_form(callback.message, state, ctx)


@router.callback_query(WizardCb.filter(F.action == "keep"), WizardStates.medical_form)
async def cq_keep_medical_field(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    await callback.answer()
    await _advance_medical_form(callback.message, state, session, callback.from_user.id)


@router.callback_query(
    WizardCb.filter(F.action == "cancel_edit"),
    StateFilter(
        WizardStates.guardian_form,
        WizardStates.player_form,
        WizardStates.player_gender,
        WizardStates.player_review,
        WizardStates.upload,
        WizardStates.medical_form,
    ),
)
async def cq_cancel_form(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    user_id = callback.from_user.id
    ctx = await _load(state, session, user_id)
    if ctx is None:
        await _expired(callback)
        return
    ctx.wizard.cancel_edit()
    await _commit(callback, state, ctx, user_id)
    await callback.answer("Cancelled")


# ── Documents ─────────────────────────────────────────────────────────────────

@router.callback_query(WizardCb.filter(F.action == "upload"), WizardStates.step)
async def cq_upload(callback: CallbackQuery, callback_data: WizardCb, session: AsyncSession, state: FSMContext) -> None:
    ctx = await _load(state, session, callback.from_user.id)
    if ctx is None:
        await _expired(callback)
        return
    player = ctx.wizard.data.find_player(callback_data.pid)
    if player is None or callback_data.field not in ATTACHMENT_LABELS:
        await callback.answer("⚠️ Player not found.", show_alert=True)
        return

    await state.update_data(target={"pid": player.id, "kind": callback_data.field})
    await state.set_state(WizardStates.upload)
    await callback.message.answer(
        f"📎 Send the <b>{ATTACHMENT_LABELS[callback_data.field]}</b> for "
        f"{hd.quote(player.display_name)} as a photo or a file.",
        reply_markup=prompt_kb(),
    )
    await callback.answer()


@router.message(WizardStates.upload, F.photo | F.document)
async def msg_upload(message: Message, session: AsyncSession, state: FSMContext) -> None:
    user_id = message.from_user.id
    ctx = await _load(state, session, user_id)
    target = (await state.get_data()).get("target")
    if ctx is None or not target:
        await state.clear()
        await message.answer("⚠️ This registration session has expired. Start again from the menu.")
        return

    if message.photo:
        attachment = Attachment(file_id=message.photo[-1].file_id, name="photo.jpg")
    else:
        attachment = Attachment(
            file_id=message.document.file_id,
            name=message.document.file_name or "document",
        )
    try:
        ctx.wizard.attach(target["pid"], target["kind"], attachment)
    except WizardError as e:
        await message.answer(f"⚠️ {e}")
    await _commit(message, state, ctx, user_id)


@router.message(WizardStates.upload)
async def msg_upload_hint(message: Message) -> None:
    await message.answer("📎 Please send a photo or a file, or tap Cancel.", reply_markup=prompt_kb())


@router.callback_query(WizardCb.filter(F.action == "clear"), WizardStates.step)
async def cq_clear_attachment(callback: CallbackQuery, callback_data: WizardCb, session: AsyncSession, state: FSMContext) -> None:
    user_id = callback.from_user.id
    ctx = await _load(state, session, user_id)
    if ctx is None:
        await _expired(callback)
        return
    try:
        ctx.wizard.detach(callback_data.pid, callback_data.field)
    except WizardError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await _commit(callback, state, ctx, user_id)
    await callback.answer()


@router.callback_query(WizardCb.filter(F.action == "skip"), WizardStates.step)
async def cq_toggle_skip_documents(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    user_id = callback.from_user.id
    ctx = await _load(state, session, user_id)
    if ctx is None:
        await _expired(callback)
        return
    try:
        ctx.wizard.set_skip_documents(not ctx.wizard.skip_documents)
    except WizardError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await _commit(callback, state, ctx, user_id)
    await callback.answer()


# ── Medical ───────────────────────────────────────────────────────────────────

async def _ask_medical_field(message: Message, state: FSMContext) -> None:
    data = await state.get_data()
    idx = data["field_idx"]
    name = MEDICAL_FIELDS[idx]
    current = data["form"].get(name)
    text = (
        f"({idx + 1}/{len(MEDICAL_FIELDS)}) {MEDICAL_PROMPTS[name]}\n"
        f"<i>Optional. Send {CLEAR_MARK} to leave it blank.</i>"
    )
    if current:
        text += f"\n<i>Current: {hd.quote(current)}</i>"
    await message.answer(text, reply_markup=prompt_kb(can_keep=True, keep_label="⏭ Keep" if current else "⏭ Skip"))


@router.callback_query(WizardCb.filter(F.action == "medical"), WizardStates.step)
async def cq_medical_form(callback: CallbackQuery, callback_data: WizardCb, session: AsyncSession, state: FSMContext) -> None:
    ctx = await _load(state, session, callback.from_user.id)
    if ctx is None:
        await _expired(callback)
        return
    player = ctx.wizard.data.find_player(callback_data.pid)
    if player is None:
        await callback.answer("⚠️ Player not found.", show_alert=True)
        return

    await callback.message.answer(f"🩺 Medical information for <b>{hd.quote(player.display_name)}</b>")
    await state.update_data(
        form={name: getattr(player, name) for name in MEDICAL_FIELDS},
        field_idx=0,
        target={"pid": player.id},
    )
    await state.set_state(WizardStates.medical_form)
    await _ask_medical_field(callback.message, state)
    await callback.answer()


async def _advance_medical_form(
    message: Message,
    state: FSMContext,
    session: AsyncSession,
    user_id: int,
) -> None:
    data = await state.get_data()
    idx = data["field_idx"] + 1
    if idx < len(MEDICAL_FIELDS):
        await state.update_data(field_idx=idx)
        await _ask_medical_field(message, state)
        return

    ctx = await _load(state, session, user_id)
    if ctx is None:
        await state.clear()
        await message.answer("⚠️ This registration session has expired. Start again from the menu.")
        return
    try:
        ctx.wizard.update_medical(data["target"]["pid"], **data["form"])
    except WizardError as e:
        await message.answer(f"⚠️ {e}")
    await _commit(message, state, ctx, user_id)


@router.message(WizardStates.medical_form, F.text)
async def msg_medical_field(message: Message, session: AsyncSession, state: FSMContext) -> None:
    data = await state.get_data()
    name = MEDICAL_FIELDS[data["field_idx"]]
    raw = message.text.strip()
    if len(raw) > MAX_MEDICAL_LENGTH:
        await message.answer(f"⚠️ Please keep it under {MAX_MEDICAL_LENGTH} characters.")
        return
    form = dict(data["form"])
    form[name] = None if raw == CLEAR_MARK else raw
    await state.update_data(form=form)
    await _advance_medical_form(message, state, session, message.from_user.id)


# ── Review & pay ──────────────────────────────────────────────────────────────

@router.callback_query(WizardCb.filter(F.action == "waiver"), WizardStates.step)
async def cq_toggle_waiver(callback: CallbackQuery, callback_data: WizardCb, session: AsyncSession, state: FSMContext) -> None:
    user_id = callback.from_user.id
    ctx = await _load(state, session, user_id)
    if ctx is None:
        await _expired(callback)
        return
    try:
        ctx.wizard.toggle_waiver(callback_data.field)
    except WizardError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await _commit(callback, state, ctx, user_id)
    await callback.answer()


async def _start_checkout(
    session: AsyncSession,
    ctx: WizardContext,
    user_id: int,
    gateway: Optional[CheckoutGateway],
) -> Tuple[CheckoutQuote, str]:
    """Persist the registration, price it server-side and open a checkout page."""
    wizard, club, season = ctx.wizard, ctx.club, ctx.season

    guardian = await session.get(Guardian, ctx.guardian_id) if ctx.guardian_id else None
    if guardian is None:
        guardian = await upsert_guardian(session, user_id, wizard.data.guardian)
        ctx.guardian_id = guardian.id

    fees = fee_schedule_for(club)
    quote = await prepare_checkout(
        session, club, season, guardian, wizard.data,
        client_total_cents=wizard.total_cents(season.dues_cents, fees),
    )
    await session.commit()

    request = CheckoutRequest.build(
        player_names=quote.player_names,
        total_amount_cents=quote.total_cents,
        club_name=club.name,
        club_identifier=club.slug,
        guardian_email=guardian.email,
        metadata={
            "registration_ids": ",".join(str(i) for i in quote.registration_ids),
            "club_id": str(club.id),
            "season": season.slug,
            "guardian_id": str(guardian.id),
        },
    )
    url = await create_checkout(request, gateway, club.slug, club.stripe_account_id)
    return quote, url


@router.callback_query(WizardCb.filter(F.action == "submit"), WizardStates.step)
async def cq_submit(
    callback: CallbackQuery,
    session: AsyncSession,
    state: FSMContext,
    checkout_gateway: Optional[CheckoutGateway] = None,
) -> None:
    user_id = callback.from_user.id
    ctx = await _load(state, session, user_id)
    if ctx is None:
        await _expired(callback)
        return

    try:
        ctx.wizard.submit()
    except TransitionRejected as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await _commit(callback, state, ctx, user_id)
    await callback.answer("⏳ Preparing your payment…")

    # Let any in-flight draft save land before the checkout rows are written
    saver = savers.get(user_id)
    if saver is not None:
        saver.cancel()
        await saver.wait_idle()

    # The submit lock is released whatever happens below
    error: Optional[CheckoutError] = None
    try:
        quote, url = await _start_checkout(session, ctx, user_id, checkout_gateway)
    except CheckoutError as e:
        error = e
    except Exception:
        logger.exception("Checkout for telegram_id=%d could not be started", user_id)
        await callback.message.answer("⚠️ Payment could not be started. Please try again.")
        raise
    finally:
        ctx.wizard.submission_finished()
        await _store(state, ctx)

    if error is not None:
        await callback.message.answer(f"⚠️ {hd.quote(str(error))}")
        await _show(callback.message, ctx, user_id)
        return

    text = (
        f"💳 <b>Almost done!</b>\n\n"
        f"{hd.quote(', '.join(quote.player_names))}\n"
        f"Total: <b>{format_cents(quote.total_cents)}</b>\n\n"
        f"Tap the button below to pay securely. "
        f"You will get a confirmation here as soon as the payment goes through."
    )
    if quote.waitlisted:
        text += (
            f"\n\n🕒 Season full, placed on the waitlist: {hd.quote(', '.join(quote.waitlisted))}"
        )
    if quote.already_paid:
        text += f"\n\nℹ️ Already paid: {hd.quote(', '.join(quote.already_paid))}"
    await callback.message.answer(text, reply_markup=checkout_kb(url))
