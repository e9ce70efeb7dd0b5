"""
Keyboards for the registration wizard.

Every step screen ends with the progress row (jump to any reached step)
and the Back / Next row.
"""
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from portal.keyboards.callbacks import MainMenuCb, WizardCb
from portal.models.models import Gender
from portal.wizard.machine import RegistrationWizard, WizardStep

WAIVER_LABELS = {
    "program_waiver":        "Youth programme waiver",
    "governing_body_waiver": "Governing-body participant agreement",
    "code_of_conduct":       "Club code of conduct",
}

ATTACHMENT_LABELS = {
    "headshot":     "Headshot",
    "dob_document": "DOB proof",
}


def _btn(text: str, **cb) -> InlineKeyboardButton:
    return InlineKeyboardButton(text=text, callback_data=WizardCb(**cb).pack())


def _progress_row(builder: InlineKeyboardBuilder, wizard: RegistrationWizard) -> None:
    buttons = []
    for step in WizardStep:
        n = step + 1
        if step == wizard.step:
            buttons.append(InlineKeyboardButton(text=f"• {n} •", callback_data="noop"))
        elif step <= wizard.max_step:
            buttons.append(_btn(f"{n}", action="goto", step=int(step)))
        else:
            buttons.append(InlineKeyboardButton(text="·", callback_data="noop"))
    builder.row(*buttons)


def _nav_rows(builder: InlineKeyboardBuilder, wizard: RegistrationWizard) -> None:
    nav = []
    if wizard.step > WizardStep.GUARDIAN:
        nav.append(_btn("⬅️ Back", action="back"))
    if wizard.step < WizardStep.REVIEW:
        nav.append(_btn("Next ➡️", action="next"))
    if nav:
        builder.row(*nav)
    _progress_row(builder, wizard)
    builder.row(_btn("💾 Save & exit", action="exit"))


# ── Step screens ──────────────────────────────────────────────────────────────

def guardian_step_kb(wizard: RegistrationWizard) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    label = "✏️ Edit my details" if wizard.data.guardian else "✏️ Enter my details"
    builder.row(_btn(label, action="guardian"))
    _nav_rows(builder, wizard)
    return builder.as_markup()


def players_step_kb(wizard: RegistrationWizard) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for p in wizard.data.players:
        builder.row(
            _btn(f"✏️ {p.display_name} ({p.division})", action="edit", pid=p.id),
            _btn("🗑", action="remove", pid=p.id),
        )
    builder.row(_btn("➕ Add player", action="add"))
    _nav_rows(builder, wizard)
    return builder.as_markup()


def documents_step_kb(wizard: RegistrationWizard) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for p in wizard.data.players:
        row = []
        for kind, label in ATTACHMENT_LABELS.items():
            attached = getattr(p, kind) is not None
            if attached:
                row.append(_btn(f"✅ {label} ✖", action="clear", pid=p.id, field=kind))
            else:
                row.append(_btn(f"📎 {label}", action="upload", pid=p.id, field=kind))
        builder.row(InlineKeyboardButton(text=f"👤 {p.display_name}", callback_data="noop"))
        builder.row(*row)
    if wizard.skip_documents_offered:
        mark = "☑️" if wizard.skip_documents else "⬜️"
        builder.row(_btn(f"{mark} Skip for now, upload later", action="skip"))
    _nav_rows(builder, wizard)
    return builder.as_markup()


def medical_step_kb(wizard: RegistrationWizard) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for p in wizard.data.players:
        builder.row(_btn(f"🩺 {p.display_name}", action="medical", pid=p.id))
    _nav_rows(builder, wizard)
    return builder.as_markup()


def review_step_kb(wizard: RegistrationWizard, total_label: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    waivers = wizard.data.waivers
    for name, label in WAIVER_LABELS.items():
        mark = "☑️" if getattr(waivers, name) else "⬜️"
        builder.row(_btn(f"{mark} {label}", action="waiver", field=name))
    if wizard.submitting:
        builder.row(InlineKeyboardButton(text="⏳ Preparing payment…", callback_data="noop"))
    else:
        builder.row(_btn(f"💳 Pay {total_label}", action="submit"))
    _nav_rows(builder, wizard)
    return builder.as_markup()


# ── Forms ─────────────────────────────────────────────────────────────────────

def prompt_kb(can_keep: bool = False, keep_label: str = "⏭ Keep current") -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    if can_keep:
        builder.row(_btn(keep_label, action="keep"))
    builder.row(_btn("❌ Cancel", action="cancel_edit"))
    return builder.as_markup()


def gender_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(*[
        _btn(Gender.LABELS[g], action="gender", field=g) for g in Gender.ALL
    ])
    builder.row(_btn("❌ Cancel", action="cancel_edit"))
    return builder.as_markup()


def player_form_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        _btn("✅ Save player", action="save"),
        _btn("✏️ Re-enter",    action="redo"),
    )
    builder.row(_btn("❌ Cancel", action="cancel_edit"))
    return builder.as_markup()


def checkout_kb(url: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="💳 Open secure payment page", url=url))
    builder.row(_btn("🔙 Back to review", action="goto", step=int(WizardStep.REVIEW)))
    builder.row(InlineKeyboardButton(text="🏠 Main menu", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()
