"""
Registration wizard state machine.

Steps are linear:

    GUARDIAN(0) → PLAYERS(1) → DOCUMENTS(2) → MEDICAL(3) → REVIEW(4)

Legal moves are listed in TRANSITIONS as (step, event) → Transition(target,
guard). A guard returns None when the move is allowed, otherwise the reason
shown to the guardian. GOTO is resolved separately: backwards is always
allowed, forwards only up to the highest step reached and only while the exit
guard of every step passed over still holds.

The wizard owns no I/O. Every change to the aggregate calls `on_change`, which
the bot layer wires to the debounced DraftAutoSaver.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, Optional, Tuple

from portal.services.division_service import FeeSchedule, division_for, governing_body_fee
from portal.validators import GuardianData, PlayerData
from portal.wizard.state import (
    WAIVER_FIELDS,
    Attachment,
    PlayerDraft,
    PlayerEdit,
    RegistrationData,
    new_player_id,
)

logger = logging.getLogger(__name__)


class WizardStep(IntEnum):
    GUARDIAN  = 0
    PLAYERS   = 1
    DOCUMENTS = 2
    MEDICAL   = 3
    REVIEW    = 4

    @property
    def title(self) -> str:
        return STEP_TITLES[self]


STEP_TITLES = {
    WizardStep.GUARDIAN:  "Your Info",
    WizardStep.PLAYERS:   "Player(s)",
    WizardStep.DOCUMENTS: "Documents",
    WizardStep.MEDICAL:   "Medical",
    WizardStep.REVIEW:    "Review & Pay",
}


class WizardEvent(str, Enum):
    NEXT   = "next"
    BACK   = "back"
    GOTO   = "goto"
    SUBMIT = "submit"


class WizardError(Exception):
    """Base class for wizard errors; the message is safe to show to the guardian."""


class TransitionRejected(WizardError):
    pass


class PlayerNotFound(WizardError):
    pass


# ─────────────────────────── Guards ──────────────────────────────────────────

Guard = Callable[["RegistrationWizard"], Optional[str]]


def _always(wizard: "RegistrationWizard") -> Optional[str]:
    return None


def _guardian_committed(wizard: "RegistrationWizard") -> Optional[str]:
    if wizard.data.guardian is None:
        return "Please enter your details first."
    return None


def _players_ready(wizard: "RegistrationWizard") -> Optional[str]:
    if wizard.editing is not None:
        return "Save or cancel the player you are editing first."
    if not wizard.data.players:
        return "Add at least one player to continue."
    return None


def _documents_ready(wizard: "RegistrationWizard") -> Optional[str]:
    if wizard.documents_complete or wizard.skip_documents:
        return None
    return "Upload a headshot and date-of-birth proof for every player, or choose to upload later."


def _submittable(wizard: "RegistrationWizard") -> Optional[str]:
    if wizard.submitting:
        return "Your payment is already being prepared."
    reason = _guardian_committed(wizard) or _players_ready(wizard)
    if reason:
        return reason
    if not wizard.data.waivers.all_accepted:
        return "Please accept all three waivers to continue."
    return None


@dataclass(frozen=True)
class Transition:
    target: WizardStep
    guard: Guard


TRANSITIONS: Dict[Tuple[WizardStep, WizardEvent], Transition] = {
    (WizardStep.GUARDIAN,  WizardEvent.NEXT):   Transition(WizardStep.PLAYERS,   _guardian_committed),
    (WizardStep.PLAYERS,   WizardEvent.NEXT):   Transition(WizardStep.DOCUMENTS, _players_ready),
    (WizardStep.PLAYERS,   WizardEvent.BACK):   Transition(WizardStep.GUARDIAN,  _always),
    (WizardStep.DOCUMENTS, WizardEvent.NEXT):   Transition(WizardStep.MEDICAL,   _documents_ready),
    (WizardStep.DOCUMENTS, WizardEvent.BACK):   Transition(WizardStep.PLAYERS,   _always),
    (WizardStep.MEDICAL,   WizardEvent.NEXT):   Transition(WizardStep.REVIEW,    _always),
    (WizardStep.MEDICAL,   WizardEvent.BACK):   Transition(WizardStep.DOCUMENTS, _always),
    (WizardStep.REVIEW,    WizardEvent.BACK):   Transition(WizardStep.MEDICAL,   _always),
    (WizardStep.REVIEW,    WizardEvent.SUBMIT): Transition(WizardStep.REVIEW,    _submittable),
}


def exit_guard(step: WizardStep) -> Guard:
    """Guard that must hold to leave `step` forwards."""
    transition = TRANSITIONS.get((step, WizardEvent.NEXT))
    return transition.guard if transition else _always


MEDICAL_FIELDS = (
    "medical_conditions",
    "allergies",
    "emergency_contact_name",
    "emergency_contact_phone",
    "emergency_contact_relationship",
)

ATTACHMENT_KINDS = ("headshot", "dob_document")


# ─────────────────────────── Wizard ──────────────────────────────────────────

class RegistrationWizard:
    """In-memory wizard for one guardian session."""

    def __init__(
        self,
        data: Optional[RegistrationData] = None,
        step: WizardStep = WizardStep.GUARDIAN,
        max_step: Optional[WizardStep] = None,
        editing: Optional[PlayerEdit] = None,
        skip_documents: bool = False,
        submitting: bool = False,
        today: Optional[date] = None,
    ) -> None:
        self.data           = data or RegistrationData()
        self.step           = WizardStep(step)
        self.max_step       = WizardStep(max(self.step, max_step if max_step is not None else self.step))
        self.editing        = editing
        self.skip_documents = skip_documents
        self.submitting     = submitting
        self.today          = today
        self.on_change: Optional[Callable[["RegistrationWizard"], None]] = None

    # ── Construction ─────────────────────────────────────────────────────────

    @classmethod
    def resume(
        cls,
        guardian: Optional[GuardianData],
        players: list[PlayerDraft],
        current_step: int,
        today: Optional[date] = None,
    ) -> "RegistrationWizard":
        """
        Start at a saved draft's furthest step with its data pre-populated.

        A draft saved past Documents with uploads missing can only have got
        there through "upload later", so that choice is restored with it.
        """
        step = WizardStep(max(0, min(current_step, WizardStep.REVIEW)))
        data = RegistrationData(guardian=guardian, players=list(players))
        wizard = cls(data=data, step=step, max_step=step, today=today)
        if step > WizardStep.DOCUMENTS and wizard.skip_documents_offered:
            wizard.skip_documents = True
        return wizard

    @classmethod
    def from_state(cls, state: dict, today: Optional[date] = None) -> "RegistrationWizard":
        editing = state.get("editing")
        return cls(
            data=RegistrationData.model_validate(state.get("data") or {}),
            step=WizardStep(state.get("step", 0)),
            max_step=WizardStep(state.get("max_step", 0)),
            editing=PlayerEdit.model_validate(editing) if editing else None,
            skip_documents=bool(state.get("skip_documents", False)),
            submitting=bool(state.get("submitting", False)),
            today=today,
        )

    def to_state(self) -> dict:
        return {
            "data": self.data.model_dump(mode="json"),
            "step": int(self.step),
            "max_step": int(self.max_step),
            "editing": self.editing.model_dump(mode="json") if self.editing else None,
            "skip_documents": self.skip_documents,
            "submitting": self.submitting,
        }

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    # ── Navigation ───────────────────────────────────────────────────────────

    def rejection(self, event: WizardEvent, target: Optional[WizardStep] = None) -> Optional[str]:
        """Reason the event would be rejected right now, or None if it is legal."""
        if event == WizardEvent.GOTO:
            if target is None:
                return "No step given."
            return self._goto_rejection(WizardStep(target))

        transition = TRANSITIONS.get((self.step, event))
        if transition is None:
            return f"That action is not available on the {self.step.title} step."
        return transition.guard(self)

    def can(self, event: WizardEvent, target: Optional[WizardStep] = None) -> bool:
        return self.rejection(event, target) is None

    def fire(self, event: WizardEvent, target: Optional[WizardStep] = None) -> WizardStep:
        reason = self.rejection(event, target)
        if reason is not None:
            raise TransitionRejected(reason)

        if event == WizardEvent.GOTO:
            new_step = WizardStep(target)
        elif event == WizardEvent.SUBMIT:
            self.submitting = True
            return self.step
        else:
            new_step = TRANSITIONS[(self.step, event)].target

        previous = self.step
        self.step = new_step
        if new_step > self.max_step:
            self.max_step = new_step
            self._changed()
        logger.debug("Wizard %s → %s (%s)", previous.name, new_step.name, event.value)
        return new_step

    def _goto_rejection(self, target: WizardStep) -> Optional[str]:
        if target <= self.step:
            return None
        if target > self.max_step:
            return f"Complete the {self.step.title} step first."
        for step in range(self.step, target):
            reason = exit_guard(WizardStep(step))(self)
            if reason:
                return reason
        return None

    def next(self) -> WizardStep:
        return self.fire(WizardEvent.NEXT)

    def back(self) -> WizardStep:
        return self.fire(WizardEvent.BACK)

    def go_to(self, step: WizardStep) -> WizardStep:
        return self.fire(WizardEvent.GOTO, step)

    def submit(self) -> None:
        """Lock the wizard while checkout is prepared."""
        self.fire(WizardEvent.SUBMIT)

    def submission_finished(self) -> None:
        """Checkout resolved (either way); allow another attempt."""
        self.submitting = False

    # ── Guardian step ────────────────────────────────────────────────────────

    def submit_guardian(self, guardian: GuardianData) -> None:
        self.data.guardian = guardian
        self._changed()

    # ── Players step ─────────────────────────────────────────────────────────

    def start_new_player(self) -> PlayerEdit:
        self._ensure_not_editing()
        self.editing = PlayerEdit(id=new_player_id(), is_new=True)
        return self.editing

    def edit_player(self, player_id: str) -> PlayerEdit:
        self._ensure_not_editing()
        player = self._player(player_id)
        values = player.model_dump(
            mode="json",
            include={"first_name", "last_name", "date_of_birth", "gender", *MEDICAL_FIELDS},
        )
        self.editing = PlayerEdit(id=player.id, is_new=False, values=values)
        return self.editing

    def set_edit_field(self, name: str, value: Any) -> None:
        if self.editing is None:
            raise WizardError("No player is being edited.")
        self.editing.values[name] = value

    @property
    def editing_division(self) -> Optional[str]:
        """Division preview for the open form, once DOB and gender are known."""
        if self.editing is None:
            return None
        values = self.editing.values
        dob, gender = values.get("date_of_birth"), values.get("gender")
        if not dob or not gender:
            return None
        if isinstance(dob, str):
            dob = date.fromisoformat(dob)
        return division_for(dob, gender, self.today)

    def save_player(self) -> PlayerDraft:
        """
        Validate the open form and commit it to the player list.
        Raises pydantic.ValidationError on invalid input; the form stays open.
        """
        if self.editing is None:
            raise WizardError("No player is being edited.")
        form = PlayerData(**self.editing.values)
        previous = self.data.find_player(self.editing.id)
        player = PlayerDraft.from_form(form, self.editing.id, previous, self.today)

        if previous is not None:
            index = self.data.players.index(previous)
            self.data.players[index] = player
        else:
            self.data.players.append(player)
        self.editing = None
        self._changed()
        return player

    def cancel_edit(self) -> None:
        self.editing = None

    def remove_player(self, player_id: str) -> None:
        player = self._player(player_id)
        self.data.players.remove(player)
        if self.editing is not None and self.editing.id == player_id:
            self.editing = None
        self._changed()

    def _ensure_not_editing(self) -> None:
        if self.editing is not None:
            raise WizardError("Save or cancel the player you are editing first.")

    def _player(self, player_id: str) -> PlayerDraft:
        player = self.data.find_player(player_id)
        if player is None:
            raise PlayerNotFound("Player not found.")
        return player

    # ── Documents step ───────────────────────────────────────────────────────

    def attach(self, player_id: str, kind: str, attachment: Attachment) -> None:
        if kind not in ATTACHMENT_KINDS:
            raise WizardError(f"Unknown document type: {kind}")
        setattr(self._player(player_id), kind, attachment)
        self._changed()

    def detach(self, player_id: str, kind: str) -> None:
        if kind not in ATTACHMENT_KINDS:
            raise WizardError(f"Unknown document type: {kind}")
        setattr(self._player(player_id), kind, None)
        self._changed()

    @property
    def documents_complete(self) -> bool:
        return all(p.documents_complete for p in self.data.players)

    @property
    def skip_documents_offered(self) -> bool:
        return any(not p.documents_complete for p in self.data.players)

    def set_skip_documents(self, value: bool) -> None:
        if value and not self.skip_documents_offered:
            raise WizardError("All documents are already uploaded.")
        self.skip_documents = value

    # ── Medical step ─────────────────────────────────────────────────────────

    def update_medical(self, player_id: str, **fields: Optional[str]) -> None:
        unknown = set(fields) - set(MEDICAL_FIELDS)
        if unknown:
            raise WizardError(f"Unknown medical field(s): {', '.join(sorted(unknown))}")
        player = self._player(player_id)
        for name, value in fields.items():
            value = value.strip() if isinstance(value, str) else value
            setattr(player, name, value or None)
        self._changed()

    # ── Review step ──────────────────────────────────────────────────────────

    def set_waiver(self, name: str, accepted: bool) -> None:
        if name not in WAIVER_FIELDS:
            raise WizardError(f"Unknown waiver: {name}")
        setattr(self.data.waivers, name, accepted)
        self._changed()

    def toggle_waiver(self, name: str) -> bool:
        if name not in WAIVER_FIELDS:
            raise WizardError(f"Unknown waiver: {name}")
        value = not getattr(self.data.waivers, name)
        self.set_waiver(name, value)
        return value

    def fee_lines(
        self,
        club_dues_cents: int,
        fee_schedule: FeeSchedule,
    ) -> list[tuple[PlayerDraft, int, int]]:
        """(player, club dues, governing-body fee) for every player."""
        return [
            (p, club_dues_cents, governing_body_fee(p.division, fee_schedule))
            for p in self.data.players
        ]

    def total_cents(self, club_dues_cents: int, fee_schedule: FeeSchedule) -> int:
        return sum(dues + fee for _, dues, fee in self.fee_lines(club_dues_cents, fee_schedule))
