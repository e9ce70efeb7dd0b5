"""
Wizard aggregate: guardian, players and waivers held for one guardian session.

Everything here is a pydantic model so the aggregate round-trips through the
aiogram FSM storage (plain dicts) and into draft snapshots unchanged.
"""
from __future__ import annotations

import uuid
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from portal.services.division_service import division_for, requires_weight_verification
from portal.validators import GuardianData, PlayerData


class Attachment(BaseModel):
    """A pending upload — a Telegram file reference not yet stored on the player."""
    file_id: str
    name: str


class PlayerDraft(BaseModel):
    id: str                                # client-side temp id, stable across edits
    first_name: str
    last_name: str
    date_of_birth: date
    gender: str
    division: str
    medical_conditions: Optional[str] = None
    allergies: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None
    headshot: Optional[Attachment] = None
    dob_document: Optional[Attachment] = None

    @classmethod
    def from_form(
        cls,
        form: PlayerData,
        player_id: Optional[str] = None,
        previous: Optional["PlayerDraft"] = None,
        today: Optional[date] = None,
    ) -> "PlayerDraft":
        """Build a draft from validated input; division is always derived here."""
        fields = form.model_dump()
        draft = cls(
            id=player_id or new_player_id(),
            division=division_for(form.date_of_birth, form.gender, today),
            **fields,
        )
        if previous is not None:
            draft.headshot     = previous.headshot
            draft.dob_document = previous.dob_document
        return draft

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def documents_complete(self) -> bool:
        return self.headshot is not None and self.dob_document is not None

    @property
    def needs_weigh_in(self) -> bool:
        return requires_weight_verification(self.division)


class Waivers(BaseModel):
    program_waiver: bool = False          # youth programme waiver
    governing_body_waiver: bool = False   # governing-body participant agreement
    code_of_conduct: bool = False         # club code of conduct

    @property
    def all_accepted(self) -> bool:
        return self.program_waiver and self.governing_body_waiver and self.code_of_conduct


WAIVER_FIELDS = ("program_waiver", "governing_body_waiver", "code_of_conduct")


class RegistrationData(BaseModel):
    guardian: Optional[GuardianData] = None
    players: List[PlayerDraft] = Field(default_factory=list)
    waivers: Waivers = Field(default_factory=Waivers)

    def find_player(self, player_id: str) -> Optional[PlayerDraft]:
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    @property
    def player_names(self) -> list[str]:
        return [p.display_name for p in self.players]


class PlayerEdit(BaseModel):
    """The single open player form (list view and form are mutually exclusive)."""
    id: str
    is_new: bool = True
    values: dict = Field(default_factory=dict)


def new_player_id() -> str:
    return uuid.uuid4().hex
