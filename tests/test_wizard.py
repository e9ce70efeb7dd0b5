"""
Unit tests — Registration wizard state machine (wizard/machine.py).

Covers the transition table and its guards:
  - Players: cannot advance with zero players or with a form open
  - Documents: advance needs every upload, or the "upload later" option
  - Review: submit needs all three waivers; submit locks until finished
  - GOTO: backwards always, forwards only to reached steps
  - FSM storage round-trip and the on_change hook used by auto-save
"""
from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError

from portal.services.division_service import FeeSchedule
from portal.wizard import (
    TRANSITIONS,
    Attachment,
    PlayerNotFound,
    RegistrationWizard,
    TransitionRejected,
    WizardError,
    WizardEvent,
    WizardStep,
    WAIVER_FIELDS,
)

from conftest import TODAY, guardian_data, player_draft

FEES = FeeSchedule(flag=1600, contact=3000)


# ─────────────────────────── Helpers ──────────────────────────────────────────

def _add_player(
    wizard: RegistrationWizard,
    first_name: str = "Sam",
    dob: str = "2017-03-15",
    gender: str = "male",
):
    wizard.start_new_player()
    wizard.set_edit_field("first_name", first_name)
    wizard.set_edit_field("last_name", "Jones")
    wizard.set_edit_field("date_of_birth", dob)
    wizard.set_edit_field("gender", gender)
    return wizard.save_player()


def _upload_all(wizard: RegistrationWizard) -> None:
    for p in wizard.data.players:
        wizard.attach(p.id, "headshot", Attachment(file_id=f"h-{p.id}", name="photo.jpg"))
        wizard.attach(p.id, "dob_document", Attachment(file_id=f"d-{p.id}", name="dob.pdf"))


def _wizard_on_players() -> RegistrationWizard:
    wizard = RegistrationWizard(today=TODAY)
    wizard.submit_guardian(guardian_data())
    wizard.next()
    return wizard


def _wizard_on_review() -> RegistrationWizard:
    wizard = _wizard_on_players()
    _add_player(wizard)
    wizard.next()
    _upload_all(wizard)
    wizard.next()
    wizard.next()
    assert wizard.step == WizardStep.REVIEW
    return wizard


def _accept_all(wizard: RegistrationWizard) -> None:
    for name in WAIVER_FIELDS:
        wizard.set_waiver(name, True)


# ─────────────────────────── Guardian ────────────────────────────────────────

def test_guardian_step_needs_details() -> None:
    wizard = RegistrationWizard(today=TODAY)
    with pytest.raises(TransitionRejected):
        wizard.next()
    wizard.submit_guardian(guardian_data())
    assert wizard.next() == WizardStep.PLAYERS


def test_no_back_from_first_step() -> None:
    wizard = RegistrationWizard(today=TODAY)
    assert not wizard.can(WizardEvent.BACK)


# ─────────────────────────── Players ─────────────────────────────────────────

class TestPlayersStep:
    def test_zero_players_blocks_advance(self) -> None:
        wizard = _wizard_on_players()
        assert wizard.rejection(WizardEvent.NEXT) == "Add at least one player to continue."
        with pytest.raises(TransitionRejected):
            wizard.next()
        assert wizard.step == WizardStep.PLAYERS

    def test_one_valid_player_permits_advance(self) -> None:
        wizard = _wizard_on_players()
        player = _add_player(wizard)
        assert player.division == "U10"
        assert player.needs_weigh_in
        assert wizard.next() == WizardStep.DOCUMENTS

    def test_open_form_blocks_advance(self) -> None:
        wizard = _wizard_on_players()
        _add_player(wizard)
        wizard.start_new_player()
        assert not wizard.can(WizardEvent.NEXT)
        wizard.cancel_edit()
        assert wizard.can(WizardEvent.NEXT)

    def test_invalid_player_keeps_form_open(self) -> None:
        wizard = _wizard_on_players()
        wizard.start_new_player()
        wizard.set_edit_field("first_name", "Sam")
        wizard.set_edit_field("last_name", "Jones")
        wizard.set_edit_field("date_of_birth", "not a date")
        wizard.set_edit_field("gender", "male")
        with pytest.raises(ValidationError):
            wizard.save_player()
        assert wizard.editing is not None
        assert wizard.data.players == []

    def test_editing_division_preview(self) -> None:
        wizard = _wizard_on_players()
        wizard.start_new_player()
        assert wizard.editing_division is None
        wizard.set_edit_field("date_of_birth", "2011-01-01")
        wizard.set_edit_field("gender", "female")
        assert wizard.editing_division == "GU15"

    def test_edit_keeps_id_and_attachments(self) -> None:
        wizard = _wizard_on_players()
        player = _add_player(wizard)
        _upload_all(wizard)
        wizard.edit_player(player.id)
        wizard.set_edit_field("first_name", "Samuel")
        edited = wizard.save_player()
        assert edited.id == player.id
        assert edited.first_name == "Samuel"
        assert edited.headshot is not None
        assert len(wizard.data.players) == 1

    def test_remove_player(self) -> None:
        wizard = _wizard_on_players()
        player = _add_player(wizard)
        wizard.remove_player(player.id)
        assert wizard.data.players == []
        with pytest.raises(PlayerNotFound):
            wizard.remove_player(player.id)

    def test_cannot_open_two_forms(self) -> None:
        wizard = _wizard_on_players()
        wizard.start_new_player()
        with pytest.raises(WizardError):
            wizard.start_new_player()


# ─────────────────────────── Documents ───────────────────────────────────────

class TestDocumentsStep:
    def _on_documents(self) -> RegistrationWizard:
        wizard = _wizard_on_players()
        _add_player(wizard)
        wizard.next()
        return wizard

    def test_missing_uploads_block_advance(self) -> None:
        wizard = self._on_documents()
        assert not wizard.can(WizardEvent.NEXT)

    def test_skip_permits_advance_with_no_uploads(self) -> None:
        wizard = self._on_documents()
        wizard.set_skip_documents(True)
        assert wizard.next() == WizardStep.MEDICAL

    def test_clearing_skip_blocks_again(self) -> None:
        wizard = self._on_documents()
        wizard.set_skip_documents(True)
        assert wizard.can(WizardEvent.NEXT)
        wizard.set_skip_documents(False)
        assert not wizard.can(WizardEvent.NEXT)

    def test_all_uploads_permit_advance(self) -> None:
        wizard = self._on_documents()
        _upload_all(wizard)
        assert wizard.documents_complete
        assert not wizard.skip_documents_offered
        assert wizard.next() == WizardStep.MEDICAL

    def test_skip_not_offered_when_complete(self) -> None:
        wizard = self._on_documents()
        _upload_all(wizard)
        with pytest.raises(WizardError):
            wizard.set_skip_documents(True)

    def test_detach_reopens_gap(self) -> None:
        wizard = self._on_documents()
        _upload_all(wizard)
        pid = wizard.data.players[0].id
        wizard.detach(pid, "headshot")
        assert not wizard.can(WizardEvent.NEXT)

    def test_unknown_attachment_kind(self) -> None:
        wizard = self._on_documents()
        pid = wizard.data.players[0].id
        with pytest.raises(WizardError):
            wizard.attach(pid, "passport", Attachment(file_id="x", name="x"))


# ─────────────────────────── Medical ─────────────────────────────────────────

def test_medical_update_strips_and_clears() -> None:
    wizard = _wizard_on_players()
    player = _add_player(wizard)
    wizard.update_medical(player.id, allergies="  peanuts ", medical_conditions="")
    stored = wizard.data.find_player(player.id)
    assert stored.allergies == "peanuts"
    assert stored.medical_conditions is None
    with pytest.raises(WizardError):
        wizard.update_medical(player.id, blood_type="O+")


# ─────────────────────────── Review ──────────────────────────────────────────

class TestReviewStep:
    def test_submit_blocked_without_waivers(self) -> None:
        wizard = _wizard_on_review()
        assert not wizard.can(WizardEvent.SUBMIT)
        wizard.set_waiver("program_waiver", True)
        wizard.set_waiver("governing_body_waiver", True)
        assert not wizard.can(WizardEvent.SUBMIT)

    def test_all_waivers_permit_submit(self) -> None:
        wizard = _wizard_on_review()
        _accept_all(wizard)
        wizard.submit()
        assert wizard.submitting

    @pytest.mark.parametrize("name", WAIVER_FIELDS)
    def test_unticking_any_waiver_blocks_again(self, name: str) -> None:
        wizard = _wizard_on_review()
        _accept_all(wizard)
        assert wizard.can(WizardEvent.SUBMIT)
        assert wizard.toggle_waiver(name) is False
        assert not wizard.can(WizardEvent.SUBMIT)

    def test_double_submit_rejected_until_finished(self) -> None:
        wizard = _wizard_on_review()
        _accept_all(wizard)
        wizard.submit()
        with pytest.raises(TransitionRejected):
            wizard.submit()
        wizard.submission_finished()
        wizard.submit()

    def test_no_next_from_review(self) -> None:
        wizard = _wizard_on_review()
        assert (WizardStep.REVIEW, WizardEvent.NEXT) not in TRANSITIONS
        with pytest.raises(TransitionRejected):
            wizard.next()

    def test_total(self) -> None:
        wizard = _wizard_on_players()
        _add_player(wizard, "Sam", "2019-05-01")    # U8
        _add_player(wizard, "Alex", "2014-02-10")   # U12
        assert [p.division for p in wizard.data.players] == ["U8", "U12"]
        assert wizard.total_cents(25000, FEES) == 54600


# ─────────────────────────── GOTO ────────────────────────────────────────────

class TestGoto:
    def test_backwards_always_allowed(self) -> None:
        wizard = _wizard_on_review()
        assert wizard.go_to(WizardStep.GUARDIAN) == WizardStep.GUARDIAN
        assert wizard.max_step == WizardStep.REVIEW

    def test_forward_to_reached_step(self) -> None:
        wizard = _wizard_on_review()
        wizard.go_to(WizardStep.PLAYERS)
        assert wizard.go_to(WizardStep.REVIEW) == WizardStep.REVIEW

    def test_forward_past_unreached_step_rejected(self) -> None:
        wizard = _wizard_on_players()
        _add_player(wizard)
        with pytest.raises(TransitionRejected):
            wizard.go_to(WizardStep.MEDICAL)

    def test_forward_rechecks_guards(self) -> None:
        wizard = _wizard_on_review()
        wizard.go_to(WizardStep.PLAYERS)
        wizard.remove_player(wizard.data.players[0].id)
        with pytest.raises(TransitionRejected):
            wizard.go_to(WizardStep.REVIEW)


# ─────────────────────────── State & hooks ───────────────────────────────────

def test_state_round_trip() -> None:
    wizard = _wizard_on_review()
    wizard.set_waiver("code_of_conduct", True)
    wizard.start_new_player()
    wizard.set_edit_field("first_name", "Kim")

    restored = RegistrationWizard.from_state(wizard.to_state(), today=TODAY)
    assert restored.step == WizardStep.REVIEW
    assert restored.max_step == WizardStep.REVIEW
    assert restored.data == wizard.data
    assert restored.editing.values == {"first_name": "Kim"}
    assert restored.data.waivers.code_of_conduct


def test_resume_clamps_step() -> None:
    wizard = RegistrationWizard.resume(guardian_data(), [], current_step=9, today=TODAY)
    assert wizard.step == WizardStep.REVIEW
    assert RegistrationWizard.resume(None, [], current_step=-1).step == WizardStep.GUARDIAN


def test_resume_past_documents_keeps_upload_later() -> None:
    players = [player_draft("p1", "Sam", date(2017, 3, 15))]   # no uploads
    wizard = RegistrationWizard.resume(guardian_data(), players, current_step=WizardStep.REVIEW, today=TODAY)
    assert wizard.skip_documents

    wizard.go_to(WizardStep.PLAYERS)
    assert wizard.go_to(WizardStep.REVIEW) == WizardStep.REVIEW


def test_resume_on_documents_does_not_skip() -> None:
    players = [player_draft("p1", "Sam", date(2017, 3, 15))]
    wizard = RegistrationWizard.resume(guardian_data(), players, current_step=WizardStep.DOCUMENTS, today=TODAY)
    assert not wizard.skip_documents
    assert not wizard.can(WizardEvent.NEXT)


def test_resume_with_all_documents_does_not_skip() -> None:
    players = [player_draft("p1", "Sam", date(2017, 3, 15), with_documents=True)]
    wizard = RegistrationWizard.resume(guardian_data(), players, current_step=WizardStep.REVIEW, today=TODAY)
    assert not wizard.skip_documents


def test_on_change_fires_for_data_changes() -> None:
    changes = []
    wizard = RegistrationWizard(today=TODAY)
    wizard.on_change = lambda w: changes.append(w.step)

    wizard.submit_guardian(guardian_data())     # data
    wizard.next()                               # new furthest step
    player = _add_player(wizard)                # data
    wizard.back()                               # not a change
    wizard.next()                               # already reached
    wizard.attach(player.id, "headshot", Attachment(file_id="h", name="h.jpg"))

    assert len(changes) == 4


def test_player_birth_date_type() -> None:
    wizard = _wizard_on_players()
    player = _add_player(wizard, dob="2014-02-10")
    assert player.date_of_birth == date(2014, 2, 10)
