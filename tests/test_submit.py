"""
Handler tests — Submitting the wizard (handlers/registration.py).

cq_submit is called directly with recording fakes for the callback and a
real in-memory FSM context; the wizard is read back from FSM data to check
that the submit lock never outlives the checkout attempt.
"""
from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select

from portal.handlers.registration import cq_submit
from portal.models.models import Registration
from portal.states import WizardStates
from portal.wizard import savers
from portal.wizard.machine import RegistrationWizard, WizardEvent, WizardStep
from portal.wizard.state import WAIVER_FIELDS, RegistrationData

from conftest import FakeCallback, FakeGateway, guardian_data, player_draft


class TimeoutGateway(FakeGateway):
    async def create_session(self, request, success_url, cancel_url, connected_account=None) -> str:
        raise TimeoutError("Stripe did not answer")


@pytest.fixture(autouse=True)
def _drop_savers():
    yield
    savers.discard(555001)


@pytest.fixture
async def on_review(fsm_state, club_season, guardian):
    """FSM holding a wizard on Review with every waiver accepted."""
    club, season = club_season
    wizard = RegistrationWizard(
        data=RegistrationData(
            guardian=guardian_data(),
            players=[player_draft("p-u8", "Sam", date(2019, 5, 1), with_documents=True)],
        ),
        step=WizardStep.REVIEW,
    )
    for name in WAIVER_FIELDS:
        wizard.set_waiver(name, True)

    await fsm_state.set_state(WizardStates.step)
    await fsm_state.update_data(
        club_id=club.id,
        season_id=season.id,
        guardian_id=guardian.id,
        wizard=wizard.to_state(),
    )
    return fsm_state


async def _stored_wizard(state) -> RegistrationWizard:
    return RegistrationWizard.from_state((await state.get_data())["wizard"])


async def test_gateway_failure_releases_submit_lock(async_session, on_review) -> None:
    callback = FakeCallback()

    with pytest.raises(TimeoutError):
        await cq_submit(callback, async_session, on_review, checkout_gateway=TimeoutGateway())

    after = await _stored_wizard(on_review)
    assert not after.submitting
    assert after.can(WizardEvent.SUBMIT)
    assert any("could not be started" in text for text in callback.message.answers)


async def test_retry_after_gateway_failure(async_session, on_review, fake_gateway) -> None:
    with pytest.raises(TimeoutError):
        await cq_submit(FakeCallback(), async_session, on_review, checkout_gateway=TimeoutGateway())

    callback = FakeCallback()
    await cq_submit(callback, async_session, on_review, checkout_gateway=fake_gateway)

    assert len(fake_gateway.calls) == 1
    assert "Almost done" in callback.message.answers[-1]
    # The first attempt's draft row is reused
    result = await async_session.execute(select(Registration))
    assert len(result.scalars().all()) == 1


async def test_checkout_error_is_shown_and_unlocks(async_session, on_review) -> None:
    callback = FakeCallback()
    await cq_submit(callback, async_session, on_review, checkout_gateway=FakeGateway(url=""))

    assert any("No checkout page" in text for text in callback.message.answers)
    after = await _stored_wizard(on_review)
    assert not after.submitting
    assert after.step == WizardStep.REVIEW


async def test_success_sends_checkout_link(async_session, on_review, fake_gateway) -> None:
    callback = FakeCallback()
    await cq_submit(callback, async_session, on_review, checkout_gateway=fake_gateway)

    assert "Almost done" in callback.message.answers[-1]
    request = fake_gateway.calls[0]["request"]
    assert request.metadata["guardian_id"]
    assert not (await _stored_wizard(on_review)).submitting
