from aiogram.fsm.state import State, StatesGroup


class WizardStates(StatesGroup):
    """FSM for the guardian registration wizard."""
    step          = State()  # A step screen is shown; input comes from buttons
    guardian_form = State()  # Text input: guardian field (index in FSM data)
    player_form   = State()  # Text input: player field (first name, last name, DOB)
    player_gender = State()  # Inline: gender
    player_review = State()  # Preview with division → save / re-enter / cancel
    upload        = State()  # Photo or document for one player attachment
    medical_form  = State()  # Text input: medical field for one player


class AdminStates(StatesGroup):
    """FSM for admin text input."""
    weigh_in_token = State()  # Ticket text / token from a weigh-in QR code


class DocumentStates(StatesGroup):
    """Documents sent after checkout, opened from the confirmation link."""
    upload = State()  # Photo or document for the next missing item
