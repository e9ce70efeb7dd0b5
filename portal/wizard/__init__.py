from portal.wizard.state import (
    Attachment,
    PlayerDraft,
    PlayerEdit,
    RegistrationData,
    Waivers,
    WAIVER_FIELDS,
)
from portal.wizard.machine import (
    RegistrationWizard,
    WizardStep,
    WizardEvent,
    WizardError,
    TransitionRejected,
    PlayerNotFound,
    TRANSITIONS,
)
from portal.wizard.autosave import DraftAutoSaver, SaveStatus, AutoSaverRegistry, savers

__all__ = [
    "Attachment", "PlayerDraft", "PlayerEdit", "RegistrationData", "Waivers", "WAIVER_FIELDS",
    "RegistrationWizard", "WizardStep", "WizardEvent", "WizardError",
    "TransitionRejected", "PlayerNotFound", "TRANSITIONS",
    "DraftAutoSaver", "SaveStatus", "AutoSaverRegistry", "savers",
]
