from portal.keyboards.callbacks import (
    MainMenuCb,
    ClubCb,
    WizardCb,
    AdminPanelCb,
    RegistrationCb,
    ExportCb,
)
from portal.keyboards.main_menu import guardian_main_menu, admin_main_menu, back_to_main, club_list_kb
from portal.keyboards.wizard_kb import (
    guardian_step_kb,
    players_step_kb,
    documents_step_kb,
    medical_step_kb,
    review_step_kb,
    prompt_kb,
    gender_kb,
    player_form_kb,
    checkout_kb,
    WAIVER_LABELS,
    ATTACHMENT_LABELS,
)
from portal.keyboards.admin_kb import (
    club_dashboard_kb,
    registration_list_kb,
    registration_detail_kb,
    back_to_dashboard_kb,
    cancel_admin_input_kb,
)

__all__ = [
    # callbacks
    "MainMenuCb", "ClubCb", "WizardCb", "AdminPanelCb", "RegistrationCb", "ExportCb",
    # main menu
    "guardian_main_menu", "admin_main_menu", "back_to_main", "club_list_kb",
    # wizard
    "guardian_step_kb", "players_step_kb", "documents_step_kb", "medical_step_kb",
    "review_step_kb", "prompt_kb", "gender_kb", "player_form_kb", "checkout_kb",
    "WAIVER_LABELS", "ATTACHMENT_LABELS",
    # admin
    "club_dashboard_kb", "registration_list_kb", "registration_detail_kb",
    "back_to_dashboard_kb", "cancel_admin_input_kb",
]
