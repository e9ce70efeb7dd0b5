"""
Centralized CallbackData factories.
Telegram limits callback_data to 64 bytes — all prefixes are kept short.
"""
from aiogram.filters.callback_data import CallbackData


class MainMenuCb(CallbackData, prefix="mm"):
    action: str           # main | register | my_registrations


class ClubCb(CallbackData, prefix="club"):
    action: str           # select (guardian) | dashboard (admin)
    club_id: int = 0


class WizardCb(CallbackData, prefix="wz"):
    action: str           # next | back | goto | submit | exit | guardian | keep | add | edit | remove
                          # save | cancel_edit | redo | gender | upload | clear | skip | medical | waiver
    pid: str = ""         # wizard player id (uuid hex)
    step: int = 0
    field: str = ""


class AdminPanelCb(CallbackData, prefix="adm"):
    action: str           # back | clubs | weigh_in


class RegistrationCb(CallbackData, prefix="reg"):
    action: str           # list | view | set | weigh | payments
    club_id: int = 0
    rid: int = 0          # registration id
    status: str = ""


class ExportCb(CallbackData, prefix="exp"):
    action: str           # csv | sheets
    club_id: int = 0
