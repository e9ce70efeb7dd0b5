"""
Service layer. Import from the submodules directly:

    portal.services.division_service        — age / division / fee rules
    portal.services.draft_service           — draft save / load
    portal.services.registration_service    — clubs, guardians, checkout preparation, admin queries
    portal.services.checkout_service        — hosted checkout handoff
    portal.services.reconciliation_service  — payment webhook reconciliation
    portal.services.notification_service    — Telegram confirmations
    portal.services.qr_service              — weigh-in QR tickets
    portal.services.export_service          — CSV / Google Sheets roster export

The wizard package imports division_service, and draft / registration
services import the wizard aggregate, so nothing is re-exported here.
"""
