"""Initial schema — clubs, seasons, guardians, players, registrations, payments

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Changes:
  - clubs / seasons: fee schedule, practice info, season cap
  - guardians / players: contact, documents and medical details
  - registrations: status lifecycle, draft step, payment and weigh-in fields
  - payments: per-registration ledger, unique per payment reference
  - notification_log: one confirmation claim per payment reference
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── clubs ─────────────────────────────────────────────────────────────────
    op.create_table(
        "clubs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("contact_email", sa.String(255), nullable=False),
        sa.Column("club_dues_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("flag_fee_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("contact_fee_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("practice_location", sa.String(500), nullable=True),
        sa.Column("practice_schedule", sa.String(500), nullable=True),
        sa.Column("stripe_account_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_clubs_slug", "clubs", ["slug"], unique=True)

    # ── seasons ───────────────────────────────────────────────────────────────
    op.create_table(
        "seasons",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("club_dues_cents", sa.Integer(), nullable=True),
        sa.Column("max_players", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("club_id", "slug", name="uq_season_club_slug"),
    )

    # ── guardians ─────────────────────────────────────────────────────────────
    op.create_table(
        "guardians",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("telegram_id", sa.BigInteger(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("address_line1", sa.String(255), nullable=True),
        sa.Column("address_line2", sa.String(255), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("state", sa.String(100), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_guardians_telegram_id", "guardians", ["telegram_id"], unique=True)

    # ── players ───────────────────────────────────────────────────────────────
    op.create_table(
        "players",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guardian_id", sa.Integer(), sa.ForeignKey("guardians.id"), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=False),
        sa.Column("gender", sa.String(10), nullable=False),
        sa.Column("headshot_file_id", sa.String(255), nullable=True),
        sa.Column("dob_document_file_id", sa.String(255), nullable=True),
        sa.Column("medical_conditions", sa.Text(), nullable=True),
        sa.Column("allergies", sa.Text(), nullable=True),
        sa.Column("emergency_contact_name", sa.String(255), nullable=True),
        sa.Column("emergency_contact_phone", sa.String(30), nullable=True),
        sa.Column("emergency_contact_relationship", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # ── registrations ─────────────────────────────────────────────────────────
    op.create_table(
        "registrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("player_id", sa.Integer(), sa.ForeignKey("players.id"), nullable=False),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False),
        sa.Column("season", sa.String(100), nullable=False),
        sa.Column("division", sa.String(10), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="draft"),
        sa.Column("draft_step", sa.Integer(), nullable=True),
        sa.Column("client_temp_id", sa.String(64), nullable=True),
        sa.Column("club_dues_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_amount_cents", sa.Integer(), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("payment_date", sa.DateTime(), nullable=True),
        sa.Column("weight_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("weight_kg", sa.Float(), nullable=True),
        sa.Column("checkin_token", sa.String(36), nullable=True, unique=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("player_id", "club_id", "season", name="uq_registration_player_season"),
    )
    op.create_index("ix_registrations_payment_reference", "registrations", ["payment_reference"])

    # ── payments ──────────────────────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("registration_id", sa.Integer(), sa.ForeignKey("registrations.id"), nullable=False),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False),
        sa.Column("guardian_id", sa.Integer(), sa.ForeignKey("guardians.id"), nullable=False),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("club_portion_cents", sa.Integer(), nullable=False),
        sa.Column("governing_body_portion_cents", sa.Integer(), nullable=False),
        sa.Column("platform_fee_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_reference", sa.String(255), nullable=False),
        sa.Column("checkout_session_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="succeeded"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "registration_id", "payment_reference", name="uq_payment_registration_reference"
        ),
    )
    op.create_index("ix_payments_payment_reference", "payments", ["payment_reference"])

    # ── notification_log ──────────────────────────────────────────────────────
    op.create_table(
        "notification_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payment_reference", sa.String(255), nullable=False, unique=True),
        sa.Column("notification_type", sa.String(50), nullable=False),
        sa.Column("guardian_id", sa.Integer(), sa.ForeignKey("guardians.id"), nullable=True),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=True),
        sa.Column("recipient", sa.String(255), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("notification_log")
    op.drop_index("ix_payments_payment_reference", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_registrations_payment_reference", table_name="registrations")
    op.drop_table("registrations")
    op.drop_table("players")
    op.drop_index("ix_guardians_telegram_id", table_name="guardians")
    op.drop_table("guardians")
    op.drop_table("seasons")
    op.drop_index("ix_clubs_slug", table_name="clubs")
    op.drop_table("clubs")
