"""
ORM models for the club registration portal.

Domain overview
---------------
Club          — a youth club (dues + governing-body fee schedule)
  └─ Season   — e.g. "2025-26-winter"; one active season per club
Guardian      — paying adult, identified by Telegram user id
  └─ Player   — a child registered by the guardian
       └─ Registration — one per player per club season (status lifecycle)
            └─ Payment — ledger row written by payment reconciliation
NotificationLog — one confirmation claim per processor payment reference
"""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.models.base import Base

# ─────────────────────────── Constants ────────────────────────────────────────

class Gender:
    MALE   = "male"
    FEMALE = "female"
    OTHER  = "other"

    ALL = (MALE, FEMALE, OTHER)

    LABELS = {
        MALE:   "Male",
        FEMALE: "Female",
        OTHER:  "Other",
    }


class RegistrationStatus:
    DRAFT                = "draft"
    PAID                 = "paid"                  # Set only by payment reconciliation
    SUBMITTED            = "submitted"             # Sent to the governing body
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED             = "verified"
    COMPLETE             = "complete"
    CANCELLED            = "cancelled"
    WAITLIST             = "waitlist"

    ALL = (
        DRAFT, PAID, SUBMITTED, PENDING_VERIFICATION,
        VERIFIED, COMPLETE, CANCELLED, WAITLIST,
    )

    LABELS = {
        DRAFT:                "Draft",
        PAID:                 "Paid - Awaiting Registration",
        SUBMITTED:            "Submitted",
        PENDING_VERIFICATION: "Pending Verification",
        VERIFIED:             "Verified",
        COMPLETE:             "Complete",
        CANCELLED:            "Cancelled",
        WAITLIST:             "Waitlist",
    }

    EMOJI = {
        DRAFT:                "📝",
        PAID:                 "💳",
        SUBMITTED:            "📨",
        PENDING_VERIFICATION: "⏳",
        VERIFIED:             "✅",
        COMPLETE:             "🏁",
        CANCELLED:            "❌",
        WAITLIST:             "🕒",
    }

    # Manual (admin) transitions. PAID is never a target.
    ADMIN_TRANSITIONS: dict[str, tuple[str, ...]] = {
        DRAFT:                (CANCELLED, WAITLIST),
        WAITLIST:             (DRAFT, CANCELLED),
        PAID:                 (SUBMITTED,),
        SUBMITTED:            (PENDING_VERIFICATION,),
        PENDING_VERIFICATION: (VERIFIED,),
        VERIFIED:             (COMPLETE,),
        COMPLETE:             (),
        CANCELLED:            (),
    }

    # Statuses from which a confirmed checkout may move a registration to PAID
    PAYABLE = (DRAFT, WAITLIST)


class PaymentStatus:
    PENDING            = "pending"
    PROCESSING         = "processing"
    SUCCEEDED          = "succeeded"
    FAILED             = "failed"
    REFUNDED           = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class NotificationType:
    REGISTRATION_CONFIRMATION = "registration_confirmation"
    STATUS_CHANGE             = "status_change"


# ─────────────────────────── Models ───────────────────────────────────────────

class Club(Base):
    """A youth club taking registrations."""
    __tablename__ = "clubs"

    id:                Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    name:              Mapped[str]           = mapped_column(String(255))
    slug:              Mapped[str]           = mapped_column(String(100), unique=True, index=True)
    contact_email:     Mapped[str]           = mapped_column(String(255))
    club_dues_cents:   Mapped[int]           = mapped_column(Integer, default=0)
    flag_fee_cents:    Mapped[int]           = mapped_column(Integer, default=0)   # non-contact division fee
    contact_fee_cents: Mapped[int]           = mapped_column(Integer, default=0)   # contact division fee
    practice_location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    practice_schedule: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    stripe_account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at:        Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    seasons: Mapped[List["Season"]] = relationship(
        back_populates="club", cascade="all, delete-orphan"
    )


class Season(Base):
    """A registration season of a club."""
    __tablename__ = "seasons"
    __table_args__ = (UniqueConstraint("club_id", "slug", name="uq_season_club_slug"),)

    id:              Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    club_id:         Mapped[int]           = mapped_column(ForeignKey("clubs.id"))
    slug:            Mapped[str]           = mapped_column(String(100))
    name:            Mapped[str]           = mapped_column(String(255))
    is_active:       Mapped[bool]          = mapped_column(Boolean, default=False)
    club_dues_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # overrides club default
    max_players:     Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at:      Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    club: Mapped["Club"] = relationship(back_populates="seasons")

    @property
    def dues_cents(self) -> int:
        if self.club_dues_cents is not None:
            return self.club_dues_cents
        return self.club.club_dues_cents


class Guardian(Base):
    """Paying adult. The Telegram user id is the authenticated identity."""
    __tablename__ = "guardians"

    id:            Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    telegram_id:   Mapped[int]           = mapped_column(BigInteger, unique=True, index=True)
    email:         Mapped[str]           = mapped_column(String(255))
    first_name:    Mapped[str]           = mapped_column(String(100))
    last_name:     Mapped[str]           = mapped_column(String(100))
    phone:         Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    address_line1: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address_line2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city:          Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state:         Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    postal_code:   Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at:    Mapped[datetime]      = mapped_column(DateTime, default=func.now())
    updated_at:    Mapped[datetime]      = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    players: Mapped[List["Player"]] = relationship(
        back_populates="guardian", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Player(Base):
    """A child registered by a guardian."""
    __tablename__ = "players"

    id:                             Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    guardian_id:                    Mapped[int]           = mapped_column(ForeignKey("guardians.id"))
    first_name:                     Mapped[str]           = mapped_column(String(100))
    last_name:                      Mapped[str]           = mapped_column(String(100))
    date_of_birth:                  Mapped[date]          = mapped_column(Date)
    gender:                         Mapped[str]           = mapped_column(String(10))   # Gender.*
    headshot_file_id:               Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    dob_document_file_id:           Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    medical_conditions:             Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    allergies:                      Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    emergency_contact_name:         Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    emergency_contact_phone:        Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    emergency_contact_relationship: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at:                     Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    guardian:      Mapped["Guardian"]           = relationship(back_populates="players")
    registrations: Mapped[List["Registration"]] = relationship(
        back_populates="player", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def documents_complete(self) -> bool:
        return bool(self.headshot_file_id and self.dob_document_file_id)


class Registration(Base):
    """One player's registration for one club season."""
    __tablename__ = "registrations"
    __table_args__ = (
        UniqueConstraint("player_id", "club_id", "season", name="uq_registration_player_season"),
    )

    id:                   Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    player_id:            Mapped[int]                = mapped_column(ForeignKey("players.id"))
    club_id:              Mapped[int]                = mapped_column(ForeignKey("clubs.id"))
    season:               Mapped[str]                = mapped_column(String(100))   # Season.slug
    division:             Mapped[str]                = mapped_column(String(10))
    status:               Mapped[str]                = mapped_column(String(30), default=RegistrationStatus.DRAFT)
    draft_step:           Mapped[Optional[int]]      = mapped_column(Integer, nullable=True)
    client_temp_id:       Mapped[Optional[str]]      = mapped_column(String(64), nullable=True)
    club_dues_paid:       Mapped[bool]               = mapped_column(Boolean, default=False)
    payment_amount_cents: Mapped[Optional[int]]      = mapped_column(Integer, nullable=True)
    payment_reference:    Mapped[Optional[str]]      = mapped_column(String(255), nullable=True, index=True)
    payment_date:         Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    weight_verified:      Mapped[bool]               = mapped_column(Boolean, default=False)
    weight_kg:            Mapped[Optional[float]]    = mapped_column(Float, nullable=True)
    checkin_token:        Mapped[Optional[str]]      = mapped_column(String(36), nullable=True, unique=True)
    notes:                Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    created_at:           Mapped[datetime]           = mapped_column(DateTime, default=func.now())
    updated_at:           Mapped[datetime]           = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    player:   Mapped["Player"]        = relationship(back_populates="registrations")
    club:     Mapped["Club"]          = relationship()
    payments: Mapped[List["Payment"]] = relationship(
        back_populates="registration", cascade="all, delete-orphan"
    )

    @property
    def status_label(self) -> str:
        return RegistrationStatus.LABELS.get(self.status, self.status)

    @property
    def status_emoji(self) -> str:
        return RegistrationStatus.EMOJI.get(self.status, "❓")


class Payment(Base):
    """Ledger row: one per registration per completed checkout."""
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("registration_id", "payment_reference", name="uq_payment_registration_reference"),
    )

    id:                           Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    registration_id:              Mapped[int]           = mapped_column(ForeignKey("registrations.id"))
    club_id:                      Mapped[int]           = mapped_column(ForeignKey("clubs.id"))
    guardian_id:                  Mapped[int]           = mapped_column(ForeignKey("guardians.id"))
    total_amount_cents:           Mapped[int]           = mapped_column(Integer)
    club_portion_cents:           Mapped[int]           = mapped_column(Integer)
    governing_body_portion_cents: Mapped[int]           = mapped_column(Integer)
    platform_fee_cents:           Mapped[int]           = mapped_column(Integer, default=0)
    payment_reference:            Mapped[str]           = mapped_column(String(255), index=True)
    checkout_session_id:          Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status:                       Mapped[str]           = mapped_column(String(30), default=PaymentStatus.SUCCEEDED)
    created_at:                   Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    registration: Mapped["Registration"] = relationship(back_populates="payments")
    guardian:     Mapped["Guardian"]     = relationship()


class NotificationLog(Base):
    """Confirmation claim — the unique payment_reference guards against re-sends."""
    __tablename__ = "notification_log"

    id:                Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_reference: Mapped[str]                = mapped_column(String(255), unique=True)
    notification_type: Mapped[str]                = mapped_column(String(50))
    guardian_id:       Mapped[Optional[int]]      = mapped_column(ForeignKey("guardians.id"), nullable=True)
    club_id:           Mapped[Optional[int]]      = mapped_column(ForeignKey("clubs.id"), nullable=True)
    recipient:         Mapped[Optional[str]]      = mapped_column(String(255), nullable=True)
    delivered:         Mapped[bool]               = mapped_column(Boolean, default=False)
    sent_at:           Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at:        Mapped[datetime]           = mapped_column(DateTime, default=func.now())
