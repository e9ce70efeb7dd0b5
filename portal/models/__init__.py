from portal.models.base import Base, engine, AsyncSessionFactory
from portal.models.models import (
    Club,
    Season,
    Guardian,
    Player,
    Registration,
    Payment,
    NotificationLog,
    Gender,
    RegistrationStatus,
    PaymentStatus,
    NotificationType,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionFactory",
    "Club",
    "Season",
    "Guardian",
    "Player",
    "Registration",
    "Payment",
    "NotificationLog",
    "Gender",
    "RegistrationStatus",
    "PaymentStatus",
    "NotificationType",
]
