"""
Checkout handoff — turns a prepared registration into a hosted Stripe
Checkout page.

The request is validated here so that every client-correctable problem
(amount, player list, payer email) becomes a CheckoutError with a message
that can be shown on the Review step. Stripe rejections are wrapped the
same way; the guardian may simply retry.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

import stripe
from pydantic import BaseModel, ValidationError, field_validator

from portal.config import settings
from portal.validators import format_validation_error, is_valid_email

logger = logging.getLogger(__name__)


class CheckoutError(Exception):
    """Checkout could not be started; the message is safe to show to the guardian."""


class CheckoutRequest(BaseModel):
    player_names: List[str]
    total_amount_cents: int
    club_name: str
    club_identifier: Optional[str] = None
    guardian_email: str
    metadata: Dict[str, str] = {}

    @field_validator("total_amount_cents", mode="before")
    @classmethod
    def validate_amount(cls, v):
        if v is None:
            raise ValueError("Amount is required")
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValueError("Amount must be a whole number of cents")
        if v < 0:
            raise ValueError("Amount must not be negative")
        return v

    @field_validator("player_names")
    @classmethod
    def validate_player_names(cls, v: List[str]) -> List[str]:
        names = [n.strip() for n in v if n and n.strip()]
        if not names:
            raise ValueError("At least one player is required")
        return names

    @field_validator("guardian_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Payer email is required")
        if not is_valid_email(v):
            raise ValueError("Payer email is invalid")
        return v.lower()

    @field_validator("club_name")
    @classmethod
    def validate_club_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Club name is required")
        return v

    @classmethod
    def build(cls, **fields: Any) -> "CheckoutRequest":
        """Validate raw fields, raising CheckoutError instead of ValidationError."""
        try:
            return cls(**fields)
        except ValidationError as e:
            raise CheckoutError(format_validation_error(e)) from e

    @property
    def description(self) -> str:
        return f"Registration for: {', '.join(self.player_names)}"


class CheckoutGateway(Protocol):
    async def create_session(
        self,
        request: CheckoutRequest,
        success_url: str,
        cancel_url: str,
        connected_account: Optional[str] = None,
    ) -> str: ...


class StripeCheckoutGateway:
    """Stripe Checkout Sessions; the blocking SDK call runs in a worker thread."""

    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None) -> None:
        self.api_key  = api_key or settings.STRIPE_SECRET_KEY
        self.currency = currency or settings.STRIPE_CURRENCY

    def _params(
        self,
        request: CheckoutRequest,
        success_url: str,
        cancel_url: str,
        connected_account: Optional[str],
    ) -> dict:
        params: dict = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "customer_email": request.guardian_email,
            "line_items": [{
                "price_data": {
                    "currency": self.currency,
                    "product_data": {
                        "name": f"{request.club_name} Registration",
                        "description": request.description,
                    },
                    "unit_amount": request.total_amount_cents,
                },
                "quantity": 1,
            }],
            "metadata": dict(request.metadata),
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if request.club_identifier:
            params["client_reference_id"] = request.club_identifier
        if connected_account:
            params["payment_intent_data"] = {
                "transfer_data": {"destination": connected_account},
                "metadata": dict(request.metadata),
            }
        return params

    async def create_session(
        self,
        request: CheckoutRequest,
        success_url: str,
        cancel_url: str,
        connected_account: Optional[str] = None,
    ) -> str:
        if not self.api_key:
            raise CheckoutError("Online payment is not configured. Please contact the club.")
        params = self._params(request, success_url, cancel_url, connected_account)
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create, api_key=self.api_key, **params
            )
        except stripe.StripeError as e:
            logger.error("Stripe rejected checkout for %s: %s", request.club_name, e)
            raise CheckoutError("The payment provider rejected the request. Please try again.") from e
        logger.info("Checkout session %s created (%d cents)", session.id, request.total_amount_cents)
        return session.url


async def create_checkout(
    request: CheckoutRequest,
    gateway: Optional[CheckoutGateway] = None,
    club_slug: Optional[str] = None,
    connected_account: Optional[str] = None,
) -> str:
    """Create the hosted checkout page and return its URL."""
    gateway = gateway or StripeCheckoutGateway()
    slug = club_slug or request.club_identifier or ""
    url = await gateway.create_session(
        request,
        success_url=settings.success_url(slug),
        cancel_url=settings.cancel_url(slug),
        connected_account=connected_account,
    )
    if not url:
        raise CheckoutError("No checkout page was returned. Please try again.")
    return url
