"""
aiohttp application for Stripe: the signed webhook endpoint and the
checkout return pages.

    POST {WEBHOOK_PATH}              → 200 {"received": true}
                                       400 {"error": ...}  bad / missing signature
                                       500 {"error": ...}  reconciliation rolled back (Stripe retries)
    GET  /{club_slug}/success        → plain-text thank-you page
    GET  /{club_slug}/documents/{id} → how to send missing documents (bot deep link)
    GET  /{club_slug}                → plain-text "payment cancelled" page
"""
from __future__ import annotations

import logging
from typing import Optional

from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.config import DOCS_DEEP_LINK_PREFIX, settings
from portal.models.base import AsyncSessionFactory
from portal.services.reconciliation_service import (
    ConfirmationSender,
    ReconciliationError,
    WebhookSignatureError,
    handle_event,
    verify_webhook,
)
from portal.services.registration_service import get_club_by_slug, get_registration

logger = logging.getLogger(__name__)

SESSION_FACTORY = web.AppKey("session_factory", async_sessionmaker)
SENDER          = web.AppKey("sender", object)
WEBHOOK_SECRET  = web.AppKey("webhook_secret", str)
BOT_USERNAME    = web.AppKey("bot_username", str)


async def stripe_webhook(request: web.Request) -> web.Response:
    payload = await request.read()
    try:
        event = verify_webhook(
            payload,
            request.headers.get("Stripe-Signature"),
            secret=request.app[WEBHOOK_SECRET],
        )
    except WebhookSignatureError as e:
        logger.warning("Webhook signature verification failed: %s", e)
        return web.json_response({"error": str(e)}, status=400)

    try:
        result = await handle_event(
            request.app[SESSION_FACTORY], event, request.app.get(SENDER)
        )
    except ReconciliationError as e:
        logger.error("Webhook %s not applied: %s", event.get("id"), e)
        return web.json_response({"error": "Database update failed"}, status=500)

    logger.info("Webhook %s (%s): %s", event.get("id"), event.get("type"), result.outcome.value)
    return web.json_response({"received": True})


async def _club_name(request: web.Request) -> str:
    slug = request.match_info["club_slug"]
    async with request.app[SESSION_FACTORY]() as session:
        club = await get_club_by_slug(session, slug)
    if club is None:
        raise web.HTTPNotFound(text="Club not found")
    return club.name


async def checkout_success(request: web.Request) -> web.Response:
    name = await _club_name(request)
    return web.Response(text=(
        f"Registration complete!\n\n"
        f"Thank you for registering with {name}. "
        f"A confirmation with all the details has been sent to you in Telegram.\n"
        f"You can close this page."
    ))


async def checkout_cancelled(request: web.Request) -> web.Response:
    name = await _club_name(request)
    return web.Response(text=(
        f"Payment cancelled.\n\n"
        f"Your {name} registration has been saved as a draft. "
        f"Return to the bot to review it and pay when you are ready."
    ))


async def documents_upload(request: web.Request) -> web.Response:
    registration_id = int(request.match_info["registration_id"])
    async with request.app[SESSION_FACTORY]() as session:
        registration = await get_registration(session, registration_id)
    if registration is None or registration.club.slug != request.match_info["club_slug"]:
        raise web.HTTPNotFound(text="Registration not found")

    if registration.player.documents_complete:
        return web.Response(text=(
            f"All documents received.\n\n"
            f"{registration.club.name} has everything it needs for this registration."
        ))

    payload = f"{DOCS_DEEP_LINK_PREFIX}{registration_id}"
    username = request.app.get(BOT_USERNAME)
    if username:
        where = f"Open this link in Telegram to send them:\n{settings.documents_deep_link(registration_id, username)}"
    else:
        where = f"Send this command to the club bot in Telegram:\n/start {payload}"
    return web.Response(text=(
        f"Documents still needed.\n\n"
        f"{registration.club.name} needs a headshot and a proof of date of birth "
        f"for each registered player.\n{where}"
    ))


def build_web_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    sender: Optional[ConfirmationSender] = None,
    webhook_secret: Optional[str] = None,
    bot_username: Optional[str] = None,
) -> web.Application:
    app = web.Application()
    app[SESSION_FACTORY] = session_factory or AsyncSessionFactory
    app[WEBHOOK_SECRET]  = webhook_secret or settings.STRIPE_WEBHOOK_SECRET or ""
    if sender is not None:
        app[SENDER] = sender
    if bot_username or settings.BOT_USERNAME:
        app[BOT_USERNAME] = bot_username or settings.BOT_USERNAME

    app.router.add_post(settings.WEBHOOK_PATH, stripe_webhook)
    app.router.add_get("/{club_slug}/success", checkout_success)
    app.router.add_get("/{club_slug}/documents/{registration_id:[0-9]+}", documents_upload)
    app.router.add_get("/{club_slug}", checkout_cancelled)
    return app
