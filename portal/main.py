"""
Club registration bot — entry point.

Starts the Telegram bot (long polling) and the aiohttp app that receives
Stripe webhooks, then shuts both down cleanly on SIGTERM / SIGINT.
"""
import asyncio
import logging
import signal
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import ErrorEvent
from aiohttp import web
from sqlalchemy.exc import SQLAlchemyError

from portal.config import settings
from portal.middlewares import AdminMiddleware, DatabaseMiddleware
from portal.models.base import Base, engine
from portal.services.checkout_service import StripeCheckoutGateway
from portal.services.notification_service import TelegramNotifier
from portal.webhooks import build_web_app
from portal.wizard import savers

# ── Handlers ──────────────────────────────────────────────────────────────────
from portal.handlers.documents import router as documents_router
from portal.handlers.common import router as common_router
from portal.handlers.registration import router as registration_router
from portal.handlers.admin.panel import router as admin_panel_router
from portal.handlers.admin.export import router as admin_export_router
from portal.handlers.fallback import router as fallback_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def create_tables() -> None:
    """Create all database tables on startup."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready.")
    except (SQLAlchemyError, OSError) as e:
        logger.critical(
            "❌ Cannot connect to database!\n"
            "   URL: %s\n"
            "   Error: %s\n\n"
            "   → Locally: start PostgreSQL or use SQLite "
            "(DATABASE_URL=sqlite+aiosqlite:///./club_register.db)",
            settings.DATABASE_URL.split("@")[-1],   # hide credentials in log
            e,
        )
        sys.exit(1)


def build_dispatcher() -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage())

    # ── Unhandled errors: log and answer the pending callback ─────────────────
    @dp.errors()
    async def handle_error(event: ErrorEvent) -> None:
        logger.exception("Unhandled error: %s", event.exception)
        update = event.update
        if update.callback_query:
            try:
                await update.callback_query.answer(
                    "⚠️ Something went wrong. Please try again.", show_alert=True
                )
            except TelegramAPIError as e:
                logger.debug("Could not answer callback after error: %s", e)

    # ── Global middlewares ────────────────────────────────────────────────────
    dp.update.middleware(DatabaseMiddleware())
    dp.update.middleware(AdminMiddleware())

    # Injected into handlers as `checkout_gateway`
    dp["checkout_gateway"] = StripeCheckoutGateway()

    # ── Routers (first match wins) ────────────────────────────────────────────
    dp.include_router(documents_router)  # /start docs_<id> before plain /start
    dp.include_router(common_router)
    dp.include_router(registration_router)
    dp.include_router(admin_panel_router)
    dp.include_router(admin_export_router)

    # Stale buttons: must stay last
    dp.include_router(fallback_router)

    return dp


async def start_web_app(bot: Bot) -> web.AppRunner:
    bot_username = settings.BOT_USERNAME or (await bot.me()).username
    app = build_web_app(sender=TelegramNotifier(bot), bot_username=bot_username)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.WEB_HOST, settings.WEB_PORT)
    await site.start()
    logger.info(
        "Webhook endpoint listening on %s:%d%s",
        settings.WEB_HOST, settings.WEB_PORT, settings.WEBHOOK_PATH,
    )
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set; every webhook will be rejected.")
    return runner


async def main() -> None:
    logger.info("Starting club registration bot…")
    await create_tables()

    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    dp = build_dispatcher()
    runner = await start_web_app(bot)

    # ── Graceful shutdown on SIGTERM (Docker / hosting platforms) ─────────────
    loop = asyncio.get_running_loop()
    polling = asyncio.create_task(
        dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
            handle_signals=False,
        )
    )

    def _handle_signal():
        logger.info("Received shutdown signal, stopping…")
        polling.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            # Windows does not support add_signal_handler
            pass

    try:
        logger.info("Bot is running. Press Ctrl+C to stop.")
        await polling
    except asyncio.CancelledError:
        pass
    finally:
        logger.info("Shutting down…")
        savers.cancel_all()
        await runner.cleanup()
        await bot.session.close()
        await engine.dispose()
        logger.info("Shutdown complete.")


if __name__ == "__main__":
    asyncio.run(main())
