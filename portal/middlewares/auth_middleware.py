"""
Admin authorization.

AdminMiddleware attaches `is_admin: bool` to handler data for every update;
the IsAdmin filter restricts admin routers and answers everyone else with
an access-denied notice.
"""
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.filters import BaseFilter
from aiogram.types import CallbackQuery, Message, TelegramObject

from portal.config import settings


class AdminMiddleware(BaseMiddleware):
    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = data.get("event_from_user")
        data["is_admin"] = bool(user and user.id in settings.admin_ids_list)
        return await handler(event, data)


class IsAdmin(BaseFilter):
    async def __call__(self, event: Message | CallbackQuery, is_admin: bool = False) -> bool:
        if not is_admin:
            if isinstance(event, Message):
                await event.answer("⛔️ Access denied.")
            elif isinstance(event, CallbackQuery):
                await event.answer("⛔️ Access denied.", show_alert=True)
        return is_admin
