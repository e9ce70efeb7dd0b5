from portal.middlewares.db_middleware import DatabaseMiddleware
from portal.middlewares.auth_middleware import AdminMiddleware, IsAdmin

__all__ = ["DatabaseMiddleware", "AdminMiddleware", "IsAdmin"]
