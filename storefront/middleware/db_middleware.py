# storefront/middleware/db_middleware.py

from storefront.utils.database import AsyncSessionLocal

class DBSessionMiddleware:
    """
    Opens one AsyncSession per HTTP request at request.state.db.
    app.state.session_factory overrides the default factory (tests use it).
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        app_state = getattr(scope.get("app"), "state", None)
        session_factory = getattr(app_state, "session_factory", None) or AsyncSessionLocal

        state = scope.setdefault("state", {})
        state["db"] = session_factory()
        try:
            await self.app(scope, receive, send)
        finally:
            # closed only after the response is sent
            await state["db"].close()
