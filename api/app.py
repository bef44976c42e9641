"""FastAPI application assembly."""

from fastapi import FastAPI

from api.actions import create_actions_router
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from api.public import create_public_router
from api.webhooks import create_webhooks_router
from auth.security_middleware import AuthMiddleware
from auth.session import SessionValidator


def create_app(services: dict, session_manager: SessionValidator) -> FastAPI:
    """
    Build the app with auth middleware, error handlers and all /api routes.

    services keys: invoice, change_order, tier_change, overrides, seats,
    permissions, subscription_sync, webhook_verifier.
    """
    app = FastAPI(title="Billing")
    # Last added runs first: request ids are assigned before auth can reject.
    app.add_middleware(AuthMiddleware, session_manager=session_manager)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")
    app.include_router(create_public_router(services), prefix="/api")
    app.include_router(create_webhooks_router(services), prefix="/api")

    return app
