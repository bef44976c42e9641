"""Security middleware for FastAPI - session validation and user context."""

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth.session import SessionValidator
from auth.exceptions import SessionExpiredError
from api.base import error_response, request_id_of, ErrorCodes
from utils.user_context import set_current_user_id, clear_current_user_id

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_token"


def _unauthorized(request: Request, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content=error_response(code, message, request_id_of(request)).model_dump(mode="json"),
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Validates the session cookie and sets the acting user for the request.

    For protected routes the session_token cookie is checked with the
    injected validator; the user id goes into request.state and the user
    context, and the context is cleared when the request completes.

    Public invoice links and provider webhooks carry their own credentials
    (viewing token, signature) and bypass session auth.
    """

    PUBLIC_PATHS = (
        "/health",
        "/docs",
        "/openapi.json",
        "/api/public/",
        "/api/webhooks/",
    )

    def __init__(self, app, session_manager: SessionValidator):
        super().__init__(app)
        self._session_manager = session_manager

    def _is_public_path(self, path: str) -> bool:
        return any(path == p or path.startswith(p) for p in self.PUBLIC_PATHS)

    async def dispatch(self, request: Request, call_next):
        if self._is_public_path(request.url.path):
            return await call_next(request)

        session_token = request.cookies.get(SESSION_COOKIE)
        if not session_token:
            return _unauthorized(request, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        try:
            session = self._session_manager.validate_session(session_token)
        except SessionExpiredError as e:
            logger.info(f"Rejected session on {request.url.path}: {e}")
            return _unauthorized(request, ErrorCodes.SESSION_EXPIRED, "Session has expired")

        set_current_user_id(session.user_id)
        request.state.user_id = session.user_id
        request.state.session = session

        try:
            return await call_next(request)
        finally:
            clear_current_user_id()
