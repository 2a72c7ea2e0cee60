"""Security middleware for FastAPI - session validation and tenant resolution."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth.config import AuthConfig
from auth.session import SessionManager
from auth.exceptions import SessionExpiredError
from api.base import error_response, ErrorCodes


def _unauthorized(code: str, message: str, status_code: int = 401) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message).model_dump(mode="json"),
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates the session and resolves the tenant.

    For protected routes:
    1. Extracts session token from the session cookie
    2. Validates session via SessionManager
    3. Sets user_id and organization_id in request.state

    Handlers read the ids from request.state and pass them explicitly into
    services. Public paths (payment page, quote signature, Stripe webhooks)
    bypass authentication entirely.
    """

    PUBLIC_PATHS = [
        "/api/public/",
        "/webhooks/",
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, session_manager: SessionManager, config: AuthConfig | None = None):
        super().__init__(app)
        self._session_manager = session_manager
        self._config = config or AuthConfig()

    def _is_public_path(self, path: str) -> bool:
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if self._is_public_path(path):
            return await call_next(request)

        session_token = request.cookies.get(self._config.session_cookie_name)
        if not session_token:
            return _unauthorized(ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        try:
            session = self._session_manager.validate_session(session_token)
        except SessionExpiredError:
            return _unauthorized(ErrorCodes.SESSION_EXPIRED, "Session has expired")

        if session.organization_id is None:
            return _unauthorized(
                ErrorCodes.ORGANIZATION_REQUIRED,
                "An organization is required for billing",
                status_code=403,
            )

        request.state.user_id = session.user_id
        request.state.organization_id = session.organization_id
        request.state.session = session

        return await call_next(request)
