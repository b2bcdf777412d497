from typing import Callable, Optional
from fastapi import Depends, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.concurrency import run_in_threadpool

from app.config.settings import settings
from app.db.models import User
from app.db.session import get_sync_session
from app.utils.auth import AuthUtils
from app.utils.errors import AuthenticationError, AuthorizationError
from app.utils.identity import AuthenticatedIdentity, identity_from_claims
from app.utils.responses import ResponseBuilder


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Resolves the caller's identity once per request from a bearer JWT.

    The resolved AuthenticatedIdentity is stored on ``request.state.auth``;
    the token's ``auth_provider`` claim picks the identity implementation and
    roles come from the active user row.
    """

    EXCLUDED_PATHS = {
        "/docs",
        "/redoc",
        "/openapi.json",
        f"{settings.API_PREFIX}/health",
    }

    def __init__(self, app, excluded_paths: Optional[set] = None):
        super().__init__(app)
        self.excluded_paths = set(self.EXCLUDED_PATHS)
        if excluded_paths:
            self.excluded_paths.update(excluded_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._should_skip_auth(request):
            return await call_next(request)

        try:
            request.state.auth = await self._resolve_identity(request)
        except AuthenticationError as e:
            return ResponseBuilder.error(
                request=request,
                message=e.message,
                error_code=e.error_code,
                status_code=401,
            )

        return await call_next(request)

    def _should_skip_auth(self, request: Request) -> bool:
        """CORS preflight and public paths are not authenticated."""
        return request.method == "OPTIONS" or any(
            request.url.path.startswith(path) for path in self.excluded_paths
        )

    async def _resolve_identity(self, request: Request) -> AuthenticatedIdentity:
        token = AuthUtils.extract_bearer_token(
            request.headers.get("authorization")
        ) or request.cookies.get("access_token")
        if not token:
            raise AuthenticationError("No bearer token found", "AUTH_ERROR")

        claims = AuthUtils.verify_access_token(token)
        if not claims or not claims.get("sub"):
            raise AuthenticationError("Invalid or expired token", "UNAUTHORIZED")

        user = await run_in_threadpool(self._get_active_user, str(claims["sub"]))
        if not user:
            raise AuthenticationError("User not found or inactive", "AUTH_ERROR")

        return identity_from_claims(claims, user.roles or [])

    def _get_active_user(self, user_id: str) -> Optional[User]:
        for db_session in get_sync_session():
            user = db_session.get(User, user_id)
            return user if user is not None and user.is_active else None
        return None


def get_current_identity(request: Request) -> AuthenticatedIdentity:
    """Dependency returning the identity resolved by AuthMiddleware"""
    identity = getattr(request.state, "auth", None)

    if not isinstance(identity, AuthenticatedIdentity):
        raise AuthenticationError("Not authenticated", "NOT_AUTHENTICATED")

    return identity


def require_admin(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
) -> AuthenticatedIdentity:
    """Dependency allowing only callers holding the ADMIN role"""
    if not identity.is_admin():
        raise AuthorizationError("Admin role required", "INSUFFICIENT_PERMISSIONS")
    return identity
