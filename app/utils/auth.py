from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import uuid
import jwt

from app.config.settings import settings


class AuthUtils:
    """JWT helpers for the identity boundary. Token issuance lives elsewhere."""

    @staticmethod
    def generate_access_token(
        user_id: str,
        username: str,
        auth_provider: str = "password",
        roles: Optional[List[str]] = None,
    ) -> str:
        """Generate a JWT access token carrying the identity claims"""
        now = datetime.now(timezone.utc)
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        payload = {
            "sub": str(user_id),
            "username": username,
            "auth_provider": auth_provider,
            "roles": roles or [],
            "iat": now,
            "exp": expire,
            "jti": str(uuid.uuid4()),
        }

        return jwt.encode(
            payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
        )

    @staticmethod
    def verify_access_token(token: str) -> Optional[Dict[str, Any]]:
        """Verify and decode an access token; None when invalid or expired"""
        try:
            return jwt.decode(
                token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @staticmethod
    def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
        if not authorization:
            return None
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            return None
        return token.strip()
