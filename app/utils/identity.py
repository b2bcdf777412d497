from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, Iterable, Optional

ADMIN_ROLE = "ADMIN"


class AuthenticatedIdentity(ABC):
    """
    The caller of a request, resolved once at the HTTP boundary.

    Services only ever see ``user_id()`` and ``roles``; how the caller
    authenticated stays behind this interface.
    """

    def __init__(self, roles: Iterable[str] = ()):
        self._roles = frozenset(role.upper() for role in roles)

    @abstractmethod
    def user_id(self) -> str: ...

    @property
    def roles(self) -> FrozenSet[str]:
        return self._roles

    def is_admin(self) -> bool:
        return ADMIN_ROLE in self._roles


class PasswordIdentity(AuthenticatedIdentity):
    """Identity of a user who signed in with username and password."""

    def __init__(self, user_id: str, username: str, roles: Iterable[str] = ()):
        super().__init__(roles)
        self._user_id = user_id
        self.username = username

    def user_id(self) -> str:
        return self._user_id

    def __repr__(self) -> str:
        return f"PasswordIdentity(user_id={self._user_id!r}, username={self.username!r})"


class OAuth2Identity(AuthenticatedIdentity):
    """Identity of a user who signed in through an OAuth2 provider."""

    def __init__(
        self,
        user_id: str,
        provider: str,
        attributes: Optional[Dict[str, Any]] = None,
        roles: Iterable[str] = (),
    ):
        super().__init__(roles)
        self._user_id = user_id
        self.provider = provider
        self.attributes = attributes or {}

    def user_id(self) -> str:
        return self._user_id

    def __repr__(self) -> str:
        return f"OAuth2Identity(user_id={self._user_id!r}, provider={self.provider!r})"


def identity_from_claims(
    claims: Dict[str, Any], roles: Iterable[str]
) -> AuthenticatedIdentity:
    """Build the identity matching the token's ``auth_provider`` claim."""
    user_id = str(claims["sub"])
    provider = claims.get("auth_provider") or "password"

    if provider == "password":
        return PasswordIdentity(user_id, claims.get("username", ""), roles)

    attributes = {
        key: value
        for key, value in claims.items()
        if key not in ("sub", "auth_provider", "roles", "iat", "exp", "jti")
    }
    return OAuth2Identity(user_id, provider, attributes, roles)
