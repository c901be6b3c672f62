"""
Client session: the per-client "current user" state.

A ClientSession holds at most one token. register() and login() replace
it, logout() clears it. Everything else validates the held token through
the shared AuthManager on every call, so a token revoked elsewhere (or
expired) is noticed immediately.

Invariants:
    - A failed login leaves the current token untouched
    - logout() is idempotent and never raises for a stale token
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..errors import UnauthenticatedError
from .manager import AuthContext, AuthManager, User

logger = logging.getLogger(__name__)


class ClientSession:
    """Session state for one client.

    Example:
        >>> session = ClientSession(auth)
        >>> await session.register("ada@example.com", "s3cret")
        >>> await session.is_authenticated()
        True
        >>> await session.logout()
        >>> await session.is_authenticated()
        False
    """

    def __init__(self, auth: AuthManager, token: Optional[str] = None) -> None:
        self.auth = auth
        self.token = token

    async def register(
        self,
        email: str,
        password: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> AuthContext:
        """Create an account and sign in as it.

        Raises:
            ValidationError: Invalid email, empty password or bad data
            ConflictError: If the email is already registered
        """
        user = await self.auth.create_user(email, password, data)
        token = await self.auth.issue_token(user.id)
        self.token = token.token
        return AuthContext(user=user, token=token)

    async def login(self, email: str, password: str) -> AuthContext:
        """Sign in with credentials.

        Raises:
            UnauthenticatedError: Unknown email or wrong password
        """
        user = await self.auth.authenticate(email, password)
        token = await self.auth.issue_token(user.id)
        self.token = token.token
        logger.info("User logged in", extra={"user_id": user.id})
        return AuthContext(user=user, token=token)

    async def logout(self) -> None:
        """Revoke the current token and forget it."""
        if self.token is not None:
            await self.auth.revoke_token(self.token)
        self.token = None

    async def is_authenticated(self) -> bool:
        try:
            await self.auth.validate_token(self.token)
        except UnauthenticatedError:
            return False
        return True

    async def require_context(self) -> AuthContext:
        """Resolve the current token.

        Raises:
            UnauthenticatedError: No valid session
        """
        return await self.auth.validate_token(self.token)

    async def get_user_info(self) -> User:
        context = await self.require_context()
        return context.user

    async def update_user_info(
        self,
        email: Optional[str] = None,
        password: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> User:
        """Change the signed-in user's email, password or profile data.

        Raises:
            UnauthenticatedError: No valid session
            ConflictError: If the new email belongs to another user
            ValidationError: Invalid email, empty password or bad data
        """
        context = await self.require_context()
        return await self.auth.update_user(context.user_id, email=email, password=password, data=data)
