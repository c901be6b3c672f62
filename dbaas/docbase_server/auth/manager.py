"""
Session/auth manager for Docbase.

This module handles:
- User accounts with salted bcrypt password hashes
- Opaque bearer tokens bound to exactly one user
- Token validation (lazy expiry, revocation)
- The explicit AuthContext handed to operations that need the current user

Invariants:
    - Emails are unique (compared trimmed and lower-cased)
    - A token maps to exactly one user
    - A revoked token never validates again
    - Expiry is checked on use; there is no background sweep
    - Token validation takes no lock
    - The in-memory token cache is bounded; persistence is the source of truth
    - Passwords and token values are never logged

How to change safely:
    - Keep error messages identical for unknown email and wrong password
    - Changing the hash scheme requires a migration for stored hashes
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
import uuid
import weakref
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from ..config import AuthConfig
from ..errors import ConflictError, NotFoundError, UnauthenticatedError, ValidationError
from ..storage.base import (
    EMAILS_NAMESPACE,
    TOKENS_NAMESPACE,
    USERS_NAMESPACE,
    PersistenceBackend,
    storage_errors,
)
from ..values import validate_data
from .passwords import hash_password, verify_password

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_email(email: Any) -> str:
    """Trim and lower-case an email address.

    Raises:
        ValidationError: If the value is not a plausible email
    """
    if not isinstance(email, str):
        raise ValidationError("email must be a string", field_name="email")
    normalized = email.strip().lower()
    local, _, domain = normalized.partition("@")
    if not local or not domain or " " in normalized:
        raise ValidationError("Invalid email address", field_name="email")
    return normalized


def _require_password(password: Any) -> str:
    if not isinstance(password, str) or not password:
        raise ValidationError("password must be a non-empty string", field_name="password")
    return password


@dataclass
class User:
    """A registered user.

    Attributes:
        id: Unique user id
        email: Normalized unique email
        password_hash: bcrypt hash (never exposed by to_dict)
        data: Arbitrary profile fields
        created_at: Creation timestamp (Unix ms)
    """

    id: str
    email: str
    password_hash: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email, "data": dict(self.data), "createdAt": self.created_at}

    def to_record(self) -> Dict[str, Any]:
        return {**self.to_dict(), "passwordHash": self.password_hash}

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> User:
        return cls(
            id=record["id"],
            email=record["email"],
            password_hash=record["passwordHash"],
            data=record.get("data", {}),
            created_at=record.get("createdAt", 0),
        )


@dataclass
class Token:
    """An issued session token.

    Attributes:
        token: Opaque token string
        user_id: Owning user
        issued_at: Issue timestamp (Unix ms)
        expires_at: Expiry timestamp (Unix ms), None for no expiry
        revoked: Set once by logout/revocation, never cleared
    """

    token: str
    user_id: str
    issued_at: int
    expires_at: Optional[int] = None
    revoked: bool = False

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at is not None and now_ms >= self.expires_at

    def to_record(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "userId": self.user_id,
            "issuedAt": self.issued_at,
            "expiresAt": self.expires_at,
            "revoked": self.revoked,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Token:
        return cls(
            token=record["token"],
            user_id=record["userId"],
            issued_at=record["issuedAt"],
            expires_at=record.get("expiresAt"),
            revoked=record.get("revoked", False),
        )


@dataclass(frozen=True)
class AuthContext:
    """The authenticated "current user", passed explicitly to operations.

    Attributes:
        user: Authenticated user
        token: Token the user authenticated with
    """

    user: User
    token: Token

    @property
    def user_id(self) -> str:
        return self.user.id


class AuthManager:
    """Users and tokens on top of a persistence backend.

    Example:
        >>> auth = AuthManager(backend, AuthConfig(token_ttl_seconds=3600))
        >>> user = await auth.create_user("ada@example.com", "s3cret")
        >>> token = await auth.issue_token(user.id)
        >>> ctx = await auth.validate_token(token.token)
        >>> ctx.user_id == user.id
        True
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        config: Optional[AuthConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            backend: Persistence backend (must be connected before use)
            config: Auth configuration
            clock: Millisecond clock, injectable for tests
        """
        self.backend = backend
        self.config = config or AuthConfig()
        self.clock = clock or _now_ms
        self._tokens: OrderedDict[str, Token] = OrderedDict()
        self._email_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _email_lock(self, email: str) -> asyncio.Lock:
        lock = self._email_locks.get(email)
        if lock is None:
            lock = asyncio.Lock()
            self._email_locks[email] = lock
        return lock

    async def _hash(self, password: str) -> str:
        return await asyncio.to_thread(hash_password, password, self.config.bcrypt_rounds)

    # Users

    async def create_user(
        self,
        email: str,
        password: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> User:
        """Create a user.

        Raises:
            ValidationError: Invalid email, empty password or bad profile data
            ConflictError: If the email is already registered
            InternalError: On persistence failure
        """
        email = normalize_email(email)
        password = _require_password(password)
        profile = validate_data(data or {})

        async with self._email_lock(email):
            with storage_errors("create_user"):
                if await self.backend.get(EMAILS_NAMESPACE, email) is not None:
                    raise ConflictError(
                        "Email already registered",
                        resource_type="user",
                        resource_id=email,
                    )

                user = User(
                    id=str(uuid.uuid4()),
                    email=email,
                    password_hash=await self._hash(password),
                    data=profile,
                    created_at=self.clock(),
                )
                await self.backend.put(USERS_NAMESPACE, user.id, user.to_record())
                await self.backend.put(EMAILS_NAMESPACE, email, {"email": email, "userId": user.id})

        logger.info("Created user", extra={"user_id": user.id})
        return user

    async def get_user(self, user_id: str) -> User:
        """Get a user.

        Raises:
            NotFoundError: If the user does not exist
        """
        with storage_errors("get_user"):
            record = await self.backend.get(USERS_NAMESPACE, user_id)
        if record is None:
            raise NotFoundError(f"User not found: {user_id}", resource_type="user", resource_id=user_id)
        return User.from_record(record)

    async def authenticate(self, email: str, password: str) -> User:
        """Check credentials.

        Raises:
            UnauthenticatedError: Unknown email or wrong password
        """
        failure = UnauthenticatedError("Invalid email or password", reason="invalid_credentials")
        try:
            email = normalize_email(email)
        except ValidationError:
            raise failure from None

        with storage_errors("authenticate"):
            index = await self.backend.get(EMAILS_NAMESPACE, email)
            if index is None or not isinstance(password, str):
                raise failure from None
            record = await self.backend.get(USERS_NAMESPACE, index["userId"])
        if record is None:
            raise failure from None

        user = User.from_record(record)
        if not await asyncio.to_thread(verify_password, password, user.password_hash):
            logger.info("Login rejected", extra={"user_id": user.id})
            raise failure from None
        return user

    async def update_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        password: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> User:
        """Change a user's email, password or profile data.

        Profile data is merged key by key, like a merge document update.

        Raises:
            NotFoundError: If the user does not exist
            ConflictError: If the new email belongs to another user
            ValidationError: Invalid email, empty password or bad data
        """
        user = await self.get_user(user_id)

        if data is not None:
            user.data = {**user.data, **validate_data(data)}
        if password is not None:
            user.password_hash = await self._hash(_require_password(password))

        if email is not None and normalize_email(email) != user.email:
            new_email = normalize_email(email)
            async with self._email_lock(new_email):
                with storage_errors("update_user"):
                    if await self.backend.get(EMAILS_NAMESPACE, new_email) is not None:
                        raise ConflictError(
                            "Email already registered",
                            resource_type="user",
                            resource_id=new_email,
                        )
                    old_email = user.email
                    user.email = new_email
                    await self.backend.put(USERS_NAMESPACE, user.id, user.to_record())
                    await self.backend.put(EMAILS_NAMESPACE, new_email, {"email": new_email, "userId": user.id})
                    await self.backend.delete(EMAILS_NAMESPACE, old_email)
        else:
            with storage_errors("update_user"):
                await self.backend.put(USERS_NAMESPACE, user.id, user.to_record())

        logger.info("Updated user", extra={"user_id": user.id})
        return user

    async def delete_user(self, user_id: str) -> None:
        """Delete a user and revoke all of their tokens.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = await self.get_user(user_id)
        await self.revoke_user_tokens(user_id)
        with storage_errors("delete_user"):
            await self.backend.delete(EMAILS_NAMESPACE, user.email)
            await self.backend.delete(USERS_NAMESPACE, user_id)
        logger.info("Deleted user", extra={"user_id": user_id})

    # Tokens

    def _remember(self, token: Token) -> None:
        self._tokens[token.token] = token
        self._tokens.move_to_end(token.token)
        while len(self._tokens) > self.config.token_cache_size:
            self._tokens.popitem(last=False)

    def _forget(self, token: str) -> None:
        self._tokens.pop(token, None)

    async def issue_token(self, user_id: str) -> Token:
        """Issue a fresh token for a user.

        With ``single_session`` enabled, the user's other tokens are
        revoked first.
        """
        if self.config.single_session:
            await self.revoke_user_tokens(user_id)

        now = self.clock()
        ttl_ms = self.config.token_ttl_seconds * 1000
        token = Token(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            issued_at=now,
            expires_at=now + ttl_ms if ttl_ms > 0 else None,
        )
        with storage_errors("issue_token"):
            await self.backend.put(TOKENS_NAMESPACE, token.token, token.to_record())
        self._remember(token)
        return token

    async def _lookup_token(self, token: str) -> Optional[Token]:
        cached = self._tokens.get(token)
        if cached is not None:
            self._tokens.move_to_end(token)
            return cached
        with storage_errors("lookup_token"):
            record = await self.backend.get(TOKENS_NAMESPACE, token)
        if record is None:
            return None
        loaded = Token.from_record(record)
        if not loaded.revoked:
            self._remember(loaded)
        return loaded

    async def validate_token(self, token: Optional[str]) -> AuthContext:
        """Resolve a bearer token to its user.

        Revoked and expired tokens are dropped from the in-memory cache
        when they are seen.

        Raises:
            UnauthenticatedError: Missing, unknown, revoked or expired
                token, or the user no longer exists
            InternalError: On persistence failure
        """
        if not token:
            raise UnauthenticatedError("Missing session token", reason="missing_token")

        found = await self._lookup_token(token)
        if found is None:
            raise UnauthenticatedError("Invalid session token", reason="invalid_token")
        if found.revoked:
            self._forget(token)
            raise UnauthenticatedError("Session token has been revoked", reason="revoked_token")
        if found.is_expired(self.clock()):
            self._forget(token)
            raise UnauthenticatedError("Session token has expired", reason="expired_token")

        with storage_errors("validate_token"):
            record = await self.backend.get(USERS_NAMESPACE, found.user_id)
        if record is None:
            raise UnauthenticatedError("Session user no longer exists", reason="unknown_user")

        return AuthContext(user=User.from_record(record), token=found)

    async def revoke_token(self, token: str) -> bool:
        """Revoke a token; revoking twice is a no-op.

        Returns:
            True if the token was active before this call
        """
        found = await self._lookup_token(token)
        if found is None or found.revoked:
            return False
        found.revoked = True
        with storage_errors("revoke_token"):
            await self.backend.put(TOKENS_NAMESPACE, token, found.to_record())
        self._forget(token)
        return True

    async def revoke_user_tokens(self, user_id: str) -> int:
        """Revoke every active token of a user.

        Returns:
            Number of tokens revoked
        """
        revoked = 0
        with storage_errors("revoke_user_tokens"):
            records = await self.backend.scan(TOKENS_NAMESPACE)
        for record in records:
            if record.get("userId") == user_id and not record.get("revoked"):
                if await self.revoke_token(record["token"]):
                    revoked += 1
        if revoked:
            logger.info("Revoked user tokens", extra={"user_id": user_id, "count": revoked})
        return revoked

    @property
    def cached_token_count(self) -> int:
        return len(self._tokens)
