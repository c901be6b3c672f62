"""
Auth module for Docbase - users, passwords and session tokens.

This module handles:
- User accounts with bcrypt password hashes
- Opaque session tokens (issue, validate, revoke, lazy expiry)
- Per-client sessions (register, login, logout, user info)

Invariants:
    - A token maps to exactly one user and, once revoked, never validates
    - Auth failures raise before any document store access
"""

from .manager import AuthContext, AuthManager, Token, User, normalize_email
from .passwords import hash_password, verify_password
from .session import ClientSession

__all__ = [
    "AuthContext",
    "AuthManager",
    "Token",
    "User",
    "normalize_email",
    "hash_password",
    "verify_password",
    "ClientSession",
]
