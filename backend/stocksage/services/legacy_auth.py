# Overview: Legacy JWT session provider kept for older clients.

"""
Legacy session provider.

Older clients authenticate with a stateless HS256 JWT (30-day lifetime by
default) stored in its own cookie and signed with JWT_SECRET, independent of
the primary database-backed sessions. Claims: sub (user id), role, name.
"""

from __future__ import annotations

from flask import current_app

from ..models import User
from . import token_codec


def issue_token(user: User) -> str:
    return token_codec.encode(
        {"sub": user.id, "role": user.role, "name": user.name},
        current_app.config["JWT_SECRET"],
        current_app.config["JWT_MAX_AGE_SECONDS"],
    )


def read_claims(token: str) -> dict | None:
    """
    Decode a legacy token.

    Returns None when absent or expired; raises
    token_codec.MalformedCredentialsError when tampered with.
    """
    return token_codec.decode(token, current_app.config["JWT_SECRET"])
