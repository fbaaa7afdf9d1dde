# Overview: Cookie-bound anonymous guest identities and their backing user records.

"""
Guest sessions.

A guest is identified by a random uuid carried in a signed (HS256, SECRET_KEY)
HTTP-only cookie that expires after GUEST_COOKIE_MAX_AGE (7 days). The cookie
is the source of truth; the only server-side state is the guest's UserRecord,
created on first use by ensure_guest_user().

Cookie writes are staged on flask.g and applied to the response by an
after_request hook, so a create() or destroy() is visible to read() for the
rest of the same request.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from flask import current_app, g, request
from sqlalchemy.exc import IntegrityError

from ..models import User
from ..models.auth import GUEST_ID_PREFIX
from . import token_codec
from .token_codec import MalformedCredentialsError


PENDING_ATTR = "_guest_cookie_pending"
GUEST_TOKEN_TYPE = "guest"
GUEST_EMAIL_DOMAIN = "stocksage-temp.com"


def is_guest_identifier(user_id: str | None) -> bool:
    return bool(user_id) and user_id.startswith(GUEST_ID_PREFIX)


def guest_uuid_from_id(guest_id: str) -> str:
    return guest_id[len(GUEST_ID_PREFIX):] if is_guest_identifier(guest_id) else guest_id


@dataclass(frozen=True)
class _PendingCookie:
    action: str  # "set" or "clear"
    value: str | None = None
    guest_uuid: str | None = None


class GuestSessionStore:
    """Create, read and destroy the guest cookie for the current request."""

    def __init__(self, cookie_name: str, max_age: int, secret: str, secure: bool):
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secret = secret
        self.secure = secure

    @classmethod
    def from_config(cls, config) -> "GuestSessionStore":
        return cls(
            cookie_name=config["GUEST_COOKIE_NAME"],
            max_age=config["GUEST_COOKIE_MAX_AGE"],
            secret=config["SECRET_KEY"],
            secure=config.get("APP_ENV") == "production",
        )

    def create(self) -> str:
        """
        Mint a new guest identity and stage its cookie.

        Every call issues a fresh id; callers wanting reuse should read() first.
        """
        guest_uuid = str(uuid.uuid4())
        value = token_codec.encode(
            {"sub": guest_uuid, "typ": GUEST_TOKEN_TYPE},
            self.secret,
            self.max_age,
        )
        setattr(g, PENDING_ATTR, _PendingCookie("set", value, guest_uuid))
        return GUEST_ID_PREFIX + guest_uuid

    def read(self, strict: bool = False) -> str | None:
        """
        Current guest id, or None when absent or expired.

        A tampered cookie also reads as None unless strict=True, in which case
        MalformedCredentialsError propagates.
        """
        pending = g.get(PENDING_ATTR)
        if pending is not None:
            if pending.action == "set":
                return GUEST_ID_PREFIX + pending.guest_uuid
            return None

        value = request.cookies.get(self.cookie_name)
        if not value:
            return None

        try:
            claims = token_codec.decode(value, self.secret)
            if claims is not None and claims.get("typ") != GUEST_TOKEN_TYPE:
                raise MalformedCredentialsError("Cookie is not a guest session")
        except MalformedCredentialsError:
            if strict:
                raise
            current_app.logger.warning("Ignoring malformed guest session cookie")
            return None

        if claims is None:
            return None
        return GUEST_ID_PREFIX + str(claims["sub"])

    def destroy(self) -> None:
        setattr(g, PENDING_ATTR, _PendingCookie("clear"))

    def apply(self, response):
        """after_request hook: flush any staged cookie change onto the response."""
        pending = g.pop(PENDING_ATTR, None)
        if pending is None:
            return response

        if pending.action == "set":
            response.set_cookie(
                self.cookie_name,
                pending.value,
                max_age=self.max_age,
                httponly=True,
                samesite="Lax",
                secure=self.secure,
                path="/",
            )
        else:
            response.delete_cookie(
                self.cookie_name,
                path="/",
                httponly=True,
                samesite="Lax",
                secure=self.secure,
            )
        return response


def get_guest_store() -> GuestSessionStore:
    return current_app.extensions["stocksage.guest_sessions"]


def ensure_guest_user(session, guest_id: str) -> User:
    """
    Materialize the UserRecord behind a guest id if it does not exist yet.

    Commits on creation. A concurrent first request for the same guest id
    loses the insert race and re-reads the winner's row.
    """
    if not is_guest_identifier(guest_id):
        raise ValueError(f"Not a guest identifier: {guest_id!r}")

    user = session.get(User, guest_id)
    if user is not None:
        return user

    user = User(
        id=guest_id,
        name="Guest User",
        email=f"{guest_uuid_from_id(guest_id)}@{GUEST_EMAIL_DOMAIN}",
        role="guest",
    )
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = session.get(User, guest_id)
        if existing is None:
            raise
        return existing
    return user
