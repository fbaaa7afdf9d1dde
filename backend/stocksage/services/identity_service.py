# Overview: Resolves one canonical request identity from several concurrent auth providers.

"""
Identity resolution.

An ordered list of strategies is tried one at a time; the first one to
produce an Identity wins and later strategies are not consulted. Order:

1. primary-session  - database session token in the session cookie
2. legacy-session   - HS256 JWT in the legacy cookie
3. bearer-token     - Authorization: Bearer <token>, accepted only when it
                      verifies as a live primary session or a valid legacy JWT
4. guest-cookie     - signed guest cookie

resolve() never raises. A strategy that finds broken credentials raises
MalformedCredentialsError, which is recorded on the Resolution so the access
policy can answer "Authentication failed" instead of "Authentication required".
Any other strategy error is logged and treated as "no identity".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from flask import current_app, request

from ..extensions import db
from ..models import User
from ..models.auth import USER_ROLES
from . import auth_service, legacy_auth, session_service
from .guest_session import GuestSessionStore
from .token_codec import MalformedCredentialsError


SOURCE_PRIMARY = "primary-session"
SOURCE_LEGACY = "legacy-session"
SOURCE_BEARER = "bearer-token"
SOURCE_GUEST = "guest-cookie"
SOURCE_ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Identity:
    id: str
    role: str
    source: str

    @property
    def is_guest(self) -> bool:
        return self.role == "guest"

    def to_dict(self) -> dict:
        return {"id": self.id, "role": self.role, "source": self.source}


@dataclass
class Resolution:
    identity: Optional[Identity] = None
    # (strategy name, message) for every MalformedCredentialsError seen
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def provider_failed(self) -> bool:
        return self.identity is None and bool(self.failures)


def _identity_for_user(user: User | None, source: str) -> Identity | None:
    if user is None or not user.is_active:
        return None
    role = user.role if user.role in USER_ROLES else "user"
    return Identity(id=user.id, role=role, source=source)


class PrimarySessionStrategy:
    name = SOURCE_PRIMARY

    def __init__(self, cookie_name: str):
        self.cookie_name = cookie_name

    def try_resolve(self, req) -> Identity | None:
        token = req.cookies.get(self.cookie_name)
        if not token:
            return None
        if not session_service.looks_like_session_token(token):
            raise MalformedCredentialsError("Malformed session cookie")
        return _identity_for_user(session_service.validate_session(token), self.name)


class LegacySessionStrategy:
    name = SOURCE_LEGACY

    def __init__(self, cookie_name: str):
        self.cookie_name = cookie_name

    def try_resolve(self, req) -> Identity | None:
        token = req.cookies.get(self.cookie_name)
        if not token:
            return None
        claims = legacy_auth.read_claims(token)
        if claims is None:
            return None
        return _identity_for_user(auth_service.get_active_user(str(claims["sub"])), self.name)


class BearerTokenStrategy:
    """
    Bearer tokens are never trusted on sight: the token must verify as a live
    primary session token or as a signed legacy JWT, in every environment.
    """
    name = SOURCE_BEARER

    def try_resolve(self, req) -> Identity | None:
        header = req.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return None

        token = header.split(" ", 1)[1].strip()
        if not token:
            raise MalformedCredentialsError("Empty bearer token")

        if session_service.looks_like_session_token(token):
            return _identity_for_user(session_service.validate_session(token), self.name)

        claims = legacy_auth.read_claims(token)
        if claims is None:
            return None
        return _identity_for_user(auth_service.get_active_user(str(claims["sub"])), self.name)


class GuestCookieStrategy:
    name = SOURCE_GUEST

    def __init__(self, store: GuestSessionStore):
        self.store = store

    def try_resolve(self, req) -> Identity | None:
        guest_id = self.store.read(strict=True)
        if guest_id is None:
            return None
        return Identity(id=guest_id, role="guest", source=self.name)


class IdentityResolver:
    def __init__(self, strategies):
        self.strategies = list(strategies)

    @classmethod
    def from_config(cls, config, guest_store: GuestSessionStore) -> "IdentityResolver":
        return cls([
            PrimarySessionStrategy(config["SESSION_COOKIE_NAME_PRIMARY"]),
            LegacySessionStrategy(config["LEGACY_COOKIE_NAME"]),
            BearerTokenStrategy(),
            GuestCookieStrategy(guest_store),
        ])

    def resolve(self, req=None) -> Resolution:
        req = req if req is not None else request
        resolution = Resolution()

        for strategy in self.strategies:
            try:
                identity = strategy.try_resolve(req)
            except MalformedCredentialsError as exc:
                current_app.logger.warning("Auth provider %s rejected credentials: %s", strategy.name, exc)
                resolution.failures.append((strategy.name, str(exc)))
                continue
            except Exception:
                current_app.logger.exception("Auth provider %s failed", strategy.name)
                db.session.rollback()
                continue

            if identity is not None:
                resolution.identity = identity
                return resolution

        return resolution


def get_resolver() -> IdentityResolver:
    return current_app.extensions["stocksage.identity_resolver"]
