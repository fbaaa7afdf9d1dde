# Overview: Pooled guest accounts on the external identity provider.

"""
Guest account pool.

The hosted identity provider caps how many accounts a project may hold, so
guest sign-in prefers handing out an existing guest account over minting a
new one:

- acquire(): pick a random existing guest account (refresh its lastAccessed
  and rotate its password), or create one when the pool is empty
- on a quota error, evict the least-recently-accessed guest accounts beyond
  GUEST_POOL_MAX_SIZE and ask the caller to retry
- eviction is best-effort: a failed delete is logged and skipped

Calls to the provider use httpx with an OAuth client-credentials token held in
an AccessTokenCache that the application creates once and injects here.
"""

from __future__ import annotations

import random
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from flask import current_app


GUEST_EMAIL_PREFIX = "stocksage_guest_"
GUEST_EMAIL_DOMAIN = "stocksage-temp.com"
LIST_LIMIT = 50
TOKEN_EXPIRY_SKEW_SECONDS = 30


class IdentityProviderError(Exception):
    """Raised when the identity provider call fails."""
    pass


class QuotaExceededError(IdentityProviderError):
    """The provider refused to create another account."""
    pass


class GuestPoolExhaustedError(Exception):
    """Quota hit; old guests were evicted and the caller should retry."""

    def __init__(self, evicted: int):
        super().__init__("User limit reached. Please try again.")
        self.evicted = evicted


@dataclass
class AccessTokenCache:
    """
    Holds one bearer token and the epoch second it stops being usable.

    One instance per application, shared by reference.
    """
    access_token: Optional[str] = None
    expires_at: float = 0.0
    clock: Callable[[], float] = time.time

    def __post_init__(self):
        self._lock = threading.Lock()

    def get(self) -> Optional[str]:
        with self._lock:
            if self.access_token and self.expires_at > self.clock():
                return self.access_token
            return None

    def store(self, access_token: str, expires_in: float) -> None:
        with self._lock:
            self.access_token = access_token
            self.expires_at = self.clock() + max(0.0, float(expires_in) - TOKEN_EXPIRY_SKEW_SECONDS)

    def clear(self) -> None:
        with self._lock:
            self.access_token = None
            self.expires_at = 0.0


class IdentityProviderClient:
    """Thin httpx client for the provider's user-management API."""

    def __init__(
        self,
        base_url: str,
        token_url: str,
        client_id: str,
        client_secret: str,
        token_cache: AccessTokenCache,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_cache = token_cache
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config, token_cache: AccessTokenCache) -> "IdentityProviderClient | None":
        base_url = config.get("IDENTITY_PROVIDER_URL")
        if not base_url:
            return None
        return cls(
            base_url=base_url,
            token_url=config.get("IDENTITY_PROVIDER_TOKEN_URL") or f"{base_url.rstrip('/')}/oauth/token",
            client_id=config.get("IDENTITY_PROVIDER_CLIENT_ID") or "",
            client_secret=config.get("IDENTITY_PROVIDER_CLIENT_SECRET") or "",
            token_cache=token_cache,
            timeout=config.get("IDENTITY_PROVIDER_TIMEOUT", 10.0),
        )

    def close(self) -> None:
        self._http.close()

    def _access_token(self) -> str:
        token = self.token_cache.get()
        if token:
            return token

        if not self.client_id or not self.client_secret:
            raise IdentityProviderError("Missing identity provider credentials")

        try:
            response = self._http.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise IdentityProviderError("Failed to authenticate with identity provider") from exc

        token = body.get("access_token")
        if not token:
            raise IdentityProviderError("Invalid response from identity provider token endpoint")
        self.token_cache.store(token, body.get("expires_in", 3600))
        return token

    def _request(self, method: str, url: str, **kwargs):
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        try:
            response = self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise IdentityProviderError(f"{method} {url} failed: {exc}") from exc

        if response.status_code == 401:
            # Token revoked early; next call fetches a fresh one
            self.token_cache.clear()

        if response.status_code == 403:
            errors = _json_or_empty(response).get("errors") or []
            if errors and errors[0].get("code") == "user_quota_exceeded":
                raise QuotaExceededError("Identity provider user quota exceeded")

        if response.is_error:
            raise IdentityProviderError(f"{method} {url} returned {response.status_code}")

        return _json_or_empty(response)

    def list_users(self, limit: int = LIST_LIMIT) -> list[dict]:
        body = self._request("GET", "/users", params={"limit": limit})
        return body.get("data", []) if isinstance(body, dict) else body

    def create_user(self, **fields) -> dict:
        return self._request("POST", "/users", json=fields)

    def update_user(self, user_id: str, **fields) -> dict:
        return self._request("PATCH", f"/users/{user_id}", json=fields)

    def delete_user(self, user_id: str) -> None:
        self._request("DELETE", f"/users/{user_id}")


def _json_or_empty(response: httpx.Response):
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}


def _last_accessed(user: dict) -> float:
    meta = user.get("public_metadata") or {}
    return float(meta.get("lastAccessed") or meta.get("created") or 0)


def _new_password() -> str:
    return f"Guest_{secrets.token_urlsafe(12)}"


@dataclass(frozen=True)
class GuestAccount:
    user_id: str
    email: str
    password: str
    guest_id: str
    reused: bool

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "email": self.email,
            "password": self.password,
            "guestId": self.guest_id,
            "reused": self.reused,
        }


class GuestAccountPool:
    def __init__(self, client: IdentityProviderClient, max_size: int = 10, rng: random.Random | None = None,
                 clock: Callable[[], float] = time.time):
        self.client = client
        self.max_size = max_size
        self.rng = rng or random.Random()
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def find_guest_accounts(self) -> list[dict]:
        try:
            users = self.client.list_users()
        except IdentityProviderError:
            current_app.logger.warning("Could not list guest accounts", exc_info=True)
            return []
        return [u for u in users if (u.get("public_metadata") or {}).get("role") == "guest"]

    def acquire(self) -> GuestAccount:
        candidates = self.find_guest_accounts()
        if candidates:
            chosen = self.rng.choice(candidates)
            meta = dict(chosen.get("public_metadata") or {})
            meta["lastAccessed"] = self._now_ms()
            password = _new_password()
            self.client.update_user(chosen["id"], password=password, public_metadata=meta)
            current_app.logger.info("Reusing pooled guest account %s", chosen["id"])
            return GuestAccount(
                user_id=chosen["id"],
                email=chosen.get("email", ""),
                password=password,
                guest_id=str(meta.get("guestId", "")),
                reused=True,
            )

        now_ms = self._now_ms()
        guest_id = f"{now_ms}_{secrets.token_hex(4)}"
        email = f"{GUEST_EMAIL_PREFIX}{guest_id}@{GUEST_EMAIL_DOMAIN}"
        password = _new_password()

        try:
            created = self.client.create_user(
                email=email,
                password=password,
                first_name="Guest",
                last_name="User",
                username=f"guest_{secrets.token_hex(3)}",
                public_metadata={
                    "role": "guest",
                    "guestId": guest_id,
                    "created": now_ms,
                    "lastAccessed": now_ms,
                },
            )
        except QuotaExceededError:
            evicted = self.evict()
            raise GuestPoolExhaustedError(evicted)

        current_app.logger.info("Created pooled guest account %s", created.get("id"))
        return GuestAccount(
            user_id=created["id"],
            email=email,
            password=password,
            guest_id=guest_id,
            reused=False,
        )

    def evict(self) -> int:
        """Delete the least-recently-accessed guests beyond max_size; returns count deleted."""
        guests = sorted(self.find_guest_accounts(), key=_last_accessed)
        excess = guests[: max(0, len(guests) - self.max_size)]

        deleted = 0
        for user in excess:
            try:
                self.client.delete_user(user["id"])
            except IdentityProviderError:
                current_app.logger.warning("Failed to evict guest account %s", user.get("id"), exc_info=True)
                continue
            deleted += 1
            current_app.logger.info("Deleted old guest account %s", user["id"])
        return deleted


def get_guest_pool() -> GuestAccountPool | None:
    return current_app.extensions.get("stocksage.guest_pool")
