# Overview: HS256 JWT encode/decode shared by the legacy session provider and the guest cookie.

"""
Signed token helpers (PyJWT).

- Only HS256 is issued or accepted; alg=none and asymmetric algs are refused.
- An expired token is simply absent (None).
- A token that is garbled or fails signature checks raises
  MalformedCredentialsError so callers can tell "no credentials" apart from
  "broken credentials".
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import jwt


JWT_ALG = "HS256"


class MalformedCredentialsError(Exception):
    """Raised when a cookie or token is present but cannot be trusted."""
    pass


def encode(payload: Dict[str, Any], secret: str, max_age_seconds: int) -> str:
    now = int(time.time())
    claims = dict(payload)
    claims["iat"] = now
    claims["exp"] = now + int(max_age_seconds)
    return jwt.encode(claims, secret, algorithm=JWT_ALG)


def decode(token: str, secret: str, *, required: tuple[str, ...] = ("sub", "exp")) -> Optional[Dict[str, Any]]:
    if not token:
        return None
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALG],
            options={"require": list(required)},
        )
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError as exc:
        raise MalformedCredentialsError(f"Invalid token: {exc}") from exc

    if not isinstance(claims, dict):
        raise MalformedCredentialsError("Invalid token: claims must be an object")
    return claims
