# Overview: Route access policy; classifies request paths and gates them before any handler runs.

"""
Route access policy.

Every request (static assets excepted) is classified against three pattern
sets, in fixed precedence order, and the first match decides its class:

    public > authenticated-only > guest-accessible > default

The class is chosen by that order, never by pattern specificity. Then:

- public             -> ALLOW, identity is not even looked up
- broken credentials -> API: DENY 401 "Authentication failed"; page: login
- guest identity     -> authenticated-only: DENY 403
                        guest-accessible:   ALLOW
                        anything else:      REDIRECT "/"
- user/admin         -> ALLOW (ownership is checked by handlers)
- no identity        -> API: DENY 401; page: REDIRECT login

When the auth providers are not configured, a fallback policy allows only the
static public paths and sends everything else to the login page.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from flask import current_app, g, jsonify, redirect, request

from ..config import providers_configured
from .identity_service import Identity, Resolution, get_resolver


ALLOW = "ALLOW"
REDIRECT = "REDIRECT"
DENY = "DENY"

CLASS_PUBLIC = "public"
CLASS_AUTHENTICATED_ONLY = "authenticated-only"
CLASS_GUEST_ACCESSIBLE = "guest-accessible"
CLASS_DEFAULT = "default"

LOGIN_PATH = "/auth/login"
HOME_PATH = "/"
AUTH_ERROR_PATH = "/auth/error"
AUTH_ERROR_PARAM = "authError"

PUBLIC_PATTERNS = (
    "/",
    "/auth(.*)",
    "/api/auth(.*)",
    "/terms",
    "/privacy",
    "/static(.*)",
    "/favicon.ico",
    "/site.webmanifest",
    "/health",
)

AUTHENTICATED_ONLY_PATTERNS = (
    "/api/inventory/create(.*)",
    "/api/inventory/update(.*)",
    "/api/inventory/delete(.*)",
    "/api/invoices/create(.*)",
    "/api/invoices/update(.*)",
    "/api/invoices/delete(.*)",
    "/api/invoices/bulk(.*)",
    "/api/customers/create(.*)",
    "/api/customers/update(.*)",
    "/api/customers/delete(.*)",
    "/api/reports/generate(.*)",
    "/api/settings(.*)",
)

GUEST_ACCESSIBLE_PATTERNS = (
    "/dashboard(.*)",
    "/inventory(.*)",
    "/invoices(.*)",
    "/customers(.*)",
    "/reports(.*)",
    "/financial-dashboard(.*)",
    "/supply-chain(.*)",
    "/api/dashboard(.*)",
    "/api/inventory(.*)",
    "/api/invoices(.*)",
    "/api/customers(.*)",
    "/api/reports(.*)",
)

# Fallback policy (providers not configured): exact paths and prefixes
FALLBACK_PUBLIC_PATHS = ("/", "/favicon.ico", "/site.webmanifest", "/health")
FALLBACK_PUBLIC_PREFIXES = ("/auth", "/api/auth", "/static")


class RouteMatcher:
    """Full-match a path against a list of route patterns ("(.*)" = any suffix)."""

    def __init__(self, patterns: Iterable[str]):
        self.patterns = tuple(patterns)
        self._compiled = [re.compile(self._to_regex(p)) for p in self.patterns]

    @staticmethod
    def _to_regex(pattern: str) -> str:
        return "".join(
            part if part == "(.*)" else re.escape(part)
            for part in re.split(r"(\(\.\*\))", pattern)
        )

    def __call__(self, path: str) -> bool:
        return any(rx.fullmatch(path) for rx in self._compiled)


@dataclass(frozen=True)
class Decision:
    action: str
    target: Optional[str] = None
    status: Optional[int] = None
    body: Optional[dict] = None
    identity: Optional[Identity] = None
    path_class: Optional[str] = None


def is_api_path(path: str) -> bool:
    return path == "/api" or path.startswith("/api/")


def _deny_or_redirect_unauthenticated(path: str, path_class: str, error: str) -> Decision:
    if is_api_path(path):
        return Decision(DENY, status=401, body={"success": False, "error": error}, path_class=path_class)
    return Decision(REDIRECT, target=LOGIN_PATH, path_class=path_class)


class AccessPolicy:
    def __init__(
        self,
        public: Iterable[str] = PUBLIC_PATTERNS,
        authenticated_only: Iterable[str] = AUTHENTICATED_ONLY_PATTERNS,
        guest_accessible: Iterable[str] = GUEST_ACCESSIBLE_PATTERNS,
    ):
        self.is_public = RouteMatcher(public)
        self.is_authenticated_only = RouteMatcher(authenticated_only)
        self.is_guest_accessible = RouteMatcher(guest_accessible)

    @classmethod
    def from_config(cls, config) -> "AccessPolicy":
        return cls(
            public=config.get("ACCESS_PUBLIC_PATTERNS", PUBLIC_PATTERNS),
            authenticated_only=config.get("ACCESS_AUTHENTICATED_ONLY_PATTERNS", AUTHENTICATED_ONLY_PATTERNS),
            guest_accessible=config.get("ACCESS_GUEST_ACCESSIBLE_PATTERNS", GUEST_ACCESSIBLE_PATTERNS),
        )

    def classify(self, path: str) -> str:
        if self.is_public(path):
            return CLASS_PUBLIC
        if self.is_authenticated_only(path):
            return CLASS_AUTHENTICATED_ONLY
        if self.is_guest_accessible(path):
            return CLASS_GUEST_ACCESSIBLE
        return CLASS_DEFAULT

    def evaluate(
        self,
        path: str,
        resolve: Callable[[], Resolution],
        auth_error: bool = False,
    ) -> Decision:
        """
        Decide ALLOW / REDIRECT / DENY for one request.

        resolve is only called for non-public paths.
        """
        path_class = self.classify(path)
        if path_class == CLASS_PUBLIC:
            return Decision(ALLOW, path_class=path_class)

        if auth_error and not is_api_path(path):
            return Decision(REDIRECT, target=AUTH_ERROR_PATH, path_class=path_class)

        resolution = resolve()
        identity = resolution.identity

        if resolution.provider_failed:
            return _deny_or_redirect_unauthenticated(path, path_class, "Authentication failed")

        if identity is None:
            return _deny_or_redirect_unauthenticated(path, path_class, "Authentication required")

        if identity.is_guest:
            if path_class == CLASS_AUTHENTICATED_ONLY:
                return Decision(
                    DENY,
                    status=403,
                    body={"success": False, "error": "This action is not available in guest mode"},
                    identity=identity,
                    path_class=path_class,
                )
            if path_class == CLASS_GUEST_ACCESSIBLE:
                return Decision(ALLOW, identity=identity, path_class=path_class)
            return Decision(REDIRECT, target=HOME_PATH, identity=identity, path_class=path_class)

        return Decision(ALLOW, identity=identity, path_class=path_class)


def evaluate_fallback(path: str) -> Decision:
    """Policy used when auth providers are not configured."""
    if path in FALLBACK_PUBLIC_PATHS or any(
        path == prefix or path.startswith(prefix + "/") for prefix in FALLBACK_PUBLIC_PREFIXES
    ):
        return Decision(ALLOW, path_class=CLASS_PUBLIC)
    return Decision(REDIRECT, target=LOGIN_PATH, path_class=CLASS_DEFAULT)


def get_policy() -> AccessPolicy:
    return current_app.extensions["stocksage.access_policy"]


def enforce_access_policy():
    """before_request hook: stop the request here unless the policy allows it."""
    if request.endpoint == "static" or request.method == "OPTIONS":
        return None

    path = request.path
    if not providers_configured(current_app.config):
        decision = evaluate_fallback(path)
    else:
        decision = get_policy().evaluate(
            path,
            lambda: get_resolver().resolve(request),
            auth_error=AUTH_ERROR_PARAM in request.args,
        )

    g.access_decision = decision
    g.identity = decision.identity
    g._identity_resolved = decision.path_class != CLASS_PUBLIC

    if decision.action == ALLOW:
        return None
    if decision.action == REDIRECT:
        return redirect(decision.target, code=302)
    return jsonify(decision.body), decision.status
