# Overview: Pytest coverage for route classification and gating decisions.

"""
Route access policy tests.

Verifies:
- Classification precedence: public > authenticated-only > guest-accessible > default
- Decisions per (class, identity) pair
- Identity is never looked up for public paths
- API paths get JSON 401/403, page paths get redirects
- Fallback policy when provider secrets are missing
"""

import pytest

from stocksage import create_app
from stocksage.models import Invoice, User
from stocksage.services.access_policy import (
    ALLOW,
    AUTH_ERROR_PATH,
    CLASS_AUTHENTICATED_ONLY,
    CLASS_DEFAULT,
    CLASS_GUEST_ACCESSIBLE,
    CLASS_PUBLIC,
    DENY,
    HOME_PATH,
    LOGIN_PATH,
    REDIRECT,
    AccessPolicy,
    RouteMatcher,
    evaluate_fallback,
)
from stocksage.services.identity_service import (
    SOURCE_GUEST,
    SOURCE_PRIMARY,
    Identity,
    Resolution,
)


GUEST = Identity(id="guest_8f14e45f-ceea-467a-9575-5f1f2c1a0a11", role="guest", source=SOURCE_GUEST)
MEMBER = Identity(id="u1", role="user", source=SOURCE_PRIMARY)


def resolves_to(identity=None, failures=None):
    def _resolve():
        return Resolution(identity=identity, failures=list(failures or []))
    return _resolve


def must_not_resolve():
    raise AssertionError("identity must not be resolved for this path")


@pytest.fixture
def policy():
    return AccessPolicy()


# =============================================================================
# CLASSIFICATION
# =============================================================================


class TestRouteMatcher:

    def test_wildcard_matches_any_suffix(self):
        matcher = RouteMatcher(["/api/auth(.*)"])
        assert matcher("/api/auth")
        assert matcher("/api/auth/guest")
        assert matcher("/api/authx")

    def test_plain_pattern_is_exact(self):
        matcher = RouteMatcher(["/terms"])
        assert matcher("/terms")
        assert not matcher("/terms/2024")
        assert not matcher("/termsx")

    def test_pattern_text_is_not_a_regex(self):
        matcher = RouteMatcher(["/favicon.ico"])
        assert matcher("/favicon.ico")
        assert not matcher("/faviconXico")


class TestClassification:

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/", CLASS_PUBLIC),
            ("/auth/login", CLASS_PUBLIC),
            ("/api/auth/guest", CLASS_PUBLIC),
            ("/health", CLASS_PUBLIC),
            ("/api/settings", CLASS_AUTHENTICATED_ONLY),
            ("/api/settings/profile", CLASS_AUTHENTICATED_ONLY),
            ("/api/inventory/create", CLASS_AUTHENTICATED_ONLY),
            ("/api/reports/generate/monthly", CLASS_AUTHENTICATED_ONLY),
            ("/dashboard", CLASS_GUEST_ACCESSIBLE),
            ("/inventory/12", CLASS_GUEST_ACCESSIBLE),
            ("/api/inventory/batch/stocktake", CLASS_GUEST_ACCESSIBLE),
            ("/api/invoices/bulk", CLASS_AUTHENTICATED_ONLY),
            ("/api/invoices/42", CLASS_GUEST_ACCESSIBLE),
            ("/settings", CLASS_DEFAULT),
            ("/admin", CLASS_DEFAULT),
        ],
    )
    def test_classify(self, policy, path, expected):
        assert policy.classify(path) == expected

    def test_precedence_is_by_order_not_specificity(self):
        """A path matching both public and authenticated-only is public."""
        policy = AccessPolicy(
            public=["/api/auth(.*)"],
            authenticated_only=["/api/auth/admin(.*)"],
            guest_accessible=[],
        )
        assert policy.classify("/api/auth/admin/keys") == CLASS_PUBLIC

    def test_authenticated_only_beats_guest_accessible(self, policy):
        # /api/inventory(.*) is guest-accessible, /api/inventory/delete(.*) is not
        assert policy.classify("/api/inventory/delete/7") == CLASS_AUTHENTICATED_ONLY


# =============================================================================
# DECISIONS
# =============================================================================


class TestDecisions:

    def test_public_allows_anonymous_without_resolving(self, policy):
        decision = policy.evaluate("/api/auth/guest", must_not_resolve)
        assert decision.action == ALLOW

    def test_guest_accessible_allows_guest(self, policy):
        decision = policy.evaluate("/dashboard", resolves_to(GUEST))
        assert decision.action == ALLOW
        assert decision.identity == GUEST

    def test_authenticated_only_denies_guest_with_403(self, policy):
        decision = policy.evaluate("/api/settings", resolves_to(GUEST))
        assert decision.action == DENY
        assert decision.status == 403
        assert decision.body == {"success": False, "error": "This action is not available in guest mode"}

    def test_bulk_invoice_api_denies_guest(self, policy):
        decision = policy.evaluate("/api/invoices/bulk", resolves_to(GUEST))
        assert decision.action == DENY
        assert decision.status == 403

    def test_authenticated_only_page_denies_guest_too(self, policy):
        policy = AccessPolicy(authenticated_only=["/billing(.*)"])
        decision = policy.evaluate("/billing", resolves_to(GUEST))
        assert decision.action == DENY
        assert decision.status == 403

    def test_default_redirects_guest_home(self, policy):
        decision = policy.evaluate("/settings", resolves_to(GUEST))
        assert decision.action == REDIRECT
        assert decision.target == HOME_PATH

    def test_default_redirects_anonymous_to_login(self, policy):
        decision = policy.evaluate("/settings", resolves_to(None))
        assert decision.action == REDIRECT
        assert decision.target == LOGIN_PATH

    def test_api_denies_anonymous_with_401(self, policy):
        decision = policy.evaluate("/api/invoices/bulk", resolves_to(None))
        assert decision.action == DENY
        assert decision.status == 401
        assert decision.body["error"] == "Authentication required"

    def test_user_allowed_everywhere(self, policy):
        for path in ("/settings", "/api/settings", "/dashboard", "/api/invoices/bulk"):
            assert policy.evaluate(path, resolves_to(MEMBER)).action == ALLOW

    def test_broken_credentials_on_api_is_authentication_failed(self, policy):
        decision = policy.evaluate(
            "/api/inventory/logs",
            resolves_to(None, failures=[("legacy-session", "Invalid token")]),
        )
        assert decision.action == DENY
        assert decision.status == 401
        assert decision.body["error"] == "Authentication failed"

    def test_broken_credentials_on_page_redirects_to_login(self, policy):
        decision = policy.evaluate(
            "/dashboard",
            resolves_to(None, failures=[("guest-cookie", "bad signature")]),
        )
        assert decision.action == REDIRECT
        assert decision.target == LOGIN_PATH

    def test_failure_ignored_when_a_later_provider_resolved(self, policy):
        decision = policy.evaluate(
            "/api/inventory/logs",
            resolves_to(MEMBER, failures=[("legacy-session", "Invalid token")]),
        )
        assert decision.action == ALLOW

    def test_auth_error_param_redirects_pages_to_error_page(self, policy):
        decision = policy.evaluate("/dashboard", must_not_resolve, auth_error=True)
        assert decision.action == REDIRECT
        assert decision.target == AUTH_ERROR_PATH


class TestFallbackPolicy:

    @pytest.mark.parametrize("path", ["/", "/health", "/auth/login", "/api/auth/guest", "/static/app.js"])
    def test_static_public_paths_allowed(self, path):
        assert evaluate_fallback(path).action == ALLOW

    @pytest.mark.parametrize("path", ["/dashboard", "/api/invoices/bulk", "/authors"])
    def test_everything_else_goes_to_login(self, path):
        decision = evaluate_fallback(path)
        assert decision.action == REDIRECT
        assert decision.target == LOGIN_PATH


# =============================================================================
# HTTP GATING
# =============================================================================


class TestRequestGating:

    def test_anonymous_api_call_gets_json_401(self, client, db_session):
        resp = client.post("/api/invoices/bulk", json={})
        assert resp.status_code == 401
        assert resp.json == {"success": False, "error": "Authentication required"}

    def test_anonymous_page_redirects_to_login(self, client, db_session):
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert resp.headers["Location"].endswith(LOGIN_PATH)

    def test_public_endpoint_passes_through(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["success"] is True

    def test_guest_denied_authenticated_only_api(self, client, db_session):
        client.post("/api/auth/guest")
        resp = client.post("/api/inventory/create", json={})
        assert resp.status_code == 403
        assert resp.json["error"] == "This action is not available in guest mode"

    @pytest.mark.parametrize("operation", ["delete", "updateStatus", "export"])
    def test_guest_cannot_run_bulk_invoice_operations(self, client, db_session, make_invoice, operation):
        guest_id = client.post("/api/auth/guest").json["guestId"]
        invoice = make_invoice(db_session.get(User, guest_id))
        invoice_id = invoice.id

        resp = client.post(
            "/api/invoices/bulk",
            json={"operation": operation, "invoiceIds": [invoice_id], "data": {"status": "paid"}},
        )

        assert resp.status_code == 403
        assert resp.json == {"success": False, "error": "This action is not available in guest mode"}
        db_session.expire_all()
        assert db_session.get(Invoice, invoice_id).status == "draft"

    def test_guest_reaches_guest_accessible_api(self, client, db_session):
        client.post("/api/auth/guest")
        resp = client.get("/api/inventory/logs")
        assert resp.status_code == 200
        assert resp.json == {"success": True, "data": []}

    def test_tampered_guest_cookie_is_authentication_failed(self, client, app, db_session):
        client.set_cookie(app.config["GUEST_COOKIE_NAME"], "not-a-real-token")
        resp = client.get("/api/inventory/logs")
        assert resp.status_code == 401
        assert resp.json["error"] == "Authentication failed"

    def test_auth_responses_are_not_cached(self, client, db_session):
        resp = client.get("/api/auth/guest")
        assert resp.headers["Cache-Control"] == "no-store, max-age=0"


class TestUnconfiguredProviders:

    @pytest.fixture
    def fallback_client(self):
        app = create_app({
            "TESTING": True,
            "SECRET_KEY": "short",
            "JWT_SECRET": "short",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "IDENTITY_PROVIDER_URL": None,
        })
        return app.test_client()

    def test_api_redirects_to_login(self, fallback_client):
        resp = fallback_client.post("/api/invoices/bulk", json={})
        assert resp.status_code == 302
        assert resp.headers["Location"].endswith(LOGIN_PATH)

    def test_auth_api_stays_reachable(self, fallback_client):
        resp = fallback_client.get("/api/auth/guest")
        assert resp.status_code == 200
        assert resp.json["hasGuestSession"] is False
