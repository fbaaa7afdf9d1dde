# Overview: Pytest coverage for the cookie-bound guest session lifecycle.

"""
Guest session tests.

Verifies:
- create -> read returns the same id, also within one request
- destroy -> read returns None
- the backing user record is created once and is a guest
- expired and tampered cookies
"""

import pytest

from stocksage.models import User
from stocksage.services import token_codec
from stocksage.services.guest_session import (
    GuestSessionStore,
    ensure_guest_user,
    get_guest_store,
    guest_uuid_from_id,
    is_guest_identifier,
)
from stocksage.services.token_codec import MalformedCredentialsError


class TestGuestEndpoints:

    def test_lifecycle(self, client, app, db_session):
        resp = client.get("/api/auth/guest")
        assert resp.json == {"success": True, "hasGuestSession": False, "guestId": None}

        created = client.post("/api/auth/guest")
        assert created.status_code == 200
        guest_id = created.json["guestId"]
        assert created.json["success"] is True
        assert is_guest_identifier(guest_id)
        assert client.get_cookie(app.config["GUEST_COOKIE_NAME"]) is not None

        resp = client.get("/api/auth/guest")
        assert resp.json == {"success": True, "hasGuestSession": True, "guestId": guest_id}

        resp = client.delete("/api/auth/guest")
        assert resp.json == {"success": True}
        assert client.get_cookie(app.config["GUEST_COOKIE_NAME"]) is None

        resp = client.get("/api/auth/guest")
        assert resp.json["hasGuestSession"] is False
        assert resp.json["guestId"] is None

    def test_create_materializes_guest_user(self, client, db_session):
        guest_id = client.post("/api/auth/guest").json["guestId"]

        record = db_session.get(User, guest_id)
        assert record is not None
        assert record.role == "guest"
        assert record.is_guest
        assert record.password_hash is None
        assert record.email == f"{guest_uuid_from_id(guest_id)}@stocksage-temp.com"

    def test_guest_cookie_is_http_only(self, client, app, db_session):
        resp = client.post("/api/auth/guest")
        cookie_header = resp.headers["Set-Cookie"]
        assert cookie_header.startswith(app.config["GUEST_COOKIE_NAME"] + "=")
        assert "HttpOnly" in cookie_header
        assert "SameSite=Lax" in cookie_header

    def test_guest_endpoints_never_redirect(self, client, db_session):
        for method in ("get", "post", "delete"):
            resp = getattr(client, method)("/api/auth/guest")
            assert resp.status_code == 200
            assert resp.is_json

    def test_logout_clears_guest_cookie(self, client, app, db_session):
        client.post("/api/auth/guest")
        client.post("/api/auth/logout")
        assert client.get_cookie(app.config["GUEST_COOKIE_NAME"]) is None


class TestGuestStore:

    def test_read_sees_create_in_same_request(self, request_ctx):
        with request_ctx("/api/auth/guest", method="POST"):
            store = get_guest_store()
            guest_id = store.create()
            assert store.read() == guest_id

    def test_read_after_destroy_in_same_request(self, request_ctx):
        with request_ctx("/api/auth/guest", method="POST"):
            store = get_guest_store()
            store.create()
            store.destroy()
            assert store.read() is None

    def test_expired_cookie_reads_as_none(self, app, request_ctx):
        expired = token_codec.encode({"sub": "abc", "typ": "guest"}, app.config["SECRET_KEY"], -5)
        cookie = f"{app.config['GUEST_COOKIE_NAME']}={expired}"
        with request_ctx("/", headers={"Cookie": cookie}):
            assert get_guest_store().read(strict=True) is None

    def test_tampered_cookie(self, app, request_ctx):
        forged = token_codec.encode({"sub": "abc", "typ": "guest"}, "not-the-app-secret-key", 3600)
        cookie = f"{app.config['GUEST_COOKIE_NAME']}={forged}"
        with request_ctx("/", headers={"Cookie": cookie}):
            store = get_guest_store()
            assert store.read() is None
            with pytest.raises(MalformedCredentialsError):
                store.read(strict=True)

    def test_session_cookie_of_other_type_is_rejected(self, app, request_ctx):
        token = token_codec.encode({"sub": "abc", "typ": "access"}, app.config["SECRET_KEY"], 3600)
        cookie = f"{app.config['GUEST_COOKIE_NAME']}={token}"
        with request_ctx("/", headers={"Cookie": cookie}):
            with pytest.raises(MalformedCredentialsError):
                get_guest_store().read(strict=True)

    def test_from_config_secure_only_in_production(self, app):
        store = GuestSessionStore.from_config(app.config)
        assert store.secure is False
        assert store.max_age == 60 * 60 * 24 * 7

        prod = GuestSessionStore.from_config({**app.config, "APP_ENV": "production"})
        assert prod.secure is True


class TestEnsureGuestUser:

    def test_idempotent(self, db_session):
        guest_id = "guest_0b7d7c52-3c1e-4e0f-a1b1-6b8f0f3c9e21"
        first = ensure_guest_user(db_session, guest_id)
        second = ensure_guest_user(db_session, guest_id)

        assert first.id == second.id == guest_id
        assert db_session.query(User).filter_by(id=guest_id).count() == 1

    def test_rejects_non_guest_ids(self, db_session):
        with pytest.raises(ValueError):
            ensure_guest_user(db_session, "8d3c0a51f1b54a4b9b7f1f6f0a6a2f10")
