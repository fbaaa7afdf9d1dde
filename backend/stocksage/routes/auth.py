# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/stocksage/routes/auth.py
"""
Authentication API routes.

All paths under /api/auth are public to the access policy and always answer
with JSON (never a redirect).

- register / login / logout: primary database-backed sessions (cookie, or
  the returned token as a bearer header)
- legacy/login: stateless JWT cookie for older clients
- guest: cookie-bound anonymous session (GET inspect, POST create, DELETE end)
- guest-signin: pooled guest account on the external identity provider
"""

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..decorators import current_identity
from ..services import auth_service, legacy_auth, session_service
from ..services.auth_service import AuthValidationError, DuplicateAccountError
from ..services.guest_pool import GuestPoolExhaustedError, IdentityProviderError, get_guest_pool
from ..services.guest_session import ensure_guest_user, get_guest_store
from ..services.identity_service import SOURCE_ANONYMOUS


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _cookie_secure() -> bool:
    return current_app.config.get("APP_ENV") == "production"


def _set_auth_cookie(response, name: str, value: str, max_age: int):
    response.set_cookie(
        name,
        value,
        max_age=max_age,
        httponly=True,
        samesite="Lax",
        secure=_cookie_secure(),
        path="/",
    )


@auth_bp.post("/register")
def register_route():
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.register_user(
            name=data.get("name"),
            business_name=data.get("businessName"),
            email=data.get("email"),
            password=data.get("password"),
        )
    except AuthValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except DuplicateAccountError as e:
        return jsonify({"success": False, "error": str(e)}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to register user")
        return jsonify({"success": False, "error": "An error occurred during registration"}), 500

    return jsonify({"success": True, "user": user.to_dict()}), 201


@auth_bp.post("/login")
def login_route():
    """
    Authenticate with email/password and open a primary session.

    The token is set as an HTTP-only cookie and also returned so API clients
    can send it as "Authorization: Bearer <token>".
    """
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        return jsonify({"success": False, "error": "email and password required"}), 400

    try:
        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"success": False, "error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to login user")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    response = jsonify({
        "success": True,
        "user": user.to_dict(),
        "token": token,
        "session": session.to_dict(),
        "message": "Login successful",
    })
    _set_auth_cookie(
        response,
        current_app.config["SESSION_COOKIE_NAME_PRIMARY"],
        token,
        int(session_service.SESSION_ABSOLUTE_TIMEOUT.total_seconds()),
    )
    return response, 200


@auth_bp.post("/legacy/login")
def legacy_login_route():
    """Email/password login that issues the legacy JWT cookie instead of a DB session."""
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        return jsonify({"success": False, "error": "email and password required"}), 400

    try:
        user = auth_service.authenticate(email, password)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed legacy login")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    if not user:
        return jsonify({"success": False, "error": "Invalid credentials"}), 401

    token = legacy_auth.issue_token(user)
    response = jsonify({"success": True, "user": user.to_dict(), "token": token})
    _set_auth_cookie(
        response,
        current_app.config["LEGACY_COOKIE_NAME"],
        token,
        current_app.config["JWT_MAX_AGE_SECONDS"],
    )
    return response, 200


@auth_bp.post("/logout")
def logout_route():
    """Revoke the primary session (cookie or bearer) and clear every auth cookie."""
    tokens = [request.cookies.get(current_app.config["SESSION_COOKIE_NAME_PRIMARY"])]
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        tokens.append(auth_header.split(" ", 1)[1].strip())

    revoked = False
    try:
        for token in tokens:
            if token and session_service.looks_like_session_token(token):
                revoked = session_service.revoke_session(token) or revoked
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to revoke session on logout")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    get_guest_store().destroy()

    response = jsonify({"success": True, "revoked": revoked, "message": "Logout successful"})
    for name in (current_app.config["SESSION_COOKIE_NAME_PRIMARY"], current_app.config["LEGACY_COOKIE_NAME"]):
        response.delete_cookie(name, path="/", httponly=True, samesite="Lax", secure=_cookie_secure())
    return response, 200


@auth_bp.get("/me")
def me_route():
    identity = current_identity()
    if identity is None:
        return jsonify({
            "success": True,
            "authenticated": False,
            "identity": {"id": None, "role": None, "source": SOURCE_ANONYMOUS},
        })
    return jsonify({"success": True, "authenticated": True, "identity": identity.to_dict()})


@auth_bp.get("/guest")
def get_guest_route():
    guest_id = get_guest_store().read()
    return jsonify({"success": True, "hasGuestSession": guest_id is not None, "guestId": guest_id})


@auth_bp.post("/guest")
def create_guest_route():
    """
    Start a guest session and create its backing user record.

    Each call mints a new guest; clients that want to keep their current one
    should GET first.
    """
    try:
        guest_id = get_guest_store().create()
        ensure_guest_user(db.session, guest_id)
    except Exception:
        db.session.rollback()
        get_guest_store().destroy()
        current_app.logger.exception("Failed to create guest session")
        return jsonify({"success": False, "error": "Failed to create guest session"}), 500

    return jsonify({"success": True, "guestId": guest_id})


@auth_bp.delete("/guest")
def delete_guest_route():
    get_guest_store().destroy()
    return jsonify({"success": True})


@auth_bp.post("/guest-signin")
def guest_signin_route():
    """Hand out a pooled guest account on the external identity provider."""
    pool = get_guest_pool()
    if pool is None:
        return jsonify({"success": False, "error": "Guest sign-in is not configured"}), 503

    try:
        account = pool.acquire()
    except GuestPoolExhaustedError as e:
        return jsonify({"success": False, "error": str(e), "evicted": e.evicted}), 429
    except IdentityProviderError:
        current_app.logger.exception("Failed to create guest user")
        return jsonify({"success": False, "error": "Failed to create guest user"}), 500

    return jsonify({"success": True, **account.to_dict()})
