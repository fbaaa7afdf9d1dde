# Overview: Request decorators for API routes; identity lookup and auth gate.

from functools import wraps

from flask import g, jsonify, request

from .extensions import db
from .services.guest_session import ensure_guest_user
from .services.identity_service import get_resolver


def current_identity():
    """
    Identity for this request.

    The access policy resolves it up front for gated paths; public paths
    (e.g. /api/auth/*) resolve lazily here on first use.
    """
    if g.get("_identity_resolved"):
        return g.get("identity")

    resolution = get_resolver().resolve(request)
    g.identity = resolution.identity
    g._identity_resolved = True
    return g.identity


def require_auth(f):
    """
    Require a resolved identity (user, admin or guest).

    Sets g.current_user_id for handlers. Guests get their backing UserRecord
    created on first use so owner-scoped queries have a row to point at.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity = current_identity()
        if identity is None:
            return jsonify({"success": False, "error": "Not authenticated"}), 401

        if identity.is_guest:
            ensure_guest_user(db.session, identity.id)

        g.current_user_id = identity.id
        return f(*args, **kwargs)

    return decorated_function

