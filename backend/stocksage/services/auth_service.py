# Overview: Service-layer operations for accounts; registration, password hashing and credential checks.

"""
Account and credential service.

Passwords are hashed with bcrypt (cost factor 12). Registration validates
name, business name, email and password strength before anything is written.
Session issuance lives in session_service (primary provider) and
legacy_auth (JWT provider).
"""

import re

import bcrypt

from ..extensions import db
from ..models import User
from ..models.auth import USER_ROLES
from stocksage.time_utils import utcnow


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AuthValidationError(Exception):
    """Raised when registration input is rejected."""
    pass


class DuplicateAccountError(Exception):
    """Raised when the email is already registered."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    """
    if not isinstance(password, str) or len(password) < 8:
        raise AuthValidationError("Password must be at least 8 characters")

    if not re.search(r"[A-Z]", password):
        raise AuthValidationError("Password must contain at least one uppercase letter")

    if not re.search(r"[a-z]", password):
        raise AuthValidationError("Password must contain at least one lowercase letter")

    if not re.search(r"\d", password):
        raise AuthValidationError("Password must contain at least one number")


def validate_registration(name, business_name, email, password) -> None:
    if not isinstance(name, str) or len(name.strip()) < 2:
        raise AuthValidationError("Full name must be at least 2 characters")
    if not isinstance(business_name, str) or len(business_name.strip()) < 2:
        raise AuthValidationError("Business name must be at least 2 characters")
    if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
        raise AuthValidationError("Please enter a valid email address")
    validate_password_strength(password)


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12."""
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """Timing-safe bcrypt check; accounts without a hash never match."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def register_user(
    name: str,
    business_name: str,
    email: str,
    password: str,
    role: str = "user",
) -> User:
    """
    Create a durable account.

    Raises:
        AuthValidationError: input rejected
        DuplicateAccountError: email already registered
    """
    validate_registration(name, business_name, email, password)
    if role not in USER_ROLES or role == "guest":
        raise AuthValidationError(f"Invalid role: {role}")

    email = email.strip().lower()
    existing = db.session.query(User).filter_by(email=email).first()
    if existing:
        raise DuplicateAccountError("User with this email already exists")

    user = User(
        name=name.strip(),
        business_name=business_name.strip(),
        email=email,
        password_hash=hash_password(password),
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Check email/password credentials.

    Returns the active User on success and stamps last_login_at, None otherwise.
    Guest accounts have no password and can never authenticate here.
    """
    if not email or not password:
        return None

    user = db.session.query(User).filter(
        User.email == email.strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user or user.is_guest:
        return None

    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def get_active_user(user_id: str) -> User | None:
    if not user_id:
        return None
    return db.session.query(User).filter(
        User.id == user_id,
        User.is_active.is_(True),
    ).first()
