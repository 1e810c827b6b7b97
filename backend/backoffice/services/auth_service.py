# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Principals: accounts, roles and password checks.

Passwords are bcrypt-hashed (cost from BCRYPT_ROUNDS). Session tokens live
in session_service.py.
"""

import bcrypt
import re

from flask import current_app
from sqlalchemy import func

from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import User, USER_ROLES
from ..time_utils import utcnow
from .audit_service import record_audit
from .session_service import revoke_all_user_sessions

# Higher rank inherits every permission of the lower ones
ROLE_RANK = {"CUSTOMER": 0, "STAFF": 1, "ADMIN": 2, "SUPERADMIN": 3}


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


MIN_PASSWORD_LENGTH = 8

PASSWORD_RULES = (
    (r"[A-Z]", "uppercase letter"),
    (r"[a-z]", "lowercase letter"),
    (r"\d", "digit"),
    (r"[!@#$%^&*(),.'\":{}|<>]", "special character"),
)


def validate_password_strength(password: str) -> None:
    """Raise PasswordValidationError naming the first rule the password breaks."""
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    for pattern, requirement in PASSWORD_RULES:
        if not re.search(pattern, password):
            raise PasswordValidationError(f"Password must contain at least one {requirement}")


def hash_password(password: str) -> str:
    """Strength-check, then bcrypt with the configured cost."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time bcrypt comparison; a malformed stored hash never matches."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def has_min_role(user: User, min_role: str) -> bool:
    return ROLE_RANK.get(user.role, -1) >= ROLE_RANK[min_role]


def create_user(
    email: str,
    name: str,
    password: str,
    role: str = "STAFF",
    created_by_id: int | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValidationError: bad email/name/role, or weak password
        ConflictError: email already registered
    """
    email = (email or "").strip().lower()
    name = (name or "").strip()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if not name:
        raise ValidationError("name is required")
    role = _normalize_role(role)

    existing = db.session.query(User).filter(func.lower(User.email) == email).first()
    if existing:
        raise ConflictError("User with this email already exists")

    user = User(
        email=email,
        name=name,
        password_hash=hash_password(password),
        role=role,
        created_by_id=created_by_id,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    if not email or not password:
        return None

    user = db.session.query(User).filter(
        func.lower(User.email) == email.strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


# --- user management ----------------------------------------------------------

def _normalize_role(role: str | None) -> str:
    role = (role or "").strip().upper()
    if role not in USER_ROLES:
        raise ValidationError(f"Invalid role '{role}'. Must be one of: {', '.join(USER_ROLES)}")
    return role


def _check_can_manage(actor: User, target_role: str) -> None:
    # Only a SUPERADMIN may create, promote to, or act on a SUPERADMIN
    if target_role == "SUPERADMIN" and actor.role != "SUPERADMIN":
        raise ForbiddenError("Only a SUPERADMIN can manage SUPERADMIN accounts")


def list_users(*, include_inactive: bool = False, role: str | None = None) -> list[User]:
    q = db.session.query(User)
    if not include_inactive:
        q = q.filter(User.is_active.is_(True))
    if role:
        q = q.filter(User.role == _normalize_role(role))
    return q.order_by(User.email.asc()).all()


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def register_user(payload: dict, *, actor: User) -> User:
    """Create an account on behalf of `actor`; role defaults to STAFF."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    missing = sorted(f for f in ("email", "name", "password") if not payload.get(f))
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    for f in ("email", "name", "password", "role"):
        if f in payload and payload[f] is not None and not isinstance(payload[f], str):
            raise ValidationError(f"{f} must be a string")

    role = _normalize_role(payload.get("role") or "STAFF")
    _check_can_manage(actor, role)

    user = create_user(
        email=payload["email"],
        name=payload["name"],
        password=payload["password"],
        role=role,
        created_by_id=actor.id,
    )
    record_audit(
        user_id=actor.id,
        action="USER_CREATE",
        description=f"Created user {user.email} ({user.role})",
        resource="User",
        resource_id=user.id,
        new_data={"email": user.email, "role": user.role},
    )
    return user


def set_user_active(user_id: int, active: bool, *, actor: User) -> User:
    """
    Activate or deactivate an account.

    Deactivation revokes every open session, so the user is logged out at
    once. Setting the state a user already has is a no-op.

    Raises:
        NotFoundError: no such user
        ValidationError: actor targets their own account
        ForbiddenError: non-SUPERADMIN actor targets a SUPERADMIN
    """
    user = get_user(user_id)
    if user.id == actor.id:
        raise ValidationError("Cannot change the active state of your own account")
    _check_can_manage(actor, user.role)

    if user.is_active == active:
        return user

    user.is_active = active
    db.session.commit()

    revoked = 0
    if not active:
        revoked = revoke_all_user_sessions(user.id, reason="Account deactivated by admin")

    record_audit(
        user_id=actor.id,
        action="USER_ACTIVATE" if active else "USER_DEACTIVATE",
        description=(
            f"Activated user {user.email}" if active
            else f"Deactivated user {user.email}; revoked {revoked} session(s)"
        ),
        resource="User",
        resource_id=user.id,
        old_data={"is_active": not active},
        new_data={"is_active": active},
    )
    return user


def assign_role(user_id: int, role: str, *, actor: User) -> User:
    """
    Replace a user's role.

    Raises:
        NotFoundError: no such user
        ValidationError: unknown role, or actor changes their own role
        ForbiddenError: SUPERADMIN involved and actor is not one
    """
    role = _normalize_role(role)
    user = get_user(user_id)
    if user.id == actor.id:
        raise ValidationError("Cannot change your own role")
    _check_can_manage(actor, user.role)
    _check_can_manage(actor, role)

    previous = user.role
    if previous == role:
        return user

    user.role = role
    db.session.commit()
    record_audit(
        user_id=actor.id,
        action="USER_ROLE_CHANGE",
        description=f"Changed role of {user.email} from {previous} to {role}",
        resource="User",
        resource_id=user.id,
        old_data={"role": previous},
        new_data={"role": role},
    )
    return user
