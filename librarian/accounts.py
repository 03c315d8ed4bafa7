"""
accounts.py
Login accounts, roles and the session identity (bcrypt hashing, signup,
login, access decorators).
"""

import logging
from functools import wraps

import bcrypt
from flask import current_app, session

from .errors import AuthRequired, Unauthorized, ValidationFailed
from .members import generate_member_id
from .models import db, unit_of_work, Member, UserAccount, UserRole

logger = logging.getLogger(__name__)


def _to_bcrypt_secret(password):
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password):
    secret = _to_bcrypt_secret(password)
    hashed = bcrypt.hashpw(secret, bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12)))
    return hashed.decode("utf-8")


def verify_password(password, password_hash):
    return bcrypt.checkpw(_to_bcrypt_secret(password), password_hash.encode("utf-8"))


def normalize_email(email):
    return (email or "").strip().lower()


def get_account_by_email(email):
    return UserAccount.query.filter_by(email=normalize_email(email)).first()


def assign_role(account, role):
    """Upsert: an account holds exactly one role row."""
    if account.role_entry is None:
        account.role_entry = UserRole(role=role)
    else:
        account.role_entry.role = role


def signup(email, password, full_name, phone=None):
    """
    Register a login account. Regular sign-ups get the member role and a
    library card; the configured admin email gets the admin role instead.
    A staff-registered member with the same email is linked, not duplicated.
    """
    email = normalize_email(email)
    if get_account_by_email(email):
        raise ValidationFailed("A user with this email address has already been registered")

    is_admin = email == normalize_email(current_app.config["ADMIN_EMAIL"])

    with unit_of_work():
        account = UserAccount(
            email=email,
            password_hash=hash_password(password),
            full_name="System Admin" if is_admin else (full_name or "Member"),
            phone=None if is_admin else phone,
        )
        db.session.add(account)
        assign_role(account, "admin" if is_admin else "member")

        if not is_admin:
            member = Member.query.filter_by(email=email, user_id=None).first()
            if member is None:
                member = Member(
                    member_id=generate_member_id(),
                    full_name=account.full_name,
                    email=email,
                    phone=phone,
                )
                db.session.add(member)
            member.user = account
        db.session.flush()
        account_id = account.id

    logger.info("Signed up %s as %s", email, "admin" if is_admin else "member")
    return db.session.get(UserAccount, account_id)


def login(email, password):
    account = get_account_by_email(email)
    if account is None or not verify_password(password, account.password_hash):
        logger.warning("Failed login for %s", normalize_email(email))
        raise AuthRequired("Invalid login credentials")
    session.clear()
    session["user_id"] = account.id
    return account


def logout():
    session.clear()


def current_user():
    user_id = session.get("user_id")
    if user_id is None:
        return None
    return db.session.get(UserAccount, user_id)


def require_user():
    user = current_user()
    if user is None:
        raise AuthRequired("User not authenticated")
    return user


def role_required(*roles, message="You do not have access to this resource"):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            user = require_user()
            if user.role not in roles:
                logger.warning("User %s (%s) refused by %s", user.id, user.role, view.__name__)
                raise Unauthorized(message)
            return view(*args, **kwargs)
        return wrapped
    return decorator
