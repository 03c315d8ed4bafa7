"""
staff.py
Admin-only management of staff accounts.

A staff account is provisioned in two steps: the account with its profile
fields, then the role. Both run in one database transaction, so a failing
role step rolls the account back instead of leaving a half-provisioned
login behind.
"""

import logging

from . import accounts
from .errors import NotFound, Unauthorized, ValidationFailed
from .models import db, unit_of_work, UserAccount, UserRole

logger = logging.getLogger(__name__)


def _require_admin(actor):
    actor = actor or accounts.require_user()
    if actor.role != "admin":
        logger.warning("User %s is not admin", actor.id)
        raise Unauthorized("Only admins can manage staff")
    return actor


def _get_staff(user_id):
    if not user_id:
        raise ValidationFailed("User ID is required")
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise ValidationFailed("User ID must be a number")
    account = db.session.get(UserAccount, user_id)
    if account is None or account.role != "staff":
        raise NotFound("Staff member not found")
    return account


def list_staff():
    staff = (
        UserAccount.query.join(UserRole)
        .filter(UserRole.role == "staff")
        .order_by(UserAccount.full_name)
        .all()
    )
    return {"staff": [s.to_dict() for s in staff]}


def create_staff(email=None, password=None, full_name=None, phone=None, **_):
    if not email or not password or not full_name:
        raise ValidationFailed("Email, password, and full name are required")
    email = accounts.normalize_email(email)
    if accounts.get_account_by_email(email):
        raise ValidationFailed("A user with this email address has already been registered")

    with unit_of_work():
        account = UserAccount(
            email=email,
            password_hash=accounts.hash_password(password),
            full_name=full_name,
            phone=phone or None,
        )
        db.session.add(account)
        db.session.flush()
        logger.info("Provisioned account %s for %s", account.id, email)

        accounts.assign_role(account, "staff")
        db.session.flush()
        logger.info("Assigned staff role to %s", account.id)
        user_id = account.id

    logger.info("Staff created successfully: %s", user_id)
    return {"success": True, "user_id": user_id}


def update_staff(user_id=None, full_name=None, phone=None, email=None, password=None, **_):
    account = _get_staff(user_id)
    if email:
        email = accounts.normalize_email(email)
        existing = accounts.get_account_by_email(email)
        if existing is not None and existing.id != account.id:
            raise ValidationFailed("A user with this email address has already been registered")

    with unit_of_work():
        if full_name:
            account.full_name = full_name
        if phone is not None:
            account.phone = phone or None
        if email:
            account.email = email
        if password:
            account.password_hash = accounts.hash_password(password)

    logger.info("Staff updated successfully: %s", user_id)
    return {"success": True}


def delete_staff(user_id=None, **_):
    account = _get_staff(user_id)
    with unit_of_work():
        db.session.delete(account)
    logger.info("Staff deleted successfully: %s", user_id)
    return {"success": True}


ACTIONS = {
    "list": lambda **_: list_staff(),
    "create": create_staff,
    "update": update_staff,
    "delete": delete_staff,
}


def manage_staff(action, data=None, actor=None):
    _require_admin(actor)
    handler = ACTIONS.get(action)
    if handler is None:
        raise ValidationFailed("Invalid action")
    logger.info("Staff action %s", action)
    return handler(**(data or {}))
