"""
members.py
Member registry: library card numbers and staff-side member CRUD.
"""

import logging

from .errors import NotFound, ValidationFailed
from .models import db, unit_of_work, utcnow, Member, MEMBER_STATUSES, OPEN_STATUSES

logger = logging.getLogger(__name__)

MEMBER_FIELDS = ("full_name", "email", "phone", "address", "status")


def generate_member_id(now=None):
    """Next free card number, e.g. LIB-2026-0007."""
    year = (now or utcnow()).year
    seq = Member.query.count() + 1
    while True:
        candidate = "LIB-%d-%s" % (year, str(seq).zfill(4))
        if Member.query.filter_by(member_id=candidate).first() is None:
            return candidate
        seq += 1


def get_member(member_id):
    member = db.session.get(Member, member_id)
    if member is None:
        raise NotFound("Member not found")
    return member


def list_members(q="", status=None):
    query = Member.query
    if q:
        like = f"%{q}%"
        query = query.filter(
            (Member.full_name.ilike(like)) |
            (Member.email.ilike(like)) |
            (Member.member_id.ilike(like))
        )
    if status in MEMBER_STATUSES:
        query = query.filter(Member.status == status)
    return query.order_by(Member.created_at.desc(), Member.id.desc()).all()


def _check_email_free(email, member_id=None):
    existing = Member.query.filter_by(email=email).first()
    if existing is not None and existing.id != member_id:
        raise ValidationFailed("A member with this email already exists")


def create_member(full_name, email, phone=None, address=None, status="active"):
    email = email.strip().lower()
    _check_email_free(email)
    with unit_of_work():
        member = Member(
            member_id=generate_member_id(),
            full_name=full_name,
            email=email,
            phone=phone or None,
            address=address or None,
            status=status or "active",
        )
        db.session.add(member)
        db.session.flush()
        member_pk = member.id
    logger.info("Registered member %s", member.member_id)
    return db.session.get(Member, member_pk)


def update_member(member_id, **fields):
    member = get_member(member_id)
    if fields.get("email"):
        fields["email"] = fields["email"].strip().lower()
        _check_email_free(fields["email"], member.id)
    with unit_of_work():
        for key in MEMBER_FIELDS:
            value = fields.get(key)
            if value is not None:
                setattr(member, key, value)
    return member


def delete_member(member_id):
    member = get_member(member_id)
    with unit_of_work():
        # copies still out with this member go back on the shelf
        for txn in member.transactions:
            if txn.status in OPEN_STATUSES:
                txn.book.available_copies += 1
                if txn.book.status == "borrowed":
                    txn.book.status = "available"
        db.session.delete(member)
    logger.info("Deleted member %s with its loan history", member_id)
