"""
circulation.py
Checkout, return, fines and renewal.

Every public operation is one unit of work: the transaction row and the
book counters are committed together or not at all. Functions accept an
optional ``now`` so callers (and tests) can pin the clock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from flask import current_app

from .accounts import require_user
from .errors import AdmissionDenied, NotFound, PreconditionFailed, ValidationFailed
from .models import (
    db,
    unit_of_work,
    utcnow,
    Book,
    Member,
    Transaction,
    OPEN_STATUSES,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class RenewalResult:
    success: bool
    message: str
    new_due_date: Optional[datetime] = None

    def to_dict(self):
        return {
            "success": self.success,
            "message": self.message,
            "new_due_date": self.new_due_date.isoformat() if self.new_due_date else None,
        }


def _days(value, setting):
    days = current_app.config[setting] if value is None else int(value)
    if days < 1:
        raise ValidationFailed("Number of days must be at least 1")
    return days


def _get_transaction(transaction_id):
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFound("Transaction not found")
    return txn


# ------------------------------------------------------
# FINES
# ------------------------------------------------------

def compute_fine(due_date, return_date, status, rate, now=None):
    """
    Fine owed for a loan: whole days past ``due_date`` times ``rate``.

    A returned loan is measured up to its return date, an open one up to
    ``now``. Anything else owes nothing.
    """
    if return_date is not None:
        end = return_date
    elif status in OPEN_STATUSES:
        end = now or utcnow()
    else:
        return ZERO
    overdue_days = max(0, (end - due_date).days)
    return Decimal(overdue_days) * Decimal(rate)


def _apply_fine(txn, now=None):
    # a paid fine is settled; recalculating must not reopen it
    if txn.fine_paid:
        return txn.fine_amount
    amount = compute_fine(txn.due_date, txn.return_date, txn.status, txn.fine_rate, now)
    if amount != txn.fine_amount:
        logger.info("Fine for transaction %s set to %s", txn.id, amount)
    txn.fine_amount = amount
    return amount


def calculate_fine(transaction_id, now=None):
    """Recompute and store the fine of one loan. Unknown ids owe 0."""
    with unit_of_work():
        txn = db.session.get(Transaction, transaction_id)
        if txn is None:
            logger.warning("Fine requested for unknown transaction %s", transaction_id)
            return ZERO
        amount = _apply_fine(txn, now)
    return amount


def calculate_member_fine(transaction_id, user=None, now=None):
    """Self-service variant, limited to the caller's own loans."""
    user = user or require_user()
    txn = db.session.get(Transaction, transaction_id)
    if txn is None or user.member is None or txn.member_id != user.member.id:
        return ZERO
    return calculate_fine(transaction_id, now=now)


def mark_fine_paid(transaction_id):
    with unit_of_work():
        txn = _get_transaction(transaction_id)
        txn.fine_paid = True
    logger.info("Fine of transaction %s marked paid", transaction_id)


def refresh_fines(member_id=None, now=None):
    """Recalculate fines of every open loan that is past due."""
    now = now or utcnow()
    with unit_of_work():
        query = Transaction.query.filter(
            Transaction.status.in_(OPEN_STATUSES),
            Transaction.due_date < now,
            Transaction.fine_paid.is_(False),
        )
        if member_id is not None:
            query = query.filter(Transaction.member_id == member_id)
        loans = query.all()
        for txn in loans:
            _apply_fine(txn, now)
    return len(loans)


def flag_overdue_loans(now=None):
    """Persist the overdue label on borrowed loans past their due date."""
    now = now or utcnow()
    with unit_of_work():
        loans = Transaction.query.filter(
            Transaction.status == "borrowed",
            Transaction.due_date < now,
        ).all()
        for txn in loans:
            txn.status = "overdue"
    if loans:
        logger.info("Flagged %d loans as overdue", len(loans))
    return len(loans)


# ------------------------------------------------------
# CHECKOUT
# ------------------------------------------------------

def checkout_book(member_id, book_id, due_days=None, now=None, channel="staff"):
    due_days = _days(due_days, "LOAN_DAYS")
    now = now or utcnow()

    with unit_of_work():
        book = db.session.get(Book, book_id)
        if book is None:
            raise NotFound("Book not found")

        member = db.session.get(Member, member_id)
        if member is None:
            raise NotFound("Member not found")

        if current_app.config.get("ENFORCE_MEMBER_STATUS") and member.status != "active":
            logger.warning("Checkout refused, member %s is %s", member.member_id, member.status)
            raise AdmissionDenied(f"Member account is {member.status}")

        if book.available_copies <= 0:
            logger.warning("Checkout refused, no copies of book %s", book.id)
            raise AdmissionDenied("No available copies of this book")

        txn = Transaction(
            member=member,
            book=book,
            channel=channel,
            checkout_date=now,
            due_date=now + timedelta(days=due_days),
            status="borrowed",
            fine_rate=Decimal(str(current_app.config["FINE_PER_DAY"])),
        )
        db.session.add(txn)

        book.available_copies -= 1
        if book.available_copies == 0:
            book.status = "borrowed"

        db.session.flush()
        transaction_id = txn.id

    logger.info(
        "Checked out book %s to member %s (transaction %s, %s)",
        book_id, member_id, transaction_id, channel,
    )
    return transaction_id


def member_checkout_book(book_id, due_days=None, user=None, now=None):
    user = user or require_user()
    if user.member is None:
        raise NotFound("Member profile not found")
    return checkout_book(
        user.member.id, book_id, due_days=due_days, now=now, channel="self_service"
    )


# ------------------------------------------------------
# RETURN
# ------------------------------------------------------

def return_book(transaction_id, now=None):
    now = now or utcnow()

    with unit_of_work():
        txn = _get_transaction(transaction_id)
        if txn.status == "returned":
            logger.warning("Transaction %s already returned", transaction_id)
            raise PreconditionFailed("Book already returned")

        txn.return_date = now
        txn.status = "returned"

        book = txn.book
        book.available_copies += 1
        if book.available_copies > 0:
            book.status = "available"

        # return date just got recorded
        fine = _apply_fine(txn, now)

    logger.info("Transaction %s returned, fine %s", transaction_id, fine)
    return txn


# ------------------------------------------------------
# RENEWAL
# ------------------------------------------------------

def has_unpaid_fines(member_id):
    return Transaction.query.filter(
        Transaction.member_id == member_id,
        Transaction.fine_amount > 0,
        Transaction.fine_paid.is_(False),
    ).count() > 0


def renew_book(transaction_id, extend_days=None):
    extend_days = _days(extend_days, "RENEWAL_DAYS")

    with unit_of_work():
        txn = _get_transaction(transaction_id)
        if txn.status not in OPEN_STATUSES:
            raise PreconditionFailed("Book must be currently borrowed to renew")

        if has_unpaid_fines(txn.member_id):
            logger.warning("Renewal of %s refused, unpaid fines", transaction_id)
            raise AdmissionDenied("Member has unpaid fines. Please clear fines before renewing.")

        txn.due_date = txn.due_date + timedelta(days=extend_days)
        txn.status = "borrowed"
        new_due_date = txn.due_date

    logger.info("Transaction %s renewed until %s", transaction_id, new_due_date)
    return RenewalResult(True, "Book renewed successfully", new_due_date)


def renew_member_book(transaction_id, extend_days=None, user=None):
    user = user or require_user()
    txn = db.session.get(Transaction, transaction_id)
    if txn is None or user.member is None or txn.member_id != user.member.id:
        raise NotFound("Transaction not found")
    return renew_book(transaction_id, extend_days)
