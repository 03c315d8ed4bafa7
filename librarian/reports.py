"""
reports.py
Read models for the staff dashboard and the member pages.
"""

from sqlalchemy import func

from .models import db, utcnow, Book, Member, Transaction, OPEN_STATUSES


def dashboard_stats(now=None):
    now = now or utcnow()
    total_copies, available_copies = db.session.query(
        func.coalesce(func.sum(Book.total_copies), 0),
        func.coalesce(func.sum(Book.available_copies), 0),
    ).one()
    open_loans = Transaction.query.filter(Transaction.status.in_(OPEN_STATUSES))
    return {
        "total_books": int(total_copies),
        "available_books": int(available_copies),
        "total_members": Member.query.count(),
        "borrowed_books": open_loans.count(),
        "overdue_items": open_loans.filter(Transaction.due_date < now).count(),
    }


def _fine_totals(loans):
    total = sum((t.fine_amount or 0) for t in loans)
    unpaid = sum((t.fine_amount or 0) for t in loans if not t.fine_paid)
    return float(total), float(unpaid)


def member_transactions(member_id, status=None, now=None):
    query = Transaction.query.filter(Transaction.member_id == member_id)
    if status == "overdue":
        query = query.filter(
            Transaction.status.in_(OPEN_STATUSES),
            Transaction.due_date < (now or utcnow()),
        )
    elif status == "current":
        query = query.filter(Transaction.status.in_(OPEN_STATUSES))
    elif status == "fines":
        query = query.filter(Transaction.fine_amount > 0)
    elif status:
        query = query.filter(Transaction.status == status)
    return query.order_by(Transaction.checkout_date.desc(), Transaction.id.desc()).all()


def member_history(member, now=None):
    now = now or utcnow()
    loans = member_transactions(member.id, now=now)
    total_fines, unpaid_fines = _fine_totals(loans)
    return {
        "member": member.to_dict(),
        "transactions": [t.to_dict(now) for t in loans],
        "stats": {
            "total_borrowed": len(loans),
            "current_borrowed": sum(1 for t in loans if t.status in OPEN_STATUSES),
            "overdue": sum(1 for t in loans if t.is_overdue(now)),
            "total_fines": total_fines,
            "unpaid_fines": unpaid_fines,
        },
    }


def member_dashboard(member, now=None):
    now = now or utcnow()
    loans = member_transactions(member.id, now=now)
    current = [t for t in loans if t.status in OPEN_STATUSES]
    _, unpaid = _fine_totals(loans)
    return {
        "currently_borrowed": len(current),
        "overdue_books": sum(1 for t in current if t.is_overdue(now)),
        "total_fines": unpaid,
        "books_read": sum(1 for t in loans if t.status == "returned"),
        "current_books": [t.to_dict(now) for t in current[:5]],
    }


def member_fines(member):
    loans = member_transactions(member.id, status="fines")
    total, unpaid = _fine_totals(loans)
    return {
        "fines": [t.to_dict() for t in loans],
        "total_unpaid": unpaid,
        "total_paid": total - unpaid,
    }
