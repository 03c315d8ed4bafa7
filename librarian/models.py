from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm.exc import StaleDataError
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

from .errors import ConcurrencyConflict

db = SQLAlchemy()

BOOK_STATUSES = ("available", "borrowed", "damaged", "lost")
MEMBER_STATUSES = ("active", "inactive", "suspended")
TRANSACTION_STATUSES = ("borrowed", "returned", "overdue")
CHANNELS = ("staff", "self_service")
ROLES = ("admin", "staff", "member")

OPEN_STATUSES = ("borrowed", "overdue")


def utcnow():
    # naive UTC, SQLite drops tzinfo anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


@contextmanager
def unit_of_work():
    """
    One commit per operation. Anything raised inside rolls the whole
    session back, a lost optimistic-lock race surfaces as ConcurrencyConflict.
    """
    try:
        yield db.session
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConcurrencyConflict("Record was modified concurrently, please retry")
    except Exception:
        db.session.rollback()
        raise


class Book(db.Model):
    __tablename__ = "books"
    __table_args__ = (
        db.CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_books_available_copies",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    author = db.Column(db.String(255), nullable=False)
    isbn = db.Column(db.String(50), unique=True)
    publisher = db.Column(db.String(255))
    category = db.Column(db.String(120))
    publication_year = db.Column(db.Integer)
    cover_image_url = db.Column(db.String(500))
    total_copies = db.Column(db.Integer, nullable=False, default=1)
    available_copies = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        db.Enum(*BOOK_STATUSES, name="book_status"),
        nullable=False,
        default="available",
    )
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    transactions = db.relationship(
        "Transaction", back_populates="book", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "publisher": self.publisher,
            "category": self.category,
            "publication_year": self.publication_year,
            "cover_image_url": self.cover_image_url,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "status": self.status,
        }


class UserAccount(db.Model):
    __tablename__ = "user_accounts"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(128), nullable=False)
    full_name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(120))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    role_entry = db.relationship(
        "UserRole", back_populates="user", uselist=False,
        cascade="all, delete-orphan"
    )
    member = db.relationship("Member", back_populates="user", uselist=False)

    @property
    def role(self):
        return self.role_entry.role if self.role_entry else None

    def to_dict(self):
        return {
            "user_id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "phone": self.phone,
            "role": self.role,
            "created_at": _iso(self.created_at),
        }


class UserRole(db.Model):
    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("user_accounts.id"), unique=True, nullable=False
    )
    role = db.Column(db.Enum(*ROLES, name="app_role"), nullable=False, default="member")
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship("UserAccount", back_populates="role_entry")


class Member(db.Model):
    __tablename__ = "members"

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.String(20), unique=True, nullable=False)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(120))
    address = db.Column(db.String(500))
    join_date = db.Column(db.DateTime, default=utcnow)
    status = db.Column(
        db.Enum(*MEMBER_STATUSES, name="member_status"),
        nullable=False,
        default="active",
    )
    user_id = db.Column(db.Integer, db.ForeignKey("user_accounts.id"), unique=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("UserAccount", back_populates="member")
    transactions = db.relationship(
        "Transaction", back_populates="member", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "member_id": self.member_id,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "join_date": _iso(self.join_date),
            "status": self.status,
            "user_id": self.user_id,
        }


class Transaction(db.Model):
    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=False, index=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)
    channel = db.Column(db.Enum(*CHANNELS, name="channel"), nullable=False, default="staff")
    checkout_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    due_date = db.Column(db.DateTime, nullable=False, index=True)
    return_date = db.Column(db.DateTime)
    status = db.Column(
        db.Enum(*TRANSACTION_STATUSES, name="transaction_status"),
        nullable=False,
        default="borrowed",
        index=True,
    )
    fine_rate = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("200"))
    fine_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0"))
    fine_paid = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    book = db.relationship("Book", back_populates="transactions")
    member = db.relationship("Member", back_populates="transactions")

    __mapper_args__ = {"version_id_col": version}

    def is_overdue(self, now=None):
        now = now or utcnow()
        return self.status in OPEN_STATUSES and self.due_date < now

    def to_dict(self, now=None):
        return {
            "id": self.id,
            "member_id": self.member_id,
            "book_id": self.book_id,
            "book_title": self.book.title if self.book else None,
            "member_name": self.member.full_name if self.member else None,
            "channel": self.channel,
            "checkout_date": _iso(self.checkout_date),
            "due_date": _iso(self.due_date),
            "return_date": _iso(self.return_date),
            "status": self.status,
            "is_overdue": self.is_overdue(now),
            "fine_amount": float(self.fine_amount or 0),
            "fine_paid": self.fine_paid,
            "notes": self.notes,
        }
