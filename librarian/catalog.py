"""
catalog.py
Book inventory: staff CRUD, search and bulk import from the Frappe library API.
"""

import logging

import requests
from flask import current_app

from .errors import NotFound, PreconditionFailed, ValidationFailed
from .models import db, unit_of_work, Book, BOOK_STATUSES

logger = logging.getLogger(__name__)

DESCRIPTIVE_FIELDS = (
    "title", "author", "isbn", "publisher", "category",
    "publication_year", "cover_image_url",
)

SHELF_STATUSES = ("available", "borrowed")


def get_book(book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        raise NotFound("Book not found")
    return book


def search_books(q="", category=None, available_only=False):
    query = Book.query
    if q:
        like = f"%{q}%"
        query = query.filter(
            (Book.title.ilike(like)) |
            (Book.author.ilike(like)) |
            (Book.isbn.ilike(like))
        )
    if category:
        query = query.filter(Book.category == category)
    if available_only:
        query = query.filter(Book.available_copies > 0)
    return query.order_by(Book.title).all()


def _check_isbn_free(isbn, book_id=None):
    if not isbn:
        return
    existing = Book.query.filter_by(isbn=isbn).first()
    if existing is not None and existing.id != book_id:
        raise ValidationFailed(f"A book with ISBN {isbn} already exists")


def add_book(title, author, total_copies=1, status="available", **fields):
    if total_copies < 1:
        raise ValidationFailed("A book needs at least one copy")
    _check_isbn_free(fields.get("isbn"))

    with unit_of_work():
        book = Book(
            title=title,
            author=author,
            total_copies=total_copies,
            available_copies=total_copies,
            status=status if status in BOOK_STATUSES else "available",
        )
        for key in DESCRIPTIVE_FIELDS[2:]:
            setattr(book, key, fields.get(key) or None)
        db.session.add(book)
        db.session.flush()
        book_id = book.id

    logger.info("Added book %s (%s copies)", book_id, total_copies)
    return db.session.get(Book, book_id)


def update_book(book_id, total_copies=None, status=None, **fields):
    """
    Edit a book. Changing the copy count moves available copies by the same
    amount; it cannot drop below the copies currently on loan.
    """
    book = get_book(book_id)
    if fields.get("isbn"):
        _check_isbn_free(fields["isbn"], book.id)
    previous_status = book.status

    with unit_of_work():
        for key in DESCRIPTIVE_FIELDS:
            if fields.get(key) is not None:
                setattr(book, key, fields[key])

        if total_copies is not None and total_copies != book.total_copies:
            on_loan = book.total_copies - book.available_copies
            if total_copies < max(on_loan, 1):
                raise PreconditionFailed(
                    f"Cannot reduce copies below the {on_loan} currently on loan"
                )
            book.available_copies += total_copies - book.total_copies
            book.total_copies = total_copies
            # damaged and lost are manual labels, only staff clear them
            if book.status in SHELF_STATUSES:
                book.status = "available" if book.available_copies > 0 else "borrowed"

        # an explicit override wins over the derived label
        if status in BOOK_STATUSES and status != previous_status:
            book.status = status

    return book


def delete_book(book_id):
    book = get_book(book_id)
    with unit_of_work():
        db.session.delete(book)
    logger.info("Deleted book %s with its loan history", book_id)


# ------------------------------------------------------
# FRAPPE IMPORT
# ------------------------------------------------------

def _year(value):
    try:
        return int(str(value)[-4:])
    except (TypeError, ValueError):
        return None


def import_books(count=20, title=None, authors=None):
    """
    Pull books page by page from the Frappe library API until ``count``
    new books are stored or the API runs dry. Known ISBNs are skipped.
    """
    url = current_app.config["FRAPPE_API_URL"]
    timeout = current_app.config["IMPORT_TIMEOUT"]

    filters = {}
    if title:
        filters["title"] = title
    if authors:
        filters["authors"] = authors

    imported = 0
    page = 1

    while imported < count:
        params = {"page": page}
        params.update(filters)

        r = requests.get(url, params=params, timeout=timeout)
        r.raise_for_status()
        items = r.json().get("message", [])

        if not items:
            break

        with unit_of_work():
            for item in items:
                if imported >= count:
                    break

                isbn = item.get("isbn") or None
                if isbn and Book.query.filter_by(isbn=isbn).first() is not None:
                    continue

                db.session.add(Book(
                    title=item.get("title") or "Untitled",
                    author=item.get("authors") or "Unknown",
                    isbn=isbn,
                    publisher=item.get("publisher"),
                    publication_year=_year(item.get("publication_date")),
                    total_copies=1,
                    available_copies=1,
                    status="available",
                ))
                imported += 1

        page += 1

    logger.info("Imported %d books from %s", imported, url)
    return imported
