import logging

import requests
from flask import Flask, jsonify, request

from .config import Config
from .models import db, Transaction
from .forms import (
    BookForm, MemberForm, ImportForm, CheckoutForm, MemberCheckoutForm,
    RenewForm, SignupForm, LoginForm,
)
from .errors import LibraryError, NotFound
from . import accounts, catalog, circulation, members, reports, staff
from .accounts import role_required

app = Flask(__name__)
app.config.from_object(Config)
db.init_app(app)

logging.basicConfig(
    level=app.config["LOG_LEVEL"],
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Auto-create DB tables
with app.app_context():
    db.create_all()

STAFF_ROLES = ("admin", "staff")


def form_errors(form):
    return jsonify({"errors": form.errors}), 400


@app.errorhandler(LibraryError)
def handle_library_error(e):
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(requests.RequestException)
def handle_import_error(e):
    logger.warning("Catalog API request failed: %s", e)
    return jsonify({"error": "Catalog service unavailable"}), 502


# ------------------------------------------------------
# AUTH
# ------------------------------------------------------

@app.route("/auth/signup", methods=["POST"])
def signup():
    form = SignupForm()
    if not form.validate_on_submit():
        return form_errors(form)
    user = accounts.signup(
        form.email.data, form.password.data, form.full_name.data, form.phone.data or None
    )
    return jsonify(user.to_dict()), 201


@app.route("/auth/login", methods=["POST"])
def login():
    form = LoginForm()
    if not form.validate_on_submit():
        return form_errors(form)
    user = accounts.login(form.email.data, form.password.data)
    return jsonify(user.to_dict())


@app.route("/auth/logout", methods=["POST"])
def logout():
    accounts.logout()
    return jsonify({"success": True})


@app.route("/auth/me")
def me():
    user = accounts.require_user()
    data = user.to_dict()
    data["member"] = user.member.to_dict() if user.member else None
    return jsonify(data)


# ------------------------------------------------------
# DASHBOARD
# ------------------------------------------------------

@app.route("/dashboard")
@role_required(*STAFF_ROLES)
def dashboard():
    circulation.flag_overdue_loans()
    return jsonify(reports.dashboard_stats())


# ------------------------------------------------------
# BOOK CRUD
# ------------------------------------------------------

@app.route("/books")
@role_required(*STAFF_ROLES, "member")
def books():
    results = catalog.search_books(
        request.args.get("q", ""),
        category=request.args.get("category") or None,
        available_only=request.args.get("available") == "1",
    )
    return jsonify([b.to_dict() for b in results])


@app.route("/books", methods=["POST"])
@role_required(*STAFF_ROLES)
def add_book():
    form = BookForm()
    if not form.validate_on_submit():
        return form_errors(form)
    book = catalog.add_book(
        form.title.data,
        form.author.data,
        total_copies=form.total_copies.data,
        status=form.status.data,
        isbn=form.isbn.data,
        publisher=form.publisher.data,
        category=form.category.data,
        publication_year=form.publication_year.data,
        cover_image_url=form.cover_image_url.data,
    )
    return jsonify(book.to_dict()), 201


@app.route("/books/<int:id>", methods=["PUT"])
@role_required(*STAFF_ROLES)
def edit_book(id):
    book = catalog.get_book(id)
    form = BookForm(obj=book)
    if not form.validate_on_submit():
        return form_errors(form)
    book = catalog.update_book(
        id,
        total_copies=form.total_copies.data,
        status=form.status.data,
        title=form.title.data,
        author=form.author.data,
        isbn=form.isbn.data or None,
        publisher=form.publisher.data,
        category=form.category.data,
        publication_year=form.publication_year.data,
        cover_image_url=form.cover_image_url.data,
    )
    return jsonify(book.to_dict())


@app.route("/books/<int:id>", methods=["DELETE"])
@role_required(*STAFF_ROLES)
def delete_book(id):
    catalog.delete_book(id)
    return jsonify({"success": True})


@app.route("/books/import", methods=["POST"])
@role_required(*STAFF_ROLES)
def import_data():
    form = ImportForm()
    if not form.validate_on_submit():
        return form_errors(form)
    imported = catalog.import_books(
        form.count.data, title=form.title.data, authors=form.authors.data
    )
    return jsonify({"imported": imported})


# ------------------------------------------------------
# MEMBER CRUD
# ------------------------------------------------------

@app.route("/members")
@role_required(*STAFF_ROLES)
def list_members():
    results = members.list_members(request.args.get("q", ""), request.args.get("status"))
    return jsonify([m.to_dict() for m in results])


@app.route("/members/next-id")
@role_required(*STAFF_ROLES)
def next_member_id():
    return jsonify({"member_id": members.generate_member_id()})


@app.route("/members", methods=["POST"])
@role_required(*STAFF_ROLES)
def add_member():
    form = MemberForm()
    if not form.validate_on_submit():
        return form_errors(form)
    member = members.create_member(
        form.full_name.data,
        form.email.data,
        phone=form.phone.data,
        address=form.address.data,
        status=form.status.data,
    )
    return jsonify(member.to_dict()), 201


@app.route("/members/<int:id>", methods=["PUT"])
@role_required(*STAFF_ROLES)
def edit_member(id):
    member = members.get_member(id)
    form = MemberForm(obj=member)
    if not form.validate_on_submit():
        return form_errors(form)
    member = members.update_member(
        id,
        full_name=form.full_name.data,
        email=form.email.data,
        phone=form.phone.data,
        address=form.address.data,
        status=form.status.data,
    )
    return jsonify(member.to_dict())


@app.route("/members/<int:id>", methods=["DELETE"])
@role_required(*STAFF_ROLES)
def delete_member(id):
    members.delete_member(id)
    return jsonify({"success": True})


@app.route("/members/<int:id>/history")
@role_required(*STAFF_ROLES)
def member_history(id):
    member = members.get_member(id)
    circulation.refresh_fines(member_id=member.id)
    return jsonify(reports.member_history(member))


# ------------------------------------------------------
# BORROWING (staff desk)
# ------------------------------------------------------

@app.route("/transactions")
@role_required(*STAFF_ROLES)
def transactions():
    circulation.flag_overdue_loans()
    circulation.refresh_fines()
    query = Transaction.query
    status = request.args.get("status")
    if status:
        query = query.filter(Transaction.status == status)
    member_id = request.args.get("member_id", type=int)
    if member_id:
        query = query.filter(Transaction.member_id == member_id)
    results = query.order_by(Transaction.checkout_date.desc(), Transaction.id.desc()).all()
    return jsonify([t.to_dict() for t in results])


@app.route("/checkout", methods=["POST"])
@role_required(*STAFF_ROLES)
def checkout():
    form = CheckoutForm()
    if not form.validate_on_submit():
        return form_errors(form)
    transaction_id = circulation.checkout_book(
        form.member_id.data, form.book_id.data, form.due_days.data
    )
    return jsonify({"transaction_id": transaction_id}), 201


@app.route("/transactions/<int:id>/return", methods=["POST"])
@role_required(*STAFF_ROLES)
def return_book(id):
    txn = circulation.return_book(id)
    return jsonify(txn.to_dict())


@app.route("/transactions/<int:id>/fine", methods=["POST"])
@role_required(*STAFF_ROLES)
def calculate_fine(id):
    amount = circulation.calculate_fine(id)
    return jsonify({"fine_amount": float(amount)})


@app.route("/transactions/<int:id>/fine/paid", methods=["POST"])
@role_required(*STAFF_ROLES)
def mark_fine_paid(id):
    circulation.mark_fine_paid(id)
    return jsonify({"success": True})


def _renewal_response(renew, *args):
    form = RenewForm()
    if not form.validate_on_submit():
        return form_errors(form)
    try:
        result = renew(*args, extend_days=form.extend_days.data)
    except LibraryError as e:
        return jsonify(circulation.RenewalResult(False, e.message).to_dict()), e.status_code
    return jsonify(result.to_dict())


@app.route("/transactions/<int:id>/renew", methods=["POST"])
@role_required(*STAFF_ROLES)
def renew(id):
    return _renewal_response(circulation.renew_book, id)


# ------------------------------------------------------
# SELF SERVICE
# ------------------------------------------------------

def _own_member():
    user = accounts.require_user()
    if user.member is None:
        raise NotFound("Member profile not found")
    return user.member


@app.route("/me/dashboard")
@role_required("member")
def my_dashboard():
    member = _own_member()
    circulation.refresh_fines(member_id=member.id)
    return jsonify(reports.member_dashboard(member))


@app.route("/me/checkout", methods=["POST"])
@role_required("member")
def my_checkout():
    form = MemberCheckoutForm()
    if not form.validate_on_submit():
        return form_errors(form)
    transaction_id = circulation.member_checkout_book(form.book_id.data, form.due_days.data)
    return jsonify({"transaction_id": transaction_id}), 201


@app.route("/me/transactions")
@role_required("member")
def my_transactions():
    member = _own_member()
    loans = reports.member_transactions(member.id, status=request.args.get("status"))
    return jsonify([t.to_dict() for t in loans])


@app.route("/me/fines")
@role_required("member")
def my_fines():
    return jsonify(reports.member_fines(_own_member()))


@app.route("/me/transactions/<int:id>/fine", methods=["POST"])
@role_required("member")
def my_fine(id):
    amount = circulation.calculate_member_fine(id)
    return jsonify({"fine_amount": float(amount)})


@app.route("/me/transactions/<int:id>/renew", methods=["POST"])
@role_required("member")
def my_renew(id):
    return _renewal_response(circulation.renew_member_book, id)


# ------------------------------------------------------
# STAFF MANAGEMENT (admin)
# ------------------------------------------------------

@app.route("/staff", methods=["POST"])
def manage_staff():
    payload = dict(request.get_json(silent=True) or {})
    action = payload.pop("action", None)
    return jsonify(staff.manage_staff(action, payload))


# ------------------------------------------------------
# RUN SERVER
# ------------------------------------------------------

if __name__ == "__main__":
    app.run(debug=app.config.get("DEBUG", False))
