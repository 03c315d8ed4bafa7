from datetime import timedelta

from librarian import circulation
from librarian.models import db, Book, Transaction, utcnow


def test_anonymous_requests_are_rejected(client):
    response = client.get("/books")
    assert response.status_code == 401
    assert response.get_json() == {"error": "User not authenticated"}


def test_login_with_wrong_password(client, staff_client):
    response = client.post("/auth/login", json={"email": "desk@example.com", "password": "nope"})
    assert response.status_code == 401


def test_staff_can_add_and_list_books(staff_client):
    response = staff_client.post("/books", json={
        "title": "Dune", "author": "Frank Herbert", "total_copies": 2, "isbn": "9780441172719",
    })
    assert response.status_code == 201
    assert response.get_json()["available_copies"] == 2

    books = staff_client.get("/books?q=dune").get_json()
    assert [b["title"] for b in books] == ["Dune"]


def test_book_form_validation(staff_client):
    response = staff_client.post("/books", json={"title": "No author", "total_copies": 0})
    assert response.status_code == 400
    errors = response.get_json()["errors"]
    assert "author" in errors
    assert "total_copies" in errors


def test_partial_book_update(staff_client, make_book):
    book = make_book(copies=1)
    response = staff_client.put(f"/books/{book.id}", json={"total_copies": 4})
    assert response.status_code == 200
    data = response.get_json()
    assert data["title"] == "Dune"
    assert data["available_copies"] == 4


def test_checkout_and_return_flow(staff_client, make_book, make_member):
    book = make_book(copies=1)
    member = make_member()

    response = staff_client.post("/checkout", json={"member_id": member.id, "book_id": book.id})
    assert response.status_code == 201
    txn_id = response.get_json()["transaction_id"]

    again = staff_client.post("/checkout", json={"member_id": member.id, "book_id": book.id})
    assert again.status_code == 409
    assert again.get_json()["error"] == "No available copies of this book"

    returned = staff_client.post(f"/transactions/{txn_id}/return")
    assert returned.status_code == 200
    assert returned.get_json()["status"] == "returned"

    twice = staff_client.post(f"/transactions/{txn_id}/return")
    assert twice.status_code == 409
    assert twice.get_json()["error"] == "Book already returned"

    db.session.expire_all()
    assert db.session.get(Book, book.id).available_copies == 1


def test_checkout_unknown_book_is_404(staff_client, make_member):
    response = staff_client.post("/checkout", json={"member_id": make_member().id, "book_id": 404})
    assert response.status_code == 404
    assert response.get_json()["error"] == "Book not found"


def test_null_loan_days_falls_back_to_default(staff_client, make_book, make_member):
    response = staff_client.post("/checkout", json={
        "member_id": make_member().id, "book_id": make_book().id, "due_days": None,
    })

    assert response.status_code == 201
    txn = db.session.get(Transaction, response.get_json()["transaction_id"])
    assert txn.due_date - txn.checkout_date == timedelta(days=14)


def test_null_required_id_is_a_validation_error(staff_client, make_book):
    response = staff_client.post("/checkout", json={"member_id": None, "book_id": make_book().id})

    assert response.status_code == 400
    assert "member_id" in response.get_json()["errors"]


def test_null_extend_days_renews_by_default(staff_client, make_book, make_member):
    txn_id = circulation.checkout_book(make_member().id, make_book().id)

    response = staff_client.post(f"/transactions/{txn_id}/renew", json={"extend_days": None})

    assert response.status_code == 200
    assert response.get_json()["success"] is True


def test_fine_endpoints(staff_client, make_book, make_member):
    txn_id = circulation.checkout_book(
        make_member().id, make_book().id, now=utcnow() - timedelta(days=17, hours=1)
    )

    fine = staff_client.post(f"/transactions/{txn_id}/fine").get_json()
    assert fine["fine_amount"] == 600

    assert staff_client.post(f"/transactions/{txn_id}/fine/paid").get_json() == {"success": True}
    listed = staff_client.get("/transactions").get_json()
    assert listed[0]["fine_paid"] is True
    assert listed[0]["fine_amount"] == 600
    assert listed[0]["status"] == "overdue"


def test_renew_failure_keeps_result_shape(staff_client, make_book, make_member):
    member = make_member()
    late = circulation.checkout_book(member.id, make_book().id, now=utcnow() - timedelta(days=20))
    circulation.return_book(late)
    current = circulation.checkout_book(member.id, make_book(title="Emma").id)

    response = staff_client.post(f"/transactions/{current}/renew", json={"extend_days": 7})

    assert response.status_code == 409
    assert response.get_json() == {
        "success": False,
        "message": "Member has unpaid fines. Please clear fines before renewing.",
        "new_due_date": None,
    }


def test_renew_success(staff_client, make_book, make_member):
    txn_id = circulation.checkout_book(make_member().id, make_book().id)

    response = staff_client.post(f"/transactions/{txn_id}/renew", json={})

    data = response.get_json()
    assert response.status_code == 200
    assert data["success"] is True
    assert data["new_due_date"] is not None


def test_dashboard_stats(staff_client, make_book, make_member):
    book = make_book(copies=3)
    member = make_member()
    circulation.checkout_book(member.id, book.id)
    circulation.checkout_book(member.id, book.id, now=utcnow() - timedelta(days=30))

    stats = staff_client.get("/dashboard").get_json()

    assert stats == {
        "total_books": 3,
        "available_books": 1,
        "total_members": 1,
        "borrowed_books": 2,
        "overdue_items": 1,
    }


def test_member_history(staff_client, make_book, make_member):
    member = make_member()
    txn_id = circulation.checkout_book(member.id, make_book().id, now=utcnow() - timedelta(days=16, hours=1))

    history = staff_client.get(f"/members/{member.id}/history").get_json()

    assert history["stats"]["total_borrowed"] == 1
    assert history["stats"]["overdue"] == 1
    assert history["stats"]["unpaid_fines"] == 400
    assert history["transactions"][0]["id"] == txn_id


def test_next_member_id(staff_client):
    data = staff_client.get("/members/next-id").get_json()
    assert data["member_id"].startswith("LIB-")


def test_members_cannot_use_the_desk(member_client, make_book):
    response = member_client.post("/checkout", json={"member_id": 1, "book_id": make_book().id})
    assert response.status_code == 403


def test_self_service_checkout(member_client, make_book):
    book = make_book(copies=2)

    response = member_client.post("/me/checkout", json={"book_id": book.id})
    assert response.status_code == 201

    mine = member_client.get("/me/transactions").get_json()
    assert len(mine) == 1
    assert mine[0]["channel"] == "self_service"
    assert mine[0]["book_title"] == "Dune"

    dashboard = member_client.get("/me/dashboard").get_json()
    assert dashboard["currently_borrowed"] == 1
    assert dashboard["overdue_books"] == 0


def test_member_cannot_touch_other_loans(member_client, make_book, make_member):
    other = circulation.checkout_book(make_member().id, make_book().id)

    renew = member_client.post(f"/me/transactions/{other}/renew", json={})
    assert renew.status_code == 404
    assert renew.get_json()["success"] is False

    fine = member_client.post(f"/me/transactions/{other}/fine").get_json()
    assert fine["fine_amount"] == 0


def test_member_fines_page(member_client, make_book):
    me = member_client.get("/auth/me").get_json()
    txn_id = circulation.checkout_book(
        me["member"]["id"], make_book().id, now=utcnow() - timedelta(days=20)
    )
    circulation.return_book(txn_id)

    fines = member_client.get("/me/fines").get_json()

    assert fines["total_unpaid"] == 1200
    assert fines["total_paid"] == 0
    assert len(fines["fines"]) == 1


def test_staff_endpoint_requires_admin(staff_client):
    response = staff_client.post("/staff", json={"action": "list"})
    assert response.status_code == 403
    assert response.get_json()["error"] == "Only admins can manage staff"


def test_admin_manages_staff(admin_client):
    created = admin_client.post("/staff", json={
        "action": "create",
        "email": "new@example.com",
        "password": "pw123456",
        "full_name": "New Clerk",
    })
    assert created.status_code == 200
    assert created.get_json()["success"] is True

    listed = admin_client.post("/staff", json={"action": "list"}).get_json()
    assert [s["email"] for s in listed["staff"]] == ["new@example.com"]

    bad = admin_client.post("/staff", json={"action": "create", "email": "x@example.com"})
    assert bad.status_code == 400
