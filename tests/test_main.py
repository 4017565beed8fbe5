from campus_library.services.notifications import LOAN_CREATED, RESERVATION_AVAILABLE


def create_user(client, name, email, user_type="student"):
    r = client.post("/users/", json={"name": name, "email": email, "user_type": user_type})
    assert r.status_code == 201
    return r.json()["id"]


def create_book(client, title="Test Book", copies=1, tag="yellow", isbn=None):
    r = client.post("/books/", json={"title": title, "author": "Author", "isbn": isbn,
                                     "copies_total": copies, "tag": tag})
    assert r.status_code == 201
    return r.json()["id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_user_and_book_and_borrow_return(client, notifier):
    user_id = create_user(client, "Test User", "test@example.com")
    book_id = create_book(client, isbn="12345")

    r = client.post("/loans/", json={"user_id": user_id, "book_id": book_id})
    assert r.status_code == 201
    loan = r.json()
    assert loan["status"] == "active"
    assert loan["renewal_count"] == 0
    assert client.get(f"/books/{book_id}").json()["copies_available"] == 0
    assert len(notifier.of_kind(LOAN_CREATED)) == 1

    r = client.post(f"/loans/{loan['id']}/return")
    assert r.status_code == 200
    assert r.json()["status"] == "returned"
    assert r.json()["fine"] == 0
    assert client.get(f"/books/{book_id}").json()["copies_available"] == 1

    r = client.post(f"/loans/{loan['id']}/return")
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_state"


def test_error_envelope_for_conflict_and_not_found(client):
    first = create_user(client, "First", "first@example.com")
    second = create_user(client, "Second", "second@example.com")
    book_id = create_book(client)
    client.post("/loans/", json={"user_id": first, "book_id": book_id})

    r = client.post("/loans/", json={"user_id": second, "book_id": book_id})
    assert r.status_code == 409
    assert r.json() == {"detail": "No copies available", "code": "conflict"}

    r = client.get("/loans/999")
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_bad_payload_is_rejected(client):
    r = client.post("/books/", json={"title": "", "author": "x", "copies_total": -1})
    assert r.status_code == 422


def test_reservation_queue_and_promotion(client, notifier):
    owner = create_user(client, "Owner", "owner@example.com")
    waiting = create_user(client, "Waiting", "waiting@example.com")
    book_id = create_book(client)
    loan_id = client.post("/loans/", json={"user_id": owner, "book_id": book_id}).json()["id"]

    r = client.post("/reservations/", json={"user_id": waiting, "book_id": book_id})
    assert r.status_code == 201
    assert r.json()["status"] == "waiting"
    assert r.json()["queue_position"] == 1
    assert [q["user_id"] for q in client.get(f"/books/{book_id}/queue").json()] == [waiting]

    client.post(f"/loans/{loan_id}/return")
    assert [n[0] for n in notifier.of_kind(RESERVATION_AVAILABLE)] == [waiting]
    assert client.get(f"/books/{book_id}/queue").json() == []

    r = client.post("/loans/", json={"user_id": waiting, "book_id": book_id})
    assert r.status_code == 201


def test_renewal_workflow(client):
    user_id = create_user(client, "Renewer", "renewer@example.com")
    book_id = create_book(client, tag="yellow")
    loan = client.post("/loans/", json={"user_id": user_id, "book_id": book_id}).json()

    r = client.post("/renewals/", json={"loan_id": loan["id"]})
    assert r.status_code == 201
    request_id = r.json()["id"]
    assert r.json()["status"] == "pending"

    r = client.post(f"/renewals/{request_id}/approve")
    assert r.status_code == 200
    assert r.json()["status"] == "approved"

    renewed = client.get(f"/loans/{loan['id']}").json()
    assert renewed["renewal_count"] == 1
    assert renewed["due_date"] > loan["due_date"]

    r = client.post(f"/renewals/{request_id}/deny", json={"notes": "too late"})
    assert r.status_code == 409


def test_update_book_copies_respects_open_loans(client):
    user_id = create_user(client, "Reader", "reader@example.com")
    book_id = create_book(client, copies=2)
    client.post("/loans/", json={"user_id": user_id, "book_id": book_id})

    r = client.put(f"/books/{book_id}", json={"copies_total": 0})
    assert r.status_code == 409

    r = client.put(f"/books/{book_id}", json={"copies_total": 4})
    assert r.status_code == 200
    assert r.json()["copies_available"] == 3


def test_sweep_and_metrics(client):
    r = client.post("/loans/sweep")
    assert r.status_code == 200
    assert r.json() == {"overdue": 0, "due_soon": 0, "expired_claims": 0}

    metrics = client.get("/metrics").json()
    assert metrics["total_books"] == 0
    assert metrics["unpaid_fines"] == 0


def test_bad_paging_is_a_validation_error(client):
    r = client.get("/loans/?limit=0")
    assert r.status_code == 400
    assert r.json()["code"] == "invalid"


def test_delete_book_only_without_history(client):
    fresh = create_book(client, title="Unused")
    assert client.delete(f"/books/{fresh}").json() == {"ok": True}
    assert client.get(f"/books/{fresh}").status_code == 404

    user_id = create_user(client, "Borrower", "borrower@example.com")
    used = create_book(client, title="Used")
    loan_id = client.post("/loans/", json={"user_id": user_id, "book_id": used}).json()["id"]
    client.post(f"/loans/{loan_id}/return")
    assert client.delete(f"/books/{used}").status_code == 409


def test_raising_stock_notifies_the_queue(client, notifier):
    owner = create_user(client, "Owner", "owner@example.com")
    waiting = create_user(client, "Waiting", "waiting@example.com")
    outsider = create_user(client, "Outsider", "outsider@example.com")
    book_id = create_book(client)
    client.post("/loans/", json={"user_id": owner, "book_id": book_id})
    client.post("/reservations/", json={"user_id": waiting, "book_id": book_id})

    r = client.put(f"/books/{book_id}", json={"copies_total": 2})
    assert r.status_code == 200
    assert r.json()["copies_available"] == 1
    assert [n[0] for n in notifier.of_kind(RESERVATION_AVAILABLE)] == [waiting]

    r = client.post("/loans/", json={"user_id": outsider, "book_id": book_id})
    assert r.status_code == 409
    assert client.post("/loans/", json={"user_id": waiting, "book_id": book_id}).status_code == 201
