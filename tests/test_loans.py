from datetime import date, timedelta

import pytest

from campus_library.core.errors import ConflictError, NotFoundError, StateError
from campus_library.models import models
from campus_library.models.enums import BookTag, LoanStatus, ReservationStatus, UserType, OPEN_LOAN_STATUSES
from campus_library.services import loans, reservations
from campus_library.services.notifications import (LOAN_CREATED, LOAN_DUE_SOON, LOAN_OVERDUE,
                                                    RESERVATION_AVAILABLE)
from conftest import NOW


def assert_copies_balance(db):
    for book in db.query(models.Book).all():
        open_loans = db.query(models.Loan).filter(models.Loan.book_id == book.id,
                                                  models.Loan.status.in_(OPEN_LOAN_STATUSES)).count()
        assert book.copies_available + open_loans == book.copies_total


def test_create_loan_decrements_copies_and_sets_due_date(db, notifier, make_user, make_book):
    user = make_user()
    book = make_book(tag=BookTag.YELLOW, copies=2)
    loan = loans.create_loan(db, user.id, book.id, notifier, now=NOW)

    db.refresh(book)
    assert book.copies_available == 1
    assert loan.status == LoanStatus.ACTIVE
    assert loan.loan_date == NOW.date()
    assert loan.due_date == date(2026, 3, 7)
    assert loan.renewal_count == 0
    assert loan.fine is None
    assert [n[0] for n in notifier.of_kind(LOAN_CREATED)] == [user.id]
    assert_copies_balance(db)


@pytest.mark.parametrize("tag,days", [(BookTag.WHITE, 1), (BookTag.YELLOW, 5), (BookTag.RED, 0)])
def test_due_date_follows_tag(db, notifier, make_user, make_book, tag, days):
    loan = loans.create_loan(db, make_user().id, make_book(tag=tag).id, notifier, now=NOW)
    assert loan.due_date == NOW.date() + timedelta(days=days)


def test_no_copies_is_a_conflict(db, notifier, make_user, make_book):
    book = make_book(copies=1)
    loans.create_loan(db, make_user().id, book.id, notifier, now=NOW)
    with pytest.raises(ConflictError):
        loans.create_loan(db, make_user().id, book.id, notifier, now=NOW)
    assert_copies_balance(db)


def test_single_copy_second_reader_can_reserve_but_not_borrow(db, notifier, make_user, make_book):
    book = make_book(copies=1)
    loans.create_loan(db, make_user().id, book.id, notifier, now=NOW)
    second = make_user()

    reservation = reservations.reserve(db, book.id, second.id, now=NOW)
    assert reservation.id is not None
    with pytest.raises(ConflictError):
        loans.create_loan(db, second.id, book.id, notifier, now=NOW)


def test_same_book_twice_is_a_conflict(db, notifier, make_user, make_book):
    user = make_user()
    book = make_book(copies=3)
    loans.create_loan(db, user.id, book.id, notifier, now=NOW)
    with pytest.raises(ConflictError):
        loans.create_loan(db, user.id, book.id, notifier, now=NOW)


def test_unknown_user_or_book(db, notifier, make_user, make_book):
    with pytest.raises(NotFoundError):
        loans.create_loan(db, 42, make_book().id, notifier, now=NOW)
    with pytest.raises(NotFoundError):
        loans.create_loan(db, make_user().id, 42, notifier, now=NOW)


def test_inactive_user_cannot_borrow(db, notifier, make_user, make_book):
    user = make_user(is_active=False)
    with pytest.raises(StateError):
        loans.create_loan(db, user.id, make_book().id, notifier, now=NOW)


def test_open_loan_limit_by_user_type(db, notifier, make_user, make_book):
    student = make_user(UserType.STUDENT)
    teacher = make_user(UserType.TEACHER)
    books = [make_book(copies=2, title=f"Volume {i}") for i in range(5)]

    for book in books[:2]:
        loans.create_loan(db, student.id, book.id, notifier, now=NOW)
    with pytest.raises(ConflictError):
        loans.create_loan(db, student.id, books[2].id, notifier, now=NOW)

    for book in books[:4]:
        loans.create_loan(db, teacher.id, book.id, notifier, now=NOW)
    with pytest.raises(ConflictError):
        loans.create_loan(db, teacher.id, books[4].id, notifier, now=NOW)
    assert_copies_balance(db)


def test_outstanding_fines_block_new_loans(db, notifier, make_user, make_book):
    user = make_user()
    red = make_book(tag=BookTag.RED, title="Reference Tables")
    loan = loans.create_loan(db, user.id, red.id, notifier, now=NOW)
    loans.return_loan(db, loan.id, notifier, now=NOW + timedelta(days=2))

    with pytest.raises(ConflictError):
        loans.create_loan(db, user.id, make_book().id, notifier, now=NOW + timedelta(days=2))


def test_return_increments_copies_exactly_once(db, notifier, make_user, make_book):
    user = make_user()
    book = make_book(copies=2)
    loan = loans.create_loan(db, user.id, book.id, notifier, now=NOW)

    returned = loans.return_loan(db, loan.id, notifier, now=NOW + timedelta(days=1))
    db.refresh(book)
    assert book.copies_available == 2
    assert returned.status == LoanStatus.RETURNED
    assert returned.returned_at == NOW + timedelta(days=1)
    assert returned.fine == 0

    with pytest.raises(StateError):
        loans.return_loan(db, loan.id, notifier, now=NOW + timedelta(days=1))
    db.refresh(book)
    assert book.copies_available == 2
    assert_copies_balance(db)


def test_return_unknown_loan(db, notifier):
    with pytest.raises(NotFoundError):
        loans.return_loan(db, 7, notifier, now=NOW)


def test_sweep_marks_overdue_once(db, notifier, make_user, make_book):
    user = make_user()
    late = loans.create_loan(db, user.id, make_book(tag=BookTag.WHITE, title="A").id, notifier, now=NOW)
    on_time = loans.create_loan(db, user.id, make_book(tag=BookTag.YELLOW, title="B").id, notifier, now=NOW)

    later = NOW + timedelta(days=3)
    assert loans.sweep_overdue(db, notifier, now=later)["overdue"] == 1
    assert loans.sweep_overdue(db, notifier, now=later)["overdue"] == 0

    db.refresh(late)
    db.refresh(on_time)
    assert late.status == LoanStatus.OVERDUE
    assert on_time.status == LoanStatus.ACTIVE
    assert len(notifier.of_kind(LOAN_OVERDUE)) == 1
    assert_copies_balance(db)


def test_sweep_leaves_returned_loans_alone(db, notifier, make_user, make_book):
    loan = loans.create_loan(db, make_user().id, make_book(tag=BookTag.WHITE).id, notifier, now=NOW)
    loans.return_loan(db, loan.id, notifier, now=NOW)
    loans.sweep_overdue(db, notifier, now=NOW + timedelta(days=10))
    db.refresh(loan)
    assert loan.status == LoanStatus.RETURNED


def test_sweep_sends_due_soon_reminders(db, notifier, make_user, make_book):
    user = make_user()
    loans.create_loan(db, user.id, make_book(tag=BookTag.WHITE).id, notifier, now=NOW)
    summary = loans.sweep_overdue(db, notifier, now=NOW)
    assert summary["due_soon"] == 1
    assert [n[0] for n in notifier.of_kind(LOAN_DUE_SOON)] == [user.id]


def test_overdue_loan_can_still_be_returned(db, notifier, make_user, make_book):
    loan = loans.create_loan(db, make_user().id, make_book(tag=BookTag.WHITE).id, notifier, now=NOW)
    loans.sweep_overdue(db, notifier, now=NOW + timedelta(days=2))
    returned = loans.return_loan(db, loan.id, notifier, now=NOW + timedelta(days=2))
    assert returned.status == LoanStatus.RETURNED
    assert returned.fine > 0


def test_failed_loan_releases_the_transaction(db, notifier, make_user, make_book):
    book = make_book(copies=1)
    loans.create_loan(db, make_user().id, book.id, notifier, now=NOW)

    with pytest.raises(ConflictError):
        loans.create_loan(db, make_user().id, book.id, notifier, now=NOW)
    assert not db.in_transaction()


def test_added_copies_go_to_the_queue_first(db, notifier, make_user, make_book):
    book = make_book(copies=1)
    loans.create_loan(db, make_user().id, book.id, notifier, now=NOW)
    waiting = make_user()
    head = reservations.reserve(db, book.id, waiting.id, notifier, now=NOW)

    updated = loans.set_copies_total(db, book.id, 2, notifier, now=NOW + timedelta(hours=1))
    db.refresh(head)
    assert updated.copies_total == 2
    assert updated.copies_available == 1
    assert head.status == ReservationStatus.NOTIFIED
    assert [n[0] for n in notifier.of_kind(RESERVATION_AVAILABLE)] == [waiting.id]

    with pytest.raises(ConflictError):
        loans.create_loan(db, make_user().id, book.id, notifier, now=NOW + timedelta(hours=2))
    assert_copies_balance(db)


def test_stock_cannot_drop_below_copies_on_loan(db, notifier, make_user, make_book):
    book = make_book(copies=2)
    loans.create_loan(db, make_user().id, book.id, notifier, now=NOW)

    with pytest.raises(ConflictError):
        loans.set_copies_total(db, book.id, 0, notifier, now=NOW)
    db.refresh(book)
    assert book.copies_total == 2
    assert_copies_balance(db)
