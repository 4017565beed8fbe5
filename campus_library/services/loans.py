"""Loan ledger: the only place copies_available changes.

Each operation runs as one transaction on the given session and commits
once. Notifications go out after the commit.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_library.core.config import settings
from campus_library.core.database import rollback_on_error
from campus_library.core.errors import ConflictError, NotFoundError, StateError, ValidationError
from campus_library.models import models
from campus_library.models.enums import (LoanStatus, ReservationStatus, OPEN_LOAN_STATUSES,
                                         check_transition)
from campus_library.services import notifications
from campus_library.services.fines import (compute_fine, overdue_days, outstanding_fines, record_fine,
                                           recorded_total)
from campus_library.services.policy import due_date_for, max_open_loans
from campus_library.services.reservations import (expire_claims, open_reservation, promote_next,
                                                  unheld_copies)

logger = logging.getLogger(__name__)


def get_loan(db: Session, loan_id: int) -> models.Loan:
    loan = db.query(models.Loan).filter(models.Loan.id == loan_id).first()
    if not loan:
        raise NotFoundError("Loan not found")
    return loan


def list_loans(db: Session, status: Optional[LoanStatus] = None, user_id: Optional[int] = None,
               book_id: Optional[int] = None, skip: int = 0, limit: int = 50) -> List[models.Loan]:
    if skip < 0 or limit < 1:
        raise ValidationError("skip must be >= 0 and limit >= 1")
    query = db.query(models.Loan).order_by(models.Loan.loan_date.desc(), models.Loan.id.desc())
    if status is not None:
        query = query.filter(models.Loan.status == status)
    if user_id is not None:
        query = query.filter(models.Loan.user_id == user_id)
    if book_id is not None:
        query = query.filter(models.Loan.book_id == book_id)
    return query.offset(skip).limit(limit).all()


def _commit(db: Session):
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning(f"Ledger write rejected by the database: {exc.orig}")
        raise ConflictError("Concurrent change detected; the operation was not applied") from exc


@rollback_on_error
def create_loan(db: Session, user_id: int, book_id: int, notifier,
                now: Optional[datetime] = None) -> models.Loan:
    now = now or datetime.utcnow()
    today = now.date()
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    expire_claims(db, notifier, now, book_id=book_id)
    book = db.query(models.Book).filter(models.Book.id == book_id).with_for_update().first()
    if not book:
        raise NotFoundError("Book not found")
    if not user.is_active:
        raise StateError("User account is inactive")

    open_loans = db.query(models.Loan).filter(models.Loan.user_id == user.id,
                                              models.Loan.status.in_(OPEN_LOAN_STATUSES)).all()
    if any(loan.book_id == book.id for loan in open_loans):
        raise ConflictError("User already has this book on loan")
    if unheld_copies(db, book, now, exclude_user_id=user.id) < 1:
        raise ConflictError("No copies available")
    limit = max_open_loans(user.user_type)
    if len(open_loans) >= limit:
        raise ConflictError(f"Limit of {limit} open loans reached for {user.user_type.value} users")
    owed = outstanding_fines(db, user.id, today)
    if owed >= settings.fine_block_threshold:
        raise ConflictError(f"Outstanding fines of {owed} block new loans")

    loan = models.Loan(user_id=user.id, book_id=book.id, loan_date=today,
                       due_date=due_date_for(book.tag, today), status=LoanStatus.ACTIVE,
                       renewal_count=0)
    book.copies_available -= 1
    reservation = open_reservation(db, book.id, user.id)
    if reservation:
        reservation.status = check_transition(reservation.status, ReservationStatus.FULFILLED)
    db.add(loan)
    _commit(db)
    db.refresh(loan)
    logger.info(f"User {user.id} borrowed book {book.id} loan {loan.id} due {loan.due_date}")
    notifier.notify(user.id, notifications.LOAN_CREATED, {
        "loan_id": loan.id,
        "book_id": book.id,
        "title": book.title,
        "due_date": loan.due_date.isoformat(),
    })
    return loan


@rollback_on_error
def return_loan(db: Session, loan_id: int, notifier, now: Optional[datetime] = None) -> models.Loan:
    now = now or datetime.utcnow()
    today = now.date()
    loan = get_loan(db, loan_id)
    if loan.status == LoanStatus.RETURNED:
        raise StateError("Loan already returned")
    book = db.query(models.Book).filter(models.Book.id == loan.book_id).with_for_update().first()

    fine = compute_fine(loan, book, today)
    already_recorded = recorded_total(db, loan.id)
    if fine > 0:
        record_fine(db, loan, fine, overdue_days(loan, today))
    loan.fine = already_recorded + fine
    loan.status = check_transition(loan.status, LoanStatus.RETURNED)
    loan.returned_at = now
    book.copies_available += 1
    _commit(db)
    db.refresh(loan)
    logger.info(f"Loan {loan.id} returned fine={loan.fine}")
    notifier.notify(loan.user_id, notifications.LOAN_RETURNED, {
        "loan_id": loan.id,
        "book_id": book.id,
        "fine": loan.fine,
    })
    promote_next(db, book.id, notifier, now)
    return loan


@rollback_on_error
def set_copies_total(db: Session, book_id: int, copies_total: int, notifier,
                     now: Optional[datetime] = None) -> models.Book:
    """Change a book's stock. New copies are offered to the reservation queue first."""
    now = now or datetime.utcnow()
    expire_claims(db, notifier, now, book_id=book_id)
    book = db.query(models.Book).filter(models.Book.id == book_id).with_for_update().first()
    if not book:
        raise NotFoundError("Book not found")
    on_loan = db.query(models.Loan).filter(models.Loan.book_id == book.id,
                                           models.Loan.status.in_(OPEN_LOAN_STATUSES)).count()
    if copies_total < on_loan:
        raise ConflictError(f"{on_loan} copies are on loan; total cannot go below that")
    added = copies_total - book.copies_total
    book.copies_total = copies_total
    book.copies_available = copies_total - on_loan
    _commit(db)
    logger.info(f"Book {book.id} stock set to {copies_total} ({book.copies_available} on the shelf)")
    for _ in range(added):
        if promote_next(db, book.id, notifier, now) is None:
            break
    db.refresh(book)
    return book


def sweep_overdue(db: Session, notifier, now: Optional[datetime] = None) -> Dict[str, int]:
    """Mark loans past their due date overdue. Safe to re-run; a loan transitions once."""
    now = now or datetime.utcnow()
    today = now.date()
    late = db.query(models.Loan).filter(models.Loan.status == LoanStatus.ACTIVE,
                                        models.Loan.due_date < today).all()
    for loan in late:
        loan.status = check_transition(loan.status, LoanStatus.OVERDUE)
    db.commit()
    for loan in late:
        logger.info(f"Loan {loan.id} is overdue since {loan.due_date}")
        notifier.notify(loan.user_id, notifications.LOAN_OVERDUE, {
            "loan_id": loan.id,
            "book_id": loan.book_id,
            "days_overdue": overdue_days(loan, today),
            "fine": compute_fine(loan, loan.book, today),
        })

    due_soon = db.query(models.Loan).filter(models.Loan.status == LoanStatus.ACTIVE,
                                            models.Loan.due_date == today + timedelta(days=1)).all()
    for loan in due_soon:
        notifier.notify(loan.user_id, notifications.LOAN_DUE_SOON, {
            "loan_id": loan.id,
            "book_id": loan.book_id,
            "due_date": loan.due_date.isoformat(),
        })

    expired = expire_claims(db, notifier, now)
    logger.info(f"Sweep done: {len(late)} overdue, {len(due_soon)} due soon, {len(expired)} claims expired")
    return {"overdue": len(late), "due_soon": len(due_soon), "expired_claims": len(expired)}
