"""Renewal requests: pending -> approved | denied.

The reservation queue is checked when a librarian resolves the request,
not when the borrower files it, so a reservation that arrives in between
still blocks the approval. A blocked approval leaves the request pending.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_library.core.config import settings
from campus_library.core.database import rollback_on_error
from campus_library.core.errors import ConflictError, NotFoundError, StateError
from campus_library.models import models
from campus_library.models.enums import RenewalStatus, check_transition
from campus_library.services import notifications
from campus_library.services.fines import compute_fine, outstanding_fines, overdue_days, record_fine
from campus_library.services.loans import get_loan
from campus_library.services.policy import MAX_RENEWALS, due_date_for, loan_days
from campus_library.services.reservations import expire_claims, has_open_reservations

logger = logging.getLogger(__name__)


def list_renewals(db: Session, status: Optional[RenewalStatus] = None,
                  user_id: Optional[int] = None) -> List[models.RenewalRequest]:
    query = db.query(models.RenewalRequest).order_by(models.RenewalRequest.request_date.desc())
    if status is not None:
        query = query.filter(models.RenewalRequest.status == status)
    if user_id is not None:
        query = query.filter(models.RenewalRequest.user_id == user_id)
    return query.all()


def _pending_for(db: Session, loan_id: int) -> Optional[models.RenewalRequest]:
    return db.query(models.RenewalRequest).filter(
        models.RenewalRequest.loan_id == loan_id,
        models.RenewalRequest.status == RenewalStatus.PENDING).first()


def _check_renewable(loan: models.Loan):
    # a zero-day tag would spend a renewal without moving the due date
    if loan_days(loan.book.tag) < 1:
        raise ConflictError(f"{loan.book.tag.value.capitalize()}-tagged books cannot be renewed")
    if loan.renewal_count >= MAX_RENEWALS:
        raise ConflictError(f"Limit of {MAX_RENEWALS} renewals reached")


@rollback_on_error
def request_renewal(db: Session, loan_id: int, notifier,
                    now: Optional[datetime] = None) -> models.RenewalRequest:
    now = now or datetime.utcnow()
    loan = get_loan(db, loan_id)
    if not loan.is_open:
        raise StateError("Only active or overdue loans can be renewed")
    _check_renewable(loan)
    if _pending_for(db, loan.id):
        raise ConflictError("A renewal request is already pending for this loan")

    request = models.RenewalRequest(loan_id=loan.id, user_id=loan.user_id,
                                    status=RenewalStatus.PENDING, request_date=now)
    db.add(request)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("A renewal request is already pending for this loan") from exc
    db.refresh(request)
    logger.info(f"Renewal request {request.id} filed for loan {loan.id}")
    notifier.notify(loan.user_id, notifications.RENEWAL_REQUESTED, {
        "request_id": request.id,
        "loan_id": loan.id,
        "due_date": loan.due_date.isoformat(),
    })
    return request


@rollback_on_error
def resolve_renewal(db: Session, request_id: int, approve: bool, notifier,
                    now: Optional[datetime] = None, notes: Optional[str] = None) -> models.RenewalRequest:
    now = now or datetime.utcnow()
    today = now.date()
    request = db.query(models.RenewalRequest).filter(models.RenewalRequest.id == request_id).first()
    if not request:
        raise NotFoundError("Renewal request not found")
    if request.status != RenewalStatus.PENDING:
        raise StateError(f"Renewal request is already {request.status.value}")
    loan = request.loan

    if approve:
        if not loan.is_open:
            raise StateError("Loan is no longer open")
        _check_renewable(loan)
        expire_claims(db, notifier, now, book_id=loan.book_id)
        if has_open_reservations(db, loan.book_id):
            raise ConflictError("Cannot renew: other readers are waiting for this book")
        owed = outstanding_fines(db, loan.user_id, today)
        if owed >= settings.fine_block_threshold:
            raise ConflictError(f"Outstanding fines of {owed} block renewals")

        accrued = compute_fine(loan, loan.book, today)
        if accrued > 0:
            # days already late are charged now; the new due date starts from today
            record_fine(db, loan, accrued, overdue_days(loan, today))
        loan.due_date = due_date_for(loan.book.tag, max(loan.due_date, today))
        loan.renewal_count += 1
        request.status = check_transition(request.status, RenewalStatus.APPROVED)
    else:
        request.status = check_transition(request.status, RenewalStatus.DENIED)
    request.resolved_at = now
    request.notes = notes
    db.commit()
    db.refresh(request)
    logger.info(f"Renewal request {request.id} {request.status.value} for loan {loan.id}")
    notifier.notify(loan.user_id, notifications.RENEWAL_DECISION, {
        "request_id": request.id,
        "loan_id": loan.id,
        "approved": approve,
        "due_date": loan.due_date.isoformat(),
    })
    return request
