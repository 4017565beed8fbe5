import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from campus_library.core.database import rollback_on_error
from campus_library.core.errors import NotFoundError
from campus_library.models import models
from campus_library.models.enums import FineStatus, OPEN_LOAN_STATUSES, check_transition
from campus_library.services.policy import fine_rate

logger = logging.getLogger(__name__)


def overdue_days(loan: models.Loan, today: date) -> int:
    """Whole days between the due date and the return date (or today for open loans)."""
    end = loan.returned_at.date() if loan.returned_at else today
    return max(0, (end - loan.due_date).days)


def compute_fine(loan: models.Loan, book: models.Book, today: date) -> int:
    """Fine owed for ``loan`` as of ``today``. Reads nothing from the database."""
    return overdue_days(loan, today) * fine_rate(book.tag)


def record_fine(db: Session, loan: models.Loan, amount: int, days: int) -> models.Fine:
    fine = models.Fine(loan_id=loan.id, user_id=loan.user_id, amount=amount, days_overdue=days,
                       status=FineStatus.PENDING)
    db.add(fine)
    return fine


def recorded_total(db: Session, loan_id: int) -> int:
    return db.query(func.coalesce(func.sum(models.Fine.amount), 0)) \
        .filter(models.Fine.loan_id == loan_id).scalar()


def outstanding_fines(db: Session, user_id: int, today: date) -> int:
    """Pending fine records plus what the user's open overdue loans have accrued so far."""
    pending = db.query(func.coalesce(func.sum(models.Fine.amount), 0)) \
        .filter(models.Fine.user_id == user_id, models.Fine.status == FineStatus.PENDING).scalar()
    open_loans = db.query(models.Loan).filter(models.Loan.user_id == user_id,
                                              models.Loan.status.in_(OPEN_LOAN_STATUSES),
                                              models.Loan.due_date < today).all()
    accrued = sum(compute_fine(loan, loan.book, today) for loan in open_loans)
    return pending + accrued


def list_fines(db: Session, user_id: Optional[int] = None,
               status: Optional[FineStatus] = None) -> List[models.Fine]:
    query = db.query(models.Fine).order_by(models.Fine.created_at.desc())
    if user_id is not None:
        query = query.filter(models.Fine.user_id == user_id)
    if status is not None:
        query = query.filter(models.Fine.status == status)
    return query.all()


@rollback_on_error
def pay_fine(db: Session, fine_id: int, now: Optional[datetime] = None) -> models.Fine:
    fine = db.query(models.Fine).filter(models.Fine.id == fine_id).first()
    if not fine:
        raise NotFoundError("Fine not found")
    fine.status = check_transition(fine.status, FineStatus.PAID)
    fine.paid_at = now or datetime.utcnow()
    db.commit()
    db.refresh(fine)
    logger.info(f"Fine {fine.id} paid amount={fine.amount}")
    return fine
