"""FIFO waitlist per book.

A reservation waits in the queue until a returned copy frees up. The head
of the queue is then *notified*: one copy is held for them until the claim
window closes. Unclaimed holds expire and the next reservation is promoted.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from campus_library.core.config import settings
from campus_library.core.database import rollback_on_error
from campus_library.core.errors import ConflictError, NotFoundError
from campus_library.models import models
from campus_library.models.enums import (ReservationStatus, OPEN_LOAN_STATUSES,
                                         OPEN_RESERVATION_STATUSES, check_transition)
from campus_library.services import notifications

logger = logging.getLogger(__name__)


def held_copies(db: Session, book_id: int, now: datetime, exclude_user_id: Optional[int] = None) -> int:
    """Copies currently set aside for notified reservations with a running claim window."""
    query = db.query(models.Reservation).filter(
        models.Reservation.book_id == book_id,
        models.Reservation.status == ReservationStatus.NOTIFIED,
        models.Reservation.claim_expires_at > now,
    )
    if exclude_user_id is not None:
        query = query.filter(models.Reservation.user_id != exclude_user_id)
    return query.count()


def unheld_copies(db: Session, book: models.Book, now: datetime,
                  exclude_user_id: Optional[int] = None) -> int:
    return book.copies_available - held_copies(db, book.id, now, exclude_user_id)


def open_reservation(db: Session, book_id: int, user_id: int) -> Optional[models.Reservation]:
    return db.query(models.Reservation).filter(
        models.Reservation.book_id == book_id,
        models.Reservation.user_id == user_id,
        models.Reservation.status.in_(OPEN_RESERVATION_STATUSES),
    ).first()


def has_open_reservations(db: Session, book_id: int) -> bool:
    return db.query(models.Reservation).filter(
        models.Reservation.book_id == book_id,
        models.Reservation.status.in_(OPEN_RESERVATION_STATUSES),
    ).count() > 0


def queue_for_book(db: Session, book_id: int) -> List[models.Reservation]:
    """Waiting reservations in FIFO order; index + 1 is the queue position."""
    if not db.query(models.Book).filter(models.Book.id == book_id).first():
        raise NotFoundError("Book not found")
    return db.query(models.Reservation).filter(
        models.Reservation.book_id == book_id,
        models.Reservation.status == ReservationStatus.WAITING,
    ).order_by(models.Reservation.created_at, models.Reservation.id).all()


def queue_position(db: Session, reservation: models.Reservation) -> Optional[int]:
    if reservation.status != ReservationStatus.WAITING:
        return None
    ahead = db.query(models.Reservation).filter(
        models.Reservation.book_id == reservation.book_id,
        models.Reservation.status == ReservationStatus.WAITING,
        or_(models.Reservation.created_at < reservation.created_at,
            and_(models.Reservation.created_at == reservation.created_at,
                 models.Reservation.id < reservation.id)),
    ).count()
    return ahead + 1


@rollback_on_error
def reserve(db: Session, book_id: int, user_id: int, notifier=None,
            now: Optional[datetime] = None) -> models.Reservation:
    now = now or datetime.utcnow()
    expire_claims(db, notifier or notifications.dispatcher, now, book_id=book_id)
    book = db.query(models.Book).filter(models.Book.id == book_id).first()
    if not book:
        raise NotFoundError("Book not found")
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    if unheld_copies(db, book, now) > 0:
        raise ConflictError("Copies are available; borrow the book directly")
    if open_reservation(db, book_id, user_id):
        raise ConflictError("User is already queued for this book")
    on_loan = db.query(models.Loan).filter(models.Loan.book_id == book_id,
                                           models.Loan.user_id == user_id,
                                           models.Loan.status.in_(OPEN_LOAN_STATUSES)).first()
    if on_loan:
        raise ConflictError("User already has this book on loan")
    active = db.query(models.Reservation).filter(
        models.Reservation.user_id == user_id,
        models.Reservation.status.in_(OPEN_RESERVATION_STATUSES)).count()
    if active >= settings.max_reservations:
        raise ConflictError(f"Limit of {settings.max_reservations} active reservations reached")

    reservation = models.Reservation(book_id=book_id, user_id=user_id,
                                     status=ReservationStatus.WAITING, created_at=now)
    db.add(reservation)
    db.commit()
    db.refresh(reservation)
    logger.info(f"User {user_id} reserved book {book_id} reservation {reservation.id}")
    return reservation


def promote_next(db: Session, book_id: int, notifier, now: Optional[datetime] = None) -> Optional[models.Reservation]:
    """Hold a copy for the head of the queue if a free copy exists. Returns the promoted reservation."""
    now = now or datetime.utcnow()
    book = db.query(models.Book).filter(models.Book.id == book_id).first()
    if not book or unheld_copies(db, book, now) <= 0:
        return None
    head = db.query(models.Reservation).filter(
        models.Reservation.book_id == book_id,
        models.Reservation.status == ReservationStatus.WAITING,
    ).order_by(models.Reservation.created_at, models.Reservation.id).first()
    if not head:
        return None
    head.status = check_transition(head.status, ReservationStatus.NOTIFIED)
    head.notified_at = now
    head.claim_expires_at = now + timedelta(hours=settings.claim_hours)
    db.commit()
    db.refresh(head)
    logger.info(f"Reservation {head.id} promoted for book {book_id}, claim until {head.claim_expires_at}")
    notifier.notify(head.user_id, notifications.RESERVATION_AVAILABLE, {
        "reservation_id": head.id,
        "book_id": book_id,
        "title": book.title,
        "claim_expires_at": head.claim_expires_at.isoformat(),
    })
    return head


@rollback_on_error
def cancel_reservation(db: Session, reservation_id: int, notifier,
                       now: Optional[datetime] = None) -> models.Reservation:
    now = now or datetime.utcnow()
    reservation = db.query(models.Reservation).filter(models.Reservation.id == reservation_id).first()
    if not reservation:
        raise NotFoundError("Reservation not found")
    was_holding = reservation.status == ReservationStatus.NOTIFIED
    reservation.status = check_transition(reservation.status, ReservationStatus.CANCELLED)
    db.commit()
    db.refresh(reservation)
    logger.info(f"Reservation {reservation.id} cancelled")
    if was_holding:
        promote_next(db, reservation.book_id, notifier, now)
    return reservation


def expire_claims(db: Session, notifier, now: Optional[datetime] = None,
                  book_id: Optional[int] = None) -> List[models.Reservation]:
    """Expire notified reservations whose claim window has closed and promote the next in line.

    The sweep runs this for every book. Borrowing, reserving and renewal
    approval run it for the one book they touch, so a lapsed hold is passed
    down the queue before anyone outside it can take the copy.
    """
    now = now or datetime.utcnow()
    query = db.query(models.Reservation).filter(
        models.Reservation.status == ReservationStatus.NOTIFIED,
        models.Reservation.claim_expires_at <= now,
    )
    if book_id is not None:
        query = query.filter(models.Reservation.book_id == book_id)
    stale = query.order_by(models.Reservation.claim_expires_at, models.Reservation.id).all()
    if not stale:
        return []
    for reservation in stale:
        reservation.status = check_transition(reservation.status, ReservationStatus.EXPIRED)
    db.commit()
    for reservation in stale:
        logger.info(f"Reservation {reservation.id} claim expired on book {reservation.book_id}")
        promote_next(db, reservation.book_id, notifier, now)
    return stale
