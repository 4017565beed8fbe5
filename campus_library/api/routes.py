from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from sqlalchemy import func

from campus_library.core.database import get_db
from campus_library.core.errors import ConflictError, NotFoundError
from campus_library.models import models
from campus_library.models.enums import (LoanStatus, RenewalStatus, FineStatus,
                                         OPEN_LOAN_STATUSES, OPEN_RESERVATION_STATUSES)
from campus_library.schemas import schemas
from campus_library.services import fines, loans, renewals, reservations
from campus_library.services.notifications import get_notifier

router = APIRouter()


def _get_book(db: Session, book_id: int) -> models.Book:
    book = db.query(models.Book).filter(models.Book.id == book_id).first()
    if not book:
        raise NotFoundError("Book not found")
    return book


def _open_loan_count(db: Session, book_id: int) -> int:
    return db.query(models.Loan).filter(models.Loan.book_id == book_id,
                                        models.Loan.status.in_(OPEN_LOAN_STATUSES)).count()


def _reservation_out(db: Session, reservation: models.Reservation) -> schemas.ReservationOut:
    out = schemas.ReservationOut.model_validate(reservation)
    out.queue_position = reservations.queue_position(db, reservation)
    return out


# Books

@router.post("/books/", response_model=schemas.BookOut, status_code=201)
def create_book(book_in: schemas.BookCreate, db: Session = Depends(get_db)):
    if book_in.isbn:
        existing = db.query(models.Book).filter(models.Book.isbn == book_in.isbn).first()
        if existing:
            raise ConflictError("ISBN already exists")
    book = models.Book(
        title=book_in.title,
        author=book_in.author,
        isbn=book_in.isbn,
        category=book_in.category,
        tag=book_in.tag,
        copies_total=book_in.copies_total,
        copies_available=book_in.copies_total,
    )
    db.add(book)
    db.commit()
    db.refresh(book)
    return book


@router.get("/books/", response_model=List[schemas.BookOut])
def list_books(q: Optional[str] = Query(None), category: Optional[str] = None, skip: int = 0,
               limit: int = 20, db: Session = Depends(get_db)):
    query = db.query(models.Book)
    if q:
        like_q = f"%{q}%"
        query = query.filter((models.Book.title.ilike(like_q)) | (models.Book.author.ilike(like_q)))
    if category:
        query = query.filter(models.Book.category == category)
    return query.order_by(models.Book.title).offset(skip).limit(limit).all()


@router.get("/books/{book_id}", response_model=schemas.BookOut)
def read_book(book_id: int, db: Session = Depends(get_db)):
    return _get_book(db, book_id)


@router.put("/books/{book_id}", response_model=schemas.BookOut)
def update_book(book_id: int, book_upd: schemas.BookUpdate, db: Session = Depends(get_db),
                notifier=Depends(get_notifier)):
    book = _get_book(db, book_id)
    data = book_upd.model_dump(exclude_unset=True)
    copies_total = data.pop('copies_total', None)
    if copies_total is not None:
        book = loans.set_copies_total(db, book.id, copies_total, notifier)
    for k, v in data.items():
        if v is not None:
            setattr(book, k, v)
    db.commit()
    db.refresh(book)
    return book


@router.delete("/books/{book_id}")
def delete_book(book_id: int, db: Session = Depends(get_db)):
    book = _get_book(db, book_id)
    if _open_loan_count(db, book.id) > 0:
        raise ConflictError("Cannot delete book with open loans")
    if book.loans or book.reservations:
        raise ConflictError("Book has circulation history; set copies_total to 0 instead")
    db.delete(book)
    db.commit()
    return {"ok": True}


@router.get("/books/{book_id}/queue", response_model=List[schemas.ReservationOut])
def book_queue(book_id: int, db: Session = Depends(get_db)):
    queue = reservations.queue_for_book(db, book_id)
    result = []
    for position, reservation in enumerate(queue, start=1):
        out = schemas.ReservationOut.model_validate(reservation)
        out.queue_position = position
        result.append(out)
    return result


# Users

@router.post("/users/", response_model=schemas.UserOut, status_code=201)
def create_user(user_in: schemas.UserCreate, db: Session = Depends(get_db)):
    existing = db.query(models.User).filter(models.User.email == user_in.email).first()
    if existing:
        raise ConflictError("Email already registered")
    user = models.User(name=user_in.name.strip(), email=user_in.email.strip(), phone=user_in.phone,
                       user_type=user_in.user_type)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@router.get("/users/", response_model=List[schemas.UserOut])
def list_users(skip: int = 0, limit: int = 50, db: Session = Depends(get_db)):
    return db.query(models.User).order_by(models.User.name).offset(skip).limit(limit).all()


@router.get("/users/{user_id}", response_model=schemas.UserOut)
def read_user(user_id: int, db: Session = Depends(get_db)):
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


# Loans

@router.post("/loans/", response_model=schemas.LoanOut, status_code=201)
def create_loan(loan_in: schemas.LoanCreate, db: Session = Depends(get_db), notifier=Depends(get_notifier)):
    return loans.create_loan(db, loan_in.user_id, loan_in.book_id, notifier)


@router.post("/loans/sweep", response_model=schemas.SweepOut)
def sweep_loans(db: Session = Depends(get_db), notifier=Depends(get_notifier)):
    return loans.sweep_overdue(db, notifier)


@router.post("/loans/{loan_id}/return", response_model=schemas.LoanOut)
def return_loan(loan_id: int, db: Session = Depends(get_db), notifier=Depends(get_notifier)):
    return loans.return_loan(db, loan_id, notifier)


@router.get("/loans/", response_model=List[schemas.LoanOut])
def list_loans(status: Optional[LoanStatus] = None, user_id: Optional[int] = None,
               book_id: Optional[int] = None, skip: int = 0, limit: int = 50,
               db: Session = Depends(get_db)):
    return loans.list_loans(db, status=status, user_id=user_id, book_id=book_id, skip=skip, limit=limit)


@router.get("/loans/{loan_id}", response_model=schemas.LoanOut)
def read_loan(loan_id: int, db: Session = Depends(get_db)):
    return loans.get_loan(db, loan_id)


# Renewals

@router.post("/renewals/", response_model=schemas.RenewalOut, status_code=201)
def request_renewal(renewal_in: schemas.RenewalCreate, db: Session = Depends(get_db),
                    notifier=Depends(get_notifier)):
    return renewals.request_renewal(db, renewal_in.loan_id, notifier)


@router.post("/renewals/{request_id}/approve", response_model=schemas.RenewalOut)
def approve_renewal(request_id: int, decision: Optional[schemas.RenewalDecision] = None,
                    db: Session = Depends(get_db), notifier=Depends(get_notifier)):
    notes = decision.notes if decision else None
    return renewals.resolve_renewal(db, request_id, True, notifier, notes=notes)


@router.post("/renewals/{request_id}/deny", response_model=schemas.RenewalOut)
def deny_renewal(request_id: int, decision: Optional[schemas.RenewalDecision] = None,
                 db: Session = Depends(get_db), notifier=Depends(get_notifier)):
    notes = decision.notes if decision else None
    return renewals.resolve_renewal(db, request_id, False, notifier, notes=notes)


@router.get("/renewals/", response_model=List[schemas.RenewalOut])
def list_renewals(status: Optional[RenewalStatus] = None, user_id: Optional[int] = None,
                  db: Session = Depends(get_db)):
    return renewals.list_renewals(db, status=status, user_id=user_id)


# Reservations

@router.post("/reservations/", response_model=schemas.ReservationOut, status_code=201)
def create_reservation(reservation_in: schemas.ReservationCreate, db: Session = Depends(get_db),
                       notifier=Depends(get_notifier)):
    reservation = reservations.reserve(db, reservation_in.book_id, reservation_in.user_id, notifier)
    return _reservation_out(db, reservation)


@router.delete("/reservations/{reservation_id}", response_model=schemas.ReservationOut)
def cancel_reservation(reservation_id: int, db: Session = Depends(get_db), notifier=Depends(get_notifier)):
    reservation = reservations.cancel_reservation(db, reservation_id, notifier)
    return _reservation_out(db, reservation)


# Fines

@router.get("/fines/", response_model=List[schemas.FineOut])
def list_fines(user_id: Optional[int] = None, status: Optional[FineStatus] = None,
               db: Session = Depends(get_db)):
    return fines.list_fines(db, user_id=user_id, status=status)


@router.post("/fines/{fine_id}/pay", response_model=schemas.FineOut)
def pay_fine(fine_id: int, db: Session = Depends(get_db)):
    return fines.pay_fine(db, fine_id)


# Metrics

@router.get("/metrics")
def metrics(db: Session = Depends(get_db)):
    total_books = db.query(func.count(models.Book.id)).scalar()
    total_users = db.query(func.count(models.User.id)).scalar()
    active_loans = db.query(func.count(models.Loan.id)).filter(models.Loan.status == LoanStatus.ACTIVE).scalar()
    overdue = db.query(func.count(models.Loan.id)).filter(models.Loan.status == LoanStatus.OVERDUE).scalar()
    pending_renewals = db.query(func.count(models.RenewalRequest.id)) \
        .filter(models.RenewalRequest.status == RenewalStatus.PENDING).scalar()
    queued = db.query(func.count(models.Reservation.id)) \
        .filter(models.Reservation.status.in_(OPEN_RESERVATION_STATUSES)).scalar()
    unpaid = db.query(func.coalesce(func.sum(models.Fine.amount), 0)) \
        .filter(models.Fine.status == FineStatus.PENDING).scalar()
    top_borrowed = db.query(models.Book.title, func.count(models.Loan.id).label('cnt')) \
        .join(models.Loan).group_by(models.Book.id).order_by(func.count(models.Loan.id).desc()).limit(5).all()
    top = [{'title': t[0], 'count': t[1]} for t in top_borrowed]
    return {
        'total_books': total_books,
        'total_users': total_users,
        'active_loans': active_loans,
        'overdue_loans': overdue,
        'pending_renewals': pending_renewals,
        'open_reservations': queued,
        'unpaid_fines': unpaid,
        'top_borrowed': top,
    }
