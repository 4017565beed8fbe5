from sqlalchemy import (Column, Integer, String, Date, DateTime, Boolean, ForeignKey, Index, Text,
                        CheckConstraint, Enum, text)
from sqlalchemy.orm import relationship
from datetime import datetime
from campus_library.core.database import Base
from campus_library.models.enums import (BookTag, UserType, LoanStatus, RenewalStatus,
                                         ReservationStatus, FineStatus)


def _enum(cls, name):
    # store the lowercase values, not the member names
    return Enum(cls, name=name, values_callable=lambda members: [m.value for m in members],
                validate_strings=True)


class Book(Base):
    __tablename__ = "books"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    author = Column(String, nullable=False, index=True)
    isbn = Column(String, unique=True, index=True, nullable=True)
    category = Column(String, nullable=True, index=True)
    tag = Column(_enum(BookTag, "book_tag"), nullable=False, default=BookTag.WHITE)
    copies_total = Column(Integer, nullable=False, default=1)
    copies_available = Column(Integer, nullable=False, default=1, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    loans = relationship("Loan", back_populates="book")
    reservations = relationship("Reservation", back_populates="book")

    __table_args__ = (
        CheckConstraint("copies_available >= 0 AND copies_available <= copies_total",
                        name="chk_books_copies"),
    )

Index('ix_books_title_author', Book.title, Book.author)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    phone = Column(String, nullable=True)
    user_type = Column(_enum(UserType, "user_type"), nullable=False, default=UserType.STUDENT)
    is_active = Column(Boolean, nullable=False, default=True)
    joined_at = Column(DateTime, default=datetime.utcnow)
    loans = relationship("Loan", back_populates="user")


class Loan(Base):
    __tablename__ = "loans"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    loan_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    returned_at = Column(DateTime, nullable=True)
    status = Column(_enum(LoanStatus, "loan_status"), nullable=False, default=LoanStatus.ACTIVE,
                    index=True)
    renewal_count = Column(Integer, nullable=False, default=0)
    fine = Column(Integer, nullable=True)
    user = relationship("User", back_populates="loans")
    book = relationship("Book", back_populates="loans")
    renewal_requests = relationship("RenewalRequest", back_populates="loan")
    fines = relationship("Fine", back_populates="loan")

    __table_args__ = (
        CheckConstraint("renewal_count >= 0 AND renewal_count <= 2", name="chk_loans_renewals"),
        CheckConstraint("fine IS NULL OR fine >= 0", name="chk_loans_fine"),
        # one open loan per (user, book)
        Index("uq_loans_open_user_book", "user_id", "book_id", unique=True,
              sqlite_where=text("status IN ('active', 'overdue')"),
              postgresql_where=text("status IN ('active', 'overdue')")),
    )

    @property
    def is_open(self):
        return self.status in (LoanStatus.ACTIVE, LoanStatus.OVERDUE)


class RenewalRequest(Base):
    __tablename__ = "renewal_requests"
    id = Column(Integer, primary_key=True, index=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(_enum(RenewalStatus, "renewal_status"), nullable=False,
                    default=RenewalStatus.PENDING, index=True)
    request_date = Column(DateTime, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    loan = relationship("Loan", back_populates="renewal_requests")

    __table_args__ = (
        Index("uq_renewals_pending_loan", "loan_id", unique=True,
              sqlite_where=text("status = 'pending'"),
              postgresql_where=text("status = 'pending'")),
    )


class Reservation(Base):
    __tablename__ = "reservations"
    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(_enum(ReservationStatus, "reservation_status"), nullable=False,
                    default=ReservationStatus.WAITING, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    notified_at = Column(DateTime, nullable=True)
    claim_expires_at = Column(DateTime, nullable=True)
    book = relationship("Book", back_populates="reservations")

    __table_args__ = (
        Index("uq_reservations_open_book_user", "book_id", "user_id", unique=True,
              sqlite_where=text("status IN ('waiting', 'notified')"),
              postgresql_where=text("status IN ('waiting', 'notified')")),
    )


class Fine(Base):
    __tablename__ = "fines"
    id = Column(Integer, primary_key=True, index=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    days_overdue = Column(Integer, nullable=False)
    status = Column(_enum(FineStatus, "fine_status"), nullable=False, default=FineStatus.PENDING,
                    index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    paid_at = Column(DateTime, nullable=True)
    loan = relationship("Loan", back_populates="fines")
