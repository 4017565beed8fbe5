from pydantic import BaseModel, Field, constr, validator
from datetime import date, datetime
from typing import Optional

from campus_library.models.enums import (BookTag, UserType, LoanStatus, RenewalStatus,
                                         ReservationStatus, FineStatus)


class BookBase(BaseModel):
    title: constr(min_length=1)
    author: constr(min_length=1)
    isbn: Optional[str] = None
    category: Optional[str] = None
    tag: BookTag = BookTag.WHITE
    copies_total: int = Field(default=1, ge=0)

    @validator('title', 'author')
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('must not be blank')
        return v


class BookCreate(BookBase):
    pass


class BookUpdate(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    tag: Optional[BookTag] = None
    copies_total: Optional[int] = Field(default=None, ge=0)


class BookOut(BookBase):
    id: int
    copies_available: int
    created_at: datetime

    class Config:
        from_attributes = True


class UserBase(BaseModel):
    name: constr(min_length=1)
    email: constr(min_length=5)
    phone: Optional[str] = None
    user_type: UserType = UserType.STUDENT


class UserCreate(UserBase):
    pass


class UserOut(UserBase):
    id: int
    is_active: bool
    joined_at: datetime

    class Config:
        from_attributes = True


class LoanCreate(BaseModel):
    user_id: int
    book_id: int


class LoanOut(BaseModel):
    id: int
    user_id: int
    book_id: int
    loan_date: date
    due_date: date
    returned_at: Optional[datetime] = None
    status: LoanStatus
    renewal_count: int
    fine: Optional[int] = None

    class Config:
        from_attributes = True


class RenewalCreate(BaseModel):
    loan_id: int


class RenewalDecision(BaseModel):
    notes: Optional[str] = None


class RenewalOut(BaseModel):
    id: int
    loan_id: int
    user_id: int
    status: RenewalStatus
    request_date: datetime
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class ReservationCreate(BaseModel):
    user_id: int
    book_id: int


class ReservationOut(BaseModel):
    id: int
    book_id: int
    user_id: int
    status: ReservationStatus
    created_at: datetime
    notified_at: Optional[datetime] = None
    claim_expires_at: Optional[datetime] = None
    queue_position: Optional[int] = None

    class Config:
        from_attributes = True


class FineOut(BaseModel):
    id: int
    loan_id: int
    user_id: int
    amount: int
    days_overdue: int
    status: FineStatus
    created_at: datetime
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SweepOut(BaseModel):
    overdue: int
    due_soon: int
    expired_claims: int
