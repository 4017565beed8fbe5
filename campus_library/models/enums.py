"""Status and policy enums, with the transition tables that guard them.

Every status change in the services goes through :func:`check_transition`;
a transition that is not listed here is rejected with ``StateError``.

    Loan:          active -> overdue -> returned, active -> returned
    Renewal:       pending -> approved | denied
    Reservation:   waiting -> notified -> fulfilled | expired | cancelled,
                   waiting -> fulfilled | cancelled
    Fine:          pending -> paid
"""

import enum

from campus_library.core.errors import StateError


class BookTag(str, enum.Enum):
    WHITE = "white"
    YELLOW = "yellow"
    RED = "red"


class UserType(str, enum.Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    STAFF = "staff"


class LoanStatus(str, enum.Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"


class RenewalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class ReservationStatus(str, enum.Enum):
    WAITING = "waiting"      # in the queue
    NOTIFIED = "notified"    # copy held, claim window running
    FULFILLED = "fulfilled"  # turned into a loan
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class FineStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


LOAN_TRANSITIONS = {
    LoanStatus.ACTIVE: {LoanStatus.OVERDUE, LoanStatus.RETURNED},
    LoanStatus.OVERDUE: {LoanStatus.RETURNED},
    LoanStatus.RETURNED: set(),
}

RENEWAL_TRANSITIONS = {
    RenewalStatus.PENDING: {RenewalStatus.APPROVED, RenewalStatus.DENIED},
    RenewalStatus.APPROVED: set(),
    RenewalStatus.DENIED: set(),
}

RESERVATION_TRANSITIONS = {
    ReservationStatus.WAITING: {ReservationStatus.NOTIFIED, ReservationStatus.FULFILLED,
                                ReservationStatus.CANCELLED},
    ReservationStatus.NOTIFIED: {ReservationStatus.FULFILLED, ReservationStatus.EXPIRED,
                                 ReservationStatus.CANCELLED},
    ReservationStatus.FULFILLED: set(),
    ReservationStatus.EXPIRED: set(),
    ReservationStatus.CANCELLED: set(),
}

FINE_TRANSITIONS = {
    FineStatus.PENDING: {FineStatus.PAID},
    FineStatus.PAID: set(),
}

_TABLES = {
    LoanStatus: LOAN_TRANSITIONS,
    RenewalStatus: RENEWAL_TRANSITIONS,
    ReservationStatus: RESERVATION_TRANSITIONS,
    FineStatus: FINE_TRANSITIONS,
}

OPEN_LOAN_STATUSES = (LoanStatus.ACTIVE, LoanStatus.OVERDUE)
OPEN_RESERVATION_STATUSES = (ReservationStatus.WAITING, ReservationStatus.NOTIFIED)


def check_transition(current, target):
    """Raise StateError unless ``current -> target`` is a listed transition."""
    table = _TABLES[type(target)]
    if target not in table[current]:
        raise StateError(f"Cannot move from {current.value} to {target.value}")
    return target
