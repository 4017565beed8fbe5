"""Due-date and fine policy keyed by a book's colour tag.

white: one day, yellow: five days, red: internal use, due back the same day
with the strictest daily fine.
"""

from datetime import date, timedelta

from campus_library.core.config import settings
from campus_library.models.enums import BookTag, UserType

MAX_RENEWALS = 2

LOAN_DAYS = {
    BookTag.WHITE: 1,
    BookTag.YELLOW: 5,
    BookTag.RED: 0,
}

MAX_OPEN_LOANS = {
    UserType.TEACHER: 4,
    UserType.STUDENT: 2,
    UserType.STAFF: 2,
}


def loan_days(tag: BookTag) -> int:
    return LOAN_DAYS[BookTag(tag)]


def fine_rate(tag: BookTag) -> int:
    rates = {
        BookTag.WHITE: settings.fine_rate_white,
        BookTag.YELLOW: settings.fine_rate_yellow,
        BookTag.RED: settings.fine_rate_red,
    }
    return rates[BookTag(tag)]


def due_date_for(tag: BookTag, start: date) -> date:
    return start + timedelta(days=loan_days(tag))


def max_open_loans(user_type: UserType) -> int:
    return MAX_OPEN_LOANS[UserType(user_type)]
