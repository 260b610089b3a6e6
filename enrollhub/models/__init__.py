# enrollhub/models/__init__.py - Import all models so SQLAlchemy can discover them

from enrollhub.models.base import Base

from enrollhub.models.course import Course
from enrollhub.models.student import Student, STUDENT_STATUSES
from enrollhub.models.referral import Referral, ReferralPayment
from enrollhub.models.payment import PaymentLedgerEntry

__all__ = [
    "Base",
    "Course",
    "Student",
    "STUDENT_STATUSES",
    "Referral",
    "ReferralPayment",
    "PaymentLedgerEntry",
]
