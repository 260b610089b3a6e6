from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from enrollhub.core.db import DatabaseManager
from enrollhub.models import Course
from enrollhub.services.normalizer import CourseCatalog, normalize

NURSING = SimpleNamespace(id="CRS-NURS", title="Diploma of Nursing", fee=Decimal("1000.00"),
                          description="Two year diploma", period_months=24)
AGED_CARE = SimpleNamespace(id="CRS-AGED", title="Certificate III in Aged Care", fee=Decimal("600.00"),
                            description=None, period_months=6)


def fixed_today():
    return date(2026, 3, 10)


def make_database() -> DatabaseManager:
    """Fresh in-memory database with every table created"""
    manager = DatabaseManager("sqlite://")
    manager.create_all()
    return manager


def seed_courses(session, *courses):
    for c in courses or (NURSING, AGED_CARE):
        session.add(Course(id=c.id, title=c.title, fee=c.fee, description=c.description,
                           period_months=c.period_months))
    session.commit()


def catalog() -> CourseCatalog:
    return CourseCatalog([NURSING, AGED_CARE])


def raw_row(**overrides):
    row = {
        "full_name": "Priya Sharma",
        "email": "priya.sharma@example.com",
        "phone": "+61 400 111 222",
        "country": "Australia",
        "course_title": "Diploma of Nursing",
        "join_date": "15/01/2026",
        "status": "Attend sessions",
        "total_course_fee": "1000",
        "advance_payment_amount": "500",
        "advance_payment_mode": "Cash",
        "advance_payment_date": "15/01/2026",
    }
    row.update(overrides)
    return row


def enrollment_rows(raws, courses=None):
    courses = courses or catalog()
    return [normalize(raw, courses, row_number=i + 1)[0] for i, raw in enumerate(raws)]
