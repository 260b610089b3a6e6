# enrollhub/services/normalizer.py - Row Normalizer: raw spreadsheet row -> EnrollmentRow
"""
Turns one raw row from the spreadsheet codec into a typed EnrollmentRow plus
the list of field errors found on the way. Pure: the only input besides the
row is the course catalog, so staging can re-run it on every edit.
"""

import math
import re
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from enrollhub.schemas.enrollment_row import EnrollmentRow, FieldError, RawRow, StagePayment
from enrollhub.schemas.enums import PaymentMode, ROW_STAGES, StudentStatus

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

# Spreadsheet serial day 0; serial 1 is 1900-01-01 once the 1900 leap bug is absorbed
EXCEL_EPOCH = date(1899, 12, 30)
MAX_EXCEL_SERIAL = 2958465  # 9999-12-31

_STATUS_LOOKUP = {s.value.lower(): s for s in StudentStatus}
_MODE_LOOKUP = {m.value.lower(): m.value for m in PaymentMode}


class CourseCatalog:
    """Case-insensitive course title lookup over reference data"""

    def __init__(self, courses: Iterable[Any] = ()):
        self._by_title: Dict[str, Any] = {}
        for course in courses:
            self._by_title[course.title.strip().lower()] = course

    def lookup(self, title: Optional[str]):
        if not title:
            return None
        return self._by_title.get(title.strip().lower())

    def titles(self) -> List[str]:
        return [c.title for c in self._by_title.values()]

    def __len__(self) -> int:
        return len(self._by_title)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def clean_text(value: Any) -> Optional[str]:
    """Collapse whitespace; numbers read from a sheet lose a trailing .0"""
    if _is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return re.sub(r'\s+', ' ', str(value).strip())


def clean_email(value: Any) -> Optional[str]:
    text = clean_text(value)
    return text.lower() if text else None


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a sheet cell into a date.

    Accepts spreadsheet serial numbers, DD/MM/YYYY, DD-MM-YYYY, DD.MM.YYYY,
    ISO YYYY-MM-DD and date/datetime objects. Day always comes before month.

    Raises:
        ValueError: If the value is not blank and cannot be parsed
    """
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid date {value!r}")
    if isinstance(value, (int, float)):
        return _from_serial(value)

    text = str(value).strip()
    if re.fullmatch(r'\d+(\.\d+)?', text):
        return _from_serial(float(text))

    # Drop a time component such as "15/01/2024 00:00:00"
    text = text.split(' ')[0].split('T')[0]
    parts = re.split(r'[/\-.]', text)
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid date {value!r}")

    if len(parts[0]) == 4:
        year, month, day = (int(p) for p in parts)
    elif len(parts[2]) == 4:
        day, month, year = (int(p) for p in parts)
    else:
        raise ValueError(f"Invalid date {value!r}")

    try:
        return date(year, month, day)
    except ValueError:
        raise ValueError(f"Invalid date {value!r}")


def _from_serial(serial: float) -> date:
    if serial < 1 or serial > MAX_EXCEL_SERIAL:
        raise ValueError(f"Invalid date serial {serial!r}")
    return EXCEL_EPOCH + timedelta(days=int(serial))


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Parse a money cell. Blank -> None; "1,500.00", "$300" and numbers accepted.

    Raises:
        ValueError: If the value is not blank and not a number
    """
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        text = re.sub(r'[\s,$€£]', '', str(value))
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Invalid amount {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount {value!r}")
    return amount.quantize(Decimal('0.01'))


def match_status(value: Any) -> Optional[StudentStatus]:
    text = clean_text(value)
    if text is None:
        return None
    return _STATUS_LOOKUP.get(text.lower())


def canonical_payment_mode(value: Any) -> Optional[str]:
    """Known modes are returned in canonical spelling; unknown text is kept as given"""
    text = clean_text(value)
    if text is None:
        return None
    return _MODE_LOOKUP.get(text.lower(), text)


def normalize(raw: RawRow, catalog: CourseCatalog, row_number: int) -> Tuple[EnrollmentRow, List[FieldError]]:
    """
    Normalize and validate one raw row.

    Args:
        raw: Column name -> cell value, as produced by the spreadsheet codec
        catalog: Known courses
        row_number: 1-based position of the row in the batch

    Returns:
        The typed row (invalid fields left as None) and its field errors
    """
    errors: List[FieldError] = []

    def error(field: str, message: str):
        errors.append(FieldError(field=field, message=message))

    def date_field(field: str, label: str) -> Optional[date]:
        try:
            return parse_date(raw.get(field))
        except ValueError:
            error(field, f'Invalid {label} "{raw.get(field)}" (expected DD/MM/YYYY)')
            return None

    def amount_field(field: str, label: str) -> Optional[Decimal]:
        try:
            amount = parse_amount(raw.get(field))
        except ValueError:
            error(field, f'Invalid {label} "{raw.get(field)}"')
            return None
        if amount is not None and amount < 0:
            error(field, f"{label.capitalize()} cannot be negative")
            return None
        return amount

    full_name = clean_text(raw.get("full_name"))
    email = clean_email(raw.get("email"))
    phone = clean_text(raw.get("phone"))

    if not full_name:
        error("full_name", "Full name is required")
    if not email:
        error("email", "Email is required")
    elif not EMAIL_PATTERN.match(email):
        error("email", "Invalid email format")
        email = None
    if not phone:
        error("phone", "Phone is required")

    join_date = date_field("join_date", "join date")
    if join_date is None and _is_blank(raw.get("join_date")):
        error("join_date", "Join date is required")
    class_start_date = date_field("class_start_date", "class start date")

    course_title = clean_text(raw.get("course_title"))
    course = catalog.lookup(course_title)
    if course_title and course is None:
        error("course_title", f'Course "{course_title}" not found')
    elif course is not None:
        course_title = course.title

    status = None
    status_text = clean_text(raw.get("status"))
    if status_text:
        status = match_status(status_text)
        if status is None:
            error("status", f'Invalid status "{status_text}"')

    total_course_fee = amount_field("total_course_fee", "total course fee")
    if total_course_fee is None and course is not None and _is_blank(raw.get("total_course_fee")):
        total_course_fee = Decimal(str(course.fee)).quantize(Decimal('0.01'))

    payments = []
    for stage in ROW_STAGES:
        prefix = stage.value.lower()
        amount = amount_field(f"{prefix}_payment_amount", f"{prefix} payment amount")
        paid_on = date_field(f"{prefix}_payment_date", f"{prefix} payment date")
        payments.append(StagePayment(
            stage=stage,
            amount=amount,
            mode=canonical_payment_mode(raw.get(f"{prefix}_payment_mode")),
            payment_date=paid_on or (join_date if _is_blank(raw.get(f"{prefix}_payment_date")) else None),
        ))

    row = EnrollmentRow(
        row_number=row_number,
        full_name=full_name,
        email=email,
        phone=phone,
        address=clean_text(raw.get("address")),
        country=clean_text(raw.get("country")),
        passport_id=clean_text(raw.get("passport_id")),
        course_title=course_title,
        batch_id=clean_text(raw.get("batch_id")),
        join_date=join_date,
        class_start_date=class_start_date,
        status=status,
        total_course_fee=total_course_fee or Decimal('0.00'),
        referred_by_name=clean_text(raw.get("referred_by_name")),
        referral_payment_amount=amount_field("referral_payment_amount", "referral payment amount"),
        payments=payments,
        notes=clean_text(raw.get("notes")),
    )

    if errors:
        logger.debug(f"Row {row_number}: {len(errors)} field error(s)")
    return row, errors
