# enrollhub/services/template.py - Reference content for the import template workbook
from typing import Any, Dict, Iterable, List

from enrollhub.core.config import settings
from enrollhub.schemas.enums import PAYMENT_MODES, STATUS_OPTIONS, TEMPLATE_COLUMNS


def template_rows(courses: Iterable[Any]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Sheets the spreadsheet codec writes into the import template.

    The first sheet carries one marked sample row; staging drops rows with
    the marker, so an untouched template imports nothing.
    """
    courses = list(courses)
    sample = {column: "" for column in TEMPLATE_COLUMNS}
    sample.update({
        "full_name": f"John Doe {settings.SAMPLE_ROW_MARKER}",
        "email": "sample.john.doe@example.com",
        "phone": "+1234567890",
        "course_title": courses[0].title if courses else "",
        "join_date": "15/01/2024",
        "status": STATUS_OPTIONS[0],
        "total_course_fee": float(courses[0].fee) if courses else 0,
        "advance_payment_amount": 1000,
        "advance_payment_mode": PAYMENT_MODES[0],
        "advance_payment_date": "15/01/2024",
    })
    return {
        "Student_Import": [sample],
        "Available_Courses": [
            {
                "Course_ID": c.id,
                "Course_Title": c.title,
                "Description": c.description or "",
                "Fee": float(c.fee),
                "Duration_Months": c.period_months,
            }
            for c in courses
        ],
        "Status_Options": [{"Status_Options": s} for s in STATUS_OPTIONS],
        "Payment_Modes": [{"Payment_Modes": m} for m in PAYMENT_MODES],
    }
