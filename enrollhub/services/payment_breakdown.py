# enrollhub/services/payment_breakdown.py - Reconciliation engine for the payment ledger
"""
Per-student, per-stage payment breakdown.

build_breakdown() is a pure function over students, ledger entries and
courses; PaymentBreakdownService only loads those from storage. Filters
select which students appear. Stage columns, totals paid and balances are
always computed from a student's full ledger.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from enrollhub.schemas.enums import PaymentStage, STATUS_OPTIONS
from enrollhub.schemas.payment_breakdown import (
    BreakdownFilters,
    BreakdownTotals,
    OtherCell,
    PaymentBreakdownReport,
    StageCell,
    StudentBreakdownRow,
)
from enrollhub.services.storage import EnrollmentStorage

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

# Stages that get their own column; everything else is folded into Other
COLUMN_STAGES = (PaymentStage.ADVANCE, PaymentStage.SECOND, PaymentStage.FINAL)

_STAGE_LOOKUP = {s.value.lower(): s for s in PaymentStage}


def canonical_stage(stage: Optional[str]) -> PaymentStage:
    """Ledger stage text -> PaymentStage; free text counts as Other"""
    if not stage:
        return PaymentStage.OTHER
    return _STAGE_LOOKUP.get(stage.strip().lower(), PaymentStage.OTHER)


def format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def _in_window(paid_on: Optional[date], filters: BreakdownFilters) -> bool:
    if paid_on is None:
        return False
    if filters.date_from and paid_on < filters.date_from:
        return False
    if filters.date_to and paid_on > filters.date_to:
        return False
    if filters.month and paid_on.month != filters.month:
        return False
    if filters.year and paid_on.year != filters.year:
        return False
    return True


def _matches_student(student: Any, filters: BreakdownFilters) -> bool:
    if filters.status and student.status != filters.status.value:
        return False
    if filters.student_id and student.id != filters.student_id:
        return False
    if filters.country and (student.country or "").lower() != filters.country.lower():
        return False
    if filters.search:
        needle = filters.search.lower()
        haystack = (student.full_name or "", student.email or "", student.id or "")
        if not any(needle in value.lower() for value in haystack):
            return False
    return True


def _breakdown_row(student: Any, entries: List[Any], course_titles: Dict[Any, str]) -> StudentBreakdownRow:
    cells = {stage: StageCell() for stage in COLUMN_STAGES}
    filled = set()
    other_amount = ZERO
    other_dates = []
    other_count = 0
    total_paid = ZERO

    for entry in entries:
        amount = Decimal(str(entry.amount or 0))
        total_paid += amount
        stage = canonical_stage(entry.stage)
        if stage in cells and stage not in filled:
            cells[stage] = StageCell(amount=amount, payment_date=entry.payment_date, payment_mode=entry.payment_mode)
            filled.add(stage)
            continue
        other_amount += amount
        other_count += 1
        if entry.payment_date:
            other_dates.append(format_date(entry.payment_date))

    fee = Decimal(str(student.total_course_fee or 0))
    paid_dates = [e.payment_date for e in entries if e.payment_date]
    return StudentBreakdownRow(
        seq=0,
        student_id=student.id,
        full_name=student.full_name,
        email=student.email,
        country=student.country,
        course_title=course_titles.get(student.course_id),
        status=student.status,
        total_course_fee=fee,
        advance=cells[PaymentStage.ADVANCE],
        second=cells[PaymentStage.SECOND],
        final=cells[PaymentStage.FINAL],
        other=OtherCell(amount=other_amount, dates=", ".join(other_dates), count=other_count),
        total_paid=total_paid,
        balance=fee - total_paid,
        last_payment_date=max(paid_dates) if paid_dates else None,
    )


def _sort_rows(rows: List[StudentBreakdownRow], filters: BreakdownFilters) -> List[StudentBreakdownRow]:
    if filters.sort_by == "status":
        def status_rank(row: StudentBreakdownRow):
            rank = STATUS_OPTIONS.index(row.status) if row.status in STATUS_OPTIONS else len(STATUS_OPTIONS)
            return (rank, row.full_name.lower())
        return sorted(rows, key=status_rank, reverse=filters.descending)

    # Students without payments always sort last
    paid = [r for r in rows if r.last_payment_date is not None]
    unpaid = [r for r in rows if r.last_payment_date is None]
    paid.sort(key=lambda r: (r.last_payment_date, r.student_id), reverse=filters.descending)
    unpaid.sort(key=lambda r: r.student_id)
    return paid + unpaid


def build_breakdown(
    students: Iterable[Any],
    ledger: Iterable[Any],
    courses: Iterable[Any] = (),
    filters: Optional[BreakdownFilters] = None,
) -> PaymentBreakdownReport:
    """
    Build the payment breakdown report.

    Args:
        students: Student records (id, full_name, email, country, status,
            course_id, total_course_fee)
        ledger: Ledger entries (student_id, stage, amount, payment_mode, payment_date)
        courses: Courses (id, title) used to label rows
        filters: Row filters and sort order

    Returns:
        PaymentBreakdownReport with 1-based seq numbers over the filtered view
    """
    filters = filters or BreakdownFilters()
    course_titles = {c.id: c.title for c in courses}

    by_student: Dict[str, List[Any]] = defaultdict(list)
    for entry in ledger:
        by_student[entry.student_id].append(entry)
    for entries in by_student.values():
        entries.sort(key=lambda e: e.payment_date or date.min)

    rows = []
    for student in students:
        if not _matches_student(student, filters):
            continue
        entries = by_student.get(student.id, [])
        if filters.has_date_window and not any(_in_window(e.payment_date, filters) for e in entries):
            continue
        if filters.stage and not any(canonical_stage(e.stage) == filters.stage for e in entries):
            continue
        rows.append(_breakdown_row(student, entries, course_titles))

    rows = _sort_rows(rows, filters)
    totals = BreakdownTotals()
    for seq, row in enumerate(rows, start=1):
        row.seq = seq
        totals.total_course_fee += row.total_course_fee
        totals.advance += row.advance.amount
        totals.second += row.second.amount
        totals.final += row.final.amount
        totals.other += row.other.amount
        totals.total_paid += row.total_paid
        totals.balance += row.balance

    return PaymentBreakdownReport(filters=filters, rows=rows, totals=totals)


def export_rows(report: PaymentBreakdownReport) -> List[Dict[str, Any]]:
    """Flatten a report into sheet rows for the spreadsheet codec"""

    def cell_date(value: Optional[date]) -> str:
        return format_date(value) if value else ""

    exported = []
    for row in report.rows:
        exported.append({
            "S.No": row.seq,
            "Student ID": row.student_id,
            "Student Name": row.full_name,
            "Country": row.country or "N/A",
            "Course": row.course_title or "",
            "Status": row.status,
            "Total Course Fee": float(row.total_course_fee),
            "Advance Amount": float(row.advance.amount),
            "Advance Date": cell_date(row.advance.payment_date),
            "Second Amount": float(row.second.amount),
            "Second Date": cell_date(row.second.payment_date),
            "Final Amount": float(row.final.amount),
            "Final Date": cell_date(row.final.payment_date),
            "Other Amount": float(row.other.amount),
            "Other Dates": row.other.dates,
            "Balance": float(row.balance),
        })
    return exported


class PaymentBreakdownService:
    """Loads students, ledger and courses and builds the breakdown"""

    def __init__(self, db: Session):
        self.db = db
        self.storage = EnrollmentStorage(db)

    def report(self, filters: Optional[BreakdownFilters] = None) -> PaymentBreakdownReport:
        filters = filters or BreakdownFilters()
        students = self.storage.list_students(
            status=filters.status.value if filters.status else None,
            student_id=filters.student_id,
            country=filters.country,
            search=filters.search,
        )
        ledger = self.storage.list_ledger_entries(student_ids=[s.id for s in students])
        courses = self.storage.list_courses()

        report = build_breakdown(students, ledger, courses, filters)
        logger.debug(f"Payment breakdown: {len(report.rows)} of {len(students)} students after filters")
        return report
