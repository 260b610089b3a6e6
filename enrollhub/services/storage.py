# enrollhub/services/storage.py - Storage boundary used by the import pipeline and reports
from contextlib import contextmanager
from datetime import date
from typing import Iterable, List, Optional
import logging

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from enrollhub.core.errors import (
    DuplicateEmailError,
    StorageTimeoutError,
    WriteError,
)
from enrollhub.models import Course, Student, Referral, ReferralPayment, PaymentLedgerEntry

logger = logging.getLogger(__name__)

_TIMEOUT_MARKERS = ("timeout", "timed out", "database is locked", "canceling statement")
_UNIQUE_MARKERS = ("unique", "duplicate key")


def _is_timeout(exc: SQLAlchemyError) -> bool:
    text = str(getattr(exc, "orig", exc)).lower()
    return isinstance(exc, OperationalError) and any(m in text for m in _TIMEOUT_MARKERS)


def _is_unique_violation(exc: SQLAlchemyError, column: Optional[str] = None) -> bool:
    """Unique-constraint failure, optionally only on a constraint naming column"""
    text = str(getattr(exc, "orig", exc)).lower()
    if not isinstance(exc, IntegrityError) or not any(m in text for m in _UNIQUE_MARKERS):
        return False
    return column is None or column in text


def translate_error(operation: str, exc: SQLAlchemyError) -> WriteError:
    """Map a driver error to the pipeline taxonomy"""
    detail = str(getattr(exc, "orig", exc))
    if _is_timeout(exc):
        return StorageTimeoutError(operation, detail)
    return WriteError(operation, detail)


class EnrollmentStorage:
    """
    CRUD-style storage contract for the enrollment import and reporting paths.

    Each write flushes immediately so constraint violations surface on the
    call that caused them. Commit/rollback is owned by row_transaction().
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def row_transaction(self):
        """Commit everything written inside the block, or nothing"""
        try:
            yield self
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise translate_error("Commit", e)
        except Exception:
            self.db.rollback()
            raise

    def rollback(self):
        self.db.rollback()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def student_exists_by_email(self, email: str) -> bool:
        try:
            found = self.db.execute(
                select(Student.id).where(func.lower(Student.email) == email.strip().lower()).limit(1)
            ).first()
        except SQLAlchemyError as e:
            raise translate_error("Duplicate check", e)
        return found is not None

    def find_referral_by_name(self, name: str) -> Optional[Referral]:
        try:
            return self.db.execute(
                select(Referral)
                .where(func.lower(func.trim(Referral.full_name)) == name.strip().lower())
                .order_by(Referral.created_at, Referral.code)
                .limit(1)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise translate_error("Referral lookup", e)

    def list_codes_by_prefix(self, prefix: str) -> List[str]:
        """Student ids and referral codes starting with prefix"""
        students = select(Student.id.label("code")).where(Student.id.startswith(prefix, autoescape=True))
        referrals = select(Referral.code.label("code")).where(Referral.code.startswith(prefix, autoescape=True))
        return list(self.db.execute(students.union_all(referrals)).scalars().all())

    def list_courses(self) -> List[Course]:
        return list(self.db.execute(select(Course).order_by(Course.title)).scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_student(self, student: Student) -> Student:
        """
        Raises:
            DuplicateEmailError: If the email constraint fails (another writer won the race)
            WriteError: On every other storage failure, including a student id clash
        """
        self.db.add(student)
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            if _is_unique_violation(e, "email"):
                raise DuplicateEmailError(student.email)
            raise translate_error("Student insert", e)
        return student

    def insert_referral(self, referral: Referral) -> Referral:
        self.db.add(referral)
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise translate_error("Referral insert", e)
        return referral

    def insert_ledger_entries(self, entries: Iterable[PaymentLedgerEntry]) -> None:
        self.db.add_all(list(entries))
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise translate_error("Ledger insert", e)

    def insert_referral_payment(self, payment: ReferralPayment) -> ReferralPayment:
        self.db.add(payment)
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise translate_error("Referral payment insert", e)
        return payment

    # ------------------------------------------------------------------
    # Reporting read path
    # ------------------------------------------------------------------

    def list_students(
        self,
        status: Optional[str] = None,
        student_id: Optional[str] = None,
        country: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Student]:
        query = select(Student)
        if status:
            query = query.where(Student.status == status)
        if student_id:
            query = query.where(Student.id == student_id)
        if country:
            query = query.where(func.lower(Student.country) == country.lower())
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(or_(
                func.lower(Student.full_name).like(pattern),
                func.lower(Student.email).like(pattern),
                func.lower(Student.id).like(pattern),
            ))
        return list(self.db.execute(query.order_by(Student.id)).scalars().all())

    def list_ledger_entries(
        self,
        student_ids: Optional[Iterable[str]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[PaymentLedgerEntry]:
        query = select(PaymentLedgerEntry)
        if student_ids is not None:
            query = query.where(PaymentLedgerEntry.student_id.in_(list(student_ids)))
        if date_from:
            query = query.where(PaymentLedgerEntry.payment_date >= date_from)
        if date_to:
            query = query.where(PaymentLedgerEntry.payment_date <= date_to)
        query = query.order_by(PaymentLedgerEntry.payment_date, PaymentLedgerEntry.created_at)
        return list(self.db.execute(query).scalars().all())
