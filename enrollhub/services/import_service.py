# enrollhub/services/import_service.py - Commit Pipeline for staged enrollment batches
"""
Commits a batch of normalized enrollment rows, one row at a time.

Each row is written as one transaction (referral created for it, student,
ledger entries). The referral payout is written afterwards in its own
transaction. A failing row is recorded in the outcome and the batch moves
on; nothing raised for a single row ever stops the batch.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional, Sequence
import logging
import uuid

from sqlalchemy.orm import Session

from enrollhub.core.config import settings
from enrollhub.core.errors import (
    DuplicateEmailError,
    EnrollmentImportError,
    FieldValidationError,
    ReferenceNotFoundError,
)
from enrollhub.models import Student, PaymentLedgerEntry, ReferralPayment
from enrollhub.schemas.enrollment_row import EnrollmentRow, RawRow
from enrollhub.schemas.enums import PAYMENT_MODES, PaymentStage
from enrollhub.schemas.import_outcome import ImportOutcome, RowError, RowOutcome
from enrollhub.services.code_allocator import SequentialCodeAllocator
from enrollhub.services.identity_resolver import ReferralResolution, ReferralResolver
from enrollhub.services.normalizer import CourseCatalog
from enrollhub.services.staging import StagingSession
from enrollhub.services.storage import EnrollmentStorage

logger = logging.getLogger(__name__)


class ImportService:
    """Service class for committing enrollment imports"""

    def __init__(self, db: Session, today: Callable[[], date] = date.today):
        self.db = db
        self.storage = EnrollmentStorage(db)
        self.allocator = SequentialCodeAllocator(self.storage.list_codes_by_prefix, today=today)
        self.resolver = ReferralResolver(self.storage, self.allocator)

    def commit_session(self, session: StagingSession) -> ImportOutcome:
        """Commit every row of a staging session, ready or not"""
        return self.commit(session.enrollment_rows(), session.raw_rows())

    def commit(self, rows: Sequence[EnrollmentRow], originals: Optional[Sequence[RawRow]] = None) -> ImportOutcome:
        """
        Commit a batch.

        Args:
            rows: Normalized rows, in batch order
            originals: Raw payloads attached to per-row error reports

        Returns:
            ImportOutcome where success + failed + skipped == len(rows)
        """
        outcome = ImportOutcome()
        catalog = CourseCatalog(self.storage.list_courses())
        logger.info(f"Committing import batch of {len(rows)} rows")

        for position, row in enumerate(rows):
            original = dict(originals[position]) if originals and position < len(originals) else {}
            row_outcome = RowOutcome(row_number=row.row_number, status="failed")
            try:
                self._commit_row(row, original, catalog, outcome, row_outcome)
            except DuplicateEmailError as e:
                row_outcome.status = "skipped"
                outcome.skipped += 1
                outcome.skipped_rows.append(self._row_error(row, original, e))
                logger.warning(f"Row {row.row_number}: skipped, {e}")
            except EnrollmentImportError as e:
                row_outcome.status = "failed"
                outcome.failed += 1
                outcome.errors.append(self._row_error(row, original, e))
                logger.warning(f"Row {row.row_number}: failed, {e}")
            except Exception as e:
                self.storage.rollback()
                row_outcome.status = "failed"
                outcome.failed += 1
                outcome.errors.append(RowError(
                    row_number=row.row_number,
                    student_name=row.full_name,
                    email=row.email,
                    error=f"Unexpected error: {e}",
                    kind="unexpected",
                    original=original,
                ))
                logger.error(f"Row {row.row_number}: unexpected error", exc_info=True)
            outcome.rows.append(row_outcome)

        logger.info(
            f"Import finished: {outcome.success} imported, {outcome.failed} failed, "
            f"{outcome.skipped} skipped, {outcome.referrals_created} referrals created"
        )
        return outcome

    def _commit_row(
        self,
        row: EnrollmentRow,
        original: RawRow,
        catalog: CourseCatalog,
        outcome: ImportOutcome,
        row_outcome: RowOutcome,
    ) -> None:
        missing = row.missing_required()
        if missing:
            raise FieldValidationError(missing[0], f"Missing or invalid required field(s): {', '.join(missing)}")

        if self.storage.student_exists_by_email(row.email):
            raise DuplicateEmailError(row.email)

        course = None
        if row.course_title:
            course = catalog.lookup(row.course_title)
            if course is None:
                raise ReferenceNotFoundError("course", row.course_title)

        student_id = None
        resolution = ReferralResolution(referral_id=None)
        try:
            with self.storage.row_transaction():
                resolution = self._resolve_referral(row, original, outcome)
                student_id = self.allocator.next_student_code()
                student = self._build_student(student_id, row, course, resolution)
                self.storage.insert_student(student)
                entries = self._build_ledger_entries(student_id, row)
                if entries:
                    self.storage.insert_ledger_entries(entries)
        except Exception:
            if student_id:
                self.allocator.release(student_id)
            if resolution.created and resolution.code:
                self.allocator.release(resolution.code)
            raise

        row_outcome.student_id = student_id
        row_outcome.student_written = True
        row_outcome.ledger_entries = len(entries)
        row_outcome.ledger_written = True
        row_outcome.referral_linked = resolution.referral_id is not None
        row_outcome.referral_created = resolution.created
        row_outcome.status = "committed"
        outcome.success += 1
        if resolution.created:
            outcome.referrals_created += 1
        if row.referred_by_name and resolution.referral_id is None:
            row_outcome.status = "partial"

        if resolution.referral_id and row.referral_payment_amount and row.referral_payment_amount > 0:
            try:
                with self.storage.row_transaction():
                    self.storage.insert_referral_payment(ReferralPayment(
                        id=uuid.uuid4(),
                        referral_id=resolution.referral_id,
                        student_id=student_id,
                        amount=row.referral_payment_amount,
                        payment_date=row.join_date,
                        payment_method=settings.DEFAULT_PAYMENT_MODE,
                        notes="Recorded during student import",
                    ))
                row_outcome.referral_payment_written = True
            except EnrollmentImportError as e:
                row_outcome.status = "partial"
                outcome.warnings.append(self._row_error(row, original, e))
                logger.warning(f"Row {row.row_number}: referral payment not recorded, {e}")

        logger.debug(f"Row {row.row_number}: imported as {student_id}")

    def _resolve_referral(self, row: EnrollmentRow, original: RawRow, outcome: ImportOutcome) -> ReferralResolution:
        """Referral problems never fail the row; the student is created unlinked"""
        try:
            return self.resolver.resolve(row.referred_by_name)
        except EnrollmentImportError as e:
            self.storage.rollback()
            outcome.warnings.append(self._row_error(row, original, e))
            logger.warning(f"Row {row.row_number}: referral not resolved, {e}")
            return ReferralResolution(referral_id=None)

    def _build_student(self, student_id: str, row: EnrollmentRow, course, resolution: ReferralResolution) -> Student:
        advance = row.stage(PaymentStage.ADVANCE)
        return Student(
            id=student_id,
            full_name=row.full_name,
            email=row.email,
            phone=row.phone,
            address=row.address,
            country=row.country,
            passport_id=row.passport_id,
            course_id=course.id if course is not None else None,
            batch_id=row.batch_id,
            join_date=row.join_date,
            class_start_date=row.class_start_date,
            status=row.status.value if row.status else settings.DEFAULT_STUDENT_STATUS,
            total_course_fee=row.total_course_fee,
            advance_payment=advance.amount if advance is not None and advance.is_present else Decimal('0.00'),
            referral_id=resolution.referral_id,
            notes=row.notes,
        )

    def _build_ledger_entries(self, student_id: str, row: EnrollmentRow) -> List[PaymentLedgerEntry]:
        entries = []
        for payment in row.payments:
            if not payment.is_present:
                continue
            entries.append(PaymentLedgerEntry(
                id=uuid.uuid4(),
                student_id=student_id,
                stage=payment.stage.value,
                amount=payment.amount,
                payment_mode=payment.mode if payment.mode in PAYMENT_MODES else settings.DEFAULT_PAYMENT_MODE,
                payment_date=payment.payment_date or row.join_date,
            ))
        return entries

    @staticmethod
    def _row_error(row: EnrollmentRow, original: RawRow, error: EnrollmentImportError) -> RowError:
        return RowError(
            row_number=row.row_number,
            student_name=row.full_name,
            email=row.email,
            error=str(error),
            kind=error.kind,
            original=original,
        )
