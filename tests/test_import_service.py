import uuid
from datetime import date
from decimal import Decimal
from unittest import TestCase
from unittest.mock import patch

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, OperationalError

from enrollhub.core.errors import StorageTimeoutError, WriteError
from enrollhub.models import PaymentLedgerEntry, Referral, ReferralPayment, Student, STUDENT_STATUSES
from enrollhub.schemas.enums import StudentStatus
from enrollhub.services.import_service import ImportService
from enrollhub.services.storage import EnrollmentStorage, _is_unique_violation, translate_error
from enrollhub.services.staging import StagingSession
from tests.helpers import catalog, enrollment_rows, fixed_today, make_database, raw_row, seed_courses


class ImportServiceTests(TestCase):
    def setUp(self):
        self.manager = make_database()
        self.db = self.manager.SessionLocal()
        seed_courses(self.db)
        self.service = ImportService(self.db, today=fixed_today)

    def tearDown(self):
        self.db.close()
        self.manager.close()

    def count(self, model):
        return self.db.execute(select(func.count()).select_from(model)).scalar_one()

    def student(self, email):
        return self.db.execute(select(Student).where(Student.email == email)).scalar_one()

    def test_rows_are_committed_with_sequential_codes(self):
        rows = enrollment_rows([
            raw_row(),
            raw_row(full_name="Tom Baker", email="tom@example.com"),
        ])
        outcome = self.service.commit(rows)

        self.assertEqual((outcome.success, outcome.failed, outcome.skipped), (2, 0, 0))
        self.assertEqual([r.student_id for r in outcome.rows], ["ATZ-2026-001", "ATZ-2026-002"])
        self.assertTrue(all(r.status == "committed" for r in outcome.rows))
        self.assertEqual(self.count(Student), 2)

    def test_duplicate_email_is_skipped(self):
        self.service.commit(enrollment_rows([raw_row(email="taken@example.com")]))

        rows = enrollment_rows([
            raw_row(email="first@example.com"),
            raw_row(email="TAKEN@example.com"),
            raw_row(email="third@example.com"),
        ])
        outcome = ImportService(self.db, today=fixed_today).commit(rows)

        self.assertEqual(outcome.success, 2)
        self.assertEqual(outcome.skipped, 1)
        self.assertEqual(outcome.failed, 0)
        self.assertEqual(outcome.errors, [])
        self.assertEqual(outcome.skipped_rows[0].row_number, 2)
        self.assertEqual(outcome.skipped_rows[0].kind, "duplicate")

    def test_duplicate_within_one_batch(self):
        rows = enrollment_rows([raw_row(), raw_row(full_name="Someone Else")])
        outcome = self.service.commit(rows)
        self.assertEqual((outcome.success, outcome.skipped), (1, 1))

    def test_rerunning_a_batch_skips_everything(self):
        raws = [raw_row(), raw_row(email="tom@example.com"), raw_row(email="ana@example.com")]
        self.service.commit(enrollment_rows(raws))

        outcome = ImportService(self.db, today=fixed_today).commit(enrollment_rows(raws))
        self.assertEqual((outcome.success, outcome.failed, outcome.skipped), (0, 0, 3))
        self.assertEqual(self.count(Student), 3)
        self.assertEqual(self.count(PaymentLedgerEntry), 3)

    def test_counts_cover_every_row(self):
        raws = [
            raw_row(),
            raw_row(email="no-course@example.com", course_title="Underwater Welding"),
            raw_row(email=""),
            raw_row(),
            raw_row(email="ok@example.com"),
        ]
        outcome = self.service.commit(enrollment_rows(raws), originals=raws)

        self.assertEqual(outcome.total, len(raws))
        self.assertEqual((outcome.success, outcome.failed, outcome.skipped), (2, 2, 1))
        self.assertEqual(len(outcome.errors), outcome.failed)
        self.assertEqual(len(outcome.rows), len(raws))

    def test_unknown_course_fails_row(self):
        raws = [raw_row(course_title="Underwater Welding")]
        outcome = self.service.commit(enrollment_rows(raws), originals=raws)

        self.assertEqual(outcome.failed, 1)
        error = outcome.errors[0]
        self.assertEqual(error.kind, "reference")
        self.assertEqual(error.error, 'Course "Underwater Welding" not found')
        self.assertEqual(error.original["course_title"], "Underwater Welding")
        self.assertEqual(self.count(Student), 0)

    def test_missing_required_field_fails_row(self):
        outcome = self.service.commit(enrollment_rows([raw_row(phone="")]))
        self.assertEqual(outcome.failed, 1)
        self.assertEqual(outcome.errors[0].kind, "validation")

    def test_failed_rows_do_not_consume_codes(self):
        rows = enrollment_rows([
            raw_row(email="a@example.com"),
            raw_row(email="b@example.com", course_title="Underwater Welding"),
            raw_row(email="c@example.com"),
        ])
        outcome = self.service.commit(rows)
        self.assertEqual(self.student("c@example.com").id, "ATZ-2026-002")
        self.assertEqual(outcome.rows[1].status, "failed")

    def test_student_fields(self):
        self.service.commit(enrollment_rows([raw_row(status="", address="1 King St")]))
        student = self.student("priya.sharma@example.com")

        self.assertEqual(student.status, "Attend sessions")
        self.assertEqual(student.course_id, "CRS-NURS")
        self.assertEqual(student.join_date, date(2026, 1, 15))
        self.assertEqual(student.advance_payment, Decimal("500.00"))
        self.assertEqual(student.address, "1 King St")
        self.assertIsNone(student.referral_id)

    def test_ledger_entries_per_present_stage(self):
        rows = enrollment_rows([raw_row(
            second_payment_amount="300",
            second_payment_mode="PayPal",
            second_payment_date="15/02/2026",
            third_payment_amount="0",
            final_payment_amount="200",
        )])
        outcome = self.service.commit(rows)
        self.assertEqual(outcome.rows[0].ledger_entries, 3)

        entries = self.db.execute(
            select(PaymentLedgerEntry).order_by(PaymentLedgerEntry.payment_date, PaymentLedgerEntry.stage)
        ).scalars().all()
        by_stage = {e.stage: e for e in entries}
        self.assertEqual(set(by_stage), {"Advance", "Second", "Final"})
        self.assertEqual(by_stage["Advance"].payment_mode, "Cash")
        self.assertEqual(by_stage["Second"].payment_mode, "Bank Transfer")
        self.assertEqual(by_stage["Second"].payment_date, date(2026, 2, 15))
        self.assertEqual(by_stage["Final"].payment_date, date(2026, 1, 15))

    def test_referral_created_once_and_linked(self):
        rows = enrollment_rows([
            raw_row(email="a@example.com", referred_by_name="Jane Referrer", referral_payment_amount="100"),
            raw_row(email="b@example.com", referred_by_name="  jane   referrer "),
        ])
        outcome = self.service.commit(rows)

        self.assertEqual(outcome.success, 2)
        self.assertEqual(outcome.referrals_created, 1)
        referral = self.db.execute(select(Referral)).scalar_one()
        self.assertEqual(referral.code, "REF-001")
        self.assertEqual(referral.full_name, "Jane Referrer")
        self.assertEqual(self.student("a@example.com").referral_id, referral.id)
        self.assertEqual(self.student("b@example.com").referral_id, referral.id)
        self.assertTrue(outcome.rows[0].referral_created)
        self.assertFalse(outcome.rows[1].referral_created)
        self.assertTrue(outcome.rows[1].referral_linked)

        payout = self.db.execute(select(ReferralPayment)).scalar_one()
        self.assertEqual(payout.amount, Decimal("100.00"))
        self.assertEqual(payout.student_id, self.student("a@example.com").id)
        self.assertTrue(outcome.rows[0].referral_payment_written)

    def test_existing_referral_is_reused(self):
        existing = Referral(id=uuid.uuid4(), code="REF-004", full_name="Jane Referrer")
        self.db.add(existing)
        self.db.commit()

        outcome = self.service.commit(enrollment_rows([raw_row(referred_by_name="JANE REFERRER")]))
        self.assertEqual(outcome.referrals_created, 0)
        self.assertEqual(self.count(Referral), 1)
        self.assertEqual(self.student("priya.sharma@example.com").referral_id, existing.id)

    def test_referral_failure_keeps_student(self):
        with patch.object(self.service.resolver, "resolve", side_effect=WriteError("Referral insert", "boom")):
            outcome = self.service.commit(enrollment_rows([raw_row(referred_by_name="Jane Referrer")]))

        self.assertEqual(outcome.success, 1)
        self.assertEqual(outcome.rows[0].status, "partial")
        self.assertEqual(len(outcome.warnings), 1)
        self.assertEqual(outcome.errors, [])
        self.assertIsNone(self.student("priya.sharma@example.com").referral_id)

    def test_student_write_failure_rolls_back_row(self):
        with patch.object(self.service.storage, "insert_ledger_entries", side_effect=WriteError("Ledger insert", "boom")):
            outcome = self.service.commit(enrollment_rows([raw_row(referred_by_name="Jane Referrer")]))

        self.assertEqual(outcome.failed, 1)
        self.assertEqual(outcome.errors[0].kind, "write")
        self.assertEqual(self.count(Student), 0)
        self.assertEqual(self.count(Referral), 0)
        self.assertEqual(outcome.referrals_created, 0)

    def test_commit_session(self):
        session = StagingSession([raw_row(), raw_row(email="tom@example.com")], catalog())
        outcome = self.service.commit_session(session)
        self.assertEqual(outcome.success, 2)

    def test_email_race_on_insert_is_skipped(self):
        self.service.commit(enrollment_rows([raw_row(email="taken@example.com")]))

        rows = enrollment_rows([raw_row(email="taken@example.com"), raw_row(email="fresh@example.com")])
        # Another writer inserted the email after the duplicate check ran
        with patch.object(self.service.storage, "student_exists_by_email", return_value=False):
            outcome = self.service.commit(rows)

        self.assertEqual((outcome.success, outcome.failed, outcome.skipped), (1, 0, 1))
        self.assertEqual(outcome.skipped_rows[0].kind, "duplicate")
        self.assertEqual(outcome.errors, [])
        self.assertEqual(self.student("fresh@example.com").id, "ATZ-2026-002")

    def test_student_id_clash_is_not_a_duplicate(self):
        scan_failure = OperationalError("SELECT", {}, Exception("no such table"))
        with patch.object(EnrollmentStorage, "list_codes_by_prefix", side_effect=scan_failure), \
                patch("enrollhub.services.code_allocator.time.time", return_value=1700000000.0):
            service = ImportService(self.db, today=fixed_today)
            outcome = service.commit(enrollment_rows([
                raw_row(email="a@example.com"),
                raw_row(email="b@example.com"),
            ]))

        self.assertEqual((outcome.success, outcome.failed, outcome.skipped), (1, 1, 0))
        self.assertEqual(outcome.skipped_rows, [])
        self.assertEqual(outcome.errors[0].kind, "write")
        self.assertEqual(outcome.errors[0].email, "b@example.com")
        self.assertNotIn("already exists", outcome.errors[0].error)

    def test_timeout_fails_only_its_row(self):
        real_insert = self.service.storage.insert_ledger_entries
        calls = []

        def slow_then_fine(entries):
            calls.append(entries)
            if len(calls) == 1:
                raise translate_error(
                    "Ledger insert", OperationalError("INSERT", {}, Exception("database is locked"))
                )
            return real_insert(entries)

        with patch.object(self.service.storage, "insert_ledger_entries", side_effect=slow_then_fine):
            outcome = self.service.commit(enrollment_rows([
                raw_row(email="a@example.com"),
                raw_row(email="b@example.com"),
            ]))

        self.assertEqual((outcome.success, outcome.failed, outcome.skipped), (1, 1, 0))
        self.assertEqual(outcome.errors[0].kind, "timeout")
        self.assertEqual(outcome.errors[0].row_number, 1)
        self.assertEqual(self.count(Student), 1)
        self.assertEqual(self.student("b@example.com").id, "ATZ-2026-001")
        self.assertEqual(self.count(PaymentLedgerEntry), 1)

    def test_referral_payout_failure_keeps_row(self):
        failure = WriteError("Referral payment insert", "boom")
        with patch.object(self.service.storage, "insert_referral_payment", side_effect=failure):
            outcome = self.service.commit(enrollment_rows([
                raw_row(referred_by_name="Jane Referrer", referral_payment_amount="100"),
            ]))

        self.assertEqual(outcome.success, 1)
        self.assertEqual(outcome.errors, [])
        self.assertEqual(len(outcome.warnings), 1)
        row = outcome.rows[0]
        self.assertEqual(row.status, "partial")
        self.assertTrue(row.student_written)
        self.assertTrue(row.ledger_written)
        self.assertTrue(row.referral_linked)
        self.assertFalse(row.referral_payment_written)
        self.assertEqual(self.count(Student), 1)
        self.assertEqual(self.count(PaymentLedgerEntry), 1)
        self.assertEqual(self.count(Referral), 1)
        self.assertEqual(self.count(ReferralPayment), 0)

    def test_referral_insert_failure_releases_code(self):
        real_flush = self.db.flush
        flushes = []

        def failing_first_flush(*args, **kwargs):
            flushes.append(args)
            if len(flushes) == 1:
                raise OperationalError("INSERT INTO referrals", {}, Exception("disk I/O error"))
            return real_flush(*args, **kwargs)

        with patch.object(self.db, "flush", side_effect=failing_first_flush):
            outcome = self.service.commit(enrollment_rows([
                raw_row(email="a@example.com", referred_by_name="Jane Referrer"),
                raw_row(email="b@example.com", referred_by_name="Omar Haddad"),
            ]))

        self.assertEqual((outcome.success, outcome.failed), (2, 0))
        self.assertEqual(outcome.rows[0].status, "partial")
        self.assertEqual(len(outcome.warnings), 1)
        self.assertEqual(outcome.warnings[0].kind, "write")
        self.assertIsNone(self.student("a@example.com").referral_id)

        referral = self.db.execute(select(Referral)).scalar_one()
        self.assertEqual(referral.full_name, "Omar Haddad")
        self.assertEqual(referral.code, "REF-001")
        self.assertEqual(self.student("b@example.com").referral_id, referral.id)
        self.assertEqual(outcome.referrals_created, 1)


class StorageErrorTests(TestCase):
    def test_unique_violation_on_email_only(self):
        on_email = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: students.email"))
        on_id = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: students.id"))
        self.assertTrue(_is_unique_violation(on_email, "email"))
        self.assertFalse(_is_unique_violation(on_id, "email"))
        self.assertTrue(_is_unique_violation(on_id))

    def test_timeout_translation(self):
        error = translate_error("Student insert", OperationalError("INSERT", {}, Exception("database is locked")))
        self.assertIsInstance(error, StorageTimeoutError)
        self.assertEqual(error.kind, "timeout")

        error = translate_error("Student insert", OperationalError("INSERT", {}, Exception("disk I/O error")))
        self.assertNotIsInstance(error, StorageTimeoutError)
        self.assertEqual(error.kind, "write")


class StudentStatusConstraintTests(TestCase):
    def test_constraint_values_follow_enum(self):
        self.assertEqual(STUDENT_STATUSES, tuple(s.value for s in StudentStatus))
