from unittest import TestCase

from sqlalchemy.exc import OperationalError

from enrollhub.services.code_allocator import SequentialCodeAllocator, highest_suffix
from tests.helpers import fixed_today


class HighestSuffixTests(TestCase):
    def test_only_numeric_suffixes_in_scope_count(self):
        codes = ["ATZ-2026-001", "ATZ-2026-007", "ATZ-2025-099", "ATZ-2026-T1700000000000", None]
        self.assertEqual(highest_suffix(codes, "ATZ-2026-"), 7)

    def test_empty_scope(self):
        self.assertEqual(highest_suffix([], "REF-"), 0)


class SequentialCodeAllocatorTests(TestCase):
    def test_continues_after_existing_codes(self):
        allocator = SequentialCodeAllocator(
            lambda prefix: ["ATZ-2026-001", "ATZ-2026-007", "ATZ-2025-120"], today=fixed_today
        )
        self.assertEqual(allocator.next_student_code(), "ATZ-2026-008")

    def test_codes_increase_before_rows_are_written(self):
        allocator = SequentialCodeAllocator(lambda prefix: [], today=fixed_today)
        codes = [allocator.next_student_code() for _ in range(4)]
        self.assertEqual(codes, ["ATZ-2026-001", "ATZ-2026-002", "ATZ-2026-003", "ATZ-2026-004"])
        self.assertEqual(len(set(codes)), 4)

    def test_year_scope_restarts(self):
        allocator = SequentialCodeAllocator(lambda prefix: ["ATZ-2025-041"], today=fixed_today)
        self.assertEqual(allocator.next_student_code(), "ATZ-2026-001")
        self.assertEqual(allocator.next_student_code(year=2025), "ATZ-2025-042")

    def test_referral_codes(self):
        allocator = SequentialCodeAllocator(lambda prefix: ["REF-009"], today=fixed_today)
        self.assertEqual(allocator.next_referral_code(), "REF-010")

    def test_padding_grows_past_width(self):
        allocator = SequentialCodeAllocator(lambda prefix: ["REF-999"], today=fixed_today)
        self.assertEqual(allocator.next_referral_code(), "REF-1000")

    def test_custom_pad_width(self):
        allocator = SequentialCodeAllocator(lambda prefix: [], today=fixed_today, pad_width=5)
        self.assertEqual(allocator.next_referral_code(), "REF-00001")

    def test_fallback_when_scan_fails(self):
        def failing_scan(prefix):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        allocator = SequentialCodeAllocator(failing_scan, today=fixed_today)
        code = allocator.next_student_code()
        self.assertTrue(code.startswith("ATZ-2026-T"))
        # Fallback codes never feed later sequential numbering
        self.assertEqual(highest_suffix([code], "ATZ-2026-"), 0)

    def test_release_returns_latest_code(self):
        allocator = SequentialCodeAllocator(lambda prefix: [], today=fixed_today)
        first = allocator.next_student_code()
        second = allocator.next_student_code()
        allocator.release(second)
        self.assertEqual(allocator.next_student_code(), second)
        allocator.release(first)
        self.assertEqual(allocator.next_student_code(), "ATZ-2026-003")
