# enrollhub/schemas/import_outcome.py
from pydantic import BaseModel
from typing import List, Literal, Optional

from enrollhub.schemas.enrollment_row import RawRow

RowStatus = Literal["committed", "partial", "failed", "skipped"]


class RowError(BaseModel):
    """Operator-facing detail for one row, with the original payload attached"""
    row_number: int
    student_name: Optional[str] = None
    email: Optional[str] = None
    error: str
    kind: str = "error"
    original: RawRow = {}


class RowOutcome(BaseModel):
    row_number: int
    status: RowStatus
    student_id: Optional[str] = None
    student_written: bool = False
    ledger_written: bool = False
    ledger_entries: int = 0
    referral_linked: bool = False
    referral_created: bool = False
    referral_payment_written: bool = False


class ImportOutcome(BaseModel):
    success: int = 0
    failed: int = 0
    skipped: int = 0
    referrals_created: int = 0
    # One entry per failed row
    errors: List[RowError] = []
    # Soft failures on committed rows (referral lookup, referral payout)
    warnings: List[RowError] = []
    # Duplicate-email rows
    skipped_rows: List[RowError] = []
    rows: List[RowOutcome] = []

    @property
    def total(self) -> int:
        return self.success + self.failed + self.skipped
