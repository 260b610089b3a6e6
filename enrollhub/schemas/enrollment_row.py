# enrollhub/schemas/enrollment_row.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import date
from decimal import Decimal

from enrollhub.schemas.enums import PaymentStage, StudentStatus

# A row as handed over by the spreadsheet codec: column name -> cell value
RawRow = Dict[str, Any]


class FieldError(BaseModel):
    field: str
    message: str


class StagePayment(BaseModel):
    """Amount, mode and date for one schedule stage of an import row"""
    stage: PaymentStage
    amount: Optional[Decimal] = None
    mode: Optional[str] = None
    payment_date: Optional[date] = None

    @property
    def is_present(self) -> bool:
        return self.amount is not None and self.amount > 0


class EnrollmentRow(BaseModel):
    """Typed, normalized enrollment row. Fields that failed normalization are None."""
    row_number: int = Field(..., ge=1)

    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    passport_id: Optional[str] = None

    course_title: Optional[str] = None
    batch_id: Optional[str] = None
    join_date: Optional[date] = None
    class_start_date: Optional[date] = None
    status: Optional[StudentStatus] = None

    total_course_fee: Decimal = Decimal('0.00')
    referred_by_name: Optional[str] = None
    referral_payment_amount: Optional[Decimal] = None

    payments: List[StagePayment] = []
    notes: Optional[str] = None

    def stage(self, stage: PaymentStage) -> Optional[StagePayment]:
        return next((p for p in self.payments if p.stage == stage), None)

    def missing_required(self) -> List[str]:
        """Required fields that are still empty after normalization"""
        required = ("full_name", "email", "phone", "join_date")
        return [name for name in required if getattr(self, name) in (None, "")]


class StagedRow(BaseModel):
    index: int
    raw: RawRow
    row: EnrollmentRow
    errors: List[FieldError] = []

    @property
    def is_ready(self) -> bool:
        return not self.errors


class StagingReadiness(BaseModel):
    total: int
    error_count: int
    ready_count: int


class StagingSessionOut(BaseModel):
    session_id: str
    readiness: StagingReadiness
    rows: List[StagedRow]
    dropped_sample_rows: int = 0


class RowEdit(BaseModel):
    field: str = Field(..., min_length=1)
    value: Any = None


class RowEditResult(BaseModel):
    row: StagedRow
    readiness: StagingReadiness


class StagingCreate(BaseModel):
    rows: List[RawRow]
    drop_sample_rows: bool = True
