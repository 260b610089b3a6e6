# enrollhub/schemas/payment_breakdown.py
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Literal, Optional
from datetime import date
from decimal import Decimal

from enrollhub.schemas.enums import PaymentStage, StudentStatus

SortKey = Literal["payment_date", "status"]


class BreakdownFilters(BaseModel):
    """Row filters for the payment breakdown; all optional, combined with AND"""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = Field(None, ge=2000, le=2100)
    stage: Optional[PaymentStage] = None
    status: Optional[StudentStatus] = None
    student_id: Optional[str] = None
    country: Optional[str] = None
    search: Optional[str] = None
    sort_by: SortKey = "payment_date"
    descending: bool = True

    @field_validator("student_id", "country", "search")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @model_validator(mode="after")
    def check_range(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self

    @property
    def has_date_window(self) -> bool:
        return any(v is not None for v in (self.date_from, self.date_to, self.month, self.year))


class StageCell(BaseModel):
    amount: Decimal = Decimal('0.00')
    payment_date: Optional[date] = None
    payment_mode: Optional[str] = None


class OtherCell(BaseModel):
    amount: Decimal = Decimal('0.00')
    # Dates of every entry folded into this cell, in ledger date order
    dates: str = ""
    count: int = 0


class StudentBreakdownRow(BaseModel):
    seq: int
    student_id: str
    full_name: str
    email: str
    country: Optional[str] = None
    course_title: Optional[str] = None
    status: str
    total_course_fee: Decimal
    advance: StageCell
    second: StageCell
    final: StageCell
    other: OtherCell
    total_paid: Decimal
    balance: Decimal
    last_payment_date: Optional[date] = None


class BreakdownTotals(BaseModel):
    total_course_fee: Decimal = Decimal('0.00')
    advance: Decimal = Decimal('0.00')
    second: Decimal = Decimal('0.00')
    final: Decimal = Decimal('0.00')
    other: Decimal = Decimal('0.00')
    total_paid: Decimal = Decimal('0.00')
    balance: Decimal = Decimal('0.00')


class PaymentBreakdownReport(BaseModel):
    filters: BreakdownFilters
    rows: List[StudentBreakdownRow]
    totals: BreakdownTotals
