# enrollhub/models/payment.py
from __future__ import annotations
import uuid
from datetime import date, datetime
from decimal import Decimal
from sqlalchemy import String, Date, DateTime, Numeric, ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from enrollhub.models.base import Base


class PaymentLedgerEntry(Base):
    """One tuition payment against a student, tagged with its schedule stage."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[str] = mapped_column(String(32), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    # Advance|Second|Third|Final|Other, free text tolerated
    stage: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    student: Mapped["Student"] = relationship("Student", back_populates="payments")

    __table_args__ = (
        Index("ix_payments_student_stage", "student_id", "stage"),
        Index("ix_payments_payment_date", "payment_date"),
    )
