# enrollhub/models/student.py
from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
import uuid
from sqlalchemy import String, Date, DateTime, Numeric, Text, ForeignKey, CheckConstraint, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from enrollhub.models.base import Base
from enrollhub.schemas.enums import STATUS_OPTIONS

STUDENT_STATUSES = tuple(STATUS_OPTIONS)


class Student(Base):
    __tablename__ = "students"

    # Sequential code, e.g. ATZ-2026-007; never reassigned
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    address: Mapped[str | None] = mapped_column(String(255))
    country: Mapped[str | None] = mapped_column(String(64))
    passport_id: Mapped[str | None] = mapped_column(String(64))
    course_id: Mapped[str | None] = mapped_column(String(32), ForeignKey("courses.id", ondelete="SET NULL"))
    batch_id: Mapped[str | None] = mapped_column(String(64))
    join_date: Mapped[date] = mapped_column(Date, nullable=False)
    class_start_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Attend sessions")
    total_course_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    advance_payment: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    referral_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("referrals.id", ondelete="SET NULL"))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    course: Mapped["Course"] = relationship("Course", back_populates="students")
    referral: Mapped["Referral"] = relationship("Referral", back_populates="students")
    payments: Mapped[list["PaymentLedgerEntry"]] = relationship(
        "PaymentLedgerEntry", back_populates="student", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("total_course_fee >= 0", name="ck_student_fee_positive"),
        CheckConstraint(
            "status IN (" + ",".join(f"'{s}'" for s in STUDENT_STATUSES) + ")",
            name="ck_student_status",
        ),
        Index("ix_students_status", "status"),
    )
