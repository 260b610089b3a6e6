# enrollhub/api/routers/reports.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from pydantic import ValidationError
from typing import Any, Dict, List, Optional
from datetime import date

from enrollhub.core.db import get_db
from enrollhub.schemas.enums import PaymentStage, StudentStatus
from enrollhub.schemas.payment_breakdown import BreakdownFilters, PaymentBreakdownReport, SortKey
from enrollhub.services.payment_breakdown import PaymentBreakdownService, export_rows

router = APIRouter()


def breakdown_filters(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    stage: Optional[PaymentStage] = Query(None),
    status: Optional[StudentStatus] = Query(None),
    student_id: Optional[str] = Query(None),
    country: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Name, email or student ID (partial match)"),
    sort_by: SortKey = Query("payment_date"),
    descending: bool = Query(True),
) -> BreakdownFilters:
    try:
        return BreakdownFilters(
            date_from=date_from, date_to=date_to, month=month, year=year,
            stage=stage, status=status, student_id=student_id, country=country,
            search=search, sort_by=sort_by, descending=descending,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))


@router.get("/payment-breakdown", response_model=PaymentBreakdownReport)
async def payment_breakdown(
    filters: BreakdownFilters = Depends(breakdown_filters),
    db: Session = Depends(get_db),
):
    """Per-student, per-stage payments with outstanding balance"""
    return PaymentBreakdownService(db).report(filters)


@router.get("/payment-breakdown/export")
async def payment_breakdown_export(
    filters: BreakdownFilters = Depends(breakdown_filters),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Flat rows for the spreadsheet export"""
    return export_rows(PaymentBreakdownService(db).report(filters))
