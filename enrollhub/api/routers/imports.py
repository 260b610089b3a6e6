# enrollhub/api/routers/imports.py
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import Any, Dict, List
import logging

from enrollhub.core.config import settings
from enrollhub.core.db import get_db
from enrollhub.core.errors import FieldValidationError
from enrollhub.schemas.enrollment_row import (
    RowEdit,
    RowEditResult,
    StagingCreate,
    StagingSessionOut,
)
from enrollhub.schemas.import_outcome import ImportOutcome
from enrollhub.services.import_service import ImportService
from enrollhub.services.normalizer import CourseCatalog
from enrollhub.services.staging import StagingRegistry, StagingSession, staging_registry
from enrollhub.services.storage import EnrollmentStorage
from enrollhub.services.template import template_rows

logger = logging.getLogger(__name__)
router = APIRouter()


def get_staging_registry() -> StagingRegistry:
    return staging_registry


def _session_or_404(registry: StagingRegistry, session_id: str) -> StagingSession:
    session = registry.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Staging session not found")
    return session


def _session_out(session: StagingSession) -> StagingSessionOut:
    return StagingSessionOut(
        session_id=session.id,
        readiness=session.readiness(),
        rows=session.rows,
        dropped_sample_rows=session.dropped_sample_rows,
    )


@router.get("/template")
async def get_template(db: Session = Depends(get_db)) -> Dict[str, List[Dict[str, Any]]]:
    """Sheets and reference lists for the import template workbook"""
    return template_rows(EnrollmentStorage(db).list_courses())


@router.post("/staging", response_model=StagingSessionOut, status_code=status.HTTP_201_CREATED)
async def create_staging_session(
    data: StagingCreate,
    db: Session = Depends(get_db),
    registry: StagingRegistry = Depends(get_staging_registry),
):
    """Validate a parsed batch and open it for review"""
    if len(data.rows) > settings.MAX_IMPORT_ROWS:
        raise HTTPException(
            status_code=400,
            detail=f"Batch has {len(data.rows)} rows; at most {settings.MAX_IMPORT_ROWS} can be imported at once"
        )

    catalog = CourseCatalog(EnrollmentStorage(db).list_courses())
    session = registry.add(StagingSession(data.rows, catalog, drop_sample_rows=data.drop_sample_rows))
    return _session_out(session)


@router.get("/staging/{session_id}", response_model=StagingSessionOut)
async def get_staging_session(
    session_id: str,
    registry: StagingRegistry = Depends(get_staging_registry),
):
    return _session_out(_session_or_404(registry, session_id))


@router.patch("/staging/{session_id}/rows/{index}", response_model=RowEditResult)
async def edit_staged_row(
    session_id: str,
    index: int,
    data: RowEdit,
    registry: StagingRegistry = Depends(get_staging_registry),
):
    """Change one field of a staged row and re-validate it"""
    session = _session_or_404(registry, session_id)
    try:
        session.edit(index, data.field, data.value)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except FieldValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return RowEditResult(row=session.get(index), readiness=session.readiness())


@router.post("/staging/{session_id}/commit", response_model=ImportOutcome)
async def commit_staging_session(
    session_id: str,
    force: bool = Query(False, description="Commit even if some rows still have field errors"),
    db: Session = Depends(get_db),
    registry: StagingRegistry = Depends(get_staging_registry),
):
    """Commit the batch; the staging session is closed afterwards"""
    session = _session_or_404(registry, session_id)
    readiness = session.readiness()
    if readiness.error_count and not force:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{readiness.error_count} row(s) still have validation errors"
        )

    outcome = ImportService(db).commit_session(session)
    registry.discard(session_id)
    return outcome


@router.delete("/staging/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_staging_session(
    session_id: str,
    registry: StagingRegistry = Depends(get_staging_registry),
):
    if not registry.discard(session_id):
        raise HTTPException(status_code=404, detail="Staging session not found")
