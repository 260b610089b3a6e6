# enrollhub/services/staging.py - Preview/edit session for an import batch
import logging
import threading
import uuid
from typing import Any, Dict, Iterable, List, Optional

from enrollhub.core.config import settings
from enrollhub.core.errors import FieldValidationError
from enrollhub.schemas.enrollment_row import (
    EnrollmentRow,
    FieldError,
    RawRow,
    StagedRow,
    StagingReadiness,
)
from enrollhub.schemas.enums import TEMPLATE_COLUMNS
from enrollhub.services.normalizer import CourseCatalog, normalize

logger = logging.getLogger(__name__)


def is_sample_row(raw: RawRow) -> bool:
    name = raw.get("full_name")
    return isinstance(name, str) and settings.SAMPLE_ROW_MARKER in name


class StagingSession:
    """
    Holds one parsed batch while an operator reviews and corrects it.

    Each row keeps its raw payload; edits change the raw payload and the row
    is normalized again from scratch, so validation stays a pure function of
    (raw row, course catalog).
    """

    def __init__(self, raw_rows: Iterable[RawRow], catalog: CourseCatalog, drop_sample_rows: bool = True):
        self.id = str(uuid.uuid4())
        self.catalog = catalog
        self.dropped_sample_rows = 0
        self._rows: List[StagedRow] = []

        for raw in raw_rows:
            if drop_sample_rows and is_sample_row(raw):
                self.dropped_sample_rows += 1
                continue
            index = len(self._rows)
            self._rows.append(self._stage(index, dict(raw)))

        logger.info(
            f"Staging session {self.id}: {len(self._rows)} rows "
            f"({self.dropped_sample_rows} sample rows dropped)"
        )

    def _stage(self, index: int, raw: RawRow) -> StagedRow:
        row, errors = normalize(raw, self.catalog, row_number=index + 1)
        return StagedRow(index=index, raw=raw, row=row, errors=errors)

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def rows(self) -> List[StagedRow]:
        return list(self._rows)

    def get(self, index: int) -> StagedRow:
        if index < 0 or index >= len(self._rows):
            raise IndexError(f"Row index {index} out of range (0..{len(self._rows) - 1})")
        return self._rows[index]

    def edit(self, index: int, field: str, value: Any) -> List[FieldError]:
        """
        Set one field of a row and re-validate that row.

        Raises:
            IndexError: If the row does not exist
            FieldValidationError: If field is not a template column
        """
        if field not in TEMPLATE_COLUMNS:
            raise FieldValidationError(field, f'Unknown field "{field}"', row_number=index + 1)
        staged = self.get(index)
        raw = dict(staged.raw)
        raw[field] = value
        self._rows[index] = self._stage(index, raw)
        return self._rows[index].errors

    def revalidate(self, index: int) -> List[FieldError]:
        staged = self.get(index)
        self._rows[index] = self._stage(index, staged.raw)
        return self._rows[index].errors

    def revalidate_all(self, catalog: Optional[CourseCatalog] = None) -> StagingReadiness:
        """Re-run validation for every row, optionally against fresh reference data"""
        if catalog is not None:
            self.catalog = catalog
        for staged in list(self._rows):
            self._rows[staged.index] = self._stage(staged.index, staged.raw)
        return self.readiness()

    def readiness(self) -> StagingReadiness:
        error_count = sum(1 for staged in self._rows if staged.errors)
        return StagingReadiness(
            total=len(self._rows),
            error_count=error_count,
            ready_count=len(self._rows) - error_count,
        )

    @property
    def is_ready(self) -> bool:
        return self.readiness().error_count == 0

    def enrollment_rows(self) -> List[EnrollmentRow]:
        return [staged.row for staged in self._rows]

    def raw_rows(self) -> List[RawRow]:
        return [staged.raw for staged in self._rows]


class StagingRegistry:
    """In-process handles for open staging sessions"""

    def __init__(self):
        self._sessions: Dict[str, StagingSession] = {}
        self._lock = threading.Lock()

    def add(self, session: StagingSession) -> StagingSession:
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> Optional[StagingSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def discard(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


staging_registry = StagingRegistry()
