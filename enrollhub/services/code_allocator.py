# enrollhub/services/code_allocator.py - Year-scoped, zero-padded sequential codes
import logging
import re
import threading
import time
from datetime import date
from typing import Callable, Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from enrollhub.core.config import settings
from enrollhub.core.errors import AllocationError

logger = logging.getLogger(__name__)

# One lock per scope prefix for every allocator in this process
_scope_locks: Dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def _lock_for(prefix: str) -> threading.Lock:
    with _registry_lock:
        return _scope_locks.setdefault(prefix, threading.Lock())


def highest_suffix(codes: Iterable[str], prefix: str) -> int:
    """Largest numeric suffix among codes carrying prefix; 0 when there is none"""
    highest = 0
    for code in codes:
        if not code or not code.startswith(prefix):
            continue
        suffix = code[len(prefix):]
        if re.fullmatch(r'\d+', suffix):
            highest = max(highest, int(suffix))
    return highest


class SequentialCodeAllocator:
    """
    Allocates codes like ATZ-2026-007 and REF-012 by scanning existing codes.

    Read-max-then-increment is only safe for a single writer. Rows are
    committed sequentially, a per-scope lock serializes allocators inside one
    process, and the allocator remembers the last number it issued so that
    back-to-back allocations keep increasing before their rows are written.
    Several processes writing at once still need a database sequence.
    """

    def __init__(
        self,
        list_codes: Callable[[str], Iterable[str]],
        today: Callable[[], date] = date.today,
        pad_width: Optional[int] = None,
    ):
        self._list_codes = list_codes
        self._today = today
        self._pad_width = pad_width or settings.CODE_PAD_WIDTH
        self._issued: Dict[str, int] = {}

    def student_prefix(self, year: Optional[int] = None) -> str:
        return f"{settings.STUDENT_CODE_PREFIX}-{year or self._today().year}-"

    def referral_prefix(self) -> str:
        return f"{settings.REFERRAL_CODE_PREFIX}-"

    def next_student_code(self, year: Optional[int] = None) -> str:
        return self.allocate(self.student_prefix(year))

    def next_referral_code(self) -> str:
        return self.allocate(self.referral_prefix())

    def allocate(self, prefix: str) -> str:
        """Next code in the scope; falls back to a timestamp code if the scan fails"""
        with _lock_for(prefix):
            try:
                number = self._next_number(prefix)
            except AllocationError as e:
                code = self._fallback(prefix)
                logger.warning(f"{e}; using fallback code {code}")
                return code
            self._issued[prefix] = number
            return f"{prefix}{number:0{self._pad_width}d}"

    def release(self, code: str) -> None:
        """Hand back the latest code of its scope after its row was rolled back"""
        for prefix, number in list(self._issued.items()):
            if code == f"{prefix}{number:0{self._pad_width}d}":
                with _lock_for(prefix):
                    self._issued[prefix] = number - 1
                return

    def _next_number(self, prefix: str) -> int:
        try:
            codes = list(self._list_codes(prefix))
        except SQLAlchemyError as e:
            raise AllocationError(prefix, str(e))
        return max(highest_suffix(codes, prefix), self._issued.get(prefix, 0)) + 1

    @staticmethod
    def _fallback(prefix: str) -> str:
        # Non-numeric marker keeps fallback codes out of later max() scans
        return f"{prefix}T{int(time.time() * 1000)}"
