# enrollhub/services/identity_resolver.py - Referrer name -> Referral
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional
import uuid

from enrollhub.core.errors import EnrollmentImportError
from enrollhub.models import Referral
from enrollhub.services.code_allocator import SequentialCodeAllocator
from enrollhub.services.storage import EnrollmentStorage

logger = logging.getLogger(__name__)


@dataclass
class ReferralResolution:
    referral_id: Optional[uuid.UUID]
    created: bool = False
    code: Optional[str] = None


class ReferralResolver:
    """Finds a referral by case-insensitive name or creates one with a fresh code"""

    def __init__(self, storage: EnrollmentStorage, allocator: SequentialCodeAllocator):
        self.storage = storage
        self.allocator = allocator

    def resolve(self, name: Optional[str]) -> ReferralResolution:
        """
        Resolve a referrer name.

        Args:
            name: Referrer name from the import row; blank means direct enrollment

        Returns:
            ReferralResolution, with referral_id None for direct enrollments

        Raises:
            WriteError: If the lookup or the insert of a new referral fails
        """
        if not name or not name.strip():
            return ReferralResolution(referral_id=None)

        name = " ".join(name.split())
        existing = self.storage.find_referral_by_name(name)
        if existing:
            return ReferralResolution(referral_id=existing.id, code=existing.code)

        referral = Referral(
            id=uuid.uuid4(),
            code=self.allocator.next_referral_code(),
            full_name=name,
            notes=f"Auto-created during student import on {date.today().isoformat()}",
        )
        try:
            self.storage.insert_referral(referral)
        except EnrollmentImportError:
            self.allocator.release(referral.code)
            raise
        logger.info(f"Created referral {referral.code} for '{name}'")
        return ReferralResolution(referral_id=referral.id, created=True, code=referral.code)
