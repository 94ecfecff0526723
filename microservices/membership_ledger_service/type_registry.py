"""
Membership Type Registry

Read-only catalog of allocation policies. Type definitions are maintained
by administrative tooling; the ledger only reads them.
"""

import logging
from typing import List

from .models import MembershipType
from .protocols import MembershipLedgerRepositoryProtocol, MembershipTypeNotFoundError

logger = logging.getLogger(__name__)


class MembershipTypeRegistry:
    """Catalog of membership types backed by the ledger repository"""

    def __init__(self, repository: MembershipLedgerRepositoryProtocol):
        self.repository = repository

    async def list_active_types(self) -> List[MembershipType]:
        """
        List active membership types.

        Never raises: callers degrade to "no types available" when the
        store cannot be read.
        """
        try:
            types = await self.repository.list_membership_types(active_only=True)
        except Exception as e:
            logger.warning(f"Membership types unavailable, returning empty catalog: {e}")
            return []
        return [t for t in types if t.is_active]

    async def get_active_type(self, type_id: str) -> MembershipType:
        """
        Resolve an active membership type.

        Raises:
            MembershipTypeNotFoundError: Type is unknown or inactive
            StoreUnavailable: The store could not be read
        """
        membership_type = await self.repository.get_membership_type(type_id)
        if membership_type is None:
            raise MembershipTypeNotFoundError(f"Membership type not found: {type_id}")
        if not membership_type.is_active:
            raise MembershipTypeNotFoundError(f"Membership type is not active: {type_id}")
        return membership_type


__all__ = ["MembershipTypeRegistry"]
