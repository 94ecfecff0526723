"""
Membership Ledger Service - Contracts Package

data_contract.py: Pydantic schemas, test data factory, request builders
"""

from .data_contract import (
    # Enums
    AllocationTypeContract,
    MembershipStatusContract,
    DeactivationReasonContract,
    ActorRoleContract,
    AlertCodeContract,
    # Request Contracts
    AssignMembershipRequestContract,
    AdjustUsageRequestContract,
    ToggleOverrideRequestContract,
    SetStatusRequestContract,
    SendReminderRequestContract,
    # Response Contracts
    MembershipSummaryContract,
    AdjustmentRecordContract,
    AdjustUsageResponseContract,
    PlayerAdjustmentHistoryContract,
    ErrorResponseContract,
    # Factory
    MembershipLedgerTestDataFactory,
)

__all__ = [
    "AllocationTypeContract",
    "MembershipStatusContract",
    "DeactivationReasonContract",
    "ActorRoleContract",
    "AlertCodeContract",
    "AssignMembershipRequestContract",
    "AdjustUsageRequestContract",
    "ToggleOverrideRequestContract",
    "SetStatusRequestContract",
    "SendReminderRequestContract",
    "MembershipSummaryContract",
    "AdjustmentRecordContract",
    "AdjustUsageResponseContract",
    "PlayerAdjustmentHistoryContract",
    "ErrorResponseContract",
    "MembershipLedgerTestDataFactory",
]
