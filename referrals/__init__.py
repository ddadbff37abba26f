"""
Referral Tracking Backend

This package provides:
- Idempotent referral code generation and lookup
- Exactly-once redemption with a double-sided coin award
- An append-only referral ledger for auditing
- Admin-tunable award amounts and validated admin edits
"""

from .models import (
    Account,
    ReferralEntry,
    RedemptionResult,
    RewardSettings,
)
from .service import ReferralService

__all__ = [
    "Account",
    "ReferralEntry",
    "RedemptionResult",
    "RewardSettings",
    "ReferralService",
]
