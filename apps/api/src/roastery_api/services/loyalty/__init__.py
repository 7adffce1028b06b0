"""Loyalty service exports."""

from .grades import (  # noqa: F401
    GradeReconciler,
    GradeReconciliation,
    GradeThresholds,
    grade_for_spend,
)
from .ledger import (  # noqa: F401
    GrantAllReport,
    GrantFailure,
    LedgerAppendResult,
    PointHistoryPage,
    PointLedger,
)
from .rewards import (  # noqa: F401
    RewardIssuance,
    RewardIssuer,
    ensure_total_consistent,
    purchase_reward_amount,
    purchase_reward_key,
)
