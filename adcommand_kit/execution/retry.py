from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class FixCategory(str, Enum):
    BID_REQUIRED = "bid_required"
    ADVANTAGE_AUDIENCE = "advantage_audience"
    LOCALE_MISMATCH = "locale_mismatch"
    CREATIVE_URL = "creative_url"
    CAMPAIGN_ID_PLACEHOLDER = "campaign_id_placeholder"
    BUDGET_MISSING = "budget_missing"
    RATE_LIMIT = "rate_limit"


DEFAULT_MAX_ATTEMPTS: Dict[FixCategory, int] = {
    FixCategory.BID_REQUIRED: 2,
    FixCategory.ADVANTAGE_AUDIENCE: 2,
    FixCategory.LOCALE_MISMATCH: 1,
    FixCategory.CREATIVE_URL: 2,
    FixCategory.CAMPAIGN_ID_PLACEHOLDER: 1,
    FixCategory.BUDGET_MISSING: 1,
    FixCategory.RATE_LIMIT: 3,
}


@dataclass
class _CategoryState:
    applied: bool
    attempts: int
    max_attempts: int


class RetryStateMachine:
    """
    Per-run bookkeeping of auto-fixes: each fix category may be applied a bounded
    number of times. Once a category is spent, the fix is no longer offered.
    """

    def __init__(self, overrides: Optional[Dict[FixCategory, int]] = None):
        overrides = overrides or {}
        self._state: Dict[FixCategory, _CategoryState] = {
            c: _CategoryState(applied=False, attempts=0, max_attempts=overrides.get(c, DEFAULT_MAX_ATTEMPTS[c]))
            for c in FixCategory
        }

    def can_retry(self, category: FixCategory) -> bool:
        s = self._state[category]
        return s.attempts < s.max_attempts

    def mark_applied(self, category: FixCategory) -> bool:
        s = self._state[category]
        if s.attempts >= s.max_attempts:
            return False
        s.applied = True
        s.attempts += 1
        return True

    def was_applied(self, category: FixCategory) -> bool:
        return self._state[category].applied

    def applied_fixes(self) -> List[FixCategory]:
        return [c for c, s in self._state.items() if s.applied]

    def attempts(self, category: FixCategory) -> int:
        return self._state[category].attempts

    def total_attempts(self) -> int:
        return sum(s.attempts for s in self._state.values())

    def reset(self) -> None:
        for s in self._state.values():
            s.applied = False
            s.attempts = 0


class ToolFailureBudget:
    """Consecutive failures per tool name; a success clears that tool's count."""

    def __init__(self, ceiling: int = 3):
        self.ceiling = ceiling
        self._counts: Dict[str, int] = {}

    def record_failure(self, tool: str) -> int:
        self._counts[tool] = self._counts.get(tool, 0) + 1
        return self._counts[tool]

    def record_success(self, tool: str) -> None:
        self._counts[tool] = 0

    def count(self, tool: str) -> int:
        return self._counts.get(tool, 0)

    def exhausted(self, tool: str) -> bool:
        return self.count(tool) >= self.ceiling


def backoff_delay(base: float, attempt: int) -> float:
    return base * (2 ** max(0, attempt - 1))
