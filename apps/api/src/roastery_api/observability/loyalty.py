from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    rewards: Dict[str, int]
    grades: Dict[str, int]
    bulk: Dict[str, Dict[str, int]]

    def as_dict(self) -> Dict[str, object]:
        return {
            "rewards": dict(self.rewards),
            "grades": dict(self.grades),
            "bulk": {key: dict(value) for key, value in self.bulk.items()},
        }


class LoyaltyObservabilityStore:
    """Collect point/grade pipeline counters for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._rewards: Dict[str, int] = defaultdict(int)
        self._grades: Dict[str, int] = defaultdict(int)
        self._bulk: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    def record_reward(self, outcome: str, *, points: int = 0) -> None:
        with self._lock:
            self._rewards[outcome] += 1
            if points:
                self._rewards["points_issued"] += points

    def record_grade_reconciliation(self, outcome: str, *, grade: str | None = None) -> None:
        with self._lock:
            self._grades[outcome] += 1
            if grade:
                self._grades[f"grade:{grade}"] += 1

    def record_bulk_item(self, operation: str, outcome: str) -> None:
        with self._lock:
            self._bulk[operation][outcome] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            rewards = dict(self._rewards)
            grades = dict(self._grades)
            bulk = {key: dict(value) for key, value in self._bulk.items()}
        return LoyaltySnapshot(rewards=rewards, grades=grades, bulk=bulk)

    def reset(self) -> None:
        with self._lock:
            self._rewards.clear()
            self._grades.clear()
            self._bulk.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
