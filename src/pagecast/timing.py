from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass(slots=True)
class AttemptBudget:
    """Counts consecutive fruitless attempts down from ``limit``."""

    limit: int
    remaining: int = field(init=False)

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"attempt limit must be positive, got {self.limit}")
        self.remaining = self.limit

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def spend(self) -> bool:
        """Use one attempt; return False once the budget is gone."""
        if self.remaining > 0:
            self.remaining -= 1
        return not self.exhausted

    def reset(self) -> None:
        self.remaining = self.limit


class Ticker:
    """Fixed-period pacing that can be interrupted from another thread."""

    def __init__(self, period_s: float):
        if period_s < 0:
            raise ValueError(f"period must be non-negative, got {period_s}")
        self.period_s = period_s
        self._stopped = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def wait(self) -> bool:
        """Sleep one period. Returns False if the ticker was stopped."""
        return not self._stopped.wait(self.period_s)

    def stop(self) -> None:
        self._stopped.set()
