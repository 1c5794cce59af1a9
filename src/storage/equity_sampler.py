"""
Session equity sampler.

Keeps the last N equity readings (one per account update) for the coarse
equity curve. No smoothing; oldest sample drops first.
"""
from collections import deque
from typing import Deque, Tuple

from src.constants import EQUITY_SAMPLE_CAP
from src.domain.models import AccountState


class SessionEquitySampler:

    def __init__(self, cap: int = EQUITY_SAMPLE_CAP):
        if cap < 1:
            raise ValueError("cap must be >= 1")
        self._samples: Deque[float] = deque(maxlen=cap)

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def cap(self) -> int:
        return self._samples.maxlen

    @property
    def samples(self) -> Tuple[float, ...]:
        return tuple(self._samples)

    def sample(self, account: AccountState) -> float:
        """Append equity, falling back to balance, then 0."""
        value = account.equity or account.balance or 0.0
        self._samples.append(value)
        return value

    def clear(self) -> None:
        self._samples.clear()
