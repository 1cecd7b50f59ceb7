# MIT License
# Copyright (c) 2025 Hashborn

import time
from typing import Callable, Optional, Tuple


class EpochClock:
    """
    Derives discrete epoch indices from wall-clock time.

    Epoch `e` covers [epoch_start + e * epoch_length, epoch_start + (e + 1) * epoch_length).
    """

    def __init__(self, epoch_length: int, epoch_start: int = 0, time_fn: Optional[Callable[[], float]] = None):
        if epoch_length <= 0:
            raise ValueError("epoch_length must be positive")
        self.time_fn = time_fn or time.time
        self.epoch_length = epoch_length
        self.epoch_start = epoch_start or int(self.time_fn())

    def now(self) -> int:
        return int(self.time_fn())

    def epoch_at(self, timestamp: int) -> int:
        if timestamp <= self.epoch_start:
            return 0
        return (timestamp - self.epoch_start) // self.epoch_length

    def current_epoch(self) -> int:
        return self.epoch_at(self.now())

    def epoch_bounds(self, epoch: int) -> Tuple[int, int]:
        """Returns [start, end) timestamps of an epoch."""
        start = self.epoch_start + epoch * self.epoch_length
        return start, start + self.epoch_length
