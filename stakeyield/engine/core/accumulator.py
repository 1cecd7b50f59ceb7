# MIT License
# Copyright (c) 2025 Hashborn

"""
Accumulator source: the locked-staking contract the engine reads from.

The engine treats `accumulated(account)` as ground truth and only ever
takes deltas between two readings of it.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
import logging
import threading
import time

from ...protocol.config.params import SECONDS_PER_DAY, DEFAULT_LOCK_DURATION
from .token import TokenLedger

logger = logging.getLogger(__name__)


class AccumulatorSource(ABC):

    @abstractmethod
    def accumulated(self, account: str) -> Tuple[int, int]:
        """Returns (time-weighted accumulated value, raw staked amount)."""
        ...

    @abstractmethod
    def withdrawal_requested_at(self, account: str) -> Optional[int]:
        ...

    @abstractmethod
    def stake(self, account: str, amount: int, lock_duration: int) -> None:
        ...

    @abstractmethod
    def request_withdraw(self, account: str) -> None:
        ...

    @abstractmethod
    def withdraw(self, account: str) -> int:
        ...


@dataclass
class StakeRecord:
    """
    Stake of one account in the locked staking source.

    Attributes:
        balance: Locked principal
        accumulated_seconds: Token-seconds accrued up to `since`
        since: Last time `accumulated_seconds` was brought up to date
        lock_duration: Notice period applied on withdraw request
        withdraw_requested_at: Time of the pending withdraw request, if any
        unlock_at: Earliest time the pending withdrawal can execute
    """
    balance: int = 0
    accumulated_seconds: int = 0
    since: int = 0
    lock_duration: int = DEFAULT_LOCK_DURATION
    withdraw_requested_at: Optional[int] = None
    unlock_at: Optional[int] = None


class LockedStakingSource(AccumulatorSource):
    """
    In-memory locked staking with a notice period.

    The accumulator grows by `balance` units per day of locked time and
    is frozen from the moment a withdrawal is requested.
    """

    def __init__(self, token: TokenLedger, address: str = "staking", time_fn: Optional[Callable[[], float]] = None):
        self.token = token
        self.address = address
        self.time_fn = time_fn or time.time
        self.stakes: Dict[str, StakeRecord] = {}
        self._lock = threading.Lock()

    def _now(self) -> int:
        return int(self.time_fn())

    def _accrue(self, record: StakeRecord, now: int) -> None:
        if record.withdraw_requested_at is None and now > record.since:
            record.accumulated_seconds += record.balance * (now - record.since)
        record.since = now

    def accumulated(self, account: str) -> Tuple[int, int]:
        record = self.stakes.get(account)
        if record is None:
            return 0, 0
        total = record.accumulated_seconds
        now = self._now()
        if record.withdraw_requested_at is None and now > record.since:
            total += record.balance * (now - record.since)
        return total // SECONDS_PER_DAY, record.balance

    def estimate_accumulated(self, account: str) -> Tuple[int, int]:
        return self.accumulated(account)

    def withdrawal_requested_at(self, account: str) -> Optional[int]:
        record = self.stakes.get(account)
        return record.withdraw_requested_at if record else None

    def stake(self, account: str, amount: int, lock_duration: int = DEFAULT_LOCK_DURATION) -> None:
        if amount <= 0:
            raise ValueError("Stake amount must be greater than zero")
        if lock_duration <= 0:
            raise ValueError("Lock duration must be greater than zero")
        with self._lock:
            record = self.stakes.get(account)
            if record is None:
                record = StakeRecord(since=self._now())
            elif record.withdraw_requested_at is not None:
                raise ValueError("Cannot stake while a withdrawal is pending")

            if not self.token.transfer_from(self.address, account, self.address, amount):
                raise ValueError(f"Token transfer of {amount} from {account} failed")

            self._accrue(record, self._now())
            record.balance += amount
            record.lock_duration = lock_duration
            self.stakes[account] = record
        logger.info(f"Staked {amount} for {account} (notice {lock_duration}s)")

    def request_withdraw(self, account: str) -> None:
        with self._lock:
            record = self.stakes.get(account)
            if record is None or record.balance == 0:
                raise ValueError(f"No stake for {account}")
            if record.withdraw_requested_at is not None:
                raise ValueError("Withdrawal already requested")
            now = self._now()
            self._accrue(record, now)
            record.withdraw_requested_at = now
            record.unlock_at = now + record.lock_duration
        logger.info(f"Withdraw requested by {account}, unlocks at {record.unlock_at}")

    def withdraw(self, account: str) -> int:
        with self._lock:
            record = self.stakes.get(account)
            if record is None or record.withdraw_requested_at is None:
                raise ValueError("Withdrawal was not requested")
            now = self._now()
            if now < record.unlock_at:
                raise ValueError(f"Stake is locked until {record.unlock_at}")

            amount = record.balance
            if not self.token.transfer(self.address, account, amount):
                raise ValueError(f"Token transfer of {amount} to {account} failed")

            record.balance = 0
            record.since = now
            record.withdraw_requested_at = None
            record.unlock_at = None
        logger.info(f"Withdrew {amount} to {account}")
        return amount
