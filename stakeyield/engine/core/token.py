# MIT License
# Copyright (c) 2025 Hashborn

"""
Fungible token ledger consumed by the engine.

The engine only needs transfer/allowance semantics; `InMemoryTokenLedger`
backs the local node and the test suite.
"""
from abc import ABC, abstractmethod
from typing import Dict, Tuple
import logging
import threading

logger = logging.getLogger(__name__)


class TokenLedger(ABC):

    @abstractmethod
    def balance_of(self, account: str) -> int:
        ...

    @abstractmethod
    def transfer(self, sender: str, to: str, amount: int) -> bool:
        """Moves `amount` from `sender` to `to`. Returns False if it cannot."""
        ...

    @abstractmethod
    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        """Moves `amount` from `owner` to `to` against `spender`'s allowance."""
        ...

    @abstractmethod
    def approve(self, owner: str, spender: str, amount: int) -> bool:
        ...

    @abstractmethod
    def allowance(self, owner: str, spender: str) -> int:
        ...


class InMemoryTokenLedger(TokenLedger):

    def __init__(self, symbol: str = "CHR"):
        self.symbol = symbol
        self.balances: Dict[str, int] = {}
        self.allowances: Dict[Tuple[str, str], int] = {}
        self.total_supply = 0
        self._lock = threading.Lock()

    def mint(self, account: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Cannot mint a negative amount")
        with self._lock:
            self.balances[account] = self.balances.get(account, 0) + amount
            self.total_supply += amount

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        with self._lock:
            return self._move(sender, to, amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        with self._lock:
            allowed = self.allowances.get((owner, spender), 0)
            if allowed < amount:
                logger.debug(f"Allowance too low: {owner} -> {spender} has {allowed}, need {amount}")
                return False
            if not self._move(owner, to, amount):
                return False
            self.allowances[(owner, spender)] = allowed - amount
            return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if amount < 0:
            return False
        with self._lock:
            self.allowances[(owner, spender)] = amount
        return True

    def increase_allowance(self, owner: str, spender: str, amount: int) -> bool:
        with self._lock:
            self.allowances[(owner, spender)] = self.allowances.get((owner, spender), 0) + amount
        return True

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def _move(self, sender: str, to: str, amount: int) -> bool:
        if amount < 0:
            return False
        balance = self.balances.get(sender, 0)
        if balance < amount:
            logger.debug(f"Insufficient balance: {sender} has {balance}, need {amount}")
            return False
        self.balances[sender] = balance - amount
        self.balances[to] = self.balances.get(to, 0) + amount
        return True
