# MIT License
# Copyright (c) 2025 Hashborn

"""Bonus grant table: one additive slot per (provider, epoch)."""
from bisect import insort
import logging

from ...protocol.types.common import (
    PreconditionError, ERR_ZERO_AMOUNT, ERR_EPOCH_CLAIMED,
)
from .state import EngineState

logger = logging.getLogger(__name__)


class BonusGrantTable:

    def grant(self, state: EngineState, provider: str, epoch: int, amount: int, current_epoch: int) -> int:
        """
        Adds `amount` to the (provider, epoch) slot.

        Epochs the provider has already claimed through are closed.

        Returns:
            New slot total
        """
        if amount <= 0:
            raise PreconditionError(ERR_ZERO_AMOUNT)
        if epoch < 0:
            raise PreconditionError("Epoch must not be negative.")

        prov = state.get_or_create_provider(provider, current_epoch)
        if prov.last_claimed_grant_epoch is not None and epoch <= prov.last_claimed_grant_epoch:
            raise PreconditionError(ERR_EPOCH_CLAIMED)

        total = state.get_grant(provider, epoch) + amount
        state.set_grant(provider, epoch, total)
        if epoch not in prov.pending_grant_epochs:
            insort(prov.pending_grant_epochs, epoch)
        state.set_provider(prov)
        logger.info(f"Granted {amount} to {provider} for epoch {epoch} (slot total {total})")
        return total

    def claimable(self, state: EngineState, provider: str, current_epoch: int) -> int:
        prov = state.get_provider(provider)
        if prov is None:
            return 0
        return sum(
            state.get_grant(provider, e)
            for e in prov.pending_grant_epochs
            if e <= current_epoch
        )

    def take(self, state: EngineState, provider: str, current_epoch: int) -> int:
        """Removes every grant for epochs <= current_epoch and returns their sum."""
        prov = state.get_provider(provider)
        if prov is None:
            return 0

        total = 0
        remaining = []
        for e in prov.pending_grant_epochs:
            if e <= current_epoch:
                total += state.get_grant(provider, e)
                state.delete_grant(provider, e)
            else:
                remaining.append(e)
        prov.pending_grant_epochs = remaining
        prov.last_claimed_grant_epoch = current_epoch
        prov.bonus_rewards_claimed += total
        state.set_provider(prov)
        return total
