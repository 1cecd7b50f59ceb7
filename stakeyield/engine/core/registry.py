# MIT License
# Copyright (c) 2025 Hashborn

"""
Provider registry.

Whitelist membership, the provider's own stake and yield, and the running
total of principal delegated to each provider.
"""
from bisect import bisect_right
from typing import List
import logging

from ...protocol.config.params import EngineConfig
from ...protocol.types.common import (
    PreconditionError, AuthorizationError,
    ERR_ONLY_OWNER, ERR_ONLY_PROVIDER, ERR_NOT_WHITELISTED, ERR_PROVIDER_NO_STAKE,
    ERR_WHITELIST_DISABLED, ERR_UNKNOWN_PROVIDER,
)
from ...protocol.types.records import ProviderState, WhitelistChange, DelegationCheckpoint
from .accumulator import AccumulatorSource
from .clock import EpochClock
from .state import EngineState
from .yield_engine import YieldEngine

logger = logging.getLogger(__name__)

WHITELIST_COUNT_KEY = "whitelisted_count"


class ProviderRegistry:
    def __init__(self, config: EngineConfig, clock: EpochClock, source: AccumulatorSource, yield_engine: YieldEngine):
        self.config = config
        self.clock = clock
        self.source = source
        self.yield_engine = yield_engine

    # =========================================================================
    # AUTHORIZATION
    # =========================================================================

    def require_owner(self, caller: str):
        if caller != self.config.owner:
            raise AuthorizationError(ERR_ONLY_OWNER)

    def require_provider(self, state: EngineState, caller: str) -> ProviderState:
        """Caller must be an eligible provider (the owner in single-provider mode)."""
        if not self.config.whitelist_enabled:
            if caller != self.config.owner:
                raise AuthorizationError(ERR_ONLY_PROVIDER)
            return state.get_or_create_provider(caller, self.clock.current_epoch())

        prov = state.get_provider(caller)
        if prov is None or not prov.is_whitelisted:
            raise AuthorizationError(ERR_ONLY_PROVIDER)
        return prov

    def get_existing(self, state: EngineState, address: str) -> ProviderState:
        prov = state.get_provider(address)
        if prov is None:
            raise PreconditionError(ERR_UNKNOWN_PROVIDER)
        return prov

    # =========================================================================
    # WHITELIST
    # =========================================================================

    def is_whitelisted(self, state: EngineState, address: str) -> bool:
        if not self.config.whitelist_enabled:
            return address == self.config.owner
        prov = state.get_provider(address)
        return prov is not None and prov.is_whitelisted

    def whitelisted_count(self, state: EngineState) -> int:
        if not self.config.whitelist_enabled:
            return 1
        return state.get_meta(WHITELIST_COUNT_KEY) or 0

    def require_eligible(self, state: EngineState, address: str):
        if not self.is_whitelisted(state, address):
            raise PreconditionError(ERR_NOT_WHITELISTED)

    def set_whitelisted(self, state: EngineState, address: str, whitelisted: bool) -> bool:
        """
        Adds or removes a provider. Idempotent.

        The new state applies to the whole current epoch. A second toggle
        within the same epoch overwrites the first.

        Returns:
            True if the membership changed
        """
        if not self.config.whitelist_enabled:
            raise PreconditionError(ERR_WHITELIST_DISABLED)

        epoch = self.clock.current_epoch()
        prov = state.get_or_create_provider(address, epoch)
        if prov.is_whitelisted == whitelisted:
            return False

        if prov.whitelist_history and prov.whitelist_history[-1].epoch == epoch:
            prov.whitelist_history[-1].whitelisted = whitelisted
        else:
            prov.whitelist_history.append(WhitelistChange(epoch=epoch, whitelisted=whitelisted))
        prov.is_whitelisted = whitelisted

        # Close the delegation total for this epoch so later reads see the freeze point.
        self.checkpoint_delegation(prov, epoch)
        state.set_provider(prov)
        state.set_meta(WHITELIST_COUNT_KEY, self.whitelisted_count(state) + (1 if whitelisted else -1))
        logger.info(f"Provider {address} {'added to' if whitelisted else 'removed from'} whitelist at epoch {epoch}")
        return True

    def eligible_seconds(self, state: EngineState, address: str, start: int, end: int) -> int:
        """
        Seconds of [start, end) during which the provider was whitelisted.

        Whitelist state is applied per whole epoch.
        """
        if end <= start:
            return 0
        if not self.config.whitelist_enabled:
            return end - start if address == self.config.owner else 0

        prov = state.get_provider(address)
        if prov is None:
            return 0

        total = 0
        history = prov.whitelist_history
        for i, change in enumerate(history):
            if not change.whitelisted:
                continue
            seg_start = self.clock.epoch_bounds(change.epoch)[0]
            if change.epoch == 0:
                seg_start = min(seg_start, start)
            if i + 1 < len(history):
                seg_end = self.clock.epoch_bounds(history[i + 1].epoch)[0]
            else:
                seg_end = end
            overlap = min(seg_end, end) - max(seg_start, start)
            if overlap > 0:
                total += overlap
        return total

    # =========================================================================
    # DELEGATION TOTALS
    # =========================================================================

    def checkpoint_delegation(self, prov: ProviderState, epoch: int):
        checkpoints = prov.delegation_checkpoints
        if checkpoints and checkpoints[-1].epoch == epoch:
            checkpoints[-1].total = prov.total_delegated_snapshot
        else:
            checkpoints.append(DelegationCheckpoint(epoch=epoch, total=prov.total_delegated_snapshot))
        prov.last_delegation_sync_epoch = epoch

    def record_delegation_change(self, state: EngineState, address: str, amount: int, epoch: int):
        """Adds (or with a negative amount removes) principal attributed to a provider."""
        prov = state.get_or_create_provider(address, epoch)
        prov.total_delegated_snapshot = max(0, prov.total_delegated_snapshot + amount)
        self.checkpoint_delegation(prov, epoch)
        state.set_provider(prov)

    def calculate_total_delegation(self, state: EngineState, epoch: int, address: str) -> int:
        """Total principal delegated to `address` as of `epoch`."""
        prov = state.get_provider(address)
        if prov is None or not prov.delegation_checkpoints:
            return 0
        epochs: List[int] = [c.epoch for c in prov.delegation_checkpoints]
        idx = bisect_right(epochs, epoch)
        if idx == 0:
            return 0
        return prov.delegation_checkpoints[idx - 1].total

    # =========================================================================
    # OWN STAKE & YIELD
    # =========================================================================

    def record_stake(self, state: EngineState, prov: ProviderState):
        """Starts tracking own yield from the provider's current accumulator value."""
        if not prov.has_stake:
            value, _ = self.source.accumulated(prov.address)
            prov.own_stake_snapshot = value
            prov.has_stake = True
        state.set_provider(prov)

    def estimate_provider_yield(self, state: EngineState, address: str) -> int:
        prov = state.get_provider(address)
        if prov is None or not prov.has_stake:
            return 0
        value, _ = self.source.accumulated(address)
        return prov.own_yield_pending + self.yield_engine.provider_yield(prov.own_stake_snapshot, value)

    def checkpoint_own_yield(self, state: EngineState, prov: ProviderState) -> int:
        """Moves accrued own yield into `own_yield_pending` and advances the snapshot."""
        if not prov.has_stake:
            raise PreconditionError(ERR_PROVIDER_NO_STAKE)
        value, _ = self.source.accumulated(prov.address)
        accrued = self.yield_engine.provider_yield(prov.own_stake_snapshot, value)
        prov.own_yield_pending += accrued
        prov.own_stake_snapshot = max(prov.own_stake_snapshot, value)
        state.set_provider(prov)
        return accrued

    def take_own_yield(self, state: EngineState, prov: ProviderState) -> int:
        """Checkpoints and zeroes the provider's claimable own yield."""
        self.checkpoint_own_yield(state, prov)
        amount = prov.own_yield_pending
        prov.own_yield_pending = 0
        prov.own_yield_processed += amount
        state.set_provider(prov)
        return amount
