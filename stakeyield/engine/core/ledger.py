# MIT License
# Copyright (c) 2025 Hashborn

"""
Delegation ledger.

One record per delegator: the provider it delegates to, the accumulator
high-water mark already converted into yield, and net yield settled but
not yet paid out.
"""
from typing import Optional
import logging

from ...protocol.types.common import (
    PreconditionError, DesyncError,
    ERR_NO_STAKE, ERR_NOT_INITIALIZED, ERR_NOT_DELEGATING, ERR_WITHDRAW_NOT_SYNCED,
)
from ...protocol.types.records import DelegatorState
from .accumulator import AccumulatorSource
from .clock import EpochClock
from .registry import ProviderRegistry
from .state import EngineState
from .yield_engine import YieldEngine, Settlement

logger = logging.getLogger(__name__)


class DelegationLedger:
    def __init__(self, clock: EpochClock, source: AccumulatorSource, registry: ProviderRegistry, yield_engine: YieldEngine):
        self.clock = clock
        self.source = source
        self.registry = registry
        self.yield_engine = yield_engine

    def require_initialized(self, state: EngineState, address: str) -> DelegatorState:
        rec = state.get_delegator(address)
        if rec is None or not rec.initialized:
            raise PreconditionError(ERR_NOT_INITIALIZED)
        return rec

    def require_synced(self, rec: DelegatorState):
        marker = self.source.withdrawal_requested_at(rec.address)
        if marker != rec.last_synced_withdraw_request:
            raise DesyncError(ERR_WITHDRAW_NOT_SYNCED)

    def compute(self, state: EngineState, rec: DelegatorState) -> Settlement:
        """Settlement of the window since the last commit, without applying it."""
        value, _ = self.source.accumulated(rec.address)
        now = self.clock.now()
        window = max(0, now - rec.last_settled_at)
        if rec.delegated_to is None:
            eligible = 0
        else:
            eligible = self.registry.eligible_seconds(state, rec.delegated_to, rec.last_settled_at, now)
        return self.yield_engine.settle(rec.processed_accumulator, value, eligible, window, rec.delegated_amount)

    def settle(self, state: EngineState, rec: DelegatorState) -> Settlement:
        """
        Commits accrued yield into the record.

        The provider fee is credited to the current provider's delegation
        reward balance; the delegator's net share becomes pending yield.
        """
        settlement = self.compute(state, rec)
        if settlement.provider_fee > 0:
            prov = state.get_or_create_provider(rec.delegated_to, self.clock.current_epoch())
            prov.delegation_reward_balance += settlement.provider_fee
            state.set_provider(prov)

        rec.pending_yield += settlement.delegator_net
        rec.processed_accumulator = settlement.accumulator_to
        rec.last_settled_at = self.clock.now()
        state.set_delegator(rec)

        if settlement.gross_yield:
            logger.debug(
                f"Settled {rec.address}: delta={settlement.delta}, gross={settlement.gross_yield}, "
                f"fee={settlement.provider_fee} to {rec.delegated_to}"
            )
        return settlement

    def delegate(self, state: EngineState, address: str, provider: str) -> DelegatorState:
        value, raw = self.source.accumulated(address)
        if raw == 0:
            raise PreconditionError(ERR_NO_STAKE)
        self.registry.require_eligible(state, provider)

        epoch = self.clock.current_epoch()
        rec = state.get_or_create_delegator(address)
        if rec.initialized:
            self.settle(state, rec)
        else:
            # First contact: accrual starts now, nothing retroactive.
            rec.processed_accumulator = value
            rec.last_settled_at = self.clock.now()
            rec.initialized = True

        if rec.delegated_to is not None:
            self.registry.record_delegation_change(state, rec.delegated_to, -rec.delegated_amount, epoch)
        self.registry.record_delegation_change(state, provider, raw, epoch)

        previous = rec.delegated_to
        rec.delegated_to = provider
        rec.delegated_amount = raw
        rec.last_synced_withdraw_request = self.source.withdrawal_requested_at(address)
        state.set_delegator(rec)

        if previous and previous != provider:
            logger.info(f"{address} moved delegation of {raw} from {previous} to {provider}")
        else:
            logger.info(f"{address} delegated {raw} to {provider}")
        return rec

    def undelegate(self, state: EngineState, address: str) -> DelegatorState:
        rec = self.require_initialized(state, address)
        if rec.delegated_to is None:
            raise PreconditionError(ERR_NOT_DELEGATING)

        self.settle(state, rec)
        self.registry.record_delegation_change(state, rec.delegated_to, -rec.delegated_amount, self.clock.current_epoch())
        logger.info(f"{address} undelegated {rec.delegated_amount} from {rec.delegated_to}")

        rec.delegated_to = None
        rec.delegated_amount = 0
        state.set_delegator(rec)
        return rec

    def take_yield(self, state: EngineState, address: str) -> int:
        """Settles and zeroes the delegator's pending yield; returns the payout."""
        rec = self.require_initialized(state, address)
        self.require_synced(rec)
        self.settle(state, rec)

        amount = rec.pending_yield
        rec.pending_yield = 0
        rec.total_yield_claimed += amount
        state.set_delegator(rec)
        return amount

    def sync_withdraw_request(self, state: EngineState, address: str) -> Optional[int]:
        rec = state.get_or_create_delegator(address)
        rec.last_synced_withdraw_request = self.source.withdrawal_requested_at(address)
        state.set_delegator(rec)
        return rec.last_synced_withdraw_request

    def reset_account(self, state: EngineState, address: str) -> int:
        """
        Detaches the address from the engine.

        Unpaid pending yield is forfeited. Returns the forfeited amount.
        """
        rec = state.get_delegator(address)
        if rec is None:
            return 0
        if rec.delegated_to is not None:
            self.registry.record_delegation_change(state, rec.delegated_to, -rec.delegated_amount, self.clock.current_epoch())
        forfeited = rec.pending_yield
        if forfeited:
            logger.warning(f"Reset of {address} forfeits {forfeited} pending yield")
        state.delete_delegator(address)
        return forfeited

    def estimate_yield(self, state: EngineState, address: str) -> int:
        rec = state.get_delegator(address)
        if rec is None or not rec.initialized:
            return 0
        return rec.pending_yield + self.compute(state, rec).delegator_net
