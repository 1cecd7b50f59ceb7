# MIT License
# Copyright (c) 2025 Hashborn

"""
Delegation engine: the public operations of the yield accounting system.

Every mutating call runs serialized on a clone of the state. Internal
balances are committed first; token transfers out of the reserve happen
only afterwards, and only once the reserve is known to cover all of them.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import threading

from ...protocol.config.params import EngineConfig, DEFAULT_LOCK_DURATION
from ...protocol.types.common import (
    OpType, ProtocolError, PreconditionError, AuthorizationError, InsufficientReserveError,
    ERR_ZERO_AMOUNT, ERR_INSUFFICIENT_RESERVE, ERR_BONUS_FUND_TRANSFER, ERR_TRANSFER_FAILED,
    ERR_ONLY_PROVIDER, ERR_PROVIDER_NO_STAKE,
)
from ...protocol.types.records import DelegatorState, ProviderState, StakeState
from ..observability.metrics import (
    operations_total, operations_rejected_total, yield_paid_total,
    provider_yield_paid_total, delegation_rewards_paid_total, bonus_granted_total,
)
from ..storage.db import StorageDB
from .accumulator import AccumulatorSource, LockedStakingSource
from .clock import EpochClock
from .events import EventBus, event_bus
from .grants import BonusGrantTable
from .ledger import DelegationLedger
from .registry import ProviderRegistry
from .state import EngineState
from .token import TokenLedger, InMemoryTokenLedger
from .yield_engine import YieldEngine

logger = logging.getLogger(__name__)

EPOCH_START_KEY = "epoch_start"


@dataclass
class Outcome:
    """What an operation produced, applied by `_commit`."""
    result: Any = None
    payouts: List[Tuple[str, int]] = field(default_factory=list)
    event: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class DelegationEngine:
    def __init__(self, config: EngineConfig, token: TokenLedger, source: AccumulatorSource,
                 db: Optional[StorageDB] = None, time_fn: Optional[Callable[[], float]] = None,
                 bus: Optional[EventBus] = None):
        self.config = config
        self.token = token
        self.source = source
        self.db = db or StorageDB(":memory:")
        self.clock = EpochClock(config.epoch_length_seconds, config.epoch_start, time_fn)
        self.yield_engine = YieldEngine(config.reward_rate, config.provider_fee_bps)
        self.registry = ProviderRegistry(config, self.clock, source, self.yield_engine)
        self.ledger = DelegationLedger(self.clock, source, self.registry, self.yield_engine)
        self.grants = BonusGrantTable()
        self.state = EngineState(self.db)
        self.events = bus or event_bus
        self._lock = threading.RLock()
        self._pin_epoch_start()

        logger.info(
            f"Engine initialized ({config.network_id}): fee={config.provider_fee_fraction:.1%}, "
            f"rate={config.reward_rate}, epoch={config.epoch_length_seconds}s, "
            f"whitelist={'on' if config.whitelist_enabled else 'off'}"
        )

    def _pin_epoch_start(self):
        """Epoch 0 is fixed by the first start on a DB and never moves afterwards."""
        stored = self.state.get_meta(EPOCH_START_KEY)
        if stored is None:
            tmp_state = self.state.clone()
            tmp_state.set_meta(EPOCH_START_KEY, self.clock.epoch_start)
            tmp_state.persist()
        elif self.config.epoch_start == 0:
            self.clock.epoch_start = stored
        elif stored != self.config.epoch_start:
            raise ValueError(f"epoch_start {self.config.epoch_start} differs from the stored epoch_start {stored}")

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _execute(self, op: OpType, caller: str, fn: Callable[[EngineState], Outcome]) -> Any:
        with self._lock:
            tmp_state = self.state.clone()
            try:
                outcome = fn(tmp_state)
                self._commit(op, caller, tmp_state, outcome)
            except ProtocolError as e:
                operations_rejected_total.labels(op=op.value, error=type(e).__name__).inc()
                logger.warning(f"{op.value} by {caller} rejected: {e}")
                raise
            return outcome.result

    def _commit(self, op: OpType, caller: str, tmp_state: EngineState, outcome: Outcome):
        engine_addr = self.config.engine_address
        total = sum(amount for _, amount in outcome.payouts)
        if total > self.token.balance_of(engine_addr):
            raise InsufficientReserveError(ERR_INSUFFICIENT_RESERVE)

        # 1. Apply internal state (only the records this operation wrote)
        tmp_state.persist()

        # 2. Move tokens
        for to, amount in outcome.payouts:
            if amount > 0 and not self.token.transfer(engine_addr, to, amount):
                # Unreachable while calls are serialized and the reserve was checked above
                raise InsufficientReserveError(ERR_TRANSFER_FAILED)

        # 3. Journal & notify
        epoch = self.clock.current_epoch()
        self.db.append_operation(op.value, caller, epoch, outcome.data)
        operations_total.labels(op=op.value).inc()
        if outcome.event:
            self.events.emit(outcome.event, caller=caller, epoch=epoch, **outcome.data)

    # =========================================================================
    # DELEGATOR OPERATIONS
    # =========================================================================

    def delegate(self, caller: str, provider: str) -> DelegatorState:
        def apply(state: EngineState) -> Outcome:
            previous = state.get_delegator(caller)
            previous_provider = previous.delegated_to if previous else None
            rec = self.ledger.delegate(state, caller, provider)
            return Outcome(
                result=rec.model_copy(),
                event="delegated",
                data={"provider": provider, "previous_provider": previous_provider, "amount": rec.delegated_amount},
            )
        return self._execute(OpType.DELEGATE, caller, apply)

    def undelegate(self, caller: str) -> DelegatorState:
        def apply(state: EngineState) -> Outcome:
            previous = state.get_delegator(caller)
            provider = previous.delegated_to if previous else None
            rec = self.ledger.undelegate(state, caller)
            return Outcome(result=rec.model_copy(), event="undelegated", data={"provider": provider})
        return self._execute(OpType.UNDELEGATE, caller, apply)

    def sync_withdraw_request(self, caller: str) -> Optional[int]:
        def apply(state: EngineState) -> Outcome:
            marker = self.ledger.sync_withdraw_request(state, caller)
            return Outcome(result=marker, event="withdraw_synced", data={"withdraw_requested_at": marker})
        return self._execute(OpType.SYNC_WITHDRAW_REQUEST, caller, apply)

    def reset_account(self, caller: str) -> int:
        def apply(state: EngineState) -> Outcome:
            forfeited = self.ledger.reset_account(state, caller)
            return Outcome(result=forfeited, event="account_reset", data={"forfeited": forfeited})
        return self._execute(OpType.RESET_ACCOUNT, caller, apply)

    def claim_yield(self, caller: str, address: Optional[str] = None) -> int:
        """
        Pays the accrued net yield of `address` (default: the caller).

        Anyone may trigger the claim; funds always go to `address`.
        """
        beneficiary = address or caller

        def apply(state: EngineState) -> Outcome:
            amount = self.ledger.take_yield(state, beneficiary)
            return Outcome(
                result=amount,
                payouts=[(beneficiary, amount)],
                event="yield_claimed",
                data={"address": beneficiary, "amount": amount},
            )
        amount = self._execute(OpType.CLAIM_YIELD, caller, apply)
        yield_paid_total.inc(amount)
        logger.info(f"Paid {amount} yield to {beneficiary} (claimed by {caller})")
        return amount

    # =========================================================================
    # PROVIDER OPERATIONS
    # =========================================================================

    def stake_provider(self, caller: str, amount: int, lock_duration: int = DEFAULT_LOCK_DURATION) -> ProviderState:
        if amount <= 0:
            raise PreconditionError(ERR_ZERO_AMOUNT)

        def apply(state: EngineState) -> Outcome:
            prov = self.registry.require_provider(state, caller)
            try:
                self.source.stake(caller, amount, lock_duration)
            except ValueError as e:
                raise PreconditionError(str(e)) from e
            self.registry.record_stake(state, prov)
            return Outcome(
                result=prov.model_copy(),
                event="provider_staked",
                data={"amount": amount, "lock_duration": lock_duration},
            )
        return self._execute(OpType.STAKE_PROVIDER, caller, apply)

    def withdraw_provider(self, caller: str, address: Optional[str] = None) -> ProviderState:
        """
        Requests the unstake of a provider's own stake.

        Own yield and the delegation total are checkpointed first: once the
        request is made the provider's accumulator stops moving.
        """
        target = address or caller
        if caller != target and caller != self.config.owner:
            raise AuthorizationError(ERR_ONLY_PROVIDER)

        def apply(state: EngineState) -> Outcome:
            prov = self.registry.get_existing(state, target)
            accrued = self.registry.checkpoint_own_yield(state, prov)
            self.registry.checkpoint_delegation(prov, self.clock.current_epoch())
            state.set_provider(prov)
            try:
                self.source.request_withdraw(target)
            except ValueError as e:
                raise PreconditionError(str(e)) from e
            return Outcome(
                result=prov.model_copy(),
                event="provider_withdraw_requested",
                data={"provider": target, "checkpointed_yield": accrued},
            )
        return self._execute(OpType.WITHDRAW_PROVIDER, caller, apply)

    def execute_provider_withdraw(self, caller: str) -> int:
        """Second step of the unstake path: returns the principal once unlocked."""
        def apply(state: EngineState) -> Outcome:
            prov = self.registry.get_existing(state, caller)
            if not prov.has_stake:
                raise PreconditionError(ERR_PROVIDER_NO_STAKE)
            try:
                amount = self.source.withdraw(caller)
            except ValueError as e:
                raise PreconditionError(str(e)) from e
            return Outcome(result=amount, event="provider_withdrawn", data={"amount": amount})
        return self._execute(OpType.EXECUTE_PROVIDER_WITHDRAW, caller, apply)

    def _take_delegation_reward(self, state: EngineState, prov: ProviderState) -> Tuple[int, int]:
        fees = prov.delegation_reward_balance
        prov.delegation_reward_balance = 0
        prov.delegation_rewards_claimed += fees
        state.set_provider(prov)
        bonus = self.grants.take(state, prov.address, self.clock.current_epoch())
        return fees, bonus

    def claim_provider_yield(self, caller: str) -> int:
        def apply(state: EngineState) -> Outcome:
            prov = self.registry.get_existing(state, caller)
            amount = self.registry.take_own_yield(state, prov)
            return Outcome(
                result=amount,
                payouts=[(caller, amount)],
                event="provider_yield_claimed",
                data={"amount": amount},
            )
        amount = self._execute(OpType.CLAIM_PROVIDER_YIELD, caller, apply)
        provider_yield_paid_total.inc(amount)
        logger.info(f"Paid {amount} own yield to provider {caller}")
        return amount

    def claim_provider_delegation_reward(self, caller: str) -> int:
        def apply(state: EngineState) -> Outcome:
            prov = self.registry.get_existing(state, caller)
            fees, bonus = self._take_delegation_reward(state, prov)
            return Outcome(
                result=fees + bonus,
                payouts=[(caller, fees + bonus)],
                event="provider_delegation_reward_claimed",
                data={"fees": fees, "bonus": bonus},
            )
        amount = self._execute(OpType.CLAIM_PROVIDER_DELEGATION_REWARD, caller, apply)
        delegation_rewards_paid_total.inc(amount)
        logger.info(f"Paid {amount} delegation reward to provider {caller}")
        return amount

    def claim_all_provider_rewards(self, caller: str) -> int:
        """Own yield plus delegation reward in one all-or-nothing payout."""
        def apply(state: EngineState) -> Outcome:
            prov = self.registry.get_existing(state, caller)
            own = self.registry.take_own_yield(state, prov)
            fees, bonus = self._take_delegation_reward(state, prov)
            total = own + fees + bonus
            return Outcome(
                result=total,
                payouts=[(caller, total)],
                event="provider_rewards_claimed",
                data={"own_yield": own, "fees": fees, "bonus": bonus},
            )
        amount = self._execute(OpType.CLAIM_ALL_PROVIDER_REWARDS, caller, apply)
        logger.info(f"Paid {amount} total rewards to provider {caller}")
        return amount

    # =========================================================================
    # OWNER OPERATIONS
    # =========================================================================

    def add_to_whitelist(self, caller: str, address: str) -> bool:
        self.registry.require_owner(caller)

        def apply(state: EngineState) -> Outcome:
            changed = self.registry.set_whitelisted(state, address, True)
            return Outcome(result=changed, event="whitelist_changed" if changed else None,
                           data={"provider": address, "whitelisted": True})
        return self._execute(OpType.ADD_TO_WHITELIST, caller, apply)

    def remove_from_whitelist(self, caller: str, address: str) -> bool:
        self.registry.require_owner(caller)

        def apply(state: EngineState) -> Outcome:
            changed = self.registry.set_whitelisted(state, address, False)
            return Outcome(result=changed, event="whitelist_changed" if changed else None,
                           data={"provider": address, "whitelisted": False})
        return self._execute(OpType.REMOVE_FROM_WHITELIST, caller, apply)

    def grant_additional_reward(self, caller: str, provider: str, epoch: int, amount: int) -> int:
        """
        Adds a bonus for (provider, epoch).

        With a bonus fund configured the amount is pulled from it now;
        otherwise it is paid from the reserve when the provider claims.
        """
        self.registry.require_owner(caller)

        def apply(state: EngineState) -> Outcome:
            total = self.grants.grant(state, provider, epoch, amount, self.clock.current_epoch())
            fund = self.config.bonus_fund_source
            if fund is not None:
                engine_addr = self.config.engine_address
                if not self.token.transfer_from(engine_addr, fund, engine_addr, amount):
                    raise InsufficientReserveError(ERR_BONUS_FUND_TRANSFER)
            return Outcome(
                result=total,
                event="bonus_granted",
                data={"provider": provider, "grant_epoch": epoch, "amount": amount},
            )
        total = self._execute(OpType.GRANT_ADDITIONAL_REWARD, caller, apply)
        bonus_granted_total.inc(amount)
        return total

    def fund_reserve(self, caller: str, amount: int) -> int:
        """Pulls `amount` from the caller into the reward reserve (requires allowance)."""
        if amount <= 0:
            raise PreconditionError(ERR_ZERO_AMOUNT)

        def apply(state: EngineState) -> Outcome:
            engine_addr = self.config.engine_address
            if not self.token.transfer_from(engine_addr, caller, engine_addr, amount):
                raise InsufficientReserveError(ERR_TRANSFER_FAILED)
            return Outcome(result=self.token.balance_of(engine_addr), data={"amount": amount})
        return self._execute(OpType.FUND_RESERVE, caller, apply)

    # =========================================================================
    # VIEWS
    # =========================================================================

    def get_current_epoch(self) -> int:
        return self.clock.current_epoch()

    def reserve(self) -> int:
        return self.token.balance_of(self.config.engine_address)

    def estimate_yield(self, address: str) -> int:
        with self._lock:
            return self.ledger.estimate_yield(self.state, address)

    def estimate_provider_yield(self, address: str) -> int:
        with self._lock:
            return self.registry.estimate_provider_yield(self.state, address)

    def estimate_accumulated(self, address: str) -> Tuple[int, int]:
        return self.source.accumulated(address)

    def calculate_total_delegation(self, epoch: int, provider: str) -> int:
        with self._lock:
            return self.registry.calculate_total_delegation(self.state, epoch, provider)

    def get_stake_state(self, address: str) -> StakeState:
        with self._lock:
            prov = self.state.get_provider(address)
            return StakeState(
                own_yield=self.registry.estimate_provider_yield(self.state, address),
                delegation_reward=prov.delegation_reward_balance if prov else 0,
                bonus_reward=self.grants.claimable(self.state, address, self.clock.current_epoch()),
            )

    def get_provider_stake_state(self, address: str) -> Optional[ProviderState]:
        with self._lock:
            prov = self.state.get_provider(address)
            return prov.model_copy(deep=True) if prov else None

    def delegator_states(self, address: str) -> DelegatorState:
        """Delegator record; the all-zero, uninitialized record if never touched."""
        with self._lock:
            rec = self.state.get_delegator(address)
            return rec.model_copy(deep=True) if rec else DelegatorState(address=address)

    def is_whitelisted(self, address: str) -> bool:
        with self._lock:
            return self.registry.is_whitelisted(self.state, address)

    def whitelisted_count(self) -> int:
        with self._lock:
            return self.registry.whitelisted_count(self.state)

    def operations(self, limit: int = 100, caller: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.db.get_operations(limit, caller)


def build_local_engine(config: EngineConfig, db_path: str = ":memory:",
                       time_fn: Optional[Callable[[], float]] = None,
                       bus: Optional[EventBus] = None) -> DelegationEngine:
    """
    Engine wired to in-memory token and staking collaborators (local node, tests).

    Balances and stakes of these collaborators live only in memory, so a DB
    that already holds provider or delegator records cannot be reopened
    with them.
    """
    db = StorageDB(db_path)
    if db.has_state("prov:") or db.has_state("del:"):
        db.close()
        raise RuntimeError(
            f"{db_path} holds engine records but the local token and staking state is not persisted; "
            f"use a fresh data directory"
        )
    token = InMemoryTokenLedger()
    source = LockedStakingSource(token, address=config.accumulator_address, time_fn=time_fn)
    try:
        return DelegationEngine(config, token, source, db, time_fn=time_fn, bus=bus)
    except ValueError:
        db.close()
        raise
