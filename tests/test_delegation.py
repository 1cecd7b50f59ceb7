# MIT License
# Copyright (c) 2025 Hashborn

"""
Delegation Ledger Tests

- delegate / undelegate / switch provider
- yield claims and the provider fee split
- monotonic high-water mark, no double counting
- reset_account
"""

import pytest

from stakeyield.protocol.types.common import (
    PreconditionError, ERR_NOT_INITIALIZED, ERR_NO_STAKE, ERR_NOT_WHITELISTED, ERR_NOT_DELEGATING,
)

from .conftest import (
    OWNER, PROVIDER, PROVIDER2, DELEGATOR, DELEGATOR2, STAKE, DAY, WEEK, stake,
)


# ═══════════════════════════════════════════════════════════════════
# DELEGATE
# ═══════════════════════════════════════════════════════════════════

class TestDelegate:

    def test_delegate_records_processed_accumulator(self, engine, clock):
        """First delegation starts accrual at the current accumulator value."""
        stake(engine, DELEGATOR)
        clock.advance(365 * DAY)

        before, _ = engine.estimate_accumulated(DELEGATOR)
        engine.delegate(DELEGATOR, PROVIDER)
        clock.advance(365 * DAY)

        rec = engine.delegator_states(DELEGATOR)
        assert rec.initialized
        assert rec.delegated_to == PROVIDER
        assert rec.delegated_amount == STAKE
        assert rec.processed_accumulator == before
        # Nothing earned for the time before the first delegation
        assert engine.estimate_yield(DELEGATOR) == STAKE * 365 // 1_000_000 * 9 // 10

    def test_delegate_requires_stake(self, engine):
        with pytest.raises(PreconditionError) as exc:
            engine.delegate(DELEGATOR, PROVIDER)
        assert str(exc.value) == ERR_NO_STAKE
        assert not engine.delegator_states(DELEGATOR).initialized

    def test_delegate_requires_whitelisted_provider(self, engine):
        stake(engine, DELEGATOR)
        with pytest.raises(PreconditionError) as exc:
            engine.delegate(DELEGATOR, "0xStranger")
        assert str(exc.value) == ERR_NOT_WHITELISTED

    def test_delegate_updates_provider_total(self, engine):
        stake(engine, DELEGATOR)
        stake(engine, DELEGATOR2, amount=STAKE // 2)
        engine.delegate(DELEGATOR, PROVIDER)
        engine.delegate(DELEGATOR2, PROVIDER)
        assert engine.calculate_total_delegation(0, PROVIDER) == STAKE + STAKE // 2

    def test_switch_provider_commits_old_accrual(self, engine, clock):
        engine.add_to_whitelist(OWNER, PROVIDER2)
        stake(engine, DELEGATOR)
        engine.delegate(DELEGATOR, PROVIDER)

        clock.advance(WEEK)
        engine.delegate(DELEGATOR, PROVIDER2)

        rec = engine.delegator_states(DELEGATOR)
        assert rec.delegated_to == PROVIDER2
        assert rec.pending_yield == 63_000
        assert rec.processed_accumulator == STAKE * 7
        assert engine.get_stake_state(PROVIDER).delegation_reward == 7_000

        # Totals moved between providers at epoch 1
        assert engine.calculate_total_delegation(0, PROVIDER) == STAKE
        assert engine.calculate_total_delegation(1, PROVIDER) == 0
        assert engine.calculate_total_delegation(0, PROVIDER2) == 0
        assert engine.calculate_total_delegation(1, PROVIDER2) == STAKE
        assert engine.calculate_total_delegation(9, PROVIDER2) == STAKE

        clock.advance(WEEK)
        assert engine.claim_yield(DELEGATOR) == 126_000
        assert engine.get_stake_state(PROVIDER).delegation_reward == 7_000
        assert engine.get_stake_state(PROVIDER2).delegation_reward == 7_000

    def test_redelegate_same_provider_refreshes_principal(self, engine, clock):
        stake(engine, DELEGATOR, amount=1_000)
        engine.delegate(DELEGATOR, PROVIDER)
        stake(engine, DELEGATOR, amount=2_000)
        engine.delegate(DELEGATOR, PROVIDER)
        assert engine.delegator_states(DELEGATOR).delegated_amount == 3_000
        assert engine.calculate_total_delegation(0, PROVIDER) == 3_000


# ═══════════════════════════════════════════════════════════════════
# CLAIM YIELD
# ═══════════════════════════════════════════════════════════════════

class TestClaimYield:

    def test_claim_uninitialized_fails(self, engine):
        with pytest.raises(PreconditionError) as exc:
            engine.claim_yield(DELEGATOR)
        assert str(exc.value) == ERR_NOT_INITIALIZED

    def test_five_week_scenario(self, engine, clock):
        """Full stake for 5 weeks at 1 unit per million token-days with a 10% fee."""
        stake(engine, DELEGATOR)
        engine.delegate(DELEGATOR, PROVIDER)
        clock.advance(5 * WEEK)

        gross = (STAKE * 7 * 5) // 1_000_000
        expected = engine.estimate_yield(DELEGATOR)
        assert expected == gross * 9 // 10

        reserve_before = engine.reserve()
        paid = engine.claim_yield(DELEGATOR)

        assert paid == expected == 315_000
        assert engine.token.balance_of(DELEGATOR) == 315_000
        assert engine.reserve() == reserve_before - 315_000
        assert engine.get_stake_state(PROVIDER).delegation_reward == gross // 10 == 35_000

        value, _ = engine.estimate_accumulated(DELEGATOR)
        assert engine.delegator_states(DELEGATOR).processed_accumulator == value

    def test_second_claim_pays_nothing(self, engine, clock):
        stake(engine, DELEGATOR)
        engine.delegate(DELEGATOR, PROVIDER)
        clock.advance(3 * WEEK)

        assert engine.claim_yield(DELEGATOR) > 0
        assert engine.claim_yield(DELEGATOR) == 0
        assert engine.estimate_yield(DELEGATOR) == 0

    def test_claim_on_behalf_pays_beneficiary(self, engine, clock):
        stake(engine, DELEGATOR)
        engine.delegate(DELEGATOR, PROVIDER)
        clock.advance(WEEK)

        paid = engine.claim_yield("0xKeeper", DELEGATOR)
        assert paid == 63_000
        assert engine.token.balance_of(DELEGATOR) == 63_000
        assert engine.token.balance_of("0xKeeper") == 0

    def test_fee_conservation_over_many_settlements(self, engine, clock):
        stake(engine, DELEGATOR, amount=7_777_777_777)
        engine.delegate(DELEGATOR, PROVIDER)

        total_paid = 0
        for days in (1, 3, 5, 9, 13):
            clock.advance(days * DAY)
            total_paid += engine.claim_yield(DELEGATOR)

        fees = engine.get_stake_state(PROVIDER).delegation_reward
        # Each settlement rounds down once; the split itself is exact
        gross_upper = 7_777_777_777 * 31 // 1_000_000
        assert total_paid + fees <= gross_upper
        assert gross_upper - (total_paid + fees) <= 5

    def test_processed_accumulator_is_monotonic(self, engine, clock):
        engine.add_to_whitelist(OWNER, PROVIDER2)
        stake(engine, DELEGATOR)
        marks = []

        def mark():
            marks.append(engine.delegator_states(DELEGATOR).processed_accumulator)

        engine.delegate(DELEGATOR, PROVIDER); mark()
        clock.advance(2 * DAY)
        engine.claim_yield(DELEGATOR); mark()
        clock.advance(3 * DAY)
        engine.delegate(DELEGATOR, PROVIDER2); mark()
        clock.advance(DAY)
        engine.undelegate(DELEGATOR); mark()
        engine.claim_yield(DELEGATOR); mark()
        clock.advance(4 * DAY)
        engine.delegate(DELEGATOR, PROVIDER); mark()

        assert marks == sorted(marks)
        assert marks[-1] <= engine.estimate_accumulated(DELEGATOR)[0]


# ═══════════════════════════════════════════════════════════════════
# UNDELEGATE & RESET
# ═══════════════════════════════════════════════════════════════════

class TestUndelegate:

    def test_undelegate_keeps_earned_yield(self, engine, clock):
        stake(engine, DELEGATOR)
        engine.delegate(DELEGATOR, PROVIDER)
        clock.advance(WEEK)

        engine.undelegate(DELEGATOR)
        rec = engine.delegator_states(DELEGATOR)
        assert rec.delegated_to is None
        assert rec.pending_yield == 63_000
        assert engine.calculate_total_delegation(1, PROVIDER) == 0

        # No accrual while undelegated
        clock.advance(WEEK)
        assert engine.estimate_yield(DELEGATOR) == 63_000
        assert engine.claim_yield(DELEGATOR) == 63_000
        assert engine.delegator_states(DELEGATOR).processed_accumulator == STAKE * 14
        assert engine.get_stake_state(PROVIDER).delegation_reward == 7_000

    def test_undelegate_twice_fails(self, engine):
        stake(engine, DELEGATOR)
        engine.delegate(DELEGATOR, PROVIDER)
        engine.undelegate(DELEGATOR)
        with pytest.raises(PreconditionError) as exc:
            engine.undelegate(DELEGATOR)
        assert str(exc.value) == ERR_NOT_DELEGATING

    def test_undelegate_uninitialized_fails(self, engine):
        with pytest.raises(PreconditionError):
            engine.undelegate(DELEGATOR)

    def test_delegate_again_after_undelegate(self, engine, clock):
        stake(engine, DELEGATOR)
        engine.delegate(DELEGATOR, PROVIDER)
        engine.undelegate(DELEGATOR)
        clock.advance(WEEK)
        engine.delegate(DELEGATOR, PROVIDER)
        clock.advance(WEEK)
        # Only the second week earns
        assert engine.claim_yield(DELEGATOR) == 63_000


class TestResetAccount:

    def test_reset_returns_uninitialized_record(self, engine, clock):
        stake(engine, DELEGATOR)
        engine.delegate(DELEGATOR, PROVIDER)
        clock.advance(WEEK)
        engine.reset_account(DELEGATOR)

        rec = engine.delegator_states(DELEGATOR)
        assert rec.initialized is False
        assert rec.delegated_to is None
        assert rec.delegated_amount == 0
        assert rec.processed_accumulator == 0
        assert rec.pending_yield == 0
        assert rec.last_synced_withdraw_request is None
        assert engine.calculate_total_delegation(1, PROVIDER) == 0

        with pytest.raises(PreconditionError) as exc:
            engine.claim_yield(DELEGATOR)
        assert str(exc.value) == ERR_NOT_INITIALIZED

    def test_reset_then_delegate_is_not_retroactive(self, engine, clock):
        stake(engine, DELEGATOR)
        engine.delegate(DELEGATOR, PROVIDER)
        clock.advance(WEEK)
        engine.claim_yield(DELEGATOR)
        engine.reset_account(DELEGATOR)

        clock.advance(WEEK)
        engine.delegate(DELEGATOR, PROVIDER)
        assert engine.estimate_yield(DELEGATOR) == 0

    def test_reset_unknown_address_is_noop(self, engine):
        assert engine.reset_account("0xNobody") == 0
        assert not engine.delegator_states("0xNobody").initialized
