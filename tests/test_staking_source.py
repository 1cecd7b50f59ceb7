# MIT License
# Copyright (c) 2025 Hashborn

"""
Tests for the collaborators the engine consumes:
- InMemoryTokenLedger transfer/allowance semantics
- LockedStakingSource accrual, freeze on withdraw request, notice period
"""

import pytest

from stakeyield.engine.core.accumulator import LockedStakingSource
from stakeyield.engine.core.token import InMemoryTokenLedger

from .conftest import FakeClock, DAY, STAKE


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token():
    return InMemoryTokenLedger()


@pytest.fixture
def source(token, clock):
    return LockedStakingSource(token, address="staking", time_fn=clock)


def _stake(token, source, account, amount=STAKE, lock=14 * DAY):
    token.mint(account, amount)
    token.increase_allowance(account, source.address, amount)
    source.stake(account, amount, lock)


# ═══════════════════════════════════════════════════════════════════
# TOKEN LEDGER
# ═══════════════════════════════════════════════════════════════════

class TestTokenLedger:

    def test_transfer(self, token):
        token.mint("alice", 100)
        assert token.transfer("alice", "bob", 40)
        assert token.balance_of("alice") == 60
        assert token.balance_of("bob") == 40

    def test_transfer_insufficient_balance(self, token):
        token.mint("alice", 10)
        assert not token.transfer("alice", "bob", 11)
        assert token.balance_of("alice") == 10
        assert token.balance_of("bob") == 0

    def test_transfer_from_consumes_allowance(self, token):
        token.mint("alice", 100)
        token.approve("alice", "spender", 50)
        assert token.transfer_from("spender", "alice", "carol", 30)
        assert token.allowance("alice", "spender") == 20
        assert not token.transfer_from("spender", "alice", "carol", 30)
        assert token.balance_of("carol") == 30

    def test_increase_allowance(self, token):
        token.increase_allowance("alice", "spender", 5)
        token.increase_allowance("alice", "spender", 7)
        assert token.allowance("alice", "spender") == 12

    def test_total_supply(self, token):
        token.mint("alice", 5)
        token.mint("bob", 6)
        assert token.total_supply == 11


# ═══════════════════════════════════════════════════════════════════
# LOCKED STAKING SOURCE
# ═══════════════════════════════════════════════════════════════════

class TestLockedStakingSource:

    def test_unknown_account(self, source):
        assert source.accumulated("nobody") == (0, 0)
        assert source.withdrawal_requested_at("nobody") is None

    def test_accumulates_per_day(self, token, source, clock):
        _stake(token, source, "alice")
        assert source.accumulated("alice") == (0, STAKE)

        clock.advance(35 * DAY)
        assert source.accumulated("alice") == (STAKE * 35, STAKE)
        assert token.balance_of("staking") == STAKE

    def test_partial_days_round_down(self, token, source, clock):
        _stake(token, source, "alice", amount=10)
        clock.advance(DAY - 1)
        assert source.accumulated("alice")[0] == 9

    def test_additional_stake_keeps_history(self, token, source, clock):
        _stake(token, source, "alice", amount=1000)
        clock.advance(10 * DAY)
        _stake(token, source, "alice", amount=1000)
        clock.advance(10 * DAY)
        assert source.accumulated("alice") == (1000 * 10 + 2000 * 10, 2000)

    def test_stake_requires_allowance(self, token, source):
        token.mint("alice", 100)
        with pytest.raises(ValueError):
            source.stake("alice", 100, 14 * DAY)
        assert source.accumulated("alice") == (0, 0)

    def test_withdraw_request_freezes_accumulator(self, token, source, clock):
        _stake(token, source, "alice")
        clock.advance(7 * DAY)
        source.request_withdraw("alice")
        frozen = source.accumulated("alice")[0]
        assert frozen == STAKE * 7
        assert source.withdrawal_requested_at("alice") == clock.now

        clock.advance(30 * DAY)
        assert source.accumulated("alice")[0] == frozen

    def test_withdraw_respects_notice_period(self, token, source, clock):
        _stake(token, source, "alice", lock=14 * DAY)
        clock.advance(DAY)
        source.request_withdraw("alice")

        clock.advance(13 * DAY)
        with pytest.raises(ValueError):
            source.withdraw("alice")

        clock.advance(DAY)
        assert source.withdraw("alice") == STAKE
        assert token.balance_of("alice") == STAKE
        assert source.accumulated("alice") == (STAKE, 0)
        assert source.withdrawal_requested_at("alice") is None

    def test_withdraw_without_request(self, token, source):
        _stake(token, source, "alice")
        with pytest.raises(ValueError):
            source.withdraw("alice")

    def test_double_request_rejected(self, token, source):
        _stake(token, source, "alice")
        source.request_withdraw("alice")
        with pytest.raises(ValueError):
            source.request_withdraw("alice")

    def test_cannot_stake_during_pending_withdrawal(self, token, source):
        _stake(token, source, "alice")
        source.request_withdraw("alice")
        token.mint("alice", 10)
        token.increase_allowance("alice", source.address, 10)
        with pytest.raises(ValueError):
            source.stake("alice", 10, 14 * DAY)
