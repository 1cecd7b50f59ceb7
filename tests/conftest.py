# MIT License
# Copyright (c) 2025 Hashborn

import pytest

from stakeyield.engine.core.engine import build_local_engine
from stakeyield.engine.core.events import EventBus
from stakeyield.protocol.config.params import EngineConfig, SECONDS_PER_DAY, SECONDS_PER_WEEK

T0 = 1_700_000_000
DAY = SECONDS_PER_DAY
WEEK = SECONDS_PER_WEEK

OWNER = "0xOwner"
PROVIDER = "0xProvider"
PROVIDER2 = "0xProvider2"
DELEGATOR = "0xDelegator"
DELEGATOR2 = "0xDelegator2"

STAKE = 10_000_000_000
RESERVE = 10_000_000_000


class FakeClock:
    """Controllable time source shared by engine, token and staking source."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


def make_engine(clock, reserve: int = RESERVE, bus=None, **overrides):
    params = dict(
        owner=OWNER,
        epoch_start=T0,
        epoch_length_seconds=WEEK,
        provider_fee_bps=1000,
        reward_rate=1,
    )
    params.update(overrides)
    config = EngineConfig(**params)
    engine = build_local_engine(config, ":memory:", time_fn=clock, bus=bus or EventBus())
    if reserve:
        engine.token.mint(config.engine_address, reserve)
    return engine


def stake(engine, account: str, amount: int = STAKE, lock: int = 14 * DAY):
    """Locks tokens for `account` directly in the staking source."""
    engine.token.mint(account, amount)
    engine.token.increase_allowance(account, engine.source.address, amount)
    engine.source.stake(account, amount, lock)


def fund_provider(engine, provider: str, amount: int):
    """Gives a provider tokens and lets the staking source pull them."""
    engine.token.mint(provider, amount)
    engine.token.increase_allowance(provider, engine.source.address, amount)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    """Whitelist-mode engine with one whitelisted provider and a funded reserve."""
    eng = make_engine(clock)
    eng.add_to_whitelist(OWNER, PROVIDER)
    yield eng
    eng.db.close()
