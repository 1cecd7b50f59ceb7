# MIT License
# Copyright (c) 2025 Hashborn

"""
Yield computation.

The single place where an accumulator delta turns into a token amount.
Everything here is pure: callers decide whether a Settlement is committed
or only reported as an estimate.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from ...protocol.config.params import REWARD_RATE_SCALE, FEE_DENOMINATOR, SECONDS_PER_DAY


@dataclass(frozen=True)
class Settlement:
    """
    Result of settling one delegator window.

    Attributes:
        accumulator_from: Processed accumulator at the start of the window
        accumulator_to: Accumulator value the window ends at
        delta: accumulator_to - accumulator_from
        eligible_delta: Part of delta accrued while the provider was whitelisted
        eligible_seconds: Part of the window the provider was whitelisted
        window_seconds: Length of the window
        gross_yield: Reward for eligible_delta
        provider_fee: Provider's cut of gross_yield
        delegator_net: gross_yield - provider_fee
    """
    accumulator_from: int
    accumulator_to: int
    delta: int
    eligible_delta: int
    eligible_seconds: int
    window_seconds: int
    gross_yield: int
    provider_fee: int
    delegator_net: int


class YieldEngine:
    def __init__(self, reward_rate: int, provider_fee_bps: int, rate_scale: int = REWARD_RATE_SCALE):
        if provider_fee_bps < 0 or provider_fee_bps > FEE_DENOMINATOR:
            raise ValueError(f"provider_fee_bps must be within [0, {FEE_DENOMINATOR}]")
        self.reward_rate = reward_rate
        self.provider_fee_bps = provider_fee_bps
        self.rate_scale = rate_scale

    def gross_yield(self, delta: int) -> int:
        """Converts accumulator units into reward units."""
        if delta <= 0:
            return 0
        return delta * self.reward_rate // self.rate_scale

    def split_fee(self, gross: int) -> Tuple[int, int]:
        """Returns (provider_fee, delegator_net); the two always sum to gross."""
        fee = gross * self.provider_fee_bps // FEE_DENOMINATOR
        return fee, gross - fee

    def eligible_delta(self, delta: int, eligible_seconds: int, window_seconds: int, principal: Optional[int] = None) -> int:
        """
        Part of an accumulator delta that earns delegation yield.

        With a fully eligible window the whole delta counts. Otherwise the
        count is capped by what `principal` accrues over the eligible
        seconds, so stake added or frozen outside the eligible epochs never
        shifts yield into or out of them. Without a principal the delta is
        pro-rated by time.
        """
        if delta <= 0 or eligible_seconds <= 0:
            return 0
        if window_seconds <= 0 or eligible_seconds >= window_seconds:
            return delta
        if principal is None:
            return delta * eligible_seconds // window_seconds
        return min(delta, principal * eligible_seconds // SECONDS_PER_DAY)

    def settle(self, processed: int, current: int, eligible_seconds: int, window_seconds: int,
               principal: Optional[int] = None) -> Settlement:
        # The source is monotonic; a lower reading never rolls the high-water mark back.
        target = max(processed, current)
        delta = target - processed
        earning = self.eligible_delta(delta, eligible_seconds, window_seconds, principal)
        gross = self.gross_yield(earning)
        fee, net = self.split_fee(gross)
        return Settlement(
            accumulator_from=processed,
            accumulator_to=target,
            delta=delta,
            eligible_delta=earning,
            eligible_seconds=eligible_seconds,
            window_seconds=window_seconds,
            gross_yield=gross,
            provider_fee=fee,
            delegator_net=net,
        )

    def provider_yield(self, snapshot: int, current: int) -> int:
        """Provider's own yield; not subject to whitelist gating or fees."""
        return self.gross_yield(max(0, current - snapshot))
