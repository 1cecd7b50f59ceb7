# MIT License
# Copyright (c) 2025 Hashborn

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator

# Global Constants
DENOM = "chr"
DECIMALS = 6

SECONDS_PER_DAY = 86_400
SECONDS_PER_WEEK = 7 * SECONDS_PER_DAY

# Reward rate is expressed in reward units per million accumulator units
REWARD_RATE_SCALE = 1_000_000
# Provider fee is expressed in basis points
FEE_DENOMINATOR = 10_000

# Default notice period of the locked staking source
DEFAULT_LOCK_DURATION = 14 * SECONDS_PER_DAY


class EngineConfig(BaseModel):
    """
    Construction-time configuration, fixed for the lifetime of an engine.

    Attributes:
        network_id: Name of the preset
        owner: Registry owner (and the single provider in legacy mode)
        provider_fee_bps: Share of gross delegator yield kept by the provider
        reward_rate: Reward units per REWARD_RATE_SCALE accumulator units
        epoch_length_seconds: Length of one epoch
        epoch_start: Unix time of epoch 0 (0 = time of construction)
        whitelist_enabled: False selects single-provider legacy mode
        bonus_fund_source: Address bonus grants are pulled from (None = reserve)
        engine_address: Address holding the reward reserve in the token ledger
        token_address: Token ledger identifier
        accumulator_address: Staking source identifier
    """
    network_id: str = "devnet"
    owner: str
    provider_fee_bps: int = Field(default=1000, ge=0, le=FEE_DENOMINATOR)
    reward_rate: int = Field(default=1, ge=0)
    epoch_length_seconds: int = Field(default=SECONDS_PER_WEEK, gt=0)
    epoch_start: int = Field(default=0, ge=0)
    whitelist_enabled: bool = True
    bonus_fund_source: Optional[str] = None
    engine_address: str = "engine"
    token_address: str = "token"
    accumulator_address: str = "staking"

    @model_validator(mode='after')
    def validate_addresses(self):
        """Owner and reserve must be distinct accounts."""
        if self.owner == self.engine_address:
            raise ValueError("owner must differ from engine_address")
        if self.bonus_fund_source is not None and self.bonus_fund_source == self.engine_address:
            raise ValueError("bonus_fund_source must differ from engine_address")
        return self

    @property
    def provider_fee_fraction(self) -> float:
        return self.provider_fee_bps / FEE_DENOMINATOR


NETWORKS: Dict[str, EngineConfig] = {
    "devnet": EngineConfig(
        network_id="devnet",
        owner="owner",
        provider_fee_bps=1000,                   # 10%
        reward_rate=1,                           # 1 unit per million token-days
        epoch_length_seconds=SECONDS_PER_DAY,    # Short epochs for local testing
        whitelist_enabled=True,
    ),
    "testnet": EngineConfig(
        network_id="testnet",
        owner="owner",
        provider_fee_bps=1000,
        reward_rate=1,
        epoch_length_seconds=SECONDS_PER_WEEK,
        whitelist_enabled=True,
    ),
    "mainnet": EngineConfig(
        network_id="mainnet",
        owner="owner",
        provider_fee_bps=1000,
        reward_rate=1,
        epoch_length_seconds=SECONDS_PER_WEEK,
        whitelist_enabled=False,                 # Single global provider
    ),
}

CURRENT_NETWORK = NETWORKS[os.environ.get("STAKEYIELD_NETWORK", "devnet")]
