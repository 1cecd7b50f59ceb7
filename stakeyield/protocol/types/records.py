# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field
from typing import List, Optional

class WhitelistChange(BaseModel):
    """Whitelist state in force from the start of `epoch` onwards."""
    epoch: int
    whitelisted: bool

class DelegationCheckpoint(BaseModel):
    """Total principal delegated to a provider as of `epoch`."""
    epoch: int
    total: int

class ProviderState(BaseModel):
    address: str
    is_whitelisted: bool = False
    whitelist_history: List[WhitelistChange] = Field(default_factory=list)

    # Provider's own stake in the accumulator source
    has_stake: bool = False              # Staked at least once through the engine
    own_stake_snapshot: int = 0          # Last accumulator value converted into own yield
    own_yield_pending: int = 0           # Checkpointed own yield, not yet paid
    own_yield_processed: int = 0         # Own yield paid out so far

    # Fee income from delegators
    delegation_reward_balance: int = 0
    delegation_rewards_claimed: int = 0

    # Running total of principal delegated to this provider
    total_delegated_snapshot: int = 0
    last_delegation_sync_epoch: int = 0
    delegation_checkpoints: List[DelegationCheckpoint] = Field(default_factory=list)

    # Bonus grants
    pending_grant_epochs: List[int] = Field(default_factory=list)  # Sorted, unclaimed
    last_claimed_grant_epoch: Optional[int] = None
    bonus_rewards_claimed: int = 0

    created_epoch: int = 0

class DelegatorState(BaseModel):
    address: str
    initialized: bool = False
    delegated_to: Optional[str] = None
    delegated_amount: int = 0             # Principal attributed to `delegated_to`
    processed_accumulator: int = 0        # High-water mark of settled accumulator units
    pending_yield: int = 0                # Net yield settled but not yet paid
    last_settled_at: int = 0              # Unix time of the last settlement
    last_synced_withdraw_request: Optional[int] = None
    total_yield_claimed: int = 0

class BonusGrant(BaseModel):
    provider: str
    epoch: int
    amount: int

class StakeState(BaseModel):
    """Claimable rewards of a provider: own yield and delegation reward."""
    own_yield: int
    delegation_reward: int
    bonus_reward: int = 0
