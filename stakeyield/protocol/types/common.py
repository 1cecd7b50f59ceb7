# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum

class OpType(str, Enum):
    # Delegator operations
    DELEGATE = "DELEGATE"
    UNDELEGATE = "UNDELEGATE"
    CLAIM_YIELD = "CLAIM_YIELD"
    SYNC_WITHDRAW_REQUEST = "SYNC_WITHDRAW_REQUEST"
    RESET_ACCOUNT = "RESET_ACCOUNT"

    # Provider operations
    STAKE_PROVIDER = "STAKE_PROVIDER"
    WITHDRAW_PROVIDER = "WITHDRAW_PROVIDER"
    EXECUTE_PROVIDER_WITHDRAW = "EXECUTE_PROVIDER_WITHDRAW"
    CLAIM_PROVIDER_YIELD = "CLAIM_PROVIDER_YIELD"
    CLAIM_PROVIDER_DELEGATION_REWARD = "CLAIM_PROVIDER_DELEGATION_REWARD"
    CLAIM_ALL_PROVIDER_REWARDS = "CLAIM_ALL_PROVIDER_REWARDS"

    # Owner operations
    ADD_TO_WHITELIST = "ADD_TO_WHITELIST"
    REMOVE_FROM_WHITELIST = "REMOVE_FROM_WHITELIST"
    GRANT_ADDITIONAL_REWARD = "GRANT_ADDITIONAL_REWARD"

    # Reserve
    FUND_RESERVE = "FUND_RESERVE"


# Reasons double as wire error keys; existing callers match on them verbatim.
ERR_NOT_INITIALIZED = "Address must make a first delegation."
ERR_NO_STAKE = "Address must have stake in the staking contract."
ERR_NOT_WHITELISTED = "Provider is not whitelisted."
ERR_NOT_DELEGATING = "Address is not delegating."
ERR_WITHDRAW_NOT_SYNCED = "Withdraw request is not synced. Call syncWithdrawRequest first."
ERR_INSUFFICIENT_RESERVE = "Not enough tokens in the reward reserve."
ERR_BONUS_FUND_TRANSFER = "Could not transfer tokens from the bonus fund."
ERR_ONLY_OWNER = "Caller is not the owner."
ERR_ONLY_PROVIDER = "Caller is not the provider."
ERR_UNKNOWN_PROVIDER = "Provider does not exist."
ERR_PROVIDER_NO_STAKE = "Provider has no stake."
ERR_ZERO_AMOUNT = "Amount must be greater than zero."
ERR_EPOCH_CLAIMED = "Rewards for this epoch have already been claimed."
ERR_WHITELIST_DISABLED = "Whitelist is disabled in single-provider mode."
ERR_TRANSFER_FAILED = "Token transfer failed."


class ProtocolError(Exception):
    """Base class for every rejected engine operation."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

class ValidationError(ProtocolError):
    pass

class PreconditionError(ProtocolError):
    """Caller not initialized, not delegated, not whitelisted or without stake."""
    pass

class DesyncError(ProtocolError):
    """Local withdraw-request marker disagrees with the staking source."""
    pass

class InsufficientReserveError(ProtocolError):
    """A token transfer out of (or into) the engine cannot be completed."""
    pass

class AuthorizationError(ProtocolError):
    pass
