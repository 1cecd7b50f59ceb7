from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Optional
from ...protocol.config.params import DEFAULT_LOCK_DURATION
from ...protocol.types.common import (
    OpType, ProtocolError, PreconditionError, DesyncError, InsufficientReserveError, AuthorizationError,
)
from ..core.engine import DelegationEngine
from ..core.token import InMemoryTokenLedger
from ..core.accumulator import LockedStakingSource
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="StakeYield Engine RPC")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
engine: Optional[DelegationEngine] = None

# HTTP status per error type; the reason string is the stable error key
ERROR_STATUS = {
    AuthorizationError: 403,
    DesyncError: 409,
    InsufficientReserveError: 424,
    PreconditionError: 400,
}

class OpRequest(BaseModel):
    caller: str
    provider: Optional[str] = None
    address: Optional[str] = None
    amount: Optional[int] = None
    epoch: Optional[int] = None
    lock_duration: int = DEFAULT_LOCK_DURATION

class DevRequest(BaseModel):
    address: str
    amount: int = 0
    lock_duration: int = DEFAULT_LOCK_DURATION

def _require_engine() -> DelegationEngine:
    if not engine:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine

def _error_response(e: ProtocolError) -> HTTPException:
    status = ERROR_STATUS.get(type(e), 400)
    return HTTPException(status_code=status, detail={"error": type(e).__name__, "reason": e.reason})

@app.get("/")
async def root():
    return {"message": "StakeYield Engine RPC", "version": "1.0"}

@app.get("/status")
async def get_status():
    eng = _require_engine()
    return {
        "network": eng.config.network_id,
        "epoch": eng.get_current_epoch(),
        "epoch_length_seconds": eng.config.epoch_length_seconds,
        "provider_fee_bps": eng.config.provider_fee_bps,
        "reward_rate": eng.config.reward_rate,
        "whitelist_enabled": eng.config.whitelist_enabled,
        "reserve": str(eng.reserve()),
    }

@app.get("/epoch")
async def get_current_epoch():
    eng = _require_engine()
    return {"epoch": eng.get_current_epoch()}

@app.get("/delegator/{address}")
async def get_delegator(address: str):
    eng = _require_engine()
    return eng.delegator_states(address)

@app.get("/provider/{address}")
async def get_provider(address: str):
    eng = _require_engine()
    prov = eng.get_provider_stake_state(address)
    if not prov:
        raise HTTPException(status_code=404, detail="Provider not found")
    return prov

@app.get("/provider/{address}/stake-state")
async def get_stake_state(address: str):
    eng = _require_engine()
    return eng.get_stake_state(address)

@app.get("/estimate/yield/{address}")
async def estimate_yield(address: str):
    eng = _require_engine()
    return {"address": address, "yield": str(eng.estimate_yield(address))}

@app.get("/estimate/provider/{address}")
async def estimate_provider_yield(address: str):
    eng = _require_engine()
    return {"address": address, "yield": str(eng.estimate_provider_yield(address))}

@app.get("/estimate/accumulated/{address}")
async def estimate_accumulated(address: str):
    eng = _require_engine()
    value, raw = eng.estimate_accumulated(address)
    return {"address": address, "accumulated": str(value), "staked": str(raw)}

@app.get("/delegation/{provider}/{epoch}")
async def calculate_total_delegation(provider: str, epoch: int):
    eng = _require_engine()
    return {"provider": provider, "epoch": epoch, "total": str(eng.calculate_total_delegation(epoch, provider))}

@app.get("/operations")
async def get_operations(limit: int = 100, caller: Optional[str] = None):
    eng = _require_engine()
    return {"operations": eng.operations(limit, caller)}

@app.post("/tx/{op}")
async def submit_operation(op: OpType, req: OpRequest):
    """Runs one engine operation on behalf of `req.caller`."""
    eng = _require_engine()
    handlers = {
        OpType.DELEGATE: lambda: eng.delegate(req.caller, req.provider),
        OpType.UNDELEGATE: lambda: eng.undelegate(req.caller),
        OpType.CLAIM_YIELD: lambda: eng.claim_yield(req.caller, req.address),
        OpType.SYNC_WITHDRAW_REQUEST: lambda: eng.sync_withdraw_request(req.caller),
        OpType.RESET_ACCOUNT: lambda: eng.reset_account(req.caller),
        OpType.STAKE_PROVIDER: lambda: eng.stake_provider(req.caller, req.amount or 0, req.lock_duration),
        OpType.WITHDRAW_PROVIDER: lambda: eng.withdraw_provider(req.caller, req.address),
        OpType.EXECUTE_PROVIDER_WITHDRAW: lambda: eng.execute_provider_withdraw(req.caller),
        OpType.CLAIM_PROVIDER_YIELD: lambda: eng.claim_provider_yield(req.caller),
        OpType.CLAIM_PROVIDER_DELEGATION_REWARD: lambda: eng.claim_provider_delegation_reward(req.caller),
        OpType.CLAIM_ALL_PROVIDER_REWARDS: lambda: eng.claim_all_provider_rewards(req.caller),
        OpType.ADD_TO_WHITELIST: lambda: eng.add_to_whitelist(req.caller, req.address),
        OpType.REMOVE_FROM_WHITELIST: lambda: eng.remove_from_whitelist(req.caller, req.address),
        OpType.GRANT_ADDITIONAL_REWARD: lambda: eng.grant_additional_reward(
            req.caller, req.provider, req.epoch if req.epoch is not None else eng.get_current_epoch(), req.amount or 0
        ),
        OpType.FUND_RESERVE: lambda: eng.fund_reserve(req.caller, req.amount or 0),
    }

    if op in (OpType.DELEGATE, OpType.GRANT_ADDITIONAL_REWARD) and not req.provider:
        raise HTTPException(status_code=422, detail="provider is required")
    if op in (OpType.ADD_TO_WHITELIST, OpType.REMOVE_FROM_WHITELIST) and not req.address:
        raise HTTPException(status_code=422, detail="address is required")

    try:
        result = handlers[op]()
    except ProtocolError as e:
        raise _error_response(e)

    if isinstance(result, int) and not isinstance(result, bool):
        result = str(result)
    return {"op": op.value, "status": "committed", "result": result}

# ═══════════════════════════════════════════════════════════════════
# DEV ENDPOINTS (local collaborators only)
# ═══════════════════════════════════════════════════════════════════

def _require_local() -> DelegationEngine:
    eng = _require_engine()
    if not isinstance(eng.token, InMemoryTokenLedger) or not isinstance(eng.source, LockedStakingSource):
        raise HTTPException(status_code=404, detail="Dev endpoints need local collaborators")
    return eng

@app.post("/dev/mint")
async def dev_mint(req: DevRequest):
    eng = _require_local()
    eng.token.mint(req.address, req.amount)
    return {"address": req.address, "balance": str(eng.token.balance_of(req.address))}

@app.post("/dev/stake")
async def dev_stake(req: DevRequest):
    """Stakes directly in the staking source, approving it first."""
    eng = _require_local()
    eng.token.increase_allowance(req.address, eng.source.address, req.amount)
    try:
        eng.source.stake(req.address, req.amount, req.lock_duration)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    value, raw = eng.source.accumulated(req.address)
    return {"address": req.address, "accumulated": str(value), "staked": str(raw)}

@app.post("/dev/request-withdraw")
async def dev_request_withdraw(req: DevRequest):
    eng = _require_local()
    try:
        eng.source.request_withdraw(req.address)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"address": req.address, "withdraw_requested_at": eng.source.withdrawal_requested_at(req.address)}

@app.post("/dev/approve-engine")
async def dev_approve_engine(req: DevRequest):
    eng = _require_local()
    eng.token.increase_allowance(req.address, eng.config.engine_address, req.amount)
    return {"address": req.address, "allowance": str(eng.token.allowance(req.address, eng.config.engine_address))}

@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    try:
        from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
        from ..observability.metrics import metrics_registry, update_metrics

        update_metrics(engine)
        metrics_data = generate_latest(metrics_registry)

        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Metrics error: {str(e)}")
