"""
FastAPI REST API Module

HTTP transport for the token ledger: read-only queries, the three mutating
entry points (funneled through the request dispatcher), the notification
log and the audit trail. Runs on port 8090 by default.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from .auth import get_current_caller
from .bootstrap import DeploymentParams, deploy, publish_metadata, token_metadata_document
from .config import TokenLedgerConfig, get_config
from .dispatcher import (
    RequestDispatcher, TransferRequest, TransferFromRequest, ApproveRequest
)
from .events import EventDispatcher
from .exceptions import (
    DispatcherBusyError, DispatcherHaltedError, LedgerInvariantError, RequestRejected
)
from .ledger import LedgerStore, parse_amount
from .logging_config import setup_logging, get_logger
from .storage import StorageInterface, create_storage
from .token import TokenContract


logger = get_logger("token_ledger.api")


# Pydantic models for API requests
class TransferBody(BaseModel):
    to_account: str
    amount: str = Field(..., description="Unsigned integer amount as decimal string")
    attached_value: str = Field("0", description="Payment attached to the call; must be 0")


class TransferFromBody(BaseModel):
    from_account: str
    to_account: str
    amount: str = Field(..., description="Unsigned integer amount as decimal string")
    attached_value: str = Field("0", description="Payment attached to the call; must be 0")


class ApproveBody(BaseModel):
    spender: str
    amount: str = Field(..., description="Unsigned integer amount as decimal string")
    attached_value: str = Field("0", description="Payment attached to the call; must be 0")


# Ledger System Context
class TokenLedgerSystem:
    """Storage, token contract and request dispatcher wired together"""

    def __init__(
        self,
        config: Optional[TokenLedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        params: Optional[DeploymentParams] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.event_dispatcher = EventDispatcher()

        if LedgerStore(self.storage).is_initialized:
            self.contract = TokenContract(self.storage, self.event_dispatcher)
        else:
            params = params or DeploymentParams.from_config(self.config)
            self.contract = deploy(params, self.storage, self.event_dispatcher)

        if self.config.metadata_path:
            publish_metadata(self.contract, self.config.metadata_path)

        self.dispatcher = RequestDispatcher(self.contract, maxsize=self.config.request_queue_size)
        self.dispatcher.start()

    def close(self) -> None:
        self.dispatcher.stop()
        self.storage.close()


_ledger_system: Optional[TokenLedgerSystem] = None


def get_ledger_system() -> TokenLedgerSystem:
    """Dependency returning the process-wide ledger system, built on first use"""
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = TokenLedgerSystem()
    return _ledger_system


def set_ledger_system(system: Optional[TokenLedgerSystem]) -> None:
    """Replace the process-wide ledger system"""
    global _ledger_system
    _ledger_system = system


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    setup_logging(config.log_level, config.log_format)
    yield
    if _ledger_system is not None:
        _ledger_system.close()
        set_ledger_system(None)


app = FastAPI(
    title="Token Ledger API",
    description="Single-contract fungible token ledger with serialized mutations",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _execute(system: TokenLedgerSystem, action: str, caller: str, build_request) -> dict:
    """Run a mutating request through the dispatcher and map ledger errors to HTTP"""
    try:
        request = build_request()
    except RequestRejected as e:
        # Malformed input never reaches the dispatcher, so audit it here
        system.contract.record_rejection(action, caller, e)
        raise HTTPException(status_code=400, detail=str(e))

    try:
        future = system.dispatcher.submit(request)
        success = await asyncio.wrap_future(future)
    except RequestRejected as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DispatcherBusyError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except (LedgerInvariantError, DispatcherHaltedError) as e:
        logger.critical(f"Request failed on halted ledger: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"success": success, "request_id": request.request_id}


@app.get("/health")
async def health_check(system: TokenLedgerSystem = Depends(get_ledger_system)):
    """Health check endpoint"""
    return {
        "status": "healthy" if system.dispatcher.is_running else "halted",
        "processed_requests": system.dispatcher.processed_count,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Query endpoints
@app.get("/token")
async def get_token(system: TokenLedgerSystem = Depends(get_ledger_system)):
    """Token metadata document"""
    return token_metadata_document(system.contract)


@app.get("/token/name")
async def get_name(system: TokenLedgerSystem = Depends(get_ledger_system)):
    return {"name": system.contract.name()}


@app.get("/token/symbol")
async def get_symbol(system: TokenLedgerSystem = Depends(get_ledger_system)):
    return {"symbol": system.contract.symbol()}


@app.get("/token/decimals")
async def get_decimals(system: TokenLedgerSystem = Depends(get_ledger_system)):
    return {"decimals": system.contract.decimals()}


@app.get("/token/total-supply")
async def get_total_supply(system: TokenLedgerSystem = Depends(get_ledger_system)):
    return {"total_supply": str(system.contract.total_supply())}


@app.get("/balances/{account}")
async def get_balance(account: str, system: TokenLedgerSystem = Depends(get_ledger_system)):
    """Balance of an account; unknown accounts hold zero"""
    return {"account": account, "balance": str(system.contract.balance_of(account))}


@app.get("/allowances/{owner}/{spender}")
async def get_allowance(owner: str, spender: str,
                        system: TokenLedgerSystem = Depends(get_ledger_system)):
    """Remaining amount spender may move out of owner's balance"""
    return {
        "owner": owner,
        "spender": spender,
        "allowance": str(system.contract.allowance(owner, spender))
    }


# Mutating endpoints
@app.post("/transfer")
async def transfer(
    body: TransferBody,
    caller: str = Depends(get_current_caller),
    system: TokenLedgerSystem = Depends(get_ledger_system)
):
    """Transfer tokens from the authenticated caller"""
    return await _execute(system, "transfer", caller, lambda: TransferRequest(
        caller=caller,
        to_account=body.to_account,
        amount=parse_amount(body.amount),
        attached_value=parse_amount(body.attached_value, "attached_value")
    ))


@app.post("/transfer-from")
async def transfer_from(
    body: TransferFromBody,
    caller: str = Depends(get_current_caller),
    system: TokenLedgerSystem = Depends(get_ledger_system)
):
    """Spend the caller's allowance over from_account"""
    return await _execute(system, "transfer_from", caller, lambda: TransferFromRequest(
        caller=caller,
        from_account=body.from_account,
        to_account=body.to_account,
        amount=parse_amount(body.amount),
        attached_value=parse_amount(body.attached_value, "attached_value")
    ))


@app.post("/approve")
async def approve(
    body: ApproveBody,
    caller: str = Depends(get_current_caller),
    system: TokenLedgerSystem = Depends(get_ledger_system)
):
    """Set the allowance of spender over the caller's balance"""
    return await _execute(system, "approve", caller, lambda: ApproveRequest(
        caller=caller,
        spender=body.spender,
        amount=parse_amount(body.amount),
        attached_value=parse_amount(body.attached_value, "attached_value")
    ))


# Notification and audit endpoints
@app.get("/events")
async def get_events(
    since: int = Query(0, ge=0, description="Return events after this sequence number"),
    limit: Optional[int] = Query(100, ge=1),
    system: TokenLedgerSystem = Depends(get_ledger_system)
):
    """Ordered Transfer/Approval notifications"""
    events = system.contract.events(since=since, limit=limit)
    return {
        "events": [event.to_dict() for event in events],
        "last_sequence": system.contract.event_log.last_sequence
    }


@app.get("/audit/events")
async def get_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: Optional[int] = 100,
    system: TokenLedgerSystem = Depends(get_ledger_system)
):
    """Get audit events"""
    audit_trail = system.contract.audit_trail
    if entity_type and entity_id:
        events = audit_trail.get_events_for_entity(entity_type, entity_id, limit)
    else:
        events = audit_trail.get_all_events(limit=limit)

    return {"events": [
        {
            "id": event.id,
            "event_type": event.event_type.value,
            "entity_type": event.entity_type,
            "entity_id": event.entity_id,
            "caller": event.caller,
            "created_at": event.created_at.isoformat(),
            "metadata": event.metadata
        }
        for event in events
    ]}


@app.get("/audit/integrity")
async def verify_audit_integrity(system: TokenLedgerSystem = Depends(get_ledger_system)):
    """Verify audit trail integrity"""
    return system.contract.audit_trail.verify_integrity()


@app.get("/")
async def root():
    """Root endpoint with system information"""
    return {
        "system": "Token Ledger",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "token": "/token",
            "balances": "/balances/{account}",
            "allowances": "/allowances/{owner}/{spender}",
            "transfer": "/transfer",
            "transfer_from": "/transfer-from",
            "approve": "/approve",
            "events": "/events",
            "audit": "/audit"
        }
    }


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "token_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
