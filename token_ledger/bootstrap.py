"""
Deployment Bootstrap

Collects token deployment parameters, deploys the token exactly once per
storage backend, and publishes token metadata as JSON for frontends.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

from .config import TokenLedgerConfig
from .events import EventDispatcher
from .exceptions import ConstructionError
from .ledger import LedgerStore
from .logging_config import get_logger
from .storage import StorageInterface
from .token import TokenContract


logger = get_logger("token_ledger.bootstrap")


class DeploymentParams(BaseModel):
    """Parameters supplied once, before the request loop starts"""
    name: str
    symbol: str
    decimals: int = Field(..., description="Display decimals; must be below 256")
    total_supply: int = Field(..., description="Whole supply, credited to the deployer")
    burn_sentinel: str = Field(..., description="Reserved zero address")
    deployer: str = Field(..., description="Account that receives the initial supply")

    @classmethod
    def from_config(cls, config: TokenLedgerConfig) -> 'DeploymentParams':
        if not config.deployer_account:
            raise ConstructionError("TOKEN_LEDGER_DEPLOYER_ACCOUNT is not set")
        return cls(
            name=config.token_name,
            symbol=config.token_symbol,
            decimals=config.token_decimals,
            total_supply=config.token_total_supply,
            burn_sentinel=config.burn_sentinel,
            deployer=config.deployer_account
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'DeploymentParams':
        """Load parameters from a JSON file (camelCase keys are accepted too)"""
        data = json.loads(Path(path).read_text())
        aliases = {
            "totalSupply": "total_supply",
            "burnSentinel": "burn_sentinel",
            "zeroAddress": "burn_sentinel",
        }
        return cls(**{aliases.get(k, k): v for k, v in data.items()})


def deploy(
    params: DeploymentParams,
    storage: StorageInterface,
    event_dispatcher: Optional[EventDispatcher] = None
) -> TokenContract:
    """
    Deploy the token, or load it when the storage already holds one.

    Parameters are only applied on first deployment; an existing token keeps
    its original metadata.
    """
    if LedgerStore(storage).is_initialized:
        contract = TokenContract(storage, event_dispatcher)
        if contract.symbol() != params.symbol:
            logger.warning(
                f"Storage already holds token {contract.symbol()}; ignoring parameters for {params.symbol}"
            )
        else:
            logger.info(f"Loaded existing token {contract.symbol()}")
        return contract

    return TokenContract.deploy(
        storage,
        name=params.name,
        symbol=params.symbol,
        decimals=params.decimals,
        total_supply=params.total_supply,
        burn_sentinel=params.burn_sentinel,
        deployer=params.deployer,
        event_dispatcher=event_dispatcher
    )


def token_metadata_document(contract: TokenContract) -> Dict[str, Any]:
    """Metadata document describing the token and its interface"""
    metadata = contract.metadata
    return {
        "name": metadata.name,
        "symbol": metadata.symbol,
        "decimals": metadata.decimals,
        "totalSupply": str(metadata.total_supply),
        "zeroAddress": metadata.burn_sentinel,
        "deployer": metadata.deployer,
        "deployedAt": metadata.deployed_at.isoformat(),
        "messages": {
            "queries": ["name", "symbol", "decimals", "totalSupply", "balanceOf", "allowance"],
            "mutations": ["transfer", "transferFrom", "approve"]
        },
        "events": {
            "Transfer": ["from", "to", "value"],
            "Approval": ["owner", "spender", "value"]
        }
    }


def publish_metadata(contract: TokenContract, path: Union[str, Path]) -> Dict[str, Any]:
    """Write the metadata document to path and return it"""
    document = token_metadata_document(contract)
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(document, indent=2))
    logger.info(f"Published token metadata to {target}")
    return document
