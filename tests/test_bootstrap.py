"""
Tests for deployment bootstrap and metadata publishing
"""

import json

import pytest

from token_ledger.bootstrap import (
    DeploymentParams, deploy, publish_metadata, token_metadata_document
)
from token_ledger.config import TokenLedgerConfig
from token_ledger.exceptions import ConstructionError
from token_ledger.storage import InMemoryStorage


ZERO = "0x0000000000000000000000000000000000000000"


def make_params(**overrides):
    values = {
        "name": "Boot Token",
        "symbol": "BOOT",
        "decimals": 6,
        "total_supply": 5000,
        "burn_sentinel": ZERO,
        "deployer": "0xD",
    }
    values.update(overrides)
    return DeploymentParams(**values)


class TestDeploymentParams:
    """Parameter sources"""

    def test_from_config(self):
        config = TokenLedgerConfig(deployer_account="0xD", token_total_supply="100000")
        params = DeploymentParams.from_config(config)
        assert params.deployer == "0xD"
        assert params.total_supply == 100000
        assert params.burn_sentinel == ZERO

    def test_from_config_requires_deployer(self):
        with pytest.raises(ConstructionError, match="DEPLOYER_ACCOUNT"):
            DeploymentParams.from_config(TokenLedgerConfig(deployer_account=""))

    def test_from_file_accepts_camel_case(self, tmp_path):
        path = tmp_path / "params.json"
        path.write_text(json.dumps({
            "name": "File Token",
            "symbol": "FILE",
            "decimals": 2,
            "totalSupply": str(2 ** 200),
            "zeroAddress": ZERO,
            "deployer": "0xD"
        }))
        params = DeploymentParams.from_file(path)
        assert params.total_supply == 2 ** 200
        assert params.burn_sentinel == ZERO


class TestDeploy:
    """Deploy-once behaviour"""

    def test_first_deploy(self):
        contract = deploy(make_params(), InMemoryStorage())
        assert contract.balance_of("0xD") == 5000
        assert contract.decimals() == 6

    def test_redeploy_loads_existing_token(self):
        storage = InMemoryStorage()
        deploy(make_params(), storage).transfer("0xD", "0xA", 10)

        contract = deploy(make_params(symbol="OTHER", total_supply=1), storage)
        assert contract.symbol() == "BOOT"
        assert contract.total_supply() == 5000
        assert contract.balance_of("0xA") == 10
        assert len(contract.events()) == 2

    def test_invalid_decimals(self):
        storage = InMemoryStorage()
        with pytest.raises(ConstructionError):
            deploy(make_params(decimals=300), storage)
        assert storage.count("token_metadata") == 0


class TestMetadata:
    """Published metadata document"""

    def test_document_shape(self):
        document = token_metadata_document(deploy(make_params(), InMemoryStorage()))
        assert document["symbol"] == "BOOT"
        assert document["totalSupply"] == "5000"
        assert document["zeroAddress"] == ZERO
        assert document["events"]["Transfer"] == ["from", "to", "value"]
        assert "transferFrom" in document["messages"]["mutations"]

    def test_publish_writes_json(self, tmp_path):
        contract = deploy(make_params(), InMemoryStorage())
        target = tmp_path / "public" / "token.json"
        document = publish_metadata(contract, target)
        assert json.loads(target.read_text()) == document
