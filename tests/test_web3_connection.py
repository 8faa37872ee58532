"""JSON-RPC connection setup and offline contract helpers."""

import json

import pytest
from eth_account import Account

from interchain_deploy.abi import get_abi_by_filename
from interchain_deploy.chain import ChainMetadata, MultiChain
from interchain_deploy.connection import Web3ChainConnection
from interchain_deploy.contracts import ContractFactory, is_ownable
from interchain_deploy.testing import OWNER

#: Well known Anvil test account 0
PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


@pytest.mark.asyncio
async def test_from_environment(monkeypatch):
    """Connections are created from JSON_RPC_* without touching the network."""
    monkeypatch.setenv("JSON_RPC_SEPOLIA", "http://localhost:8545")
    metadata = [
        ChainMetadata("sepolia", 11155111, 11155111, confirmations=2),
        ChainMetadata("fuji", 43113, 43113, rpc_url="http://localhost:9650/ext/bc/C/rpc"),
    ]

    multichain = MultiChain.from_environment(metadata, PRIVATE_KEY)

    conn = multichain.get_connection("sepolia")
    assert isinstance(conn, Web3ChainConnection)
    assert await multichain.get_signer_address("fuji") == Account.from_key(PRIVATE_KEY).address
    assert multichain.get_confirmations("sepolia") == 2


def test_encode_function_data():
    account = Account.from_key(PRIVATE_KEY)
    conn = Web3ChainConnection.create("http://localhost:8545", account, ChainMetadata("sepolia", 11155111, 11155111))
    ownable = conn.get_contract("Ownable.json", OWNER)

    data = conn.encode_function_data(ownable, "transferOwnership", [OWNER])

    # transferOwnership(address) selector
    assert data[:4].hex() == "f2fde38b"
    assert data[-20:].hex() == OWNER[2:].lower()
    assert is_ownable(ownable)


def test_factory_from_artifact(tmp_path):
    """Foundry style artifacts nest the bytecode."""
    path = tmp_path / "ProxyAdmin.json"
    with open(path, "wt") as f:
        json.dump({"abi": get_abi_by_filename("ProxyAdmin.json"), "bytecode": {"object": "6080604052"}}, f)

    factory = ContractFactory.from_artifact(path)

    assert factory.name == "ProxyAdmin"
    assert factory.bytecode == "0x6080604052"
    assert is_ownable(factory)
