"""Deployments backed by address, verification and start block files."""

import json

import pytest

from interchain_deploy.artifacts import ArtifactPaths, deploy_with_artifacts
from interchain_deploy.connection import TransactionFailed
from interchain_deploy.testing import get_simulated_chain, total_tx_count
from interchain_deploy.verification import ContractVerificationInput, VerificationInputs


def read_json(path):
    with open(path, "rt") as f:
        return json.load(f)


@pytest.mark.asyncio
async def test_artifact_files(tmp_path, multichain, core_orchestrator_factory, core_config):
    """Addresses and verification inputs survive across runs."""
    paths = ArtifactPaths.in_folder(tmp_path / "core")

    orchestrator = core_orchestrator_factory()
    contracts = await deploy_with_artifacts(core_config, orchestrator, paths)

    addresses = read_json(paths.addresses)
    assert addresses["test2"]["mailbox"] == contracts["test2"]["mailbox"].address
    assert "mailboxImplementation" in addresses["test2"]

    verification = read_json(paths.verification)
    assert [i["name"] for i in verification["test1"]] == [
        "proxyAdmin",
        "mailboxImplementation",
        "TransparentUpgradeableProxy",
        "validatorAnnounce",
        "interchainGasPaymasterImplementation",
        "TransparentUpgradeableProxy",
    ]
    assert read_json(paths.start_blocks).keys() == {"test1", "test2", "test3"}

    # Rerun reads the address file and adds nothing
    tx_count = total_tx_count(multichain)
    orchestrator = core_orchestrator_factory()
    await deploy_with_artifacts(core_config, orchestrator, paths)
    assert total_tx_count(multichain) == tx_count
    assert read_json(paths.verification) == verification


@pytest.mark.asyncio
async def test_artifact_files_on_failure(tmp_path, multichain, core_orchestrator_factory, core_config):
    """A failed run still writes what it did."""
    paths = ArtifactPaths.in_folder(tmp_path)
    get_simulated_chain(multichain, "test2").fail_deploys.add("InterchainGasPaymaster")

    orchestrator = core_orchestrator_factory()
    with pytest.raises(TransactionFailed):
        await deploy_with_artifacts(core_config, orchestrator, paths)

    addresses = read_json(paths.addresses)
    assert "mailbox" in addresses["test2"]
    assert "interchainGasPaymaster" not in addresses["test2"]
    verification = read_json(paths.verification)
    assert len(verification["test1"]) == 6
    assert len(verification["test2"]) == 4
    assert "test3" not in verification
    assert read_json(paths.start_blocks).keys() == {"test1", "test2"}


def test_merge_verification_inputs():
    """New inputs go after the stored ones."""
    inputs = VerificationInputs()
    inputs.append("test1", ContractVerificationInput("router", "0x1", "00", False))
    inputs.append("test2", ContractVerificationInput("router", "0x2", "", False))

    existing = {"test1": [ContractVerificationInput("proxyAdmin", "0x3", "").to_dict()]}
    merged = inputs.merge_with_existing(existing)

    assert [i["name"] for i in merged["test1"]] == ["proxyAdmin", "router"]
    assert merged["test2"] == [{"name": "router", "address": "0x2", "constructorArguments": "", "isProxy": False}]
    assert len(inputs) == 2
