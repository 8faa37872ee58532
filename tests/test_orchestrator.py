"""Sequential multi-chain deployment: idempotence, partial failure, resume and deadlines."""

import asyncio
import datetime
import logging

import pytest

from interchain_deploy.apps.core import build_core
from interchain_deploy.apps.ism_factories import build_ism_factories
from interchain_deploy.connection import TransactionFailed
from interchain_deploy.deployer import ContractDeployer
from interchain_deploy.orchestrator import ChainDeploymentTimeout, ChainOrchestrator
from interchain_deploy.testing import TEST_CHAINS, TEST_FACTORIES, create_test_multichain, get_simulated_chain, total_tx_count

CORE_ROLES = {"proxyAdmin", "mailbox", "validatorAnnounce", "interchainGasPaymaster"}


@pytest.mark.asyncio
async def test_deploy_all_chains(multichain, core_orchestrator_factory, core_config):
    orchestrator = core_orchestrator_factory()
    contracts = await orchestrator.deploy(core_config)

    assert list(contracts) == TEST_CHAINS
    for chain in TEST_CHAINS:
        assert set(contracts[chain]) == CORE_ROLES
        # Starting block is recorded before anything is sent
        assert orchestrator.starting_block_numbers[chain] < get_simulated_chain(multichain, chain).block_number


@pytest.mark.asyncio
async def test_rerun_sends_nothing(multichain, core_orchestrator_factory, core_config, core_contracts):
    """Second run with the same addresses reconnects to everything."""
    tx_count = total_tx_count(multichain)

    orchestrator = core_orchestrator_factory()
    contracts = await orchestrator.deploy(core_config)

    assert total_tx_count(multichain) == tx_count
    assert len(orchestrator.verification_inputs) == 0
    assert orchestrator.gate.skipped == []
    for chain in TEST_CHAINS:
        assert {role: c.address for role, c in contracts[chain].items()} == {role: c.address for role, c in core_contracts[chain].items()}


@pytest.mark.asyncio
async def test_partial_failure_and_resume(multichain, core_orchestrator_factory, core_config, core_store):
    """A failing chain keeps earlier chains committed, the rerun only finishes the failed one."""
    get_simulated_chain(multichain, "test3").fail_deploys.add("ValidatorAnnounce")

    orchestrator = core_orchestrator_factory()
    with pytest.raises(TransactionFailed):
        await orchestrator.deploy(core_config)

    assert list(orchestrator.deployed_contracts) == ["test1", "test2"]
    # Mailbox got deployed and cached before the failure
    partial_mailbox = core_store.data["test3"]["mailbox"]
    assert "validatorAnnounce" not in core_store.data["test3"]

    get_simulated_chain(multichain, "test3").fail_deploys.clear()
    tx_counts = {chain: get_simulated_chain(multichain, chain).tx_count for chain in TEST_CHAINS}

    orchestrator = core_orchestrator_factory()
    contracts = await orchestrator.deploy(core_config)

    assert list(contracts) == TEST_CHAINS
    assert get_simulated_chain(multichain, "test1").tx_count == tx_counts["test1"]
    assert get_simulated_chain(multichain, "test2").tx_count == tx_counts["test2"]
    assert get_simulated_chain(multichain, "test3").tx_count > tx_counts["test3"]
    assert contracts["test3"]["mailbox"].address == partial_mailbox
    assert set(contracts["test3"]) == CORE_ROLES


@pytest.mark.asyncio
async def test_resume_removed_contracts(multichain, core_orchestrator_factory, core_config, core_store, core_contracts):
    """Contracts removed from the address store are redeployed, the rest reused."""
    del core_store.data["test2"]["mailbox"]
    del core_store.data["test2"]["validatorAnnounce"]

    orchestrator = core_orchestrator_factory()
    contracts = await orchestrator.deploy(core_config)

    old = core_contracts["test2"]
    new = contracts["test2"]
    assert new["proxyAdmin"].address == old["proxyAdmin"].address
    assert new["interchainGasPaymaster"].address == old["interchainGasPaymaster"].address
    assert new["mailbox"].address != old["mailbox"].address
    assert await new["validatorAnnounce"].functions.mailbox().call() == new["mailbox"].address

    # Only test2 got new contracts, the implementation was reused
    assert [i.name for i in orchestrator.verification_inputs.get("test2")] == ["TransparentUpgradeableProxy", "validatorAnnounce"]
    assert orchestrator.verification_inputs.get("test1") == []


@pytest.mark.asyncio
async def test_chain_timeout():
    """A slow chain times out alone, earlier chains stay committed."""
    multichain = create_test_multichain(latency=0.05)
    deployer = ContractDeployer(multichain, TEST_FACTORIES)
    orchestrator = ChainOrchestrator(
        multichain,
        build_ism_factories,
        deployer,
        chain_timeouts={"test2": datetime.timedelta(microseconds=1)},
    )

    with pytest.raises(ChainDeploymentTimeout) as exc_info:
        await orchestrator.deploy({chain: True for chain in TEST_CHAINS})

    assert exc_info.value.chain == "test2"
    assert list(orchestrator.deployed_contracts) == ["test1"]
    assert orchestrator.get_chain_timeout("test1") == datetime.timedelta(minutes=5)


@pytest.mark.asyncio
async def test_unknown_chain(multichain, caplog):
    """Chains missing from the registry are skipped with a warning."""
    deployer = ContractDeployer(multichain, TEST_FACTORIES)
    orchestrator = ChainOrchestrator(multichain, build_ism_factories, deployer)

    with caplog.at_level(logging.WARNING):
        contracts = await orchestrator.deploy({"test1": True, "test9": True})

    assert list(contracts) == ["test1"]
    assert "test9" in caplog.text


@pytest.mark.asyncio
async def test_builder_error_propagates(multichain, core_orchestrator_factory, core_config):
    """Any builder error stops the run at that chain."""

    async def build_core_but_test2(orchestrator, chain, config):
        if chain == "test2":
            raise RuntimeError("RPC went away")
        return await build_core(orchestrator, chain, config)

    orchestrator = core_orchestrator_factory()
    orchestrator.contracts_builder = build_core_but_test2
    test3_tx_count = get_simulated_chain(multichain, "test3").tx_count

    with pytest.raises(RuntimeError):
        await orchestrator.deploy(core_config)

    assert list(orchestrator.deployed_contracts) == ["test1"]
    assert get_simulated_chain(multichain, "test3").tx_count == test3_tx_count


@pytest.mark.asyncio
async def test_builder_timeout_is_not_deadline(multichain):
    """A timeout inside the builder, like a slow RPC call, is reported as is."""

    async def build_with_rpc_timeout(orchestrator, chain, config):
        raise asyncio.TimeoutError("RPC request timed out")

    orchestrator = ChainOrchestrator(multichain, build_with_rpc_timeout, ContractDeployer(multichain, TEST_FACTORIES))

    with pytest.raises(asyncio.TimeoutError, match="RPC request timed out"):
        await orchestrator.deploy({"test1": True})

    assert orchestrator.deployed_contracts == {}
