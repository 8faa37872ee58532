"""Converging mailbox, gas paymaster and security module pointers of a router."""

import pytest

from interchain_deploy.authorization import SKIPPED, AuthorizationGate
from interchain_deploy.config import ConnectionClientConfig
from interchain_deploy.connection_client import ConnectionClientInitializer
from interchain_deploy.deployer import ContractDeployer
from interchain_deploy.abi import ZERO_ADDRESS
from interchain_deploy.ism import MissingCapability, ModuleType, MultisigIsmConfig, RoutingIsmConfig, module_matches_config
from interchain_deploy.testing import OWNER, TEST_FACTORIES, get_simulated_chain, make_test_address


@pytest.fixture()
def gate(multichain) -> AuthorizationGate:
    return AuthorizationGate(multichain)


@pytest.fixture()
def client_config(core_contracts) -> ConnectionClientConfig:
    return ConnectionClientConfig(
        mailbox=core_contracts["test1"]["mailbox"].address,
        interchain_gas_paymaster=core_contracts["test1"]["interchainGasPaymaster"].address,
    )


async def deploy_stale_router(multichain):
    """Router pointing at addresses that are not ours."""
    deployer = ContractDeployer(multichain, TEST_FACTORIES)
    return await deployer.deploy_contract("test1", "router", [make_test_address("old mailbox"), make_test_address("old paymaster")])


@pytest.mark.asyncio
async def test_converge_pointers(multichain, gate, client_config):
    """Differing pointers are updated once, the second pass sends nothing."""
    router = await deploy_stale_router(multichain)
    initializer = ConnectionClientInitializer(multichain, gate)

    receipts = await initializer.init_connection_client("test1", router, client_config)
    assert len(receipts) == 2
    assert await router.functions.mailbox().call() == client_config.mailbox
    assert await router.functions.interchainGasPaymaster().call() == client_config.interchain_gas_paymaster

    tx_count = get_simulated_chain(multichain, "test1").tx_count
    assert await initializer.init_connection_client("test1", router, client_config) == []
    assert get_simulated_chain(multichain, "test1").tx_count == tx_count


@pytest.mark.asyncio
async def test_module_same_as_mailbox_default(multichain, gate, ism_builder, client_config, validator):
    """Unset module on the router means the mailbox default, which already matches."""
    router = await deploy_stale_router(multichain)
    client_config.interchain_security_module = MultisigIsmConfig(ModuleType.MESSAGE_ID_MULTISIG, [validator], 1)
    initializer = ConnectionClientInitializer(multichain, gate, ism_builder)

    receipts = await initializer.init_connection_client("test1", router, client_config)

    assert len(receipts) == 2
    assert await router.functions.interchainSecurityModule().call() == "0x0000000000000000000000000000000000000000"


@pytest.mark.asyncio
async def test_module_built_from_config(multichain, gate, ism_builder, client_config, validator):
    """A module that differs from the mailbox default gets built and set."""
    router = await deploy_stale_router(multichain)
    config = MultisigIsmConfig(ModuleType.MERKLE_ROOT_MULTISIG, [validator, make_test_address("validator 2")], 2)
    client_config.interchain_security_module = config
    initializer = ConnectionClientInitializer(multichain, gate, ism_builder)

    receipts = await initializer.init_connection_client("test1", router, client_config)

    assert len(receipts) == 3
    module = await router.functions.interchainSecurityModule().call()
    assert await module_matches_config(multichain, "test1", module, config)

    assert await initializer.init_connection_client("test1", router, client_config) == []


@pytest.mark.asyncio
async def test_module_config_without_builder(multichain, gate, client_config, validator):
    router = await deploy_stale_router(multichain)
    client_config.interchain_security_module = MultisigIsmConfig(ModuleType.MESSAGE_ID_MULTISIG, [validator], 1)
    initializer = ConnectionClientInitializer(multichain, gate)

    with pytest.raises(MissingCapability):
        await initializer.init_connection_client("test1", router, client_config)


@pytest.mark.asyncio
async def test_not_owner(multichain, gate, client_config):
    router = await deploy_stale_router(multichain)
    conn = multichain.get_connection("test1")
    await conn.handle_tx(router.functions.transferOwnership(OWNER))
    initializer = ConnectionClientInitializer(multichain, gate)

    result = await initializer.init_connection_client("test1", router, client_config)

    assert result is SKIPPED
    assert gate.skipped[0].target == router.address


@pytest.mark.asyncio
async def test_not_owner_builds_no_module(multichain, gate, ism_builder, client_config, validator):
    """A module for a client we do not own is never built."""
    router = await deploy_stale_router(multichain)
    conn = multichain.get_connection("test1")
    await conn.handle_tx(router.functions.transferOwnership(OWNER))
    client_config.interchain_security_module = RoutingIsmConfig(
        owner=OWNER,
        domains={"test2": MultisigIsmConfig(ModuleType.MESSAGE_ID_MULTISIG, [validator], 1)},
    )
    initializer = ConnectionClientInitializer(multichain, gate, ism_builder)
    chain = get_simulated_chain(multichain, "test1")
    tx_count = chain.tx_count

    for _ in range(3):
        assert await initializer.init_connection_client("test1", router, client_config) is SKIPPED

    assert chain.tx_count == tx_count
    assert len(gate.skipped) == 3


@pytest.mark.asyncio
async def test_zero_module_means_mailbox_default(multichain, gate, client_config):
    """Zero module address in the config is not written to the client."""
    router = await deploy_stale_router(multichain)
    client_config.interchain_security_module = ZERO_ADDRESS
    initializer = ConnectionClientInitializer(multichain, gate)

    assert len(await initializer.init_connection_client("test1", router, client_config)) == 2

    tx_count = get_simulated_chain(multichain, "test1").tx_count
    assert await initializer.init_connection_client("test1", router, client_config) == []
    assert get_simulated_chain(multichain, "test1").tx_count == tx_count
