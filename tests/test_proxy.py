"""Transparent proxy deployment, upgrades and admin changes."""

import pytest

from interchain_deploy.authorization import SKIPPED, AuthorizationGate
from interchain_deploy.cache import AddressCache
from interchain_deploy.deployer import ContractDeployer
from interchain_deploy.proxy import ProxyManager, get_proxy_admin, get_proxy_implementation
from interchain_deploy.testing import DEPLOYER, OWNER, PROXY_FACTORY, TEST_FACTORIES, get_simulated_chain


@pytest.fixture()
def deployer(multichain) -> ContractDeployer:
    return ContractDeployer(multichain, TEST_FACTORIES)


@pytest.fixture()
def gate(multichain) -> AuthorizationGate:
    return AuthorizationGate(multichain)


@pytest.fixture()
def proxies(deployer, gate) -> ProxyManager:
    return ProxyManager(deployer, gate, PROXY_FACTORY)


async def deploy_igp(deployer: ContractDeployer, proxies: ProxyManager, chain="test1"):
    proxy_admin = await deployer.deploy_contract(chain, "proxyAdmin", [])
    igp = await proxies.deploy_proxied_contract(chain, "interchainGasPaymaster", [], proxy_admin.address, [DEPLOYER, OWNER])
    return proxy_admin, igp


@pytest.mark.asyncio
async def test_deploy_proxied_contract(multichain, deployer, proxies):
    """Implementation and proxy get deployed and cached separately."""
    conn = multichain.get_connection("test1")
    proxy_admin, igp = await deploy_igp(deployer, proxies)

    implementation = deployer.cache.get("test1", "interchainGasPaymasterImplementation")
    assert implementation is not None
    assert deployer.cache.get("test1", "interchainGasPaymaster") == igp.address
    assert await get_proxy_implementation(conn, igp.address) == implementation
    assert await get_proxy_admin(conn, igp.address) == proxy_admin.address

    # initialize() ran through the proxy, against proxy storage
    assert await igp.functions.owner().call() == DEPLOYER
    assert await igp.functions.beneficiary().call() == OWNER

    inputs = deployer.verification_inputs.get("test1")
    assert [i.name for i in inputs] == ["proxyAdmin", "interchainGasPaymasterImplementation", PROXY_FACTORY.name]
    assert inputs[-1].is_proxy


@pytest.mark.asyncio
async def test_resume_implementation_only(multichain, deployer, proxies, gate):
    """Cached implementation without a proxy deploys only the proxy."""
    conn = multichain.get_connection("test1")
    proxy_admin, igp = await deploy_igp(deployer, proxies)
    implementation = deployer.cache.get("test1", "interchainGasPaymasterImplementation")

    addresses = deployer.cache.as_dict()
    del addresses["test1"]["interchainGasPaymaster"]
    resumed_deployer = ContractDeployer(multichain, TEST_FACTORIES, cache=AddressCache(addresses))
    resumed = ProxyManager(resumed_deployer, gate, PROXY_FACTORY)

    tx_count = get_simulated_chain(multichain, "test1").tx_count
    new_igp = await resumed.deploy_proxied_contract("test1", "interchainGasPaymaster", [], proxy_admin.address, [DEPLOYER, OWNER])

    assert get_simulated_chain(multichain, "test1").tx_count == tx_count + 1
    assert new_igp.address != igp.address
    assert await get_proxy_implementation(conn, new_igp.address) == implementation
    assert [i.name for i in resumed_deployer.verification_inputs.get("test1")] == [PROXY_FACTORY.name]


@pytest.mark.asyncio
async def test_upgrade_through_proxy_admin(multichain, deployer, proxies):
    """Upgrade keeps proxy storage and is a no-op when repeated."""
    conn = multichain.get_connection("test1")
    _, igp = await deploy_igp(deployer, proxies)
    new_implementation = await deployer.deploy_contract_from_factory("test1", TEST_FACTORIES["interchainGasPaymaster"], "interchainGasPaymasterV2", [])

    receipt = await proxies.upgrade_and_initialize("test1", igp, new_implementation.address)
    assert receipt["status"] == 1
    assert await get_proxy_implementation(conn, igp.address) == new_implementation.address
    assert await igp.functions.beneficiary().call() == OWNER

    assert await proxies.upgrade_and_initialize("test1", igp, new_implementation.address) is None


@pytest.mark.asyncio
async def test_upgrade_account_admin(multichain, deployer, proxies, gate):
    """An account admin upgrades directly, anyone else is skipped."""
    conn = multichain.get_connection("test1")
    factory = TEST_FACTORIES["interchainGasPaymaster"]
    implementation = await deployer.deploy_contract_from_factory("test1", factory, "igpImplementation", [])
    igp = await proxies.deploy_proxy("test1", factory, implementation, DEPLOYER, [DEPLOYER, OWNER])
    assert await get_proxy_admin(conn, igp.address) == DEPLOYER

    new_implementation = await deployer.deploy_contract_from_factory("test1", factory, "igpImplementationV2", [])
    receipt = await proxies.upgrade_and_initialize("test1", igp, new_implementation.address)
    assert receipt["status"] == 1
    assert await get_proxy_implementation(conn, igp.address) == new_implementation.address

    # Hand the admin role away, further upgrades are not ours to do
    await proxies.change_admin("test1", igp, OWNER)
    assert await get_proxy_admin(conn, igp.address) == OWNER

    result = await proxies.upgrade_and_initialize("test1", igp, implementation.address)
    assert result is SKIPPED
    assert len(gate.skipped) == 1
    assert gate.skipped[0].required == OWNER
    assert gate.skipped[0].target == igp.address
    assert await get_proxy_implementation(conn, igp.address) == new_implementation.address


@pytest.mark.asyncio
async def test_change_admin_through_proxy_admin(multichain, deployer, proxies):
    conn = multichain.get_connection("test1")
    _, igp = await deploy_igp(deployer, proxies)
    new_proxy_admin = await deployer.deploy_contract_from_factory("test1", TEST_FACTORIES["proxyAdmin"], "newProxyAdmin", [])

    receipt = await proxies.change_admin("test1", igp, new_proxy_admin.address)
    assert receipt["status"] == 1
    assert await get_proxy_admin(conn, igp.address) == new_proxy_admin.address

    assert await proxies.change_admin("test1", igp, new_proxy_admin.address) is None
