"""Proxied middleware routers with a timelock."""

import pytest

from interchain_deploy.apps.middleware import INTERCHAIN_ACCOUNT_ROUTER, INTERCHAIN_QUERY_ROUTER, create_middleware_deployer
from interchain_deploy.config import ProxiedRouterConfig, TimelockConfig
from interchain_deploy.proxy import get_proxy_admin
from interchain_deploy.testing import OWNER, PROXY_FACTORY, TEST_CHAINS, TEST_FACTORIES, total_tx_count


@pytest.fixture()
def middleware_config(core_contracts) -> dict[str, ProxiedRouterConfig]:
    return {
        chain: ProxiedRouterConfig(
            owner=OWNER,
            mailbox=contracts["mailbox"].address,
            interchain_gas_paymaster=contracts["interchainGasPaymaster"].address,
            timelock=TimelockConfig(delay=86400),
        )
        for chain, contracts in core_contracts.items()
    }


@pytest.mark.asyncio
async def test_interchain_accounts(multichain, ism_builder, middleware_config):
    """Timelock owns the proxy admin, the router goes to the configured owner."""
    deployer = create_middleware_deployer(multichain, TEST_FACTORIES, PROXY_FACTORY, INTERCHAIN_ACCOUNT_ROUTER, ism_builder)

    contracts_map = await deployer.deploy(middleware_config)

    for chain in TEST_CHAINS:
        contracts = contracts_map[chain]
        assert set(contracts) == {"proxyAdmin", "timelockController", INTERCHAIN_ACCOUNT_ROUTER}
        router = contracts[INTERCHAIN_ACCOUNT_ROUTER]
        conn = multichain.get_connection(chain)

        assert await contracts["proxyAdmin"].functions.owner().call() == contracts["timelockController"].address
        assert await get_proxy_admin(conn, router.address) == contracts["proxyAdmin"].address
        assert await router.functions.owner().call() == OWNER
        assert await router.functions.mailbox().call() == middleware_config[chain].mailbox
        assert len(await router.functions.domains().call()) == len(TEST_CHAINS) - 1


@pytest.mark.asyncio
async def test_interchain_queries_without_timelock(multichain, ism_builder, middleware_config):
    for config in middleware_config.values():
        config.timelock = None
    deployer = create_middleware_deployer(multichain, TEST_FACTORIES, PROXY_FACTORY, INTERCHAIN_QUERY_ROUTER, ism_builder)

    contracts_map = await deployer.deploy(middleware_config)

    for contracts in contracts_map.values():
        assert set(contracts) == {"proxyAdmin", INTERCHAIN_QUERY_ROUTER}
        assert await contracts["proxyAdmin"].functions.owner().call() == OWNER

    tx_count = total_tx_count(multichain)
    rerun = create_middleware_deployer(
        multichain,
        TEST_FACTORIES,
        PROXY_FACTORY,
        INTERCHAIN_QUERY_ROUTER,
        ism_builder,
        cache=deployer.orchestrator.cache,
    )
    await rerun.deploy(middleware_config)
    assert total_tx_count(multichain) == tx_count
