"""Proxied middleware routers: interchain accounts and interchain queries.

Per chain a ``proxyAdmin``, an optional ``timelockController`` and the proxied router.
The router is initialised with our signer as owner so the router pipeline can enroll peers
and set connection clients before ownership moves to the configured owner.
When a timelock is configured it takes ownership of the ``proxyAdmin``,
see :py:meth:`RouterDeployer.transfer_ownership`.
"""

from functools import partial

from interchain_deploy.abi import ZERO_ADDRESS
from interchain_deploy.chain import ChainName, MultiChain
from interchain_deploy.config import ProxiedRouterConfig
from interchain_deploy.contracts import ContractFactories, ContractFactory, Contracts
from interchain_deploy.deployer import ContractDeployer
from interchain_deploy.ism import IsmBuilder
from interchain_deploy.orchestrator import ChainOrchestrator
from interchain_deploy.router import RouterDeployer

INTERCHAIN_ACCOUNT_ROUTER = "interchainAccountRouter"

INTERCHAIN_QUERY_ROUTER = "interchainQueryRouter"


async def build_proxied_router(
    orchestrator: ChainOrchestrator,
    chain: ChainName,
    config: ProxiedRouterConfig,
    router_role: str,
) -> Contracts:
    assert orchestrator.proxies is not None, "Proxied routers need a proxy factory"
    deployer = orchestrator.deployer

    proxy_admin = await deployer.deploy_contract(chain, "proxyAdmin", [])
    contracts = {"proxyAdmin": proxy_admin}

    if config.timelock is not None:
        contracts["timelockController"] = await deployer.deploy_timelock(chain, config.timelock)

    signer = await orchestrator.multichain.get_signer_address(chain)
    contracts[router_role] = await orchestrator.proxies.deploy_proxied_contract(
        chain,
        router_role,
        [],
        proxy_admin.address,
        [config.mailbox, config.interchain_gas_paymaster, ZERO_ADDRESS, signer],
    )
    return contracts


build_interchain_account_router = partial(build_proxied_router, router_role=INTERCHAIN_ACCOUNT_ROUTER)

build_interchain_query_router = partial(build_proxied_router, router_role=INTERCHAIN_QUERY_ROUTER)


def create_middleware_deployer(
    multichain: MultiChain,
    factories: ContractFactories,
    proxy_factory: ContractFactory,
    router_role: str = INTERCHAIN_ACCOUNT_ROUTER,
    ism_builder: IsmBuilder | None = None,
    **orchestrator_kwargs,
) -> RouterDeployer:
    """Router deployer for interchain accounts or queries.

    :param router_role:
        :py:data:`INTERCHAIN_ACCOUNT_ROUTER` or :py:data:`INTERCHAIN_QUERY_ROUTER`
    """
    assert router_role in (INTERCHAIN_ACCOUNT_ROUTER, INTERCHAIN_QUERY_ROUTER), f"Unknown middleware router {router_role}"
    deployer = ContractDeployer(multichain, factories, cache=orchestrator_kwargs.pop("cache", None))
    orchestrator = ChainOrchestrator(
        multichain,
        partial(build_proxied_router, router_role=router_role),
        deployer,
        proxy_factory=proxy_factory,
        ism_builder=ism_builder,
        **orchestrator_kwargs,
    )
    return RouterDeployer(orchestrator, router_getter=lambda contracts: contracts[router_role])
