"""Router application deployment pipeline.

:py:meth:`RouterDeployer.deploy` runs, in order:

1. pre-flight :py:func:`~interchain_deploy.validation.check_config`
2. :py:meth:`ChainOrchestrator.deploy` for chains without a foreign deployment
3. remote router enrollment, foreign deployments included
4. connection client initialisation
5. ownership transfer
"""

import logging
from typing import Any, Callable, Mapping

from eth_typing import HexAddress

from interchain_deploy.chain import ChainName
from interchain_deploy.contracts import Contracts, ContractsMap
from interchain_deploy.enrollment import RouterEnrollment, get_router
from interchain_deploy.orchestrator import ChainOrchestrator
from interchain_deploy.validation import check_config


logger = logging.getLogger(__name__)


class RouterDeployer:
    """Deploy and wire up a router application.

    :param orchestrator:
        Orchestrator with the application contracts builder

    :param router_getter:
        Picks the router out of a chain's contracts
    """

    def __init__(self, orchestrator: ChainOrchestrator, router_getter: Callable[[Contracts], Any] = get_router):
        self.orchestrator = orchestrator
        self.multichain = orchestrator.multichain
        self.router_getter = router_getter
        self.enrollment = RouterEnrollment(self.multichain, orchestrator.gate, router_getter)

    @property
    def deployed_contracts(self) -> ContractsMap:
        return self.orchestrator.deployed_contracts

    async def check_config(self, config_map: Mapping[ChainName, Any]):
        await check_config(self.multichain, config_map)

    async def enroll_remote_routers(
        self,
        contracts_map: ContractsMap,
        config_map: Mapping[ChainName, Any],
        foreign_deployments: Mapping[ChainName, HexAddress],
    ):
        return await self.enrollment.enroll_remote_routers(contracts_map, config_map, foreign_deployments)

    async def init_connection_clients(self, contracts_map: ContractsMap, config_map: Mapping[ChainName, Any]) -> dict[ChainName, list[dict]]:
        results = {}
        for chain, contracts in contracts_map.items():
            router = self.router_getter(contracts)
            results[chain] = await self.orchestrator.connection_clients.init_connection_client(chain, router, config_map[chain])
        return results

    async def transfer_ownership(self, contracts_map: ContractsMap, config_map: Mapping[ChainName, Any]) -> dict[ChainName, list[dict]]:
        """Transfer to the configured owners.

        A deployed ``timelockController`` takes ownership of the ``proxyAdmin`` of its chain.
        """
        overrides = {}
        for chain, contracts in contracts_map.items():
            if "timelockController" in contracts and "proxyAdmin" in contracts:
                overrides[chain] = {"proxyAdmin": contracts["timelockController"].address}
        return await self.orchestrator.ownership.transfer_ownership(contracts_map, config_map, overrides)

    async def deploy(self, config_map: Mapping[ChainName, Any], check: bool = True) -> ContractsMap:
        """Deploy routers and converge their peers, clients and owners.

        :param check:
            Run the pre-flight config check first
        """
        if check:
            await self.check_config(config_map)

        config_to_deploy = {chain: config for chain, config in config_map.items() if not config.foreign_deployment}
        foreign_deployments = {chain: config.foreign_deployment for chain, config in config_map.items() if config.foreign_deployment}
        if foreign_deployments:
            logger.info("Using foreign deployments on %s", list(foreign_deployments))

        contracts_map = await self.orchestrator.deploy(config_to_deploy)
        await self.enroll_remote_routers(contracts_map, config_map, foreign_deployments)
        await self.init_connection_clients(contracts_map, config_map)
        await self.transfer_ownership(contracts_map, config_map)
        return contracts_map
