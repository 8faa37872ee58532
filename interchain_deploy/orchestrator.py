"""Deploy a contract set to many chains, one chain at a time.

:py:class:`ChainOrchestrator` walks the configured chains sequentially and runs
an application specific *contracts builder* for each under a deadline.
A chain is added to :py:attr:`ChainOrchestrator.deployed_contracts` only when
its builder finished in time. A failing chain leaves earlier chains committed.

There is no retry. Rerun with the same address cache to resume:
cached contracts are reconnected and only the missing ones are deployed.

Example:

.. code-block:: python

    async def build_router(orchestrator: ChainOrchestrator, chain: str, config: RouterConfig) -> dict:
        router = await orchestrator.deployer.deploy_contract(chain, "router", [config.mailbox])
        return {"router": router}

    orchestrator = ChainOrchestrator(multichain, build_router, ContractDeployer(multichain, factories, cache=cache))
    contracts = await orchestrator.deploy(config_map)
"""

import asyncio
import datetime
import logging
from typing import Any, Awaitable, Callable, Mapping, TypeAlias

from interchain_deploy.authorization import AuthorizationGate
from interchain_deploy.chain import ChainName, MultiChain
from interchain_deploy.connection_client import ConnectionClientInitializer
from interchain_deploy.contracts import ContractFactory, Contracts, ContractsMap
from interchain_deploy.deployer import ContractDeployer
from interchain_deploy.ism import IsmBuilder
from interchain_deploy.ownership import OwnershipTransfer
from interchain_deploy.proxy import ProxyManager


logger = logging.getLogger(__name__)

#: How long we let one chain deploy
DEFAULT_CHAIN_TIMEOUT = datetime.timedelta(minutes=5)

#: ``async builder(orchestrator, chain, config) -> {role: contract}``
ContractsBuilder: TypeAlias = Callable[["ChainOrchestrator", ChainName, Any], Awaitable[Contracts]]


class ChainDeploymentTimeout(Exception):
    """A chain did not finish deploying within its deadline."""

    def __init__(self, chain: ChainName, timeout: datetime.timedelta):
        super().__init__(f"Timed out deploying {chain} after {timeout}")
        self.chain = chain
        self.timeout = timeout


class ChainOrchestrator:
    """Sequential, resumable multi-chain deployment.

    The orchestrator owns the helpers a contracts builder needs:

    - :py:attr:`deployer` for plain contracts
    - :py:attr:`proxies` for proxied contracts
    - :py:attr:`gate` for privileged calls
    - :py:attr:`connection_clients` to converge router pointers
    - :py:attr:`ownership` to converge owners
    """

    def __init__(
        self,
        multichain: MultiChain,
        contracts_builder: ContractsBuilder,
        deployer: ContractDeployer,
        proxy_factory: ContractFactory | None = None,
        ism_builder: IsmBuilder | None = None,
        chain_timeout: datetime.timedelta = DEFAULT_CHAIN_TIMEOUT,
        chain_timeouts: Mapping[ChainName, datetime.timedelta] | None = None,
        strict_authorization: bool = False,
    ):
        """
        :param contracts_builder:
            Deploys the contract set of one chain and returns it as a role -> contract mapping

        :param proxy_factory:
            ``TransparentUpgradeableProxy`` creation code, needed by builders deploying proxied contracts

        :param chain_timeout:
            Deadline for one chain

        :param chain_timeouts:
            Per-chain deadline overrides

        :param strict_authorization:
            Raise instead of skipping privileged calls we are not authorised for
        """
        assert isinstance(chain_timeout, datetime.timedelta), f"chain_timeout must be timedelta, got {chain_timeout}"
        self.multichain = multichain
        self.contracts_builder = contracts_builder
        self.deployer = deployer
        self.ism_builder = ism_builder
        self.chain_timeout = chain_timeout
        self.chain_timeouts = dict(chain_timeouts or {})

        self.gate = AuthorizationGate(multichain, strict=strict_authorization)
        self.proxies = ProxyManager(deployer, self.gate, proxy_factory) if proxy_factory else None
        self.connection_clients = ConnectionClientInitializer(multichain, self.gate, ism_builder)
        self.ownership = OwnershipTransfer(multichain, self.gate)

        #: Chain -> contracts, for chains that completed
        self.deployed_contracts: ContractsMap = {}

        #: Chain -> block number before we started deploying there.
        #:
        #: Off-chain agents start indexing from these.
        self.starting_block_numbers: dict[ChainName, int] = {}

    def __repr__(self):
        return f"<ChainOrchestrator {self.multichain} deployed:{list(self.deployed_contracts)}>"

    @property
    def cache(self):
        return self.deployer.cache

    @property
    def verification_inputs(self):
        return self.deployer.verification_inputs

    def get_chain_timeout(self, chain: ChainName) -> datetime.timedelta:
        return self.chain_timeouts.get(chain, self.chain_timeout)

    async def deploy(self, config_map: Mapping[ChainName, Any]) -> ContractsMap:
        """Deploy to every configured chain known to the registry.

        :raise ChainDeploymentTimeout:
            A chain did not complete in time. Chains before it stay committed.

        :return:
            :py:attr:`deployed_contracts`
        """
        chains, unknown = self.multichain.intersect(config_map.keys())
        if unknown:
            logger.warning("Chains %s are configured but not in the registry, skipping them", unknown)

        logger.info("Start deploy to %s", chains)
        for chain in chains:
            await self.deploy_chain(chain, config_map[chain])
        return self.deployed_contracts

    async def deploy_chain(self, chain: ChainName, config: Any) -> Contracts:
        """Run the contracts builder for one chain and commit its result."""
        conn = self.multichain.get_connection(chain)
        signer = await conn.get_signer_address()
        signer_url = self.multichain.try_get_explorer_address_url(chain, signer)
        logger.info("Deploying to %s from %s", chain, signer_url or signer)

        self.starting_block_numbers[chain] = await conn.get_block_number()

        timeout = self.get_chain_timeout(chain)
        task = asyncio.ensure_future(self.contracts_builder(self, chain, config))
        done, _ = await asyncio.wait({task}, timeout=timeout.total_seconds())
        if not done:
            # A TimeoutError raised by the builder itself surfaces from task.result() below
            task.cancel()
            await asyncio.wait({task})
            logger.error("Timed out deploying %s after %s, completed chains: %s", chain, timeout, list(self.deployed_contracts))
            raise ChainDeploymentTimeout(chain, timeout)

        try:
            contracts = task.result()
        except Exception as e:
            logger.error("Deployment failed on %s: %s, completed chains: %s", chain, e, list(self.deployed_contracts))
            raise

        self.deployed_contracts[chain] = contracts
        logger.info("Completed %s: %s", chain, ", ".join(contracts.keys()))
        return contracts
