"""Cache-aware contract deployment.

:py:class:`ContractDeployer` deploys one contract on one chain at a time:

- on a cache hit it reconnects to the cached address and sends nothing
- on a miss it sends the creation transaction, waits for confirmations,
  optionally calls ``initialize()``, records the verification input and caches the address

The address cache and the verification inputs are plain attributes of the deployer,
owned by one deployment run.
"""

import logging
from typing import Any

from eth_typing import HexAddress

from interchain_deploy.abi import ZERO_ADDRESS
from interchain_deploy.cache import AddressCache
from interchain_deploy.chain import ChainName, MultiChain
from interchain_deploy.config import TimelockConfig
from interchain_deploy.contracts import ContractFactories, ContractFactory
from interchain_deploy.verification import ContractVerificationInput, VerificationInputs


logger = logging.getLogger(__name__)


class ContractDeployer:
    """Deploy contracts from a role -> factory mapping.

    Example:

    .. code-block:: python

        deployer = ContractDeployer(multichain, {"mailbox": mailbox_factory}, cache=cache)
        mailbox = await deployer.deploy_contract("sepolia", "mailbox", [domain_id])
    """

    def __init__(
        self,
        multichain: MultiChain,
        factories: ContractFactories,
        cache: AddressCache | None = None,
        verification_inputs: VerificationInputs | None = None,
    ):
        self.multichain = multichain
        self.factories = factories

        #: Deployed addresses, read before and written after each deployment
        self.cache = cache if cache is not None else AddressCache()

        #: Everything we deployed during this run
        self.verification_inputs = verification_inputs if verification_inputs is not None else VerificationInputs()

    def get_factory(self, role: str) -> ContractFactory:
        assert role in self.factories, f"No contract factory for role {role}, we have {list(self.factories.keys())}"
        return self.factories[role]

    def read_cache(self, chain: ChainName, factory: ContractFactory, role: str) -> Any | None:
        """Reconnect to a cached contract.

        :return:
            Contract handle or None on a cache miss
        """
        address = self.cache.get(chain, role)
        if address is None:
            return None
        logger.info("Recovered %s on %s at %s", role, chain, address)
        return self.multichain.get_connection(chain).attach(factory, address)

    def write_cache(self, chain: ChainName, role: str, address: HexAddress):
        self.cache.set(chain, role, address)

    async def deploy_contract_from_factory(
        self,
        chain: ChainName,
        factory: ContractFactory,
        name: str,
        constructor_args: list,
        initialize_args: list | None = None,
        is_proxy: bool = False,
    ) -> Any:
        """Deploy a contract, reconnecting to it if ``name`` is cached.

        Does not write the cache, see :py:meth:`deploy_contract`.

        :param name:
            Cache key and verification input name

        :param initialize_args:
            Call ``initialize(*initialize_args)`` after the creation is confirmed

        :raise interchain_deploy.connection.TransactionFailed:
            Creation or initialisation reverted
        """
        cached = self.read_cache(chain, factory, name)
        if cached is not None:
            return cached

        conn = self.multichain.get_connection(chain)
        logger.info("Deploying %s (%s) on %s", name, factory.name, chain)
        result = await conn.deploy(factory, *constructor_args)
        contract = result.contract

        if initialize_args is not None:
            logger.info("Initialising %s on %s", name, chain)
            await conn.handle_tx(contract.functions.initialize(*initialize_args))

        self.verification_inputs.append(
            chain,
            ContractVerificationInput(
                name=name,
                address=contract.address,
                constructor_arguments=bytes(result.constructor_data).hex(),
                is_proxy=is_proxy,
            ),
        )
        explorer_url = self.multichain.try_get_explorer_address_url(chain, contract.address)
        logger.info("Deployed %s on %s at %s", name, chain, explorer_url or contract.address)
        return contract

    async def deploy_contract(
        self,
        chain: ChainName,
        role: str,
        constructor_args: list,
        initialize_args: list | None = None,
    ) -> Any:
        """Deploy the contract for a role and cache its address."""
        contract = await self.deploy_contract_from_factory(chain, self.get_factory(role), role, constructor_args, initialize_args)
        self.write_cache(chain, role, contract.address)
        return contract

    async def deploy_timelock(self, chain: ChainName, config: TimelockConfig) -> Any:
        """Deploy ``TimelockController(delay, [proposer], [executor], admin=0x0)``.

        The factory is looked up under the ``timelockController`` role.
        Proposer and executor default to our signer.
        """
        signer = await self.multichain.get_signer_address(chain)
        proposer = config.proposer or signer
        executor = config.executor or signer
        return await self.deploy_contract(
            chain,
            "timelockController",
            [config.delay, [proposer], [executor], ZERO_ADDRESS],
        )
