"""Enroll routers as each other's remote peers.

Every deployed router must know the router address of every other chain,
stored as ``routers(domain) -> bytes32``. The target table is the union of the routers
we deployed and foreign deployments managed elsewhere.

Per chain, all peers are read concurrently and the differing ones are sent
in a single ``enrollRemoteRouters(domains, routers)`` transaction.
When nothing differs, nothing is sent.
"""

import asyncio
import logging
from typing import Any, Callable, Mapping

from eth_typing import HexAddress
from hexbytes import HexBytes

from interchain_deploy.abi import address_to_bytes32
from interchain_deploy.authorization import SKIPPED, AuthorizationGate
from interchain_deploy.chain import ChainName, MultiChain
from interchain_deploy.contracts import Contracts, ContractsMap


logger = logging.getLogger(__name__)


def get_router(contracts: Contracts) -> Any:
    return contracts["router"]


class RouterEnrollment:
    """Converge remote router tables."""

    def __init__(self, multichain: MultiChain, gate: AuthorizationGate, router_getter: Callable[[Contracts], Any] = get_router):
        self.multichain = multichain
        self.gate = gate
        self.router_getter = router_getter

    async def enroll_remote_routers(
        self,
        deployed: ContractsMap,
        config_map: Mapping[ChainName, Any] | None = None,
        foreign_deployments: Mapping[ChainName, HexAddress] | None = None,
    ) -> dict[ChainName, dict | None]:
        """Enroll all routers on all deployed chains.

        :param config_map:
            Used to pick up ``foreign_deployment`` entries when ``foreign_deployments`` is not given

        :param foreign_deployments:
            Chain -> router address of routers we did not deploy

        :return:
            Chain -> enrollment receipt.
            None when nothing needed enrolling, :py:data:`~interchain_deploy.authorization.SKIPPED` when not owner.
        """
        if foreign_deployments is None:
            foreign_deployments = {
                chain: config.foreign_deployment
                for chain, config in (config_map or {}).items()
                if getattr(config, "foreign_deployment", None)
            }

        all_routers: dict[ChainName, HexAddress] = {chain: self.router_getter(contracts).address for chain, contracts in deployed.items()}
        all_routers.update(foreign_deployments)

        results = {}
        for chain, contracts in deployed.items():
            results[chain] = await self.enroll_chain(chain, self.router_getter(contracts), all_routers)
        return results

    async def enroll_chain(self, chain: ChainName, router: Any, all_routers: Mapping[ChainName, HexAddress]) -> dict | None:
        """Enroll missing or stale peers on one chain."""
        conn = self.multichain.get_connection(chain)
        router_contract = conn.get_contract("Router.json", router.address)
        remote_chains = [c for c in self.multichain.get_remote_chains(chain) if c in all_routers]

        async def _diff(remote: ChainName) -> tuple[int, HexBytes] | None:
            domain = self.multichain.get_domain_id(remote)
            current = HexBytes(await router_contract.functions.routers(domain).call())
            expected = HexBytes(address_to_bytes32(all_routers[remote]))
            if current != expected:
                return domain, expected
            return None

        diffs = await asyncio.gather(*[_diff(remote) for remote in remote_chains])
        entries = [d for d in diffs if d is not None]
        if not entries:
            logger.info("No routers to enroll on %s", chain)
            return None

        domains = [domain for domain, _ in entries]
        routers = [bytes(address) for _, address in entries]

        async def _enroll():
            logger.info("Enrolling remote routers %s on %s", [self.multichain.get_chain_name(d) for d in domains], chain)
            return await conn.handle_tx(router_contract.functions.enrollRemoteRouters(domains, routers))

        result = await self.gate.run_if_owner(chain, router, _enroll, "enroll remote routers")
        if result is SKIPPED:
            logger.warning("Remote routers on %s left unenrolled: %s", chain, domains)
        return result
