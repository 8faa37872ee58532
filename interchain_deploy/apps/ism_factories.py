"""Deploy the security module factories."""

from typing import Iterable, Mapping

from interchain_deploy.chain import ChainName
from interchain_deploy.contracts import Contracts, ContractsMap
from interchain_deploy.orchestrator import ChainOrchestrator

#: Factory roles, in deployment order
ISM_FACTORY_ROLES = (
    "merkleRootMultisigIsmFactory",
    "messageIdMultisigIsmFactory",
    "aggregationIsmFactory",
    "routingIsmFactory",
)


async def build_ism_factories(orchestrator: ChainOrchestrator, chain: ChainName, config: bool) -> Contracts:
    contracts = {}
    for role in ISM_FACTORY_ROLES:
        contracts[role] = await orchestrator.deployer.deploy_contract(chain, role, [])
    return contracts


async def deploy_ism_factories(orchestrator: ChainOrchestrator, chains: Iterable[ChainName] | Mapping[ChainName, bool]) -> ContractsMap:
    """Deploy factories to a list of chains, or to the chains of a ``{chain: True}`` config map.

    :param orchestrator:
        Orchestrator created with :py:func:`build_ism_factories`
    """
    if isinstance(chains, Mapping):
        config_map = dict(chains)
    else:
        config_map = {chain: True for chain in chains}
    return await orchestrator.deploy(config_map)
