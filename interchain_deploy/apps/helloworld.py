"""Plain router application, one non-upgradeable ``router`` per chain."""

from interchain_deploy.chain import ChainName, MultiChain
from interchain_deploy.config import RouterConfig
from interchain_deploy.contracts import ContractFactories, Contracts
from interchain_deploy.deployer import ContractDeployer
from interchain_deploy.ism import IsmBuilder
from interchain_deploy.orchestrator import ChainOrchestrator
from interchain_deploy.router import RouterDeployer


async def build_helloworld(orchestrator: ChainOrchestrator, chain: ChainName, config: RouterConfig) -> Contracts:
    router = await orchestrator.deployer.deploy_contract(chain, "router", [config.mailbox, config.interchain_gas_paymaster])
    return {"router": router}


def create_helloworld_deployer(
    multichain: MultiChain,
    factories: ContractFactories,
    ism_builder: IsmBuilder | None = None,
    **orchestrator_kwargs,
) -> RouterDeployer:
    """Router deployer for the hello world application.

    :param factories:
        Must have the ``router`` role

    :param orchestrator_kwargs:
        Passed to :py:class:`ChainOrchestrator`
    """
    deployer = ContractDeployer(multichain, factories, cache=orchestrator_kwargs.pop("cache", None))
    orchestrator = ChainOrchestrator(multichain, build_helloworld, deployer, ism_builder=ism_builder, **orchestrator_kwargs)
    return RouterDeployer(orchestrator)
