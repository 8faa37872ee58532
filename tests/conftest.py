"""Shared fixtures: simulated test chains with security module factories and core contracts."""

import pytest
import pytest_asyncio
from eth_typing import HexAddress

from interchain_deploy.apps.core import build_core
from interchain_deploy.apps.ism_factories import build_ism_factories, deploy_ism_factories
from interchain_deploy.cache import AddressCache, MemoryAddressStore
from interchain_deploy.chain import MultiChain
from interchain_deploy.config import CoreConfig, IgpConfig, RouterConfig
from interchain_deploy.contracts import ContractsMap
from interchain_deploy.deployer import ContractDeployer
from interchain_deploy.ism import ModuleType, MultisigIsmConfig, StaticIsmFactory
from interchain_deploy.orchestrator import ChainOrchestrator
from interchain_deploy.testing import (
    OWNER,
    PROXY_FACTORY,
    TEST_CHAINS,
    TEST_FACTORIES,
    make_test_address,
    create_test_multichain,
)

#: Validator signing checkpoints on all test chains
VALIDATOR = make_test_address("validator")

#: Destination gas overhead configured for every remote
GAS_OVERHEAD = 50_000


@pytest.fixture()
def multichain() -> MultiChain:
    """Fresh test1, test2 and test3 chains."""
    return create_test_multichain()


@pytest.fixture()
def validator() -> HexAddress:
    return VALIDATOR


@pytest_asyncio.fixture()
async def ism_factories(multichain) -> ContractsMap:
    """Security module factories on all test chains."""
    deployer = ContractDeployer(multichain, TEST_FACTORIES)
    orchestrator = ChainOrchestrator(multichain, build_ism_factories, deployer)
    return await deploy_ism_factories(orchestrator, TEST_CHAINS)


@pytest.fixture()
def ism_builder(multichain, ism_factories) -> StaticIsmFactory:
    return StaticIsmFactory(multichain, ism_factories)


@pytest.fixture()
def core_config() -> dict[str, CoreConfig]:
    return {
        chain: CoreConfig(
            owner=OWNER,
            default_ism=MultisigIsmConfig(ModuleType.MESSAGE_ID_MULTISIG, [VALIDATOR], 1),
            igp=IgpConfig(owner=OWNER, beneficiary=OWNER, gas_overhead={c: GAS_OVERHEAD for c in TEST_CHAINS}),
        )
        for chain in TEST_CHAINS
    }


@pytest.fixture()
def core_store() -> MemoryAddressStore:
    """Persisted core addresses, shared between orchestrator instances of one test."""
    return MemoryAddressStore()


def create_core_orchestrator(multichain: MultiChain, store: MemoryAddressStore, ism_builder: StaticIsmFactory, **kwargs) -> ChainOrchestrator:
    cache = AddressCache.from_store(store, multichain.chains)
    deployer = ContractDeployer(multichain, TEST_FACTORIES, cache=cache)
    return ChainOrchestrator(multichain, build_core, deployer, proxy_factory=PROXY_FACTORY, ism_builder=ism_builder, **kwargs)


@pytest.fixture()
def core_orchestrator_factory(multichain, core_store, ism_builder):
    """Create core orchestrators sharing the same persisted addresses."""
    return lambda **kwargs: create_core_orchestrator(multichain, core_store, ism_builder, **kwargs)


@pytest_asyncio.fixture()
async def core_contracts(core_orchestrator_factory, core_config) -> ContractsMap:
    """Core contracts deployed on all test chains."""
    orchestrator = core_orchestrator_factory()
    return await orchestrator.deploy(core_config)


@pytest.fixture()
def router_config(core_contracts) -> dict[str, RouterConfig]:
    """Router config pointing at the deployed core contracts."""
    return {
        chain: RouterConfig(
            owner=OWNER,
            mailbox=contracts["mailbox"].address,
            interchain_gas_paymaster=contracts["interchainGasPaymaster"].address,
        )
        for chain, contracts in core_contracts.items()
    }
