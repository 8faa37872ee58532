"""Core messaging contracts.

Per chain:

1. ``proxyAdmin``
2. the default security module, built from :py:attr:`CoreConfig.default_ism`
3. proxied ``mailbox``, initialised with our signer as owner and the default module
4. ``validatorAnnounce``
5. proxied ``interchainGasPaymaster`` with converged per-remote gas overheads
6. ownership transfer to the configured owners

Reruns reconnect to cached contracts. A cached mailbox gets its default module
converged instead of being redeployed.
"""

import logging
from typing import Any

from eth_typing import HexAddress

from interchain_deploy.abi import eq_address
from interchain_deploy.chain import ChainName
from interchain_deploy.config import CoreConfig, IgpConfig
from interchain_deploy.contracts import Contracts
from interchain_deploy.ism import IsmConfig, MissingCapability, is_structured_config
from interchain_deploy.orchestrator import ChainOrchestrator


logger = logging.getLogger(__name__)


async def deploy_ism(orchestrator: ChainOrchestrator, chain: ChainName, config: IsmConfig) -> HexAddress:
    """Resolve a module config to an address, building the module if needed."""
    if not is_structured_config(config):
        return config
    if orchestrator.ism_builder is None:
        raise MissingCapability(f"No module builder provided, cannot build {config.type.name} module on {chain}")
    return await orchestrator.ism_builder.deploy(chain, config)


async def converge_default_ism(orchestrator: ChainOrchestrator, chain: ChainName, mailbox: Any, config: IsmConfig):
    """Point an existing mailbox at the configured default module."""
    conn = orchestrator.multichain.get_connection(chain)
    current = await mailbox.functions.defaultIsm().call()
    if is_structured_config(config):
        if orchestrator.ism_builder is None:
            raise MissingCapability(f"No module builder provided, cannot check default module on {chain}")
        if await orchestrator.ism_builder.matches(chain, current, config):
            return None
    elif eq_address(current, config):
        return None

    async def _set_default_ism():
        target = await deploy_ism(orchestrator, chain, config)
        logger.info("Setting default module of mailbox on %s to %s", chain, target)
        return await conn.handle_tx(mailbox.functions.setDefaultIsm(target))

    return await orchestrator.gate.run_if_owner(chain, mailbox, _set_default_ism, "set default module")


async def converge_gas_overheads(orchestrator: ChainOrchestrator, chain: ChainName, igp: Any, config: IgpConfig):
    """Set destination gas overheads that differ from the config, in one transaction."""
    multichain = orchestrator.multichain
    conn = multichain.get_connection(chain)
    paymaster = conn.get_contract("InterchainGasPaymaster.json", igp.address)

    entries = []
    for remote, overhead in config.gas_overhead.items():
        if remote == chain or remote not in multichain.metadata:
            continue
        domain = multichain.get_domain_id(remote)
        current = await paymaster.functions.destinationGasOverhead(domain).call()
        if current != overhead:
            entries.append((domain, overhead))

    if not entries:
        return None

    logger.info("Setting gas overheads on %s: %s", chain, entries)
    return await orchestrator.gate.run_if_owner(
        chain,
        igp,
        lambda: conn.handle_tx(paymaster.functions.setDestinationGasOverheads(entries)),
        "set destination gas overheads",
    )


async def build_core(orchestrator: ChainOrchestrator, chain: ChainName, config: CoreConfig) -> Contracts:
    """Contracts builder for the core messaging contracts."""
    assert orchestrator.proxies is not None, "Core deployment needs a proxy factory"
    deployer = orchestrator.deployer
    multichain = orchestrator.multichain
    signer = await multichain.get_signer_address(chain)
    igp_config = config.igp or IgpConfig(owner=config.owner, beneficiary=config.owner)

    proxy_admin = await deployer.deploy_contract(chain, "proxyAdmin", [])

    cached_mailbox = deployer.read_cache(chain, deployer.get_factory("mailbox"), "mailbox")
    if cached_mailbox is not None:
        mailbox = cached_mailbox
        await converge_default_ism(orchestrator, chain, mailbox, config.default_ism)
    else:
        default_ism = await deploy_ism(orchestrator, chain, config.default_ism)
        mailbox = await orchestrator.proxies.deploy_proxied_contract(
            chain,
            "mailbox",
            [multichain.get_domain_id(chain)],
            proxy_admin.address,
            [signer, default_ism],
        )

    validator_announce = await deployer.deploy_contract(chain, "validatorAnnounce", [mailbox.address])

    igp = await orchestrator.proxies.deploy_proxied_contract(
        chain,
        "interchainGasPaymaster",
        [],
        proxy_admin.address,
        [signer, igp_config.beneficiary],
    )
    await converge_gas_overheads(orchestrator, chain, igp, igp_config)

    contracts = {
        "proxyAdmin": proxy_admin,
        "mailbox": mailbox,
        "validatorAnnounce": validator_announce,
        "interchainGasPaymaster": igp,
    }
    await orchestrator.ownership.transfer_ownership_of_contracts(
        chain,
        config.owner,
        contracts,
        {"interchainGasPaymaster": igp_config.owner},
    )
    return contracts
