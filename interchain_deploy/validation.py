"""Pre-flight compatibility check of a router configuration.

For every ordered pair of configured chains (local, remote):

- the local gas paymaster must quote a payment for delivery to remote
- the local security module, or the mailbox default, must be able to verify messages from remote

Run this before deploying anything. The first incompatible pair raises :py:class:`ConfigIncompatibility`.
"""

import logging
from typing import Any, Mapping

from eth_typing import HexAddress

from interchain_deploy.chain import ChainName, MultiChain
from interchain_deploy.ism import CALL_ERRORS, IsmConfig, is_structured_config, module_can_certainly_verify, normalise_ism


logger = logging.getLogger(__name__)


class ConfigIncompatibility(Exception):
    """Configuration of a chain pair cannot work."""

    def __init__(self, local: ChainName, remote: ChainName, module: HexAddress | str, msg: str):
        super().__init__(msg)
        self.local = local
        self.remote = remote
        self.module = module


async def get_local_ism(multichain: MultiChain, chain: ChainName, config: Any) -> IsmConfig:
    """Configured module, or the mailbox default when unset or zero."""
    ism = normalise_ism(config.interchain_security_module)
    if ism is not None:
        return ism
    mailbox = multichain.get_connection(chain).get_contract("Mailbox.json", config.mailbox)
    return await mailbox.functions.defaultIsm().call()


async def check_config(multichain: MultiChain, config_map: Mapping[ChainName, Any]):
    """Check all chain pairs.

    :param config_map:
        Chain -> config with ``mailbox``, ``interchain_gas_paymaster`` and ``interchain_security_module``

    :raise ConfigIncompatibility:
        On the first incompatible pair
    """
    chains, _ = multichain.intersect(config_map.keys())
    for local in chains:
        config = config_map[local]
        conn = multichain.get_connection(local)
        igp = conn.get_contract("InterchainGasPaymaster.json", config.interchain_gas_paymaster)
        ism = await get_local_ism(multichain, local, config)

        for remote in chains:
            if remote == local:
                continue

            remote_domain = multichain.get_domain_id(remote)
            try:
                await igp.functions.quoteGasPayment(remote_domain, 1).call()
            except CALL_ERRORS as e:
                raise ConfigIncompatibility(
                    local,
                    remote,
                    config.interchain_gas_paymaster,
                    f"Interchain gas paymaster at {config.interchain_gas_paymaster} on {local} cannot quote gas payment for {remote}",
                ) from e

            if not await module_can_certainly_verify(multichain, local, remote, ism):
                module = ism if not is_structured_config(ism) else f"{ism.type.name} config"
                raise ConfigIncompatibility(
                    local,
                    remote,
                    module,
                    f"Security module {module} on {local} cannot verify messages from {remote}",
                )

        logger.info("Config of %s is compatible with %d remotes", local, len(chains) - 1)
