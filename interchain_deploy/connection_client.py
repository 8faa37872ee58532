"""Converge the mailbox, gas paymaster and security module pointers of a router."""

import logging
from typing import Any

from eth_typing import HexAddress

from interchain_deploy.abi import eq_address, is_zero_address
from interchain_deploy.authorization import AuthorizationGate
from interchain_deploy.chain import ChainName, MultiChain
from interchain_deploy.config import ConnectionClientConfig, RouterConfig
from interchain_deploy.ism import IsmBuilder, IsmConfig, MissingCapability, describe_ism, is_structured_config, normalise_ism


logger = logging.getLogger(__name__)


class ConnectionClientInitializer:
    """Point a connection client at its configured mailbox, paymaster and module.

    Each pointer is read first and only written when it differs.
    All writes need the client owner, see :py:meth:`AuthorizationGate.run_if_owner`.
    """

    def __init__(self, multichain: MultiChain, gate: AuthorizationGate, ism_builder: IsmBuilder | None = None):
        self.multichain = multichain
        self.gate = gate
        self.ism_builder = ism_builder

    async def init_connection_client(self, chain: ChainName, client: Any, config: ConnectionClientConfig | RouterConfig) -> list[dict]:
        """Converge one client.

        Pointers are read first. The owner check only happens when something differs,
        and a module given as a structured config is only built once the check passed.

        :raise MissingCapability:
            The module is given as a structured config and we have no :py:class:`IsmBuilder`

        :return:
            Receipts of the update transactions, or :py:data:`~interchain_deploy.authorization.SKIPPED`
        """
        ism = normalise_ism(config.interchain_security_module)
        if ism is not None and is_structured_config(ism) and self.ism_builder is None:
            raise MissingCapability(f"No module builder provided, cannot build {ism.type.name} module for {client.address} on {chain}")

        conn = self.multichain.get_connection(chain)
        router = conn.get_contract("Router.json", client.address)
        updates = []

        def _set(bound_call):
            return lambda: conn.handle_tx(bound_call)

        current_mailbox = await router.functions.mailbox().call()
        if not eq_address(current_mailbox, config.mailbox):
            updates.append((f"set mailbox to {config.mailbox}", _set(router.functions.setMailbox(config.mailbox))))

        current_igp = await router.functions.interchainGasPaymaster().call()
        if not eq_address(current_igp, config.interchain_gas_paymaster):
            updates.append(
                (
                    f"set gas paymaster to {config.interchain_gas_paymaster}",
                    _set(router.functions.setInterchainGasPaymaster(config.interchain_gas_paymaster)),
                )
            )

        if ism is not None:
            current_ism = await router.functions.interchainSecurityModule().call()
            if is_zero_address(current_ism):
                mailbox = conn.get_contract("Mailbox.json", config.mailbox)
                current_ism = await mailbox.functions.defaultIsm().call()

            if not await self._ism_matches(chain, current_ism, ism):
                updates.append((f"set security module to {describe_ism(ism)}", lambda: self._set_ism(chain, conn, router, ism)))

        if not updates:
            logger.info("Connection client %s on %s is up to date", client.address, chain)
            return []

        async def _send():
            receipts = []
            for description, send in updates:
                logger.info("%s: %s on %s", chain, description, client.address)
                receipts.append(await send())
            return receipts

        return await self.gate.run_if_owner(
            chain,
            client,
            _send,
            "initialize connection client: " + ", ".join(description for description, _ in updates),
        )

    async def _ism_matches(self, chain: ChainName, current: HexAddress, target: IsmConfig) -> bool:
        if not is_structured_config(target):
            return eq_address(current, target)
        if await self.ism_builder.matches(chain, current, target):
            logger.info("Security module %s on %s already matches config", current, chain)
            return True
        return False

    async def _set_ism(self, chain: ChainName, conn, router, target: IsmConfig) -> dict:
        # Modules are only built once we know we may point the client at them
        module = await self.ism_builder.deploy(chain, target) if is_structured_config(target) else target
        return await conn.handle_tx(router.functions.setInterchainSecurityModule(module))
