"""Converge contract owners to their configured targets."""

import logging
from typing import Any, Mapping

from eth_typing import HexAddress

from interchain_deploy.abi import eq_address
from interchain_deploy.authorization import SKIPPED, AuthorizationGate
from interchain_deploy.chain import ChainName, MultiChain
from interchain_deploy.contracts import Contracts, ContractsMap, filter_ownable_contracts


logger = logging.getLogger(__name__)


class OwnershipTransfer:
    """Transfer ownership of every ownable contract whose owner differs from the target.

    Contracts already owned by the target are skipped silently.
    Transfers we are not authorised to send are skipped by the gate.
    """

    def __init__(self, multichain: MultiChain, gate: AuthorizationGate):
        self.multichain = multichain
        self.gate = gate

    async def transfer_ownership_of_contracts(
        self,
        chain: ChainName,
        owner: HexAddress,
        ownables: Contracts,
        owner_overrides: Mapping[str, HexAddress] | None = None,
    ) -> list[dict]:
        """Converge owners on one chain.

        :param owner:
            Default target owner

        :param ownables:
            Role -> contract. Only contracts with ``owner()`` and ``transferOwnership()`` are touched.

        :param owner_overrides:
            Role -> target owner for contracts not owned by ``owner``

        :return:
            Receipts of the transfers we sent
        """
        owner_overrides = owner_overrides or {}
        conn = self.multichain.get_connection(chain)
        receipts = []
        for role, ownable in filter_ownable_contracts(ownables).items():
            target = owner_overrides.get(role, owner)
            contract = conn.get_contract("Ownable.json", ownable.address)
            current = await contract.functions.owner().call()
            if eq_address(current, target):
                continue

            logger.info("Transferring ownership of %s on %s from %s to %s", role, chain, current, target)
            receipt = await self.gate.run_if_owner(
                chain,
                ownable,
                lambda: conn.handle_tx(contract.functions.transferOwnership(target)),
                f"transfer ownership of {role} to {target}",
            )
            if receipt is not SKIPPED:
                receipts.append(receipt)
        return receipts

    async def transfer_ownership(
        self,
        contracts_map: ContractsMap,
        config_map: Mapping[ChainName, Any],
        owner_overrides: Mapping[ChainName, Mapping[str, HexAddress]] | None = None,
    ) -> dict[ChainName, list[dict]]:
        """Converge owners on all chains.

        :param config_map:
            Chain -> config with ``owner`` and optional ``owner_overrides``

        :param owner_overrides:
            Chain -> role -> owner, applied on top of the config overrides

        :return:
            Chain -> receipts
        """
        owner_overrides = owner_overrides or {}
        results = {}
        for chain, contracts in contracts_map.items():
            config = config_map[chain]
            overrides = dict(getattr(config, "owner_overrides", None) or {})
            overrides.update(owner_overrides.get(chain, {}))
            results[chain] = await self.transfer_ownership_of_contracts(chain, config.owner, contracts, overrides)
        return results
