"""Read-before-write authorization checks.

Privileged calls (ownership transfers, router enrollment, proxy upgrades) are only sent
when our signer currently holds the required role. Otherwise the call is skipped:
the gate logs a warning, records a :py:class:`SkippedAction` and returns :py:data:`SKIPPED`.

A skip is not an error. Callers treat a skipped step as not converged,
and :py:attr:`AuthorizationGate.skipped` lists all of them after a run.
Pass ``strict=True`` to raise :py:class:`NotAuthorized` instead.

The on-chain value can change between the check and the call,
so this is best-effort reconciliation, not locking.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from eth_typing import HexAddress

from interchain_deploy.abi import eq_address
from interchain_deploy.chain import ChainName, MultiChain
from interchain_deploy.proxy import get_proxy_admin


logger = logging.getLogger(__name__)

T = TypeVar("T")


class NotAuthorized(Exception):
    """Our signer does not hold the role needed for a privileged call, in strict mode."""

    def __init__(self, skipped: "SkippedAction"):
        super().__init__(f"{skipped.chain}: signer {skipped.signer} is not {skipped.required}, cannot {skipped.description}")
        self.skipped = skipped


class _Skipped:
    """Marker type for :py:data:`SKIPPED`."""

    def __repr__(self):
        return "SKIPPED"

    def __bool__(self):
        return False


#: Returned by the gate instead of the action result when the action was not run
SKIPPED = _Skipped()


@dataclass(slots=True, frozen=True)
class SkippedAction:
    """A privileged action we did not send."""

    chain: ChainName

    #: Address of the contract the action targets
    target: HexAddress

    #: What we tried to do
    description: str

    #: Address that holds the required role
    required: HexAddress

    #: Our signer
    signer: HexAddress


class AuthorizationGate:
    """Run privileged actions only when our signer is the owner or admin."""

    def __init__(self, multichain: MultiChain, strict: bool = False):
        self.multichain = multichain
        self.strict = strict

        #: Every action skipped by this gate, in order
        self.skipped: list[SkippedAction] = []

    async def run_if(
        self,
        chain: ChainName,
        target: HexAddress,
        required: HexAddress,
        action: Callable[[], Awaitable[T]],
        description: str = "run privileged action",
    ) -> T | _Skipped:
        """Run the action if our signer is ``required``.

        :param action:
            Coroutine function without arguments

        :return:
            Action result or :py:data:`SKIPPED`
        """
        signer = await self.multichain.get_signer_address(chain)
        if eq_address(signer, required):
            return await action()

        skipped = SkippedAction(chain, target, description, required, signer)
        if self.strict:
            raise NotAuthorized(skipped)

        logger.warning("%s: signer %s is not %s, skipping: %s on %s", chain, signer, required, description, target)
        self.skipped.append(skipped)
        return SKIPPED

    async def run_if_owner(
        self,
        chain: ChainName,
        ownable: Any,
        action: Callable[[], Awaitable[T]],
        description: str = "run owner action",
    ) -> T | _Skipped:
        """Run the action if our signer is ``ownable.owner()``."""
        conn = self.multichain.get_connection(chain)
        contract = conn.get_contract("Ownable.json", ownable.address)
        owner = await contract.functions.owner().call()
        return await self.run_if(chain, ownable.address, owner, action, description)

    async def run_if_admin(
        self,
        chain: ChainName,
        proxy: Any,
        direct_action: Callable[[], Awaitable[T]],
        delegated_action: Callable[[Any], Awaitable[T]],
        description: str = "run admin action",
    ) -> T | _Skipped:
        """Run a proxy admin action.

        The admin is read from the EIP-1967 admin slot.

        - If the admin address has code, it is a ``ProxyAdmin`` contract.
          We check its owner and call ``delegated_action(proxy_admin)``.
        - Otherwise the admin is an account and must be our signer.
          We call ``direct_action()``.
        """
        conn = self.multichain.get_connection(chain)
        admin = await get_proxy_admin(conn, proxy.address)
        code = await conn.get_code(admin)
        if code:
            proxy_admin = conn.get_contract("ProxyAdmin.json", admin)
            return await self.run_if_owner(chain, proxy_admin, lambda: delegated_action(proxy_admin), description)
        return await self.run_if(chain, proxy.address, admin, direct_action, description)
