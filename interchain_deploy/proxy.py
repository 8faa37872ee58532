"""Transparent upgradeable proxies.

Proxied contracts are deployed as an implementation plus a ``TransparentUpgradeableProxy``
pointing at it. Callers use the proxy address through the implementation interface.

- The implementation is cached under ``<role>Implementation``
- The proxy is cached under ``<role>``

Admin and implementation addresses are read from the
`EIP-1967 <https://eips.ethereum.org/EIPS/eip-1967>`__ storage slots.
"""

import logging
from typing import TYPE_CHECKING, Any

from eth_typing import HexAddress

from interchain_deploy.abi import bytes32_to_address, eq_address
from interchain_deploy.chain import ChainName
from interchain_deploy.connection import ChainConnection
from interchain_deploy.contracts import ContractFactory

if TYPE_CHECKING:
    from interchain_deploy.authorization import AuthorizationGate
    from interchain_deploy.deployer import ContractDeployer


logger = logging.getLogger(__name__)

#: bytes32(uint256(keccak256("eip1967.proxy.admin")) - 1)
ADMIN_SLOT = 0xB53127684A568B3173AE13B9F8A6016E243E63B6E8EE1178D6A717850B5D6103

#: bytes32(uint256(keccak256("eip1967.proxy.implementation")) - 1)
IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC


async def _read_address_slot(conn: ChainConnection, address: HexAddress, slot: int) -> HexAddress:
    raw = await conn.get_storage_at(address, slot)
    return bytes32_to_address(bytes(raw).rjust(32, b"\x00"))


async def get_proxy_admin(conn: ChainConnection, proxy_address: HexAddress) -> HexAddress:
    """Read the admin of an EIP-1967 proxy."""
    return await _read_address_slot(conn, proxy_address, ADMIN_SLOT)


async def get_proxy_implementation(conn: ChainConnection, proxy_address: HexAddress) -> HexAddress:
    """Read the implementation of an EIP-1967 proxy."""
    return await _read_address_slot(conn, proxy_address, IMPLEMENTATION_SLOT)


class ProxyManager:
    """Deploy, upgrade and re-admin transparent proxies.

    Upgrades and admin changes are no-ops when the proxy already points at the target.
    Otherwise they go through :py:meth:`AuthorizationGate.run_if_admin`.
    """

    def __init__(self, deployer: "ContractDeployer", gate: "AuthorizationGate", proxy_factory: ContractFactory):
        """
        :param proxy_factory:
            Creation code of ``TransparentUpgradeableProxy(logic, admin, data)``
        """
        self.deployer = deployer
        self.gate = gate
        self.proxy_factory = proxy_factory
        self.multichain = deployer.multichain

    async def deploy_proxy(
        self,
        chain: ChainName,
        factory: ContractFactory,
        implementation: Any,
        proxy_admin: HexAddress,
        initialize_args: list | None = None,
    ) -> Any:
        """Deploy a proxy in front of an implementation.

        :param factory:
            Implementation contract type, gives the interface of the returned handle

        :param initialize_args:
            Arguments of ``initialize()`` called in the proxy constructor.
            If not given, the proxy is constructed with empty calldata.

        :return:
            Proxy address bound to the implementation interface
        """
        conn = self.multichain.get_connection(chain)
        if initialize_args is not None:
            init_data = conn.encode_function_data(implementation, "initialize", initialize_args)
        else:
            init_data = b""

        logger.info("Deploying proxy for %s on %s, admin %s", implementation.address, chain, proxy_admin)
        proxy = await self.deployer.deploy_contract_from_factory(
            chain,
            self.proxy_factory,
            self.proxy_factory.name,
            [implementation.address, proxy_admin, init_data],
            is_proxy=True,
        )
        return conn.attach(factory, proxy.address)

    async def deploy_proxied_contract(
        self,
        chain: ChainName,
        role: str,
        constructor_args: list,
        proxy_admin: HexAddress,
        initialize_args: list | None = None,
    ) -> Any:
        """Deploy an implementation and a proxy for a role, cache-aware.

        If the implementation is cached but the proxy is not,
        only the proxy is deployed.

        :return:
            Proxy address bound to the implementation interface
        """
        factory = self.deployer.get_factory(role)
        cached = self.deployer.read_cache(chain, factory, role)
        if cached is not None:
            return cached

        implementation_role = f"{role}Implementation"
        implementation = await self.deployer.deploy_contract_from_factory(chain, factory, implementation_role, constructor_args)
        self.deployer.write_cache(chain, implementation_role, implementation.address)

        proxy = await self.deploy_proxy(chain, factory, implementation, proxy_admin, initialize_args)
        self.deployer.write_cache(chain, role, proxy.address)
        return proxy

    async def upgrade_and_initialize(
        self,
        chain: ChainName,
        proxy: Any,
        implementation: HexAddress,
        initialize_args: list | None = None,
    ) -> dict | None:
        """Point a proxy at a new implementation, optionally calling ``initialize()``.

        :return:
            Receipt, ``None`` if already up to date, or :py:data:`~interchain_deploy.authorization.SKIPPED`
        """
        conn = self.multichain.get_connection(chain)
        current = await get_proxy_implementation(conn, proxy.address)
        if eq_address(current, implementation):
            logger.info("Proxy %s on %s already at implementation %s", proxy.address, chain, implementation)
            return None

        if initialize_args is not None:
            data = conn.encode_function_data(proxy, "initialize", initialize_args)
        else:
            data = b""

        transparent = conn.get_contract("TransparentUpgradeableProxy.json", proxy.address)
        logger.info("Upgrading proxy %s on %s from %s to %s", proxy.address, chain, current, implementation)
        return await self.gate.run_if_admin(
            chain,
            proxy,
            lambda: conn.handle_tx(transparent.functions.upgradeToAndCall(implementation, data)),
            lambda proxy_admin: conn.handle_tx(proxy_admin.functions.upgradeAndCall(proxy.address, implementation, data)),
            f"upgrade to {implementation}",
        )

    async def change_admin(self, chain: ChainName, proxy: Any, admin: HexAddress) -> dict | None:
        """Transfer the proxy admin role.

        :return:
            Receipt, ``None`` if already the admin, or :py:data:`~interchain_deploy.authorization.SKIPPED`
        """
        conn = self.multichain.get_connection(chain)
        current = await get_proxy_admin(conn, proxy.address)
        if eq_address(current, admin):
            return None

        transparent = conn.get_contract("TransparentUpgradeableProxy.json", proxy.address)
        logger.info("Changing admin of proxy %s on %s from %s to %s", proxy.address, chain, current, admin)
        return await self.gate.run_if_admin(
            chain,
            proxy,
            lambda: conn.handle_tx(transparent.functions.changeAdmin(admin)),
            lambda proxy_admin: conn.handle_tx(proxy_admin.functions.changeProxyAdmin(proxy.address, admin)),
            f"change admin to {admin}",
        )
