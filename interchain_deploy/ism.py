"""Interchain security modules.

Security modules (ISMs) authenticate inbound messages on the destination chain.
They come in a few shapes:

- multisig modules hold a static validator set and a threshold
- aggregation modules require ``threshold`` of their sub-modules to verify
- routing modules pick a sub-module by the origin domain of the message

A module can be given as a plain address or as a structured config
(:py:class:`MultisigIsmConfig`, :py:class:`AggregationIsmConfig`, :py:class:`RoutingIsmConfig`).
This module can

- compare a deployed module against a config, recursively, see :py:func:`module_matches_config`
- tell whether a module can verify messages from an origin at all, see :py:func:`module_can_certainly_verify`
- build modules from configs through deterministic factories, see :py:class:`StaticIsmFactory`
"""

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, TypeAlias, Union

from eth_typing import HexAddress
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from interchain_deploy.abi import eq_address, is_zero_address
from interchain_deploy.chain import ChainName, MultiChain
from interchain_deploy.contracts import ContractsMap
from interchain_deploy.message import format_probe_message


logger = logging.getLogger(__name__)

#: Reverts and empty return data from view calls
CALL_ERRORS = (ContractLogicError, BadFunctionCallOutput)


class MissingCapability(Exception):
    """A structured module config was given but there is nothing that could build it."""


class ModuleType(enum.IntEnum):
    """Values returned by ``moduleType()``."""

    UNUSED = 0
    ROUTING = 1
    AGGREGATION = 2
    LEGACY_MULTISIG = 3
    MERKLE_ROOT_MULTISIG = 4
    MESSAGE_ID_MULTISIG = 5
    NULL = 6


MULTISIG_TYPES = {ModuleType.LEGACY_MULTISIG, ModuleType.MERKLE_ROOT_MULTISIG, ModuleType.MESSAGE_ID_MULTISIG}


@dataclass(slots=True)
class MultisigIsmConfig:
    type: ModuleType
    validators: list[HexAddress]
    threshold: int

    def __post_init__(self):
        self.type = ModuleType(self.type)
        assert self.type in (ModuleType.MERKLE_ROOT_MULTISIG, ModuleType.MESSAGE_ID_MULTISIG), f"Not a multisig type: {self.type}"


@dataclass(slots=True)
class AggregationIsmConfig:
    modules: list["IsmConfig"]
    threshold: int
    type: ModuleType = ModuleType.AGGREGATION


@dataclass(slots=True)
class RoutingIsmConfig:
    #: Owner of the deployed routing module
    owner: HexAddress

    #: Origin chain -> module used for messages from that chain
    domains: dict[ChainName, "IsmConfig"] = field(default_factory=dict)
    type: ModuleType = ModuleType.ROUTING


#: A module address or a structured config describing one
IsmConfig: TypeAlias = Union[HexAddress, str, MultisigIsmConfig, AggregationIsmConfig, RoutingIsmConfig]


def parse_ism_config(data: Any) -> IsmConfig:
    """Read a module config from its JSON form.

    - A string is a module address
    - ``type`` is a :py:class:`ModuleType` name like ``"messageIdMultisig"`` or an integer
    """
    if isinstance(data, str):
        return data

    assert isinstance(data, dict), f"Cannot parse module config: {data}"
    module_type = _parse_module_type(data["type"])
    if module_type in (ModuleType.MERKLE_ROOT_MULTISIG, ModuleType.MESSAGE_ID_MULTISIG):
        return MultisigIsmConfig(module_type, list(data["validators"]), int(data["threshold"]))
    elif module_type == ModuleType.AGGREGATION:
        return AggregationIsmConfig([parse_ism_config(m) for m in data["modules"]], int(data["threshold"]))
    elif module_type == ModuleType.ROUTING:
        return RoutingIsmConfig(data["owner"], {chain: parse_ism_config(m) for chain, m in data["domains"].items()})
    else:
        raise ValueError(f"Unsupported module type in config: {data['type']}")


def _parse_module_type(value: int | str) -> ModuleType:
    if isinstance(value, int):
        return ModuleType(value)
    # messageIdMultisig -> MESSAGE_ID_MULTISIG
    name = "".join("_" + c if c.isupper() else c for c in value).upper()
    return ModuleType[name]


def is_structured_config(config: IsmConfig) -> bool:
    return not isinstance(config, str)


def normalise_ism(config: IsmConfig | None) -> IsmConfig | None:
    """Treat a zero module address as unset."""
    if config is not None and not is_structured_config(config) and is_zero_address(config):
        return None
    return config


def describe_ism(config: IsmConfig) -> str:
    if is_structured_config(config):
        return f"{config.type.name} module"
    return config


async def _read_module_type(conn, address: HexAddress) -> ModuleType | None:
    module = conn.get_contract("InterchainSecurityModule.json", address)
    try:
        return ModuleType(await module.functions.moduleType().call())
    except CALL_ERRORS as e:
        logger.debug("moduleType() failed for %s: %s", address, e)
        return None


async def module_can_certainly_verify(
    multichain: MultiChain,
    destination: ChainName,
    origin: ChainName,
    module: IsmConfig,
) -> bool:
    """Can the module on ``destination`` verify messages coming from ``origin``.

    "Certainly" means the module has a non-zero threshold it can reach.
    It does not mean validators are running.

    :param module:
        Module address on the destination chain, or a config
    """
    if is_structured_config(module):
        return await _config_can_verify(multichain, destination, origin, module)

    conn = multichain.get_connection(destination)
    message = format_probe_message(multichain.get_domain_id(origin), multichain.get_domain_id(destination))
    module_type = await _read_module_type(conn, module)
    try:
        if module_type == ModuleType.ROUTING:
            routing = conn.get_contract("RoutingIsm.json", module)
            sub_module = await routing.functions.route(message).call()
            return await module_can_certainly_verify(multichain, destination, origin, sub_module)
        elif module_type in MULTISIG_TYPES:
            multisig = conn.get_contract("MultisigIsm.json", module)
            validators, threshold = await multisig.functions.validatorsAndThreshold(message).call()
            return 0 < threshold <= len(validators)
        elif module_type == ModuleType.AGGREGATION:
            aggregation = conn.get_contract("AggregationIsm.json", module)
            modules, threshold = await aggregation.functions.modulesAndThreshold(message).call()
            verified = 0
            for sub_module in modules:
                if await module_can_certainly_verify(multichain, destination, origin, sub_module):
                    verified += 1
            return 0 < threshold <= verified
        elif module_type == ModuleType.NULL:
            return True
        else:
            logger.info("Module %s on %s has unsupported type %s", module, destination, module_type)
            return False
    except CALL_ERRORS as e:
        logger.info("Module %s on %s cannot verify messages from %s: %s", module, destination, origin, e)
        return False


async def _config_can_verify(multichain: MultiChain, destination: ChainName, origin: ChainName, config: IsmConfig) -> bool:
    if isinstance(config, MultisigIsmConfig):
        return 0 < config.threshold <= len(config.validators)
    elif isinstance(config, AggregationIsmConfig):
        verified = 0
        for sub_module in config.modules:
            if await module_can_certainly_verify(multichain, destination, origin, sub_module):
                verified += 1
        return 0 < config.threshold <= verified
    elif isinstance(config, RoutingIsmConfig):
        if origin not in config.domains:
            return False
        return await module_can_certainly_verify(multichain, destination, origin, config.domains[origin])
    raise AssertionError(f"Unknown module config {config}")


async def module_matches_config(
    multichain: MultiChain,
    chain: ChainName,
    module: HexAddress,
    config: IsmConfig,
) -> bool:
    """Is the deployed module structurally the same as the config.

    Aggregation and routing modules are compared recursively.
    """
    if not is_structured_config(config):
        return eq_address(module, config)

    if is_zero_address(module):
        return False

    conn = multichain.get_connection(chain)
    module_type = await _read_module_type(conn, module)
    if module_type != config.type:
        return False

    domain_id = multichain.get_domain_id(chain)
    message = format_probe_message(domain_id, domain_id)
    try:
        if isinstance(config, MultisigIsmConfig):
            multisig = conn.get_contract("MultisigIsm.json", module)
            validators, threshold = await multisig.functions.validatorsAndThreshold(message).call()
            return threshold == config.threshold and _address_set(validators) == _address_set(config.validators)

        elif isinstance(config, AggregationIsmConfig):
            aggregation = conn.get_contract("AggregationIsm.json", module)
            modules, threshold = await aggregation.functions.modulesAndThreshold(message).call()
            if threshold != config.threshold or len(modules) != len(config.modules):
                return False
            remaining = list(modules)
            for sub_config in config.modules:
                for candidate in remaining:
                    if await module_matches_config(multichain, chain, candidate, sub_config):
                        remaining.remove(candidate)
                        break
                else:
                    return False
            return True

        elif isinstance(config, RoutingIsmConfig):
            routing = conn.get_contract("RoutingIsm.json", module)
            owner = await routing.functions.owner().call()
            if not eq_address(owner, config.owner):
                return False
            domains = set(await routing.functions.domains().call())
            expected = {multichain.get_domain_id(c): sub for c, sub in config.domains.items()}
            if domains != set(expected):
                return False
            for remote_domain, sub_config in expected.items():
                sub_module = await routing.functions.module(remote_domain).call()
                if not await module_matches_config(multichain, chain, sub_module, sub_config):
                    return False
            return True

    except CALL_ERRORS as e:
        logger.info("Could not compare module %s on %s: %s", module, chain, e)
        return False

    raise AssertionError(f"Unknown module config {config}")


def _address_set(addresses: list[str]) -> set[str]:
    return {a.lower() for a in addresses}


def _sorted_addresses(addresses: list[str]) -> list[str]:
    return sorted(addresses, key=lambda a: a.lower())


class IsmBuilder(ABC):
    """Something that can deploy security modules from configs."""

    @abstractmethod
    async def matches(self, chain: ChainName, module: HexAddress, config: IsmConfig) -> bool:
        """Does the deployed module satisfy the config."""

    @abstractmethod
    async def deploy(self, chain: ChainName, config: IsmConfig) -> HexAddress:
        """Deploy a module for the config and return its address."""


class StaticIsmFactory(IsmBuilder):
    """Build modules using the factory contracts deployed by :py:mod:`interchain_deploy.apps.ism_factories`.

    - Multisig and aggregation modules come from static factories that deploy
      to an address derived from the sorted address set and threshold.
      If the predicted address already has code, nothing is sent.
    - Routing modules come from the ``routingIsmFactory``, initialised with the
      origin domain -> module table and then handed over to the configured owner.
    """

    #: Multisig type -> factory role name
    MULTISIG_FACTORIES = {
        ModuleType.MERKLE_ROOT_MULTISIG: "merkleRootMultisigIsmFactory",
        ModuleType.MESSAGE_ID_MULTISIG: "messageIdMultisigIsmFactory",
    }

    def __init__(
        self,
        multichain: MultiChain,
        factories: ContractsMap | dict[ChainName, dict[str, HexAddress]],
    ):
        """
        :param factories:
            Chain -> factory role -> contract or address.
            Routing configs cannot be built on chains without ``routingIsmFactory``.
        """
        self.multichain = multichain
        self.factories = factories

    async def matches(self, chain: ChainName, module: HexAddress, config: IsmConfig) -> bool:
        return await module_matches_config(self.multichain, chain, module, config)

    def _get_factory(self, chain: ChainName, role: str, abi_fname: str = "StaticThresholdAddressSetFactory.json"):
        assert chain in self.factories, f"No module factories on {chain}"
        factory = self.factories[chain].get(role)
        assert factory is not None, f"No {role} on {chain}"
        address = getattr(factory, "address", factory)
        return self.multichain.get_connection(chain).get_contract(abi_fname, address)

    async def deploy(self, chain: ChainName, config: IsmConfig) -> HexAddress:
        if not is_structured_config(config):
            return config

        if isinstance(config, MultisigIsmConfig):
            factory = self._get_factory(chain, self.MULTISIG_FACTORIES[config.type])
            return await self._deploy_static_set(chain, factory, config.validators, config.threshold)

        elif isinstance(config, AggregationIsmConfig):
            modules = []
            for sub_config in config.modules:
                modules.append(await self.deploy(chain, sub_config))
            factory = self._get_factory(chain, "aggregationIsmFactory")
            return await self._deploy_static_set(chain, factory, modules, config.threshold)

        elif isinstance(config, RoutingIsmConfig):
            return await self._deploy_routing(chain, config)

        raise AssertionError(f"Unknown module config {config}")

    async def _deploy_static_set(self, chain: ChainName, factory, values: list[HexAddress], threshold: int) -> HexAddress:
        conn = self.multichain.get_connection(chain)
        values = _sorted_addresses(values)
        address = await factory.functions.getAddress(values, threshold).call()
        code = await conn.get_code(address)
        if code:
            logger.info("Recovered static module %s on %s", address, chain)
            return address

        logger.info("Deploying static module %s on %s, threshold %d of %d", address, chain, threshold, len(values))
        await conn.handle_tx(factory.functions.deploy(values, threshold))
        return address

    async def _deploy_routing(self, chain: ChainName, config: RoutingIsmConfig) -> HexAddress:
        if not self.factories.get(chain, {}).get("routingIsmFactory"):
            raise MissingCapability(f"No routingIsmFactory on {chain}, cannot build routing module")

        domains = []
        modules = []
        for origin, sub_config in config.domains.items():
            domains.append(self.multichain.get_domain_id(origin))
            modules.append(await self.deploy(chain, sub_config))

        conn = self.multichain.get_connection(chain)
        factory = self._get_factory(chain, "routingIsmFactory", "DomainRoutingIsmFactory.json")
        logger.info("Deploying routing module on %s for domains %s", chain, domains)
        receipt = await conn.handle_tx(factory.functions.deploy(domains, modules))
        events = conn.get_event_args(factory, receipt, "ModuleDeployed")
        assert len(events) == 1, f"Expected one ModuleDeployed event, got {events}"
        address = events[0]["module"]

        # The factory makes the caller the owner
        signer = await conn.get_signer_address()
        if not eq_address(signer, config.owner):
            routing = conn.get_contract("Ownable.json", address)
            await conn.handle_tx(routing.functions.transferOwnership(config.owner))

        logger.info("Deployed routing module %s on %s", address, chain)
        return address
