"""Per-chain deployment configuration.

Configs are given as a ``{chain: config}`` mapping, usually loaded from JSON
with :py:func:`load_config_map`. JSON keys are camelCase as used by the contract
interfaces, e.g.

.. code-block:: json

    {
        "sepolia": {
            "owner": "0x...",
            "mailbox": "0x...",
            "interchainGasPaymaster": "0x...",
            "interchainSecurityModule": {"type": "messageIdMultisig", "validators": ["0x..."], "threshold": 1}
        }
    }
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Type, TypeVar

from eth_typing import HexAddress

from interchain_deploy.chain import ChainName
from interchain_deploy.ism import IsmConfig, normalise_ism, parse_ism_config


T = TypeVar("T")


@dataclass(slots=True)
class OwnableConfig:
    #: Final owner of all ownable contracts
    owner: HexAddress

    #: Role -> owner, for contracts with a different owner than :py:attr:`owner`
    owner_overrides: dict[str, HexAddress] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "OwnableConfig":
        return cls(owner=data["owner"], owner_overrides=dict(data.get("ownerOverrides", {})))


@dataclass(slots=True)
class ConnectionClientConfig:
    """Where a router-like contract sends, pays for and verifies messages."""

    mailbox: HexAddress
    interchain_gas_paymaster: HexAddress

    #: Address, structured module config or None to use the mailbox default
    interchain_security_module: IsmConfig | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ConnectionClientConfig":
        return cls(
            mailbox=data["mailbox"],
            interchain_gas_paymaster=data["interchainGasPaymaster"],
            interchain_security_module=_parse_optional_ism(data),
        )


@dataclass(slots=True)
class TimelockConfig:
    #: Minimum delay in seconds
    delay: int

    #: Defaults to the deployer
    proposer: HexAddress | None = None

    #: Defaults to the deployer
    executor: HexAddress | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "TimelockConfig":
        roles = data.get("roles", {})
        return cls(delay=int(data["delay"]), proposer=roles.get("proposer"), executor=roles.get("executor"))


@dataclass(slots=True)
class RouterConfig:
    """Router deployment on one chain."""

    owner: HexAddress
    mailbox: HexAddress
    interchain_gas_paymaster: HexAddress
    interchain_security_module: IsmConfig | None = None

    #: Router already deployed outside this run.
    #:
    #: It is enrolled on other chains but never deployed or modified.
    foreign_deployment: HexAddress | None = None

    owner_overrides: dict[str, HexAddress] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "RouterConfig":
        return cls(**_router_kwargs(data))


@dataclass(slots=True)
class ProxiedRouterConfig(RouterConfig):
    """Router behind a transparent proxy."""

    #: If set, a timelock owns the proxy admin
    timelock: TimelockConfig | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ProxiedRouterConfig":
        timelock = TimelockConfig.from_dict(data["timelock"]) if data.get("timelock") else None
        return cls(timelock=timelock, **_router_kwargs(data))


@dataclass(slots=True)
class IgpConfig:
    owner: HexAddress

    #: Receives collected gas payments
    beneficiary: HexAddress

    #: Remote chain -> destination gas overhead
    gas_overhead: dict[ChainName, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "IgpConfig":
        return cls(
            owner=data["owner"],
            beneficiary=data.get("beneficiary", data["owner"]),
            gas_overhead={k: int(v) for k, v in data.get("gasOverhead", {}).items()},
        )


@dataclass(slots=True)
class CoreConfig:
    owner: HexAddress

    #: Module the mailbox uses when a recipient does not specify one
    default_ism: IsmConfig

    igp: IgpConfig | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "CoreConfig":
        igp = IgpConfig.from_dict(data["igp"]) if data.get("igp") else None
        return cls(owner=data["owner"], default_ism=parse_ism_config(data["defaultIsm"]), igp=igp)


def _parse_optional_ism(data: dict) -> IsmConfig | None:
    ism = data.get("interchainSecurityModule")
    return normalise_ism(parse_ism_config(ism)) if ism else None


def _router_kwargs(data: dict) -> dict:
    return dict(
        owner=data["owner"],
        mailbox=data["mailbox"],
        interchain_gas_paymaster=data["interchainGasPaymaster"],
        interchain_security_module=_parse_optional_ism(data),
        foreign_deployment=data.get("foreignDeployment"),
        owner_overrides=dict(data.get("ownerOverrides", {})),
    )


def load_config_map(path: Path, config_class: Type[T]) -> dict[ChainName, T]:
    """Read a ``{chain: config}`` JSON file.

    :param config_class:
        Any config class with ``from_dict()``
    """
    assert isinstance(path, Path), f"Expected Path, got {type(path)}"
    with open(path, "rt", encoding="utf-8") as f:
        data = json.load(f)
    assert isinstance(data, dict), f"{path} must contain a chain -> config mapping"
    return {chain: config_class.from_dict(chain_config) for chain, chain_config in data.items()}
