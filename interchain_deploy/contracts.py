"""Contract factories and deployed contract maps.

A deployer is given a role name -> :py:class:`ContractFactory` mapping
and never resolves contract types itself.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeAlias

from interchain_deploy.abi import has_function
from interchain_deploy.chain import ChainName


#: Role name like ``mailbox`` or ``proxyAdmin``
RoleName: TypeAlias = str

#: Role name -> contract handle
Contracts: TypeAlias = dict[RoleName, Any]

#: Chain -> role name -> contract handle.
#:
#: A chain only appears here after all of its contracts were built.
ContractsMap: TypeAlias = dict[ChainName, Contracts]


@dataclass(slots=True)
class ContractFactory:
    """Everything needed to construct one contract type."""

    #: Contract name, used in logs and verification inputs
    name: str

    #: ABI as a list of entries
    abi: list[dict]

    #: Creation bytecode as 0x prefixed hex
    bytecode: str

    @classmethod
    def from_artifact(cls, path: Path | str, name: str | None = None) -> "ContractFactory":
        """Load a factory from a compiler output file.

        - Foundry/solc 0.8 artifacts keep the bytecode under ``bytecode.object``
        - Hardhat artifacts keep the hex directly under ``bytecode``

        :param name:
            Contract name. Defaults to the file stem.
        """
        path = Path(path)
        assert path.exists(), f"Artifact {path} does not exist"
        with open(path, "rt", encoding="utf-8") as f:
            artifact = json.load(f)

        bytecode = artifact.get("bytecode")
        if type(bytecode) == dict:
            bytecode = bytecode["object"]
        assert bytecode, f"Artifact {path} has no bytecode"
        if not bytecode.startswith("0x"):
            bytecode = "0x" + bytecode

        return cls(name=name or path.stem, abi=artifact["abi"], bytecode=bytecode)


#: Role name -> factory
ContractFactories: TypeAlias = dict[RoleName, ContractFactory]


def is_ownable(contract: Any) -> bool:
    """Does the contract expose ``owner()`` and ``transferOwnership()``."""
    abi = getattr(contract, "abi", None) or []
    return has_function(abi, "owner") and has_function(abi, "transferOwnership")


def filter_ownable_contracts(contracts: Contracts) -> Contracts:
    """Pick the contracts from a chain whose ownership we can converge."""
    return {role: c for role, c in contracts.items() if is_ownable(c)}
