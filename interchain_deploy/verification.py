"""Source verification inputs.

Every contract we deploy gets a record of its name, address and constructor arguments
so that a later step can upload sources to block explorers.

Persisted layout is ``{chain: [{name, address, constructorArguments, isProxy}]}``.
"""

import json
from dataclasses import dataclass
from pathlib import Path

from eth_typing import HexAddress

from interchain_deploy.chain import ChainName


@dataclass(slots=True, frozen=True)
class ContractVerificationInput:
    """One deployed contract, as needed for source verification."""

    #: Contract role name
    name: str

    #: Deployed address
    address: HexAddress

    #: ABI encoded constructor arguments as hex, without 0x prefix
    constructor_arguments: str

    #: Is this a forwarding proxy
    is_proxy: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "address": self.address,
            "constructorArguments": self.constructor_arguments,
            "isProxy": self.is_proxy,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContractVerificationInput":
        return cls(
            name=data["name"],
            address=data["address"],
            constructor_arguments=data.get("constructorArguments", ""),
            is_proxy=data.get("isProxy", False),
        )


class VerificationInputs:
    """Append-only accumulator of verification inputs, per chain."""

    def __init__(self):
        self.inputs: dict[ChainName, list[ContractVerificationInput]] = {}

    def __len__(self):
        return sum(len(v) for v in self.inputs.values())

    def append(self, chain: ChainName, verification_input: ContractVerificationInput):
        self.inputs.setdefault(chain, []).append(verification_input)

    def get(self, chain: ChainName) -> list[ContractVerificationInput]:
        return list(self.inputs.get(chain, []))

    def as_dict(self) -> dict[ChainName, list[dict]]:
        return {chain: [i.to_dict() for i in inputs] for chain, inputs in self.inputs.items()}

    def merge_with_existing(self, existing: dict[ChainName, list[dict]]) -> dict[ChainName, list[dict]]:
        """Append our inputs after previously stored ones.

        :param existing:
            Previously persisted inputs, same layout as :py:meth:`as_dict`

        :return:
            New mapping covering chains of both
        """
        ours = self.as_dict()
        merged = {}
        for chain in list(existing.keys()) + [c for c in ours if c not in existing]:
            merged[chain] = list(existing.get(chain, [])) + ours.get(chain, [])
        return merged


def read_verification_file(path: Path) -> dict[ChainName, list[dict]]:
    """Read previously stored verification inputs, empty if the file does not exist."""
    if not path.exists():
        return {}
    with open(path, "rt", encoding="utf-8") as f:
        return json.load(f)


def write_verification_file(path: Path, data: dict[ChainName, list[dict]]):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
