"""Deployed address cache.

Maps (chain, role) to a deployed address so that reruns reconnect
to existing contracts instead of deploying them again.

- An all-zero or missing address is a cache miss
- A non-zero address is never replaced with a different one
- Writes go through to an optional :py:class:`AddressStore`

Persisted layout is ``{chain: {role: address}}``.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from eth_typing import HexAddress

from interchain_deploy.abi import eq_address, is_zero_address
from interchain_deploy.chain import ChainName


logger = logging.getLogger(__name__)


class AddressCacheConflict(Exception):
    """Tried to overwrite a cached non-zero address with a different one."""

    def __init__(self, chain: ChainName, role: str, existing: str, new: str):
        super().__init__(f"Address cache conflict on {chain} for {role}: cached {existing}, tried to write {new}")
        self.chain = chain
        self.role = role
        self.existing = existing
        self.new = new


class AddressStore(ABC):
    """External persistence for the cache."""

    @abstractmethod
    def read(self, chain: ChainName) -> dict[str, HexAddress]:
        """Return all role -> address entries of a chain."""

    @abstractmethod
    def write(self, chain: ChainName, role: str, address: HexAddress):
        """Persist one entry."""


class MemoryAddressStore(AddressStore):
    """Keep addresses in a dict. Useful for tests and dry runs."""

    def __init__(self, data: dict[ChainName, dict[str, HexAddress]] | None = None):
        self.data = data if data is not None else {}

    def read(self, chain: ChainName) -> dict[str, HexAddress]:
        return dict(self.data.get(chain, {}))

    def write(self, chain: ChainName, role: str, address: HexAddress):
        self.data.setdefault(chain, {})[role] = address


class JSONAddressStore(AddressStore):
    """Addresses in a single JSON file, rewritten after every update.

    The file is human-editable. Removing an entry makes the next run redeploy that contract.
    """

    def __init__(self, path: Path):
        assert isinstance(path, Path), f"Expected Path, got {type(path)}"
        self.path = path

    def __repr__(self):
        return f"<JSONAddressStore {self.path}>"

    def read_all(self) -> dict[ChainName, dict[str, HexAddress]]:
        if not self.path.exists():
            return {}
        with open(self.path, "rt", encoding="utf-8") as f:
            return json.load(f)

    def read(self, chain: ChainName) -> dict[str, HexAddress]:
        return self.read_all().get(chain, {})

    def write(self, chain: ChainName, role: str, address: HexAddress):
        data = self.read_all()
        data.setdefault(chain, {})[role] = address
        self.write_all(data)

    def write_all(self, data: dict[ChainName, dict[str, HexAddress]]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "wt", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)


class AddressCache:
    """In-memory address cache owned by one deployment run.

    Example:

    .. code-block:: python

        store = JSONAddressStore(Path("addresses.json"))
        cache = AddressCache.from_store(store, ["sepolia", "fuji"])
        deployer = ContractDeployer(multichain, factories, cache=cache)
    """

    def __init__(self, addresses: dict[ChainName, dict[str, HexAddress]] | None = None, store: AddressStore | None = None):
        #: chain -> role -> address
        self.addresses: dict[ChainName, dict[str, HexAddress]] = {}
        if addresses:
            for chain, roles in addresses.items():
                self.addresses[chain] = dict(roles)
        self.store = store

    def __repr__(self):
        count = sum(len(v) for v in self.addresses.values())
        return f"<AddressCache {count} entries on {len(self.addresses)} chains>"

    @classmethod
    def from_store(cls, store: AddressStore, chains: Iterable[ChainName], cold_start: bool = False) -> "AddressCache":
        """Load the cache for given chains.

        :param cold_start:
            Do not read anything, start empty and redeploy everything.
            New addresses are still written to the store.
        """
        addresses = {}
        if cold_start:
            logger.info("Cold start, not reading cached addresses from %s", store)
        else:
            for chain in chains:
                addresses[chain] = store.read(chain)
        return cls(addresses, store=store)

    def get(self, chain: ChainName, role: str) -> HexAddress | None:
        """Get a cached address.

        :return:
            None for a miss. Zero addresses count as a miss.
        """
        address = self.addresses.get(chain, {}).get(role)
        if is_zero_address(address):
            return None
        return address

    def set(self, chain: ChainName, role: str, address: HexAddress):
        """Record a deployed address.

        :raise AddressCacheConflict:
            A different non-zero address is already cached
        """
        assert not is_zero_address(address), f"Refusing to cache zero address for {chain} {role}"
        existing = self.get(chain, role)
        if existing is not None:
            if eq_address(existing, address):
                return
            raise AddressCacheConflict(chain, role, existing, address)

        self.addresses.setdefault(chain, {})[role] = address
        if self.store is not None:
            self.store.write(chain, role, address)

    def get_chain(self, chain: ChainName) -> dict[str, HexAddress]:
        """All non-zero entries of a chain."""
        return {role: address for role, address in self.addresses.get(chain, {}).items() if not is_zero_address(address)}

    def as_dict(self) -> dict[ChainName, dict[str, HexAddress]]:
        return {chain: dict(roles) for chain, roles in self.addresses.items()}
