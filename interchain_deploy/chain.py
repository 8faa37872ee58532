"""Chain registry.

Per-chain metadata and live connections, keyed by chain name.

- :py:class:`ChainMetadata` is the static description of a chain
- :py:class:`MultiChain` binds a connection to every known chain and answers
  the lookups the deployers need: domain ids, confirmation depth, fee overrides,
  explorer links and the reverse domain id lookup
"""

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, TypeAlias

from eth_typing import HexAddress

if TYPE_CHECKING:
    from interchain_deploy.connection import ChainConnection


logger = logging.getLogger(__name__)


#: Chain name like ``ethereum`` or ``test1``
ChainName: TypeAlias = str


@dataclass(slots=True)
class ChainMetadata:
    """Static description of one chain we deploy to."""

    #: Human readable name, also the key in all chain maps
    name: ChainName

    #: EVM chain id used when signing transactions
    chain_id: int

    #: Domain id used in cross-chain message addressing.
    #:
    #: Usually the same as the chain id.
    domain_id: int

    #: How many blocks we wait after a transaction is included
    confirmations: int = 1

    #: Static transaction fields merged into every transaction we send,
    #: e.g. ``{"gas": 5_000_000}`` or fixed ``gasPrice``
    transaction_overrides: dict = field(default_factory=dict)

    #: Block explorer base URL, e.g. ``https://etherscan.io``
    block_explorer_url: str | None = None

    #: JSON-RPC endpoint.
    #:
    #: If not set, read from ``JSON_RPC_<NAME>`` environment variable.
    rpc_url: str | None = None


def get_json_rpc_env(chain: ChainName) -> str:
    """Get the JSON-RPC URL environment variable name for a chain.

    - ``arbitrum-nova`` maps to ``JSON_RPC_ARBITRUM_NOVA``
    """
    assert chain, "Chain name missing"
    return f"JSON_RPC_{chain.upper().replace('-', '_')}"


def read_json_rpc_url(chain: ChainName) -> str:
    """Read JSON-RPC URL from environment variable based on the chain name.

    :raises ValueError: If the environment variable is not set for the given chain.
    """
    assert type(chain) is str, f"Chain name must be a string: {type(chain)}"
    env_var = get_json_rpc_env(chain)
    json_rpc_url = os.environ.get(env_var)
    if not json_rpc_url:
        raise ValueError(f"Environment variable {env_var} is not set for chain {chain}")
    return json_rpc_url


class MultiChain:
    """Registry of chains and their connections.

    Example:

    .. code-block:: python

        multichain = MultiChain.from_environment(
            [ChainMetadata("sepolia", 11155111, 11155111, confirmations=2)],
            private_key=os.environ["PRIVATE_KEY"],
        )
        conn = multichain.get_connection("sepolia")
    """

    def __init__(self, metadata: Iterable[ChainMetadata], connections: dict[ChainName, "ChainConnection"]):
        self.metadata: dict[ChainName, ChainMetadata] = {m.name: m for m in metadata}
        missing = set(self.metadata) - set(connections)
        assert not missing, f"No connection for chains {missing}"
        self.connections = connections
        self._by_domain = {m.domain_id: m.name for m in self.metadata.values()}
        assert len(self._by_domain) == len(self.metadata), "Duplicate domain ids in chain metadata"

    def __repr__(self):
        return f"<MultiChain {', '.join(self.chains)}>"

    @classmethod
    def from_environment(cls, metadata: Iterable[ChainMetadata], private_key: str) -> "MultiChain":
        """Create web3 connections for all chains.

        RPC URLs come from :py:attr:`ChainMetadata.rpc_url`
        or ``JSON_RPC_<NAME>`` environment variables.
        """
        from eth_account import Account
        from interchain_deploy.connection import Web3ChainConnection

        account = Account.from_key(private_key)
        metadata = list(metadata)
        connections = {}
        for m in metadata:
            url = m.rpc_url or read_json_rpc_url(m.name)
            connections[m.name] = Web3ChainConnection.create(url, account, m)
            logger.info("Connected %s to %s", m.name, url.split("?")[0])
        return cls(metadata, connections)

    @property
    def chains(self) -> list[ChainName]:
        return list(self.metadata.keys())

    def intersect(self, chains: Iterable[ChainName]) -> tuple[list[ChainName], list[ChainName]]:
        """Split chains into ones we know and ones we do not.

        :return:
            Tuple (known chains, unknown chains), both in the input order
        """
        known, unknown = [], []
        for chain in chains:
            if chain in self.metadata:
                known.append(chain)
            else:
                unknown.append(chain)
        return known, unknown

    def get_chain_metadata(self, chain: ChainName) -> ChainMetadata:
        assert chain in self.metadata, f"Unknown chain {chain}, we have {self.chains}"
        return self.metadata[chain]

    def get_connection(self, chain: ChainName) -> "ChainConnection":
        assert chain in self.connections, f"No connection for chain {chain}"
        return self.connections[chain]

    def get_domain_id(self, chain: ChainName) -> int:
        return self.get_chain_metadata(chain).domain_id

    def get_chain_name(self, domain_id: int) -> ChainName:
        """Reverse lookup from a domain id."""
        assert domain_id in self._by_domain, f"No chain with domain id {domain_id}"
        return self._by_domain[domain_id]

    def get_remote_chains(self, chain: ChainName) -> list[ChainName]:
        """All other chains in the registry."""
        return [c for c in self.chains if c != chain]

    def get_confirmations(self, chain: ChainName) -> int:
        return self.get_chain_metadata(chain).confirmations

    def get_transaction_overrides(self, chain: ChainName) -> dict:
        return dict(self.get_chain_metadata(chain).transaction_overrides)

    def try_get_explorer_address_url(self, chain: ChainName, address: HexAddress | str) -> str | None:
        """Link to an address on the chain block explorer, if we know the explorer."""
        explorer = self.get_chain_metadata(chain).block_explorer_url
        if not explorer:
            return None
        return f"{explorer.rstrip('/')}/address/{address}"

    async def get_signer_address(self, chain: ChainName) -> HexAddress:
        return await self.get_connection(chain).get_signer_address()
