"""ABI loading from the bundled interface files.

The orchestrator only ever talks to already deployed contracts through a handful of
well known interfaces (ownable, proxy admin, mailbox, router, security modules).
Those minimal ABIs ship inside the package under ``interchain_deploy/abi``
and are loaded here. The results are cached for the speedup.

We also provide helpers to deal with the 32-byte address encoding
used in cross-chain routing tables.
"""

import json
from functools import lru_cache
from pathlib import Path

from eth_typing import HexAddress, HexStr
from eth_utils import is_same_address, to_bytes, to_checksum_address
from hexbytes import HexBytes

# How big are our ABI caches
_CACHE_SIZE = 64

#: Ethereum 0x0000000000000000000000000000000000000000 address
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

#: 32 zero bytes as hex, an empty slot in a routing table
ZERO_BYTES32 = "0x" + "00" * 32


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: str) -> list[dict]:
    """Reads an embedded ABI file and returns it.

    Example::

        abi = get_abi_by_filename("Router.json")

    Loaded ABI files are cached in in-process memory to speed up future loading.

    :param fname:
        JSON filename from the bundled ``abi`` folder.

    :return:
        ABI as a list of entries
    """
    here = Path(__file__).resolve().parent
    abi_path = here / "abi" / Path(fname)
    assert abi_path.exists(), f"No bundled ABI {fname} at {abi_path}"
    with open(abi_path, "rt", encoding="utf-8") as f:
        abi = json.load(f)
    assert isinstance(abi, list), f"ABI file {fname} must contain a list"
    return abi


def has_function(abi: list[dict], name: str) -> bool:
    """Does the ABI declare a function with this name."""
    return any(entry.get("type") == "function" and entry.get("name") == name for entry in abi)


def is_zero_address(address: str | bytes | None) -> bool:
    """Treat None, empty and all-zero values as unset."""
    if not address:
        return True
    if isinstance(address, (bytes, bytearray)):
        return not any(address)
    return int(address, 16) == 0


def eq_address(a: str | None, b: str | None) -> bool:
    """Case-insensitive address comparison that tolerates missing values."""
    if a is None or b is None:
        return a is b
    return is_same_address(a, b)


def address_to_bytes32(address: HexAddress | str) -> HexStr:
    """Left-pad an address to the 32-byte form used by remote router tables.

    :return:
        ``0x`` prefixed lowercase hex string of 32 bytes
    """
    raw = to_bytes(hexstr=address)
    assert len(raw) == 20, f"Not an address: {address}"
    return HexStr("0x" + raw.rjust(32, b"\x00").hex())


def bytes32_to_address(value: bytes | str) -> HexAddress:
    """Take the lowest 20 bytes of a 32-byte word as a checksummed address."""
    raw = HexBytes(value)
    assert len(raw) == 32, f"Expected 32 bytes, got {len(raw)}"
    return to_checksum_address(raw[12:])
