"""Cross-chain message encoding.

Wire layout, big-endian:

======  =====  ===========
Offset  Size   Field
======  =====  ===========
0       1      version
1       4      nonce
5       4      origin domain
9       32     sender
41      4      destination domain
45      32     recipient
77      ...    body
======  =====  ===========

Security modules are queried with such messages, see :py:mod:`interchain_deploy.ism`.
"""

from dataclasses import dataclass

from eth_abi.packed import encode_packed
from eth_typing import HexStr
from eth_utils import keccak
from hexbytes import HexBytes

from interchain_deploy.abi import ZERO_BYTES32

#: Size of the fixed part of a message
HEADER_LENGTH = 77


@dataclass(slots=True, frozen=True)
class Message:
    """Decoded message."""

    version: int
    nonce: int
    origin: int
    sender: HexBytes
    destination: int
    recipient: HexBytes
    body: HexBytes

    @property
    def id(self) -> HexBytes:
        return message_id(self.encode())

    def encode(self) -> bytes:
        return format_message(self.version, self.nonce, self.origin, self.sender, self.destination, self.recipient, self.body)


def format_message(
    version: int,
    nonce: int,
    origin: int,
    sender: bytes | HexStr,
    destination: int,
    recipient: bytes | HexStr,
    body: bytes | HexStr = b"",
) -> bytes:
    """Pack a message.

    :param sender:
        32-byte sender, use :py:func:`interchain_deploy.abi.address_to_bytes32` for addresses

    :param recipient:
        32-byte recipient
    """
    sender = HexBytes(sender)
    recipient = HexBytes(recipient)
    assert len(sender) == 32, f"Sender must be 32 bytes, got {len(sender)}"
    assert len(recipient) == 32, f"Recipient must be 32 bytes, got {len(recipient)}"
    return encode_packed(
        ["uint8", "uint32", "uint32", "bytes32", "uint32", "bytes32", "bytes"],
        [version, nonce, origin, bytes(sender), destination, bytes(recipient), bytes(HexBytes(body))],
    )


def message_id(message: bytes) -> HexBytes:
    """Keccak-256 of the packed message."""
    return HexBytes(keccak(message))


def parse_message(message: bytes) -> Message:
    assert len(message) >= HEADER_LENGTH, f"Message too short: {len(message)} bytes"
    return Message(
        version=message[0],
        nonce=int.from_bytes(message[1:5], "big"),
        origin=int.from_bytes(message[5:9], "big"),
        sender=HexBytes(message[9:41]),
        destination=int.from_bytes(message[41:45], "big"),
        recipient=HexBytes(message[45:77]),
        body=HexBytes(message[77:]),
    )


def format_probe_message(origin: int, destination: int) -> bytes:
    """Empty message from ``origin`` to ``destination``.

    Used to ask routing and multisig modules how they would verify
    a message from a given origin.
    """
    return format_message(0, 0, origin, ZERO_BYTES32, destination, ZERO_BYTES32, b"")
