"""Signing connection to a single chain.

The deployers never touch ``AsyncWeb3`` directly. Everything they need from a chain
goes through :py:class:`ChainConnection`:

- read the signer address, block height, code and storage slots
- deploy a contract from a :py:class:`~interchain_deploy.contracts.ContractFactory`
- bind a contract handle to an address
- sign, broadcast and confirm a state-changing call

:py:class:`Web3ChainConnection` is the JSON-RPC implementation.
:py:mod:`interchain_deploy.testing` ships an in-memory one for unit tests.

Contract handles follow the ``web3.contract.AsyncContract`` shape:
``handle.address``, ``handle.abi`` and ``await handle.functions.name(*args).call()``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.logs import DISCARD

from interchain_deploy.abi import get_abi_by_filename

if TYPE_CHECKING:
    from interchain_deploy.chain import ChainMetadata
    from interchain_deploy.contracts import ContractFactory


logger = logging.getLogger(__name__)


class TransactionFailed(Exception):
    """Did not get successful tx receipt."""

    def __init__(self, chain: str, tx_hash: HexBytes | None, msg: str):
        super().__init__(msg)
        self.chain = chain
        self.tx_hash = tx_hash


@dataclass(slots=True, frozen=True)
class DeployResult:
    """Outcome of a contract creation transaction."""

    #: Contract handle bound to the new address
    contract: Any

    #: Transaction receipt of the creation
    receipt: dict

    #: ABI encoded constructor arguments, as needed by source verification
    constructor_data: HexBytes


class ChainConnection(ABC):
    """Async signer and reader for one chain."""

    @abstractmethod
    async def get_signer_address(self) -> HexAddress:
        """Address of the account that signs our transactions."""

    @abstractmethod
    async def get_block_number(self) -> int:
        pass

    @abstractmethod
    async def get_code(self, address: HexAddress | str) -> bytes:
        pass

    @abstractmethod
    async def get_storage_at(self, address: HexAddress | str, slot: int) -> bytes:
        pass

    @abstractmethod
    async def deploy(self, factory: "ContractFactory", *constructor_args) -> DeployResult:
        """Send a contract creation transaction and wait for its confirmations.

        :raise TransactionFailed:
            Receipt status was not success
        """

    @abstractmethod
    def attach(self, factory: "ContractFactory", address: HexAddress | str) -> Any:
        """Bind the factory interface to an existing address. No network access."""

    @abstractmethod
    def get_contract(self, abi_fname: str, address: HexAddress | str) -> Any:
        """Bind one of the bundled ABI files to an address. No network access."""

    @abstractmethod
    def encode_function_data(self, contract: Any, fn_name: str, args: list | tuple) -> bytes:
        """Encode calldata for a function of a contract handle."""

    @abstractmethod
    async def handle_tx(self, bound_call: Any, value: int = 0) -> dict:
        """Sign, broadcast and confirm a state-changing contract call.

        :param bound_call:
            E.g. ``router.functions.enrollRemoteRouters(domains, routers)``

        :raise TransactionFailed:
            Receipt status was not success

        :return:
            Transaction receipt
        """

    @abstractmethod
    def get_event_args(self, contract: Any, receipt: dict, event_name: str) -> list[dict]:
        """Arguments of the events a contract emitted in a transaction, in log order."""


class Web3ChainConnection(ChainConnection):
    """JSON-RPC connection using ``AsyncWeb3`` and a local private key.

    Each chain admits one outstanding write at a time, we fetch the pending nonce
    before every transaction.
    """

    def __init__(
        self,
        web3: AsyncWeb3,
        account: LocalAccount,
        metadata: "ChainMetadata",
        poll_interval: float = 1.0,
    ):
        self.web3 = web3
        self.account = account
        self.metadata = metadata
        self.chain = metadata.name
        self.poll_interval = poll_interval

    def __repr__(self):
        return f"<Web3ChainConnection {self.chain} signer:{self.account.address}>"

    @classmethod
    def create(cls, json_rpc_url: str, account: LocalAccount, metadata: "ChainMetadata") -> "Web3ChainConnection":
        web3 = AsyncWeb3(AsyncHTTPProvider(json_rpc_url))
        return cls(web3, account, metadata)

    async def get_signer_address(self) -> HexAddress:
        return self.account.address

    async def get_block_number(self) -> int:
        return await self.web3.eth.block_number

    async def get_code(self, address: HexAddress | str) -> bytes:
        return bytes(await self.web3.eth.get_code(self.web3.to_checksum_address(address)))

    async def get_storage_at(self, address: HexAddress | str, slot: int) -> bytes:
        return bytes(await self.web3.eth.get_storage_at(self.web3.to_checksum_address(address), slot))

    def attach(self, factory: "ContractFactory", address: HexAddress | str) -> Any:
        return self.web3.eth.contract(address=self.web3.to_checksum_address(address), abi=factory.abi)

    def get_contract(self, abi_fname: str, address: HexAddress | str) -> Any:
        return self.web3.eth.contract(address=self.web3.to_checksum_address(address), abi=get_abi_by_filename(abi_fname))

    def encode_function_data(self, contract: Any, fn_name: str, args: list | tuple) -> bytes:
        return bytes(HexBytes(contract.encode_abi(fn_name, args=list(args))))

    async def _build_tx_params(self, value: int = 0) -> dict:
        tx_params = {
            "from": self.account.address,
            "chainId": self.metadata.chain_id,
            "nonce": await self.web3.eth.get_transaction_count(self.account.address, "pending"),
        }
        if value:
            tx_params["value"] = value
        tx_params.update(self.metadata.transaction_overrides)
        return tx_params

    async def _sign_and_confirm(self, tx_data: dict, description: str) -> dict:
        signed_tx = self.account.sign_transaction(tx_data)
        tx_hash = await self.web3.eth.send_raw_transaction(signed_tx.raw_transaction)
        logger.info("%s: broadcasted %s, tx %s", self.chain, description, tx_hash.hex())

        receipt = await self.web3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            raise TransactionFailed(self.chain, tx_hash, f"{self.chain}: {description} failed, tx hash is {tx_hash.hex()}")

        await self.wait_confirmations(receipt)
        return receipt

    async def wait_confirmations(self, receipt: dict):
        """Wait until the receipt block is buried under the configured number of blocks.

        One confirmation means the block that included the transaction.
        """
        confirmations = self.metadata.confirmations
        while True:
            block_number = await self.web3.eth.block_number
            if block_number - receipt["blockNumber"] + 1 >= confirmations:
                return
            logger.debug("%s: waiting block %d to get %d confirmations, now at %d", self.chain, receipt["blockNumber"], confirmations, block_number)
            await asyncio.sleep(self.poll_interval)

    async def deploy(self, factory: "ContractFactory", *constructor_args) -> DeployResult:
        Contract = self.web3.eth.contract(abi=factory.abi, bytecode=factory.bytecode)
        tx_params = await self._build_tx_params()
        tx_data = await Contract.constructor(*constructor_args).build_transaction(tx_params)
        receipt = await self._sign_and_confirm(tx_data, f"deploy {factory.name}")

        bytecode = HexBytes(factory.bytecode)
        data = HexBytes(tx_data["data"])
        assert data.startswith(bytecode), f"Constructor data of {factory.name} does not start with its bytecode"
        instance = self.attach(factory, receipt["contractAddress"])
        return DeployResult(instance, receipt, HexBytes(data[len(bytecode):]))

    async def handle_tx(self, bound_call: Any, value: int = 0) -> dict:
        tx_params = await self._build_tx_params(value)
        tx_data = await bound_call.build_transaction(tx_params)
        return await self._sign_and_confirm(tx_data, f"{bound_call.fn_name}() on {bound_call.address}")

    def get_event_args(self, contract: Any, receipt: dict, event_name: str) -> list[dict]:
        event = getattr(contract.events, event_name)
        return [dict(log["args"]) for log in event().process_receipt(receipt, errors=DISCARD)]
