"""In-memory chains for unit testing deployments.

Simulates just enough of the EVM for the deployers:

- contracts are Python objects with ``@view`` and ``@write`` methods,
  ``@write`` methods receive ``msg.sender`` as the first argument
- transparent proxies delegate to their implementation with their own storage,
  and expose EIP-1967 admin and implementation slots
- static ISM factories deploy to deterministic addresses
- reverts raise :py:class:`web3.exceptions.ContractLogicError`,
  calls to addresses without code raise :py:class:`web3.exceptions.BadFunctionCallOutput`
- every state-changing transaction mines a block and bumps :py:attr:`SimulatedChain.tx_count`
- events emitted during a transaction are returned in the receipt ``logs``

Calldata is JSON, not ABI encoded.

Example:

.. code-block:: python

    multichain = create_test_multichain()
    deployer = ContractDeployer(multichain, TEST_FACTORIES)
    router = await deployer.deploy_contract("test1", "router", [mailbox, igp])
    assert multichain.get_connection("test1").chain.tx_count == 1
"""

import asyncio
import copy
import json
from dataclasses import dataclass
from typing import Any, Iterable

from eth_typing import HexAddress
from eth_utils import keccak, to_bytes, to_checksum_address
from hexbytes import HexBytes
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from interchain_deploy.abi import ZERO_ADDRESS, eq_address, get_abi_by_filename, is_zero_address
from interchain_deploy.chain import ChainMetadata, ChainName, MultiChain
from interchain_deploy.connection import ChainConnection, DeployResult, TransactionFailed
from interchain_deploy.contracts import ContractFactory
from interchain_deploy.ism import ModuleType
from interchain_deploy.proxy import ADMIN_SLOT, IMPLEMENTATION_SLOT


def make_test_address(label: str) -> HexAddress:
    return to_checksum_address(keccak(text=label)[12:])


#: Signer of all simulated connections
DEPLOYER = make_test_address("deployer")

#: Someone else
OWNER = make_test_address("owner")

#: Gas price used by the simulated gas paymaster quotes
GAS_PRICE = 10**9

TEST_CHAIN_METADATA = [
    ChainMetadata("test1", 13371, 13371, block_explorer_url="https://explorer.test1.example"),
    ChainMetadata("test2", 13372, 13372),
    ChainMetadata("test3", 13373, 13373),
]

TEST_CHAINS = [m.name for m in TEST_CHAIN_METADATA]


def encode_calldata(fn_name: str, args: list | tuple) -> bytes:
    return json.dumps({"fn": fn_name, "args": _jsonable(args)}).encode()


def decode_calldata(data: bytes) -> tuple[str, list]:
    decoded = json.loads(bytes(data))
    return decoded["fn"], decoded["args"]


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def view(func):
    func._sim_kind = "view"
    return func


def write(func):
    func._sim_kind = "write"
    return func


def revert(reason: str):
    raise ContractLogicError(f"execution reverted: {reason}")


def require(condition: bool, reason: str):
    if not condition:
        revert(reason)


class SimulatedContract:
    """Base class of simulated contracts.

    Mutable state lives in attributes declared in ``STORAGE`` with their initial values.
    Everything else set in :py:meth:`constructor` is immutable and shared with proxies.
    """

    STORAGE: dict = {}

    def __init__(self, chain: "SimulatedChain", address: HexAddress, sender: HexAddress, *args):
        self.chain = chain
        self.address = address
        self.init_storage()
        self.constructor(sender, *args)

    def constructor(self, sender: HexAddress, *args):
        assert not args, f"{type(self).__name__} takes no constructor arguments"

    @classmethod
    def storage_defaults(cls) -> dict:
        defaults = {}
        for klass in reversed(cls.__mro__):
            defaults.update(klass.__dict__.get("STORAGE", {}))
        return defaults

    def init_storage(self):
        for key, value in self.storage_defaults().items():
            setattr(self, key, copy.deepcopy(value))

    def get_storage(self) -> dict:
        return {key: getattr(self, key) for key in self.storage_defaults()}

    def emit(self, event_name: str, **args):
        self.chain.pending_logs.append({"address": self.address, "event": event_name, "args": args})

    @classmethod
    def get_abi(cls) -> list[dict]:
        abi = []
        for name in dir(cls):
            kind = getattr(getattr(cls, name), "_sim_kind", None)
            if kind:
                abi.append({"type": "function", "name": name, "stateMutability": "view" if kind == "view" else "nonpayable"})
        return abi


class Ownable(SimulatedContract):
    STORAGE = {"_owner": ZERO_ADDRESS}

    def constructor(self, sender, *args):
        self._owner = sender

    def _only_owner(self, sender):
        require(eq_address(sender, self._owner), "Ownable: caller is not the owner")

    @view
    def owner(self):
        return self._owner

    @write
    def transferOwnership(self, sender, new_owner):
        self._only_owner(sender)
        require(not is_zero_address(new_owner), "Ownable: new owner is the zero address")
        self._owner = new_owner


class Initializable(SimulatedContract):
    STORAGE = {"_initialized": False}

    def _initializer(self):
        require(not self._initialized, "Initializable: contract is already initialized")
        self._initialized = True


class ProxyAdmin(Ownable):
    @write
    def upgradeAndCall(self, sender, proxy, implementation, data):
        self._only_owner(sender)
        self.chain.execute(proxy, "upgradeToAndCall", [implementation, data], sender=self.address)

    @write
    def changeProxyAdmin(self, sender, proxy, new_admin):
        self._only_owner(sender)
        self.chain.execute(proxy, "changeAdmin", [new_admin], sender=self.address)


class TransparentUpgradeableProxy(SimulatedContract):
    """Delegates everything to its implementation, except admin calls from the admin."""

    ADMIN_FUNCTIONS = {"upgradeToAndCall", "changeAdmin"}

    STORAGE = {"_admin": ZERO_ADDRESS, "_implementation": ZERO_ADDRESS, "delegate": None}

    def constructor(self, sender, logic, admin, data):
        self._admin = admin
        self._set_implementation(logic)
        if data:
            self._delegate_call(sender, data)

    def _set_implementation(self, implementation):
        target = self.chain.get(implementation)
        require(target is not None, "ERC1967: new implementation is not a contract")
        delegate = copy.copy(target)
        delegate.address = self.address
        delegate.init_storage()
        if self.delegate is not None:
            for key, value in self.delegate.get_storage().items():
                if key in delegate.storage_defaults():
                    setattr(delegate, key, value)
        self.delegate = delegate
        self._implementation = implementation

    def _delegate_call(self, sender, data):
        fn_name, args = decode_calldata(data)
        self.chain.call_method(self.delegate, fn_name, args, sender)

    @write
    def upgradeToAndCall(self, sender, implementation, data):
        self._set_implementation(implementation)
        if data:
            self._delegate_call(sender, data)

    @write
    def changeAdmin(self, sender, new_admin):
        require(not is_zero_address(new_admin), "ERC1967: new admin is the zero address")
        self._admin = new_admin


class Mailbox(Ownable, Initializable):
    STORAGE = {"_default_ism": ZERO_ADDRESS}

    def constructor(self, sender, local_domain):
        # Upgradeable, owner is set by initialize()
        self._local_domain = local_domain

    @write
    def initialize(self, sender, owner, default_ism):
        self._initializer()
        self._owner = owner
        self._default_ism = default_ism

    @view
    def localDomain(self):
        return self._local_domain

    @view
    def defaultIsm(self):
        return self._default_ism

    @write
    def setDefaultIsm(self, sender, module):
        self._only_owner(sender)
        require(self.chain.get(module) is not None, "Mailbox: !contract")
        self._default_ism = module


class ValidatorAnnounce(SimulatedContract):
    def constructor(self, sender, mailbox):
        self._mailbox = mailbox

    @view
    def mailbox(self):
        return self._mailbox


class InterchainGasPaymaster(Ownable, Initializable):
    STORAGE = {"_beneficiary": ZERO_ADDRESS, "_overheads": {}}

    def constructor(self, sender):
        pass

    @write
    def initialize(self, sender, owner, beneficiary):
        self._initializer()
        self._owner = owner
        self._beneficiary = beneficiary

    @view
    def beneficiary(self):
        return self._beneficiary

    @view
    def destinationGasOverhead(self, domain):
        return self._overheads.get(domain, 0)

    @view
    def quoteGasPayment(self, domain, gas_amount):
        require(domain in self._overheads, f"Configured IGP doesn't support domain {domain}")
        return (gas_amount + self._overheads[domain]) * GAS_PRICE

    @write
    def setDestinationGasOverheads(self, sender, configs):
        self._only_owner(sender)
        for domain, overhead in configs:
            self._overheads[domain] = overhead


class Router(Ownable):
    STORAGE = {
        "_mailbox": ZERO_ADDRESS,
        "_igp": ZERO_ADDRESS,
        "_ism": ZERO_ADDRESS,
        "_routers": {},
    }

    def constructor(self, sender, mailbox, igp):
        self._owner = sender
        self._mailbox = mailbox
        self._igp = igp

    @view
    def routers(self, domain):
        return self._routers.get(domain, b"\x00" * 32)

    @view
    def domains(self):
        return list(self._routers.keys())

    @write
    def enrollRemoteRouters(self, sender, domains, routers):
        self._only_owner(sender)
        require(len(domains) == len(routers), "!length")
        for domain, router in zip(domains, routers):
            self._routers[domain] = bytes(HexBytes(router))

    @view
    def mailbox(self):
        return self._mailbox

    @view
    def interchainGasPaymaster(self):
        return self._igp

    @view
    def interchainSecurityModule(self):
        return self._ism

    @write
    def setMailbox(self, sender, mailbox):
        self._only_owner(sender)
        self._mailbox = mailbox

    @write
    def setInterchainGasPaymaster(self, sender, igp):
        self._only_owner(sender)
        self._igp = igp

    @write
    def setInterchainSecurityModule(self, sender, module):
        self._only_owner(sender)
        self._ism = module


class HelloWorld(Router):
    pass


class ProxiedRouter(Router, Initializable):
    def constructor(self, sender):
        pass

    @write
    def initialize(self, sender, mailbox, igp, module, owner):
        self._initializer()
        self._mailbox = mailbox
        self._igp = igp
        self._ism = module
        self._owner = owner


class InterchainAccountRouter(ProxiedRouter):
    pass


class InterchainQueryRouter(ProxiedRouter):
    pass


class TimelockController(SimulatedContract):
    def constructor(self, sender, min_delay, proposers, executors, admin):
        self._min_delay = min_delay
        self._proposers = list(proposers)
        self._executors = list(executors)

    @view
    def getMinDelay(self):
        return self._min_delay


class StaticMultisigIsm(SimulatedContract):
    MODULE_TYPE = ModuleType.LEGACY_MULTISIG

    def constructor(self, sender, validators, threshold):
        self._validators = list(validators)
        self._threshold = threshold

    @view
    def moduleType(self):
        return int(self.MODULE_TYPE)

    @view
    def validatorsAndThreshold(self, message):
        return list(self._validators), self._threshold


class StaticMerkleRootMultisigIsm(StaticMultisigIsm):
    MODULE_TYPE = ModuleType.MERKLE_ROOT_MULTISIG


class StaticMessageIdMultisigIsm(StaticMultisigIsm):
    MODULE_TYPE = ModuleType.MESSAGE_ID_MULTISIG


class StaticAggregationIsm(SimulatedContract):
    def constructor(self, sender, modules, threshold):
        self._modules = list(modules)
        self._threshold = threshold

    @view
    def moduleType(self):
        return int(ModuleType.AGGREGATION)

    @view
    def modulesAndThreshold(self, message):
        return list(self._modules), self._threshold


class DomainRoutingIsm(Ownable, Initializable):
    STORAGE = {"_modules": {}}

    def constructor(self, sender):
        pass

    @write
    def initialize(self, sender, owner, domains, modules):
        self._initializer()
        require(len(domains) == len(modules), "length mismatch")
        self._owner = owner
        for domain, module in zip(domains, modules):
            self._modules[domain] = module

    @write
    def set(self, sender, domain, module):
        self._only_owner(sender)
        self._modules[domain] = module

    @view
    def moduleType(self):
        return int(ModuleType.ROUTING)

    @view
    def domains(self):
        return list(self._modules.keys())

    @view
    def module(self, origin):
        require(origin in self._modules, "No ISM found for origin domain")
        return self._modules[origin]

    @view
    def route(self, message):
        origin = int.from_bytes(bytes(message)[5:9], "big")
        return self.module(origin)


class StaticThresholdAddressSetFactory(SimulatedContract):
    """Deploys a module for an address set and threshold to a predictable address."""

    IMPLEMENTATION: type = StaticMultisigIsm

    @view
    def getAddress(self, values, threshold):
        salt = json.dumps([[v.lower() for v in values], threshold]).encode()
        return to_checksum_address(keccak(to_bytes(hexstr=self.address) + salt)[12:])

    @write
    def deploy(self, sender, values, threshold):
        require(0 < threshold <= len(values), "Invalid threshold")
        address = self.getAddress(values, threshold)
        if self.chain.get(address) is None:
            self.chain.create_at(address, self.IMPLEMENTATION, sender, [values, threshold])
        return address


class StaticMerkleRootMultisigIsmFactory(StaticThresholdAddressSetFactory):
    IMPLEMENTATION = StaticMerkleRootMultisigIsm


class StaticMessageIdMultisigIsmFactory(StaticThresholdAddressSetFactory):
    IMPLEMENTATION = StaticMessageIdMultisigIsm


class StaticAggregationIsmFactory(StaticThresholdAddressSetFactory):
    IMPLEMENTATION = StaticAggregationIsm


class DomainRoutingIsmFactory(SimulatedContract):
    @write
    def deploy(self, sender, domains, modules):
        routing = self.chain.create(DomainRoutingIsm, sender, [])
        routing.initialize(sender, sender, domains, modules)
        self.emit("ModuleDeployed", module=routing.address)
        return routing.address


class SimulatedChain:
    """State of one simulated chain."""

    def __init__(self, name: ChainName, latency: float = 0.0):
        self.name = name

        #: Seconds every transaction takes to confirm
        self.latency = latency

        self.block_number = 1

        #: Number of state-changing transactions mined
        self.tx_count = 0

        #: Contract names whose deployment fails
        self.fail_deploys: set[str] = set()

        self.contracts: dict[str, SimulatedContract] = {}

        #: Events emitted by the transaction being executed
        self.pending_logs: list[dict] = []
        self._created = 0

    def __repr__(self):
        return f"<SimulatedChain {self.name} block:{self.block_number} txs:{self.tx_count}>"

    def get(self, address: HexAddress | str) -> SimulatedContract | None:
        if not address:
            return None
        return self.contracts.get(address.lower())

    def create(self, cls: type, sender: HexAddress, args: list | tuple) -> SimulatedContract:
        self._created += 1
        address = to_checksum_address(keccak(text=f"{self.name}:{self._created}")[12:])
        return self.create_at(address, cls, sender, args)

    def create_at(self, address: HexAddress, cls: type, sender: HexAddress, args: list | tuple) -> SimulatedContract:
        assert self.get(address) is None, f"Address collision at {address}"
        contract = cls(self, address, sender, *args)
        self.contracts[address.lower()] = contract
        return contract

    def mine(self) -> dict:
        self.tx_count += 1
        self.block_number += 1
        logs, self.pending_logs = self.pending_logs, []
        return {
            "status": 1,
            "blockNumber": self.block_number,
            "transactionHash": HexBytes(keccak(text=f"{self.name}:tx:{self.tx_count}")),
            "logs": logs,
        }

    def call_method(self, target: SimulatedContract, fn_name: str, args: list | tuple, sender: HexAddress | None):
        method = getattr(type(target), fn_name, None)
        kind = getattr(method, "_sim_kind", None)
        if kind is None:
            revert(f"{type(target).__name__} has no function {fn_name}")
        if kind == "view":
            return getattr(target, fn_name)(*args)
        assert sender is not None, f"{fn_name} is not a view function"
        return getattr(target, fn_name)(sender, *args)

    def execute(self, address: HexAddress, fn_name: str, args: list | tuple, sender: HexAddress | None = None):
        """Call a function, following proxies.

        :param sender:
            ``msg.sender``, None for read-only calls
        """
        contract = self.get(address)
        if contract is None:
            raise BadFunctionCallOutput(f"Could not call {fn_name}() at {address} on {self.name}: no contract code")

        target = contract
        if isinstance(contract, TransparentUpgradeableProxy):
            if sender is not None and eq_address(sender, contract._admin):
                require(fn_name in contract.ADMIN_FUNCTIONS, "TransparentUpgradeableProxy: admin cannot fallback to proxy target")
            else:
                target = contract.delegate
        return self.call_method(target, fn_name, args, sender)

    def get_storage_at(self, address: HexAddress, slot: int) -> bytes:
        contract = self.get(address)
        value = ZERO_ADDRESS
        if isinstance(contract, TransparentUpgradeableProxy):
            if slot == ADMIN_SLOT:
                value = contract._admin
            elif slot == IMPLEMENTATION_SLOT:
                value = contract._implementation
        return to_bytes(hexstr=value).rjust(32, b"\x00")

    def get_code(self, address: HexAddress) -> bytes:
        contract = self.get(address)
        if contract is None:
            return b""
        return b"\x60\x80" + type(contract).__name__.encode()


@dataclass(slots=True)
class SimulatedContractFactory(ContractFactory):
    """Contract factory creating a simulated contract class."""

    contract_class: type = None

    @classmethod
    def for_class(cls, contract_class: type) -> "SimulatedContractFactory":
        name = contract_class.__name__
        return cls(name=name, abi=contract_class.get_abi(), bytecode="0x6080" + name.encode().hex(), contract_class=contract_class)


class SimulatedBoundCall:
    def __init__(self, chain: SimulatedChain, address: HexAddress, fn_name: str, args: tuple):
        self.chain = chain
        self.address = address
        self.fn_name = fn_name
        self.args = args

    def __repr__(self):
        return f"<{self.fn_name}{self.args} on {self.address}>"

    async def call(self):
        return self.chain.execute(self.address, self.fn_name, self.args)


class _Functions:
    def __init__(self, chain: SimulatedChain, address: HexAddress):
        self._chain = chain
        self._address = address

    def __getattr__(self, fn_name: str):
        if fn_name.startswith("_"):
            raise AttributeError(fn_name)
        return lambda *args: SimulatedBoundCall(self._chain, self._address, fn_name, args)


class SimulatedContractHandle:
    """Address bound to an interface, resolved at call time."""

    def __init__(self, chain: SimulatedChain, address: HexAddress, abi: list[dict]):
        self.address = to_checksum_address(address)
        self.abi = abi
        self.functions = _Functions(chain, self.address)

    def __repr__(self):
        return f"<SimulatedContractHandle {self.address}>"


class SimulatedChainConnection(ChainConnection):
    """:py:class:`ChainConnection` over a :py:class:`SimulatedChain`."""

    def __init__(self, chain: SimulatedChain, signer: HexAddress = DEPLOYER):
        self.chain = chain
        self.signer = signer

    def __repr__(self):
        return f"<SimulatedChainConnection {self.chain.name}>"

    async def get_signer_address(self) -> HexAddress:
        return self.signer

    async def get_block_number(self) -> int:
        return self.chain.block_number

    async def get_code(self, address: HexAddress | str) -> bytes:
        return self.chain.get_code(address)

    async def get_storage_at(self, address: HexAddress | str, slot: int) -> bytes:
        return self.chain.get_storage_at(address, slot)

    def attach(self, factory: ContractFactory, address: HexAddress | str) -> SimulatedContractHandle:
        return SimulatedContractHandle(self.chain, address, factory.abi)

    def get_contract(self, abi_fname: str, address: HexAddress | str) -> SimulatedContractHandle:
        return SimulatedContractHandle(self.chain, address, get_abi_by_filename(abi_fname))

    def encode_function_data(self, contract: Any, fn_name: str, args: list | tuple) -> bytes:
        return encode_calldata(fn_name, args)

    async def deploy(self, factory: ContractFactory, *constructor_args) -> DeployResult:
        assert isinstance(factory, SimulatedContractFactory), f"Can only deploy simulated contracts, got {factory}"
        if factory.name in self.chain.fail_deploys:
            receipt = self.chain.mine()
            raise TransactionFailed(self.chain.name, receipt["transactionHash"], f"{self.chain.name}: deploy {factory.name} failed")

        contract = self.chain.create(factory.contract_class, self.signer, constructor_args)
        receipt = self.chain.mine()
        receipt["contractAddress"] = contract.address
        await asyncio.sleep(self.chain.latency)
        return DeployResult(self.attach(factory, contract.address), receipt, HexBytes(encode_calldata("constructor", constructor_args)))

    async def handle_tx(self, bound_call: SimulatedBoundCall, value: int = 0) -> dict:
        self.chain.pending_logs = []
        self.chain.execute(bound_call.address, bound_call.fn_name, bound_call.args, sender=self.signer)
        receipt = self.chain.mine()
        await asyncio.sleep(self.chain.latency)
        return receipt

    def get_event_args(self, contract: Any, receipt: dict, event_name: str) -> list[dict]:
        return [log["args"] for log in receipt.get("logs", []) if eq_address(log["address"], contract.address) and log["event"] == event_name]


#: Role -> simulated factory for every role used by the bundled applications
TEST_FACTORIES = {
    "proxyAdmin": SimulatedContractFactory.for_class(ProxyAdmin),
    "mailbox": SimulatedContractFactory.for_class(Mailbox),
    "validatorAnnounce": SimulatedContractFactory.for_class(ValidatorAnnounce),
    "interchainGasPaymaster": SimulatedContractFactory.for_class(InterchainGasPaymaster),
    "router": SimulatedContractFactory.for_class(HelloWorld),
    "interchainAccountRouter": SimulatedContractFactory.for_class(InterchainAccountRouter),
    "interchainQueryRouter": SimulatedContractFactory.for_class(InterchainQueryRouter),
    "timelockController": SimulatedContractFactory.for_class(TimelockController),
    "merkleRootMultisigIsmFactory": SimulatedContractFactory.for_class(StaticMerkleRootMultisigIsmFactory),
    "messageIdMultisigIsmFactory": SimulatedContractFactory.for_class(StaticMessageIdMultisigIsmFactory),
    "aggregationIsmFactory": SimulatedContractFactory.for_class(StaticAggregationIsmFactory),
    "routingIsmFactory": SimulatedContractFactory.for_class(DomainRoutingIsmFactory),
}

PROXY_FACTORY = SimulatedContractFactory.for_class(TransparentUpgradeableProxy)

def create_test_multichain(
    chains: Iterable[ChainName] = TEST_CHAINS,
    latency: float = 0.0,
    signer: HexAddress = DEPLOYER,
) -> MultiChain:
    """Registry of fresh simulated chains."""
    chains = list(chains)
    metadata = [m for m in TEST_CHAIN_METADATA if m.name in chains]
    assert len(metadata) == len(chains), f"Unknown test chains in {chains}"
    connections = {m.name: SimulatedChainConnection(SimulatedChain(m.name, latency), signer) for m in metadata}
    return MultiChain(metadata, connections)


def get_simulated_chain(multichain: MultiChain, chain: ChainName) -> SimulatedChain:
    return multichain.get_connection(chain).chain


def total_tx_count(multichain: MultiChain) -> int:
    return sum(get_simulated_chain(multichain, c).tx_count for c in multichain.chains)
