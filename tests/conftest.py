"""Pytest configuration and fixtures."""

import math

import pytest

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address, to_hex

from fusionswap.adapters.base import CallDescriptor, ChainAdapter, Confirmation, EventLog
from fusionswap.adapters.factory import reset_adapter_cache
from fusionswap.config import load_networks
from fusionswap.escrow.factory_view import SRC_ESCROW_CREATED_TOPIC
from fusionswap.order.immutables import COMPLEMENT_TYPE, IMMUTABLES_TYPE
from fusionswap.order.order import create_order
from fusionswap.order.timelocks import TimeLockSchedule
from fusionswap.orchestrator import Clock
from fusionswap.resolver import DEPLOY_SRC_SIGNATURE, ORDER_TUPLE_TYPE

# Well-known development keys
MAKER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
MAKER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
RESOLVER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
RESOLVER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

ZERO_SECRET = "0x" + "00" * 32
START_TIME = 1_700_000_000

DEPLOY_SRC_SELECTOR = function_signature_to_4byte_selector(DEPLOY_SRC_SIGNATURE)
DEPLOY_SRC_TYPES = [IMMUTABLES_TYPE, ORDER_TUPLE_TYPE, "bytes32", "bytes32", "uint256", "uint256", "bytes"]


class FakeClock(Clock):
    """Clock that only moves when slept on (or advanced by a fake chain)."""

    def __init__(self, start: int = START_TIME):
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> int:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += math.ceil(seconds)


class FakeChainAdapter(ChainAdapter):
    """In-memory chain: every send confirms one block later.

    Exceptions queued in ``failures`` are raised by the next sends, in order.
    ``log_builder(call, confirmation)`` supplies the logs of each sent call.
    """

    def __init__(self, network, private_key: str, clock: FakeClock, block_time: int = 2, log_builder=None):
        super().__init__(network)
        self._account = Account.from_key(private_key)
        self.clock = clock
        self.block_time = block_time
        self.log_builder = log_builder
        self.sent: list[tuple[CallDescriptor, Confirmation]] = []
        self.logs: dict[str, list[EventLog]] = {}
        self.failures: list[Exception] = []
        self.balance = 10**18

    def get_address(self) -> str:
        return self._account.address

    async def sign_typed_data(self, domain: dict, types: dict, message: dict) -> str:
        return to_hex(self._account.sign_typed_data(domain, types, message).signature)

    async def send(self, call: CallDescriptor) -> Confirmation:
        if self.failures:
            raise self.failures.pop(0)

        self.clock.current += self.block_time
        number = len(self.sent) + 1
        confirmation = Confirmation(
            tx_hash=to_hex(keccak(text=f"{self.network.name}-tx-{number}")),
            block_hash=to_hex(keccak(text=f"{self.network.name}-block-{number}")),
            block_number=number,
            confirmed_at=self.clock.now(),
        )
        self.sent.append((call, confirmation))
        self.logs[confirmation.tx_hash] = self.log_builder(call, confirmation) if self.log_builder else []
        return confirmation

    async def get_receipt_logs(self, confirmation: Confirmation) -> list[EventLog]:
        return self.logs.get(confirmation.tx_hash, [])

    async def call(self, call: CallDescriptor) -> bytes:
        raise AssertionError(f"Unexpected read from {call.to}")

    async def get_balance(self, address=None) -> int:
        return self.balance


class SrcEscrowCreatedLogs:
    """Log builder that emits SrcEscrowCreated for deploySrc calls.

    The factory stamps deployedAt with the block timestamp, as on chain.
    """

    def __init__(self, factory: str, dst_safety_deposit: int, dst_chain_id: int):
        self.factory = to_checksum_address(factory)
        self.dst_safety_deposit = dst_safety_deposit
        self.dst_chain_id = dst_chain_id

    def __call__(self, call: CallDescriptor, confirmation: Confirmation) -> list[EventLog]:
        if call.data[:4] != DEPLOY_SRC_SELECTOR:
            return []
        immutables, order, *_ = abi_decode(DEPLOY_SRC_TYPES, call.data[4:])
        immutables = list(immutables)
        immutables[7] |= confirmation.confirmed_at << 224
        complement = (order[1], order[6], order[4], self.dst_safety_deposit, self.dst_chain_id)
        data = abi_encode([IMMUTABLES_TYPE, COMPLEMENT_TYPE], [tuple(immutables), complement])
        return [EventLog(address=self.factory, topics=(SRC_ESCROW_CREATED_TOPIC,), data=data)]


@pytest.fixture(autouse=True)
def clear_adapter_cache():
    reset_adapter_cache()
    yield
    reset_adapter_cache()


@pytest.fixture
def networks():
    return load_networks()


@pytest.fixture
def src_network(networks):
    return networks["ethereum_sepolia"]


@pytest.fixture
def dst_network(networks):
    return networks["base_sepolia"]


@pytest.fixture
def time_locks():
    return TimeLockSchedule(
        src_withdrawal=10,
        src_public_withdrawal=120,
        src_cancellation=121,
        src_public_cancellation=122,
        dst_withdrawal=10,
        dst_public_withdrawal=100,
        dst_cancellation=101,
    )


@pytest.fixture
def order(src_network, dst_network, time_locks):
    """Reference order: 10^15 each way, zero secret."""
    return create_order(
        escrow_factory=src_network.escrow_factory,
        maker=MAKER_ADDRESS,
        making_amount=10**15,
        taking_amount=10**15,
        maker_asset=src_network.token,
        taker_asset=dst_network.token,
        secret=ZERO_SECRET,
        src_chain_id=src_network.chain_id,
        dst_chain_id=dst_network.chain_id,
        resolver=src_network.resolver,
        src_timestamp=START_TIME,
        time_locks=time_locks,
        src_safety_deposit=src_network.safety_deposit,
        dst_safety_deposit=dst_network.safety_deposit,
    )


@pytest.fixture
def clock():
    return FakeClock()
