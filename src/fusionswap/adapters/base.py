"""Base interfaces for chain adapters.

A chain adapter binds one private key to one network and is the only place
where transactions are built, signed, broadcast and confirmed:

1. Caller builds a CallDescriptor (target, calldata, native value)
2. Adapter builds the chain-specific transaction around it
3. Adapter signs with its bound key and broadcasts
4. Adapter waits for finality and returns a Confirmation

Adapters may be shared by concurrent swaps; each serialises its own
nonce assignment and broadcast.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fusionswap.config import NetworkConfig
from fusionswap.order.addresses import parse_address
from fusionswap.order.typed_data import ORDER_TYPES, build_domain, order_message

logger = logging.getLogger(__name__)


class TxStatus(str, Enum):
    """Transaction status as seen by a confirmation poll."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class CallDescriptor:
    """Chain-agnostic contract call."""
    to: str
    data: bytes
    value: int = 0


@dataclass(frozen=True)
class Confirmation:
    """Finalised transaction."""
    tx_hash: str
    block_hash: str
    block_number: int
    confirmed_at: int      # block timestamp, unix seconds


@dataclass(frozen=True)
class EventLog:
    """Log emitted by a confirmed transaction."""
    address: str           # emitting contract, checksummed 0x-hex
    topics: tuple[bytes, ...]
    data: bytes


class ChainAdapter(ABC):
    """Abstract base class for chain adapters.

    Each chain family has its own implementation.
    """

    def __init__(self, network: NetworkConfig):
        """Initialize adapter.

        Args:
            network: Network the adapter submits to
        """
        self.network = network

    @property
    def chain_id(self) -> int:
        return self.network.chain_id

    @abstractmethod
    def get_address(self) -> str:
        """Address of the bound key in the chain's native format."""
        pass

    @property
    def call_address(self) -> str:
        """Address of the bound key as embedded in calls (0x-hex)."""
        return parse_address(self.get_address(), tron=self.network.is_tron)

    @abstractmethod
    async def sign_typed_data(self, domain: dict, types: dict, message: dict) -> str:
        """Sign EIP-712 typed data.

        Returns:
            0x-hex 65-byte signature with v in {27, 28}
        """
        pass

    async def sign_order(self, chain_id: int, order, verifying_contract: str) -> str:
        """Sign a limit order for ``chain_id``."""
        domain = build_domain(chain_id, verifying_contract)
        signature = await self.sign_typed_data(domain, ORDER_TYPES, order_message(order))
        logger.info(f"[{self.network.name}] Order signed by {self.get_address()}")
        return signature

    @abstractmethod
    async def send(self, call: CallDescriptor) -> Confirmation:
        """Build, sign, broadcast and confirm a call.

        Raises:
            TransactionReverted: Transaction rejected or failed on chain
            ConfirmationTimeout: Broadcast succeeded but finality not observed
        """
        pass

    @abstractmethod
    async def get_receipt_logs(self, confirmation: Confirmation) -> list[EventLog]:
        """Logs emitted by the confirmed transaction, in emission order."""
        pass

    @abstractmethod
    async def call(self, call: CallDescriptor) -> bytes:
        """Read-only call; returns raw return data."""
        pass

    @abstractmethod
    async def get_balance(self, address: Optional[str] = None) -> int:
        """Native balance in the chain's smallest unit (defaults to own address)."""
        pass

    async def aclose(self) -> None:
        """Release network resources."""
        pass
