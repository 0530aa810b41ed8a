"""EVM chain adapter.

Uses web3's async client for RPC and eth-account for local signing.
"""

import asyncio
import logging
from typing import Optional

from eth_account import Account
from eth_utils import to_checksum_address, to_hex
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from fusionswap.adapters.base import CallDescriptor, ChainAdapter, Confirmation, EventLog
from fusionswap.config import NetworkConfig
from fusionswap.errors import ConfirmationTimeout, TransactionReverted

logger = logging.getLogger(__name__)

RECEIPT_POLL_LATENCY = 2.0


class EVMChainAdapter(ChainAdapter):
    """Adapter for EVM-compatible chains."""

    def __init__(
        self,
        network: NetworkConfig,
        private_key: str,
        receipt_timeout: float = 120.0,
        web3: Optional[AsyncWeb3] = None,
    ):
        super().__init__(network)
        self._account = Account.from_key(private_key)
        self.receipt_timeout = receipt_timeout
        self._web3 = web3
        self._nonce_lock = asyncio.Lock()
        self._next_nonce: Optional[int] = None

    @property
    def web3(self) -> AsyncWeb3:
        """Lazy load web3 instance."""
        if self._web3 is None:
            self._web3 = AsyncWeb3(AsyncHTTPProvider(self.network.rpc_url))
        return self._web3

    def get_address(self) -> str:
        return self._account.address

    async def sign_typed_data(self, domain: dict, types: dict, message: dict) -> str:
        signed = self._account.sign_typed_data(domain, types, message)
        return to_hex(signed.signature)

    async def _get_next_nonce(self) -> int:
        """Next nonce; caller must hold the nonce lock.

        Uses the higher of the pending count and the locally tracked nonce so
        that back-to-back sends do not collide.
        """
        chain_nonce = await self.web3.eth.get_transaction_count(self.get_address(), "pending")
        nonce = max(chain_nonce, self._next_nonce or 0)
        self._next_nonce = nonce + 1
        return nonce

    async def _broadcast(self, call: CallDescriptor) -> str:
        async with self._nonce_lock:
            tx = {
                "from": self.get_address(),
                "to": call.to,
                "value": call.value,
                "data": to_hex(call.data),
                "chainId": self.chain_id,
            }
            try:
                tx["nonce"] = await self._get_next_nonce()
                tx["gas"] = await self.web3.eth.estimate_gas(tx)
                tx["gasPrice"] = await self.web3.eth.gas_price

                signed = self._account.sign_transaction(tx)
                tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
            except ContractLogicError as e:
                self._next_nonce = None
                raise TransactionReverted(None, str(e)) from e
            except Exception:
                # Next send re-reads the nonce from chain
                self._next_nonce = None
                raise

        tx_hex = to_hex(tx_hash)
        logger.info(f"[{self.network.name}] Sent {tx_hex} to {call.to} (value={call.value})")
        return tx_hex

    async def send(self, call: CallDescriptor) -> Confirmation:
        tx_hash = await self._broadcast(call)

        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout, poll_latency=RECEIPT_POLL_LATENCY
            )
        except TimeExhausted as e:
            logger.warning(f"[{self.network.name}] No receipt for {tx_hash} after {self.receipt_timeout}s")
            raise ConfirmationTimeout(tx_hash) from e

        if receipt["status"] == 0:
            logger.error(f"[{self.network.name}] Transaction {tx_hash} reverted")
            raise TransactionReverted(tx_hash, "receipt status 0")

        block = await self.web3.eth.get_block(receipt["blockNumber"])
        confirmation = Confirmation(
            tx_hash=tx_hash,
            block_hash=to_hex(receipt["blockHash"]),
            block_number=receipt["blockNumber"],
            confirmed_at=block["timestamp"],
        )
        logger.info(
            f"[{self.network.name}] Confirmed {tx_hash} in block {confirmation.block_number} "
            f"at {confirmation.confirmed_at}"
        )
        return confirmation

    async def call(self, call: CallDescriptor) -> bytes:
        result = await self.web3.eth.call({"to": call.to, "data": to_hex(call.data), "value": call.value})
        return bytes(result)

    async def get_receipt_logs(self, confirmation: Confirmation) -> list[EventLog]:
        receipt = await self.web3.eth.get_transaction_receipt(confirmation.tx_hash)
        return [
            EventLog(
                address=to_checksum_address(log["address"]),
                topics=tuple(bytes(topic) for topic in log["topics"]),
                data=bytes(log["data"]),
            )
            for log in receipt["logs"]
        ]

    async def get_balance(self, address: Optional[str] = None) -> int:
        return await self.web3.eth.get_balance(address or self.get_address())
