"""Tron chain adapter.

Uses the TronGrid HTTP API for transaction building, broadcast and status,
and eth-keys for signing (Tron accounts are secp256k1 keys). Calls are
submitted as fully encoded calldata through triggersmartcontract's ``data``
field.
"""

import asyncio
import logging
from typing import Optional

import httpx
from eth_keys import keys
from eth_utils import to_checksum_address

from fusionswap.adapters.base import CallDescriptor, ChainAdapter, Confirmation, EventLog, TxStatus
from fusionswap.config import NetworkConfig
from fusionswap.errors import ConfirmationTimeout, TransactionReverted
from fusionswap.order.addresses import evm_hex_to_tron, parse_address
from fusionswap.order.typed_data import typed_data_digest

logger = logging.getLogger(__name__)


def to_tron_hex(address: str) -> str:
    """41-prefixed hex address as expected by the TronGrid wallet API."""
    return "41" + parse_address(address, tron=True)[2:].lower()


def _decode_message(message: str) -> str:
    """TronGrid returns error messages hex-encoded."""
    try:
        return bytes.fromhex(message).decode("utf-8", errors="replace")
    except ValueError:
        return message


class TronChainAdapter(ChainAdapter):
    """Adapter for Tron mainnet and Nile."""

    def __init__(
        self,
        network: NetworkConfig,
        private_key: str,
        api_key: str = "",
        poll_interval: float = 2.0,
        max_attempts: int = 30,
        fee_limit: int = 500_000_000,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(network)
        key = private_key[2:] if private_key.startswith("0x") else private_key
        self._key = keys.PrivateKey(bytes.fromhex(key))
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.fee_limit = fee_limit

        headers = {"Accept": "application/json"}
        if api_key:
            headers["TRON-PRO-API-KEY"] = api_key
        self._client = client or httpx.AsyncClient(base_url=network.rpc_url, headers=headers, timeout=30.0)
        self._broadcast_lock = asyncio.Lock()

    def get_address(self) -> str:
        return evm_hex_to_tron(self._key.public_key.to_checksum_address())

    async def _post(self, path: str, payload: dict) -> dict:
        response = await self._client.post(path, json=payload)
        response.raise_for_status()
        return response.json()

    async def sign_typed_data(self, domain: dict, types: dict, message: dict) -> str:
        """Sign the EIP-712 digest as a raw hash."""
        digest = typed_data_digest(domain, types, message)
        signature = bytearray(self._key.sign_msg_hash(digest).to_bytes())
        if signature[64] < 27:
            signature[64] += 27
        return "0x" + signature.hex()

    # =========================================================================
    # Submission
    # =========================================================================

    async def _build_transaction(self, call: CallDescriptor) -> dict:
        owner = to_tron_hex(self.get_address())

        if not call.data:
            tx = await self._post("/wallet/createtransaction", {
                "owner_address": owner,
                "to_address": to_tron_hex(call.to),
                "amount": call.value,
            })
            if "Error" in tx or "txID" not in tx:
                raise TransactionReverted(None, tx.get("Error", "transfer not built"))
            return tx

        result = await self._post("/wallet/triggersmartcontract", {
            "owner_address": owner,
            "contract_address": to_tron_hex(call.to),
            "data": call.data.hex(),
            "call_value": call.value,
            "fee_limit": self.fee_limit,
        })
        status = result.get("result", {})
        if not status.get("result") or "transaction" not in result:
            raise TransactionReverted(None, _decode_message(status.get("message", "")))
        return result["transaction"]

    def _sign_transaction(self, tx: dict) -> dict:
        signature = self._key.sign_msg_hash(bytes.fromhex(tx["txID"]))
        return {**tx, "signature": [signature.to_bytes().hex()]}

    async def _broadcast(self, call: CallDescriptor) -> str:
        async with self._broadcast_lock:
            tx = self._sign_transaction(await self._build_transaction(call))
            result = await self._post("/wallet/broadcasttransaction", tx)

        tx_id = tx["txID"]
        if not result.get("result"):
            reason = _decode_message(result.get("message", "")) or result.get("code", "")
            logger.error(f"[{self.network.name}] Broadcast of {tx_id} rejected: {reason}")
            raise TransactionReverted(tx_id, reason)

        logger.info(f"[{self.network.name}] Broadcast {tx_id} to {call.to} (value={call.value})")
        return tx_id

    async def send(self, call: CallDescriptor) -> Confirmation:
        tx_id = await self._broadcast(call)
        return await self.wait_for_confirmation(tx_id)

    # =========================================================================
    # Confirmation
    # =========================================================================

    async def get_transaction_info(self, tx_id: str) -> dict:
        return await self._post("/wallet/gettransactioninfobyid", {"value": tx_id})

    async def _poll_status(self, tx_id: str) -> tuple[TxStatus, dict]:
        try:
            info = await self.get_transaction_info(tx_id)
        except httpx.HTTPError as e:
            logger.warning(f"[{self.network.name}] Status check for {tx_id} failed: {e}")
            return TxStatus.PENDING, {}

        if not info or "blockNumber" not in info:
            return TxStatus.PENDING, info

        result = info.get("receipt", {}).get("result")
        if info.get("result") == "FAILED" or (result and result != "SUCCESS"):
            return TxStatus.FAILED, info

        return TxStatus.SUCCESS, info

    async def wait_for_confirmation(self, tx_id: str) -> Confirmation:
        """Poll until the transaction is in a block.

        Raises:
            TransactionReverted: Receipt reports a failure
            ConfirmationTimeout: Still pending after ``max_attempts`` polls
        """
        for attempt in range(1, self.max_attempts + 1):
            status, info = await self._poll_status(tx_id)

            if status is TxStatus.SUCCESS:
                block_number = info["blockNumber"]
                block = await self._post("/wallet/getblockbynum", {"num": block_number})
                confirmation = Confirmation(
                    tx_hash=tx_id,
                    block_hash=block.get("blockID", ""),
                    block_number=block_number,
                    confirmed_at=info["blockTimeStamp"] // 1000,
                )
                logger.info(
                    f"[{self.network.name}] Confirmed {tx_id} in block {block_number} "
                    f"after {attempt} attempts"
                )
                return confirmation

            if status is TxStatus.FAILED:
                reason = _decode_message(info.get("resMessage", "")) or info.get("receipt", {}).get("result", "")
                logger.error(f"[{self.network.name}] Transaction {tx_id} failed: {reason}")
                raise TransactionReverted(tx_id, reason)

            if attempt < self.max_attempts:
                await asyncio.sleep(self.poll_interval)

        logger.warning(f"[{self.network.name}] {tx_id} not confirmed after {self.max_attempts} attempts")
        raise ConfirmationTimeout(tx_id, self.max_attempts)

    # =========================================================================
    # Reads
    # =========================================================================

    async def call(self, call: CallDescriptor) -> bytes:
        result = await self._post("/wallet/triggerconstantcontract", {
            "owner_address": to_tron_hex(self.get_address()),
            "contract_address": to_tron_hex(call.to),
            "data": call.data.hex(),
        })
        constant = result.get("constant_result") or [""]
        return bytes.fromhex(constant[0])

    async def get_receipt_logs(self, confirmation: Confirmation) -> list[EventLog]:
        info = await self.get_transaction_info(confirmation.tx_hash)
        # Log addresses come as 20-byte hex, sometimes with the 41 prefix
        return [
            EventLog(
                address=to_checksum_address("0x" + log.get("address", "")[-40:]),
                topics=tuple(bytes.fromhex(topic) for topic in log.get("topics") or []),
                data=bytes.fromhex(log.get("data", "")),
            )
            for log in info.get("log", [])
        ]

    async def get_balance(self, address: Optional[str] = None) -> int:
        account = await self._post("/wallet/getaccount", {
            "address": to_tron_hex(address or self.get_address()),
        })
        return account.get("balance", 0)

    async def aclose(self) -> None:
        await self._client.aclose()
