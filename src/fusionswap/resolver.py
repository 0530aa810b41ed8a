"""Resolver contract call builders.

Pure encoding: every method returns a CallDescriptor and touches no network.
The resolver contract fills the order on the source chain (deploying the
source escrow through the LOP post-interaction), deploys destination escrows,
and forwards withdraw/cancel calls to escrows.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Union

from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector

from fusionswap.adapters.base import CallDescriptor
from fusionswap.order.addresses import parse_address
from fusionswap.order.hashlock import HashLock, secret_bytes
from fusionswap.order.immutables import IMMUTABLES_TYPE, Immutables
from fusionswap.order.order import Order
from fusionswap.order.timelocks import Side
from fusionswap.order.typed_data import order_hash

logger = logging.getLogger(__name__)

ORDER_TUPLE_TYPE = "(uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256)"

DEPLOY_SRC_SIGNATURE = f"deploySrc({IMMUTABLES_TYPE},{ORDER_TUPLE_TYPE},bytes32,bytes32,uint256,uint256,bytes)"
DEPLOY_DST_SIGNATURE = f"deployDst({IMMUTABLES_TYPE},uint256)"
WITHDRAW_SIGNATURE = f"withdraw(address,bytes32,{IMMUTABLES_TYPE})"
CANCEL_SIGNATURE = f"cancel(address,{IMMUTABLES_TYPE})"

# Taker traits layout (LOP v4)
MAKER_AMOUNT_FLAG = 255
ARGS_HAS_TARGET_FLAG = 251
ARGS_EXTENSION_LENGTH_OFFSET = 224
ARGS_INTERACTION_LENGTH_OFFSET = 200
UINT_24_MAX = (1 << 24) - 1
AMOUNT_THRESHOLD_MAX = (1 << 185) - 1


def _encode_call(signature: str, types: list[str], args: list) -> bytes:
    return function_signature_to_4byte_selector(signature) + abi_encode(types, args)


class AmountMode(IntEnum):
    """Which side of the order ``amount`` is denominated in."""
    TAKER = 0
    MAKER = 1


@dataclass
class TakerTraits:
    """Taker-side fill options, packed into one uint256 plus trailing args."""

    amount_mode: AmountMode = AmountMode.TAKER
    amount_threshold: int = 0
    extension: bytes = b""
    interaction: bytes = b""
    target: Optional[str] = None

    @classmethod
    def default(cls) -> "TakerTraits":
        return cls()

    def set_extension(self, extension: bytes) -> "TakerTraits":
        self.extension = extension
        return self

    def set_amount_mode(self, mode: AmountMode) -> "TakerTraits":
        self.amount_mode = mode
        return self

    def set_amount_threshold(self, threshold: int) -> "TakerTraits":
        self.amount_threshold = threshold
        return self

    def set_interaction(self, interaction: bytes) -> "TakerTraits":
        self.interaction = interaction
        return self

    def encode(self) -> tuple[int, bytes]:
        """Pack into ``(trait, args)``.

        Raises:
            ValueError: A length or the threshold does not fit its bit field
        """
        if len(self.extension) > UINT_24_MAX or len(self.interaction) > UINT_24_MAX:
            raise ValueError("Extension and interaction must each be shorter than 2^24 bytes")
        if not 0 <= self.amount_threshold <= AMOUNT_THRESHOLD_MAX:
            raise ValueError(f"Amount threshold does not fit in 185 bits: {self.amount_threshold}")

        trait = self.amount_threshold
        trait |= len(self.extension) << ARGS_EXTENSION_LENGTH_OFFSET
        trait |= len(self.interaction) << ARGS_INTERACTION_LENGTH_OFFSET
        if self.amount_mode is AmountMode.MAKER:
            trait |= 1 << MAKER_AMOUNT_FLAG

        args = b""
        if self.target:
            trait |= 1 << ARGS_HAS_TARGET_FLAG
            args += bytes.fromhex(parse_address(self.target)[2:])
        args += self.extension + self.interaction

        return trait, args


def split_signature(signature: Union[str, bytes]) -> tuple[bytes, bytes]:
    """Split a 65-byte signature into compact ``(r, vs)``.

    ``vs`` is ``s`` with the parity of ``v`` in its top bit.
    """
    if isinstance(signature, str):
        signature = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    if len(signature) != 65:
        raise ValueError(f"Signature must be 65 bytes, got {len(signature)}")

    r = signature[:32]
    s = int.from_bytes(signature[32:64], "big")
    v = signature[64]
    parity = v - 27 if v >= 27 else v
    if parity not in (0, 1):
        raise ValueError(f"Invalid signature v value: {v}")

    vs = s | (parity << 255)
    return r, vs.to_bytes(32, "big")


class ResolverClient:
    """Encodes calls to the resolver contracts on both chains.

    Args:
        src_address: Resolver contract on the source chain (the order taker)
        dst_address: Resolver contract on the destination chain
        lop_address: Limit order protocol on the source chain; the order
            hash is computed against it
    """

    def __init__(self, src_address: str, dst_address: str, lop_address: str):
        self.src_address = parse_address(src_address)
        self.dst_address = parse_address(dst_address)
        self.lop_address = parse_address(lop_address)

    def _address_for(self, side: Side) -> str:
        return self.src_address if Side(side) is Side.SRC else self.dst_address

    def build_src_immutables(
        self,
        chain_id: int,
        order: Order,
        amount: int,
        hash_lock: Optional[HashLock] = None,
    ) -> Immutables:
        """Source immutables as the source escrow will see them (deployedAt unset)."""
        return order.to_src_immutables(
            order_hash(order, chain_id, self.lop_address),
            self.src_address,
            amount,
            hash_lock,
        )

    def deploy_src(
        self,
        chain_id: int,
        order: Order,
        signature: str,
        taker_traits: TakerTraits,
        amount: int,
        hash_lock: Optional[HashLock] = None,
    ) -> CallDescriptor:
        """Fill ``order`` through the resolver, creating the source escrow."""
        r, vs = split_signature(signature)
        trait, args = taker_traits.encode()
        immutables = self.build_src_immutables(chain_id, order, amount, hash_lock)

        data = _encode_call(
            DEPLOY_SRC_SIGNATURE,
            [IMMUTABLES_TYPE, ORDER_TUPLE_TYPE, "bytes32", "bytes32", "uint256", "uint256", "bytes"],
            [immutables.build(), order.build_tuple(), r, vs, amount, trait, args],
        )
        return CallDescriptor(to=self.src_address, data=data, value=order.src_safety_deposit)

    def deploy_dst(self, immutables: Immutables) -> CallDescriptor:
        """Create the destination escrow.

        ``immutables.time_locks.deployed_at`` must be the source deployment
        time; the source private cancellation bounds the destination lock.
        """
        data = _encode_call(
            DEPLOY_DST_SIGNATURE,
            [IMMUTABLES_TYPE, "uint256"],
            [immutables.build(), immutables.time_locks.src_private_cancellation()],
        )
        return CallDescriptor(to=self.dst_address, data=data, value=immutables.safety_deposit)

    def withdraw(
        self,
        side: Side,
        escrow: str,
        secret: Union[str, bytes],
        immutables: Immutables,
    ) -> CallDescriptor:
        data = _encode_call(
            WITHDRAW_SIGNATURE,
            ["address", "bytes32", IMMUTABLES_TYPE],
            [parse_address(escrow), secret_bytes(secret), immutables.build()],
        )
        return CallDescriptor(to=self._address_for(side), data=data)

    def cancel(self, side: Side, escrow: str, immutables: Immutables) -> CallDescriptor:
        data = _encode_call(
            CANCEL_SIGNATURE,
            ["address", IMMUTABLES_TYPE],
            [parse_address(escrow), immutables.build()],
        )
        return CallDescriptor(to=self._address_for(side), data=data)
