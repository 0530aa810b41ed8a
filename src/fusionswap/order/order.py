"""Cross-chain limit order.

An Order is the maker's swap intent: a limit order protocol (LOP v4) order
whose extension carries the escrow parameters (hashlock, timelocks, safety
deposits, destination chain and token) plus auction/whitelist data that the
resolver side treats as opaque.

Extension layout (LOP v4):
    offsets word (32 bytes) | field 0 .. field 7 | custom data
The offsets word stores the cumulative end offset of field i in bits
[32*i, 32*i + 32). Only making/taking amount data (fields 2, 3) and post
interaction data (field 7) are populated here.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from eth_abi import encode as abi_encode
from eth_utils import keccak

from fusionswap.order.addresses import ZERO_ADDRESS, address_to_int, is_tron_chain, parse_address
from fusionswap.order.hashlock import HashLock
from fusionswap.order.immutables import Immutables
from fusionswap.order.timelocks import TimeLockSchedule

logger = logging.getLogger(__name__)

UINT_40_MAX = (1 << 40) - 1
UINT_96_MAX = (1 << 96) - 1
UINT_160_MAX = (1 << 160) - 1

# Maker traits flags (LOP v4)
NO_PARTIAL_FILLS_FLAG = 255
ALLOW_MULTIPLE_FILLS_FLAG = 254
POST_INTERACTION_CALL_FLAG = 251
HAS_EXTENSION_FLAG = 249
NONCE_OFFSET = 120

# Extension field indexes
MAKING_AMOUNT_DATA = 2
TAKING_AMOUNT_DATA = 3
POST_INTERACTION_DATA = 7
EXTENSION_FIELDS = 8


@dataclass(frozen=True)
class AuctionPoint:
    """Rate bump step: ``coefficient`` applies ``delay`` seconds after the previous point."""
    coefficient: int
    delay: int


@dataclass(frozen=True)
class AuctionDetails:
    """Dutch auction parameters. Carried, never evaluated."""

    start_time: int
    duration: int
    initial_rate_bump: int = 0
    points: tuple[AuctionPoint, ...] = ()
    gas_bump_estimate: int = 0
    gas_price_estimate: int = 0

    def encode(self) -> bytes:
        """Pack as gasBump(3) gasPrice(4) start(4) duration(3) rateBump(3) points(3+2 each)."""
        data = (
            self.gas_bump_estimate.to_bytes(3, "big")
            + self.gas_price_estimate.to_bytes(4, "big")
            + self.start_time.to_bytes(4, "big")
            + self.duration.to_bytes(3, "big")
            + self.initial_rate_bump.to_bytes(3, "big")
        )
        for point in self.points:
            data += point.coefficient.to_bytes(3, "big") + point.delay.to_bytes(2, "big")
        return data


@dataclass(frozen=True)
class WhitelistEntry:
    """Resolver allowed to fill from ``allow_from`` (unix seconds, 0 = immediately)."""
    address: str
    allow_from: int = 0


@dataclass(frozen=True)
class Order:
    """Immutable cross-chain order.

    ``salt`` is the random base salt; the salt signed as part of the LOP struct
    also commits to the extension hash in its lower 160 bits.
    """

    salt: int
    maker: str
    making_amount: int
    taking_amount: int
    maker_asset: str
    taker_asset: str
    hash_lock: HashLock
    time_locks: TimeLockSchedule
    src_chain_id: int
    dst_chain_id: int
    src_safety_deposit: int
    dst_safety_deposit: int
    escrow_factory: str
    auction: AuctionDetails
    whitelist: tuple[WhitelistEntry, ...]
    nonce: int
    resolving_start_time: int = 0
    receiver: str = ZERO_ADDRESS
    allow_partial_fills: bool = False
    allow_multiple_fills: bool = False

    def __post_init__(self):
        if self.allow_partial_fills or self.allow_multiple_fills:
            raise ValueError("Partial and multiple fills are not supported")
        if not 0 <= self.nonce <= UINT_40_MAX:
            raise ValueError(f"Nonce must fit in 40 bits, got {self.nonce}")
        if not 0 <= self.salt <= UINT_96_MAX:
            raise ValueError(f"Base salt must fit in 96 bits, got {self.salt}")
        if self.making_amount <= 0 or self.taking_amount <= 0:
            raise ValueError("Order amounts must be positive")
        if not self.whitelist:
            raise ValueError("Whitelist must contain at least one resolver")

    # =========================================================================
    # Extension
    # =========================================================================

    def _amount_getter_data(self) -> bytes:
        return bytes.fromhex(self.escrow_factory[2:]) + self.auction.encode()

    def _whitelist_data(self) -> bytes:
        entries = sorted(self.whitelist, key=lambda e: e.allow_from)
        data = self.resolving_start_time.to_bytes(4, "big") + len(entries).to_bytes(1, "big")
        previous = self.resolving_start_time
        for entry in entries:
            delay = max(entry.allow_from - previous, 0)
            data += bytes.fromhex(entry.address[2:])[-10:] + delay.to_bytes(2, "big")
            previous = max(entry.allow_from, previous)
        return data

    def escrow_extra_data(self) -> bytes:
        """ABI-encoded escrow parameters read by the escrow factory."""
        return abi_encode(
            ["bytes32", "uint256", "uint256", "uint256", "uint256"],
            [
                self.hash_lock.value,
                self.dst_chain_id,
                address_to_int(self.taker_asset),
                (self.src_safety_deposit << 128) | self.dst_safety_deposit,
                self.time_locks.build(),
            ],
        )

    def _post_interaction_data(self) -> bytes:
        return (
            bytes.fromhex(self.escrow_factory[2:])
            + self._whitelist_data()
            + self.escrow_extra_data()
        )

    def extension(self) -> bytes:
        """Encoded LOP v4 extension."""
        fields_data = [b""] * EXTENSION_FIELDS
        fields_data[MAKING_AMOUNT_DATA] = self._amount_getter_data()
        fields_data[TAKING_AMOUNT_DATA] = self._amount_getter_data()
        fields_data[POST_INTERACTION_DATA] = self._post_interaction_data()

        offsets = 0
        end = 0
        for i, data in enumerate(fields_data):
            end += len(data)
            offsets |= end << (32 * i)

        return offsets.to_bytes(32, "big") + b"".join(fields_data)

    # =========================================================================
    # LOP struct
    # =========================================================================

    def full_salt(self) -> int:
        """Salt as signed: base salt in the upper 96 bits, extension hash below."""
        extension_hash = int.from_bytes(keccak(self.extension()), "big")
        return (self.salt << 160) | (extension_hash & UINT_160_MAX)

    def maker_traits(self) -> int:
        traits = (1 << HAS_EXTENSION_FLAG) | (1 << POST_INTERACTION_CALL_FLAG)
        if not self.allow_partial_fills:
            traits |= 1 << NO_PARTIAL_FILLS_FLAG
        if self.allow_multiple_fills:
            traits |= 1 << ALLOW_MULTIPLE_FILLS_FLAG
        traits |= self.nonce << NONCE_OFFSET
        return traits

    def build(self) -> dict:
        """LOP order struct as typed-data message values."""
        return {
            "salt": self.full_salt(),
            "maker": self.maker,
            "receiver": self.receiver,
            "makerAsset": self.maker_asset,
            "takerAsset": self.taker_asset,
            "makingAmount": self.making_amount,
            "takingAmount": self.taking_amount,
            "makerTraits": self.maker_traits(),
        }

    def build_tuple(self) -> tuple:
        """LOP order struct as the ABI tuple (Address fields are uint256)."""
        built = self.build()
        return (
            built["salt"],
            address_to_int(built["maker"]),
            address_to_int(built["receiver"]),
            address_to_int(built["makerAsset"]),
            address_to_int(built["takerAsset"]),
            built["makingAmount"],
            built["takingAmount"],
            built["makerTraits"],
        )

    def to_src_immutables(
        self,
        order_hash: bytes,
        taker: str,
        amount: int,
        hash_lock: Optional[HashLock] = None,
    ) -> Immutables:
        """Source escrow immutables for filling ``amount`` by ``taker``."""
        return Immutables(
            order_hash=order_hash,
            hash_lock=hash_lock or self.hash_lock,
            maker=self.maker,
            taker=parse_address(taker),
            token=self.maker_asset,
            amount=amount,
            safety_deposit=self.src_safety_deposit,
            time_locks=self.time_locks,
        )


def create_order(
    escrow_factory: str,
    maker: str,
    making_amount: int,
    taking_amount: int,
    maker_asset: str,
    taker_asset: str,
    secret: str,
    src_chain_id: int,
    dst_chain_id: int,
    resolver: str,
    src_timestamp: int,
    time_locks: TimeLockSchedule,
    src_safety_deposit: int,
    dst_safety_deposit: int,
    auction_duration: int = 120,
) -> Order:
    """Build a single-fill order with fresh salt and nonce.

    Addresses on a Tron chain may be given in base58; they are converted to
    the 20-byte form embedded in EVM-style calls.

    Raises:
        InvalidAddress: If any address cannot be parsed for its chain
    """
    src_tron = is_tron_chain(src_chain_id)
    dst_tron = is_tron_chain(dst_chain_id)

    maker_addr = parse_address(maker, tron=src_tron)
    order = Order(
        salt=secrets.randbits(96),
        maker=maker_addr,
        making_amount=making_amount,
        taking_amount=taking_amount,
        maker_asset=parse_address(maker_asset, tron=src_tron),
        taker_asset=parse_address(taker_asset, tron=dst_tron),
        hash_lock=HashLock.for_single_fill(secret),
        time_locks=time_locks,
        src_chain_id=src_chain_id,
        dst_chain_id=dst_chain_id,
        src_safety_deposit=src_safety_deposit,
        dst_safety_deposit=dst_safety_deposit,
        escrow_factory=parse_address(escrow_factory, tron=src_tron),
        auction=AuctionDetails(start_time=src_timestamp, duration=auction_duration),
        whitelist=(WhitelistEntry(address=parse_address(resolver, tron=src_tron), allow_from=0),),
        nonce=secrets.randbits(40),
    )

    logger.info(
        f"Order created: maker={maker_addr} {making_amount} -> {taking_amount} "
        f"chains {src_chain_id} -> {dst_chain_id}"
    )
    return order
