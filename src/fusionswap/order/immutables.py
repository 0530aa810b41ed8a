"""Escrow immutables and deterministic escrow addresses."""

from dataclasses import dataclass, replace

from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address

from fusionswap.order.addresses import address_to_int, int_to_address, parse_address
from fusionswap.order.hashlock import HashLock
from fusionswap.order.timelocks import TimeLockSchedule

IMMUTABLES_TYPE = "(bytes32,bytes32,uint256,uint256,uint256,uint256,uint256,uint256)"
COMPLEMENT_TYPE = "(uint256,uint256,uint256,uint256,uint256)"

# CREATE2 address prefix per chain family; the TVM uses the Tron address prefix
EVM_CREATE2_PREFIX = b"\xff"
TRON_CREATE2_PREFIX = b"\x41"

# EIP-1167 minimal proxy creation code around the implementation address
_PROXY_PREFIX = bytes.fromhex("3d602d80600a3d3981f3363d3d373d3d3d363d73")
_PROXY_SUFFIX = bytes.fromhex("5af43d82803e903d91602b57fd5bf3")


@dataclass(frozen=True)
class DstImmutablesComplement:
    """Destination-side values emitted with the source escrow creation event."""

    maker: str
    amount: int
    token: str
    safety_deposit: int
    chain_id: int

    @classmethod
    def from_tuple(cls, values: tuple) -> "DstImmutablesComplement":
        maker, amount, token, safety_deposit, chain_id = values
        return cls(
            maker=int_to_address(maker),
            amount=amount,
            token=int_to_address(token),
            safety_deposit=safety_deposit,
            chain_id=chain_id,
        )


@dataclass(frozen=True)
class Immutables:
    """Parameter set an escrow is bound to.

    ``deployed_at`` lives in ``time_locks``. Withdraw and cancel must present
    exactly the values the escrow was created with.
    """

    order_hash: bytes
    hash_lock: HashLock
    maker: str
    taker: str
    token: str
    amount: int
    safety_deposit: int
    time_locks: TimeLockSchedule

    def __post_init__(self):
        if len(self.order_hash) != 32:
            raise ValueError(f"Order hash must be 32 bytes, got {len(self.order_hash)}")

    @classmethod
    def from_tuple(cls, values: tuple) -> "Immutables":
        order_hash, hash_lock, maker, taker, token, amount, safety_deposit, time_locks = values
        return cls(
            order_hash=bytes(order_hash),
            hash_lock=HashLock(bytes(hash_lock)),
            maker=int_to_address(maker),
            taker=int_to_address(taker),
            token=int_to_address(token),
            amount=amount,
            safety_deposit=safety_deposit,
            time_locks=TimeLockSchedule.from_int(time_locks),
        )

    @property
    def deployed_at(self) -> int:
        return self.time_locks.deployed_at

    def build(self) -> tuple:
        """ABI tuple as passed to resolver calls."""
        return (
            self.order_hash,
            self.hash_lock.value,
            address_to_int(self.maker),
            address_to_int(self.taker),
            address_to_int(self.token),
            self.amount,
            self.safety_deposit,
            self.time_locks.build(),
        )

    def hash(self) -> bytes:
        """keccak256 of the ABI-encoded tuple; the escrow's CREATE2 salt."""
        return keccak(abi_encode([IMMUTABLES_TYPE], [self.build()]))

    def with_deployed_at(self, deployed_at: int) -> "Immutables":
        return replace(self, time_locks=self.time_locks.with_deployed_at(deployed_at))

    def with_taker(self, taker: str) -> "Immutables":
        return replace(self, taker=parse_address(taker))

    def with_complement(self, complement: DstImmutablesComplement) -> "Immutables":
        """Destination immutables: maker, amount, token and deposit from the complement."""
        return replace(
            self,
            maker=complement.maker,
            amount=complement.amount,
            token=complement.token,
            safety_deposit=complement.safety_deposit,
        )


def compute_escrow_address(
    immutables: Immutables,
    implementation: str,
    factory: str,
    prefix: bytes = EVM_CREATE2_PREFIX,
) -> str:
    """CREATE2 address of the escrow proxy for ``immutables``.

    ``prefix`` is the chain's CREATE2 marker byte: 0xff on EVM chains, 0x41 on Tron.
    """
    impl = bytes.fromhex(parse_address(implementation)[2:])
    deployer = bytes.fromhex(parse_address(factory)[2:])
    bytecode_hash = keccak(_PROXY_PREFIX + impl + _PROXY_SUFFIX)
    digest = keccak(prefix + deployer + immutables.hash() + bytecode_hash)
    return to_checksum_address("0x" + digest[12:].hex())
