"""Order data model.

Orders, hashlocks, timelock schedules and escrow immutables, plus the
typed-data encoding the maker signs.
"""

from fusionswap.order.hashlock import HashLock, generate_secret
from fusionswap.order.immutables import (
    DstImmutablesComplement,
    Immutables,
    compute_escrow_address,
)
from fusionswap.order.order import AuctionDetails, Order, WhitelistEntry, create_order
from fusionswap.order.timelocks import Side, TimeLockSchedule, TimeLockStage
from fusionswap.order.typed_data import (
    ORDER_TYPES,
    build_domain,
    ensure_valid_signature,
    order_hash,
    verify_order_signature,
)

__all__ = [
    "AuctionDetails",
    "DstImmutablesComplement",
    "HashLock",
    "Immutables",
    "ORDER_TYPES",
    "Order",
    "Side",
    "TimeLockSchedule",
    "TimeLockStage",
    "WhitelistEntry",
    "build_domain",
    "compute_escrow_address",
    "create_order",
    "ensure_valid_signature",
    "generate_secret",
    "order_hash",
    "verify_order_signature",
]
