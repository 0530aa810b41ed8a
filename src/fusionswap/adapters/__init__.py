"""Chain adapters.

Build, sign, broadcast and confirm transactions on one chain with one key.
"""

from fusionswap.adapters.base import CallDescriptor, ChainAdapter, Confirmation, EventLog, TxStatus
from fusionswap.adapters.factory import get_chain_adapter

__all__ = [
    "CallDescriptor",
    "ChainAdapter",
    "Confirmation",
    "EventLog",
    "TxStatus",
    "get_chain_adapter",
]
