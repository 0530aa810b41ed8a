"""Escrow factory access."""

from fusionswap.escrow.factory_view import (
    EscrowFactoryView,
    EVMEscrowFactoryView,
    TronEscrowFactoryView,
    get_factory_view,
)

__all__ = [
    "EscrowFactoryView",
    "EVMEscrowFactoryView",
    "TronEscrowFactoryView",
    "get_factory_view",
]
