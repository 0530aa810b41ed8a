"""Read access to the escrow factory.

The source escrow is created inside the order fill, so its immutables (with
the deployment timestamp set on chain) are only known from the factory's
SrcEscrowCreated event.
"""

import logging

from eth_abi import decode as abi_decode
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

from fusionswap.adapters.base import CallDescriptor, ChainAdapter, Confirmation
from fusionswap.config import NetworkConfig
from fusionswap.errors import EscrowEventNotFound
from fusionswap.order.immutables import (
    COMPLEMENT_TYPE,
    EVM_CREATE2_PREFIX,
    IMMUTABLES_TYPE,
    TRON_CREATE2_PREFIX,
    DstImmutablesComplement,
    Immutables,
    compute_escrow_address,
)
from fusionswap.order.timelocks import Side

logger = logging.getLogger(__name__)

SRC_ESCROW_CREATED_TOPIC = keccak(text=f"SrcEscrowCreated({IMMUTABLES_TYPE},{COMPLEMENT_TYPE})")

_IMPLEMENTATION_GETTERS = {
    Side.SRC: function_signature_to_4byte_selector("ESCROW_SRC_IMPLEMENTATION()"),
    Side.DST: function_signature_to_4byte_selector("ESCROW_DST_IMPLEMENTATION()"),
}


class EscrowFactoryView:
    """Escrow factory reader for one chain.

    Logs come from the adapter's receipt accessor; chain families differ only
    in how CREATE2 addresses are derived.
    """

    create2_prefix = EVM_CREATE2_PREFIX

    def __init__(self, network: NetworkConfig, adapter: ChainAdapter):
        self.network = network
        self.adapter = adapter
        self.factory_address = to_checksum_address(network.escrow_factory)

        # Configured templates short-circuit the on-chain read
        self._implementations: dict[Side, str] = {}
        if network.escrow_src_implementation:
            self._implementations[Side.SRC] = to_checksum_address(network.escrow_src_implementation)
        if network.escrow_dst_implementation:
            self._implementations[Side.DST] = to_checksum_address(network.escrow_dst_implementation)

    async def _fetch_event_data(self, confirmation: Confirmation) -> list[bytes]:
        """Raw data of SrcEscrowCreated logs emitted by the factory in the confirmed transaction."""
        logs = await self.adapter.get_receipt_logs(confirmation)
        return [
            log.data
            for log in logs
            if log.address.lower() == self.factory_address.lower()
            and log.topics
            and log.topics[0] == SRC_ESCROW_CREATED_TOPIC
        ]

    async def get_deploy_event(
        self, confirmation: Confirmation
    ) -> tuple[DstImmutablesComplement, Immutables]:
        """Decode the source escrow creation event of a deploySrc transaction.

        Raises:
            EscrowEventNotFound: No SrcEscrowCreated log in the transaction
        """
        events = await self._fetch_event_data(confirmation)
        if not events:
            raise EscrowEventNotFound(
                f"No SrcEscrowCreated event from {self.factory_address} in {confirmation.tx_hash}"
            )

        immutables, complement = abi_decode([IMMUTABLES_TYPE, COMPLEMENT_TYPE], events[-1])
        logger.info(f"[{self.network.name}] SrcEscrowCreated found in {confirmation.tx_hash}")
        return DstImmutablesComplement.from_tuple(complement), Immutables.from_tuple(immutables)

    async def get_implementation_address(self, side: Side) -> str:
        """Escrow template for ``side``; read once, then cached."""
        side = Side(side)
        if side not in self._implementations:
            data = await self.adapter.call(
                CallDescriptor(to=self.factory_address, data=_IMPLEMENTATION_GETTERS[side])
            )
            (address,) = abi_decode(["address"], data)
            self._implementations[side] = to_checksum_address(address)
            logger.debug(f"[{self.network.name}] {side.value} implementation: {address}")
        return self._implementations[side]

    async def get_escrow_address(self, side: Side, immutables: Immutables) -> str:
        implementation = await self.get_implementation_address(side)
        return compute_escrow_address(
            immutables, implementation, self.factory_address, self.create2_prefix
        )


class EVMEscrowFactoryView(EscrowFactoryView):
    """EVM chains: CREATE2 with the 0xff prefix."""

    create2_prefix = EVM_CREATE2_PREFIX


class TronEscrowFactoryView(EscrowFactoryView):
    """Tron: the TVM derives CREATE2 addresses with the 0x41 prefix."""

    create2_prefix = TRON_CREATE2_PREFIX


def get_factory_view(network: NetworkConfig, adapter: ChainAdapter) -> EscrowFactoryView:
    if network.is_tron:
        return TronEscrowFactoryView(network, adapter)
    return EVMEscrowFactoryView(network, adapter)
