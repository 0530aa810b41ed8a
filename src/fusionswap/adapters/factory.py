"""Factory for creating chain adapters.

One adapter per (network, actor) for the life of the process; adapters are
safe to share between concurrent swaps.
"""

import logging
from typing import Literal, Optional

from fusionswap.adapters.base import ChainAdapter
from fusionswap.config import NetworkConfig, Settings, get_network, get_settings

logger = logging.getLogger(__name__)

Actor = Literal["user", "resolver"]

# Cache for adapter instances
_adapter_cache: dict[tuple[str, str, str], ChainAdapter] = {}


def create_chain_adapter(network: NetworkConfig, private_key: str, settings: Settings) -> ChainAdapter:
    """Build a new adapter for ``network`` bound to ``private_key``."""
    if network.is_tron:
        from fusionswap.adapters.tron import TronChainAdapter

        return TronChainAdapter(
            network,
            private_key,
            api_key=settings.trongrid_api_key,
            poll_interval=settings.tron_poll_interval,
            max_attempts=settings.tron_max_poll_attempts,
            fee_limit=settings.tron_fee_limit,
        )

    from fusionswap.adapters.evm import EVMChainAdapter

    return EVMChainAdapter(network, private_key, receipt_timeout=settings.evm_receipt_timeout)


def get_chain_adapter(
    side: Literal["src", "dst"],
    actor: Actor,
    settings: Optional[Settings] = None,
    network: Optional[NetworkConfig] = None,
) -> ChainAdapter:
    """Get the adapter for ``actor`` on the ``side`` network.

    Raises:
        ConfigurationError: Unknown network or missing private key
    """
    settings = settings or get_settings()
    if network is None:
        network = get_network(settings.src_network if side == "src" else settings.dst_network)

    cache_key = (network.name, side, actor)
    if cache_key in _adapter_cache:
        return _adapter_cache[cache_key]

    adapter = create_chain_adapter(network, settings.private_key_for(side, actor), settings)
    _adapter_cache[cache_key] = adapter
    logger.info(f"Created {type(adapter).__name__} for {side}/{actor} on {network.name}")
    return adapter


async def close_adapters() -> None:
    """Close and forget every cached adapter."""
    adapters = list(_adapter_cache.values())
    _adapter_cache.clear()
    for adapter in adapters:
        await adapter.aclose()


def reset_adapter_cache() -> None:
    """Clear the adapter cache (for testing)."""
    _adapter_cache.clear()
