"""Application configuration using pydantic-settings.

Two layers:
- Settings: process-level values loaded once from environment / .env
  (actor private keys, polling budget, timelock defaults).
- NetworkConfig: immutable per-network contract table, keyed by network name.
  Components receive a NetworkConfig in their constructor; nothing reads a
  module-level table at call time.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from fusionswap.errors import ConfigurationError

logger = logging.getLogger(__name__)

ChainFamily = Literal["evm", "tron"]

TRON_MAINNET_CHAIN_ID = 728126428
TRON_NILE_CHAIN_ID = 3448148188
TRON_CHAIN_IDS = frozenset({TRON_MAINNET_CHAIN_ID, TRON_NILE_CHAIN_ID})


class NetworkConfig(BaseModel):
    """Contract addresses and endpoint for one chain.

    Contract addresses are stored in 0x-hex form for every family; the Tron
    adapter translates them to Tron's encoding at submission time.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    family: ChainFamily = "evm"
    chain_id: int
    rpc_url: str
    lop: str = Field(description="Limit order protocol (signing verifyingContract)")
    escrow_factory: str
    resolver: str
    escrow_src_implementation: Optional[str] = None
    escrow_dst_implementation: Optional[str] = None
    token: Optional[str] = Field(default=None, description="Test token used by the CLI")
    safety_deposit: int = Field(default=10**15, description="Native units per escrow")

    @property
    def is_tron(self) -> bool:
        return self.family == "tron"


# ======================
# Network table
# ======================

_DEFAULT_NETWORKS: dict[str, NetworkConfig] = {
    "ethereum_sepolia": NetworkConfig(
        name="ethereum_sepolia",
        chain_id=11155111,
        rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
        lop="0x32a209c3736c5bd52e395eabc86b9bca4f602985",
        escrow_factory="0x61a32a9263c6ff568c66799a94f8fe09c1db7a66",
        resolver="0xe002e8e986fd4bbff58b49423c7f7e0e0e92cc59",
        escrow_src_implementation="0xa17ddb01f03a42e0070a0e25099cf3d27b705fff",
        escrow_dst_implementation="0x7490329e69ab8e298a32dc59493034e4d02a5ccf",
        token="0x0BF8E91b08b242cD7380bC92385C90c8270b37f0",
    ),
    "base_sepolia": NetworkConfig(
        name="base_sepolia",
        chain_id=84532,
        rpc_url="https://base-sepolia-rpc.publicnode.com",
        lop="0xe30f9abbadc1eb84b41d41035b2a2c7d0bd5f9b2",
        escrow_factory="0x178ddaca4499a89e40826ec247baf608051edf9e",
        resolver="0x3fe279B56F330304446522F04907fBBe03Fe236a",
        escrow_src_implementation="0xe55061a78bf30e7f38410b90a6a167d5621cc068",
        escrow_dst_implementation="0x0418b6e80a602474fbfadc3a2594413fe68496bb",
        token="0xbb7f72d58f5F7147CBa030Ba4c46a94a07E4c2CA",
    ),
    "etherlink_ghostnet": NetworkConfig(
        name="etherlink_ghostnet",
        chain_id=128123,
        rpc_url="https://rpc.ankr.com/etherlink_testnet",
        lop="0x60c13fAcC3d2363fa4c1D4c8A0456a4FeBc98903",
        escrow_factory="0xE4F87948Efd25651CA20d8b0d750d94612f3FCB7",
        resolver="0x3e546A14BE5AA04e10Ee050498eaaA4b624FcDAA",
        escrow_src_implementation="0x056e0bb2acb8848be78f1375859f30408a89c005",
        escrow_dst_implementation="0x3b31719534a6a89403b66cb5fdc06320a0dd1604",
        token="0xb84b2c6c0d554263Eab9f56DEeA8523347270A11",
    ),
    # Escrow factory and resolver deployments on Nile are operator specific;
    # supply them through NETWORKS_FILE.
    "tron_nile": NetworkConfig(
        name="tron_nile",
        family="tron",
        chain_id=TRON_NILE_CHAIN_ID,
        rpc_url="https://nile.trongrid.io",
        lop="0x0656e98bf5b9457048b8ac0985cb48b1b6def4ac",
        escrow_factory="",
        resolver="",
        safety_deposit=1000,
    ),
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Networks
    # ======================
    src_network: str = Field(default="ethereum_sepolia", description="Source network name")
    dst_network: str = Field(default="base_sepolia", description="Destination network name")
    networks_file: Optional[Path] = Field(
        default=None, description="JSON file with extra/overriding network entries"
    )
    trongrid_api_key: str = Field(default="", description="TronGrid API key")

    # ======================
    # Actor keys
    # ======================
    src_user_private_key: str = Field(default="", description="Maker key on source chain")
    src_resolver_private_key: str = Field(default="", description="Resolver key on source chain")
    dst_user_private_key: str = Field(default="", description="Maker key on destination chain")
    dst_resolver_private_key: str = Field(default="", description="Resolver key on destination chain")

    # ======================
    # Confirmation
    # ======================
    tron_poll_interval: float = Field(default=2.0, description="Seconds between Tron status polls")
    tron_max_poll_attempts: int = Field(default=30, description="Tron status poll budget")
    tron_fee_limit: int = Field(default=500_000_000, description="Tron fee limit in sun")
    evm_receipt_timeout: float = Field(default=120.0, description="Seconds to wait for an EVM receipt")
    finality_delay: int = Field(
        default=10, description="Extra seconds to wait past a withdrawal window opening"
    )

    # ======================
    # Order defaults
    # ======================
    auction_duration: int = Field(default=120, description="Auction duration in seconds")
    src_withdrawal: int = Field(default=10)
    src_public_withdrawal: int = Field(default=120)
    src_cancellation: int = Field(default=121)
    src_public_cancellation: int = Field(default=122)
    dst_withdrawal: int = Field(default=10)
    dst_public_withdrawal: int = Field(default=100)
    dst_cancellation: int = Field(default=101)

    # ======================
    # Environment
    # ======================
    debug: bool = Field(default=False, description="Enable debug logging")

    def timelock_offsets(self) -> dict[str, int]:
        """Timelock offsets keyed by TimeLockSchedule field name."""
        return {
            "src_withdrawal": self.src_withdrawal,
            "src_public_withdrawal": self.src_public_withdrawal,
            "src_cancellation": self.src_cancellation,
            "src_public_cancellation": self.src_public_cancellation,
            "dst_withdrawal": self.dst_withdrawal,
            "dst_public_withdrawal": self.dst_public_withdrawal,
            "dst_cancellation": self.dst_cancellation,
        }

    def private_key_for(self, side: str, actor: str) -> str:
        """Get the configured private key for (side, actor)."""
        field_name = f"{side}_{actor}_private_key"
        key = getattr(self, field_name, None)
        if key is None:
            raise ConfigurationError(f"Unknown actor {side}/{actor}")
        if not key:
            raise ConfigurationError(f"{field_name.upper()} is not set")
        return key

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "src_network": self.src_network,
            "dst_network": self.dst_network,
            "networks_file": str(self.networks_file) if self.networks_file else "(none)",
            "trongrid_api_key": "***" if self.trongrid_api_key else "(not set)",
            "keys": {
                "src_user": "***" if self.src_user_private_key else "(not set)",
                "src_resolver": "***" if self.src_resolver_private_key else "(not set)",
                "dst_user": "***" if self.dst_user_private_key else "(not set)",
                "dst_resolver": "***" if self.dst_resolver_private_key else "(not set)",
            },
            "tron_poll": {
                "interval": self.tron_poll_interval,
                "max_attempts": self.tron_max_poll_attempts,
            },
            "evm_receipt_timeout": self.evm_receipt_timeout,
            "timelocks": self.timelock_offsets(),
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_networks(networks_file: Optional[Path] = None) -> Mapping[str, NetworkConfig]:
    """Build the read-only network table.

    Entries in ``networks_file`` (a JSON object keyed by network name) replace
    or extend the built-in table.
    """
    networks = dict(_DEFAULT_NETWORKS)

    if networks_file:
        try:
            raw = json.loads(Path(networks_file).read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read networks file {networks_file}: {e}") from e

        for name, entry in raw.items():
            try:
                networks[name] = NetworkConfig(name=name, **{k: v for k, v in entry.items() if k != "name"})
            except ValidationError as e:
                raise ConfigurationError(f"Invalid network entry {name!r}: {e}") from e
            logger.info(f"Loaded network {name} from {networks_file}")

    return MappingProxyType(networks)


def get_network(name: str, networks: Optional[Mapping[str, NetworkConfig]] = None) -> NetworkConfig:
    """Look up a network and check that its contract table is usable."""
    if networks is None:
        networks = load_networks(get_settings().networks_file)

    network = networks.get(name)
    if network is None:
        raise ConfigurationError(f"Unknown network {name!r}. Known: {', '.join(sorted(networks))}")

    missing = [f for f in ("lop", "escrow_factory", "resolver") if not getattr(network, f)]
    if missing:
        raise ConfigurationError(f"Network {name!r} is missing {', '.join(missing)}")

    return network
