"""Address parsing across chain families.

Everything embedded in an order or escrow call is a 20-byte EVM-style address.
Tron accounts are base58check strings (T...) or 21-byte hex with a 0x41
prefix; both are reduced to the 20-byte form before encoding.
"""

import logging

import base58
from eth_utils import is_hex_address, to_checksum_address

from fusionswap.config import TRON_CHAIN_IDS
from fusionswap.errors import InvalidAddress

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
TRON_ADDRESS_PREFIX = b"\x41"


def is_tron_chain(chain_id: int) -> bool:
    """Check if a chain id belongs to Tron mainnet or Nile."""
    return chain_id in TRON_CHAIN_IDS


def _tron_address_bytes(address: str) -> bytes:
    """21-byte Tron address (0x41 prefix) from base58check or 41-hex."""
    if address.startswith("T"):
        raw = base58.b58decode_check(address)
    else:
        raw = bytes.fromhex(address)

    if len(raw) != 21 or raw[:1] != TRON_ADDRESS_PREFIX:
        raise ValueError("unexpected Tron address length or prefix")
    return raw


def tron_to_evm_hex(address: str) -> str:
    """Convert a Tron address (base58 or 41-hex) to 0x-prefixed 20-byte hex.

    Raises:
        InvalidAddress: If the address is not a valid Tron address
    """
    if not isinstance(address, str) or not address:
        raise InvalidAddress(str(address), "empty Tron address")

    if address.startswith("0x") and is_hex_address(address):
        return to_checksum_address(address)

    try:
        raw = _tron_address_bytes(address)
    except ValueError as e:
        raise InvalidAddress(address, f"not a Tron address: {e}") from e

    return to_checksum_address("0x" + raw[1:].hex())


def evm_hex_to_tron(address: str) -> str:
    """Convert a 0x-prefixed 20-byte hex address to Tron base58check.

    Raises:
        InvalidAddress: If the address is not 0x-prefixed 20-byte hex
    """
    if not isinstance(address, str) or not address.startswith("0x") or not is_hex_address(address):
        raise InvalidAddress(str(address), "expected 0x-prefixed hex address")

    return base58.b58encode_check(TRON_ADDRESS_PREFIX + bytes.fromhex(address[2:])).decode()


def parse_address(address: str, tron: bool = False) -> str:
    """Parse an address into checksummed 0x form for embedding in calls.

    Args:
        address: Address as given by the caller
        tron: Whether the address belongs to a Tron chain (accepts base58)

    Raises:
        InvalidAddress: If the address cannot be parsed
    """
    if tron:
        return tron_to_evm_hex(address)

    if not isinstance(address, str) or not is_hex_address(address):
        raise InvalidAddress(str(address), "not an EVM address")

    return to_checksum_address(address)


def address_to_int(address: str) -> int:
    """Address as the uint256 used by the Address type in LOP structs."""
    return int(parse_address(address), 16)


def int_to_address(value: int) -> str:
    """Lower 160 bits of a uint256 as a checksummed address."""
    return to_checksum_address("0x" + (value & ((1 << 160) - 1)).to_bytes(20, "big").hex())


def is_valid_tron_address(address: str) -> bool:
    """Check base58check Tron address format."""
    if not isinstance(address, str) or not address.startswith("T"):
        return False
    try:
        _tron_address_bytes(address)
    except ValueError:
        return False
    return True
