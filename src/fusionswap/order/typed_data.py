"""EIP-712 encoding of limit orders.

The verifying contract is always passed in explicitly; it is the LOP address
of the chain the order is filled on.
"""

import logging
from typing import Union

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from eth_utils import keccak

from fusionswap.errors import InvalidAddress, InvalidSignature
from fusionswap.order.addresses import is_valid_tron_address, parse_address, tron_to_evm_hex

logger = logging.getLogger(__name__)

LOP_DOMAIN_NAME = "1inch Limit Order Protocol"
LOP_DOMAIN_VERSION = "4"

ORDER_TYPES = {
    "Order": [
        {"name": "salt", "type": "uint256"},
        {"name": "maker", "type": "address"},
        {"name": "receiver", "type": "address"},
        {"name": "makerAsset", "type": "address"},
        {"name": "takerAsset", "type": "address"},
        {"name": "makingAmount", "type": "uint256"},
        {"name": "takingAmount", "type": "uint256"},
        {"name": "makerTraits", "type": "uint256"},
    ]
}


def build_domain(chain_id: int, verifying_contract: str) -> dict:
    return {
        "name": LOP_DOMAIN_NAME,
        "version": LOP_DOMAIN_VERSION,
        "chainId": chain_id,
        "verifyingContract": parse_address(verifying_contract),
    }


def order_message(order) -> dict:
    return order.build()


def typed_data_digest(domain: dict, types: dict, message: dict) -> bytes:
    """keccak256(0x19 0x01 domainSeparator structHash)."""
    signable = encode_typed_data(domain_data=domain, message_types=types, message_data=message)
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def order_hash(order, chain_id: int, verifying_contract: str) -> bytes:
    """Order digest: pure function of order fields, chain id and verifying contract."""
    return typed_data_digest(build_domain(chain_id, verifying_contract), ORDER_TYPES, order_message(order))


def recover_signer(domain: dict, types: dict, message: dict, signature: Union[str, bytes]) -> str:
    """Recover the signer of typed data. Raises on malformed signatures."""
    signable = encode_typed_data(domain_data=domain, message_types=types, message_data=message)
    return Account.recover_message(signable, signature=signature)


def _expected_hex(expected_signer: str) -> str:
    if is_valid_tron_address(expected_signer):
        return tron_to_evm_hex(expected_signer)
    return expected_signer


def verify_typed_data(
    domain: dict,
    types: dict,
    message: dict,
    signature: Union[str, bytes],
    expected_signer: str,
) -> bool:
    """Check that ``signature`` recovers to ``expected_signer`` (case-insensitive)."""
    try:
        recovered = recover_signer(domain, types, message, signature)
        expected = _expected_hex(expected_signer)
    except (ValueError, TypeError, BadSignature, KeyValidationError, InvalidAddress) as e:
        logger.debug(f"Signature verification failed: {e}")
        return False

    return recovered.lower() == expected.lower()


def verify_order_signature(
    order,
    signature: Union[str, bytes],
    chain_id: int,
    verifying_contract: str,
    expected_signer: str,
) -> bool:
    return verify_typed_data(
        build_domain(chain_id, verifying_contract),
        ORDER_TYPES,
        order_message(order),
        signature,
        expected_signer,
    )


def ensure_valid_signature(
    order,
    signature: Union[str, bytes],
    chain_id: int,
    verifying_contract: str,
    expected_signer: str,
) -> None:
    """Raise InvalidSignature unless the order signature recovers to ``expected_signer``."""
    if verify_order_signature(order, signature, chain_id, verifying_contract, expected_signer):
        return

    domain = build_domain(chain_id, verifying_contract)
    try:
        recovered = recover_signer(domain, ORDER_TYPES, order_message(order), signature)
    except (ValueError, TypeError, BadSignature, KeyValidationError):
        recovered = None
    raise InvalidSignature(expected_signer, recovered)
