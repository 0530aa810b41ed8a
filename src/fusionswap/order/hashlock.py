"""Secret commitment for single-fill orders."""

import secrets
from dataclasses import dataclass
from typing import Union

from eth_utils import keccak

SECRET_SIZE = 32


def secret_bytes(secret: Union[str, bytes]) -> bytes:
    if isinstance(secret, str):
        raw = secret[2:] if secret.startswith("0x") else secret
        try:
            secret = bytes.fromhex(raw)
        except ValueError as e:
            raise ValueError(f"Secret is not hex: {e}") from e

    if len(secret) != SECRET_SIZE:
        raise ValueError(f"Secret must be {SECRET_SIZE} bytes, got {len(secret)}")

    return bytes(secret)


def generate_secret() -> str:
    """Generate a random 32-byte secret as 0x-hex."""
    return "0x" + secrets.token_bytes(SECRET_SIZE).hex()


@dataclass(frozen=True)
class HashLock:
    """keccak256 commitment to one secret."""

    value: bytes

    def __post_init__(self):
        if len(self.value) != 32:
            raise ValueError(f"HashLock must be 32 bytes, got {len(self.value)}")

    @classmethod
    def for_single_fill(cls, secret: Union[str, bytes]) -> "HashLock":
        return cls(keccak(secret_bytes(secret)))

    @classmethod
    def from_hex(cls, value: str) -> "HashLock":
        return cls(bytes.fromhex(value[2:] if value.startswith("0x") else value))

    def matches(self, secret: Union[str, bytes]) -> bool:
        """Check that ``secret`` opens this hashlock."""
        try:
            return keccak(secret_bytes(secret)) == self.value
        except ValueError:
            return False

    def hex(self) -> str:
        return "0x" + self.value.hex()

    def __str__(self) -> str:
        return self.hex()
