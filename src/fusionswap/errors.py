"""Error taxonomy for swap orchestration.

Adapter-level errors propagate unchanged to the orchestrator. The only retry
in the system is the Tron confirmation poll; everything else is raised once.
"""

from typing import Optional


class SwapError(Exception):
    """Base class for all swap errors."""
    pass


class ConfigurationError(SwapError):
    """Unknown network or missing configuration value."""
    pass


class InvalidAddress(SwapError):
    """Address cannot be parsed into the target chain's representation."""

    def __init__(self, address: str, reason: str = ""):
        self.address = address
        self.reason = reason
        message = f"Invalid address: {address!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidSignature(SwapError):
    """Recovered signer does not match the expected signer."""

    def __init__(self, expected: str, recovered: Optional[str] = None):
        self.expected = expected
        self.recovered = recovered
        super().__init__(
            f"Signature does not recover to {expected} (recovered: {recovered or 'nothing'})"
        )


class TransactionReverted(SwapError):
    """Transaction executed and failed on chain. Never retried."""

    def __init__(self, tx_hash: Optional[str], reason: str = ""):
        self.tx_hash = tx_hash
        self.reason = reason
        super().__init__(f"Transaction {tx_hash} reverted: {reason or 'no reason given'}")


class ConfirmationTimeout(SwapError):
    """Broadcast succeeded but finality was not observed within the retry budget.

    Carries the transaction hash so the caller can re-poll or abandon it.
    """

    def __init__(self, tx_hash: str, attempts: Optional[int] = None):
        self.tx_hash = tx_hash
        self.attempts = attempts
        detail = f" after {attempts} attempts" if attempts is not None else ""
        super().__init__(f"Transaction {tx_hash} not confirmed{detail}")


class ProtocolTimeoutElapsed(SwapError):
    """Withdrawal window closed; only cancellation is valid from here on."""

    def __init__(self, side: str, deadline: int):
        self.side = side
        self.deadline = deadline
        super().__init__(f"{side} withdrawal window closed at {deadline}")


class InvalidStateTransition(SwapError):
    """Orchestrator step invoked from a state that does not allow it."""
    pass


class EscrowEventNotFound(SwapError):
    """No escrow creation event found for the given deployment."""
    pass
