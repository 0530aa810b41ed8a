"""Swap orchestration.

One SwapOrchestrator drives one swap through the escrow protocol:

1. Maker signs the order
2. Resolver fills it on the source chain, creating the source escrow
3. Source immutables are read back from the factory event
4. Resolver deploys the matching destination escrow
5. After the withdrawal window opens, the secret is revealed on the
   destination chain, then used on the source chain
6. If a withdrawal window closes first, or source cancellation opens before
   the destination side has been withdrawn, each locked side is cancelled
   once its cancellation timelock opens

Each step method performs one state transition (plus its on-chain call) and
can be called individually; run() chains them with wall-clock gating.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from fusionswap.adapters.base import CallDescriptor, ChainAdapter, Confirmation
from fusionswap.errors import (
    ConfirmationTimeout,
    InvalidSignature,
    InvalidStateTransition,
    ProtocolTimeoutElapsed,
)
from fusionswap.escrow.factory_view import EscrowFactoryView
from fusionswap.order.immutables import DstImmutablesComplement, Immutables
from fusionswap.order.order import Order
from fusionswap.order.timelocks import Side
from fusionswap.order.typed_data import ensure_valid_signature, order_hash
from fusionswap.resolver import AmountMode, ResolverClient, TakerTraits

logger = logging.getLogger(__name__)


class SwapState(str, Enum):
    """Swap lifecycle state."""
    CREATED = "created"
    SIGNED = "signed"
    SRC_DEPLOYED = "src_deployed"
    SRC_CONFIRMED = "src_confirmed"
    DST_IMMUTABLES_DERIVED = "dst_immutables_derived"
    DST_DEPLOYED = "dst_deployed"
    DST_CONFIRMED = "dst_confirmed"
    DST_WITHDRAWN = "dst_withdrawn"
    SRC_WITHDRAWN = "src_withdrawn"
    COMPLETED = "completed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Action(str, Enum):
    """What the timelocks allow on one side right now."""
    WAIT = "wait"
    WITHDRAW = "withdraw"
    CANCEL = "cancel"


_CANCELLABLE = {
    SwapState.SRC_CONFIRMED,
    SwapState.DST_IMMUTABLES_DERIVED,
    SwapState.DST_DEPLOYED,
    SwapState.DST_CONFIRMED,
    SwapState.DST_WITHDRAWN,
}

VALID_TRANSITIONS: dict[SwapState, set[SwapState]] = {
    SwapState.CREATED: {SwapState.SIGNED, SwapState.FAILED},
    SwapState.SIGNED: {SwapState.SRC_DEPLOYED},
    SwapState.SRC_DEPLOYED: {SwapState.SRC_CONFIRMED, SwapState.FAILED},
    SwapState.SRC_CONFIRMED: {SwapState.DST_IMMUTABLES_DERIVED, SwapState.CANCELLING},
    SwapState.DST_IMMUTABLES_DERIVED: {SwapState.DST_DEPLOYED, SwapState.CANCELLING},
    SwapState.DST_DEPLOYED: {SwapState.DST_CONFIRMED, SwapState.CANCELLING},
    SwapState.DST_CONFIRMED: {SwapState.DST_WITHDRAWN, SwapState.CANCELLING},
    SwapState.DST_WITHDRAWN: {SwapState.SRC_WITHDRAWN, SwapState.CANCELLING},
    SwapState.SRC_WITHDRAWN: {SwapState.COMPLETED},
    SwapState.CANCELLING: {SwapState.CANCELLED},
    SwapState.COMPLETED: set(),
    SwapState.CANCELLED: set(),
    SwapState.FAILED: set(),
}


class Clock:
    """Wall clock; replaced by a fake in tests."""

    def now(self) -> int:
        return int(time.time())

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def next_action(immutables: Immutables, side: Side, now: int) -> Action:
    """Gate a side on its timelocks.

    Withdraw is allowed in [withdrawal start, cancellation start); cancel from
    cancellation start on.
    """
    time_locks = immutables.time_locks
    if now >= time_locks.cancellation_start(side):
        return Action.CANCEL
    if now >= time_locks.withdrawal_start(side):
        return Action.WITHDRAW
    return Action.WAIT


@dataclass
class SwapRecord:
    """Everything learned about one swap so far."""
    order: Order
    order_hash: str
    secret: str = field(repr=False)
    state: SwapState = SwapState.CREATED
    signature: Optional[str] = None
    tx_hashes: dict[str, str] = field(default_factory=dict)
    src_confirmation: Optional[Confirmation] = None
    dst_confirmation: Optional[Confirmation] = None
    src_immutables: Optional[Immutables] = None
    dst_complement: Optional[DstImmutablesComplement] = None
    dst_immutables: Optional[Immutables] = None
    src_escrow: Optional[str] = None
    dst_escrow: Optional[str] = None
    withdrawn_sides: set[Side] = field(default_factory=set)
    cancelled_sides: set[Side] = field(default_factory=set)
    history: list[SwapState] = field(default_factory=lambda: [SwapState.CREATED])
    error: Optional[str] = None


class SwapOrchestrator:
    """Drives one swap.

    Args:
        order: Order to execute
        secret: Secret behind the order's hashlock (0x-hex)
        maker: Maker's adapter on the source chain (signs the order)
        src_resolver: Resolver's adapter on the source chain
        dst_resolver: Resolver's adapter on the destination chain
        resolver: Call builder for both resolver contracts
        src_factory: Escrow factory view on the source chain
        dst_factory: Escrow factory view on the destination chain
        clock: Time source for timelock gating
        finality_delay: Extra seconds to wait once a withdrawal window opens
        on_state_change: Called with (record, old_state, new_state)
    """

    def __init__(
        self,
        order: Order,
        secret: str,
        maker: ChainAdapter,
        src_resolver: ChainAdapter,
        dst_resolver: ChainAdapter,
        resolver: ResolverClient,
        src_factory: EscrowFactoryView,
        dst_factory: EscrowFactoryView,
        clock: Optional[Clock] = None,
        finality_delay: int = 10,
        on_state_change: Optional[Callable[[SwapRecord, SwapState, SwapState], None]] = None,
    ):
        if not order.hash_lock.matches(secret):
            raise ValueError("Secret does not open the order hashlock")

        self.maker = maker
        self.src_resolver = src_resolver
        self.dst_resolver = dst_resolver
        self.resolver = resolver
        self.src_factory = src_factory
        self.dst_factory = dst_factory
        self.clock = clock or Clock()
        self.finality_delay = finality_delay
        self.on_state_change = on_state_change

        digest = order_hash(order, order.src_chain_id, resolver.lop_address)
        self.record = SwapRecord(order=order, order_hash="0x" + digest.hex(), secret=secret)

    @property
    def state(self) -> SwapState:
        return self.record.state

    @property
    def order(self) -> Order:
        return self.record.order

    # =========================================================================
    # State handling
    # =========================================================================

    def _transition(self, new_state: SwapState) -> None:
        old_state = self.record.state
        if new_state not in VALID_TRANSITIONS[old_state]:
            raise InvalidStateTransition(
                f"Swap {self.record.order_hash}: {old_state.value} -> {new_state.value} not allowed"
            )

        self.record.state = new_state
        self.record.history.append(new_state)
        logger.info(f"Swap {self.record.order_hash[:10]}: {old_state.value} -> {new_state.value}")

        if self.on_state_change:
            self.on_state_change(self.record, old_state, new_state)

    def _require(self, *states: SwapState) -> None:
        if self.record.state not in states:
            expected = ", ".join(s.value for s in states)
            raise InvalidStateTransition(
                f"Swap {self.record.order_hash}: step requires {expected}, "
                f"state is {self.record.state.value}"
            )

    async def _send(self, adapter: ChainAdapter, call: CallDescriptor, step: str) -> Confirmation:
        try:
            confirmation = await adapter.send(call)
        except Exception as e:
            self.record.error = f"{step}: {e}"
            logger.error(f"Swap {self.record.order_hash[:10]}: {step} failed: {e}")
            raise

        self.record.tx_hashes[step] = confirmation.tx_hash
        logger.info(f"Swap {self.record.order_hash[:10]}: {step} tx {confirmation.tx_hash}")
        return confirmation

    def _immutables(self, side: Side) -> Immutables:
        immutables = self.record.src_immutables if side is Side.SRC else self.record.dst_immutables
        if immutables is None or not immutables.deployed_at:
            raise InvalidStateTransition(f"{side.value} escrow is not deployed")
        return immutables

    def next_action(self, side: Side, now: Optional[int] = None) -> Action:
        side = Side(side)
        return next_action(self._immutables(side), side, self.clock.now() if now is None else now)

    def _check_withdrawal_window(self, side: Side) -> None:
        action = self.next_action(side)
        if action is Action.CANCEL:
            deadline = self._immutables(side).time_locks.cancellation_start(side)
            raise ProtocolTimeoutElapsed(side.value, deadline)
        if action is Action.WAIT:
            opens = self._immutables(side).time_locks.withdrawal_start(side)
            raise InvalidStateTransition(f"{side.value} withdrawal window opens at {opens}")

    def _check_src_deadline(self, at: Optional[int] = None) -> None:
        """Refuse to lock or reveal on the destination once source cancellation has opened.

        The source withdrawal has to follow the destination reveal, so the
        destination side is only advanced while the source escrow is still
        withdrawable.
        """
        deadline = self._immutables(Side.SRC).time_locks.cancellation_start(Side.SRC)
        if (self.clock.now() if at is None else at) >= deadline:
            raise ProtocolTimeoutElapsed(Side.SRC.value, deadline)

    # =========================================================================
    # Steps
    # =========================================================================

    async def sign(self) -> str:
        """CREATED -> SIGNED: maker signs the order."""
        self._require(SwapState.CREATED)

        signature = await self.maker.sign_order(
            self.order.src_chain_id, self.order, self.resolver.lop_address
        )
        try:
            ensure_valid_signature(
                self.order,
                signature,
                self.order.src_chain_id,
                self.resolver.lop_address,
                self.order.maker,
            )
        except InvalidSignature as e:
            self.record.error = str(e)
            self._transition(SwapState.FAILED)
            raise

        self.record.signature = signature
        self._transition(SwapState.SIGNED)
        return signature

    async def deploy_src(self) -> Confirmation:
        """SIGNED -> SRC_DEPLOYED -> SRC_CONFIRMED: fill the order on the source chain.

        A confirmation timeout leaves the swap FAILED; only the source escrow
        can be holding funds and the maker cancels it after its timelock.
        """
        self._require(SwapState.SIGNED)

        taker_traits = (
            TakerTraits.default()
            .set_extension(self.order.extension())
            .set_amount_mode(AmountMode.MAKER)
            .set_amount_threshold(self.order.taking_amount)
        )
        call = self.resolver.deploy_src(
            self.order.src_chain_id,
            self.order,
            self.record.signature,
            taker_traits,
            self.order.making_amount,
        )

        try:
            confirmation = await self._send(self.src_resolver, call, "deploy_src")
        except ConfirmationTimeout as e:
            self.record.tx_hashes["deploy_src"] = e.tx_hash
            self._transition(SwapState.SRC_DEPLOYED)
            self._transition(SwapState.FAILED)
            raise

        self._transition(SwapState.SRC_DEPLOYED)
        self.record.src_confirmation = confirmation
        self._transition(SwapState.SRC_CONFIRMED)
        return confirmation

    async def derive_dst_immutables(self) -> Immutables:
        """SRC_CONFIRMED -> DST_IMMUTABLES_DERIVED: read the source escrow event."""
        self._require(SwapState.SRC_CONFIRMED)

        complement, src_immutables = await self.src_factory.get_deploy_event(self.record.src_confirmation)
        if not src_immutables.deployed_at:
            src_immutables = src_immutables.with_deployed_at(self.record.src_confirmation.confirmed_at)
        if complement.chain_id != self.order.dst_chain_id:
            logger.warning(
                f"Swap {self.record.order_hash[:10]}: event chain id {complement.chain_id} "
                f"!= order destination {self.order.dst_chain_id}"
            )

        self.record.src_immutables = src_immutables
        self.record.dst_complement = complement
        self.record.src_escrow = await self.src_factory.get_escrow_address(Side.SRC, src_immutables)
        logger.info(f"Swap {self.record.order_hash[:10]}: source escrow {self.record.src_escrow}")

        # Keeps the source deployedAt until the destination escrow confirms
        self.record.dst_immutables = (
            src_immutables.with_complement(complement).with_taker(self.resolver.dst_address)
        )
        self._transition(SwapState.DST_IMMUTABLES_DERIVED)
        return self.record.dst_immutables

    async def deploy_dst(self) -> Confirmation:
        """DST_IMMUTABLES_DERIVED -> DST_DEPLOYED -> DST_CONFIRMED.

        Raises:
            ProtocolTimeoutElapsed: Source cancellation has started
        """
        self._require(SwapState.DST_IMMUTABLES_DERIVED)
        self._check_src_deadline()

        call = self.resolver.deploy_dst(self.record.dst_immutables)
        try:
            confirmation = await self._send(self.dst_resolver, call, "deploy_dst")
        except ConfirmationTimeout as e:
            self.record.tx_hashes["deploy_dst"] = e.tx_hash
            self._transition(SwapState.DST_DEPLOYED)
            raise

        self._transition(SwapState.DST_DEPLOYED)
        self.record.dst_confirmation = confirmation
        self.record.dst_immutables = self.record.dst_immutables.with_deployed_at(confirmation.confirmed_at)
        self.record.dst_escrow = await self.dst_factory.get_escrow_address(Side.DST, self.record.dst_immutables)
        logger.info(f"Swap {self.record.order_hash[:10]}: destination escrow {self.record.dst_escrow}")
        self._transition(SwapState.DST_CONFIRMED)
        return confirmation

    async def withdraw_dst(self) -> Confirmation:
        """DST_CONFIRMED -> DST_WITHDRAWN: reveal the secret on the destination chain.

        Raises:
            ProtocolTimeoutElapsed: Destination cancellation has started or source
                cancellation has started
        """
        self._require(SwapState.DST_CONFIRMED)
        self._check_withdrawal_window(Side.DST)
        self._check_src_deadline()

        call = self.resolver.withdraw(
            Side.DST, self.record.dst_escrow, self.record.secret, self.record.dst_immutables
        )
        confirmation = await self._send(self.dst_resolver, call, "withdraw_dst")
        self.record.withdrawn_sides.add(Side.DST)
        self._transition(SwapState.DST_WITHDRAWN)
        return confirmation

    async def withdraw_src(self) -> Confirmation:
        """DST_WITHDRAWN -> SRC_WITHDRAWN -> COMPLETED.

        Raises:
            ProtocolTimeoutElapsed: Source cancellation has started
        """
        self._require(SwapState.DST_WITHDRAWN)
        self._check_withdrawal_window(Side.SRC)

        call = self.resolver.withdraw(
            Side.SRC, self.record.src_escrow, self.record.secret, self.record.src_immutables
        )
        confirmation = await self._send(self.src_resolver, call, "withdraw_src")
        self.record.withdrawn_sides.add(Side.SRC)
        self._transition(SwapState.SRC_WITHDRAWN)
        self._transition(SwapState.COMPLETED)
        return confirmation

    def pending_cancellations(self) -> list[Side]:
        """Deployed sides still holding funds, destination first."""
        sides = []
        if self.record.dst_escrow and self.record.dst_confirmation:
            sides.append(Side.DST)
        if self.record.src_escrow:
            sides.append(Side.SRC)
        done = self.record.withdrawn_sides | self.record.cancelled_sides
        return [side for side in sides if side not in done]

    async def cancel(self, side: Side) -> Confirmation:
        """Cancel one side once its cancellation timelock has opened.

        Enters CANCELLING on the first call; reaches CANCELLED when no side
        is left holding funds.
        """
        side = Side(side)
        self._require(*_CANCELLABLE, SwapState.CANCELLING)
        if side not in self.pending_cancellations():
            raise InvalidStateTransition(f"{side.value} escrow has nothing to cancel")
        if self.next_action(side) is not Action.CANCEL:
            opens = self._immutables(side).time_locks.cancellation_start(side)
            raise InvalidStateTransition(f"{side.value} cancellation opens at {opens}")

        if self.record.state is not SwapState.CANCELLING:
            self._transition(SwapState.CANCELLING)

        if side is Side.SRC:
            call = self.resolver.cancel(side, self.record.src_escrow, self.record.src_immutables)
            adapter = self.src_resolver
        else:
            call = self.resolver.cancel(side, self.record.dst_escrow, self.record.dst_immutables)
            adapter = self.dst_resolver

        confirmation = await self._send(adapter, call, f"cancel_{side.value}")
        self.record.cancelled_sides.add(side)

        if not self.pending_cancellations():
            self._transition(SwapState.CANCELLED)
        return confirmation

    # =========================================================================
    # Driver
    # =========================================================================

    async def _wait_until(self, timestamp: int) -> None:
        while True:
            remaining = timestamp - self.clock.now()
            if remaining <= 0:
                return
            await self.clock.sleep(remaining)

    async def _wait_for_withdrawal(self, side: Side) -> None:
        """Sleep until ``side`` may be withdrawn, plus the finality delay."""
        time_locks = self._immutables(side).time_locks
        opens = time_locks.withdrawal_start(side)
        closes = time_locks.cancellation_start(side)
        if self.clock.now() >= closes:
            raise ProtocolTimeoutElapsed(side.value, closes)

        target = opens + self.finality_delay
        if target >= closes:
            target = opens
        if side is Side.DST:
            self._check_src_deadline(target)
        await self._wait_until(target)

    async def _cancel_remaining(self) -> None:
        for side in self.pending_cancellations():
            deadline = self._immutables(side).time_locks.cancellation_start(side)
            logger.warning(f"Swap {self.record.order_hash[:10]}: cancelling {side.value} at {deadline}")
            await self._wait_until(deadline)
            await self.cancel(side)

    async def run(self) -> SwapRecord:
        """Drive the swap from its current state to COMPLETED or CANCELLED."""
        if self.state is SwapState.CREATED:
            await self.sign()
        if self.state is SwapState.SIGNED:
            await self.deploy_src()
        if self.state is SwapState.SRC_CONFIRMED:
            await self.derive_dst_immutables()

        try:
            if self.state is SwapState.DST_IMMUTABLES_DERIVED:
                await self.deploy_dst()
            if self.state is SwapState.DST_CONFIRMED:
                await self._wait_for_withdrawal(Side.DST)
                await self.withdraw_dst()
            if self.state is SwapState.DST_WITHDRAWN:
                await self._wait_for_withdrawal(Side.SRC)
                await self.withdraw_src()
        except ProtocolTimeoutElapsed as e:
            logger.warning(f"Swap {self.record.order_hash[:10]}: {e}; switching to cancellation")
            await self._cancel_remaining()

        if self.state is SwapState.CANCELLING:
            await self._cancel_remaining()

        return self.record
