"""Tests for swap orchestration against in-memory chains."""

from dataclasses import replace

import pytest
from eth_abi import decode as abi_decode

from conftest import (
    DEPLOY_SRC_SELECTOR,
    DEPLOY_SRC_TYPES,
    MAKER_KEY,
    RESOLVER_KEY,
    START_TIME,
    ZERO_SECRET,
    FakeChainAdapter,
    SrcEscrowCreatedLogs,
)
from fusionswap.errors import (
    ConfirmationTimeout,
    InvalidSignature,
    InvalidStateTransition,
    ProtocolTimeoutElapsed,
    TransactionReverted,
)
from fusionswap.escrow.factory_view import EVMEscrowFactoryView
from fusionswap.order.hashlock import HashLock, generate_secret
from fusionswap.order.immutables import IMMUTABLES_TYPE, compute_escrow_address
from fusionswap.order.timelocks import Side
from fusionswap.orchestrator import (
    VALID_TRANSITIONS,
    Action,
    SwapOrchestrator,
    SwapState,
    next_action,
)
from fusionswap.resolver import ResolverClient

BLOCK_TIME = 2


class Chains:
    """Maker and resolver adapters plus factory views for one swap."""

    def __init__(self, src_network, dst_network, clock, maker_key=MAKER_KEY):
        self.maker = FakeChainAdapter(src_network, maker_key, clock, BLOCK_TIME)
        self.src_resolver = FakeChainAdapter(
            src_network,
            RESOLVER_KEY,
            clock,
            BLOCK_TIME,
            log_builder=SrcEscrowCreatedLogs(
                src_network.escrow_factory, dst_network.safety_deposit, dst_network.chain_id
            ),
        )
        self.dst_resolver = FakeChainAdapter(dst_network, RESOLVER_KEY, clock, BLOCK_TIME)
        self.resolver = ResolverClient(src_network.resolver, dst_network.resolver, src_network.lop)
        self.src_factory = EVMEscrowFactoryView(src_network, self.src_resolver)
        self.dst_factory = EVMEscrowFactoryView(dst_network, self.dst_resolver)

    def orchestrator(self, order, clock, secret=ZERO_SECRET, **kwargs) -> SwapOrchestrator:
        return SwapOrchestrator(
            order=order,
            secret=secret,
            maker=self.maker,
            src_resolver=self.src_resolver,
            dst_resolver=self.dst_resolver,
            resolver=self.resolver,
            src_factory=self.src_factory,
            dst_factory=self.dst_factory,
            clock=clock,
            **kwargs,
        )


@pytest.fixture
def chains(src_network, dst_network, clock):
    return Chains(src_network, dst_network, clock)


@pytest.fixture
def swap(chains, order, clock):
    return chains.orchestrator(order, clock)


async def _deploy_both(swap: SwapOrchestrator) -> None:
    await swap.sign()
    await swap.deploy_src()
    await swap.derive_dst_immutables()
    await swap.deploy_dst()


class TestHappyPath:
    """Full swap from Sepolia to Base Sepolia."""

    @pytest.mark.asyncio
    async def test_run_completes(self, swap, chains, order, clock):
        transitions = []
        swap.on_state_change = lambda record, old, new: transitions.append((old, new))

        record = await swap.run()

        assert record.state is SwapState.COMPLETED
        assert record.history == [
            SwapState.CREATED,
            SwapState.SIGNED,
            SwapState.SRC_DEPLOYED,
            SwapState.SRC_CONFIRMED,
            SwapState.DST_IMMUTABLES_DERIVED,
            SwapState.DST_DEPLOYED,
            SwapState.DST_CONFIRMED,
            SwapState.DST_WITHDRAWN,
            SwapState.SRC_WITHDRAWN,
            SwapState.COMPLETED,
        ]
        assert transitions[0] == (SwapState.CREATED, SwapState.SIGNED)
        assert transitions[-1] == (SwapState.SRC_WITHDRAWN, SwapState.COMPLETED)
        assert record.withdrawn_sides == {Side.SRC, Side.DST}
        assert record.error is None

    def test_record_keeps_secret_out_of_repr(self, chains, order, clock):
        secret = "0x" + "00" * 31 + "07"
        order = replace(order, hash_lock=HashLock.for_single_fill(secret))

        record = chains.orchestrator(order, clock, secret=secret).record

        assert record.secret == secret
        assert secret[2:] not in repr(record)

    @pytest.mark.asyncio
    async def test_transaction_hashes_distinct(self, swap):
        record = await swap.run()

        assert set(record.tx_hashes) == {"deploy_src", "deploy_dst", "withdraw_dst", "withdraw_src"}
        assert len(set(record.tx_hashes.values())) == 4

    @pytest.mark.asyncio
    async def test_deploy_src_call(self, swap, chains, order):
        await swap.run()

        call, _ = chains.src_resolver.sent[0]
        assert call.to == chains.resolver.src_address
        assert call.value == order.src_safety_deposit
        assert call.data[:4] == DEPLOY_SRC_SELECTOR

        immutables, _, _, _, amount, trait, args = abi_decode(DEPLOY_SRC_TYPES, call.data[4:])
        assert bytes(immutables[0]) == bytes.fromhex(swap.record.order_hash[2:])
        assert amount == order.making_amount
        assert trait >> 255 == 1
        assert trait & ((1 << 185) - 1) == order.taking_amount
        assert args == order.extension()

    @pytest.mark.asyncio
    async def test_dst_deployed_with_src_cancellation_bound(self, swap, chains, dst_network):
        await swap.run()

        src_deployed_at = swap.record.src_confirmation.confirmed_at
        call, _ = chains.dst_resolver.sent[0]
        assert call.to == chains.resolver.dst_address
        assert call.value == dst_network.safety_deposit

        immutables, cancellation = abi_decode([IMMUTABLES_TYPE, "uint256"], call.data[4:])
        assert immutables[7] >> 224 == src_deployed_at
        assert cancellation == src_deployed_at + swap.order.time_locks.src_cancellation

    @pytest.mark.asyncio
    async def test_dst_withdraw_waits_for_finality(self, swap, chains, clock):
        await swap.run()

        dst_confirmed_at = swap.record.dst_confirmation.confirmed_at
        _, withdraw = chains.dst_resolver.sent[1]
        sent_at = withdraw.confirmed_at - BLOCK_TIME
        assert sent_at >= dst_confirmed_at + swap.order.time_locks.dst_withdrawal + swap.finality_delay
        assert clock.sleeps == [20]

    @pytest.mark.asyncio
    async def test_secret_revealed_on_dst_first(self, swap, chains):
        await swap.run()

        _, dst_withdraw = chains.dst_resolver.sent[1]
        _, src_withdraw = chains.src_resolver.sent[1]
        assert dst_withdraw.confirmed_at < src_withdraw.confirmed_at

    @pytest.mark.asyncio
    async def test_escrow_addresses(self, swap, src_network, dst_network, order):
        record = await swap.run()

        assert record.src_immutables.deployed_at == record.src_confirmation.confirmed_at
        assert record.src_escrow == compute_escrow_address(
            record.src_immutables, src_network.escrow_src_implementation, src_network.escrow_factory
        )

        dst = record.dst_immutables
        assert dst.deployed_at == record.dst_confirmation.confirmed_at
        assert dst.maker == order.maker
        assert dst.amount == order.taking_amount
        assert dst.token == order.taker_asset
        assert dst.safety_deposit == dst_network.safety_deposit
        assert dst.taker.lower() == dst_network.resolver.lower()
        assert record.dst_escrow == compute_escrow_address(
            dst, dst_network.escrow_dst_implementation, dst_network.escrow_factory
        )

    @pytest.mark.asyncio
    async def test_finality_delay_clamped_to_window(self, chains, order, clock):
        swap = chains.orchestrator(order, clock, finality_delay=1000)

        record = await swap.run()

        assert record.state is SwapState.COMPLETED
        assert clock.sleeps == [10]


class TestCancellation:
    """Swaps whose withdrawal window closes."""

    @pytest.mark.asyncio
    async def test_missed_dst_window_cancels_both_sides(self, swap, chains, clock):
        await _deploy_both(swap)
        dst_deployed_at = swap.record.dst_confirmation.confirmed_at
        clock.current = dst_deployed_at + swap.order.time_locks.dst_cancellation + 5

        record = await swap.run()

        assert record.state is SwapState.CANCELLED
        assert record.history[-2:] == [SwapState.CANCELLING, SwapState.CANCELLED]
        assert record.cancelled_sides == {Side.SRC, Side.DST}
        assert record.withdrawn_sides == set()
        assert "cancel_dst" in record.tx_hashes and "cancel_src" in record.tx_hashes

        # Source cancellation waited for its own timelock
        src_cancel_opens = record.src_immutables.time_locks.cancellation_start(Side.SRC)
        _, src_cancel = chains.src_resolver.sent[-1]
        assert src_cancel.confirmed_at - BLOCK_TIME >= src_cancel_opens

    @pytest.mark.asyncio
    async def test_missed_src_window_cancels_src_only(self, swap, chains, clock):
        await _deploy_both(swap)
        await swap._wait_for_withdrawal(Side.DST)
        await swap.withdraw_dst()
        clock.current = swap.record.src_immutables.time_locks.cancellation_start(Side.SRC)

        record = await swap.run()

        assert record.state is SwapState.CANCELLED
        assert record.withdrawn_sides == {Side.DST}
        assert record.cancelled_sides == {Side.SRC}

    @pytest.mark.asyncio
    async def test_cancel_before_timelock_rejected(self, swap):
        await _deploy_both(swap)

        with pytest.raises(InvalidStateTransition, match="cancellation opens"):
            await swap.cancel(Side.DST)

        assert swap.state is SwapState.DST_CONFIRMED

    @pytest.mark.asyncio
    async def test_resumed_past_src_cancellation_skips_dst(self, swap, chains, clock):
        """A swap resumed after source cancellation opened never locks or reveals on the destination."""
        await swap.sign()
        await swap.deploy_src()
        await swap.derive_dst_immutables()
        clock.current = swap.record.src_immutables.time_locks.cancellation_start(Side.SRC) + 1

        record = await swap.run()

        assert record.state is SwapState.CANCELLED
        assert list(record.tx_hashes) == ["deploy_src", "cancel_src"]
        assert chains.dst_resolver.sent == []
        assert record.withdrawn_sides == set()
        assert record.cancelled_sides == {Side.SRC}

    @pytest.mark.asyncio
    async def test_dst_window_opening_after_src_cancellation_cancels(self, swap, chains, clock):
        """Destination deployed late: its withdrawal would open after the source deadline."""
        await swap.sign()
        await swap.deploy_src()
        await swap.derive_dst_immutables()
        src_deadline = swap.record.src_immutables.time_locks.cancellation_start(Side.SRC)
        clock.current = src_deadline - 8

        record = await swap.run()

        assert record.state is SwapState.CANCELLED
        assert "withdraw_dst" not in record.tx_hashes
        assert len(chains.dst_resolver.sent) == 2
        assert record.withdrawn_sides == set()
        assert record.cancelled_sides == {Side.SRC, Side.DST}

    @pytest.mark.asyncio
    async def test_withdraw_dst_refused_after_src_cancellation(self, swap, chains, clock):
        await _deploy_both(swap)
        clock.current = swap.record.src_immutables.time_locks.cancellation_start(Side.SRC)
        # Keep the destination window itself open
        swap.record.dst_immutables = swap.record.dst_immutables.with_deployed_at(clock.current - 20)
        sent_before = len(chains.dst_resolver.sent)

        with pytest.raises(ProtocolTimeoutElapsed) as exc_info:
            await swap.withdraw_dst()

        assert exc_info.value.side == "src"
        assert len(chains.dst_resolver.sent) == sent_before
        assert swap.state is SwapState.DST_CONFIRMED

    @pytest.mark.asyncio
    async def test_withdraw_after_dst_cancellation_refused(self, swap, chains, clock):
        """Past the destination cancellation start only cancel is valid; nothing is sent."""
        await _deploy_both(swap)
        clock.current = swap.record.dst_immutables.time_locks.cancellation_start(Side.DST)
        sent_before = len(chains.dst_resolver.sent)

        with pytest.raises(ProtocolTimeoutElapsed):
            await swap.withdraw_dst()

        assert len(chains.dst_resolver.sent) == sent_before
        assert swap.state is SwapState.DST_CONFIRMED
        assert swap.next_action(Side.DST) is Action.CANCEL

    @pytest.mark.asyncio
    async def test_pending_cancellations_order(self, swap):
        await _deploy_both(swap)

        assert swap.pending_cancellations() == [Side.DST, Side.SRC]


class TestFailures:
    """Timeouts, bad signatures and out-of-order steps."""

    @pytest.mark.asyncio
    async def test_src_confirmation_timeout_fails_swap(self, swap, chains):
        chains.src_resolver.failures.append(ConfirmationTimeout("0xdead", 30))

        with pytest.raises(ConfirmationTimeout):
            await swap.run()

        assert swap.state is SwapState.FAILED
        assert swap.record.history[-2:] == [SwapState.SRC_DEPLOYED, SwapState.FAILED]
        assert swap.record.tx_hashes["deploy_src"] == "0xdead"
        assert swap.record.error
        assert chains.dst_resolver.sent == []

    @pytest.mark.asyncio
    async def test_dst_confirmation_timeout_leaves_dst_deployed(self, swap, chains):
        chains.dst_resolver.failures.append(ConfirmationTimeout("0xbeef"))

        with pytest.raises(ConfirmationTimeout):
            await swap.run()

        assert swap.state is SwapState.DST_DEPLOYED
        assert swap.record.tx_hashes["deploy_dst"] == "0xbeef"

    @pytest.mark.asyncio
    async def test_signature_from_wrong_key_fails(self, src_network, dst_network, order, clock):
        chains = Chains(src_network, dst_network, clock, maker_key=RESOLVER_KEY)
        swap = chains.orchestrator(order, clock)

        with pytest.raises(InvalidSignature):
            await swap.sign()

        assert swap.state is SwapState.FAILED
        assert chains.src_resolver.sent == []

    @pytest.mark.asyncio
    async def test_reverted_withdraw_not_retried(self, swap, chains):
        await _deploy_both(swap)
        await swap._wait_for_withdrawal(Side.DST)
        chains.dst_resolver.failures.append(TransactionReverted("0xfeed", "invalid secret"))
        sent_before = len(chains.dst_resolver.sent)

        with pytest.raises(TransactionReverted):
            await swap.withdraw_dst()

        assert len(chains.dst_resolver.sent) == sent_before
        assert chains.dst_resolver.failures == []
        assert swap.state is SwapState.DST_CONFIRMED
        assert "invalid secret" in swap.record.error

    def test_wrong_secret_rejected(self, chains, order, clock):
        with pytest.raises(ValueError, match="hashlock"):
            chains.orchestrator(order, clock, secret=generate_secret())

    @pytest.mark.asyncio
    async def test_withdraw_before_window_rejected(self, swap, clock):
        await _deploy_both(swap)

        with pytest.raises(InvalidStateTransition, match="opens at"):
            await swap.withdraw_dst()

        assert swap.state is SwapState.DST_CONFIRMED

    @pytest.mark.asyncio
    async def test_steps_out_of_order_rejected(self, swap):
        with pytest.raises(InvalidStateTransition):
            await swap.deploy_src()
        with pytest.raises(InvalidStateTransition):
            await swap.withdraw_src()

        assert swap.state is SwapState.CREATED

    def test_terminal_states_have_no_transitions(self):
        for state in (SwapState.COMPLETED, SwapState.CANCELLED, SwapState.FAILED):
            assert VALID_TRANSITIONS[state] == set()

    def test_invalid_transition_raises(self, swap):
        with pytest.raises(InvalidStateTransition):
            swap._transition(SwapState.COMPLETED)


class TestNextAction:
    """Tests for timelock gating."""

    @pytest.fixture
    def immutables(self, order, src_network, dst_network):
        resolver = ResolverClient(src_network.resolver, dst_network.resolver, src_network.lop)
        return resolver.build_src_immutables(src_network.chain_id, order, order.making_amount).with_deployed_at(
            START_TIME
        )

    def test_src_windows(self, immutables):
        assert next_action(immutables, Side.SRC, START_TIME + 9) is Action.WAIT
        assert next_action(immutables, Side.SRC, START_TIME + 10) is Action.WITHDRAW
        assert next_action(immutables, Side.SRC, START_TIME + 120) is Action.WITHDRAW
        assert next_action(immutables, Side.SRC, START_TIME + 121) is Action.CANCEL

    def test_dst_windows(self, immutables):
        assert next_action(immutables, Side.DST, START_TIME + 100) is Action.WITHDRAW
        assert next_action(immutables, Side.DST, START_TIME + 101) is Action.CANCEL
