"""Command line driver.

Usage:
    fusionswap swap --src ethereum_sepolia --dst base_sepolia --amount 1000000000000000
    fusionswap networks
    fusionswap config
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

from fusionswap.adapters.factory import close_adapters, get_chain_adapter
from fusionswap.config import Settings, get_network, get_settings, load_networks
from fusionswap.errors import ConfigurationError, SwapError
from fusionswap.escrow.factory_view import get_factory_view
from fusionswap.order.hashlock import generate_secret
from fusionswap.order.order import create_order
from fusionswap.order.timelocks import schedule_from_settings
from fusionswap.orchestrator import Clock, SwapOrchestrator, SwapRecord, SwapState
from fusionswap.resolver import ResolverClient

logger = logging.getLogger(__name__)


def _print_state(record: SwapRecord, old: SwapState, new: SwapState) -> None:
    print(f"  {old.value} -> {new.value}")


def _print_summary(record: SwapRecord) -> None:
    print(f"\nSwap {record.order_hash}: {record.state.value}")
    for step, tx_hash in record.tx_hashes.items():
        print(f"  {step:<12} {tx_hash}")
    if record.src_escrow:
        print(f"  src escrow   {record.src_escrow}")
    if record.dst_escrow:
        print(f"  dst escrow   {record.dst_escrow}")
    if record.error:
        print(f"  error        {record.error}")


async def run_swap(args: argparse.Namespace, settings: Settings) -> int:
    """Create, sign and execute one swap."""
    networks = load_networks(settings.networks_file)
    src_network = get_network(args.src or settings.src_network, networks)
    dst_network = get_network(args.dst or settings.dst_network, networks)

    maker_asset = args.maker_asset or src_network.token
    taker_asset = args.taker_asset or dst_network.token
    if not maker_asset or not taker_asset:
        raise ConfigurationError("Token not configured; pass --maker-asset/--taker-asset")

    maker = get_chain_adapter("src", "user", settings, src_network)
    src_resolver = get_chain_adapter("src", "resolver", settings, src_network)
    dst_resolver = get_chain_adapter("dst", "resolver", settings, dst_network)

    clock = Clock()
    secret = args.secret or generate_secret()
    order = create_order(
        escrow_factory=src_network.escrow_factory,
        maker=maker.get_address(),
        making_amount=args.amount,
        taking_amount=args.taking_amount or args.amount,
        maker_asset=maker_asset,
        taker_asset=taker_asset,
        secret=secret,
        src_chain_id=src_network.chain_id,
        dst_chain_id=dst_network.chain_id,
        resolver=src_network.resolver,
        src_timestamp=clock.now(),
        time_locks=schedule_from_settings(settings.timelock_offsets()),
        src_safety_deposit=src_network.safety_deposit,
        dst_safety_deposit=dst_network.safety_deposit,
        auction_duration=settings.auction_duration,
    )

    # deploySrc carries the source safety deposit as native value
    balance = await src_resolver.get_balance()
    logger.info(
        f"Resolver {src_resolver.get_address()} balance on {src_network.name}: {balance} "
        f"(deploySrc value {order.src_safety_deposit})"
    )
    if balance < order.src_safety_deposit:
        logger.error("Resolver balance does not cover the source safety deposit")
        return 1

    orchestrator = SwapOrchestrator(
        order=order,
        secret=secret,
        maker=maker,
        src_resolver=src_resolver,
        dst_resolver=dst_resolver,
        resolver=ResolverClient(src_network.resolver, dst_network.resolver, src_network.lop),
        src_factory=get_factory_view(src_network, src_resolver),
        dst_factory=get_factory_view(dst_network, dst_resolver),
        clock=clock,
        finality_delay=settings.finality_delay,
        on_state_change=_print_state,
    )

    print(f"Swap {src_network.name} -> {dst_network.name}, order {orchestrator.record.order_hash}")
    try:
        record = await orchestrator.run()
    except SwapError:
        _print_summary(orchestrator.record)
        raise

    _print_summary(record)
    return 0 if record.state is SwapState.COMPLETED else 1


def show_networks(settings: Settings) -> int:
    networks = load_networks(settings.networks_file)
    for name, network in networks.items():
        print(f"{name:<20} chain {network.chain_id:<12} {network.family:<5} {network.rpc_url}")
    return 0


def show_config(settings: Settings) -> int:
    print(json.dumps(settings.get_safe_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cross-chain escrow swap driver")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    swap = subparsers.add_parser("swap", help="Execute one swap")
    swap.add_argument("--src", help="Source network (default: SRC_NETWORK)")
    swap.add_argument("--dst", help="Destination network (default: DST_NETWORK)")
    swap.add_argument("--amount", type=int, required=True, help="Making amount in base units")
    swap.add_argument("--taking-amount", type=int, help="Taking amount (default: same as --amount)")
    swap.add_argument("--maker-asset", help="Source token (default: network test token)")
    swap.add_argument("--taker-asset", help="Destination token (default: network test token)")
    swap.add_argument("--secret", help="32-byte hex secret (default: random)")

    subparsers.add_parser("networks", help="List configured networks")
    subparsers.add_parser("config", help="Show settings with secrets redacted")
    return parser


async def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=logging.DEBUG if args.debug or settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.command == "networks":
            return show_networks(settings)
        if args.command == "config":
            return show_config(settings)
        return await run_swap(args, settings)
    except SwapError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    finally:
        await close_adapters()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
