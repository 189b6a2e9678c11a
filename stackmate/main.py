# main.py
"""Command-line entry point: balance, chain height and transaction polling."""

import argparse
import asyncio
import signal
import sys
from typing import Any, Dict, List, Optional

from .api_client import ApiClient
from .configuration import Configuration
from .exceptions import StackmateError
from .loggingconfig import set_log_level, setup_logging
from .network_config import explorer_tx_url
from .tx_poller import TransactionPoller
from .tx_store import TxStatus

logger = setup_logging("Main")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="stackmate", description="Stacks indexer helper")
    ap.add_argument("--env", default=".env", help="path to a .env file")
    ap.add_argument("--config", default="config.yaml", help="path to a YAML config file")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_balance = sub.add_parser("balance", help="show the STX balance of an address")
    p_balance.add_argument("address")
    p_balance.add_argument("--network", default="testnet", choices=["mainnet", "testnet"])

    p_height = sub.add_parser("height", help="show the current chain tip height")
    p_height.add_argument("--network", default="testnet", choices=["mainnet", "testnet"])

    p_poll = sub.add_parser("poll", help="follow a transaction until it settles")
    p_poll.add_argument("txid")
    p_poll.add_argument("--network", default="testnet", choices=["mainnet", "testnet"])
    return ap


async def run_command(args: argparse.Namespace, cfg: Configuration, stop_event: asyncio.Event) -> int:
    async with ApiClient(cfg) as api:
        if args.cmd == "balance":
            balance = await api.fetch_stx_balance(args.address, args.network)
            print(f"{balance.stx} STX ({balance.micro} micro-STX)")
            return 0

        if args.cmd == "height":
            print(await api.get_block_height(args.network))
            return 0

        if args.cmd == "poll":
            print(explorer_tx_url(args.network, args.txid, cfg))

            def show(status: TxStatus, data: Dict[str, Any]) -> None:
                detail = data.get("reason") or data.get("status") or ""
                print(f"{status.value} {detail}".rstrip())

            outcome = await TransactionPoller(api, cfg).poll(args.txid, args.network, show, stop_event)
            return 0 if outcome is TxStatus.SUCCESS else 1

    return 2


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = Configuration(env_path=args.env, yaml_file=args.config)
    set_log_level(cfg.LOG_LEVEL)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            installed.append(sig)
        except NotImplementedError:
            pass  # Windows

    try:
        return await run_command(args, cfg, stop_event)
    except StackmateError as exc:
        logger.error("%s", exc.message)
        return 1
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        sys.exit(130)
