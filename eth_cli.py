#!/usr/bin/env python3
"""
Command-line interface for the Ethereum tools.

Each MCP tool is available as a subcommand with the same parameters, e.g.

    eth-tools --rpc-url https://rpc.example wait-for-transaction-confirmation \\
        --hash 0x... --confirmations 3

Results are printed to stdout as JSON; monitor progress goes to stderr.
Exit status: 0 on success, 1 on error, 2 when the monitor timed out or was
cancelled.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Any, Callable, Sequence

from eth_calldata import eth_decode_calldata, eth_encode_calldata
from eth_rpc import (
    ChainReader,
    EthConfig,
    eth_call_contract,
    eth_estimate_gas,
    eth_get_balance,
    eth_get_block,
    eth_get_block_number,
    eth_get_chain_id,
    eth_get_code,
    eth_get_fee_history,
    eth_get_gas_price,
    eth_get_latest_block,
    eth_get_logs,
    eth_get_storage_at,
    eth_get_transaction,
    eth_get_transaction_count,
    eth_get_transaction_logs,
    eth_get_transaction_receipt,
    eth_send_raw_transaction,
    json_safe,
)
from eth_tx_monitor import (
    ConsoleStatusReporter,
    MonitorOutcome,
    MonitorRequest,
    wait_for_transaction_confirmation,
)

_LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_CONFIRMED = 2


def configure_logging(level_name: str) -> None:
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level_name.upper(), logging.WARNING))


def _print_json(data: Any) -> None:
    print(json.dumps(json_safe(data), indent=2, default=str))


def _block_arg(value: str) -> int | str:
    return int(value) if value.isdigit() else value


def _json_list_arg(value: str) -> list[Any]:
    try:
        items = json.loads(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid JSON: {exc}") from exc
    if not isinstance(items, list):
        raise argparse.ArgumentTypeError("expected a JSON list")
    return items


def _percentiles_arg(value: str) -> list[float]:
    return [float(p) for p in value.split(",") if p.strip()]


# ---------------------------------------------------------------------------
# Confirmation monitor
# ---------------------------------------------------------------------------


async def _run_monitor(cfg: EthConfig, request: MonitorRequest) -> MonitorOutcome:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no signal handler support.
        pass
    try:
        return await wait_for_transaction_confirmation(
            ChainReader(cfg),
            request,
            ConsoleStatusReporter(),
            cancel_event,
            max_scan_blocks=cfg.max_scan_blocks,
        )
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def _cmd_wait_for_transaction_confirmation(cfg: EthConfig, args: argparse.Namespace) -> int:
    request = MonitorRequest(
        transaction_hash=args.hash,
        expected_confirmations=args.confirmations,
        poll_interval=args.interval if args.interval is not None else cfg.poll_interval,
        timeout=args.timeout if args.timeout is not None else cfg.monitor_timeout,
    )
    outcome = asyncio.run(_run_monitor(cfg, request))
    _print_json(outcome.to_dict())
    return EXIT_OK if outcome.succeeded else EXIT_NOT_CONFIRMED


# ---------------------------------------------------------------------------
# Single-call commands
# ---------------------------------------------------------------------------


def _simple(fn: Callable[..., dict[str, Any]], *attrs: str) -> Callable[[EthConfig, argparse.Namespace], int]:
    def command(cfg: EthConfig, args: argparse.Namespace) -> int:
        _print_json(fn(cfg, *(getattr(args, attr) for attr in attrs)))
        return EXIT_OK

    return command


def _offline(fn: Callable[..., dict[str, Any]], *attrs: str) -> Callable[[EthConfig | None, argparse.Namespace], int]:
    def command(cfg: EthConfig | None, args: argparse.Namespace) -> int:
        _print_json(fn(*(getattr(args, attr) for attr in attrs)))
        return EXIT_OK

    return command


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eth-tools",
        description="Ethereum JSON-RPC tools and transaction confirmation monitor.",
    )
    parser.add_argument("--rpc-url", help="JSON-RPC endpoint (overrides ETH_RPC_URL)")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level for stderr diagnostics (default WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor = subparsers.add_parser(
        "wait-for-transaction-confirmation",
        help="Wait until a transaction is confirmed, reverted, replaced or times out",
    )
    monitor.add_argument("--hash", required=True, help="Transaction hash to monitor")
    monitor.add_argument("--confirmations", type=int, default=1, help="Confirmations to wait for")
    monitor.add_argument("--interval", type=float, help="Seconds between status checks")
    monitor.add_argument("--timeout", type=float, help="Timeout in seconds")
    monitor.set_defaults(handler=_cmd_wait_for_transaction_confirmation)

    sub = subparsers.add_parser("get-block-number", help="Current block number")
    sub.set_defaults(handler=_simple(eth_get_block_number))

    sub = subparsers.add_parser("get-chain-id", help="Chain ID")
    sub.set_defaults(handler=_simple(eth_get_chain_id))

    sub = subparsers.add_parser("get-balance", help="ETH balance of an address")
    sub.add_argument("--address", required=True)
    sub.add_argument("--block-tag", type=_block_arg)
    sub.set_defaults(handler=_simple(eth_get_balance, "address", "block_tag"))

    sub = subparsers.add_parser("get-gas-price", help="Current gas price")
    sub.set_defaults(handler=_simple(eth_get_gas_price))

    sub = subparsers.add_parser("get-fee-history", help="Historical fee data")
    sub.add_argument("--block-count", type=int, required=True)
    sub.add_argument("--newest-block", type=_block_arg, default="latest")
    sub.add_argument(
        "--reward-percentiles", type=_percentiles_arg, help="Comma-separated, e.g. 25,50,75"
    )
    sub.set_defaults(
        handler=_simple(eth_get_fee_history, "block_count", "newest_block", "reward_percentiles")
    )

    sub = subparsers.add_parser("get-code", help="Bytecode at an address")
    sub.add_argument("--address", required=True)
    sub.add_argument("--block-tag", type=_block_arg)
    sub.set_defaults(handler=_simple(eth_get_code, "address", "block_tag"))

    sub = subparsers.add_parser("get-storage-at", help="Contract storage slot")
    sub.add_argument("--address", required=True)
    sub.add_argument("--slot", required=True)
    sub.add_argument("--block-tag", type=_block_arg)
    sub.set_defaults(handler=_simple(eth_get_storage_at, "address", "slot", "block_tag"))

    for name, fn, help_text in (
        ("get-transaction", eth_get_transaction, "Transaction details"),
        ("get-transaction-receipt", eth_get_transaction_receipt, "Transaction receipt"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--tx-hash", required=True)
        sub.set_defaults(handler=_simple(fn, "tx_hash"))

    sub = subparsers.add_parser("get-transaction-logs", help="Logs emitted by a transaction")
    sub.add_argument("--tx-hash", required=True)
    sub.add_argument(
        "--event-abi", dest="event_abis", action="append", help="Event ABI to decode logs (repeatable)"
    )
    sub.set_defaults(handler=_simple(eth_get_transaction_logs, "tx_hash", "event_abis"))

    sub = subparsers.add_parser("get-transaction-count", help="Nonce of an address")
    sub.add_argument("--address", required=True)
    sub.add_argument("--block-tag", type=_block_arg)
    sub.set_defaults(handler=_simple(eth_get_transaction_count, "address", "block_tag"))

    sub = subparsers.add_parser("get-block", help="Block by number, tag or hash")
    sub.add_argument("--block-number", type=_block_arg)
    sub.add_argument("--block-hash")
    sub.add_argument("--include-transactions", action="store_true")
    sub.set_defaults(
        handler=_simple(eth_get_block, "block_number", "block_hash", "include_transactions")
    )

    sub = subparsers.add_parser("get-latest-block", help="Latest block")
    sub.set_defaults(handler=_simple(eth_get_latest_block))

    sub = subparsers.add_parser("get-logs", help="Query event logs")
    sub.add_argument("--address")
    sub.add_argument("--from-block", type=_block_arg)
    sub.add_argument("--to-block", type=_block_arg)
    sub.add_argument("--topics", type=_json_list_arg, help="JSON list of topic filters")
    sub.add_argument(
        "--event-abi", dest="event_abis", action="append", help="Event ABI to decode logs (repeatable)"
    )
    sub.set_defaults(
        handler=_simple(
            eth_get_logs, "address", "from_block", "to_block", "topics", "event_abis"
        )
    )

    sub = subparsers.add_parser(
        "call-contract", help="Read-only eth_call with raw calldata or a function ABI"
    )
    sub.add_argument("--to", required=True)
    sub.add_argument("--data", help="Raw 0x-prefixed calldata")
    sub.add_argument("--abi", help='Function ABI, e.g. "function balanceOf(address) returns (uint256)"')
    sub.add_argument("--args", type=_json_list_arg, help="JSON list of function arguments")
    sub.add_argument("--from", dest="sender")
    sub.add_argument("--value")
    sub.add_argument("--block-tag", type=_block_arg)
    sub.set_defaults(
        handler=_simple(
            eth_call_contract, "to", "data", "sender", "value", "block_tag", "abi", "args"
        )
    )

    sub = subparsers.add_parser("estimate-gas", help="Estimate gas for a transaction")
    sub.add_argument("--to", required=True)
    sub.add_argument("--data")
    sub.add_argument("--from", dest="sender")
    sub.add_argument("--value")
    sub.add_argument("--block-tag", type=_block_arg)
    sub.set_defaults(
        handler=_simple(eth_estimate_gas, "to", "data", "sender", "value", "block_tag")
    )

    sub = subparsers.add_parser("send-raw-transaction", help="Broadcast a signed transaction")
    sub.add_argument("--raw-transaction", required=True)
    sub.set_defaults(handler=_simple(eth_send_raw_transaction, "raw_transaction"))

    sub = subparsers.add_parser("encode-calldata", help="Encode a function call into calldata")
    sub.add_argument("--abi", required=True, help="Function ABI signature or JSON object")
    sub.add_argument("--args", type=_json_list_arg, help="JSON list of function arguments")
    sub.set_defaults(handler=_offline(eth_encode_calldata, "abi", "args"), needs_rpc=False)

    sub = subparsers.add_parser("decode-calldata", help="Decode calldata with a function ABI")
    sub.add_argument("--data", required=True)
    sub.add_argument("--abi", required=True, help="Function ABI signature or JSON object")
    sub.set_defaults(handler=_offline(eth_decode_calldata, "data", "abi"), needs_rpc=False)

    subparsers.add_parser("serve", help="Run the MCP server over stdio")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "serve":
        from eth_mcp_server import main as serve

        # The server reads its endpoint from the environment on every tool call.
        if args.rpc_url:
            os.environ["ETH_RPC_URL"] = args.rpc_url

        asyncio.run(serve())
        return EXIT_OK

    try:
        cfg = EthConfig.from_env(args.rpc_url) if getattr(args, "needs_rpc", True) else None
        return args.handler(cfg, args)
    except Exception as exc:  # noqa: BLE001
        _LOGGER.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
