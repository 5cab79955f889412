#!/usr/bin/env python3
"""
MCP server for Ethereum JSON-RPC operations.

Exposes the confirmation monitor (wait_for_transaction_confirmation) plus
single-call read tools, eth_call, gas estimation, raw transaction broadcast
and ABI calldata encoding / decoding. Progress of the monitor is sent to the
client as MCP log notifications.

Wraps eth_rpc.py, eth_calldata.py and eth_tx_monitor.py as MCP tools.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any, List

import mcp.types as types
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

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
    validate_tx_hash,
)
from eth_tx_monitor import (
    LoggingStatusReporter,
    MonitorOutcome,
    MonitorRequest,
    StatusReporter,
    wait_for_transaction_confirmation,
)

_LOGGER = logging.getLogger(__name__)

app = Server("ethereum_tools")

_MCP_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}

BLOCK_TAG_SCHEMA = {
    "type": ["string", "integer"],
    "description": 'Block number or tag: "latest", "pending", "earliest", "safe", "finalized"',
}
TX_HASH_SCHEMA = {
    "type": "string",
    "pattern": "^0x[a-fA-F0-9]{64}$",
    "description": "Transaction hash",
}
ADDRESS_SCHEMA = {
    "type": "string",
    "pattern": "^0x[a-fA-F0-9]{40}$",
    "description": "Address",
}
FUNCTION_ABI_SCHEMA = {
    "type": ["string", "object"],
    "description": (
        'Function ABI, e.g. "function balanceOf(address owner) returns (uint256)", '
        "or a JSON ABI object"
    ),
}
ABI_ARGS_SCHEMA = {
    "type": "array",
    "description": "Function arguments in parameter order (addresses and bytes as 0x hex)",
}
EVENT_ABIS_SCHEMA = {
    "type": "array",
    "items": {"type": ["string", "object"]},
    "description": (
        "Event ABIs used to decode logs, e.g. "
        '"event Transfer(address indexed from, address indexed to, uint256 value)"'
    ),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ok_response(data: dict[str, Any]) -> List[TextContent]:
    data["success"] = True
    return [TextContent(type="text", text=json.dumps(json_safe(data), default=str))]


def _error_response(message: str) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps({"success": False, "error": message}))]


def _outcome_response(outcome: MonitorOutcome) -> List[TextContent]:
    payload = outcome.to_dict()
    if outcome.succeeded:
        return _ok_response(payload)
    payload["success"] = False
    payload["error"] = payload.get("message", outcome.status)
    return [TextContent(type="text", text=json.dumps(json_safe(payload), default=str))]


def _parse_positive_number(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Invalid {field_name}. Must be a number.")
    try:
        parsed = float(value)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"Invalid {field_name}. Must be a number.") from exc
    if parsed <= 0:
        raise ValueError(f"Invalid {field_name}. Must be greater than zero.")
    return parsed


def _parse_positive_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid {field_name}. Must be an integer.")
    try:
        parsed = int(value)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"Invalid {field_name}. Must be an integer.") from exc
    if parsed != value and str(parsed) != str(value).strip():
        raise ValueError(f"Invalid {field_name}. Must be an integer.")
    if parsed < 1:
        raise ValueError(f"Invalid {field_name}. Must be at least 1.")
    return parsed


def _required(arguments: dict[str, Any], name: str) -> Any:
    value = arguments.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Missing '{name}' parameter.")
    return value


def _optional_list(arguments: dict[str, Any], name: str) -> list[Any] | None:
    value = arguments.get(name)
    if value is not None and not isinstance(value, list):
        raise ValueError(f"Invalid {name}. Expected a list.")
    return value


class McpStatusReporter:
    """Sends monitor progress to the MCP client as log notifications."""

    def __init__(self, session: Any) -> None:
        self.session = session

    async def report(self, message: str) -> None:
        await self.session.send_log_message(
            level="info", data=message, logger="eth_tx_monitor"
        )


def _status_reporter() -> StatusReporter:
    try:
        ctx = app.request_context
    except LookupError:
        # Handler invoked outside an MCP request (tests, direct calls).
        return LoggingStatusReporter()
    return McpStatusReporter(ctx.session)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


@app.list_tools()
async def list_tools() -> List[Tool]:
    return [
        # -- Confirmation monitor --
        Tool(
            name="wait_for_transaction_confirmation",
            description=(
                "Wait until a transaction is confirmed, reverted, replaced (same sender "
                "and nonce), or the timeout elapses. Sends progress as log notifications."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "hash": {**TX_HASH_SCHEMA, "description": "Transaction hash to monitor"},
                    "confirmations": {
                        "type": "integer",
                        "minimum": 1,
                        "description": "Number of confirmations to wait for (default 1)",
                    },
                    "interval": {
                        "type": "number",
                        "exclusiveMinimum": 0,
                        "description": "Seconds between status checks (default 1)",
                    },
                    "timeout": {
                        "type": "number",
                        "exclusiveMinimum": 0,
                        "description": "Timeout in seconds (default 300)",
                    },
                },
                "required": ["hash"],
            },
        ),
        # -- Chain state --
        Tool(
            name="get_block_number",
            description="Get the current block number.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="get_chain_id",
            description="Get the chain ID of the connected network.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="get_balance",
            description="Get the ETH balance of an address in wei and ether.",
            inputSchema={
                "type": "object",
                "properties": {
                    "address": {**ADDRESS_SCHEMA, "description": "Address to check"},
                    "block_tag": BLOCK_TAG_SCHEMA,
                },
                "required": ["address"],
            },
        ),
        Tool(
            name="get_gas_price",
            description="Get the current gas price and EIP-1559 priority fee.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="get_fee_history",
            description="Get historical base fees and priority fee percentiles.",
            inputSchema={
                "type": "object",
                "properties": {
                    "block_count": {
                        "type": "integer",
                        "minimum": 1,
                        "description": "Number of blocks to fetch fee history for",
                    },
                    "newest_block": BLOCK_TAG_SCHEMA,
                    "reward_percentiles": {
                        "type": "array",
                        "items": {"type": "number"},
                        "description": "Percentiles of priority fees (default [25, 50, 75])",
                    },
                },
                "required": ["block_count"],
            },
        ),
        Tool(
            name="get_code",
            description="Get the bytecode at an address (checks whether it is a contract).",
            inputSchema={
                "type": "object",
                "properties": {
                    "address": ADDRESS_SCHEMA,
                    "block_tag": BLOCK_TAG_SCHEMA,
                },
                "required": ["address"],
            },
        ),
        Tool(
            name="get_storage_at",
            description="Get a contract storage slot value.",
            inputSchema={
                "type": "object",
                "properties": {
                    "address": {**ADDRESS_SCHEMA, "description": "Contract address"},
                    "slot": {
                        "type": ["string", "integer"],
                        "description": "Storage slot (hex string or integer)",
                    },
                    "block_tag": BLOCK_TAG_SCHEMA,
                },
                "required": ["address", "slot"],
            },
        ),
        # -- Transactions --
        Tool(
            name="get_transaction",
            description="Get full transaction details by hash.",
            inputSchema={
                "type": "object",
                "properties": {"tx_hash": TX_HASH_SCHEMA},
                "required": ["tx_hash"],
            },
        ),
        Tool(
            name="get_transaction_receipt",
            description="Get the receipt of a mined transaction.",
            inputSchema={
                "type": "object",
                "properties": {"tx_hash": TX_HASH_SCHEMA},
                "required": ["tx_hash"],
            },
        ),
        Tool(
            name="get_transaction_count",
            description="Get the transaction count (nonce) of an address.",
            inputSchema={
                "type": "object",
                "properties": {
                    "address": ADDRESS_SCHEMA,
                    "block_tag": BLOCK_TAG_SCHEMA,
                },
                "required": ["address"],
            },
        ),
        Tool(
            name="get_transaction_logs",
            description="Get the event logs emitted by a mined transaction, optionally decoded.",
            inputSchema={
                "type": "object",
                "properties": {
                    "tx_hash": TX_HASH_SCHEMA,
                    "event_abis": EVENT_ABIS_SCHEMA,
                },
                "required": ["tx_hash"],
            },
        ),
        # -- Blocks & logs --
        Tool(
            name="get_block",
            description="Get a block by number, tag or hash.",
            inputSchema={
                "type": "object",
                "properties": {
                    "block_number": BLOCK_TAG_SCHEMA,
                    "block_hash": {"type": "string", "description": "Block hash (alternative to block_number)"},
                    "include_transactions": {
                        "type": "boolean",
                        "description": "Include full transaction objects (default false)",
                    },
                },
            },
        ),
        Tool(
            name="get_latest_block",
            description="Get the latest block.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="get_logs",
            description="Query event logs by contract address, block range and topics, optionally decoded.",
            inputSchema={
                "type": "object",
                "properties": {
                    "address": {**ADDRESS_SCHEMA, "description": "Contract address"},
                    "from_block": BLOCK_TAG_SCHEMA,
                    "to_block": BLOCK_TAG_SCHEMA,
                    "topics": {
                        "type": "array",
                        "description": "Topic filters (null, a topic, or a list of alternatives)",
                    },
                    "event_abis": EVENT_ABIS_SCHEMA,
                },
            },
        ),
        # -- Calls & sending --
        Tool(
            name="call_contract",
            description=(
                "Call a read-only contract function without spending gas. Pass either raw "
                "calldata in 'data' or a function ABI in 'abi' with its 'args'."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "to": {**ADDRESS_SCHEMA, "description": "Contract address"},
                    "data": {"type": "string", "description": "Raw 0x-prefixed calldata"},
                    "abi": FUNCTION_ABI_SCHEMA,
                    "args": ABI_ARGS_SCHEMA,
                    "from": {**ADDRESS_SCHEMA, "description": "Optional caller address"},
                    "value": {"type": "string", "description": "Optional value in wei"},
                    "block_tag": BLOCK_TAG_SCHEMA,
                },
                "required": ["to"],
            },
        ),
        Tool(
            name="estimate_gas",
            description="Estimate the gas a transaction would use.",
            inputSchema={
                "type": "object",
                "properties": {
                    "to": {**ADDRESS_SCHEMA, "description": "Recipient or contract address"},
                    "data": {"type": "string", "description": "Optional 0x-prefixed calldata"},
                    "from": {**ADDRESS_SCHEMA, "description": "Optional sender address"},
                    "value": {"type": "string", "description": "Optional value in wei"},
                    "block_tag": BLOCK_TAG_SCHEMA,
                },
                "required": ["to"],
            },
        ),
        Tool(
            name="send_raw_transaction",
            description=(
                "Broadcast a signed raw transaction. Use wait_for_transaction_confirmation "
                "with the returned hash to follow it."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "raw_transaction": {
                        "type": "string",
                        "description": "0x-prefixed signed transaction bytes",
                    },
                },
                "required": ["raw_transaction"],
            },
        ),
        # -- Contract ABI --
        Tool(
            name="encode_calldata",
            description="Encode a function call (selector and arguments) into calldata.",
            inputSchema={
                "type": "object",
                "properties": {
                    "abi": FUNCTION_ABI_SCHEMA,
                    "args": ABI_ARGS_SCHEMA,
                },
                "required": ["abi"],
            },
        ),
        Tool(
            name="decode_calldata",
            description="Decode transaction calldata using a function ABI.",
            inputSchema={
                "type": "object",
                "properties": {
                    "data": {"type": "string", "description": "0x-prefixed calldata to decode"},
                    "abi": FUNCTION_ABI_SCHEMA,
                },
                "required": ["data", "abi"],
            },
        ),
    ]


@app.set_logging_level()
async def set_logging_level(level: types.LoggingLevel) -> None:
    logging.getLogger().setLevel(_MCP_LOG_LEVELS.get(level, logging.INFO))


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> List[TextContent]:
    if not isinstance(arguments, dict):
        return _error_response("Invalid arguments. Expected an object.")

    try:
        # Confirmation monitor
        if name == "wait_for_transaction_confirmation":
            return await _handle_wait_for_transaction_confirmation(arguments)

        # Chain state
        if name == "get_block_number":
            return await _handle_simple(eth_get_block_number)
        if name == "get_chain_id":
            return await _handle_simple(eth_get_chain_id)
        if name == "get_balance":
            return await _handle_get_balance(arguments)
        if name == "get_gas_price":
            return await _handle_simple(eth_get_gas_price)
        if name == "get_fee_history":
            return await _handle_get_fee_history(arguments)
        if name == "get_code":
            return await _handle_get_code(arguments)
        if name == "get_storage_at":
            return await _handle_get_storage_at(arguments)

        # Transactions
        if name == "get_transaction":
            return await _handle_tx_lookup(eth_get_transaction, arguments)
        if name == "get_transaction_receipt":
            return await _handle_tx_lookup(eth_get_transaction_receipt, arguments)
        if name == "get_transaction_count":
            return await _handle_get_transaction_count(arguments)
        if name == "get_transaction_logs":
            return await _handle_get_transaction_logs(arguments)

        # Blocks & logs
        if name == "get_block":
            return await _handle_get_block(arguments)
        if name == "get_latest_block":
            return await _handle_simple(eth_get_latest_block)
        if name == "get_logs":
            return await _handle_get_logs(arguments)

        # Calls & sending
        if name == "call_contract":
            return await _handle_call_contract(arguments)
        if name == "estimate_gas":
            return await _handle_estimate_gas(arguments)
        if name == "send_raw_transaction":
            return await _handle_send_raw_transaction(arguments)

        # Contract ABI
        if name == "encode_calldata":
            return await _handle_encode_calldata(arguments)
        if name == "decode_calldata":
            return await _handle_decode_calldata(arguments)

    except Exception as exc:  # noqa: BLE001
        _LOGGER.debug("Tool %s failed", name, exc_info=True)
        return _error_response(str(exc))

    return _error_response(f"Unknown tool: {name}")


# ---------------------------------------------------------------------------
# Handlers -- Confirmation monitor
# ---------------------------------------------------------------------------


async def _handle_wait_for_transaction_confirmation(
    arguments: dict[str, Any],
) -> List[TextContent]:
    tx_hash = validate_tx_hash(arguments.get("hash"))
    cfg = await asyncio.to_thread(EthConfig.from_env)

    confirmations = arguments.get("confirmations")
    interval = arguments.get("interval")
    timeout = arguments.get("timeout")
    request = MonitorRequest(
        transaction_hash=tx_hash,
        expected_confirmations=(
            1 if confirmations is None else _parse_positive_int(confirmations, "confirmations")
        ),
        poll_interval=(
            cfg.poll_interval if interval is None else _parse_positive_number(interval, "interval")
        ),
        timeout=(
            cfg.monitor_timeout if timeout is None else _parse_positive_number(timeout, "timeout")
        ),
    )

    outcome = await wait_for_transaction_confirmation(
        ChainReader(cfg),
        request,
        _status_reporter(),
        max_scan_blocks=cfg.max_scan_blocks,
    )
    return _outcome_response(outcome)


# ---------------------------------------------------------------------------
# Handlers -- Chain state
# ---------------------------------------------------------------------------


async def _handle_simple(fn: Any) -> List[TextContent]:
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(fn, cfg)
    return _ok_response(result)


async def _handle_get_balance(arguments: dict[str, Any]) -> List[TextContent]:
    address = _required(arguments, "address")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(
        eth_get_balance, cfg, address, arguments.get("block_tag")
    )
    return _ok_response(result)


async def _handle_get_fee_history(arguments: dict[str, Any]) -> List[TextContent]:
    block_count = _parse_positive_int(_required(arguments, "block_count"), "block_count")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(
        eth_get_fee_history,
        cfg,
        block_count,
        arguments.get("newest_block", "latest"),
        arguments.get("reward_percentiles"),
    )
    return _ok_response(result)


async def _handle_get_code(arguments: dict[str, Any]) -> List[TextContent]:
    address = _required(arguments, "address")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(eth_get_code, cfg, address, arguments.get("block_tag"))
    return _ok_response(result)


async def _handle_get_storage_at(arguments: dict[str, Any]) -> List[TextContent]:
    address = _required(arguments, "address")
    slot = _required(arguments, "slot")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(
        eth_get_storage_at, cfg, address, slot, arguments.get("block_tag")
    )
    return _ok_response(result)


# ---------------------------------------------------------------------------
# Handlers -- Transactions
# ---------------------------------------------------------------------------


async def _handle_tx_lookup(fn: Any, arguments: dict[str, Any]) -> List[TextContent]:
    tx_hash = validate_tx_hash(_required(arguments, "tx_hash"), "tx_hash")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(fn, cfg, tx_hash)
    return _ok_response(result)


async def _handle_get_transaction_count(arguments: dict[str, Any]) -> List[TextContent]:
    address = _required(arguments, "address")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(
        eth_get_transaction_count, cfg, address, arguments.get("block_tag")
    )
    return _ok_response(result)


async def _handle_get_transaction_logs(arguments: dict[str, Any]) -> List[TextContent]:
    tx_hash = validate_tx_hash(_required(arguments, "tx_hash"), "tx_hash")
    event_abis = _optional_list(arguments, "event_abis")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(eth_get_transaction_logs, cfg, tx_hash, event_abis)
    return _ok_response(result)


# ---------------------------------------------------------------------------
# Handlers -- Blocks & logs
# ---------------------------------------------------------------------------


async def _handle_get_block(arguments: dict[str, Any]) -> List[TextContent]:
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(
        eth_get_block,
        cfg,
        arguments.get("block_number"),
        (arguments.get("block_hash") or "").strip() or None,
        bool(arguments.get("include_transactions", False)),
    )
    return _ok_response(result)


async def _handle_get_logs(arguments: dict[str, Any]) -> List[TextContent]:
    topics = _optional_list(arguments, "topics")
    event_abis = _optional_list(arguments, "event_abis")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(
        eth_get_logs,
        cfg,
        (arguments.get("address") or "").strip() or None,
        arguments.get("from_block"),
        arguments.get("to_block"),
        topics,
        event_abis,
    )
    return _ok_response(result)


# ---------------------------------------------------------------------------
# Handlers -- Calls & sending
# ---------------------------------------------------------------------------


async def _handle_call_contract(arguments: dict[str, Any]) -> List[TextContent]:
    to = _required(arguments, "to")
    args = _optional_list(arguments, "args")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(
        eth_call_contract,
        cfg,
        to,
        arguments.get("data"),
        arguments.get("from"),
        arguments.get("value"),
        arguments.get("block_tag"),
        arguments.get("abi"),
        args,
    )
    return _ok_response(result)


async def _handle_estimate_gas(arguments: dict[str, Any]) -> List[TextContent]:
    to = _required(arguments, "to")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(
        eth_estimate_gas,
        cfg,
        to,
        arguments.get("data"),
        arguments.get("from"),
        arguments.get("value"),
        arguments.get("block_tag"),
    )
    return _ok_response(result)


async def _handle_send_raw_transaction(arguments: dict[str, Any]) -> List[TextContent]:
    raw_transaction = _required(arguments, "raw_transaction")
    cfg = await asyncio.to_thread(EthConfig.from_env)
    result = await asyncio.to_thread(eth_send_raw_transaction, cfg, raw_transaction)
    return _ok_response(result)


# ---------------------------------------------------------------------------
# Handlers -- Contract ABI
# ---------------------------------------------------------------------------


async def _handle_encode_calldata(arguments: dict[str, Any]) -> List[TextContent]:
    abi = _required(arguments, "abi")
    args = _optional_list(arguments, "args")
    return _ok_response(eth_encode_calldata(abi, args))


async def _handle_decode_calldata(arguments: dict[str, Any]) -> List[TextContent]:
    data = _required(arguments, "data")
    abi = _required(arguments, "abi")
    return _ok_response(eth_decode_calldata(data, abi))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def main() -> None:
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run() -> None:
    # stdout carries the MCP protocol; logs go to stderr.
    logging.basicConfig(
        level=os.getenv("ETH_LOG_LEVEL", "WARNING").upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(main())


if __name__ == "__main__":
    run()
