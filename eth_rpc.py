"""
Ethereum JSON-RPC operations for the MCP tool surface.

Implements:
- Configuration from environment / .env (RPC endpoint, timeouts, monitor defaults)
- JSON-RPC transport over HTTP
- ChainReader: the read-only query surface used by the confirmation monitor
- Receipt / transaction / block / log formatting (hex quantities -> ints)
- Revert reason decoding (Error(string), Panic(uint256), custom errors)
- Single-call tools: balances, gas, blocks, transactions, logs (optionally
  decoded with event ABIs), eth_call with raw calldata or a function ABI,
  gas estimation and raw transaction broadcast
"""

from __future__ import annotations

import itertools
import logging
import os
import re
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any

import requests
from dotenv import load_dotenv

from eth_calldata import (
    decode_function_result,
    decode_logs,
    encode_function_call,
    parse_event_abis,
    parse_function_abi,
)

MODULE_DIR = Path(__file__).resolve().parent
load_dotenv(MODULE_DIR / ".env")
load_dotenv(MODULE_DIR.parent / ".env")

_LOGGER = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_RPC_TIMEOUT = 15.0
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_MONITOR_TIMEOUT = 300.0
DEFAULT_MAX_SCAN_BLOCKS = 32

BLOCK_TAGS = ("latest", "pending", "earliest", "safe", "finalized")

WEI_PER_ETHER = Decimal(10) ** 18
WEI_PER_GWEI = Decimal(10) ** 9

TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
HEX_DATA_RE = re.compile(r"^0x(?:[a-fA-F0-9]{2})*$")

# Solidity revert payload selectors
ERROR_STRING_SELECTOR = "0x08c379a0"  # Error(string)
PANIC_SELECTOR = "0x4e487b71"  # Panic(uint256)

PANIC_CODES = {
    0x00: "generic compiler panic",
    0x01: "assertion failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division or modulo by zero",
    0x21: "invalid enum conversion",
    0x22: "incorrectly encoded storage byte array",
    0x31: "pop on empty array",
    0x32: "array index out of bounds",
    0x41: "out of memory",
    0x51: "call to zero-initialized internal function",
}

UNKNOWN_REVERT_REASON = "Unknown"

_REQUEST_IDS = itertools.count(1)


class EthConfigError(Exception):
    """Configuration error for the Ethereum tools."""

    pass


class RpcError(RuntimeError):
    """JSON-RPC error response returned by the node."""

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"{self.message} (code {self.code})"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise EthConfigError(f"Invalid {name}={raw!r}. Must be a number.") from exc
    if value <= 0:
        raise EthConfigError(f"Invalid {name}={raw!r}. Must be greater than zero.")
    return value


@dataclass
class EthConfig:
    """
    Configuration for the Ethereum tools.

    Values are sourced from environment variables or a .env file:
    - ETH_RPC_URL: HTTP(S) JSON-RPC endpoint (required).
    - ETH_RPC_TIMEOUT: per-request timeout in seconds (default 15).
    - ETH_MONITOR_POLL_INTERVAL: default seconds between confirmation polls (default 1).
    - ETH_MONITOR_TIMEOUT: default confirmation timeout in seconds (default 300).
    - ETH_MONITOR_MAX_SCAN_BLOCKS: blocks scanned per poll when looking for a
      replacement transaction (default 32).
    """

    rpc_url: str
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    monitor_timeout: float = DEFAULT_MONITOR_TIMEOUT
    max_scan_blocks: int = DEFAULT_MAX_SCAN_BLOCKS

    @classmethod
    def from_env(cls, rpc_url: str | None = None) -> EthConfig:
        url = (rpc_url or os.getenv("ETH_RPC_URL") or "").strip()
        if not url:
            raise EthConfigError(
                "No RPC endpoint configured. Set ETH_RPC_URL in your environment "
                "or .env file, or pass --rpc-url."
            )
        if not url.startswith(("http://", "https://")):
            raise EthConfigError(
                f"Invalid RPC URL {url!r}. Expected an http:// or https:// endpoint."
            )

        max_scan_raw = os.getenv("ETH_MONITOR_MAX_SCAN_BLOCKS")
        max_scan_blocks = DEFAULT_MAX_SCAN_BLOCKS
        if max_scan_raw is not None and max_scan_raw.strip():
            try:
                max_scan_blocks = int(max_scan_raw)
            except ValueError as exc:
                raise EthConfigError(
                    f"Invalid ETH_MONITOR_MAX_SCAN_BLOCKS={max_scan_raw!r}. Must be an integer."
                ) from exc
            if max_scan_blocks < 1:
                raise EthConfigError(
                    "Invalid ETH_MONITOR_MAX_SCAN_BLOCKS. Must be at least 1."
                )

        return cls(
            rpc_url=url,
            rpc_timeout=_env_float("ETH_RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT),
            poll_interval=_env_float("ETH_MONITOR_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            monitor_timeout=_env_float("ETH_MONITOR_TIMEOUT", DEFAULT_MONITOR_TIMEOUT),
            max_scan_blocks=max_scan_blocks,
        )


# ---------------------------------------------------------------------------
# JSON-RPC transport
# ---------------------------------------------------------------------------


def _rpc_call(cfg: EthConfig, method: str, params: list[Any] | None = None) -> Any:
    """POST a single JSON-RPC request and return its result member."""
    payload = {
        "jsonrpc": "2.0",
        "id": next(_REQUEST_IDS),
        "method": method,
        "params": params or [],
    }
    _LOGGER.debug("rpc %s %s", method, payload["params"])
    resp = requests.post(cfg.rpc_url, json=payload, timeout=cfg.rpc_timeout)
    try:
        body = resp.json()
    except ValueError:
        resp.raise_for_status()
        raise RpcError(None, f"Invalid JSON-RPC response for {method}.")

    # Some nodes pair JSON-RPC errors with a non-2xx status; the error member wins.
    if isinstance(body, dict) and body.get("error"):
        error = body["error"]
        if isinstance(error, dict):
            raise RpcError(error.get("code"), error.get("message", ""), error.get("data"))
        raise RpcError(None, str(error))
    resp.raise_for_status()
    if not isinstance(body, dict) or "result" not in body:
        raise RpcError(None, f"Malformed JSON-RPC response for {method}.")
    return body["result"]


# ---------------------------------------------------------------------------
# Input validation & hex helpers
# ---------------------------------------------------------------------------


def hex_to_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


def validate_tx_hash(value: Any, field_name: str = "hash") -> str:
    tx_hash = (value or "").strip() if isinstance(value, str) else ""
    if not TX_HASH_RE.match(tx_hash):
        raise ValueError(
            f"Invalid {field_name}. Expected a 0x-prefixed 32-byte hex string."
        )
    return tx_hash


def validate_address(value: Any, field_name: str = "address") -> str:
    address = (value or "").strip() if isinstance(value, str) else ""
    if not ADDRESS_RE.match(address):
        raise ValueError(
            f"Invalid {field_name}. Expected a 0x-prefixed 20-byte hex address."
        )
    return address


def validate_hex_data(value: Any, field_name: str = "data") -> str:
    data = (value or "").strip() if isinstance(value, str) else ""
    if not HEX_DATA_RE.match(data):
        raise ValueError(f"Invalid {field_name}. Expected 0x-prefixed hex bytes.")
    return data


def normalize_block(block: Any) -> str:
    """Turn a block number or tag into its JSON-RPC form."""
    if block is None:
        return "latest"
    if isinstance(block, bool):
        raise ValueError(f"Invalid block {block!r}.")
    if isinstance(block, int):
        if block < 0:
            raise ValueError("Block number must not be negative.")
        return hex(block)
    if isinstance(block, str):
        tag = block.strip()
        if tag in BLOCK_TAGS:
            return tag
        if tag.isdigit():
            return hex(int(tag))
        if re.match(r"^0x[a-fA-F0-9]+$", tag):
            return tag
    raise ValueError(
        f"Invalid block {block!r}. Use a number or one of: {', '.join(BLOCK_TAGS)}."
    )


def _parse_wei(value: Any, field_name: str) -> int:
    try:
        wei = int(str(value), 0) if str(value).startswith("0x") else int(str(value))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {field_name}. Must be an integer amount in wei.") from exc
    if wei < 0:
        raise ValueError(f"Invalid {field_name}. Must not be negative.")
    return wei


def wei_to_ether(wei: int) -> str:
    return format((Decimal(wei) / WEI_PER_ETHER).normalize(), "f")


def wei_to_gwei(wei: int) -> str:
    return format((Decimal(wei) / WEI_PER_GWEI).normalize(), "f")


# Integers beyond this lose precision in JavaScript clients.
MAX_SAFE_INTEGER = 2**53 - 1


def json_safe(value: Any) -> Any:
    """Stringify integers a JSON consumer could not represent exactly."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and abs(value) > MAX_SAFE_INTEGER:
        return str(value)
    if isinstance(value, dict):
        return {key: json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


def _format_log(log: dict) -> dict[str, Any]:
    return {
        "address": log.get("address"),
        "topics": log.get("topics", []),
        "data": log.get("data", "0x"),
        "block_number": hex_to_int(log.get("blockNumber")),
        "transaction_hash": log.get("transactionHash"),
        "transaction_index": hex_to_int(log.get("transactionIndex")),
        "log_index": hex_to_int(log.get("logIndex")),
        "removed": log.get("removed", False),
    }


def _format_transaction(tx: dict) -> dict[str, Any]:
    return {
        "hash": tx.get("hash"),
        "from": tx.get("from"),
        "to": tx.get("to"),
        "nonce": hex_to_int(tx.get("nonce")),
        "value": hex_to_int(tx.get("value")),
        "gas": hex_to_int(tx.get("gas")),
        "gas_price": hex_to_int(tx.get("gasPrice")),
        "max_fee_per_gas": hex_to_int(tx.get("maxFeePerGas")),
        "max_priority_fee_per_gas": hex_to_int(tx.get("maxPriorityFeePerGas")),
        "input": tx.get("input", "0x"),
        "block_number": hex_to_int(tx.get("blockNumber")),
        "block_hash": tx.get("blockHash"),
        "transaction_index": hex_to_int(tx.get("transactionIndex")),
        "type": hex_to_int(tx.get("type")),
        "chain_id": hex_to_int(tx.get("chainId")),
        "access_list": tx.get("accessList"),
    }


def _format_receipt(receipt: dict) -> dict[str, Any]:
    return {
        "transaction_hash": receipt.get("transactionHash"),
        "block_number": hex_to_int(receipt.get("blockNumber")),
        "block_hash": receipt.get("blockHash"),
        "transaction_index": hex_to_int(receipt.get("transactionIndex")),
        "from": receipt.get("from"),
        "to": receipt.get("to"),
        "contract_address": receipt.get("contractAddress"),
        "status": hex_to_int(receipt.get("status")),
        "gas_used": hex_to_int(receipt.get("gasUsed")),
        "cumulative_gas_used": hex_to_int(receipt.get("cumulativeGasUsed")),
        "effective_gas_price": hex_to_int(receipt.get("effectiveGasPrice")),
        "type": hex_to_int(receipt.get("type")),
        "logs": [_format_log(log) for log in receipt.get("logs", [])],
    }


def _format_block(block: dict) -> dict[str, Any]:
    """Extract key fields from a block object."""
    txs = block.get("transactions", [])
    transactions = [tx if isinstance(tx, str) else _format_transaction(tx) for tx in txs]
    return {
        "number": hex_to_int(block.get("number")),
        "hash": block.get("hash"),
        "parent_hash": block.get("parentHash"),
        "timestamp": hex_to_int(block.get("timestamp")),
        "miner": block.get("miner"),
        "gas_used": hex_to_int(block.get("gasUsed")),
        "gas_limit": hex_to_int(block.get("gasLimit")),
        "base_fee_per_gas": hex_to_int(block.get("baseFeePerGas")),
        "transaction_count": len(transactions),
        "transactions": transactions,
    }


# ---------------------------------------------------------------------------
# Revert reason decoding
# ---------------------------------------------------------------------------


def _extract_revert_data(data: Any) -> str | None:
    # Nodes differ: geth returns the payload as a string, others nest it.
    if isinstance(data, str) and data.startswith("0x"):
        return data
    if isinstance(data, dict):
        for key in ("data", "result"):
            nested = _extract_revert_data(data.get(key))
            if nested:
                return nested
    return None


def _decode_error_string(payload: bytes) -> str | None:
    if len(payload) < 64:
        return None
    offset = int.from_bytes(payload[:32], "big")
    if offset + 32 > len(payload):
        return None
    length = int.from_bytes(payload[offset : offset + 32], "big")
    raw = payload[offset + 32 : offset + 32 + length]
    if len(raw) != length:
        return None
    return raw.decode("utf-8", errors="replace")


def decode_revert_reason(data: Any = None, message: str | None = None) -> str:
    """
    Recover a human-readable revert reason from a failed eth_call.

    Prefers the ABI-encoded revert payload; falls back to the node's
    "execution reverted: <reason>" message, then to "Unknown".
    """
    hex_data = _extract_revert_data(data)
    if hex_data and len(hex_data) >= 10:
        selector = hex_data[:10].lower()
        try:
            payload = bytes.fromhex(hex_data[10:])
        except ValueError:
            payload = b""
        if selector == ERROR_STRING_SELECTOR:
            reason = _decode_error_string(payload)
            if reason:
                return reason
        elif selector == PANIC_SELECTOR and len(payload) >= 32:
            code = int.from_bytes(payload[:32], "big")
            description = PANIC_CODES.get(code, "unknown panic code")
            return f"Panic({hex(code)}): {description}"
        else:
            return f"Custom error {selector}"

    if message:
        prefix = "execution reverted:"
        lowered = message.lower()
        if lowered.startswith(prefix):
            reason = message[len(prefix) :].strip()
            if reason:
                return reason
    return UNKNOWN_REVERT_REASON


# ---------------------------------------------------------------------------
# Chain reader
# ---------------------------------------------------------------------------


class ChainReader:
    """Read-only query surface over the ledger, backed by JSON-RPC."""

    def __init__(self, cfg: EthConfig) -> None:
        self.cfg = cfg

    def current_block_height(self) -> int:
        return hex_to_int(_rpc_call(self.cfg, "eth_blockNumber"))

    def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        receipt = _rpc_call(self.cfg, "eth_getTransactionReceipt", [tx_hash])
        # Some nodes return a receipt stub for pending transactions.
        if not receipt or receipt.get("blockNumber") is None:
            return None
        return _format_receipt(receipt)

    def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        tx = _rpc_call(self.cfg, "eth_getTransactionByHash", [tx_hash])
        if not tx:
            return None
        return _format_transaction(tx)

    def get_block(
        self, number: int | str, include_transactions: bool = False
    ) -> dict[str, Any] | None:
        block = _rpc_call(
            self.cfg,
            "eth_getBlockByNumber",
            [normalize_block(number), include_transactions],
        )
        if not block:
            return None
        return _format_block(block)

    def get_block_by_hash(
        self, block_hash: str, include_transactions: bool = False
    ) -> dict[str, Any] | None:
        block = _rpc_call(
            self.cfg, "eth_getBlockByHash", [block_hash, include_transactions]
        )
        if not block:
            return None
        return _format_block(block)

    def get_transaction_count(self, address: str, block: int | str = "latest") -> int:
        return hex_to_int(
            _rpc_call(
                self.cfg, "eth_getTransactionCount", [address, normalize_block(block)]
            )
        )

    def simulate_call(
        self,
        sender: str | None,
        to: str | None,
        data: str | None,
        value: int | None,
        at_block: int | str,
    ) -> str:
        """
        Re-execute a call at a historical block. Never mutates state.

        Returns the raw return data; raises RpcError when the call reverts.
        """
        call: dict[str, Any] = {}
        if sender:
            call["from"] = sender
        if to:
            call["to"] = to
        if data and data != "0x":
            call["data"] = data
        if value:
            call["value"] = hex(value)
        return _rpc_call(self.cfg, "eth_call", [call, normalize_block(at_block)])


# ---------------------------------------------------------------------------
# Single-call tools
# ---------------------------------------------------------------------------


def eth_get_block_number(cfg: EthConfig) -> dict[str, Any]:
    return {"block_number": ChainReader(cfg).current_block_height()}


def eth_get_chain_id(cfg: EthConfig) -> dict[str, Any]:
    return {"chain_id": hex_to_int(_rpc_call(cfg, "eth_chainId"))}


def eth_get_balance(
    cfg: EthConfig, address: str, block_tag: Any = None
) -> dict[str, Any]:
    address = validate_address(address)
    balance = hex_to_int(
        _rpc_call(cfg, "eth_getBalance", [address, normalize_block(block_tag)])
    )
    return {
        "address": address,
        "block_tag": block_tag or "latest",
        "balance_wei": str(balance),
        "balance_eth": wei_to_ether(balance),
    }


def eth_get_gas_price(cfg: EthConfig) -> dict[str, Any]:
    gas_price = hex_to_int(_rpc_call(cfg, "eth_gasPrice"))
    result: dict[str, Any] = {
        "gas_price_wei": str(gas_price),
        "gas_price_gwei": wei_to_gwei(gas_price),
    }
    # Pre-London nodes do not implement eth_maxPriorityFeePerGas.
    try:
        priority = hex_to_int(_rpc_call(cfg, "eth_maxPriorityFeePerGas"))
    except (RpcError, requests.RequestException) as exc:
        _LOGGER.debug("eth_maxPriorityFeePerGas unavailable: %s", exc)
        priority = None
    if priority is not None:
        result["max_priority_fee_per_gas_wei"] = str(priority)
        result["max_priority_fee_per_gas_gwei"] = wei_to_gwei(priority)
    return result


def eth_get_fee_history(
    cfg: EthConfig,
    block_count: int,
    newest_block: Any = "latest",
    reward_percentiles: list[float] | None = None,
) -> dict[str, Any]:
    if block_count < 1:
        raise ValueError("Invalid block_count. Must be at least 1.")
    percentiles = reward_percentiles if reward_percentiles is not None else [25, 50, 75]
    history = _rpc_call(
        cfg,
        "eth_feeHistory",
        [hex(block_count), normalize_block(newest_block), percentiles],
    )
    return {
        "oldest_block": hex_to_int(history.get("oldestBlock")),
        "base_fee_per_gas": [str(hex_to_int(fee)) for fee in history.get("baseFeePerGas", [])],
        "gas_used_ratio": history.get("gasUsedRatio", []),
        "reward": [
            [str(hex_to_int(r)) for r in rewards] for rewards in history.get("reward") or []
        ],
        "reward_percentiles": percentiles,
    }


def eth_get_code(cfg: EthConfig, address: str, block_tag: Any = None) -> dict[str, Any]:
    address = validate_address(address)
    code = _rpc_call(cfg, "eth_getCode", [address, normalize_block(block_tag)]) or "0x"
    is_contract = code != "0x"
    return {
        "address": address,
        "block_tag": block_tag or "latest",
        "is_contract": is_contract,
        "code_size_bytes": (len(code) - 2) // 2,
        "code": code if is_contract else None,
    }


def eth_get_storage_at(
    cfg: EthConfig, address: str, slot: Any, block_tag: Any = None
) -> dict[str, Any]:
    address = validate_address(address)
    if isinstance(slot, int) and not isinstance(slot, bool):
        slot_hex = hex(slot)
    elif isinstance(slot, str) and slot.strip().isdigit():
        slot_hex = hex(int(slot.strip()))
    elif isinstance(slot, str) and re.match(r"^0x[a-fA-F0-9]+$", slot.strip()):
        slot_hex = slot.strip()
    else:
        raise ValueError("Invalid slot. Use an integer or a 0x-prefixed hex value.")

    storage = _rpc_call(
        cfg, "eth_getStorageAt", [address, slot_hex, normalize_block(block_tag)]
    ) or "0x"
    return {
        "address": address,
        "slot": slot_hex,
        "block_tag": block_tag or "latest",
        "storage": storage,
        "storage_as_number": str(int(storage, 16)) if storage != "0x" else "0",
    }


def eth_get_transaction(cfg: EthConfig, tx_hash: str) -> dict[str, Any]:
    tx_hash = validate_tx_hash(tx_hash, "tx_hash")
    tx = ChainReader(cfg).get_transaction(tx_hash)
    if tx is None:
        raise RuntimeError(f"Transaction {tx_hash} not found.")
    return tx


def eth_get_transaction_receipt(cfg: EthConfig, tx_hash: str) -> dict[str, Any]:
    tx_hash = validate_tx_hash(tx_hash, "tx_hash")
    receipt = ChainReader(cfg).get_receipt(tx_hash)
    if receipt is None:
        raise RuntimeError(f"Transaction {tx_hash} not found or not yet mined.")
    return receipt


def eth_get_transaction_count(
    cfg: EthConfig, address: str, block_tag: Any = None
) -> dict[str, Any]:
    address = validate_address(address)
    count = ChainReader(cfg).get_transaction_count(address, block_tag or "latest")
    return {
        "address": address,
        "block_tag": block_tag or "latest",
        "transaction_count": count,
    }


def eth_get_transaction_logs(
    cfg: EthConfig, tx_hash: str, event_abis: list[Any] | None = None
) -> dict[str, Any]:
    events = parse_event_abis(event_abis) if event_abis else None
    receipt = eth_get_transaction_receipt(cfg, tx_hash)
    logs = receipt["logs"]
    return {
        "transaction_hash": receipt["transaction_hash"],
        "block_number": receipt["block_number"],
        "from": receipt["from"],
        "to": receipt["to"],
        "status": "success" if receipt["status"] == 1 else "reverted",
        "total_logs": len(logs),
        "logs": decode_logs(events, logs) if events else logs,
    }


def eth_get_block(
    cfg: EthConfig,
    block_number: Any = None,
    block_hash: str | None = None,
    include_transactions: bool = False,
) -> dict[str, Any]:
    reader = ChainReader(cfg)
    if block_hash:
        block_hash = validate_tx_hash(block_hash, "block_hash")
        block = reader.get_block_by_hash(block_hash, include_transactions)
        label = block_hash
    else:
        block = reader.get_block(
            block_number if block_number is not None else "latest",
            include_transactions,
        )
        label = block_number if block_number is not None else "latest"
    if block is None:
        raise RuntimeError(f"Block {label} not found.")
    return block


def eth_get_latest_block(cfg: EthConfig) -> dict[str, Any]:
    return eth_get_block(cfg, "latest")


def eth_get_logs(
    cfg: EthConfig,
    address: str | None = None,
    from_block: Any = None,
    to_block: Any = None,
    topics: list[Any] | None = None,
    event_abis: list[Any] | None = None,
) -> dict[str, Any]:
    events = parse_event_abis(event_abis) if event_abis else None
    log_filter: dict[str, Any] = {
        "fromBlock": normalize_block(from_block),
        "toBlock": normalize_block(to_block),
    }
    if address:
        log_filter["address"] = validate_address(address)
    if topics:
        log_filter["topics"] = topics
    logs = [_format_log(log) for log in _rpc_call(cfg, "eth_getLogs", [log_filter]) or []]
    return {
        "address": address,
        "from_block": from_block if from_block is not None else "latest",
        "to_block": to_block if to_block is not None else "latest",
        "total_logs": len(logs),
        "logs": decode_logs(events, logs) if events else logs,
    }


def _build_call(
    to: str,
    data: str | None,
    sender: str | None,
    value: Any,
) -> dict[str, Any]:
    call: dict[str, Any] = {"to": validate_address(to, "to")}
    if data:
        call["data"] = validate_hex_data(data)
    if sender:
        call["from"] = validate_address(sender, "from")
    if value is not None:
        call["value"] = hex(_parse_wei(value, "value"))
    return call


def eth_call_contract(
    cfg: EthConfig,
    to: str,
    data: str | None = None,
    sender: str | None = None,
    value: Any = None,
    block_tag: Any = None,
    abi: Any = None,
    args: list[Any] | None = None,
) -> dict[str, Any]:
    """
    Read-only eth_call with either raw calldata or a function ABI and args.

    With an ABI the calldata is encoded from `args` and the return data is
    decoded against the function's outputs.
    """
    if (data is None) == (abi is None):
        raise ValueError("Provide exactly one of 'data' or 'abi'.")
    if args is not None and abi is None:
        raise ValueError("'args' requires 'abi'.")

    function = None
    if abi is not None:
        function = parse_function_abi(abi)
        data = encode_function_call(function, args)

    call = _build_call(to, data, sender, value)
    result = _rpc_call(cfg, "eth_call", [call, normalize_block(block_tag)])
    response = {
        "to": call["to"],
        "data": call.get("data", "0x"),
        "block_tag": block_tag or "latest",
        "result": result,
    }
    if function is not None:
        response["function_name"] = function.name
        response["decoded"] = decode_function_result(function, result)
    return response


def eth_estimate_gas(
    cfg: EthConfig,
    to: str,
    data: str | None = None,
    sender: str | None = None,
    value: Any = None,
    block_tag: Any = None,
) -> dict[str, Any]:
    call = _build_call(to, data, sender, value)
    params: list[Any] = [call]
    if block_tag is not None:
        params.append(normalize_block(block_tag))
    gas = hex_to_int(_rpc_call(cfg, "eth_estimateGas", params))
    return {
        "to": call["to"],
        "from": call.get("from"),
        "value_wei": str(hex_to_int(call.get("value", "0x0"))),
        "gas_estimate": gas,
    }


def eth_send_raw_transaction(cfg: EthConfig, raw_transaction: str) -> dict[str, Any]:
    raw = validate_hex_data(raw_transaction, "raw_transaction")
    if raw == "0x":
        raise ValueError("Invalid raw_transaction. Signed transaction bytes are empty.")
    tx_hash = _rpc_call(cfg, "eth_sendRawTransaction", [raw])
    return {
        "status": "sent",
        "transaction_hash": tx_hash,
        "message": (
            "Transaction sent successfully. Use wait_for_transaction_confirmation "
            f"to monitor it: {tx_hash}"
        ),
    }
