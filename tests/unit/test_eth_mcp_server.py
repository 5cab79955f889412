"""
Unit tests for the Ethereum MCP server.

Tests cover:
- Tool registration
- Dispatch errors (unknown tool, bad arguments, backend failures)
- wait_for_transaction_confirmation envelopes for every outcome
- Single-call tool handlers
- ABI calldata tools and ABI-aware call_contract / log handlers
"""

import asyncio
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

import eth_mcp_server as server  # noqa: E402
from eth_tx_monitor import Cancelled, Replaced, TimedOut  # noqa: E402


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TX_HASH = "0x" + "ab" * 32
OTHER_HASH = "0x" + "cd" * 32
ADDRESS = "0x" + "11" * 20


def _parse(response):
    return json.loads(response[0].text)


class DummyEthCfg:
    rpc_url = "http://localhost:8545"
    rpc_timeout = 15.0
    poll_interval = 0.01
    monitor_timeout = 0.05
    max_scan_blocks = 32


def _make_dummy_cfg(*_a, **_kw):
    return DummyEthCfg()


def _patch_cfg(monkeypatch):
    monkeypatch.setattr(
        server, "EthConfig",
        type("EthConfig", (), {"from_env": classmethod(_make_dummy_cfg)}),
    )


class StaticChain:
    def __init__(self, height, receipt=None):
        self.height = height
        self.receipt = receipt

    def current_block_height(self):
        return self.height

    def get_receipt(self, tx_hash):
        return self.receipt

    def get_transaction(self, tx_hash):
        return None

    def get_block(self, number, include_transactions=False):
        return {"number": number, "timestamp": 1_700_000_000, "transactions": []}

    def simulate_call(self, sender, to, data, value, at_block):
        return "0x"


def _patch_chain(monkeypatch, chain):
    monkeypatch.setattr(server, "ChainReader", lambda cfg: chain)


def _receipt(block_number, status=1):
    return {
        "transaction_hash": TX_HASH,
        "block_number": block_number,
        "status": status,
        "gas_used": 21000,
        "effective_gas_price": 2**60,
        "logs": [],
    }


# ---------------------------------------------------------------------------
# Tool list
# ---------------------------------------------------------------------------


def test_tools_in_tool_list():
    tools = asyncio.run(server.list_tools())
    names = {t.name for t in tools}
    expected = {
        "wait_for_transaction_confirmation",
        "get_block_number",
        "get_chain_id",
        "get_balance",
        "get_gas_price",
        "get_fee_history",
        "get_code",
        "get_storage_at",
        "get_transaction",
        "get_transaction_receipt",
        "get_transaction_count",
        "get_transaction_logs",
        "get_block",
        "get_latest_block",
        "get_logs",
        "call_contract",
        "estimate_gas",
        "send_raw_transaction",
        "encode_calldata",
        "decode_calldata",
    }
    assert expected.issubset(names), f"Missing: {expected - names}"
    assert len(tools) == 20


def test_wait_tool_schema_requires_hash():
    tools = asyncio.run(server.list_tools())
    tool = next(t for t in tools if t.name == "wait_for_transaction_confirmation")
    assert tool.inputSchema["required"] == ["hash"]
    assert set(tool.inputSchema["properties"]) == {"hash", "confirmations", "interval", "timeout"}


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def test_unknown_tool():
    data = _parse(asyncio.run(server.call_tool("get_uncle", {})))
    assert data["success"] is False
    assert data["error"] == "Unknown tool: get_uncle"


def test_arguments_must_be_object():
    data = _parse(asyncio.run(server.call_tool("get_block_number", None)))
    assert data["success"] is False
    assert "Expected an object" in data["error"]


def test_backend_failure_becomes_error_response(monkeypatch):
    _patch_cfg(monkeypatch)

    def boom(cfg):
        raise RuntimeError("connection refused")

    monkeypatch.setattr(server, "eth_get_block_number", boom)
    data = _parse(asyncio.run(server.call_tool("get_block_number", {})))
    assert data == {"success": False, "error": "connection refused"}


# ---------------------------------------------------------------------------
# wait_for_transaction_confirmation
# ---------------------------------------------------------------------------


def test_wait_requires_valid_hash():
    data = _parse(
        asyncio.run(server.call_tool("wait_for_transaction_confirmation", {"hash": "0x12"}))
    )
    assert data["success"] is False
    assert "Invalid hash" in data["error"]


def test_wait_rejects_bad_confirmations(monkeypatch):
    _patch_cfg(monkeypatch)
    data = _parse(
        asyncio.run(
            server.call_tool(
                "wait_for_transaction_confirmation", {"hash": TX_HASH, "confirmations": 0}
            )
        )
    )
    assert data["success"] is False
    assert "confirmations" in data["error"]


def test_wait_confirmed(monkeypatch):
    _patch_cfg(monkeypatch)
    _patch_chain(monkeypatch, StaticChain(102, _receipt(100)))

    data = _parse(
        asyncio.run(
            server.call_tool(
                "wait_for_transaction_confirmation", {"hash": TX_HASH, "confirmations": 3}
            )
        )
    )

    assert data["success"] is True
    assert data["status"] == "confirmed"
    assert data["confirmations"] == 3
    assert data["block_number"] == 100
    assert data["block_timestamp"] == 1_700_000_000
    # Above 2**53 - 1, so serialized as a string.
    assert data["receipt"]["effective_gas_price"] == str(2**60)


def test_wait_reverted_is_successful_call(monkeypatch):
    _patch_cfg(monkeypatch)
    _patch_chain(monkeypatch, StaticChain(100, _receipt(100, status=0)))

    data = _parse(
        asyncio.run(server.call_tool("wait_for_transaction_confirmation", {"hash": TX_HASH}))
    )

    assert data["success"] is True
    assert data["status"] == "reverted"
    assert data["revert_reason"] == "Unknown"


def test_wait_timeout(monkeypatch):
    _patch_cfg(monkeypatch)
    _patch_chain(monkeypatch, StaticChain(100))

    data = _parse(
        asyncio.run(
            server.call_tool(
                "wait_for_transaction_confirmation",
                {"hash": TX_HASH, "interval": 0.01, "timeout": 0.03},
            )
        )
    )

    assert data["success"] is False
    assert data["status"] == "timeout"
    assert "Timeout reached" in data["error"]
    assert data["transaction_hash"] == TX_HASH


def test_wait_uses_configured_defaults(monkeypatch):
    _patch_cfg(monkeypatch)
    seen = {}

    async def fake_wait(reader, request, reporter=None, cancel_event=None, **options):
        seen["request"] = request
        seen["options"] = options
        return Replaced(
            transaction_hash=request.transaction_hash,
            replaced_by_hash=OTHER_HASH,
            replacement_transaction={"hash": OTHER_HASH},
            reason="repriced",
        )

    monkeypatch.setattr(server, "wait_for_transaction_confirmation", fake_wait)
    data = _parse(
        asyncio.run(server.call_tool("wait_for_transaction_confirmation", {"hash": TX_HASH}))
    )

    assert data["success"] is True
    assert data["status"] == "replaced"
    assert data["replaced_by_hash"] == OTHER_HASH
    assert seen["request"].expected_confirmations == 1
    assert seen["request"].poll_interval == DummyEthCfg.poll_interval
    assert seen["request"].timeout == DummyEthCfg.monitor_timeout
    assert seen["options"] == {"max_scan_blocks": 32}


def test_wait_accepts_string_numbers(monkeypatch):
    _patch_cfg(monkeypatch)
    seen = {}

    async def fake_wait(reader, request, reporter=None, cancel_event=None, **options):
        seen["request"] = request
        return Cancelled(transaction_hash=request.transaction_hash, message="stopped")

    monkeypatch.setattr(server, "wait_for_transaction_confirmation", fake_wait)
    data = _parse(
        asyncio.run(
            server.call_tool(
                "wait_for_transaction_confirmation",
                {"hash": TX_HASH, "confirmations": "2", "interval": "5", "timeout": "60"},
            )
        )
    )

    assert seen["request"].expected_confirmations == 2
    assert seen["request"].poll_interval == 5.0
    assert seen["request"].timeout == 60.0
    assert data["success"] is False
    assert data["status"] == "cancelled"
    assert data["error"] == "stopped"


def test_outcome_response_for_timeout():
    response = server._outcome_response(TimedOut(transaction_hash=TX_HASH, message="late"))
    assert _parse(response) == {
        "status": "timeout",
        "transaction_hash": TX_HASH,
        "message": "late",
        "success": False,
        "error": "late",
    }


def test_status_reporter_outside_request_logs():
    reporter = server._status_reporter()
    assert isinstance(reporter, server.LoggingStatusReporter)


def test_mcp_status_reporter_sends_log_notification():
    sent = []

    class Session:
        async def send_log_message(self, level, data, logger=None):
            sent.append((level, data, logger))

    asyncio.run(server.McpStatusReporter(Session()).report("Transaction mined"))
    assert sent == [("info", "Transaction mined", "eth_tx_monitor")]


# ---------------------------------------------------------------------------
# Single-call tools
# ---------------------------------------------------------------------------


def test_get_block_number(monkeypatch):
    _patch_cfg(monkeypatch)
    monkeypatch.setattr(server, "eth_get_block_number", lambda cfg: {"block_number": 19_000_000})

    data = _parse(asyncio.run(server.call_tool("get_block_number", {})))
    assert data == {"block_number": 19_000_000, "success": True}


def test_get_balance_passes_block_tag(monkeypatch):
    _patch_cfg(monkeypatch)
    calls = []

    def mock_balance(cfg, address, block_tag=None):
        calls.append((address, block_tag))
        return {"address": address, "balance_wei": "1", "balance_eth": "1E-18"}

    monkeypatch.setattr(server, "eth_get_balance", mock_balance)
    data = _parse(
        asyncio.run(server.call_tool("get_balance", {"address": ADDRESS, "block_tag": "safe"}))
    )

    assert data["success"] is True
    assert calls == [(ADDRESS, "safe")]


def test_get_balance_missing_address():
    data = _parse(asyncio.run(server.call_tool("get_balance", {})))
    assert data == {"success": False, "error": "Missing 'address' parameter."}


def test_get_transaction_validates_hash():
    data = _parse(asyncio.run(server.call_tool("get_transaction", {"tx_hash": "0xnothex"})))
    assert data["success"] is False
    assert "Invalid tx_hash" in data["error"]


def test_get_transaction_receipt(monkeypatch):
    _patch_cfg(monkeypatch)
    monkeypatch.setattr(
        server, "eth_get_transaction_receipt", lambda cfg, tx_hash: _receipt(100)
    )
    data = _parse(asyncio.run(server.call_tool("get_transaction_receipt", {"tx_hash": TX_HASH})))

    assert data["success"] is True
    assert data["block_number"] == 100


def test_get_fee_history_requires_count():
    data = _parse(asyncio.run(server.call_tool("get_fee_history", {"block_count": 0})))
    assert data["success"] is False
    assert "block_count" in data["error"]


def test_get_logs_rejects_non_list_topics():
    data = _parse(asyncio.run(server.call_tool("get_logs", {"topics": "0xabc"})))
    assert data == {"success": False, "error": "Invalid topics. Expected a list."}


def test_get_block_by_hash(monkeypatch):
    _patch_cfg(monkeypatch)
    calls = []

    def mock_block(cfg, block_number=None, block_hash=None, include_transactions=False):
        calls.append((block_number, block_hash, include_transactions))
        return {"number": 100, "hash": block_hash}

    monkeypatch.setattr(server, "eth_get_block", mock_block)
    data = _parse(
        asyncio.run(
            server.call_tool("get_block", {"block_hash": TX_HASH, "include_transactions": True})
        )
    )

    assert data["number"] == 100
    assert calls == [(None, TX_HASH, True)]


def test_call_contract_maps_from(monkeypatch):
    _patch_cfg(monkeypatch)
    calls = []

    def mock_call(cfg, to, data=None, sender=None, value=None, block_tag=None, abi=None, args=None):
        calls.append((to, data, sender, value, block_tag, abi, args))
        return {"to": to, "data": data, "result": "0x01"}

    monkeypatch.setattr(server, "eth_call_contract", mock_call)
    data = _parse(
        asyncio.run(
            server.call_tool(
                "call_contract", {"to": ADDRESS, "data": "0x70a08231", "from": ADDRESS}
            )
        )
    )

    assert data["result"] == "0x01"
    assert calls == [(ADDRESS, "0x70a08231", ADDRESS, None, None, None, None)]


def test_call_contract_passes_abi_and_args(monkeypatch):
    _patch_cfg(monkeypatch)
    calls = []

    def mock_call(cfg, to, data=None, sender=None, value=None, block_tag=None, abi=None, args=None):
        calls.append((to, data, abi, args, block_tag))
        return {"to": to, "result": "0x" + "00" * 31 + "05", "decoded": 5}

    monkeypatch.setattr(server, "eth_call_contract", mock_call)
    abi = "function balanceOf(address owner) view returns (uint256)"
    data = _parse(
        asyncio.run(
            server.call_tool(
                "call_contract",
                {"to": ADDRESS, "abi": abi, "args": [ADDRESS], "block_tag": "safe"},
            )
        )
    )

    assert data["success"] is True
    assert data["decoded"] == 5
    assert calls == [(ADDRESS, None, abi, [ADDRESS], "safe")]


def test_call_contract_schema_accepts_abi():
    tools = asyncio.run(server.list_tools())
    tool = next(t for t in tools if t.name == "call_contract")
    assert tool.inputSchema["required"] == ["to"]
    assert {"data", "abi", "args"} <= set(tool.inputSchema["properties"])


def test_call_contract_rejects_non_list_args():
    data = _parse(
        asyncio.run(
            server.call_tool(
                "call_contract", {"to": ADDRESS, "abi": "function f(uint256)", "args": "1"}
            )
        )
    )
    assert data == {"success": False, "error": "Invalid args. Expected a list."}


def test_get_logs_passes_event_abis(monkeypatch):
    _patch_cfg(monkeypatch)
    calls = []

    def mock_logs(cfg, address=None, from_block=None, to_block=None, topics=None, event_abis=None):
        calls.append((address, event_abis))
        return {"total_logs": 0, "logs": []}

    monkeypatch.setattr(server, "eth_get_logs", mock_logs)
    abis = ["event Transfer(address indexed from, address indexed to, uint256 value)"]
    data = _parse(
        asyncio.run(server.call_tool("get_logs", {"address": ADDRESS, "event_abis": abis}))
    )

    assert data["success"] is True
    assert calls == [(ADDRESS, abis)]


def test_get_transaction_logs_passes_event_abis(monkeypatch):
    _patch_cfg(monkeypatch)
    calls = []

    def mock_logs(cfg, tx_hash, event_abis=None):
        calls.append((tx_hash, event_abis))
        return {"transaction_hash": tx_hash, "logs": []}

    monkeypatch.setattr(server, "eth_get_transaction_logs", mock_logs)
    abis = ["event Approval(address indexed owner, address indexed spender, uint256 value)"]
    data = _parse(
        asyncio.run(
            server.call_tool("get_transaction_logs", {"tx_hash": TX_HASH, "event_abis": abis})
        )
    )

    assert data["success"] is True
    assert calls == [(TX_HASH, abis)]


def test_send_raw_transaction(monkeypatch):
    _patch_cfg(monkeypatch)
    monkeypatch.setattr(
        server,
        "eth_send_raw_transaction",
        lambda cfg, raw: {"status": "sent", "transaction_hash": TX_HASH},
    )
    data = _parse(
        asyncio.run(server.call_tool("send_raw_transaction", {"raw_transaction": "0x02f8"}))
    )

    assert data["success"] is True
    assert data["transaction_hash"] == TX_HASH


# ---------------------------------------------------------------------------
# Contract ABI tools
# ---------------------------------------------------------------------------


def test_encode_calldata_tool():
    data = _parse(
        asyncio.run(
            server.call_tool(
                "encode_calldata",
                {"abi": "function transfer(address to, uint256 amount)", "args": [ADDRESS, 1]},
            )
        )
    )

    assert data["success"] is True
    assert data["selector"] == "0xa9059cbb"
    assert data["calldata"] == (
        "0xa9059cbb" + "00" * 12 + "11" * 20 + format(1, "064x")
    )


def test_decode_calldata_tool():
    calldata = "0xa9059cbb" + "00" * 12 + "11" * 20 + format(2**70, "064x")
    data = _parse(
        asyncio.run(
            server.call_tool(
                "decode_calldata",
                {"data": calldata, "abi": "function transfer(address to, uint256 amount)"},
            )
        )
    )

    assert data["success"] is True
    assert data["function_name"] == "transfer"
    assert data["named_args"]["to"].lower() == ADDRESS
    # Beyond 2**53 amounts are serialised as strings.
    assert data["named_args"]["amount"] == str(2**70)


def test_decode_calldata_requires_abi():
    data = _parse(asyncio.run(server.call_tool("decode_calldata", {"data": "0xa9059cbb"})))
    assert data == {"success": False, "error": "Missing 'abi' parameter."}


def test_encode_calldata_rejects_event_abi():
    data = _parse(
        asyncio.run(
            server.call_tool("encode_calldata", {"abi": "event Transfer(address indexed from)"})
        )
    )
    assert data == {"success": False, "error": "Provided ABI is not a function."}
