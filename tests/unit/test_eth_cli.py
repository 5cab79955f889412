"""
Unit tests for the eth-tools command line.
"""

import json
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

import eth_cli as cli  # noqa: E402
import eth_mcp_server  # noqa: E402
from eth_tx_monitor import Confirmed, TimedOut  # noqa: E402


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TX_HASH = "0x" + "ab" * 32
ADDRESS = "0x" + "11" * 20
RPC = ["--rpc-url", "http://localhost:8545"]


def _fake_wait(outcome, seen=None):
    async def fake_wait(reader, request, reporter=None, cancel_event=None, **options):
        if seen is not None:
            seen.update(request=request, reporter=reporter, cancel_event=cancel_event)
        return outcome

    return fake_wait


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def test_parser_wait_defaults():
    args = cli.build_parser().parse_args(
        ["wait-for-transaction-confirmation", "--hash", TX_HASH]
    )
    assert args.hash == TX_HASH
    assert args.confirmations == 1
    assert args.interval is None
    assert args.timeout is None


def test_parser_block_and_topics_arguments():
    args = cli.build_parser().parse_args(
        ["get-logs", "--from-block", "100", "--to-block", "latest", "--topics", '["0xaa", null]']
    )
    assert args.from_block == 100
    assert args.to_block == "latest"
    assert args.topics == ["0xaa", None]


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


# ---------------------------------------------------------------------------
# Confirmation monitor
# ---------------------------------------------------------------------------


def test_wait_confirmed_exit_ok(monkeypatch, capsys):
    outcome = Confirmed(
        transaction_hash=TX_HASH,
        block_number=100,
        block_timestamp=1_700_000_000,
        confirmations=2,
        receipt={"status": 1},
    )
    seen = {}
    monkeypatch.setattr(cli, "wait_for_transaction_confirmation", _fake_wait(outcome, seen))

    code = cli.main(
        RPC
        + [
            "wait-for-transaction-confirmation",
            "--hash", TX_HASH,
            "--confirmations", "2",
            "--interval", "3",
            "--timeout", "90",
        ]
    )

    assert code == cli.EXIT_OK
    data = json.loads(capsys.readouterr().out)
    assert data["status"] == "confirmed"
    assert data["confirmations"] == 2
    assert seen["request"].expected_confirmations == 2
    assert seen["request"].poll_interval == 3.0
    assert seen["request"].timeout == 90.0
    assert isinstance(seen["reporter"], cli.ConsoleStatusReporter)
    assert seen["cancel_event"] is not None


def test_wait_timeout_exit_code(monkeypatch, capsys):
    outcome = TimedOut(transaction_hash=TX_HASH, message="Timeout reached after 1 seconds")
    monkeypatch.setattr(cli, "wait_for_transaction_confirmation", _fake_wait(outcome))

    code = cli.main(RPC + ["wait-for-transaction-confirmation", "--hash", TX_HASH])

    assert code == cli.EXIT_NOT_CONFIRMED
    assert json.loads(capsys.readouterr().out)["status"] == "timeout"


def test_wait_invalid_hash_exit_error(capsys):
    code = cli.main(RPC + ["wait-for-transaction-confirmation", "--hash", "0x1234"])

    assert code == cli.EXIT_ERROR
    assert "Error: Invalid hash" in capsys.readouterr().err


def test_missing_rpc_url_exit_error(monkeypatch, capsys):
    monkeypatch.delenv("ETH_RPC_URL", raising=False)

    code = cli.main(["get-block-number"])

    assert code == cli.EXIT_ERROR
    assert "ETH_RPC_URL" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Single-call commands
# ---------------------------------------------------------------------------


def test_get_block_number_prints_json(monkeypatch, capsys):
    monkeypatch.setattr(cli, "eth_get_block_number", lambda cfg: {"block_number": 123})

    assert cli.main(RPC + ["get-block-number"]) == cli.EXIT_OK
    assert json.loads(capsys.readouterr().out) == {"block_number": 123}


def test_get_balance_passes_arguments(monkeypatch, capsys):
    calls = []

    def mock_balance(cfg, address, block_tag=None):
        calls.append((cfg.rpc_url, address, block_tag))
        return {"address": address, "balance_wei": "5"}

    monkeypatch.setattr(cli, "eth_get_balance", mock_balance)

    assert cli.main(RPC + ["get-balance", "--address", ADDRESS, "--block-tag", "100"]) == 0
    assert calls == [("http://localhost:8545", ADDRESS, 100)]


def test_call_contract_maps_from_flag(monkeypatch, capsys):
    calls = []

    def mock_call(cfg, to, data=None, sender=None, value=None, block_tag=None, abi=None, args=None):
        calls.append((to, data, sender, value, block_tag, abi, args))
        return {"result": "0x"}

    monkeypatch.setattr(cli, "eth_call_contract", mock_call)

    code = cli.main(
        RPC + ["call-contract", "--to", ADDRESS, "--data", "0x70a08231", "--from", ADDRESS]
    )

    assert code == cli.EXIT_OK
    assert calls == [(ADDRESS, "0x70a08231", ADDRESS, None, None, None, None)]


def test_call_contract_with_function_abi(monkeypatch, capsys):
    calls = []

    def mock_call(cfg, to, data=None, sender=None, value=None, block_tag=None, abi=None, args=None):
        calls.append((to, data, abi, args))
        return {"result": "0x", "decoded": 5}

    monkeypatch.setattr(cli, "eth_call_contract", mock_call)

    code = cli.main(
        RPC
        + [
            "call-contract",
            "--to", ADDRESS,
            "--abi", "function balanceOf(address owner) returns (uint256)",
            "--args", f'["{ADDRESS}"]',
        ]
    )

    assert code == cli.EXIT_OK
    assert calls == [
        (ADDRESS, None, "function balanceOf(address owner) returns (uint256)", [ADDRESS])
    ]


def test_get_logs_collects_event_abis(monkeypatch, capsys):
    calls = []

    def mock_logs(cfg, address=None, from_block=None, to_block=None, topics=None, event_abis=None):
        calls.append(event_abis)
        return {"logs": []}

    monkeypatch.setattr(cli, "eth_get_logs", mock_logs)

    code = cli.main(
        RPC
        + [
            "get-logs",
            "--event-abi", "event Transfer(address indexed from, address indexed to, uint256 value)",
            "--event-abi", "event Approval(address indexed owner, address indexed spender, uint256 value)",
        ]
    )

    assert code == cli.EXIT_OK
    assert len(calls[0]) == 2
    assert calls[0][0].startswith("event Transfer")

def test_large_integers_printed_as_strings(monkeypatch, capsys):
    monkeypatch.setattr(cli, "eth_get_gas_price", lambda cfg: {"wei": 2**64})

    cli.main(RPC + ["get-gas-price"])

    assert json.loads(capsys.readouterr().out) == {"wei": str(2**64)}


def test_backend_error_exit_error(monkeypatch, capsys):
    def boom(cfg, tx_hash):
        raise RuntimeError(f"Transaction {tx_hash} not found.")

    monkeypatch.setattr(cli, "eth_get_transaction", boom)

    code = cli.main(RPC + ["get-transaction", "--tx-hash", TX_HASH])

    assert code == cli.EXIT_ERROR
    assert "not found" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Contract ABI
# ---------------------------------------------------------------------------


def test_encode_calldata_needs_no_rpc_endpoint(monkeypatch, capsys):
    monkeypatch.delenv("ETH_RPC_URL", raising=False)

    code = cli.main(
        [
            "encode-calldata",
            "--abi", "function transfer(address to, uint256 amount)",
            "--args", f'["{ADDRESS}", "1000"]',
        ]
    )

    assert code == cli.EXIT_OK
    data = json.loads(capsys.readouterr().out)
    assert data["function_name"] == "transfer"
    assert data["calldata"].startswith("0xa9059cbb")
    assert data["calldata"].endswith(format(1000, "064x"))


def test_decode_calldata_prints_arguments(monkeypatch, capsys):
    monkeypatch.delenv("ETH_RPC_URL", raising=False)
    calldata = "0x70a08231" + "00" * 12 + "11" * 20

    code = cli.main(
        ["decode-calldata", "--data", calldata, "--abi", "function balanceOf(address owner)"]
    )

    assert code == cli.EXIT_OK
    data = json.loads(capsys.readouterr().out)
    assert data["named_args"]["owner"].lower() == ADDRESS


def test_encode_calldata_rejects_event_abi(capsys):
    code = cli.main(["encode-calldata", "--abi", "event Transfer(address indexed from)"])

    assert code == cli.EXIT_ERROR
    assert "Provided ABI is not a function" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# MCP server
# ---------------------------------------------------------------------------


def test_serve_uses_rpc_url_flag(monkeypatch):
    # setenv first so monkeypatch restores the variable after the test.
    monkeypatch.setenv("ETH_RPC_URL", "http://placeholder")
    monkeypatch.delenv("ETH_RPC_URL")
    seen = {}

    async def fake_serve():
        seen["rpc_url"] = cli.EthConfig.from_env().rpc_url

    monkeypatch.setattr(eth_mcp_server, "main", fake_serve)

    code = cli.main(RPC + ["serve"])

    assert code == cli.EXIT_OK
    assert seen["rpc_url"] == "http://localhost:8545"


def test_serve_without_flag_keeps_environment(monkeypatch):
    monkeypatch.setenv("ETH_RPC_URL", "http://node.internal:8545")
    seen = {}

    async def fake_serve():
        seen["rpc_url"] = cli.EthConfig.from_env().rpc_url

    monkeypatch.setattr(eth_mcp_server, "main", fake_serve)

    assert cli.main(["serve"]) == cli.EXIT_OK
    assert seen["rpc_url"] == "http://node.internal:8545"
