"""
Transaction confirmation monitor.

Polls chain state until a transaction is confirmed, reverted, replaced by
another transaction from the same sender with the same nonce, or the timeout
elapses. Every outcome is returned as a value; only errors outside the
transient-error policy propagate to the caller.

Decision logic lives in the pure `advance` transition over `MonitorState`;
`TransactionMonitor` does the reads, status reporting and sleeping around it.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Iterable, Protocol, TextIO, Union

import requests

from eth_rpc import (
    DEFAULT_MAX_SCAN_BLOCKS,
    DEFAULT_MONITOR_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    UNKNOWN_REVERT_REASON,
    RpcError,
    decode_revert_reason,
    validate_tx_hash,
)

_LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIRMATIONS = 1
MILESTONES = (25, 50, 75, 100)


# ---------------------------------------------------------------------------
# Request & outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MonitorRequest:
    transaction_hash: str
    expected_confirmations: int = DEFAULT_CONFIRMATIONS
    poll_interval: float = DEFAULT_POLL_INTERVAL
    timeout: float = DEFAULT_MONITOR_TIMEOUT

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "transaction_hash", validate_tx_hash(self.transaction_hash)
        )
        confirmations = self.expected_confirmations
        if isinstance(confirmations, bool) or not isinstance(confirmations, int) or confirmations < 1:
            raise ValueError("Invalid confirmations. Must be a positive integer.")
        for name in ("poll_interval", "timeout"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"Invalid {name}. Must be a positive number of seconds.")


@dataclass(frozen=True)
class _Outcome:
    status: ClassVar[str] = ""
    # False for outcomes the integration layer reports as a failed wait.
    succeeded: ClassVar[bool] = True

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, **asdict(self)}


@dataclass(frozen=True)
class Confirmed(_Outcome):
    status: ClassVar[str] = "confirmed"

    transaction_hash: str
    block_number: int
    block_timestamp: int | None
    confirmations: int
    receipt: dict[str, Any]


@dataclass(frozen=True)
class Reverted(_Outcome):
    status: ClassVar[str] = "reverted"

    transaction_hash: str
    block_number: int
    confirmations: int
    receipt: dict[str, Any]
    revert_reason: str
    gas_used: int | None
    effective_gas_price: int | None
    transaction: dict[str, Any] | None


@dataclass(frozen=True)
class Replaced(_Outcome):
    status: ClassVar[str] = "replaced"

    transaction_hash: str
    replaced_by_hash: str
    replacement_transaction: dict[str, Any]
    reason: str


@dataclass(frozen=True)
class TimedOut(_Outcome):
    status: ClassVar[str] = "timeout"
    succeeded: ClassVar[bool] = False

    transaction_hash: str
    message: str


@dataclass(frozen=True)
class Cancelled(_Outcome):
    status: ClassVar[str] = "cancelled"
    succeeded: ClassVar[bool] = False

    transaction_hash: str
    message: str


MonitorOutcome = Union[Confirmed, Reverted, Replaced, TimedOut, Cancelled]


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class Phase(str, Enum):
    PENDING = "pending"
    INCLUDED = "included"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    REPLACED = "replaced"


TERMINAL_PHASES = frozenset({Phase.CONFIRMED, Phase.REVERTED, Phase.REPLACED})


@dataclass(frozen=True)
class MonitorState:
    phase: Phase = Phase.PENDING
    confirmations: int = 0
    last_milestone: int = 0
    # Sender and nonce of the monitored transaction never change once known.
    original: dict[str, Any] | None = field(default=None, compare=False)
    last_scanned_block: int | None = None


@dataclass(frozen=True)
class Observation:
    """What one poll saw: chain height, receipt and any replacement found."""

    current_block: int
    receipt: dict[str, Any] | None
    replacement: dict[str, Any] | None = None


@dataclass(frozen=True)
class Transition:
    state: MonitorState
    milestones: tuple[int, ...] = ()


def confirmation_count(current_block: int, inclusion_block: int) -> int:
    """Inclusion counts as the first confirmation; a lagging node yields 0."""
    return max(0, current_block - inclusion_block + 1)


def crossed_milestones(
    confirmations: int, expected: int, last_reported: int
) -> tuple[tuple[int, ...], int]:
    if expected <= 1:
        return (), last_reported
    percentage = confirmations * 100 // expected
    crossed = tuple(m for m in MILESTONES if last_reported < m <= percentage)
    if not crossed:
        return (), last_reported
    return crossed, crossed[-1]


def advance(
    state: MonitorState, observation: Observation, expected_confirmations: int
) -> Transition:
    if state.phase in TERMINAL_PHASES:
        raise ValueError(f"Monitor already finished in phase {state.phase.value}.")

    receipt = observation.receipt
    if receipt is None:
        if observation.replacement is not None:
            return Transition(replace(state, phase=Phase.REPLACED))
        return Transition(replace(state, phase=Phase.PENDING))

    confirmations = confirmation_count(observation.current_block, receipt["block_number"])
    if receipt.get("status") == 0:
        return Transition(
            replace(state, phase=Phase.REVERTED, confirmations=confirmations)
        )

    milestones, last_milestone = crossed_milestones(
        confirmations, expected_confirmations, state.last_milestone
    )
    phase = Phase.CONFIRMED if confirmations >= expected_confirmations else Phase.INCLUDED
    return Transition(
        replace(
            state,
            phase=phase,
            confirmations=confirmations,
            last_milestone=last_milestone,
        ),
        milestones,
    )


def find_replacement(
    transactions: Iterable[Any], sender: str | None, nonce: int, tx_hash: str
) -> dict[str, Any] | None:
    if not sender:
        return None
    sender = sender.lower()
    tx_hash = tx_hash.lower()
    for tx in transactions:
        # Blocks fetched without full transactions only carry hashes.
        if not isinstance(tx, dict):
            continue
        if (
            (tx.get("from") or "").lower() == sender
            and tx.get("nonce") == nonce
            and (tx.get("hash") or "").lower() != tx_hash
        ):
            return tx
    return None


def replacement_reason(original: dict[str, Any], replacement: dict[str, Any]) -> str:
    """Classify a replacement the way wallets present it."""
    sender = (original.get("from") or "").lower()
    if (
        (replacement.get("to") or "").lower() == sender
        and not replacement.get("value")
        and replacement.get("input", "0x") in ("0x", "", None)
    ):
        return "cancelled"
    if (
        (replacement.get("to") or "").lower() == (original.get("to") or "").lower()
        and replacement.get("value") == original.get("value")
        and replacement.get("input") == original.get("input")
    ):
        return "repriced"
    return "replaced"


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class ChainReaderLike(Protocol):
    def current_block_height(self) -> int: ...

    def get_receipt(self, tx_hash: str) -> dict[str, Any] | None: ...

    def get_transaction(self, tx_hash: str) -> dict[str, Any] | None: ...

    def get_block(
        self, number: int | str, include_transactions: bool = False
    ) -> dict[str, Any] | None: ...

    def simulate_call(
        self,
        sender: str | None,
        to: str | None,
        data: str | None,
        value: int | None,
        at_block: int | str,
    ) -> str: ...


class StatusReporter(Protocol):
    async def report(self, message: str) -> None: ...


class ConsoleStatusReporter:
    """Writes status lines to a stream (stderr by default)."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream

    async def report(self, message: str) -> None:
        stream = self.stream or sys.stderr
        stream.write(f"[Status] {message}\n")
        stream.flush()


class LoggingStatusReporter:
    async def report(self, message: str) -> None:
        _LOGGER.info(message)


@dataclass(frozen=True)
class TransientErrorPolicy:
    """
    Errors that abandon a single poll instead of the whole wait.

    A transient error is reported and the loop moves on to the timeout check,
    so it still consumes one poll interval of the wall-clock budget; the
    deadline is never extended. Anything else propagates.
    """

    transient_types: tuple[type[BaseException], ...] = (
        RpcError,
        requests.RequestException,
        TimeoutError,
        ConnectionError,
    )

    def is_transient(self, exc: BaseException) -> bool:
        return isinstance(exc, self.transient_types)

    def describe(self, exc: BaseException) -> str:
        return f"Error checking transaction status: {exc}"


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class TransactionMonitor:
    def __init__(
        self,
        reader: ChainReaderLike,
        reporter: StatusReporter | None = None,
        *,
        error_policy: TransientErrorPolicy | None = None,
        max_scan_blocks: int = DEFAULT_MAX_SCAN_BLOCKS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.reader = reader
        self.reporter = reporter or LoggingStatusReporter()
        self.error_policy = error_policy or TransientErrorPolicy()
        self.max_scan_blocks = max(1, max_scan_blocks)
        self._clock = clock
        self._sleep = sleep

    async def wait(
        self,
        request: MonitorRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> MonitorOutcome:
        tx_hash = request.transaction_hash
        state = MonitorState()
        deadline = self._clock() + request.timeout

        while True:
            if cancel_event is not None and cancel_event.is_set():
                return await self._cancelled(tx_hash)

            try:
                outcome, state = await self._poll_once(request, state)
            except Exception as exc:
                if not self.error_policy.is_transient(exc):
                    raise
                _LOGGER.debug("Transient error while polling %s: %s", tx_hash, exc)
                await self._report(self.error_policy.describe(exc))
            else:
                if outcome is not None:
                    return outcome

            remaining = deadline - self._clock()
            if remaining <= 0:
                message = (
                    f"Timeout reached after {request.timeout:g} seconds "
                    f"waiting for transaction {tx_hash}"
                )
                await self._report(message)
                return TimedOut(transaction_hash=tx_hash, message=message)

            await self._pause(min(request.poll_interval, remaining), cancel_event)

    async def _poll_once(
        self, request: MonitorRequest, state: MonitorState
    ) -> tuple[MonitorOutcome | None, MonitorState]:
        tx_hash = request.transaction_hash
        expected = request.expected_confirmations

        current_block = await self._read(self.reader.current_block_height)
        receipt = await self._read(self.reader.get_receipt, tx_hash)

        replacement = None
        if receipt is None:
            state, replacement = await self._check_replacement(tx_hash, current_block, state)

        transition = advance(
            state, Observation(current_block, receipt, replacement), expected
        )
        state = transition.state
        _LOGGER.debug(
            "tx %s at block %s: phase=%s confirmations=%s",
            tx_hash,
            current_block,
            state.phase.value,
            state.confirmations,
        )

        for milestone in transition.milestones:
            await self._report(
                f"Transaction {tx_hash} confirmation progress: {milestone}% "
                f"({min(state.confirmations, expected)}/{expected})"
            )

        if state.phase is Phase.REPLACED:
            return await self._replaced(tx_hash, state.original or {}, replacement), state
        if state.phase is Phase.REVERTED:
            return await self._reverted(tx_hash, receipt, state.confirmations), state
        if state.phase is Phase.CONFIRMED:
            return await self._confirmed(tx_hash, receipt, state.confirmations), state

        if state.phase is Phase.INCLUDED:
            await self._report(
                f"Transaction {tx_hash} included in block {receipt['block_number']}. "
                f"Waiting for {expected - state.confirmations} more confirmations..."
            )
        else:
            await self._report(
                f"Transaction {tx_hash} not yet mined. "
                f"Checking again in {request.poll_interval:g} seconds..."
            )
        return None, state

    async def _check_replacement(
        self, tx_hash: str, current_block: int, state: MonitorState
    ) -> tuple[MonitorState, dict[str, Any] | None]:
        original = state.original
        if original is None:
            original = await self._read(self.reader.get_transaction, tx_hash)
            if original is None or original.get("nonce") is None:
                return state, None
            # Without a sender there is nothing to match a replacement against.
            if not original.get("from"):
                return state, None
            state = replace(state, original=original)

        if state.last_scanned_block is None:
            first = current_block
        else:
            first = max(state.last_scanned_block + 1, current_block - self.max_scan_blocks + 1)

        for number in range(first, current_block + 1):
            block = await self._read(self.reader.get_block, number, True)
            if block is None:
                continue
            found = find_replacement(
                block.get("transactions", []), original["from"], original["nonce"], tx_hash
            )
            if found is not None:
                return replace(state, last_scanned_block=number), found

        last_scanned = current_block
        if state.last_scanned_block is not None:
            last_scanned = max(state.last_scanned_block, current_block)
        return replace(state, last_scanned_block=last_scanned), None

    async def _replaced(
        self, tx_hash: str, original: dict[str, Any], replacement: dict[str, Any]
    ) -> Replaced:
        reason = replacement_reason(original, replacement)
        await self._report(
            f"Transaction {tx_hash} was replaced by {replacement['hash']} ({reason})"
        )
        return Replaced(
            transaction_hash=tx_hash,
            replaced_by_hash=replacement["hash"],
            replacement_transaction=replacement,
            reason=reason,
        )

    async def _reverted(
        self, tx_hash: str, receipt: dict[str, Any], confirmations: int
    ) -> Reverted:
        try:
            transaction = await self._read(self.reader.get_transaction, tx_hash)
        except Exception as exc:
            if not self.error_policy.is_transient(exc):
                raise
            # The revert is already final; report it without the replayed reason.
            _LOGGER.debug("Could not fetch reverted transaction %s: %s", tx_hash, exc)
            transaction = None
        revert_reason = await self._recover_revert_reason(transaction, receipt)
        await self._report(f"Transaction {tx_hash} was reverted: {revert_reason}")
        return Reverted(
            transaction_hash=tx_hash,
            block_number=receipt["block_number"],
            confirmations=confirmations,
            receipt=receipt,
            revert_reason=revert_reason,
            gas_used=receipt.get("gas_used"),
            effective_gas_price=receipt.get("effective_gas_price"),
            transaction=transaction,
        )

    async def _recover_revert_reason(
        self, transaction: dict[str, Any] | None, receipt: dict[str, Any]
    ) -> str:
        if transaction is None:
            return UNKNOWN_REVERT_REASON
        try:
            await self._read(
                self.reader.simulate_call,
                transaction.get("from"),
                transaction.get("to"),
                transaction.get("input"),
                transaction.get("value"),
                receipt["block_number"],
            )
        except RpcError as exc:
            return decode_revert_reason(exc.data, exc.message)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("Revert replay failed for %s: %s", transaction.get("hash"), exc)
            return UNKNOWN_REVERT_REASON
        # The replay succeeded, so the failure depended on in-block ordering.
        return UNKNOWN_REVERT_REASON

    async def _confirmed(
        self, tx_hash: str, receipt: dict[str, Any], confirmations: int
    ) -> Confirmed:
        block = await self._read(self.reader.get_block, receipt["block_number"])
        await self._report(
            f"Transaction {tx_hash} confirmed with {confirmations} confirmations"
        )
        return Confirmed(
            transaction_hash=tx_hash,
            block_number=receipt["block_number"],
            block_timestamp=block.get("timestamp") if block else None,
            confirmations=confirmations,
            receipt=receipt,
        )

    async def _cancelled(self, tx_hash: str) -> Cancelled:
        message = f"Stopped waiting for transaction {tx_hash}: monitor cancelled"
        await self._report(message)
        return Cancelled(transaction_hash=tx_hash, message=message)

    async def _read(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    async def _report(self, message: str) -> None:
        try:
            await self.reporter.report(message)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Status report failed: %s", exc)

    async def _pause(self, delay: float, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is None:
            await self._sleep(delay)
            return
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancel_event.wait())
        _, pending = await asyncio.wait(
            {sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


async def wait_for_transaction_confirmation(
    reader: ChainReaderLike,
    request: MonitorRequest,
    reporter: StatusReporter | None = None,
    cancel_event: asyncio.Event | None = None,
    **monitor_options: Any,
) -> MonitorOutcome:
    monitor = TransactionMonitor(reader, reporter, **monitor_options)
    return await monitor.wait(request, cancel_event)
