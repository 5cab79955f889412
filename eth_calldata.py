"""
Contract ABI handling for calldata and event logs.

Implements:
- Parsing of a single ABI item from a human-readable signature
  ("function transfer(address to, uint256 amount)") or a JSON ABI object
- Function calldata encoding / decoding and eth_call result decoding
- Event log decoding against a list of event ABIs
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable

from eth_abi import decode, encode, is_encodable_type
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import (
    decode_hex,
    encode_hex,
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
    is_address,
    to_checksum_address,
)

_LOGGER = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
_HEX_RE = re.compile(r"^0x(?:[a-fA-F0-9]{2})*$")
_ARRAY_SUFFIX_RE = re.compile(r"^((?:\[\d*\])*)(.*)$", re.DOTALL)
_INT_ALIAS_RE = re.compile(r"^(u?int)((?:\[\d*\])*)$")

ITEM_KINDS = ("function", "event", "error")

# Solidity keywords allowed after a function's parameter list
_FUNCTION_MODIFIERS = {
    "external",
    "public",
    "internal",
    "private",
    "view",
    "pure",
    "payable",
    "nonpayable",
    "virtual",
    "override",
}
_PARAM_MODIFIERS = {"memory", "calldata", "storage", "payable"}


@dataclass(frozen=True)
class AbiParam:
    type: str
    name: str = ""
    indexed: bool = False


@dataclass(frozen=True)
class AbiItem:
    kind: str
    name: str
    inputs: tuple[AbiParam, ...]
    outputs: tuple[AbiParam, ...] = ()
    anonymous: bool = False

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(param.type for param in self.inputs)})"

    @property
    def selector(self) -> str:
        return encode_hex(function_signature_to_4byte_selector(self.signature))

    @property
    def topic(self) -> str:
        return encode_hex(event_signature_to_log_topic(self.signature))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _read_group(text: str, start: int) -> tuple[str, str]:
    """Return the contents of the parenthesised group at `start` and the rest."""
    depth = 0
    for index in range(start, len(text)):
        char = text[index]
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return text[start + 1 : index], text[index + 1 :]
    raise ValueError(f"Invalid ABI. Unbalanced parentheses in {text!r}.")


def _split_top_level(text: str) -> list[str]:
    if not text.strip():
        return []
    parts = []
    depth = 0
    current = ""
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += char
    parts.append(current.strip())
    if any(not part for part in parts):
        raise ValueError(f"Invalid ABI. Empty parameter in {text!r}.")
    return parts


def _canonical_type(type_str: str) -> str:
    match = _INT_ALIAS_RE.match(type_str)
    if match:
        return f"{match.group(1)}256{match.group(2)}"
    return type_str


def _check_type(type_str: str) -> str:
    if not is_encodable_type(type_str):
        raise ValueError(f"Invalid ABI. Unsupported type {type_str!r}.")
    return type_str


def _parse_param(text: str, kind: str) -> AbiParam:
    if text.startswith("tuple("):
        text = text[len("tuple") :]
    if text.startswith("("):
        group, rest = _read_group(text, 0)
        members = [_parse_param(part, "tuple") for part in _split_top_level(group)]
        inner = ",".join(member.type for member in members)
        suffix, rest = _ARRAY_SUFFIX_RE.match(rest).groups()
        type_str = f"({inner}){suffix}"
        words = rest.split()
    else:
        words = text.split()
        type_str = _canonical_type(words.pop(0))

    name = ""
    indexed = False
    for word in words:
        if word == "indexed" and kind == "event":
            indexed = True
        elif word in _PARAM_MODIFIERS:
            continue
        elif not name and _IDENTIFIER_RE.match(word):
            name = word
        else:
            raise ValueError(f"Invalid ABI parameter {text!r}.")
    return AbiParam(_check_type(type_str), name, indexed)


def _parse_signature(text: str) -> AbiItem:
    kind = "function"
    for prefix in ITEM_KINDS:
        if text.startswith(prefix + " "):
            kind = prefix
            text = text[len(prefix) :].strip()
            break

    paren = text.find("(")
    name = text[:paren].strip() if paren > 0 else ""
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(
            f"Invalid ABI signature {text!r}. "
            'Expected e.g. "function transfer(address to, uint256 amount)".'
        )
    group, rest = _read_group(text, paren)
    inputs = tuple(_parse_param(part, kind) for part in _split_top_level(group))

    outputs: tuple[AbiParam, ...] = ()
    anonymous = False
    rest = rest.strip()
    while rest:
        if kind == "function" and rest.startswith("returns"):
            after = rest[len("returns") :].lstrip()
            if not after.startswith("("):
                raise ValueError(f"Invalid ABI signature {text!r}. Malformed returns clause.")
            group, rest = _read_group(after, 0)
            outputs = tuple(_parse_param(part, "output") for part in _split_top_level(group))
        else:
            word, _, rest = rest.partition(" ")
            if kind == "event" and word == "anonymous":
                anonymous = True
            elif kind != "function" or word not in _FUNCTION_MODIFIERS:
                raise ValueError(f"Invalid ABI signature {text!r}. Unexpected {word!r}.")
        rest = rest.strip()

    return AbiItem(kind, name, inputs, outputs, anonymous)


def _json_param(param: Any) -> AbiParam:
    if not isinstance(param, dict):
        raise ValueError("Invalid ABI JSON. Parameters must be objects.")
    type_str = param.get("type") or ""
    if type_str.startswith("tuple"):
        inner = ",".join(_json_param(c).type for c in param.get("components") or [])
        type_str = f"({inner}){type_str[len('tuple'):]}"
    return AbiParam(
        _check_type(_canonical_type(type_str)),
        param.get("name") or "",
        bool(param.get("indexed", False)),
    )


def _parse_json(data: Any) -> AbiItem:
    if not isinstance(data, dict):
        raise ValueError("Invalid ABI JSON. Expected a single ABI object.")
    kind = data.get("type", "function")
    name = data.get("name") or ""
    if kind not in ITEM_KINDS or not name:
        raise ValueError(f"Invalid ABI JSON. Unsupported item of type {kind!r}.")
    return AbiItem(
        kind,
        name,
        tuple(_json_param(p) for p in data.get("inputs") or []),
        tuple(_json_param(p) for p in data.get("outputs") or []),
        bool(data.get("anonymous", False)),
    )


def parse_abi_item(abi: Any) -> AbiItem:
    """
    Parse one function, event or error ABI.

    Accepts a human-readable Solidity signature, a JSON ABI object, or that
    object serialised as a JSON string. A bare "name(types)" signature is
    read as a function.
    """
    if isinstance(abi, dict):
        return _parse_json(abi)
    if not isinstance(abi, str) or not abi.strip():
        raise ValueError("Invalid ABI. Expected a signature string or JSON ABI object.")
    text = " ".join(abi.split())
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ValueError(f"Invalid ABI JSON: {exc}") from exc
        return _parse_json(data)
    return _parse_signature(text)


def parse_function_abi(abi: Any) -> AbiItem:
    item = parse_abi_item(abi)
    if item.kind != "function":
        raise ValueError("Provided ABI is not a function.")
    return item


def parse_event_abis(abis: Iterable[Any]) -> list[AbiItem]:
    events = []
    for abi in abis:
        item = parse_abi_item(abi)
        if item.kind != "event":
            raise ValueError(f"Provided ABI {item.signature} is not an event.")
        events.append(item)
    return events


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------


def _split_array(type_str: str) -> tuple[str, str | None]:
    """Split "uint256[2][]" into ("uint256[2]", "")."""
    if type_str.endswith("]"):
        start = type_str.rindex("[")
        return type_str[:start], type_str[start + 1 : -1]
    return type_str, None


def _tuple_members(type_str: str) -> list[str]:
    return _split_top_level(type_str[1:-1])


def _hex_bytes(value: Any, field_name: str) -> bytes:
    if not isinstance(value, str) or not _HEX_RE.match(value.strip()):
        raise ValueError(f"Invalid {field_name}. Must be 0x-prefixed hex bytes.")
    return decode_hex(value.strip())


def _coerce(type_str: str, value: Any, label: str) -> Any:
    """Convert a JSON argument into the Python value eth_abi expects."""
    base, size = _split_array(type_str)
    if size is not None:
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"Invalid {label}. Expected a list for {type_str}.")
        if size and len(value) != int(size):
            raise ValueError(f"Invalid {label}. Expected {size} items for {type_str}.")
        return [_coerce(base, item, f"{label}[{i}]") for i, item in enumerate(value)]

    if type_str.startswith("("):
        members = _tuple_members(type_str)
        if not isinstance(value, (list, tuple)) or len(value) != len(members):
            raise ValueError(f"Invalid {label}. Expected {len(members)} tuple members.")
        return tuple(
            _coerce(member, item, f"{label}.{i}")
            for i, (member, item) in enumerate(zip(members, value))
        )

    if type_str == "address":
        if not isinstance(value, str) or not is_address(value):
            raise ValueError(f"Invalid {label}. Expected an address, got {value!r}.")
        return to_checksum_address(value)
    if type_str == "bool":
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        if not isinstance(value, bool):
            raise ValueError(f"Invalid {label}. Expected a boolean.")
        return value
    if type_str.startswith(("uint", "int")):
        if isinstance(value, bool):
            raise ValueError(f"Invalid {label}. Expected an integer.")
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text, 16) if text.lower().startswith("0x") else int(text)
            except ValueError as exc:
                raise ValueError(f"Invalid {label}. Expected an integer, got {value!r}.") from exc
        if not isinstance(value, int):
            raise ValueError(f"Invalid {label}. Expected an integer.")
        return value
    if type_str.startswith("bytes"):
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        return _hex_bytes(value, label)
    if type_str == "string" and not isinstance(value, str):
        raise ValueError(f"Invalid {label}. Expected a string.")
    return value


def _to_json(type_str: str, value: Any) -> Any:
    base, size = _split_array(type_str)
    if size is not None:
        return [_to_json(base, item) for item in value]
    if type_str.startswith("("):
        return [_to_json(member, item) for member, item in zip(_tuple_members(type_str), value)]
    if isinstance(value, (bytes, bytearray)):
        return encode_hex(value)
    return value


def _named_args(params: Iterable[AbiParam], values: list[Any]) -> dict[str, Any]:
    return {param.name or f"arg{i}": value for i, (param, value) in enumerate(zip(params, values))}


def _decode(params: tuple[AbiParam, ...] | list[AbiParam], payload: bytes, label: str) -> list[Any]:
    types = [param.type for param in params]
    try:
        values = decode(types, payload)
    except DecodingError as exc:
        raise ValueError(f"Could not decode data for {label}: {exc}") from exc
    return [_to_json(type_str, value) for type_str, value in zip(types, values)]


# ---------------------------------------------------------------------------
# Functions
# ---------------------------------------------------------------------------


def encode_function_call(item: AbiItem, args: list[Any] | None = None) -> str:
    args = list(args or [])
    if len(args) != len(item.inputs):
        raise ValueError(
            f"{item.signature} expects {len(item.inputs)} argument(s), got {len(args)}."
        )
    values = [
        _coerce(param.type, value, param.name or f"arg{i}")
        for i, (param, value) in enumerate(zip(item.inputs, args))
    ]
    try:
        encoded = encode([param.type for param in item.inputs], values)
    except EncodingError as exc:
        raise ValueError(f"Could not encode arguments for {item.signature}: {exc}") from exc
    return item.selector + encoded.hex()


def decode_function_call(item: AbiItem, data: Any) -> list[Any]:
    payload = _hex_bytes(data, "data")
    selector = encode_hex(payload[:4])
    if selector != item.selector:
        raise ValueError(
            f"Calldata selector {selector} does not match {item.signature} ({item.selector})."
        )
    return _decode(item.inputs, payload[4:], item.signature)


def decode_function_result(item: AbiItem, data: Any) -> Any:
    """Decode eth_call return data; one output yields a value, several a list."""
    if not item.outputs:
        return None
    values = _decode(item.outputs, _hex_bytes(data, "result"), item.signature)
    return values[0] if len(values) == 1 else values


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def _is_hashed_topic(type_str: str) -> bool:
    # Indexed dynamic values are stored as their keccak hash.
    return type_str in ("string", "bytes") or type_str.endswith("]") or type_str.startswith("(")


def _decode_event(event: AbiItem, topics: list[str], data: str) -> dict[str, Any]:
    data_params = [param for param in event.inputs if not param.indexed]
    data_values = iter(_decode(data_params, _hex_bytes(data, "data"), event.signature))
    topic_values = iter(topics)

    args: dict[str, Any] = {}
    for index, param in enumerate(event.inputs):
        key = param.name or f"arg{index}"
        if not param.indexed:
            args[key] = next(data_values)
            continue
        topic = next(topic_values)
        if _is_hashed_topic(param.type):
            args[key] = topic
        else:
            args[key] = _decode([param], _hex_bytes(topic, "topic"), event.signature)[0]
    return args


def decode_event_log(events: list[AbiItem], log: dict[str, Any]) -> dict[str, Any] | None:
    """Decode `log` with the first matching event ABI, or None when none match."""
    topics = [str(topic).lower() for topic in log.get("topics") or []]
    for event in events:
        indexed_count = sum(1 for param in event.inputs if param.indexed)
        if event.anonymous:
            event_topics = topics
        elif topics and topics[0] == event.topic:
            event_topics = topics[1:]
        else:
            continue
        if len(event_topics) != indexed_count:
            continue
        try:
            args = _decode_event(event, event_topics, log.get("data") or "0x")
        except ValueError as exc:
            _LOGGER.debug("Log does not decode as %s: %s", event.signature, exc)
            continue
        return {"event_name": event.name, "signature": event.signature, "args": args}
    return None


def decode_logs(events: list[AbiItem], logs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    decoded_logs = []
    for log in logs:
        decoded = decode_event_log(events, log)
        if decoded is None:
            decoded_logs.append({**log, "decode_error": "No matching event ABI found for this log"})
        else:
            decoded_logs.append({**log, "decoded": decoded})
    return decoded_logs


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


def eth_encode_calldata(abi: Any, args: list[Any] | None = None) -> dict[str, Any]:
    item = parse_function_abi(abi)
    calldata = encode_function_call(item, args)
    return {
        "function_name": item.name,
        "signature": item.signature,
        "selector": item.selector,
        "args": list(args or []),
        "calldata": calldata,
    }


def eth_decode_calldata(data: str, abi: Any) -> dict[str, Any]:
    item = parse_function_abi(abi)
    values = decode_function_call(item, data)
    return {
        "function_name": item.name,
        "signature": item.signature,
        "selector": item.selector,
        "args": values,
        "named_args": _named_args(item.inputs, values),
        "data": data,
    }
