"""Deterministic serialization of contract state into script push data."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any, Iterator

from script import Script, ScriptError
from scrypttypes import (
    Bool,
    Int,
    ScryptType,
    Struct,
    VariableType,
    int_to_sm,
    parse_literal,
    sm_to_int,
)

# Size in bytes of the trailing state-length footer.
STATE_LEN = 4

_HEX = re.compile(r"^(?:[0-9a-fA-F]{2})+$")

type Schema = Mapping[str, Any] | Sequence[Any]


def serialize_state(state: Any) -> str:
    """
    Serialize a value, sequence or mapping of values into ASM.

    The output is one push per element followed by a fixed 4-byte
    little-endian push holding the script length of everything before it, so
    the state region can be found again from the end of a deployed script.
    """
    tokens = [serialize(value) for value in flatten_state(state)]
    size = len(Script.from_asm(" ".join(tokens)).to_bytes())
    tokens.append(num2bin(size, STATE_LEN))
    return " ".join(tokens)


def flatten_state(state: Any) -> Iterator[Any]:
    """Yield the leaves of a state tree, depth-first and in order."""
    match state:
        case Struct():
            for value in state.field_values():
                yield from flatten_state(value)
        case Mapping():
            for value in state.values():
                yield from flatten_state(value)
        case list() | tuple():
            for value in state:
                yield from flatten_state(value)
        case _:
            yield state


def serialize(value: Any) -> str:
    """Serialize a single state element as an ASM push token."""
    match value:
        case bool():
            return "01" if value else "00"
        case int():
            return serialize_int(value)
        case str():
            return serialize_string(value)
        case Bool() | Int():
            return serialize(value.value)
        case ScryptType() if isinstance(value.value, str):
            return serialize_string(value.value)
        case ScryptType():
            return value.to_asm()
        case _:
            raise ValueError(f"cannot serialize state value: {value!r}")


def serialize_int(n: int) -> str:
    # Zero is pushed as a single zero byte rather than an empty push.
    if n == 0:
        return "00"
    return int_to_sm(n).hex()


def serialize_string(s: str) -> str:
    """Serialize a string: raw hex bytes, or else a bool or int literal."""
    s = s.strip()
    if s == "":
        return "00"
    if _HEX.match(s):
        return s.lower()
    try:
        _, value, kind = parse_literal(s)
    except ValueError:
        raise ValueError(
            f"cannot serialize {s!r}: expected hex bytes or a bool/int literal"
        ) from None
    match kind:
        case VariableType.BOOL | VariableType.INT:
            return serialize(value)
        case VariableType.BYTES:
            return value.lower() or "00"
        case _:
            raise ValueError(f"cannot serialize {s!r}: unsupported literal type {kind}")


def num2bin(n: int, size: int) -> str:
    """Encode an integer as fixed-width little-endian sign-magnitude hex."""
    if n == 0:
        return "00" * size
    data = bytearray(int_to_sm(n))
    if len(data) > size:
        raise ValueError(f"{n} cannot fit in {size} byte[s]")
    if n < 0:
        # The sign bit moves to the last byte of the padded output.
        data[-1] &= 0x7F
    data += bytes(size - len(data))
    if n < 0:
        data[-1] |= 0x80
    return data.hex()


def bin2num(data: str | bytes) -> int:
    """Decode little-endian sign-magnitude bytes or hex."""
    if isinstance(data, str):
        data = bytes.fromhex(data)
    return sm_to_int(data)


def state_region(script: Script | str) -> bytes:
    """Locate the serialized state at the end of a full locking script."""
    code = Script.from_hex(script).to_bytes() if isinstance(script, str) else script.to_bytes()
    footer = 1 + STATE_LEN
    if len(code) < footer or code[-footer] != STATE_LEN:
        raise ScriptError("script does not end with a state length footer")
    size = int.from_bytes(code[-STATE_LEN:], "little")
    if size > len(code) - footer:
        raise ScriptError(f"state length {size} exceeds script length")
    return code[len(code) - footer - size : len(code) - footer]


def deserialize_state(script: Script | str, schema: Schema) -> Any:
    """
    Decode the state region of a locking script against a schema.

    The schema mirrors the serialized value: a mapping or sequence whose
    leaves are `bool`, `int` or `str` (hex bytes), either as types or as
    sample values.
    """
    chunks = iter(Script.from_bytes(state_region(script)).chunks)

    def decode(template: Any) -> Any:
        if isinstance(template, Mapping):
            return {k: decode(v) for k, v in template.items()}
        if isinstance(template, (list, tuple)):
            return [decode(v) for v in template]
        try:
            data = next(chunks).data or b""
        except StopIteration:
            raise ScriptError("state has fewer elements than the schema") from None
        kind = template if isinstance(template, type) else type(template)
        if kind is bool:
            return data not in (b"", b"\x00")
        if kind is int:
            return sm_to_int(data)
        return data.hex()

    result = decode(schema)
    if next(chunks, None) is not None:
        raise ScriptError("state has more elements than the schema")
    return result
