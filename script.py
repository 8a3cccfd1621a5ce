"""A Bitcoin SV script codec, converting between ASM, hex and chunks."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from line_profiler import profile

from opcodes import (
    BY_NAME,
    OP_0,
    OP_1NEGATE,
    OP_PUSHDATA1,
    OP_PUSHDATA2,
    OP_PUSHDATA4,
    REFERENCE,
)

_HEX = re.compile(r"^([0-9a-fA-F]{2})*$")


class ScriptError(Exception):
    """Script decoding or encoding failed because the input was malformed."""

    pass


@dataclass(frozen=True, slots=True)
class Chunk:
    """A single script element: a bare opcode or a data push."""

    opcode: int

    # Pushed bytes (data pushes only)
    data: bytes | None = None

    def __str__(self) -> str:
        if self.data is not None:
            return self.data.hex() if self.data else "0"
        if self.opcode == OP_0:
            return "0"
        if self.opcode == OP_1NEGATE:
            return "-1"
        return REFERENCE[self.opcode].name

    def encode(self) -> bytes:
        """Return the serialized form of this chunk."""
        if self.data is None:
            return bytes([self.opcode])
        n = len(self.data)
        if self.opcode < OP_PUSHDATA1:
            return bytes([self.opcode]) + self.data
        elif self.opcode == OP_PUSHDATA1:
            return bytes([OP_PUSHDATA1]) + n.to_bytes(1, "little") + self.data
        elif self.opcode == OP_PUSHDATA2:
            return bytes([OP_PUSHDATA2]) + n.to_bytes(2, "little") + self.data
        return bytes([OP_PUSHDATA4]) + n.to_bytes(4, "little") + self.data


def push_opcode(n: int) -> int:
    """Return the opcode that pushes `n` bytes with the shortest prefix."""
    if n < 0:
        raise ScriptError(f"invalid push length: {n}")
    elif n < OP_PUSHDATA1:
        return n
    elif n < 1 << 8:
        return OP_PUSHDATA1
    elif n < 1 << 16:
        return OP_PUSHDATA2
    elif n < 1 << 32:
        return OP_PUSHDATA4
    raise ScriptError(f"push data too large: {n} bytes")


def push_data(data: bytes) -> Chunk:
    """Create a data push chunk for the given bytes."""
    return Chunk(push_opcode(len(data)), data)


@dataclass(frozen=True, slots=True)
class Script:
    """An immutable sequence of script chunks."""

    chunks: tuple[Chunk, ...] = ()

    @classmethod
    @profile
    def from_asm(cls, asm: str) -> Script:
        """Parse a whitespace-delimited ASM string."""
        chunks = list[Chunk]()
        for token in asm.split():
            if token == "0":
                chunks.append(Chunk(OP_0))
            elif token == "-1":
                chunks.append(Chunk(OP_1NEGATE))
            elif (op := BY_NAME.get(token)) is not None:
                chunks.append(Chunk(op.code))
            elif _HEX.match(token):
                chunks.append(push_data(bytes.fromhex(token)))
            else:
                raise ScriptError(f"invalid ASM token: {token!r}")
        return cls(tuple(chunks))

    @classmethod
    def from_hex(cls, hex: str) -> Script:
        """Parse a hexadecimal-encoded script."""
        if not _HEX.match(hex.strip()):
            raise ScriptError(f"invalid script hex: {hex!r}")
        return cls.from_bytes(bytes.fromhex(hex.strip()))

    @classmethod
    def from_bytes(cls, code: bytes) -> Script:
        """Parse a serialized script."""
        return cls(tuple(decode_chunks(code)))

    @classmethod
    def from_chunks(cls, chunks: Iterable[Chunk]) -> Script:
        return cls(tuple(chunks))

    def __copy__(self) -> Script:
        return self

    def __deepcopy__(self, memo: Any) -> Script:
        return self

    def __add__(self, other: Script) -> Script:
        return Script(self.chunks + other.chunks)

    def __len__(self) -> int:
        return len(self.chunks)

    def __str__(self) -> str:
        return self.to_asm()

    def to_asm(self) -> str:
        """Render this script as ASM."""
        return " ".join(str(chunk) for chunk in self.chunks)

    def to_bytes(self) -> bytes:
        """Serialize this script."""
        return b"".join(chunk.encode() for chunk in self.chunks)

    def to_hex(self) -> str:
        """Serialize this script as a hexadecimal string."""
        return self.to_bytes().hex()


@profile
def decode_chunks(code: bytes) -> Iterable[Chunk]:
    """Decode the chunks of a serialized script, in order."""
    offset, n = 0, len(code)
    while offset < n:
        opcode = code[offset]
        offset += 1
        if opcode > OP_PUSHDATA4:
            yield Chunk(opcode)
            continue

        if opcode < OP_PUSHDATA1:
            size = opcode
        elif opcode == OP_PUSHDATA1:
            size = int.from_bytes(code[offset : offset + 1], "little")
            offset += 1
        elif opcode == OP_PUSHDATA2:
            size = int.from_bytes(code[offset : offset + 2], "little")
            offset += 2
        else:
            size = int.from_bytes(code[offset : offset + 4], "little")
            offset += 4

        if offset > n or offset + size > n:
            raise ScriptError(f"push data exceeds script length at offset {offset}")
        if opcode == OP_0:
            yield Chunk(OP_0)
        else:
            yield Chunk(opcode, code[offset : offset + size])
        offset += size
