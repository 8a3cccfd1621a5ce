"""Helpers for mapping failed executions back to contract source."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

from line_profiler import profile

from config import STD_FILE
from vm import Step


@dataclass(frozen=True, slots=True)
class Position:
    """A location in contract source."""

    file: str
    line: int

    def uri(self) -> str:
        path = Path(self.file)
        return path.as_uri() if path.is_absolute() else self.file


@dataclass(frozen=True, slots=True)
class OpcodeEntry:
    """A compiled opcode and, if known, the source line it came from."""

    opcode: str
    pos: Position | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> OpcodeEntry:
        """
        Load an entry of the form `{opcode, pos: {file, line}}`.

        A missing or malformed position loads as no position.
        """
        pos = raw.get("pos", raw)
        try:
            position = Position(str(pos["file"]), int(pos["line"]))
        except (KeyError, TypeError, ValueError):
            position = None
        return cls(str(raw["opcode"]), position)


@dataclass(frozen=True, slots=True)
class Failure:
    """The opcode a failed execution stopped at."""

    opcode: str

    # Index into the locking script's opcodes
    index: int

    pos: Position | None

    def render(self, error: str) -> str:
        if self.pos is None:
            return f"{error}\n\tfails at {self.opcode}"
        return (
            f"{error}\n\t[Go to Source]({self.pos.uri()}#{self.pos.line})"
            f" fails at {self.opcode}"
        )


def last_executed_step(trace: Sequence[Step]) -> int | None:
    """Return the index of the last step that was actually executed."""
    for i in range(len(trace) - 1, -1, -1):
        if trace[i].executed:
            return i
    return None


def data_part_entries(data_part: str) -> list[OpcodeEntry]:
    """Synthetic entries for the `OP_RETURN <data>` appended to a script."""
    return [OpcodeEntry("OP_RETURN")] + [OpcodeEntry(t) for t in data_part.split()]


@profile
def correlate(
    trace: Sequence[Step],
    opcodes: Sequence[OpcodeEntry],
    offset: int,
    data_part: str | None = None,
    std_file: str = STD_FILE,
) -> Failure | None:
    """
    Align an execution trace with the locking script's compiled opcodes.

    `offset` is the number of steps taken by the unlocking script. The trace
    only records completed operations, so when execution stopped before the
    end of the locking script the failing opcode is the one after the last
    executed step.
    """
    last = last_executed_step(trace)
    if last is None:
        return None

    index = last - offset
    if len(trace) < offset + len(opcodes):
        index += 1

    if data_part is not None:
        opcodes = [*opcodes, *data_part_entries(data_part)]

    if not 0 <= index < len(opcodes):
        return None

    entry = opcodes[index]
    pos = entry.pos
    if pos is None or pos.file == std_file:
        pos = _borrow_position(trace, opcodes, offset, index, std_file)
    return Failure(entry.opcode, index, pos)


def _borrow_position(
    trace: Sequence[Step],
    opcodes: Sequence[OpcodeEntry],
    offset: int,
    index: int,
    std_file: str,
) -> Position | None:
    # Walk back to the nearest executed opcode with a real source position.
    for i in range(index - 1, -1, -1):
        step = i + offset
        if step < len(trace) and not trace[step].executed:
            continue
        pos = opcodes[i].pos
        if pos is not None and pos.file != std_file:
            return pos
    return None
