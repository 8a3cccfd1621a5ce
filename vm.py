"""The boundary to an external script interpreter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Protocol

from script import Script


class Flags(IntFlag):
    """Script verification flags understood by the interpreter."""

    NONE = 0
    P2SH = 1 << 0
    STRICTENC = 1 << 1
    DERSIG = 1 << 2
    LOW_S = 1 << 3
    NULLDUMMY = 1 << 4
    SIGPUSHONLY = 1 << 5
    MINIMALDATA = 1 << 6
    DISCOURAGE_UPGRADABLE_NOPS = 1 << 7
    CLEANSTACK = 1 << 8
    CHECKLOCKTIMEVERIFY = 1 << 9
    CHECKSEQUENCEVERIFY = 1 << 10
    NULLFAIL = 1 << 14
    ENABLE_SIGHASH_FORKID = 1 << 16
    ENABLE_MAGNETIC_OPCODES = 1 << 17
    ENABLE_MONOLITH_OPCODES = 1 << 18


DEFAULT_FLAGS = (
    Flags.ENABLE_MAGNETIC_OPCODES
    | Flags.ENABLE_MONOLITH_OPCODES
    | Flags.STRICTENC
    | Flags.ENABLE_SIGHASH_FORKID
    | Flags.LOW_S
    | Flags.NULLFAIL
    | Flags.DERSIG
    | Flags.MINIMALDATA
    | Flags.NULLDUMMY
    | Flags.DISCOURAGE_UPGRADABLE_NOPS
    | Flags.CHECKLOCKTIMEVERIFY
    | Flags.CHECKSEQUENCEVERIFY
)


@dataclass(frozen=True, slots=True)
class Step:
    """A snapshot taken after the interpreter completed one operation."""

    # False inside a branch that is not taken (OP_IF/OP_ELSE)
    executed: bool
    stack: tuple[bytes, ...] = ()
    altstack: tuple[bytes, ...] = ()


@dataclass(frozen=True, slots=True)
class Execution:
    """The outcome of running an unlocking script against a locking script."""

    success: bool
    error: str = ""

    # One entry per completed operation, unlocking script first. The
    # operation that failed, if any, has no entry.
    trace: tuple[Step, ...] = field(default_factory=tuple)


class Interpreter(Protocol):
    """A script interpreter that reports a per-step trace."""

    def verify(
        self,
        unlocking: Script,
        locking: Script,
        tx: Any,
        input_index: int,
        flags: int,
        input_satoshis: int,
    ) -> Execution: ...


@dataclass(frozen=True, slots=True)
class VerifyResult:
    """The result of verifying a contract call; `error` is empty on success."""

    success: bool
    error: str = ""
