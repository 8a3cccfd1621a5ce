"""A library of Bitcoin SV script opcodes."""

from dataclasses import dataclass
from typing import Any, Self


@dataclass(frozen=True, slots=True)
class Opcode:
    """A script operation."""

    code: int
    name: str

    def __copy__(self) -> Self:
        return self

    def __deepcopy__(self, memo: Any) -> Self:
        return self


# Where several names share a code, the last one listed is canonical and is
# used when rendering ASM (e.g. OP_TRUE/OP_1 renders as OP_1).
_TABLE: list[tuple[str, int]] = [
    ("OP_FALSE", 0x00),
    ("OP_0", 0x00),
    ("OP_PUSHDATA1", 0x4C),
    ("OP_PUSHDATA2", 0x4D),
    ("OP_PUSHDATA4", 0x4E),
    ("OP_1NEGATE", 0x4F),
    ("OP_RESERVED", 0x50),
    ("OP_TRUE", 0x51),
    *((f"OP_{n}", 0x50 + n) for n in range(1, 17)),
    ("OP_NOP", 0x61),
    ("OP_VER", 0x62),
    ("OP_IF", 0x63),
    ("OP_NOTIF", 0x64),
    ("OP_VERIF", 0x65),
    ("OP_VERNOTIF", 0x66),
    ("OP_ELSE", 0x67),
    ("OP_ENDIF", 0x68),
    ("OP_VERIFY", 0x69),
    ("OP_RETURN", 0x6A),
    ("OP_TOALTSTACK", 0x6B),
    ("OP_FROMALTSTACK", 0x6C),
    ("OP_2DROP", 0x6D),
    ("OP_2DUP", 0x6E),
    ("OP_3DUP", 0x6F),
    ("OP_2OVER", 0x70),
    ("OP_2ROT", 0x71),
    ("OP_2SWAP", 0x72),
    ("OP_IFDUP", 0x73),
    ("OP_DEPTH", 0x74),
    ("OP_DROP", 0x75),
    ("OP_DUP", 0x76),
    ("OP_NIP", 0x77),
    ("OP_OVER", 0x78),
    ("OP_PICK", 0x79),
    ("OP_ROLL", 0x7A),
    ("OP_ROT", 0x7B),
    ("OP_SWAP", 0x7C),
    ("OP_TUCK", 0x7D),
    ("OP_CAT", 0x7E),
    ("OP_SPLIT", 0x7F),
    ("OP_NUM2BIN", 0x80),
    ("OP_BIN2NUM", 0x81),
    ("OP_SIZE", 0x82),
    ("OP_INVERT", 0x83),
    ("OP_AND", 0x84),
    ("OP_OR", 0x85),
    ("OP_XOR", 0x86),
    ("OP_EQUAL", 0x87),
    ("OP_EQUALVERIFY", 0x88),
    ("OP_RESERVED1", 0x89),
    ("OP_RESERVED2", 0x8A),
    ("OP_1ADD", 0x8B),
    ("OP_1SUB", 0x8C),
    ("OP_2MUL", 0x8D),
    ("OP_2DIV", 0x8E),
    ("OP_NEGATE", 0x8F),
    ("OP_ABS", 0x90),
    ("OP_NOT", 0x91),
    ("OP_0NOTEQUAL", 0x92),
    ("OP_ADD", 0x93),
    ("OP_SUB", 0x94),
    ("OP_MUL", 0x95),
    ("OP_DIV", 0x96),
    ("OP_MOD", 0x97),
    ("OP_LSHIFT", 0x98),
    ("OP_RSHIFT", 0x99),
    ("OP_BOOLAND", 0x9A),
    ("OP_BOOLOR", 0x9B),
    ("OP_NUMEQUAL", 0x9C),
    ("OP_NUMEQUALVERIFY", 0x9D),
    ("OP_NUMNOTEQUAL", 0x9E),
    ("OP_LESSTHAN", 0x9F),
    ("OP_GREATERTHAN", 0xA0),
    ("OP_LESSTHANOREQUAL", 0xA1),
    ("OP_GREATERTHANOREQUAL", 0xA2),
    ("OP_MIN", 0xA3),
    ("OP_MAX", 0xA4),
    ("OP_WITHIN", 0xA5),
    ("OP_RIPEMD160", 0xA6),
    ("OP_SHA1", 0xA7),
    ("OP_SHA256", 0xA8),
    ("OP_HASH160", 0xA9),
    ("OP_HASH256", 0xAA),
    ("OP_CODESEPARATOR", 0xAB),
    ("OP_CHECKSIG", 0xAC),
    ("OP_CHECKSIGVERIFY", 0xAD),
    ("OP_CHECKMULTISIG", 0xAE),
    ("OP_CHECKMULTISIGVERIFY", 0xAF),
    ("OP_NOP1", 0xB0),
    ("OP_NOP2", 0xB1),
    ("OP_CHECKLOCKTIMEVERIFY", 0xB1),
    ("OP_NOP3", 0xB2),
    ("OP_CHECKSEQUENCEVERIFY", 0xB2),
    *((f"OP_NOP{n}", 0xAF + n) for n in range(4, 11)),
    ("OP_PUBKEYHASH", 0xFD),
    ("OP_PUBKEY", 0xFE),
    ("OP_INVALIDOPCODE", 0xFF),
]


def _load_opcodes() -> tuple[dict[int, Opcode], dict[str, Opcode]]:
    by_code = dict[int, Opcode]()
    by_name = dict[str, Opcode]()
    for name, code in _TABLE:
        op = Opcode(code, name)
        by_code[code] = op
        by_name[name] = op
    for code in range(256):
        if code not in by_code and not 0x01 <= code <= 0x4B:
            op = Opcode(code, f"OP_UNKNOWN{code}")
            by_code[code] = op
            by_name[op.name] = op
    return by_code, by_name


REFERENCE, BY_NAME = _load_opcodes()


OP_0 = BY_NAME["OP_0"].code
OP_1NEGATE = BY_NAME["OP_1NEGATE"].code
OP_PUSHDATA1 = BY_NAME["OP_PUSHDATA1"].code
OP_PUSHDATA2 = BY_NAME["OP_PUSHDATA2"].code
OP_PUSHDATA4 = BY_NAME["OP_PUSHDATA4"].code
