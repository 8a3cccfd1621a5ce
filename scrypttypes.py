"""Canonical sCrypt value types, literal parsing and type classification."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import IntFlag, StrEnum
from typing import Any, ClassVar, Iterable, Mapping

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """An argument does not match the type it was declared with."""

    pass


class VariableType(StrEnum):
    """The native scalar types."""

    BOOL = "bool"
    INT = "int"
    BYTES = "bytes"
    PUBKEY = "PubKey"
    PRIVKEY = "PrivKey"
    SIG = "Sig"
    RIPEMD160 = "Ripemd160"
    SHA1 = "Sha1"
    SHA256 = "Sha256"
    SIGHASHTYPE = "SigHashType"
    SIGHASHPREIMAGE = "SigHashPreimage"
    OPCODETYPE = "OpCodeType"


BASIC_TYPES = frozenset(t.value for t in VariableType)


class SigHash(IntFlag):
    """Signature hash flags."""

    ALL = 0x01
    NONE = 0x02
    SINGLE = 0x03
    FORKID = 0x40
    ANYONECANPAY = 0x80


@dataclass(frozen=True, slots=True)
class ParamEntity:
    """A named, typed parameter or struct field."""

    name: str
    type: str


@dataclass(frozen=True, slots=True)
class StructEntity:
    """A struct declaration: an ordered list of typed fields."""

    name: str
    params: tuple[ParamEntity, ...]

    @property
    def final_type(self) -> str:
        return f"struct {self.name} {{}}"


@dataclass(frozen=True, slots=True)
class AliasEntity:
    """A type alias declaration."""

    name: str
    type: str


### ### ### ### ###
# Integers


def int_to_sm(n: int) -> bytes:
    """Encode an integer as minimal little-endian sign-magnitude bytes."""
    if n == 0:
        return b""
    m = abs(n)
    data = bytearray(m.to_bytes((m.bit_length() + 7) // 8, "little"))
    if data[-1] & 0x80:
        data.append(0x80 if n < 0 else 0x00)
    elif n < 0:
        data[-1] |= 0x80
    return bytes(data)


def sm_to_int(data: bytes) -> int:
    """Decode little-endian sign-magnitude bytes."""
    if not data:
        return 0
    last = data[-1]
    m = int.from_bytes(data[:-1] + bytes([last & 0x7F]), "little")
    return -m if last & 0x80 else m


def int_to_asm(n: int) -> str:
    """
    Render an integer as an ASM token.

    Small integers use the compact numeric opcodes (OP_1NEGATE, OP_0 through
    OP_16); everything else is pushed in sign-magnitude form.
    """
    if n == -1:
        return "OP_1NEGATE"
    if 0 <= n <= 16:
        return f"OP_{n}"
    return int_to_sm(n).hex()


def _int_to_hex(n: int) -> str:
    hex = format(n, "x")
    return "0" + hex if len(hex) % 2 else hex


def validate_hex(hex: str, allow_empty: bool = True) -> str:
    """Trim and validate a hexadecimal byte string."""
    ret = hex.strip()
    if not ret and not allow_empty:
        raise ValueError("can't be empty string")
    if len(ret) % 2:
        raise ValueError("should have even length")
    if ret and not re.fullmatch(r"[0-9a-fA-F]+", ret):
        raise ValueError("should only contain [0-9] or characters [a-fA-F]")
    return ret


### ### ### ### ###
# Literals

_HEX_KINDS = (
    VariableType.PUBKEY,
    VariableType.SIG,
    VariableType.RIPEMD160,
    VariableType.SHA1,
    VariableType.SHA256,
    VariableType.SIGHASHTYPE,
    VariableType.SIGHASHPREIMAGE,
    VariableType.OPCODETYPE,
)


def parse_literal(literal: str) -> tuple[str, Any, VariableType]:
    """Parse a literal into its ASM token, canonical value and type."""
    l = literal.strip()

    if l == "false":
        return "OP_FALSE", False, VariableType.BOOL
    if l == "true":
        return "OP_TRUE", True, VariableType.BOOL

    if m := re.fullmatch(r"0x([0-9a-fA-F]+)", l):
        n = int(m.group(1), 16)
        return int_to_asm(n), n, VariableType.INT

    if m := re.fullmatch(r"-?\d+", l):
        n = int(m.group(0))
        return int_to_asm(n), n, VariableType.INT

    # b'' is the empty byte string, pushed as OP_0
    if m := re.fullmatch(r"b'([0-9a-fA-F]*)'", l):
        value = validate_hex(m.group(1))
        return value or "OP_0", value, VariableType.BYTES

    if m := re.fullmatch(r"PrivKey\((\d+|0x[0-9a-fA-F]+)\)", l):
        raw = m.group(1)
        n = int(raw[2:], 16) if raw.startswith("0x") else int(raw)
        return _int_to_hex(n), n, VariableType.PRIVKEY

    for kind in _HEX_KINDS:
        if m := re.fullmatch(kind.value + r"\(b'([0-9a-fA-F]+)'\)", l):
            value = validate_hex(m.group(1))
            if kind == VariableType.SIGHASHTYPE:
                n = int(value, 16)
                return _int_to_hex(n), n, kind
            return value, value, kind

    raise ValueError(
        f"<{literal}> cannot be cast to ASM format, only sCrypt native types supported"
    )


def literal_to_scrypt_type(literal: str) -> ScryptType:
    """Convert a literal into a typed value."""
    _, value, kind = parse_literal(literal)
    return SCALARS[kind](value)


def bytes_to_literal(data: bytes, type: str) -> str:
    """Render raw stack bytes as a literal of the given type."""
    match type:
        case "bool":
            return "true" if int.from_bytes(data, "little") > 0 else "false"
        case "int":
            return str(sm_to_int(data))
        case _:
            return f"b'{data.hex()}'"


### ### ### ### ###
# Typed values


class ScryptType:
    """A typed value, rendered to ASM through its literal form."""

    type_name: ClassVar[str] = ""

    __slots__ = ("_value", "_literal", "_asm")

    def __init__(self, value: Any) -> None:
        self._value = value
        self._literal = self.to_literal(value)
        self._asm, _, _ = parse_literal(self._literal)

    @property
    def value(self) -> Any:
        return self._value

    @property
    def literal(self) -> str:
        return self._literal

    @property
    def final_type(self) -> str:
        return self.type_name

    def to_literal(self, value: Any) -> str:
        raise NotImplementedError

    def to_asm(self) -> str:
        """Return the ASM token that pushes this value."""
        return self._asm

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ScryptType):
            return NotImplemented
        return type(self) is type(other) and self._value == other._value

    def __hash__(self) -> int:
        return hash((type(self).__name__, repr(self._value)))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r})"


class Int(ScryptType):
    type_name = VariableType.INT.value

    def to_literal(self, value: Any) -> str:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"expected int but got {value!r}")
        return str(value)


class Bool(ScryptType):
    type_name = VariableType.BOOL.value

    def to_literal(self, value: Any) -> str:
        if not isinstance(value, bool):
            raise ValueError(f"expected bool but got {value!r}")
        return "true" if value else "false"


class Bytes(ScryptType):
    type_name = VariableType.BYTES.value

    def to_literal(self, value: Any) -> str:
        return f"b'{validate_hex(value)}'"


class PrivKey(ScryptType):
    type_name = VariableType.PRIVKEY.value

    def to_literal(self, value: Any) -> str:
        return f"PrivKey({int(value)})"


class _HexType(ScryptType):
    """A hex-valued type written as `Kind(b'<hex>')`."""

    def to_literal(self, value: Any) -> str:
        return f"{self.type_name}(b'{validate_hex(value, allow_empty=False)}')"


class PubKey(_HexType):
    type_name = VariableType.PUBKEY.value


class Sig(_HexType):
    type_name = VariableType.SIG.value


class Ripemd160(_HexType):
    type_name = VariableType.RIPEMD160.value


class Sha1(_HexType):
    type_name = VariableType.SHA1.value


class Sha256(_HexType):
    type_name = VariableType.SHA256.value


class SigHashPreimage(_HexType):
    type_name = VariableType.SIGHASHPREIMAGE.value


class OpCodeType(_HexType):
    type_name = VariableType.OPCODETYPE.value


class SigHashType(ScryptType):
    type_name = VariableType.SIGHASHTYPE.value

    def to_literal(self, value: Any) -> str:
        return f"SigHashType(b'{_int_to_hex(int(value))}')"


SCALARS: dict[VariableType, type[ScryptType]] = {
    VariableType.BOOL: Bool,
    VariableType.INT: Int,
    VariableType.BYTES: Bytes,
    VariableType.PRIVKEY: PrivKey,
    VariableType.PUBKEY: PubKey,
    VariableType.SIG: Sig,
    VariableType.RIPEMD160: Ripemd160,
    VariableType.SHA1: Sha1,
    VariableType.SHA256: Sha256,
    VariableType.SIGHASHTYPE: SigHashType,
    VariableType.SIGHASHPREIMAGE: SigHashPreimage,
    VariableType.OPCODETYPE: OpCodeType,
}


class Struct(ScryptType):
    """
    A struct value: a map from field name to value.

    Concrete subclasses are bound to a single StructEntity (see
    `contract.build_type_classes`). Members are not checked against the
    declaration until the value is bound to a parameter, so a malformed
    struct can be built and is rejected at call time.
    """

    declaration: ClassVar[StructEntity | None] = None

    def __init__(self, value: Mapping[str, Any]) -> None:
        self._value = dict(value)
        self._literal = ""
        self._asm = ""

    @property
    def struct_name(self) -> str:
        if self.declaration is not None:
            return self.declaration.name
        return type(self).__name__

    @property
    def final_type(self) -> str:
        return f"struct {self.struct_name} {{}}"

    @property
    def members(self) -> dict[str, Any]:
        return self._value

    def field_values(self) -> list[Any]:
        if self.declaration is None:
            return list(self._value.values())
        return [self._value[p.name] for p in self.declaration.params]

    @property
    def literal(self) -> str:
        return "{" + ", ".join(literal_of(v) for v in self.field_values()) + "}"

    def to_asm(self) -> str:
        return " ".join(asm_of(v) for v in self.field_values())

    def __repr__(self) -> str:
        return f"{self.struct_name}({self._value!r})"


def make_struct_class(entity: StructEntity) -> type[Struct]:
    """Create the Struct subclass bound to a declaration."""
    return type(entity.name, (Struct,), {"declaration": entity})


def to_scrypt_type(value: Any) -> ScryptType:
    """Wrap a native Python scalar in its typed value."""
    if isinstance(value, ScryptType):
        return value
    if isinstance(value, bool):
        return Bool(value)
    if isinstance(value, int):
        return Int(value)
    raise ValidationError(f"unsupported argument value: {value!r}")


def asm_of(value: Any) -> str:
    """Render a scalar, struct or (nested) array value as ASM."""
    if isinstance(value, (list, tuple)):
        return " ".join(asm_of(v) for v in value)
    return to_scrypt_type(value).to_asm()


def literal_of(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(literal_of(v) for v in value) + "]"
    return to_scrypt_type(value).literal


def type_of_arg(value: Any) -> str:
    """Return the type name of a runtime argument value."""
    if isinstance(value, bool):
        return VariableType.BOOL.value
    if isinstance(value, int):
        return VariableType.INT.value
    if isinstance(value, ScryptType):
        return value.final_type
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


### ### ### ### ###
# Type expressions

_ARRAY = re.compile(r"^(.+?)((?:\[\d+\])+)$")
_STRUCT = re.compile(r"^struct\s+(\w+)\s*\{\s*\}$")


def is_array_type(type: str) -> bool:
    return _ARRAY.match(type.strip()) is not None


def array_type_and_size(type: str) -> tuple[str, list[int]]:
    """Split `T[n1][n2]...` into its element type and dimensions."""
    m = _ARRAY.match(type.strip())
    if m is None:
        raise ValueError(f"{type} is not an array type")
    return m.group(1).strip(), [int(n) for n in re.findall(r"\[(\d+)\]", m.group(2))]


def to_literal_array_type(elem: str, sizes: Iterable[int]) -> str:
    return elem + "".join(f"[{n}]" for n in sizes)


def is_struct_type(type: str) -> bool:
    return _STRUCT.match(type.strip()) is not None


def struct_name_of(type: str) -> str:
    """Extract `Name` from `struct Name {}`."""
    m = _STRUCT.match(type.strip())
    if m is None:
        raise ValueError(f"{type} is not a struct type")
    return m.group(1)


def resolve_type(
    aliases: Iterable[AliasEntity] | Mapping[str, str],
    type: str,
    structs: Iterable[str] | None = None,
) -> str:
    """
    Resolve a declared type to a primitive, struct or array-of-either.

    Aliases are followed transitively and array dimensions met along the
    chain are concatenated, outermost first. A name that is neither a
    primitive nor an alias is assumed to be a struct; if `structs` is given
    and does not contain it, the assumption is logged.
    """
    if isinstance(aliases, Mapping):
        table = dict(aliases)
    else:
        table = {a.name: a.type for a in aliases}
    known = None if structs is None else frozenset(structs)
    return _resolve(table, type.strip(), known, frozenset())


def _resolve(
    table: dict[str, str], type: str, structs: frozenset[str] | None, seen: frozenset[str]
) -> str:
    if is_array_type(type):
        elem, sizes = array_type_and_size(type)
        resolved = _resolve(table, elem, structs, seen)
        if is_array_type(resolved):
            inner, inner_sizes = array_type_and_size(resolved)
            return to_literal_array_type(inner, sizes + inner_sizes)
        return to_literal_array_type(resolved, sizes)

    if is_struct_type(type):
        return _resolve(table, struct_name_of(type), structs, seen)

    if type in table:
        if type in seen:
            raise ValueError(f"circular alias: {type}")
        return _resolve(table, table[type].strip(), structs, seen | {type})

    if type in BASIC_TYPES:
        return type

    if structs is not None and type not in structs:
        logger.warning("unresolved type %r, treating it as struct %s {}", type, type)
    return f"struct {type} {{}}"
