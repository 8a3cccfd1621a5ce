"""Binding of constructor and public-function arguments into scripts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Mapping, Sequence

from script import Script
from scrypttypes import (
    AliasEntity,
    ParamEntity,
    ScryptType,
    Struct,
    StructEntity,
    ValidationError,
    array_type_and_size,
    asm_of,
    int_to_asm,
    is_array_type,
    is_struct_type,
    make_struct_class,
    resolve_type,
    struct_name_of,
    to_literal_array_type,
    to_scrypt_type,
    type_of_arg,
)
from vm import VerifyResult

if TYPE_CHECKING:
    from contract import AbstractContract
    from transaction import TxContext

__all__ = [
    "ABICoder",
    "ABIEntity",
    "ABIEntityType",
    "AliasEntity",
    "Argument",
    "FunctionCall",
    "ParamEntity",
    "StructEntity",
    "ValidationError",
]

logger = logging.getLogger(__name__)


class ABIEntityType(StrEnum):
    CONSTRUCTOR = "constructor"
    FUNCTION = "function"


@dataclass(frozen=True, slots=True)
class ABIEntity:
    """A callable unit of a contract: its constructor or a public function."""

    type: ABIEntityType
    name: str
    params: tuple[ParamEntity, ...] = ()

    # Selector of a public function, when the contract has several
    index: int | None = None


@dataclass(frozen=True, slots=True)
class Argument:
    """One argument of a call, as supplied by the caller."""

    name: str
    type: str
    value: Any


class FunctionCall:
    """
    A single invocation of a constructor or public function.

    A constructor call owns the instantiated locking script; a public
    function call owns the unlocking script.
    """

    def __init__(
        self,
        method_name: str,
        args: Sequence[Argument],
        *,
        contract: AbstractContract,
        locking_script_asm: str | None = None,
        unlocking_script_asm: str | None = None,
        template_asm: str | None = None,
    ) -> None:
        if locking_script_asm is None and unlocking_script_asm is None:
            raise ValueError(
                "param lockingScriptASM and unlockingScriptASM can not both be empty"
            )
        self.method_name = method_name
        self.args = list(args)
        self.contract = contract
        self._unlocking = unlocking_script_asm
        self._template = None if template_asm is None else template_asm.split()

        # The instantiated locking script, one slot per template token
        self._slots = None if locking_script_asm is None else locking_script_asm.split()
        if self._template is not None and self._slots is not None:
            if len(self._template) != len(self._slots):
                raise ValueError("locking script does not match its template")
        self._asm_vars = dict[str, str]()

    @property
    def locking_script(self) -> Script | None:
        return None if self._slots is None else Script.from_asm(" ".join(self._slots))

    @property
    def unlocking_script(self) -> Script | None:
        return None if self._unlocking is None else Script.from_asm(self._unlocking)

    @property
    def asm_vars(self) -> dict[str, str]:
        """The inline-assembly variable values applied so far."""
        return dict(self._asm_vars)

    def init(self, asm_var_values: Mapping[str, str]) -> None:
        """
        Replace inline-assembly variables in the locking script.

        Tokens are matched by position against the uninstantiated template,
        so values already substituted for constructor arguments are never
        mistaken for variables.
        """
        if self._template is None or self._slots is None:
            raise ValueError(
                "asm variables can only be replaced in a locking script built from its template"
            )

        for key, value in asm_var_values.items():
            var = key if key.startswith("$") else "$" + key
            hits = [i for i, t in enumerate(self._template) if t == var]
            if not hits:
                raise ValidationError(f"asm variable {key} not found in asm template")
            for i in hits:
                self._slots[i] = value.strip()
            self._asm_vars[var[1:]] = value.strip()

    def to_asm(self) -> str:
        script = self.locking_script or self.unlocking_script
        assert script is not None
        return script.to_asm()

    def to_hex(self) -> str:
        script = self.locking_script or self.unlocking_script
        assert script is not None
        return script.to_hex()

    def __str__(self) -> str:
        return self.to_hex()

    def __repr__(self) -> str:
        return f"FunctionCall({self.method_name!r}, {self.args!r})"

    def verify(self, tx_context: TxContext | Mapping[str, Any] | None = None) -> VerifyResult:
        """Run this call's unlocking script against its contract."""
        if self._unlocking is None:
            return VerifyResult(False, "verification failed, missing unlockingScript")
        return self.contract.verify(self._unlocking, tx_context)


class ABICoder:
    """Validates arguments against an ABI and encodes them as scripts."""

    def __init__(
        self,
        abi: Iterable[ABIEntity],
        structs: Iterable[StructEntity] = (),
        aliases: Iterable[AliasEntity] = (),
    ) -> None:
        self.abi = tuple(abi)
        self.structs = {s.name: s for s in structs}
        self.aliases = tuple(aliases)
        self._struct_classes = dict[str, type[Struct]]()

    @property
    def constructor(self) -> ABIEntity:
        for entity in self.abi:
            if entity.type == ABIEntityType.CONSTRUCTOR:
                return entity
        return ABIEntity(ABIEntityType.CONSTRUCTOR, "constructor")

    @property
    def functions(self) -> tuple[ABIEntity, ...]:
        return tuple(e for e in self.abi if e.type == ABIEntityType.FUNCTION)

    def function(self, name: str) -> ABIEntity:
        for entity in self.functions:
            if entity.name == name:
                return entity
        raise ValidationError(f"no function named '{name}' found in abi")

    def resolve(self, type: str) -> str:
        return resolve_type(self.aliases, type, self.structs.keys() if self.structs else None)

    def struct_class(self, entity: StructEntity) -> type[Struct]:
        if entity.name not in self._struct_classes:
            self._struct_classes[entity.name] = make_struct_class(entity)
        return self._struct_classes[entity.name]

    ### ### ### ### ###

    def encode_constructor_call(
        self, contract: AbstractContract, asm_template: str, *args: Any
    ) -> FunctionCall:
        """Bind constructor arguments into the locking script template."""
        entity = self.constructor
        _check_count("constructor", entity, args)

        flat = dict[str, str]()
        for param, arg in zip(entity.params, args):
            value = self.check(param.name, param.type, arg)
            flat.update(flatten(param.name, value))

        # Substitute by token position: an encoded value may itself look like
        # a placeholder, so the template is never searched textually.
        tokens = asm_template.split()
        found = set[str]()
        for i, token in enumerate(tokens):
            if token.startswith("$") and token[1:] in flat:
                found.add(token[1:])
                tokens[i] = flat[token[1:]]

        for name in flat:
            if name not in found:
                raise ValidationError(
                    f"abi constructor params mismatch with args provided: missing {name} in asm template"
                )

        logger.debug("encoded constructor with %d placeholders", len(flat))
        return FunctionCall(
            "constructor",
            [Argument(p.name, p.type, a) for p, a in zip(entity.params, args)],
            contract=contract,
            locking_script_asm=" ".join(tokens),
            template_asm=asm_template,
        )

    def encode_constructor_call_from_asm(
        self, contract: AbstractContract, asm: str
    ) -> FunctionCall:
        """Adopt an existing locking script; its arguments are not recoverable."""
        return FunctionCall(
            "constructor", [], contract=contract, locking_script_asm=asm.strip()
        )

    def encode_constructor_call_from_hex(
        self, contract: AbstractContract, hex: str
    ) -> FunctionCall:
        return self.encode_constructor_call_from_asm(
            contract, Script.from_hex(hex).to_asm()
        )

    def encode_pub_function_call(
        self, contract: AbstractContract, name: str, args: Sequence[Any]
    ) -> FunctionCall:
        """Encode the unlocking script for a call to a public function."""
        entity = self.function(name)
        _check_count(name, entity, args)

        tokens = [
            asm_of(self.check(p.name, p.type, a)) for p, a in zip(entity.params, args)
        ]
        if len(self.functions) > 1 and entity.index is not None:
            tokens.append(int_to_asm(entity.index))

        return FunctionCall(
            name,
            [Argument(p.name, p.type, a) for p, a in zip(entity.params, args)],
            contract=contract,
            unlocking_script_asm=" ".join(t for t in tokens if t),
        )

    ### ### ### ### ###

    def check(self, name: str, type: str, value: Any) -> Any:
        """
        Validate a value against a declared type.

        Returns the value normalized to typed scalars, bound structs and
        nested lists.
        """
        final = self.resolve(type)
        if is_array_type(final):
            return self._check_array(name, final, value)
        if is_struct_type(final):
            return self._check_struct(name, final, value)

        actual = type_of_arg(value)
        if actual != final:
            raise ValidationError(
                f"wrong argument type, expected {final} but got {actual}"
            )
        return to_scrypt_type(value)

    def _check_array(self, name: str, final: str, value: Any) -> list[Any]:
        elem, sizes = array_type_and_size(final)
        if not isinstance(value, (list, tuple)) or len(value) != sizes[0]:
            raise ValidationError(f"expect param {name} as {final}")
        inner = to_literal_array_type(elem, sizes[1:]) if len(sizes) > 1 else elem
        return [self.check(f"{name}[{i}]", inner, v) for i, v in enumerate(value)]

    def _check_struct(self, name: str, final: str, value: Any) -> Struct:
        expected = struct_name_of(final)
        entity = self.structs.get(expected)
        if isinstance(value, Mapping) and entity is not None:
            value = self.struct_class(entity)(value)
        if not isinstance(value, Struct):
            raise ValidationError(
                f"wrong argument type, expected {final} but got {type_of_arg(value)}"
            )
        if value.struct_name != expected:
            raise ValidationError(
                f"expect struct {expected} but got struct {value.struct_name}"
            )

        entity = entity or value.declaration
        if entity is None:
            raise ValidationError(f"struct {expected} is not declared")

        members = value.members
        declared = [p.name for p in entity.params]
        for field in declared:
            if field not in members:
                raise ValidationError(
                    f"argument of type struct {expected} missing member {field}"
                )
        for field in members:
            if field not in declared:
                raise ValidationError(f"{field} is not a member of struct {expected}")

        return self.struct_class(entity)(
            {
                p.name: self.check(f"{name}.{p.name}", p.type, members[p.name])
                for p in entity.params
            }
        )


def flatten(name: str, value: Any) -> Iterator[tuple[str, str]]:
    """
    Yield `(placeholder, asm)` for each scalar inside a checked value.

    Struct fields are named `name.field` and array elements `name[i]`.
    """
    match value:
        case list():
            for i, v in enumerate(value):
                yield from flatten(f"{name}[{i}]", v)
        case Struct():
            for field, v in value.members.items():
                yield from flatten(f"{name}.{field}", v)
        case ScryptType():
            yield name, value.to_asm()
        case _:
            raise ValidationError(f"cannot encode {name}: {value!r}")


def _check_count(name: str, entity: ABIEntity, args: Sequence[Any]) -> None:
    if len(args) != len(entity.params):
        raise ValidationError(
            f"wrong number of arguments for #{name}, "
            f"expected {len(entity.params)} but got {len(args)}"
        )
