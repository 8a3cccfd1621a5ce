"""Contract classes built from a compiled contract description."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Mapping, Self

from abi import ABICoder, ABIEntity, ABIEntityType, Argument, FunctionCall
from config import VerifyConfig, load_config
from debug import Failure, OpcodeEntry, correlate
from script import Script
from scrypttypes import (
    BASIC_TYPES,
    SCALARS,
    AliasEntity,
    ParamEntity,
    ScryptType,
    StructEntity,
    ValidationError,
    VariableType,
    is_struct_type,
    make_struct_class,
    resolve_type,
    struct_name_of,
)
from serializer import serialize_state
from transaction import TxContext
from vm import Execution, Interpreter, VerifyResult

logger = logging.getLogger(__name__)


class LoadError(Exception):
    """The compiled description is malformed or incomplete."""

    pass


class NamingConflictError(Exception):
    """A public function name collides with the contract interface."""

    pass


# Names a public function may not take, in addition to every attribute of
# AbstractContract and every name the built class defines for itself.
RESERVED = frozenset(
    [
        "arguments",
        "setDataPart",
        "lockingScript",
        "codePart",
        "dataPart",
        "txContext",
        "replaceAsmVars",
        "asmVars",
        "_calls",
        "_constructor",
        "_data_part",
        "_tx_context",
    ]
)


@dataclass(frozen=True)
class CompiledDescription:
    """The compiler's output for one contract. Loaded once, never mutated."""

    contract: str
    abi: tuple[ABIEntity, ...]
    asm: str
    structs: tuple[StructEntity, ...] = ()
    aliases: tuple[AliasEntity, ...] = ()
    file: str = ""
    compiler_version: str = ""
    md5: str = ""

    # Source positions of the compiled opcodes, parallel to `asm`
    opcodes: tuple[OpcodeEntry, ...] = field(default=(), repr=False)

    @classmethod
    def from_dict(cls, desc: Mapping[str, Any]) -> CompiledDescription:
        """Load a JSON-shaped description."""
        if not desc.get("contract"):
            raise LoadError("missing field `contract` in description")
        if desc.get("abi") is None:
            raise LoadError("missing field `abi` in description")
        if not desc.get("asm"):
            raise LoadError("missing field `asm` in description")

        try:
            abi = tuple(_load_entity(e) for e in desc["abi"])
            structs = tuple(
                StructEntity(s["name"], _load_params(s.get("params") or ()))
                for s in desc.get("structs") or ()
            )
            aliases = tuple(
                AliasEntity(a["name"], a["type"]) for a in desc.get("alias") or ()
            )
        except (KeyError, TypeError, ValueError) as e:
            raise LoadError(f"malformed description for {desc['contract']}: {e!r}") from e

        return cls(
            contract=desc["contract"],
            abi=abi,
            asm=desc["asm"],
            structs=structs,
            aliases=aliases,
            file=desc.get("file") or "",
            compiler_version=desc.get("compilerVersion") or "",
            md5=desc.get("md5") or "",
            opcodes=_load_opcodes(desc.get("opcodes")),
        )


def _load_entity(raw: Mapping[str, Any]) -> ABIEntity:
    kind = ABIEntityType(raw["type"])
    name = raw.get("name") or ("constructor" if kind == ABIEntityType.CONSTRUCTOR else None)
    if name is None:
        raise ValueError("abi function without a name")
    index = raw.get("index")
    return ABIEntity(
        kind, name, _load_params(raw.get("params") or ()), None if index is None else int(index)
    )


def _load_params(raw: Any) -> tuple[ParamEntity, ...]:
    return tuple(ParamEntity(p["name"], p["type"]) for p in raw)


def _load_opcodes(raw: Any) -> tuple[OpcodeEntry, ...]:
    # Positions are for diagnostics only: a bad map is dropped, not fatal.
    if not raw:
        return ()
    try:
        return tuple(OpcodeEntry.from_dict(o) for o in raw)
    except (KeyError, TypeError, AttributeError) as e:
        logger.debug("ignoring malformed opcode position map: %r", e)
        return ()


class AbstractContract:
    """
    An instance of a compiled contract.

    Concrete subclasses are created by `build_contract_class`; constructing
    one encodes the constructor arguments into the locking script.
    """

    contract_name: ClassVar[str]
    description: ClassVar[CompiledDescription]
    abi_coder: ClassVar[ABICoder]
    interpreter: ClassVar[Interpreter | None] = None
    config: ClassVar[VerifyConfig] = VerifyConfig()

    # Dispatch table: public function name -> ABI entity
    functions: ClassVar[dict[str, ABIEntity]] = {}

    def __init__(self, *args: Any) -> None:
        self._reset()
        self._constructor = self.abi_coder.encode_constructor_call(
            self, self.description.asm, *args
        )

    def _reset(self) -> None:
        self._calls = dict[str, FunctionCall]()
        self._data_part: str | None = None
        self._tx_context: TxContext | None = None

    @classmethod
    def from_asm(cls, asm: str) -> Self:
        """Reconstruct an instance from an on-chain locking script."""
        instance = cls.__new__(cls)
        instance._reset()
        instance._constructor = cls.abi_coder.encode_constructor_call_from_asm(
            instance, asm
        )
        return instance

    @classmethod
    def from_hex(cls, hex: str) -> Self:
        return cls.from_asm(Script.from_hex(hex).to_asm())

    ### ### ### ### ###

    @property
    def locking_script(self) -> Script:
        """The constructor script, followed by `OP_RETURN <data>` if set."""
        asm = self._constructor.to_asm()
        if self._data_part is not None:
            asm = f"{asm} OP_RETURN {self._data_part}"
        return Script.from_asm(asm)

    @property
    def code_part(self) -> Script:
        """The constructor script and a bare OP_RETURN, ignoring any data."""
        return Script.from_asm(self._constructor.to_asm() + " OP_RETURN")

    @property
    def data_part(self) -> Script | None:
        return None if self._data_part is None else Script.from_asm(self._data_part)

    @data_part.setter
    def data_part(self, value: Any) -> None:
        raise AttributeError(
            "Setter for data_part is not available. Please use: set_data_part() instead"
        )

    def set_data_part(self, state: str | Any) -> None:
        """Set the data part from serialized hex/ASM, or serialize a state value."""
        if isinstance(state, str):
            data = state.strip()
            Script.from_asm(data)
        else:
            data = serialize_state(state)
        self._data_part = data

    @property
    def tx_context(self) -> TxContext | None:
        return self._tx_context

    @tx_context.setter
    def tx_context(self, value: TxContext | Mapping[str, Any] | None) -> None:
        self._tx_context = TxContext.of(value)

    def replace_asm_vars(self, asm_var_values: Mapping[str, str]) -> None:
        """Substitute inline-assembly variables in the locking script."""
        self._constructor.init(asm_var_values)

    @property
    def asm_vars(self) -> dict[str, str]:
        return self._constructor.asm_vars

    ### ### ### ### ###

    def call(self, name: str, *args: Any) -> FunctionCall:
        """
        Encode a call to a public function.

        The call replaces any earlier call of the same name on this instance.
        """
        if name not in self.functions:
            raise ValidationError(f"no function named '{name}' found in abi")
        call = self.abi_coder.encode_pub_function_call(self, name, args)
        self._calls[name] = call
        return call

    def last_call(self, name: str) -> FunctionCall | None:
        if name == "constructor":
            return self._constructor
        return self._calls.get(name)

    def arguments(self, name: str) -> list[Argument]:
        """The arguments of the most recent call of `name`."""
        call = self.last_call(name)
        return [] if call is None else list(call.args)

    ### ### ### ### ###

    def verify(
        self,
        unlocking_script_asm: str,
        tx_context: TxContext | Mapping[str, Any] | None = None,
    ) -> VerifyResult:
        """Run an unlocking script against this instance's locking script."""
        if self.interpreter is None:
            raise RuntimeError(f"no interpreter configured for {self.contract_name}")

        supplied = TxContext.of(tx_context)
        ctx = (self._tx_context or TxContext()).merge(supplied)

        unlocking = Script.from_asm(unlocking_script_asm)
        execution = self.interpreter.verify(
            unlocking,
            self.locking_script,
            ctx.tx,
            ctx.input_index or 0,
            self.config.flags,
            ctx.input_satoshis or 0,
        )
        if execution.success:
            return VerifyResult(True, "")

        logger.debug("%s: verification failed: %s", self.contract_name, execution.error)
        error = execution.error
        failure = self._diagnose(execution, len(unlocking))
        if failure is not None:
            error = failure.render(error)
        if self._tx_context is None and supplied is None:
            error += "\n\tshould provide txContext when verify"
        elif ctx.tx is None:
            error += "\n\tshould provide txContext.tx when verify"
        return VerifyResult(False, error)

    def _diagnose(self, execution: Execution, offset: int) -> Failure | None:
        entries = self.description.opcodes
        if not entries:
            return None
        try:
            # Report the instantiated opcode, not the template placeholder.
            tokens = self._constructor.to_asm().split()
            if len(tokens) == len(entries):
                entries = tuple(OpcodeEntry(t, e.pos) for t, e in zip(tokens, entries))
            return correlate(
                execution.trace, entries, offset, self._data_part, self.config.std_file
            )
        except (IndexError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.debug("cannot correlate failure with source: %r", e)
            return None


def build_contract_class(
    desc: CompiledDescription | Mapping[str, Any],
    *,
    interpreter: Interpreter | None = None,
    config: VerifyConfig | None = None,
) -> type[AbstractContract]:
    """Create the contract class for a compiled description."""
    description = (
        desc if isinstance(desc, CompiledDescription) else CompiledDescription.from_dict(desc)
    )
    coder = ABICoder(description.abi, description.structs, description.aliases)

    functions = dict[str, ABIEntity]()
    namespace: dict[str, Any] = {
        "contract_name": description.contract,
        "description": description,
        "abi_coder": coder,
        "interpreter": interpreter,
        "config": config or load_config(),
        "functions": functions,
    }
    for entity in coder.functions:
        name = entity.name
        if name in functions:
            raise LoadError(f"duplicate function '{name}' in abi of {description.contract}")
        if name in RESERVED or name in namespace or hasattr(AbstractContract, name):
            raise NamingConflictError(
                f"function name '{name}' in abi of {description.contract} "
                f"conflicts with the contract interface"
            )
        functions[name] = entity
        namespace[name] = _public_function(name)

    return type(description.contract, (AbstractContract,), namespace)


def _public_function(name: str) -> Callable[..., FunctionCall]:
    def method(self: AbstractContract, *args: Any) -> FunctionCall:
        return self.call(name, *args)

    method.__name__ = name
    method.__qualname__ = name
    method.__doc__ = f"Encode a call to public function `{name}`."
    return method


def build_type_classes(
    desc: CompiledDescription | Mapping[str, Any],
) -> dict[str, type[ScryptType]]:
    """Create a class per declared struct, and map each alias to its class."""
    description = (
        desc if isinstance(desc, CompiledDescription) else CompiledDescription.from_dict(desc)
    )
    classes: dict[str, type[ScryptType]] = {
        s.name: make_struct_class(s) for s in description.structs
    }
    for alias in description.aliases:
        final = resolve_type(description.aliases, alias.name, classes.keys())
        if is_struct_type(final):
            target = classes.get(struct_name_of(final))
        elif final in BASIC_TYPES:
            target = SCALARS[VariableType(final)]
        else:
            target = None  # arrays have no class of their own
        if target is not None:
            classes[alias.name] = target
    return classes
