"""Transaction context and the boundary to an external signer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Self

from config import DEFAULT_SIGHASH_TYPE
from script import Script
from scrypttypes import Sig, SigHashPreimage
from vm import DEFAULT_FLAGS


@dataclass(frozen=True, slots=True)
class TxContext:
    """The spending transaction and the input being verified."""

    tx: Any = None
    input_index: int | None = None
    input_satoshis: int | None = None

    @classmethod
    def of(cls, value: TxContext | Mapping[str, Any] | None) -> Self | None:
        if value is None or isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(**value)
        raise TypeError(f"expected TxContext or mapping, got {type(value).__name__}")

    def __copy__(self) -> Self:
        return self

    def merge(self, other: TxContext | None) -> TxContext:
        """Overlay `other` on this context; fields set in `other` win."""
        if other is None:
            return self
        return TxContext(
            tx=self.tx if other.tx is None else other.tx,
            input_index=self.input_index
            if other.input_index is None
            else other.input_index,
            input_satoshis=self.input_satoshis
            if other.input_satoshis is None
            else other.input_satoshis,
        )

    def is_empty(self) -> bool:
        return self.tx is None and self.input_index is None and self.input_satoshis is None


class Signer(Protocol):
    """Produces signatures and sighash preimages for a transaction input."""

    def sign(
        self,
        tx: Any,
        private_key: Any,
        locking_script: Script,
        input_satoshis: int,
        input_index: int,
        sighash_type: int,
        flags: int,
    ) -> bytes: ...

    def preimage(
        self,
        tx: Any,
        locking_script: Script,
        input_satoshis: int,
        input_index: int,
        sighash_type: int,
        flags: int,
    ) -> bytes: ...


def sign_tx(
    signer: Signer,
    tx: Any,
    private_key: Any,
    locking_script_asm: str,
    input_satoshis: int,
    input_index: int = 0,
    sighash_type: int = DEFAULT_SIGHASH_TYPE,
    flags: int = DEFAULT_FLAGS,
) -> Sig:
    """Sign one input of `tx`, which spends an output locked by the given script."""
    if not tx:
        raise ValueError("param tx can not be empty")
    if not private_key:
        raise ValueError("param privateKey can not be empty")
    if not locking_script_asm:
        raise ValueError("param lockingScriptASM can not be empty")
    if not input_satoshis:
        raise ValueError("param inputSatoshis can not be empty")

    signature = signer.sign(
        tx,
        private_key,
        Script.from_asm(locking_script_asm),
        input_satoshis,
        input_index,
        int(sighash_type),
        int(flags),
    )
    return Sig(signature.hex())


def get_preimage(
    signer: Signer,
    tx: Any,
    locking_script_asm: str,
    input_satoshis: int,
    input_index: int = 0,
    sighash_type: int = DEFAULT_SIGHASH_TYPE,
    flags: int = DEFAULT_FLAGS,
) -> SigHashPreimage:
    """Compute the sighash preimage of one input of `tx`."""
    preimage = signer.preimage(
        tx,
        Script.from_asm(locking_script_asm),
        input_satoshis,
        input_index,
        int(sighash_type),
        int(flags),
    )
    return SigHashPreimage(preimage.hex())
