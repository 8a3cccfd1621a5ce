"""Test helpers: compiled-contract fixtures, a toy interpreter and signer."""

from dataclasses import dataclass, field
from typing import Any

from Crypto.Hash import RIPEMD160, SHA256

from opcodes import BY_NAME, OP_0, OP_1NEGATE, REFERENCE
from script import Script
from scrypttypes import int_to_sm, sm_to_int
from vm import Execution, Step

P2PKH_FILE = "/contracts/p2pkh.scrypt"
PERSON_FILE = "/contracts/person.scrypt"


def _positions(file: str, asm: str, lines: list[int]) -> list[dict[str, Any]]:
    tokens = asm.split()
    assert len(tokens) == len(lines)
    return [
        {"opcode": t, "pos": {"file": file, "line": n}} for t, n in zip(tokens, lines)
    ]


P2PKH_ASM = "OP_DUP OP_HASH160 $pubKeyHash OP_EQUALVERIFY OP_CHECKSIG"

P2PKH: dict[str, Any] = {
    "compilerVersion": "0.1.0",
    "contract": "DemoP2PKH",
    "md5": "01234567890123456789012345678901",
    "file": P2PKH_FILE,
    "structs": [],
    "alias": [],
    "abi": [
        {
            "type": "function",
            "name": "unlock",
            "index": 0,
            "params": [
                {"name": "sig", "type": "Sig"},
                {"name": "pubKey", "type": "PubKey"},
            ],
        },
        {
            "type": "constructor",
            "params": [{"name": "pubKeyHash", "type": "Ripemd160"}],
        },
    ],
    "asm": P2PKH_ASM,
    "opcodes": _positions(P2PKH_FILE, P2PKH_ASM, [5, 5, 5, 5, 6]),
}

PERSON_ASM = (
    "$someone.isMale OP_EQUALVERIFY "
    "$yearsOld OP_LESSTHAN OP_VERIFY "
    "$someone.addr OP_EQUALVERIFY "
    "$someone.age OP_NUMEQUALVERIFY "
    "$someone.isMale OP_EQUAL"
)

PERSON: dict[str, Any] = {
    "compilerVersion": "0.1.0",
    "contract": "PersonContract",
    "file": PERSON_FILE,
    "structs": [
        {
            "name": "Person",
            "params": [
                {"name": "isMale", "type": "bool"},
                {"name": "age", "type": "int"},
                {"name": "addr", "type": "bytes"},
            ],
        },
        {
            "name": "Block",
            "params": [
                {"name": "time", "type": "int"},
                {"name": "header", "type": "bytes"},
                {"name": "hash", "type": "bytes"},
            ],
        },
    ],
    "alias": [
        {"name": "Male", "type": "Person"},
        {"name": "Human", "type": "Male"},
        {"name": "Age", "type": "int"},
        {"name": "Tokens", "type": "int[3]"},
    ],
    "abi": [
        {
            "type": "function",
            "name": "main",
            "index": 0,
            "params": [
                {"name": "p", "type": "Human"},
                {"name": "age", "type": "Age"},
                {"name": "isMale", "type": "bool"},
            ],
        },
        {
            "type": "constructor",
            "params": [
                {"name": "someone", "type": "Person"},
                {"name": "yearsOld", "type": "int"},
            ],
        },
    ],
    "asm": PERSON_ASM,
    "opcodes": _positions(
        PERSON_FILE, PERSON_ASM, [12, 12, 13, 13, 13, 14, 14, 15, 15, 16, 16]
    ),
}

COINTOSS: dict[str, Any] = {
    "contract": "DemoCoinToss",
    "abi": [
        {
            "type": "function",
            "name": "toss",
            "index": 0,
            "params": [
                {"name": "aliceNonce", "type": "bytes"},
                {"name": "bobNonce", "type": "bytes"},
                {"name": "sig", "type": "Sig"},
            ],
        },
        {
            "type": "constructor",
            "params": [
                {"name": "alice", "type": "PubKey"},
                {"name": "bob", "type": "PubKey"},
                {"name": "aliceHash", "type": "Sha256"},
                {"name": "bobHash", "type": "Sha256"},
                {"name": "n", "type": "int"},
            ],
        },
    ],
    # $alice and $bob are prefixes of other placeholders
    "asm": "$alice $bob $aliceHash $bobHash $n OP_2DROP OP_2DROP OP_DROP OP_1",
}

MULTISIG: dict[str, Any] = {
    "contract": "MultiSig",
    "abi": [
        {
            "type": "function",
            "name": "unlock",
            "index": 0,
            "params": [
                {"name": "pubKeys", "type": "PubKey[3]"},
                {"name": "sigs", "type": "Sig[3]"},
            ],
        },
        {
            "type": "constructor",
            "params": [{"name": "pubKeyHashes", "type": "Ripemd160[3]"}],
        },
    ],
    "asm": "$pubKeyHashes[0] $pubKeyHashes[1] $pubKeyHashes[2] OP_2DROP OP_DROP OP_1",
}

COUNTER: dict[str, Any] = {
    "contract": "Counter",
    "abi": [
        {
            "type": "function",
            "name": "increment",
            "index": 0,
            "params": [{"name": "amount", "type": "int"}],
        },
        {
            "type": "function",
            "name": "reset",
            "index": 1,
            "params": [],
        },
    ],
    "asm": "OP_DROP $max OP_LESSTHAN",
}


### ### ### ### ###
# Toy transaction and signing scheme


@dataclass
class Tx:
    txid: str
    n_lock_time: int = 0
    outputs: list[tuple[int, bytes]] = field(default_factory=list)

    def serialize(self) -> bytes:
        data = bytes.fromhex(self.txid) + self.n_lock_time.to_bytes(4, "little")
        for satoshis, script in self.outputs:
            data += satoshis.to_bytes(8, "little") + script
        return data


def new_tx() -> Tx:
    return Tx(txid="a477af6b2667c29670467e4e0728b685ee07b240235771862318e29ddbe58458")


@dataclass(frozen=True)
class KeyPair:
    secret: bytes

    @property
    def public_key(self) -> bytes:
        return b"\x02" + SHA256.new(self.secret).digest()

    @property
    def pubkey_hash(self) -> bytes:
        return hash160(self.public_key)


ALICE = KeyPair(b"alice")
BOB = KeyPair(b"bob")


def hash160(data: bytes) -> bytes:
    return RIPEMD160.new(SHA256.new(data).digest()).digest()


def sighash(
    tx: Tx, locking_script: Script, input_satoshis: int, input_index: int, sighash_type: int
) -> bytes:
    return (
        tx.serialize()
        + locking_script.to_bytes()
        + input_satoshis.to_bytes(8, "little")
        + input_index.to_bytes(4, "little")
        + sighash_type.to_bytes(4, "little")
    )


class ToySigner:
    """Signs with SHA256(pubkey || preimage), which ToyInterpreter checks."""

    def sign(
        self,
        tx: Tx,
        private_key: KeyPair,
        locking_script: Script,
        input_satoshis: int,
        input_index: int,
        sighash_type: int,
        flags: int,
    ) -> bytes:
        message = sighash(tx, locking_script, input_satoshis, input_index, sighash_type)
        digest = SHA256.new(private_key.public_key + message).digest()
        return digest + bytes([sighash_type])

    def preimage(
        self,
        tx: Tx,
        locking_script: Script,
        input_satoshis: int,
        input_index: int,
        sighash_type: int,
        flags: int,
    ) -> bytes:
        return sighash(tx, locking_script, input_satoshis, input_index, sighash_type)


### ### ### ### ###
# Toy interpreter


class _Abort(Exception):
    pass


class ToyInterpreter:
    """
    A small stack machine covering the opcodes used by the fixtures.

    Like a real interpreter, it records one step per completed operation and
    none for the operation that fails.
    """

    def __init__(self) -> None:
        self.calls = 0
        self.flags: int | None = None

    def verify(
        self,
        unlocking: Script,
        locking: Script,
        tx: Tx | None,
        input_index: int,
        flags: int,
        input_satoshis: int,
    ) -> Execution:
        self.calls += 1
        self.flags = flags
        stack = list[bytes]()
        branches = list[bool]()
        trace = list[Step]()

        try:
            for script in (unlocking, locking):
                for chunk in script.chunks:
                    executing = all(branches)
                    stop = self._step(
                        chunk.opcode,
                        chunk.data,
                        executing,
                        stack,
                        branches,
                        locking,
                        tx,
                        input_index,
                        input_satoshis,
                    )
                    trace.append(Step(executing, tuple(stack)))
                    if stop:
                        return self._finish(stack, trace)
        except _Abort as e:
            return Execution(False, str(e), tuple(trace))
        return self._finish(stack, trace)

    def _finish(self, stack: list[bytes], trace: list[Step]) -> Execution:
        if not stack or not _truthy(stack[-1]):
            return Execution(False, "SCRIPT_ERR_EVAL_FALSE", tuple(trace))
        return Execution(True, "", tuple(trace))

    def _step(
        self,
        opcode: int,
        data: bytes | None,
        executing: bool,
        stack: list[bytes],
        branches: list[bool],
        locking: Script,
        tx: Tx | None,
        input_index: int,
        input_satoshis: int,
    ) -> bool:
        """Run one operation. Returns True when execution should stop early."""
        name = REFERENCE[opcode].name if data is None else ""
        if name in ("OP_IF", "OP_NOTIF"):
            cond = False
            if executing:
                cond = _truthy(_pop(stack)) == (name == "OP_IF")
            branches.append(cond)
            return False
        if name == "OP_ELSE":
            if not branches:
                raise _Abort("SCRIPT_ERR_UNBALANCED_CONDITIONAL")
            branches[-1] = not branches[-1]
            return False
        if name == "OP_ENDIF":
            if not branches:
                raise _Abort("SCRIPT_ERR_UNBALANCED_CONDITIONAL")
            branches.pop()
            return False
        if not executing:
            return False

        if data is not None:
            stack.append(data)
        elif opcode == OP_0:
            stack.append(b"")
        elif opcode == OP_1NEGATE:
            stack.append(int_to_sm(-1))
        elif BY_NAME["OP_1"].code <= opcode <= BY_NAME["OP_16"].code:
            stack.append(int_to_sm(opcode - BY_NAME["OP_1"].code + 1))
        else:
            match name:
                case "OP_RETURN":
                    return True
                case "OP_DUP":
                    stack.append(_peek(stack))
                case "OP_DROP":
                    _pop(stack)
                case "OP_2DROP":
                    _pop(stack)
                    _pop(stack)
                case "OP_SWAP":
                    a, b = _pop(stack), _pop(stack)
                    stack.extend([a, b])
                case "OP_HASH160":
                    stack.append(hash160(_pop(stack)))
                case "OP_SHA256":
                    stack.append(SHA256.new(_pop(stack)).digest())
                case "OP_EQUAL":
                    stack.append(_bool(_pop(stack) == _pop(stack)))
                case "OP_EQUALVERIFY":
                    if _pop(stack) != _pop(stack):
                        raise _Abort("SCRIPT_ERR_EQUALVERIFY")
                case "OP_VERIFY":
                    if not _truthy(_pop(stack)):
                        raise _Abort("SCRIPT_ERR_VERIFY")
                case "OP_NOT":
                    stack.append(_bool(sm_to_int(_pop(stack)) == 0))
                case "OP_ADD":
                    b, a = sm_to_int(_pop(stack)), sm_to_int(_pop(stack))
                    stack.append(int_to_sm(a + b))
                case "OP_NUMEQUAL":
                    stack.append(_bool(sm_to_int(_pop(stack)) == sm_to_int(_pop(stack))))
                case "OP_NUMEQUALVERIFY":
                    if sm_to_int(_pop(stack)) != sm_to_int(_pop(stack)):
                        raise _Abort("SCRIPT_ERR_NUMEQUALVERIFY")
                case "OP_LESSTHAN":
                    b, a = sm_to_int(_pop(stack)), sm_to_int(_pop(stack))
                    stack.append(_bool(a < b))
                case "OP_GREATERTHAN":
                    b, a = sm_to_int(_pop(stack)), sm_to_int(_pop(stack))
                    stack.append(_bool(a > b))
                case "OP_CHECKSIG":
                    pubkey, sig = _pop(stack), _pop(stack)
                    stack.append(
                        _bool(
                            self._checksig(
                                sig, pubkey, locking, tx, input_index, input_satoshis
                            )
                        )
                    )
                case _:
                    raise _Abort("SCRIPT_ERR_BAD_OPCODE")
        return False

    def _checksig(
        self,
        sig: bytes,
        pubkey: bytes,
        locking: Script,
        tx: Tx | None,
        input_index: int,
        input_satoshis: int,
    ) -> bool:
        if tx is None or not sig:
            return False
        message = sighash(tx, locking, input_satoshis, input_index, sig[-1])
        return SHA256.new(pubkey + message).digest() == sig[:-1]


def _pop(stack: list[bytes]) -> bytes:
    if not stack:
        raise _Abort("SCRIPT_ERR_INVALID_STACK_OPERATION")
    return stack.pop()


def _peek(stack: list[bytes]) -> bytes:
    if not stack:
        raise _Abort("SCRIPT_ERR_INVALID_STACK_OPERATION")
    return stack[-1]


def _truthy(data: bytes) -> bool:
    return sm_to_int(data) != 0


def _bool(value: bool) -> bytes:
    return b"\x01" if value else b""
