"""
Instruction payload codec for the interest vault program.

Every payload is the one-byte opcode followed by a fixed argument block:

    Init      decimals:u8
    Deposit   amount:u64  usdc_decimals:u8
    Withdraw  shares:u64  usdc_decimals:u8
    Donate    amount:u64  epoch:u64  boost_bps:u16  usdc_decimals:u8
    PostRoot  epoch:u64  total_weight:u128  root:[u8; 32]
    Claim     epoch:u64  index:u32  weight:u128  proof_count:u8  proof:[[u8; 32]; proof_count]

All integers are little-endian. Values that do not fit their field are
rejected with EncodingError instead of being masked to the low byte; use
mask_u8() to reproduce the truncating behaviour deliberately.

Usage:
    from interest_vault.codec import DepositArgs, encode_instruction

    data = encode_instruction(DepositArgs(amount=1_000_000, usdc_decimals=6))
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Tuple, Type, Union

from borsh_construct import CStruct, U8, U16, U32, U64, U128
from construct import Bytes, ConstructError, PrefixedArray

from interest_vault.errors import DecodingError, EncodingError
from interest_vault.opcodes import Opcode

HASH_SIZE = 32
MAX_PROOF_NODES = 255

# opcode + epoch + index + weight + proof_count
CLAIM_HEADER_SIZE = 1 + 8 + 4 + 16 + 1
_PROOF_COUNT_OFFSET = CLAIM_HEADER_SIZE - 1

_LAYOUTS = {
    Opcode.INIT: CStruct("decimals" / U8),
    Opcode.DEPOSIT: CStruct("amount" / U64, "usdc_decimals" / U8),
    Opcode.WITHDRAW: CStruct("shares" / U64, "usdc_decimals" / U8),
    Opcode.DONATE: CStruct(
        "amount" / U64,
        "epoch" / U64,
        "boost_bps" / U16,
        "usdc_decimals" / U8,
    ),
    Opcode.POST_ROOT: CStruct(
        "epoch" / U64,
        "total_weight" / U128,
        "root" / Bytes(HASH_SIZE),
    ),
    Opcode.CLAIM: CStruct(
        "epoch" / U64,
        "index" / U32,
        "weight" / U128,
        "proof" / PrefixedArray(U8, Bytes(HASH_SIZE)),
    ),
}


@dataclass(frozen=True)
class InitArgs:
    OPCODE: ClassVar[Opcode] = Opcode.INIT
    WIDTHS: ClassVar[Tuple[Tuple[str, int], ...]] = (("decimals", 8),)

    decimals: int


@dataclass(frozen=True)
class DepositArgs:
    OPCODE: ClassVar[Opcode] = Opcode.DEPOSIT
    WIDTHS: ClassVar[Tuple[Tuple[str, int], ...]] = (("amount", 64), ("usdc_decimals", 8))

    amount: int
    usdc_decimals: int


@dataclass(frozen=True)
class WithdrawArgs:
    OPCODE: ClassVar[Opcode] = Opcode.WITHDRAW
    WIDTHS: ClassVar[Tuple[Tuple[str, int], ...]] = (("shares", 64), ("usdc_decimals", 8))

    shares: int
    usdc_decimals: int


@dataclass(frozen=True)
class DonateArgs:
    """Donation split into a base part (raises PPS) and a boost part (boost_bps of amount)."""
    OPCODE: ClassVar[Opcode] = Opcode.DONATE
    WIDTHS: ClassVar[Tuple[Tuple[str, int], ...]] = (
        ("amount", 64),
        ("epoch", 64),
        ("boost_bps", 16),
        ("usdc_decimals", 8),
    )

    amount: int
    epoch: int
    boost_bps: int
    usdc_decimals: int


@dataclass(frozen=True)
class PostRootArgs:
    OPCODE: ClassVar[Opcode] = Opcode.POST_ROOT
    WIDTHS: ClassVar[Tuple[Tuple[str, int], ...]] = (("epoch", 64), ("total_weight", 128))

    epoch: int
    total_weight: int
    root: bytes


@dataclass(frozen=True)
class ClaimArgs:
    OPCODE: ClassVar[Opcode] = Opcode.CLAIM
    WIDTHS: ClassVar[Tuple[Tuple[str, int], ...]] = (("epoch", 64), ("index", 32), ("weight", 128))

    epoch: int
    index: int
    weight: int
    proof: Tuple[bytes, ...] = ()

    def __post_init__(self):
        if isinstance(self.proof, list):
            object.__setattr__(self, "proof", tuple(self.proof))


InstructionArgs = Union[InitArgs, DepositArgs, WithdrawArgs, DonateArgs, PostRootArgs, ClaimArgs]

VARIANTS: Dict[Opcode, Type] = {
    cls.OPCODE: cls
    for cls in (InitArgs, DepositArgs, WithdrawArgs, DonateArgs, PostRootArgs, ClaimArgs)
}


def _known_opcode(opcode: Union[Opcode, int]) -> Opcode:
    try:
        return Opcode(opcode)
    except ValueError:
        raise EncodingError(f"unknown instruction tag {opcode}", {"tag": int(opcode)}) from None


def mask_u8(value: int) -> int:
    """Truncate to the low byte, for callers that want wrapping u8 fields."""
    return value & 0xFF


def instruction_size(opcode: Union[Opcode, int], proof_len: int = 0) -> int:
    """Exact payload length for an opcode (and, for Claim, its proof length)."""
    opcode = _known_opcode(opcode)
    if opcode is Opcode.CLAIM:
        if not 0 <= proof_len <= MAX_PROOF_NODES:
            raise EncodingError(
                f"proof has {proof_len} nodes; the one-byte count allows at most {MAX_PROOF_NODES}",
                {"proof_len": proof_len, "limit": MAX_PROOF_NODES},
                opcode=opcode,
            )
        return CLAIM_HEADER_SIZE + HASH_SIZE * proof_len
    return 1 + _LAYOUTS[opcode].sizeof()


def _check_uint(args, name: str, bits: int) -> None:
    value = getattr(args, name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(
            f"{name} must be an integer, got {type(value).__name__}",
            {"field": name},
            opcode=args.OPCODE,
        )
    if not 0 <= value < (1 << bits):
        raise EncodingError(
            f"{name}={value} does not fit in u{bits}",
            {"field": name, "value": value, "bits": bits},
            opcode=args.OPCODE,
        )


def _check_hash(args, name: str, value: Any) -> None:
    if not isinstance(value, (bytes, bytearray)) or len(value) != HASH_SIZE:
        size = len(value) if isinstance(value, (bytes, bytearray)) else None
        raise EncodingError(
            f"{name} must be {HASH_SIZE} bytes",
            {"field": name, "size": size},
            opcode=args.OPCODE,
        )


def _validate(args) -> None:
    for name, bits in args.WIDTHS:
        _check_uint(args, name, bits)

    if isinstance(args, PostRootArgs):
        _check_hash(args, "root", args.root)
    elif isinstance(args, ClaimArgs):
        if len(args.proof) > MAX_PROOF_NODES:
            raise EncodingError(
                f"proof has {len(args.proof)} nodes; the one-byte count allows at most {MAX_PROOF_NODES}",
                {"proof_len": len(args.proof), "limit": MAX_PROOF_NODES},
                opcode=args.OPCODE,
            )
        for i, node in enumerate(args.proof):
            _check_hash(args, f"proof[{i}]", node)


def encode_instruction(args: InstructionArgs) -> bytes:
    """Serialize a typed instruction into its wire payload."""
    if VARIANTS.get(getattr(args, "OPCODE", None)) is not type(args):
        raise EncodingError(f"unsupported instruction type {type(args).__name__}")

    _validate(args)
    opcode = args.OPCODE
    values = {f.name: getattr(args, f.name) for f in fields(args)}
    if opcode is Opcode.CLAIM:
        values["proof"] = [bytes(node) for node in args.proof]
    elif opcode is Opcode.POST_ROOT:
        values["root"] = bytes(args.root)

    try:
        body = _LAYOUTS[opcode].build(values)
    except ConstructError as exc:
        raise EncodingError(str(exc), opcode=opcode) from exc
    return bytes([opcode]) + body


def encode(opcode: Union[Opcode, int], **values) -> bytes:
    """Encode from an opcode and keyword fields, e.g. ``encode(Opcode.INIT, decimals=6)``."""
    opcode = _known_opcode(opcode)
    try:
        args = VARIANTS[opcode](**values)
    except TypeError as exc:
        raise EncodingError(str(exc), opcode=opcode) from exc
    return encode_instruction(args)


def decode_instruction(data: Union[bytes, bytearray, memoryview]) -> InstructionArgs:
    """Parse a wire payload back into its typed instruction.

    The buffer length must match the opcode's layout exactly.
    """
    data = bytes(data)
    if not data:
        raise DecodingError("empty instruction payload")

    opcode = Opcode.from_byte(data[0])
    proof_len = 0
    if opcode is Opcode.CLAIM:
        if len(data) < CLAIM_HEADER_SIZE:
            raise DecodingError(
                f"CLAIM payload truncated: {len(data)} bytes, header needs {CLAIM_HEADER_SIZE}",
                {"expected_min": CLAIM_HEADER_SIZE, "actual": len(data)},
                opcode=opcode,
            )
        proof_len = data[_PROOF_COUNT_OFFSET]

    expected = instruction_size(opcode, proof_len)
    if len(data) != expected:
        raise DecodingError(
            f"payload must be {expected} bytes, got {len(data)}",
            {"expected": expected, "actual": len(data)},
            opcode=opcode,
        )

    try:
        parsed = _LAYOUTS[opcode].parse(data[1:])
    except ConstructError as exc:
        raise DecodingError(str(exc), opcode=opcode) from exc

    variant = VARIANTS[opcode]
    values = {f.name: parsed[f.name] for f in fields(variant)}
    if opcode is Opcode.CLAIM:
        values["proof"] = tuple(bytes(node) for node in values["proof"])
    elif opcode is Opcode.POST_ROOT:
        values["root"] = bytes(values["root"])
    return variant(**values)
