"""Instruction tags understood by the interest vault program."""
from enum import IntEnum

from interest_vault.errors import DecodingError


class Opcode(IntEnum):
    """First byte of every instruction payload."""
    INIT = 0
    DEPOSIT = 1
    WITHDRAW = 2
    DONATE = 3
    POST_ROOT = 4
    CLAIM = 5

    @classmethod
    def from_byte(cls, value: int) -> "Opcode":
        try:
            return cls(value)
        except ValueError:
            raise DecodingError(f"unknown instruction tag {value}", {"tag": value}) from None
