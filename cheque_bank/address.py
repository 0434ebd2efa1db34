"""
Account Address Module

Fixed-width (20 byte) account identifiers bound to the secp256k1 public-key
space. Addresses are immutable values compared by their raw bytes; the
EIP-55 checksum form is only a rendering.
"""

from dataclasses import dataclass
from typing import Union

from eth_utils import is_hex_address, to_canonical_address, to_checksum_address


ADDRESS_LENGTH = 20


@dataclass(frozen=True)
class Address:
    """
    Immutable 20-byte account identifier.
    Accepts raw bytes or a 0x-prefixed hex string (any case).
    """
    raw: bytes

    def __post_init__(self):
        value = self.raw
        if isinstance(value, Address):
            value = value.raw
        elif isinstance(value, str):
            if not is_hex_address(value):
                raise ValueError(f"Not a 20-byte hex address: {value!r}")
            value = to_canonical_address(value)
        elif isinstance(value, (bytearray, memoryview)):
            value = bytes(value)

        if not isinstance(value, bytes) or len(value) != ADDRESS_LENGTH:
            raise ValueError(f"Address must be exactly {ADDRESS_LENGTH} bytes")

        object.__setattr__(self, 'raw', value)

    @classmethod
    def parse(cls, value: Union['Address', str, bytes]) -> 'Address':
        """Coerce any accepted representation into an Address"""
        if isinstance(value, Address):
            return value
        return cls(value)

    @classmethod
    def zero(cls) -> 'Address':
        return cls(b'\x00' * ADDRESS_LENGTH)

    @property
    def checksum(self) -> str:
        """EIP-55 mixed-case hex form"""
        return to_checksum_address(self.raw)

    def is_zero(self) -> bool:
        return self.raw == b'\x00' * ADDRESS_LENGTH

    def __str__(self) -> str:
        return self.checksum

    def __repr__(self) -> str:
        return f"Address({self.checksum})"
