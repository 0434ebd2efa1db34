"""
Commitment Encoding Module

Serializes a cheque's fields plus the settlement instance identity into a
fixed-layout byte string and hashes it with keccak-256. Every field has a
fixed width, so the concatenation needs no delimiters and two different
field tuples can never produce the same encoding.

Layout (132 bytes):

    cheque_id      32 bytes
    payer          20 bytes
    payee          20 bytes
    amount         32 bytes, big-endian unsigned
    bank_address   20 bytes
    valid_from      4 bytes, big-endian unsigned
    valid_thru      4 bytes, big-endian unsigned
"""

from typing import Union

from eth_utils import keccak

from .address import Address


CHEQUE_ID_LENGTH = 32
AMOUNT_WIDTH = 32
TIMESTAMP_WIDTH = 4
COMMITMENT_LENGTH = 32

MAX_UINT256 = 2 ** 256 - 1
MAX_UINT32 = 2 ** 32 - 1

ENCODED_CHEQUE_LENGTH = CHEQUE_ID_LENGTH + 20 + 20 + AMOUNT_WIDTH + 20 + 2 * TIMESTAMP_WIDTH


def keccak256(data: bytes) -> bytes:
    """Fixed 256-bit hash used for every commitment"""
    return keccak(primitive=bytes(data))


def _uint_bytes(value: int, width: int, name: str) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if value < 0 or value >= 1 << (8 * width):
        raise ValueError(f"{name} does not fit in {width} bytes: {value}")
    return value.to_bytes(width, 'big')


def normalize_cheque_id(cheque_id: Union[bytes, str]) -> bytes:
    """Accept raw bytes or a 0x-prefixed hex string; always 32 bytes"""
    if isinstance(cheque_id, str):
        text = cheque_id[2:] if cheque_id.startswith(('0x', '0X')) else cheque_id
        try:
            cheque_id = bytes.fromhex(text)
        except ValueError:
            raise ValueError(f"Cheque id is not valid hex: {cheque_id!r}")
    cheque_id = bytes(cheque_id)
    if len(cheque_id) != CHEQUE_ID_LENGTH:
        raise ValueError(f"Cheque id must be exactly {CHEQUE_ID_LENGTH} bytes")
    return cheque_id


def encode_cheque(
    cheque_id: Union[bytes, str],
    payer: Address,
    payee: Address,
    amount: int,
    bank_address: Address,
    valid_from: int = 0,
    valid_thru: int = 0
) -> bytes:
    """
    Build the canonical byte encoding of a cheque.

    Args:
        cheque_id: 32-byte caller-chosen identifier
        payer: Account that signs the cheque
        payee: Account entitled to redeem it
        amount: Ledger units, uint256
        bank_address: Identity of the settlement instance the cheque targets
        valid_from: Earliest ledger time (0 = unbounded)
        valid_thru: Latest ledger time (0 = unbounded)

    Returns:
        Encoded bytes, always ENCODED_CHEQUE_LENGTH long

    Raises:
        ValueError: If any field does not fit its width
    """
    encoded = b''.join((
        normalize_cheque_id(cheque_id),
        Address.parse(payer).raw,
        Address.parse(payee).raw,
        _uint_bytes(amount, AMOUNT_WIDTH, "amount"),
        Address.parse(bank_address).raw,
        _uint_bytes(valid_from, TIMESTAMP_WIDTH, "valid_from"),
        _uint_bytes(valid_thru, TIMESTAMP_WIDTH, "valid_thru"),
    ))
    assert len(encoded) == ENCODED_CHEQUE_LENGTH
    return encoded


def commit(encoded: bytes) -> bytes:
    """Hash an encoded cheque into its 32-byte commitment"""
    return keccak256(encoded)


def cheque_commitment(info, bank_address: Address) -> bytes:
    """Commitment for a ChequeInfo bound to a settlement instance"""
    return commit(encode_cheque(
        info.cheque_id,
        info.payer,
        info.payee,
        info.amount,
        bank_address,
        info.valid_from,
        info.valid_thru
    ))
