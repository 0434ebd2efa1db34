"""
Signature Authentication Module

Recovers the signing account of a cheque from a recoverable secp256k1
signature. Payers sign with the standard personal-message scheme (EIP-191):
the commitment is wrapped with the "\\x19Ethereum Signed Message:\\n32"
prefix and hashed again, and that final digest is what the signature covers.
"""

from typing import Tuple, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError

from .address import Address
from .encoding import COMMITMENT_LENGTH, cheque_commitment, keccak256
from .errors import InvalidSignature


SIGNATURE_LENGTH = 65

# secp256k1 group order
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2

# Canonical recovery ids as carried in the v byte
VALID_V = (27, 28)

SIGNED_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"


def split_signature(signature: Union[bytes, str]) -> Tuple[bytes, bytes, int]:
    """
    Decompose a 65-byte signature into (r, s, v).

    Bytes 0-31 are r, bytes 32-63 are s and byte 64 is v. No normalization
    is applied; recover_signer decides whether v and s are acceptable.
    """
    if isinstance(signature, str):
        text = signature[2:] if signature.startswith(('0x', '0X')) else signature
        try:
            signature = bytes.fromhex(text)
        except ValueError:
            raise InvalidSignature("Signature is not valid hex")

    signature = bytes(signature)
    if len(signature) != SIGNATURE_LENGTH:
        raise InvalidSignature(f"Invalid signature length: {len(signature)}")

    return signature[0:32], signature[32:64], signature[64]


def eth_signed_message_hash(commitment: bytes) -> bytes:
    """Digest actually covered by a personal-message signature over a commitment"""
    if len(commitment) != COMMITMENT_LENGTH:
        raise InvalidSignature("Commitment must be 32 bytes")
    return keccak256(SIGNED_MESSAGE_PREFIX + bytes(commitment))


def _as_int(value: Union[int, bytes]) -> int:
    if isinstance(value, int):
        return value
    return int.from_bytes(bytes(value), 'big')


def recover_signer(
    commitment: bytes,
    v: int,
    r: Union[int, bytes],
    s: Union[int, bytes]
) -> Address:
    """
    Recover the account that signed a commitment.

    Raises:
        InvalidSignature: On a non-canonical v, out-of-range or high s,
            out-of-range r, or when the curve recovery itself fails
    """
    r_int = _as_int(r)
    s_int = _as_int(s)

    if v not in VALID_V:
        raise InvalidSignature(f"Invalid signature 'v' value: {v}")
    if not 0 < r_int < SECP256K1_N:
        raise InvalidSignature("Invalid signature 'r' value")
    if not 0 < s_int <= SECP256K1_HALF_N:
        raise InvalidSignature("Invalid signature 's' value")

    digest = eth_signed_message_hash(commitment)

    try:
        signature = keys.Signature(vrs=(v - 27, r_int, s_int))
        public_key = signature.recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValidationError, ValueError) as e:
        raise InvalidSignature(f"Signature recovery failed: {e}") from e

    signer = Address(public_key.to_canonical_address())
    if signer.is_zero():
        raise InvalidSignature("Signature recovered to the zero address")
    return signer


def recover_cheque_signer(info, signature: Union[bytes, str], bank_address: Address) -> Address:
    """Recover the signer of a cheque as bound to one settlement instance"""
    r, s, v = split_signature(signature)
    return recover_signer(cheque_commitment(info, bank_address), v, r, s)


def sign_commitment(commitment: bytes, private_key: Union[bytes, str]) -> bytes:
    """
    Personal-sign a commitment with a private key (wallet-side helper).

    Returns:
        65-byte r || s || v signature with v in {27, 28}
    """
    if len(commitment) != COMMITMENT_LENGTH:
        raise ValueError("Commitment must be 32 bytes")
    signed = Account.sign_message(encode_defunct(primitive=bytes(commitment)), private_key=private_key)
    return bytes(signed.signature)


def sign_cheque(info, bank_address: Address, private_key: Union[bytes, str]) -> bytes:
    """Sign a ChequeInfo for a given settlement instance"""
    return sign_commitment(cheque_commitment(info, bank_address), private_key)
