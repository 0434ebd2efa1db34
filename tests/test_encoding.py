"""
Test suite for commitment encoding

Validates the fixed-width layout byte for byte and that the commitment is a
pure function of every field.
"""

import pytest

from cheque_bank.address import Address
from cheque_bank.cheques import ChequeInfo
from cheque_bank.encoding import (
    ENCODED_CHEQUE_LENGTH, MAX_UINT256, cheque_commitment, commit,
    encode_cheque, keccak256, normalize_cheque_id
)


CHEQUE_ID = bytes(range(32))
PAYER = Address("0x" + "11" * 20)
PAYEE = Address("0x" + "22" * 20)
BANK = Address("0x" + "33" * 20)


class TestKeccak:
    """The hash primitive must be keccak-256, not NIST SHA3-256"""

    def test_empty_input(self):
        assert keccak256(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"

    def test_output_length(self):
        assert len(keccak256(b"cheque")) == 32


class TestEncodeCheque:
    """Test the canonical byte layout"""

    def test_layout(self):
        encoded = encode_cheque(CHEQUE_ID, PAYER, PAYEE, 1000, BANK, 0, 0)

        assert len(encoded) == ENCODED_CHEQUE_LENGTH == 132
        assert encoded[0:32] == CHEQUE_ID
        assert encoded[32:52] == PAYER.raw
        assert encoded[52:72] == PAYEE.raw
        assert encoded[72:104] == (1000).to_bytes(32, 'big')
        assert encoded[104:124] == BANK.raw
        assert encoded[124:128] == b"\x00\x00\x00\x00"
        assert encoded[128:132] == b"\x00\x00\x00\x00"

    def test_validity_window_encoding(self):
        encoded = encode_cheque(CHEQUE_ID, PAYER, PAYEE, 1, BANK, 100, 0x01020304)
        assert encoded[124:128] == (100).to_bytes(4, 'big')
        assert encoded[128:132] == b"\x01\x02\x03\x04"

    def test_hex_cheque_id_matches_bytes(self):
        hex_id = "0x" + CHEQUE_ID.hex()
        assert encode_cheque(hex_id, PAYER, PAYEE, 5, BANK) == encode_cheque(CHEQUE_ID, PAYER, PAYEE, 5, BANK)

    def test_addresses_accepted_as_hex(self):
        encoded = encode_cheque(CHEQUE_ID, PAYER.checksum, PAYEE.checksum.lower(), 5, BANK.checksum)
        assert encoded == encode_cheque(CHEQUE_ID, PAYER, PAYEE, 5, BANK)

    def test_max_amount(self):
        encoded = encode_cheque(CHEQUE_ID, PAYER, PAYEE, MAX_UINT256, BANK)
        assert encoded[72:104] == b"\xff" * 32

    def test_amount_overflow_rejected(self):
        with pytest.raises(ValueError, match="amount"):
            encode_cheque(CHEQUE_ID, PAYER, PAYEE, MAX_UINT256 + 1, BANK)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            encode_cheque(CHEQUE_ID, PAYER, PAYEE, -1, BANK)

    def test_timestamp_overflow_rejected(self):
        with pytest.raises(ValueError, match="valid_from"):
            encode_cheque(CHEQUE_ID, PAYER, PAYEE, 1, BANK, 2 ** 32, 0)
        with pytest.raises(ValueError, match="valid_thru"):
            encode_cheque(CHEQUE_ID, PAYER, PAYEE, 1, BANK, 0, 2 ** 32)

    def test_short_cheque_id_rejected(self):
        with pytest.raises(ValueError, match="32 bytes"):
            encode_cheque(b"\x01" * 16, PAYER, PAYEE, 1, BANK)

    def test_bad_hex_cheque_id_rejected(self):
        with pytest.raises(ValueError):
            normalize_cheque_id("0xnothex")


class TestCommitment:
    """Test that the commitment binds every field"""

    def setup_method(self):
        self.info = ChequeInfo(cheque_id=CHEQUE_ID, payer=PAYER, payee=PAYEE, amount=1000)

    def test_deterministic(self):
        assert cheque_commitment(self.info, BANK) == cheque_commitment(self.info, BANK)

    def test_matches_manual_composition(self):
        encoded = encode_cheque(CHEQUE_ID, PAYER, PAYEE, 1000, BANK, 0, 0)
        assert cheque_commitment(self.info, BANK) == commit(encoded) == keccak256(encoded)

    def test_bound_to_settlement_instance(self):
        other_bank = Address("0x" + "44" * 20)
        assert cheque_commitment(self.info, BANK) != cheque_commitment(self.info, other_bank)

    @pytest.mark.parametrize("changes", [
        {"cheque_id": b"\x01" * 32},
        {"payer": Address("0x" + "55" * 20)},
        {"payee": Address("0x" + "55" * 20)},
        {"amount": 1001},
        {"valid_from": 1},
        {"valid_thru": 1},
    ])
    def test_every_field_changes_commitment(self, changes):
        fields = dict(cheque_id=CHEQUE_ID, payer=PAYER, payee=PAYEE, amount=1000, valid_from=0, valid_thru=0)
        fields.update(changes)
        assert cheque_commitment(ChequeInfo(**fields), BANK) != cheque_commitment(self.info, BANK)

    def test_swapped_parties_differ(self):
        swapped = ChequeInfo(cheque_id=CHEQUE_ID, payer=PAYEE, payee=PAYER, amount=1000)
        assert cheque_commitment(swapped, BANK) != cheque_commitment(self.info, BANK)
