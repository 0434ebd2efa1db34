"""
Test suite for cheque values and the cheque registry
"""

import pytest

from cheque_bank.address import Address
from cheque_bank.cheques import Cheque, ChequeInfo, ChequeRegistry, ChequeStatus
from cheque_bank.encoding import MAX_UINT256, MAX_UINT32
from cheque_bank.errors import (
    ChequeNotRedeemable, DuplicateCheque, InvalidAmount, InvalidSignature, InvalidValidFrom,
    InvalidValidThru
)
from cheque_bank.storage import InMemoryStorage


PAYER = Address("0x" + "11" * 20)
PAYEE = Address("0x" + "22" * 20)
SIGNATURE = b"\x01" * 64 + b"\x1b"


def make_info(cheque_id=b"\xaa" * 32, **overrides):
    fields = dict(cheque_id=cheque_id, payer=PAYER, payee=PAYEE, amount=1000)
    fields.update(overrides)
    return ChequeInfo(**fields)


class TestChequeInfo:
    """Test construction and validation of cheque values"""

    def test_coerces_hex_fields(self):
        info = ChequeInfo(
            cheque_id="0x" + "ab" * 32,
            payer=PAYER.checksum,
            payee=PAYEE.checksum.lower(),
            amount=5
        )
        assert info.cheque_id == b"\xab" * 32
        assert info.payer == PAYER
        assert info.payee == PAYEE

    def test_is_frozen(self):
        info = make_info()
        with pytest.raises(AttributeError):
            info.amount = 1

    @pytest.mark.parametrize("amount", [-1, MAX_UINT256 + 1, 1.0, True])
    def test_invalid_amount(self, amount):
        with pytest.raises(InvalidAmount):
            make_info(amount=amount)

    def test_invalid_window_fields(self):
        with pytest.raises(InvalidValidFrom):
            make_info(valid_from=MAX_UINT32 + 1)
        with pytest.raises(InvalidValidThru):
            make_info(valid_thru=-1)

    @pytest.mark.parametrize("valid_from,valid_thru,now,expected", [
        (0, 0, 0, True),
        (0, 0, MAX_UINT32, True),
        (100, 0, 99, False),
        (100, 0, 100, True),
        (0, 200, 200, True),
        (0, 200, 201, False),
        (100, 200, 150, True),
    ])
    def test_window(self, valid_from, valid_thru, now, expected):
        info = make_info(valid_from=valid_from, valid_thru=valid_thru)
        assert info.is_within_window(now) is expected

    def test_dict_round_trip_keeps_large_amounts(self):
        info = make_info(amount=MAX_UINT256, valid_from=1, valid_thru=2)
        data = info.to_dict()
        assert data['amount'] == str(MAX_UINT256)
        assert ChequeInfo.from_dict(data) == info


class TestCheque:

    def test_hex_signature(self):
        cheque = Cheque(make_info(), "0x" + SIGNATURE.hex())
        assert cheque.signature == SIGNATURE
        assert cheque.signature_hex == "0x" + SIGNATURE.hex()

    def test_non_hex_signature_rejected(self):
        with pytest.raises(InvalidSignature, match="hex"):
            Cheque(make_info(), "0xnot-a-signature")


class TestChequeRegistry:
    """Test lifecycle transitions"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.registry = ChequeRegistry(self.storage)
        self.cheque = Cheque(make_info(), SIGNATURE)

    def test_unknown_status(self):
        assert self.registry.status(b"\x00" * 32) == ChequeStatus.UNKNOWN
        assert self.registry.get(b"\x00" * 32) is None

    def test_register(self):
        record = self.registry.register(self.cheque)
        assert record.status == ChequeStatus.ISSUED
        assert record.is_redeemable
        assert record.settled_at is None

        stored = self.registry.get(self.cheque.info.cheque_id)
        assert stored.cheque == self.cheque
        assert self.registry.status(self.cheque.info.cheque_id_hex) == ChequeStatus.ISSUED

    def test_duplicate_rejected(self):
        self.registry.register(self.cheque)
        with pytest.raises(DuplicateCheque):
            self.registry.register(Cheque(make_info(amount=1), SIGNATURE))
        assert self.registry.get(self.cheque.info.cheque_id).info.amount == 1000

    def test_mark_redeemed(self):
        self.registry.register(self.cheque)
        record = self.registry.mark_redeemed(self.cheque.info.cheque_id)
        assert record.status == ChequeStatus.REDEEMED
        assert record.settled_at is not None
        assert record.status.is_terminal

    def test_mark_revoked(self):
        self.registry.register(self.cheque)
        self.registry.mark_revoked(self.cheque.info.cheque_id)
        assert self.registry.status(self.cheque.info.cheque_id) == ChequeStatus.REVOKED

    def test_terminal_states_are_final(self):
        self.registry.register(self.cheque)
        self.registry.mark_redeemed(self.cheque.info.cheque_id)

        with pytest.raises(ChequeNotRedeemable):
            self.registry.mark_redeemed(self.cheque.info.cheque_id)
        with pytest.raises(ChequeNotRedeemable):
            self.registry.mark_revoked(self.cheque.info.cheque_id)

    def test_settled_id_cannot_be_reissued(self):
        self.registry.register(self.cheque)
        self.registry.mark_revoked(self.cheque.info.cheque_id)
        with pytest.raises(DuplicateCheque):
            self.registry.register(self.cheque)

    def test_unknown_cannot_be_settled(self):
        with pytest.raises(ChequeNotRedeemable):
            self.registry.mark_redeemed(b"\x00" * 32)

    def test_find_by_party(self):
        other = Address("0x" + "33" * 20)
        self.registry.register(self.cheque)
        self.registry.register(Cheque(make_info(cheque_id=b"\xbb" * 32, payee=other), SIGNATURE))
        self.registry.mark_redeemed(self.cheque.info.cheque_id)

        assert len(self.registry.find_by_party(payer=PAYER)) == 2
        assert len(self.registry.find_by_party(payee=other)) == 1
        issued = self.registry.find_by_party(payer=PAYER, status=ChequeStatus.ISSUED)
        assert [r.info.payee for r in issued] == [other]
