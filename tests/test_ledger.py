"""
Test suite for the balance ledger

Tests deposits, withdrawals, payouts, internal transfers and the custody
bound on balances.
"""

import pytest

from cheque_bank.address import Address
from cheque_bank.audit import AuditTrail, AuditEventType
from cheque_bank.encoding import MAX_UINT256
from cheque_bank.errors import InsufficientFunds, InvalidAmount
from cheque_bank.ledger import BalanceLedger, PayoutGateway, RecordingPayoutGateway, validate_amount
from cheque_bank.storage import InMemoryStorage


ALICE = Address("0x" + "a1" * 20)
BOB = Address("0x" + "b2" * 20)
CAROL = Address("0x" + "c3" * 20)


class FailingPayoutGateway(PayoutGateway):
    """Gateway whose transfer always fails"""

    def send(self, recipient, amount):
        raise ConnectionError("payout rail unavailable")


class TestValidateAmount:

    @pytest.mark.parametrize("amount", [1, 10 ** 18, MAX_UINT256])
    def test_accepts_positive_uint256(self, amount):
        assert validate_amount(amount) == amount

    @pytest.mark.parametrize("amount", [0, -1, MAX_UINT256 + 1, True, 1.5, "10"])
    def test_rejects_invalid(self, amount):
        with pytest.raises(InvalidAmount):
            validate_amount(amount)


class TestBalanceLedger:
    """Test deposit and withdrawal accounting"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.gateway = RecordingPayoutGateway()
        self.ledger = BalanceLedger(self.storage, self.audit_trail, self.gateway)

    def test_unknown_account_has_zero_balance(self):
        assert self.ledger.get_balance(ALICE) == 0
        assert self.ledger.total_custody() == 0

    def test_deposit(self):
        assert self.ledger.deposit(ALICE, 1000) == 1000
        assert self.ledger.deposit(ALICE, 500) == 1500
        assert self.ledger.get_balance(ALICE) == 1500
        assert self.ledger.total_custody() == 1500

    def test_deposit_accepts_hex_address(self):
        self.ledger.deposit(ALICE.checksum.lower(), 10)
        assert self.ledger.get_balance(ALICE) == 10

    def test_deposit_is_audited(self):
        self.ledger.deposit(ALICE, 1000)
        events = self.audit_trail.get_events_by_type(AuditEventType.DEPOSIT)
        assert len(events) == 1
        assert events[0].entity_id == ALICE.checksum
        assert events[0].metadata["amount"] == "1000"

    @pytest.mark.parametrize("amount", [0, -5])
    def test_deposit_invalid_amount(self, amount):
        with pytest.raises(InvalidAmount):
            self.ledger.deposit(ALICE, amount)
        assert self.audit_trail.count_events() == 0

    def test_deposit_overflow_rejected(self):
        self.ledger.deposit(ALICE, MAX_UINT256)
        with pytest.raises(OverflowError):
            self.ledger.deposit(BOB, 1)
        assert self.ledger.get_balance(BOB) == 0
        assert self.ledger.total_custody() == MAX_UINT256

    def test_withdraw(self):
        self.ledger.deposit(ALICE, 1000)
        assert self.ledger.withdraw(ALICE, 400) == 600
        assert self.ledger.get_balance(ALICE) == 600
        assert self.ledger.total_custody() == 600
        assert self.gateway.total_sent_to(ALICE) == 400

    def test_withdraw_entire_balance(self):
        self.ledger.deposit(ALICE, 1000)
        assert self.ledger.withdraw(ALICE, 1000) == 0

    def test_withdraw_insufficient_funds(self):
        self.ledger.deposit(ALICE, 100)
        with pytest.raises(InsufficientFunds, match="Not enough amount to withdraw"):
            self.ledger.withdraw(ALICE, 101)
        assert self.ledger.get_balance(ALICE) == 100
        assert self.gateway.payouts == []

    def test_withdraw_to_pays_recipient_externally(self):
        self.ledger.deposit(ALICE, 1000)
        self.ledger.withdraw_to(ALICE, 300, BOB)

        assert self.ledger.get_balance(ALICE) == 700
        assert self.ledger.get_balance(BOB) == 0
        assert self.gateway.total_sent_to(BOB) == 300

        event = self.audit_trail.get_events_by_type(AuditEventType.WITHDRAWAL)[0]
        assert event.metadata["recipient"] == BOB.checksum

    def test_failed_payout_rolls_back_debit(self):
        ledger = BalanceLedger(self.storage, self.audit_trail, FailingPayoutGateway())
        ledger.deposit(ALICE, 1000)

        with pytest.raises(ConnectionError):
            ledger.withdraw(ALICE, 400)

        assert ledger.get_balance(ALICE) == 1000
        assert ledger.total_custody() == 1000
        assert self.audit_trail.get_events_by_type(AuditEventType.WITHDRAWAL) == []

    def test_reentrant_payout_sees_debited_balance(self):
        attempts = []

        class ReentrantGateway(PayoutGateway):
            def send(gateway, recipient, amount):
                try:
                    self.ledger.withdraw(ALICE, amount)
                except InsufficientFunds as e:
                    attempts.append(e)

        self.ledger.payout_gateway = ReentrantGateway()
        self.ledger.deposit(ALICE, 1000)
        self.ledger.withdraw(ALICE, 1000)

        assert len(attempts) == 1
        assert self.ledger.get_balance(ALICE) == 0
        assert self.ledger.total_custody() == 0

    def test_transfer_internal(self):
        self.ledger.deposit(ALICE, 1000)
        self.ledger.transfer_internal(ALICE, BOB, 250)
        assert self.ledger.get_balance(ALICE) == 750
        assert self.ledger.get_balance(BOB) == 250
        assert self.ledger.total_custody() == 1000

    def test_transfer_internal_insufficient_funds(self):
        self.ledger.deposit(ALICE, 100)
        with pytest.raises(InsufficientFunds):
            self.ledger.transfer_internal(ALICE, BOB, 101)
        assert self.ledger.get_balance(ALICE) == 100
        assert self.ledger.get_balance(BOB) == 0

    def test_self_transfer_is_noop(self):
        self.ledger.deposit(ALICE, 100)
        self.ledger.transfer_internal(ALICE, ALICE, 100)
        assert self.ledger.get_balance(ALICE) == 100

    def test_solvency(self):
        self.ledger.deposit(ALICE, 1000)
        self.ledger.deposit(BOB, 500)
        self.ledger.transfer_internal(ALICE, CAROL, 200)
        self.ledger.withdraw(BOB, 100)

        result = self.ledger.verify_solvency()
        assert result['valid']
        assert result['total_balances'] == 1400
        assert result['custody'] == 1400
        assert result['accounts'] == 3

    def test_solvency_detects_drift(self):
        self.ledger.deposit(ALICE, 1000)
        self.storage.save("balances", BOB.checksum, {"account": BOB.checksum, "balance": "5"})

        assert not self.ledger.verify_solvency()['valid']
