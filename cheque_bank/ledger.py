"""
Balance Ledger Module

Internal account balances held in pooled custody. Every mutation is atomic
and width-checked: the custody pool never exceeds 2**256 - 1 and every
balance is bounded by the pool, so balances can neither overflow nor go
negative.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Any
from abc import ABC, abstractmethod

from .address import Address
from .audit import AuditTrail, AuditEventType
from .encoding import MAX_UINT256
from .errors import InsufficientFunds, InvalidAmount
from .logging_config import get_logger, log_action
from .storage import StorageInterface


class PayoutGateway(ABC):
    """Moves value out of pooled custody to an external recipient"""

    @abstractmethod
    def send(self, recipient: Address, amount: int) -> None:
        """Transfer amount to recipient; raising aborts the withdrawal"""
        pass


@dataclass
class Payout:
    recipient: Address
    amount: int
    sent_at: datetime


@dataclass
class RecordingPayoutGateway(PayoutGateway):
    """Payout gateway that only records what it was asked to send"""
    payouts: List[Payout] = field(default_factory=list)

    def send(self, recipient: Address, amount: int) -> None:
        self.payouts.append(Payout(recipient, amount, datetime.now(timezone.utc)))

    def total_sent_to(self, recipient: Address) -> int:
        return sum(p.amount for p in self.payouts if p.recipient == recipient)


def validate_amount(amount: int) -> int:
    """Amounts are positive uint256 integers"""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("Amount must be an integer")
    if amount <= 0:
        raise InvalidAmount("Amount must be positive")
    if amount > MAX_UINT256:
        raise InvalidAmount("Amount exceeds uint256")
    return amount


class BalanceLedger:
    """
    Account balances keyed by address, plus the custody pool that backs them.
    Unknown accounts read as a zero balance.
    """

    POOL_ID = "pool"

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        payout_gateway: PayoutGateway
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.payout_gateway = payout_gateway
        self.balances_table = "balances"
        self.custody_table = "custody"
        self.logger = get_logger("chequebank.ledger")

    def get_balance(self, account: Address) -> int:
        record = self.storage.load(self.balances_table, Address.parse(account).checksum)
        if record is None:
            return 0
        return int(record['balance'])

    def get_custody(self) -> Dict[str, int]:
        record = self.storage.load(self.custody_table, self.POOL_ID)
        if record is None:
            return {'total_deposited': 0, 'total_withdrawn': 0}
        return {
            'total_deposited': int(record['total_deposited']),
            'total_withdrawn': int(record['total_withdrawn'])
        }

    def total_custody(self) -> int:
        """Funds currently held on behalf of all accounts"""
        custody = self.get_custody()
        return custody['total_deposited'] - custody['total_withdrawn']

    def deposit(self, account: Address, amount: int) -> int:
        """
        Credit an account with newly received funds

        Returns:
            New balance

        Raises:
            InvalidAmount: If amount is not a positive uint256
            OverflowError: If the custody pool would exceed uint256
        """
        account = Address.parse(account)
        validate_amount(amount)

        with self.storage.atomic():
            custody = self.get_custody()
            held = custody['total_deposited'] - custody['total_withdrawn']
            if held + amount > MAX_UINT256:
                raise OverflowError("Custody pool would exceed uint256")

            balance = self.get_balance(account) + amount
            custody['total_deposited'] += amount
            self._save_custody(custody)
            self._save_balance(account, balance)

            self.audit_trail.log_event(
                event_type=AuditEventType.DEPOSIT,
                entity_type="account",
                entity_id=account.checksum,
                account=account.checksum,
                metadata={"amount": amount, "balance": balance}
            )

        log_action(
            self.logger, "info", "Deposit credited",
            account=account.checksum, action="deposit", resource=f"account:{account.checksum}",
            extra={"amount": str(amount), "balance": str(balance)}
        )
        return balance

    def withdraw(self, account: Address, amount: int) -> int:
        """Withdraw funds back to the account owner"""
        account = Address.parse(account)
        return self.withdraw_to(account, amount, account)

    def withdraw_to(self, account: Address, amount: int, recipient: Address) -> int:
        """
        Debit an account and pay the funds out of custody to recipient.
        The debit is stored before the payout gateway is called; a gateway
        failure rolls the debit back.

        Returns:
            New balance

        Raises:
            InvalidAmount: If amount is not a positive uint256
            InsufficientFunds: If amount exceeds the account balance
        """
        account = Address.parse(account)
        recipient = Address.parse(recipient)
        validate_amount(amount)

        with self.storage.atomic():
            balance = self.get_balance(account)
            if amount > balance:
                raise InsufficientFunds("Not enough amount to withdraw")

            balance -= amount
            custody = self.get_custody()
            custody['total_withdrawn'] += amount
            self._save_balance(account, balance)
            self._save_custody(custody)

            self.audit_trail.log_event(
                event_type=AuditEventType.WITHDRAWAL,
                entity_type="account",
                entity_id=account.checksum,
                account=account.checksum,
                metadata={"amount": amount, "recipient": recipient.checksum, "balance": balance}
            )

            self.payout_gateway.send(recipient, amount)

        log_action(
            self.logger, "info", "Withdrawal paid out",
            account=account.checksum, action="withdraw", resource=f"account:{account.checksum}",
            extra={"amount": str(amount), "recipient": recipient.checksum, "balance": str(balance)}
        )
        return balance

    def transfer_internal(self, from_account: Address, to_account: Address, amount: int) -> None:
        """
        Move funds between two internal balances in one atomic step

        Raises:
            InvalidAmount: If amount is not a positive uint256
            InsufficientFunds: If from_account cannot cover amount
        """
        from_account = Address.parse(from_account)
        to_account = Address.parse(to_account)
        validate_amount(amount)

        with self.storage.atomic():
            from_balance = self.get_balance(from_account)
            if from_balance < amount:
                raise InsufficientFunds(
                    f"Payer balance {from_balance} cannot cover {amount}"
                )
            if from_account == to_account:
                return

            self._save_balance(from_account, from_balance - amount)
            self._save_balance(to_account, self.get_balance(to_account) + amount)

    def all_balances(self) -> Dict[Address, int]:
        return {
            Address(record['account']): int(record['balance'])
            for record in self.storage.load_all(self.balances_table)
        }

    def verify_solvency(self) -> Dict[str, Any]:
        """Check that the balances add up to the custody pool"""
        balances = self.all_balances()
        total_balances = sum(balances.values())
        custody = self.total_custody()
        return {
            'valid': total_balances == custody and all(b >= 0 for b in balances.values()),
            'total_balances': total_balances,
            'custody': custody,
            'accounts': len(balances)
        }

    def _save_balance(self, account: Address, balance: int) -> None:
        # Unreachable while the custody cap holds; guards the stored width
        if not 0 <= balance <= MAX_UINT256:
            raise OverflowError(f"Balance out of range for {account.checksum}")
        self.storage.save(self.balances_table, account.checksum, {
            'account': account.checksum,
            'balance': str(balance),
            'updated_at': datetime.now(timezone.utc).isoformat()
        })

    def _save_custody(self, custody: Dict[str, int]) -> None:
        self.storage.save(self.custody_table, self.POOL_ID, {
            'total_deposited': str(custody['total_deposited']),
            'total_withdrawn': str(custody['total_withdrawn'])
        })
