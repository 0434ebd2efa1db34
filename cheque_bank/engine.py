"""
Settlement Engine Module

ChequeBank is the only component that mutates the ledger and the cheque
registry. Operations run one at a time under an engine-wide lock and each
mutating operation runs inside a single storage transaction, so a failed
call leaves no trace and no caller can observe half of an operation.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Any, Tuple, Union

from .address import Address
from .audit import AuditTrail, AuditEventType
from .cheques import Cheque, ChequeInfo, ChequeRecord, ChequeRegistry, ChequeStatus
from .errors import (
    ChequeNotFound, ChequeNotRedeemable, DuplicateCheque, InvalidAmount, InvalidSignature,
    InvalidValidFrom, InvalidValidThru, Unauthorized, UnauthorizedPayee, UnauthorizedPayer
)
from .ledger import BalanceLedger, PayoutGateway, RecordingPayoutGateway, validate_amount
from .logging_config import get_logger, log_action
from . import signatures
from .storage import StorageInterface


def system_clock() -> int:
    """Ledger time in whole seconds"""
    return int(time.time())


@dataclass(frozen=True)
class RedemptionRecord:
    """Emitted for every successful redemption"""
    cheque_id: bytes
    payer: Address
    payee: Address
    amount: int
    redeemed_at: int  # ledger time
    payer_balance: int
    payee_balance: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cheque_id': "0x" + self.cheque_id.hex(),
            'payer': self.payer.checksum,
            'payee': self.payee.checksum,
            'amount': str(self.amount),
            'redeemed_at': self.redeemed_at,
            'payer_balance': str(self.payer_balance),
            'payee_balance': str(self.payee_balance)
        }


class ChequeBank:
    """
    Cheque settlement engine bound to one settlement identity.

    ``caller`` arguments are the authenticated identity invoking the
    operation; authenticating it is the transport layer's job.
    """

    def __init__(
        self,
        storage: StorageInterface,
        bank_address: Union[Address, str],
        audit_trail: Optional[AuditTrail] = None,
        payout_gateway: Optional[PayoutGateway] = None,
        clock: Callable[[], int] = system_clock
    ):
        self.storage = storage
        self.bank_address = Address.parse(bank_address)
        self.audit_trail = audit_trail or AuditTrail(storage)
        self.payout_gateway = payout_gateway or RecordingPayoutGateway()
        self.clock = clock
        self.ledger = BalanceLedger(storage, self.audit_trail, self.payout_gateway)
        self.registry = ChequeRegistry(storage)
        self.logger = get_logger("chequebank.engine")
        # Single writer; re-entrant so a payout gateway may call back in
        self._lock = threading.RLock()

    # Ledger operations

    def deposit(self, caller: Address, amount: int) -> int:
        """Credit the caller's balance with the value attached to the call"""
        with self._lock:
            return self.ledger.deposit(Address.parse(caller), amount)

    def withdraw(self, caller: Address, amount: int) -> int:
        with self._lock:
            return self.ledger.withdraw(Address.parse(caller), amount)

    def withdraw_to(self, caller: Address, amount: int, recipient: Address) -> int:
        with self._lock:
            return self.ledger.withdraw_to(Address.parse(caller), amount, Address.parse(recipient))

    def user_balances(self, account: Address) -> int:
        with self._lock:
            return self.ledger.get_balance(Address.parse(account))

    # Cheque operations

    def issue_cheque(self, cheque: Cheque) -> ChequeRecord:
        """
        Register a signed cheque

        Raises:
            InvalidAmount: If the amount is zero
            DuplicateCheque: If the cheque id was issued before
            InvalidSignature: If the signature does not recover to the payer
        """
        info = cheque.info
        with self._lock:
            try:
                validate_amount(info.amount)
                with self.storage.atomic():
                    if self.registry.status(info.cheque_id) != ChequeStatus.UNKNOWN:
                        raise DuplicateCheque(f"Cheque {info.cheque_id_hex} already issued")

                    signer = signatures.recover_cheque_signer(info, cheque.signature, self.bank_address)
                    if signer != info.payer:
                        raise InvalidSignature("Signature does not match payer")

                    record = self.registry.register(cheque)
                    self.audit_trail.log_event(
                        event_type=AuditEventType.CHEQUE_ISSUED,
                        entity_type="cheque",
                        entity_id=info.cheque_id_hex,
                        metadata=info.to_dict()
                    )
            except Exception as e:
                self._log_rejection("issue", info.cheque_id_hex, None, e)
                raise

        log_action(
            self.logger, "info", "Cheque issued",
            account=info.payer.checksum, action="issue", resource=f"cheque:{info.cheque_id_hex}",
            extra={"payee": info.payee.checksum, "amount": str(info.amount)}
        )
        return record

    def get_cheque(self, cheque_id: Union[bytes, str]) -> Cheque:
        with self._lock:
            record = self.registry.get(cheque_id)
        if record is None:
            raise ChequeNotFound()
        return record.cheque

    def get_cheque_record(self, cheque_id: Union[bytes, str]) -> ChequeRecord:
        with self._lock:
            record = self.registry.get(cheque_id)
        if record is None:
            raise ChequeNotFound()
        return record

    def cheque_status(self, cheque_id: Union[bytes, str]) -> ChequeStatus:
        with self._lock:
            return self.registry.status(cheque_id)

    def redeemable_cheques(self, cheque_id: Union[bytes, str]) -> bool:
        """True iff the cheque is issued and neither redeemed nor revoked"""
        return self.cheque_status(cheque_id) == ChequeStatus.ISSUED

    def is_cheque_valid(self, claimed_payee: Address, cheque_id: Union[bytes, str]) -> bool:
        """
        Report whether a cheque can currently be paid to claimed_payee.
        Out-of-window cheques return False but stay issued.

        Raises:
            ChequeNotFound: If the cheque was never issued
            UnauthorizedPayee: If claimed_payee is not the cheque's payee
        """
        claimed_payee = Address.parse(claimed_payee)
        with self._lock:
            record = self.registry.get(cheque_id)
            if record is None:
                raise ChequeNotFound()
            if claimed_payee != record.info.payee:
                raise UnauthorizedPayee()
            if record.status != ChequeStatus.ISSUED:
                return False
            return record.info.is_within_window(self.clock())

    def redeem(self, caller: Address, submitted: ChequeInfo) -> RedemptionRecord:
        """
        Pay out an issued cheque to its payee.

        The submitted fields are compared one by one against the stored,
        signed instrument so every mismatch has its own failure reason.

        Raises:
            ChequeNotRedeemable: If the cheque is unknown, settled or outside its window
            InvalidAmount / InvalidValidFrom / InvalidValidThru: On field mismatch
            UnauthorizedPayee: If the caller or the submitted payee is not the payee
            UnauthorizedPayer: If the submitted payer is not the stored payer
            InsufficientFunds: If the payer cannot cover the amount
        """
        caller = Address.parse(caller)
        cheque_id_hex = submitted.cheque_id_hex

        with self._lock:
            try:
                with self.storage.atomic():
                    record = self.registry.get(submitted.cheque_id)
                    if record is None:
                        raise ChequeNotRedeemable("Cheque not exist")
                    stored = record.info

                    if submitted.amount != stored.amount:
                        raise InvalidAmount("Wrong amount")
                    if caller != stored.payee:
                        raise UnauthorizedPayee("Caller is not the payee")
                    if submitted.payee != stored.payee:
                        raise UnauthorizedPayee("Wrong payee")
                    if submitted.payer != stored.payer:
                        raise UnauthorizedPayer("Wrong payer")
                    if submitted.valid_from != stored.valid_from:
                        raise InvalidValidFrom("Wrong validFrom")
                    if submitted.valid_thru != stored.valid_thru:
                        raise InvalidValidThru("Wrong validThru")

                    now = self.clock()
                    if record.status != ChequeStatus.ISSUED:
                        raise ChequeNotRedeemable(f"Cheque is {record.status.value}")
                    if not stored.is_within_window(now):
                        raise ChequeNotRedeemable("Cheque is outside its validity window")

                    # Status first so a re-entrant call can never see it ISSUED
                    self.registry.mark_redeemed(stored.cheque_id)
                    self.ledger.transfer_internal(stored.payer, stored.payee, stored.amount)

                    redemption = RedemptionRecord(
                        cheque_id=stored.cheque_id,
                        payer=stored.payer,
                        payee=stored.payee,
                        amount=stored.amount,
                        redeemed_at=now,
                        payer_balance=self.ledger.get_balance(stored.payer),
                        payee_balance=self.ledger.get_balance(stored.payee)
                    )
                    self.audit_trail.log_event(
                        event_type=AuditEventType.CHEQUE_REDEEMED,
                        entity_type="cheque",
                        entity_id=cheque_id_hex,
                        account=caller.checksum,
                        metadata=redemption.to_dict()
                    )
            except Exception as e:
                self._log_rejection("redeem", cheque_id_hex, caller, e)
                raise

        log_action(
            self.logger, "info", "Cheque redeemed",
            account=caller.checksum, action="redeem", resource=f"cheque:{cheque_id_hex}",
            extra={"payer": stored.payer.checksum, "amount": str(stored.amount)}
        )
        return redemption

    def revoke(self, caller: Address, cheque_id: Union[bytes, str]) -> ChequeRecord:
        """
        Cancel an issued cheque. Only the payer may revoke.

        Raises:
            ChequeNotRedeemable: If the cheque is unknown or already settled
            Unauthorized: If the caller is not the payer
        """
        caller = Address.parse(caller)
        with self._lock:
            record = self.registry.get(cheque_id)
            if record:
                cheque_id_hex = record.info.cheque_id_hex
            else:
                cheque_id_hex = "0x" + cheque_id.hex() if isinstance(cheque_id, bytes) else str(cheque_id)
            try:
                with self.storage.atomic():
                    if record is None:
                        raise ChequeNotRedeemable("Cheque not exist")
                    if caller != record.info.payer:
                        raise Unauthorized()
                    if record.status != ChequeStatus.ISSUED:
                        raise ChequeNotRedeemable(f"Cheque is {record.status.value}")

                    record = self.registry.mark_revoked(record.info.cheque_id)
                    self.audit_trail.log_event(
                        event_type=AuditEventType.CHEQUE_REVOKED,
                        entity_type="cheque",
                        entity_id=cheque_id_hex,
                        account=caller.checksum,
                        metadata={"payee": record.info.payee.checksum, "amount": record.info.amount}
                    )
            except Exception as e:
                self._log_rejection("revoke", cheque_id_hex, caller, e)
                raise

        log_action(
            self.logger, "info", "Cheque revoked",
            account=caller.checksum, action="revoke", resource=f"cheque:{cheque_id_hex}"
        )
        return record

    # Standalone signature utilities

    @staticmethod
    def recover_signer(commitment: bytes, v: int, r: Union[int, bytes], s: Union[int, bytes]) -> Address:
        return signatures.recover_signer(commitment, v, r, s)

    @staticmethod
    def split_signature(signature: Union[bytes, str]) -> Tuple[bytes, bytes, int]:
        return signatures.split_signature(signature)

    def verify_integrity(self) -> Dict[str, Any]:
        """Check ledger solvency and the audit hash chain"""
        with self._lock:
            solvency = self.ledger.verify_solvency()
            audit = self.audit_trail.verify_integrity()
            self.audit_trail.log_event(
                event_type=AuditEventType.AUDIT_INTEGRITY_CHECK,
                entity_type="system",
                entity_id=self.bank_address.checksum,
                metadata={"solvent": solvency['valid'], "audit_valid": audit['valid']}
            )
        return {
            'valid': solvency['valid'] and audit['valid'],
            'checked_at': datetime.now(timezone.utc).isoformat(),
            'solvency': solvency,
            'audit': audit
        }

    def _log_rejection(self, action: str, cheque_id_hex: str, caller: Optional[Address], error: Exception) -> None:
        log_action(
            self.logger, "warning", f"Cheque {action} rejected: {error}",
            account=caller.checksum if caller else None, action=action,
            resource=f"cheque:{cheque_id_hex}",
            extra={"reason": getattr(error, 'reason', type(error).__name__)}
        )
