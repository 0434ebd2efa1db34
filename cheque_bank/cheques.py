"""
Cheque Registry Module

Immutable cheque values and the per-cheque lifecycle:

    UNKNOWN -> ISSUED -> REDEEMED | REVOKED

REDEEMED and REVOKED are terminal. Records are never deleted, so a settled
cheque id stays blocked forever.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any, Union

from .address import Address
from .encoding import MAX_UINT256, MAX_UINT32, normalize_cheque_id
from .errors import (
    ChequeNotRedeemable, DuplicateCheque, InvalidAmount, InvalidSignature, InvalidValidFrom, InvalidValidThru
)
from .storage import StorageInterface


class ChequeStatus(Enum):
    """Lifecycle states of a cheque id"""
    UNKNOWN = "unknown"      # Never issued
    ISSUED = "issued"        # Redeemable
    REDEEMED = "redeemed"    # Paid out (terminal)
    REVOKED = "revoked"      # Cancelled by the payer (terminal)

    @property
    def is_terminal(self) -> bool:
        return self in (ChequeStatus.REDEEMED, ChequeStatus.REVOKED)


@dataclass(frozen=True)
class ChequeInfo:
    """
    The signed fields of a cheque.
    Frozen so a value handed to the registry can never change underneath it.
    """
    cheque_id: bytes
    payer: Address
    payee: Address
    amount: int
    valid_from: int = 0
    valid_thru: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'cheque_id', normalize_cheque_id(self.cheque_id))
        object.__setattr__(self, 'payer', Address.parse(self.payer))
        object.__setattr__(self, 'payee', Address.parse(self.payee))

        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise InvalidAmount("Amount must be an integer")
        if not 0 <= self.amount <= MAX_UINT256:
            raise InvalidAmount("Amount does not fit in uint256")
        for name, value, error in (
            ('valid_from', self.valid_from, InvalidValidFrom),
            ('valid_thru', self.valid_thru, InvalidValidThru),
        ):
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_UINT32:
                raise error(f"{name} must be a uint32")

    @property
    def cheque_id_hex(self) -> str:
        return "0x" + self.cheque_id.hex()

    def is_within_window(self, now: int) -> bool:
        """Whether ledger time `now` lies inside [valid_from, valid_thru]"""
        if self.valid_from != 0 and now < self.valid_from:
            return False
        if self.valid_thru != 0 and now > self.valid_thru:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cheque_id': self.cheque_id_hex,
            'payer': self.payer.checksum,
            'payee': self.payee.checksum,
            'amount': str(self.amount),
            'valid_from': self.valid_from,
            'valid_thru': self.valid_thru
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChequeInfo':
        return cls(
            cheque_id=data['cheque_id'],
            payer=Address(data['payer']),
            payee=Address(data['payee']),
            amount=int(data['amount']),
            valid_from=int(data.get('valid_from', 0)),
            valid_thru=int(data.get('valid_thru', 0))
        )


@dataclass(frozen=True)
class Cheque:
    """A ChequeInfo together with the payer's 65-byte signature"""
    info: ChequeInfo
    signature: bytes

    def __post_init__(self):
        signature = self.signature
        if isinstance(signature, str):
            text = signature[2:] if signature.startswith(('0x', '0X')) else signature
            try:
                signature = bytes.fromhex(text)
            except ValueError:
                raise InvalidSignature("Signature is not valid hex")
        object.__setattr__(self, 'signature', bytes(signature))

    @property
    def signature_hex(self) -> str:
        return "0x" + self.signature.hex()


@dataclass
class ChequeRecord:
    """Stored state of an issued cheque"""
    cheque: Cheque
    status: ChequeStatus
    issued_at: datetime
    settled_at: Optional[datetime] = None

    @property
    def info(self) -> ChequeInfo:
        return self.cheque.info

    @property
    def is_redeemable(self) -> bool:
        return self.status == ChequeStatus.ISSUED


class ChequeRegistry:
    """
    Stores issued cheques and enforces their lifecycle transitions.
    Signature checks belong to the settlement engine; the registry only
    guarantees uniqueness and that every transition starts from ISSUED.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "cheques"

    def get(self, cheque_id: Union[bytes, str]) -> Optional[ChequeRecord]:
        data = self.storage.load(self.table_name, self._key(cheque_id))
        if data is None:
            return None
        return self._record_from_dict(data)

    def status(self, cheque_id: Union[bytes, str]) -> ChequeStatus:
        record = self.get(cheque_id)
        return record.status if record else ChequeStatus.UNKNOWN

    def register(self, cheque: Cheque) -> ChequeRecord:
        """
        Store a newly issued cheque

        Raises:
            DuplicateCheque: If the id was ever issued before
        """
        key = self._key(cheque.info.cheque_id)
        if self.storage.exists(self.table_name, key):
            raise DuplicateCheque(f"Cheque {key} already issued")

        record = ChequeRecord(
            cheque=cheque,
            status=ChequeStatus.ISSUED,
            issued_at=datetime.now(timezone.utc)
        )
        self._save(record)
        return record

    def mark_redeemed(self, cheque_id: Union[bytes, str]) -> ChequeRecord:
        return self._settle(cheque_id, ChequeStatus.REDEEMED)

    def mark_revoked(self, cheque_id: Union[bytes, str]) -> ChequeRecord:
        return self._settle(cheque_id, ChequeStatus.REVOKED)

    def find_by_party(
        self,
        payer: Optional[Address] = None,
        payee: Optional[Address] = None,
        status: Optional[ChequeStatus] = None
    ) -> List[ChequeRecord]:
        filters = {}
        if payer is not None:
            filters['payer'] = Address.parse(payer).checksum
        if payee is not None:
            filters['payee'] = Address.parse(payee).checksum
        if status is not None:
            filters['status'] = status.value
        return [self._record_from_dict(data) for data in self.storage.find(self.table_name, filters)]

    def _settle(self, cheque_id: Union[bytes, str], new_status: ChequeStatus) -> ChequeRecord:
        record = self.get(cheque_id)
        if record is None or record.status != ChequeStatus.ISSUED:
            current = record.status.value if record else ChequeStatus.UNKNOWN.value
            raise ChequeNotRedeemable(f"Cheque is {current}")

        record.status = new_status
        record.settled_at = datetime.now(timezone.utc)
        self._save(record)
        return record

    @staticmethod
    def _key(cheque_id: Union[bytes, str]) -> str:
        return "0x" + normalize_cheque_id(cheque_id).hex()

    def _save(self, record: ChequeRecord) -> None:
        data = record.info.to_dict()
        data.update({
            'signature': record.cheque.signature_hex,
            'status': record.status.value,
            'issued_at': record.issued_at.isoformat(),
            'settled_at': record.settled_at.isoformat() if record.settled_at else None
        })
        self.storage.save(self.table_name, data['cheque_id'], data)

    def _record_from_dict(self, data: Dict[str, Any]) -> ChequeRecord:
        return ChequeRecord(
            cheque=Cheque(info=ChequeInfo.from_dict(data), signature=data['signature']),
            status=ChequeStatus(data['status']),
            issued_at=datetime.fromisoformat(data['issued_at']),
            settled_at=datetime.fromisoformat(data['settled_at']) if data.get('settled_at') else None
        )
