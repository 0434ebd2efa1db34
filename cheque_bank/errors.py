"""
Error Taxonomy Module

Every rejected operation surfaces one of these errors. Each carries a stable
``reason`` code (its class name) so callers and the HTTP layer can tell the
failures apart without parsing messages.
"""

from typing import Optional


class ChequeBankError(ValueError):
    """Base class for all domain errors raised by the settlement core"""

    http_status: int = 400
    default_message: str = "Operation rejected"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def reason(self) -> str:
        return type(self).__name__


class InsufficientFunds(ChequeBankError):
    default_message = "Not enough balance"


class InvalidAmount(ChequeBankError):
    default_message = "Wrong amount"


class InvalidValidFrom(ChequeBankError):
    default_message = "Wrong validFrom"


class InvalidValidThru(ChequeBankError):
    default_message = "Wrong validThru"


class InvalidSignature(ChequeBankError):
    default_message = "Invalid signature"


class ChequeNotFound(ChequeBankError):
    http_status = 404
    default_message = "Cheque not exist"


class ChequeNotRedeemable(ChequeBankError):
    http_status = 409
    default_message = "Cheque not redeemable"


class DuplicateCheque(ChequeBankError):
    http_status = 409
    default_message = "Cheque already issued"


class Unauthorized(ChequeBankError):
    http_status = 403
    default_message = "Caller is not the payer"


class UnauthorizedPayee(ChequeBankError):
    http_status = 403
    default_message = "Unmatched cheque and payee"


class UnauthorizedPayer(ChequeBankError):
    http_status = 403
    default_message = "Wrong payer"
