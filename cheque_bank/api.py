"""
FastAPI REST API Module

Exposes the settlement engine over HTTP. Callers authenticate by signing a
one-time challenge with their account key and receive a JWT whose subject is
their address; that address is the invoking identity for deposit, withdraw,
redeem and revoke.
"""

import secrets
import threading
import time
from datetime import datetime, timezone, timedelta
from typing import Callable, Dict, Optional, Tuple

import jwt
import uvicorn
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from .address import Address
from .audit import AuditTrail
from .cheques import Cheque, ChequeInfo
from .config import ChequeBankConfig, get_config
from .engine import ChequeBank
from .errors import ChequeBankError
from .ledger import RecordingPayoutGateway
from .logging_config import setup_logging, get_logger, log_action
from .storage import InMemoryStorage, SQLiteStorage, StorageInterface


# Pydantic models for API requests/responses
class ChequeInfoModel(BaseModel):
    cheque_id: str = Field(..., description="32-byte cheque id as 0x-prefixed hex")
    payer: str
    payee: str
    amount: str = Field(..., description="Integer amount as decimal string")
    valid_from: int = 0
    valid_thru: int = 0

    def to_info(self) -> ChequeInfo:
        return ChequeInfo(
            cheque_id=self.cheque_id,
            payer=Address(self.payer),
            payee=Address(self.payee),
            amount=parse_amount(self.amount),
            valid_from=self.valid_from,
            valid_thru=self.valid_thru
        )

    @classmethod
    def from_info(cls, info: ChequeInfo) -> 'ChequeInfoModel':
        return cls(**info.to_dict())


class IssueChequeRequest(BaseModel):
    cheque_info: ChequeInfoModel
    signature: str = Field(..., description="65-byte signature as 0x-prefixed hex")


class AmountRequest(BaseModel):
    amount: str


class WithdrawToRequest(BaseModel):
    amount: str
    recipient: str


class ChallengeRequest(BaseModel):
    address: str


class TokenRequest(BaseModel):
    address: str
    signature: str


class RecoverRequest(BaseModel):
    hash: str
    v: int
    r: str
    s: str


class SplitRequest(BaseModel):
    signature: str


def parse_amount(value: str) -> int:
    try:
        return int(value, 10)
    except (TypeError, ValueError):
        raise ValueError(f"Amount must be a decimal integer string: {value!r}")


def _hex_to_bytes(value: str) -> bytes:
    text = value[2:] if value.startswith(('0x', '0X')) else value
    return bytes.fromhex(text)


class ChallengeStore:
    """Single-use login challenges, keyed by address"""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._pending: Dict[Address, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def issue(self, address: Address, bank_address: Address) -> str:
        message = (
            f"Sign in to cheque bank {bank_address.checksum}\n"
            f"Account: {address.checksum}\n"
            f"Nonce: {secrets.token_hex(16)}"
        )
        now = self.clock()
        with self._lock:
            self._prune(now)
            self._pending[address] = (message, now + self.ttl_seconds)
        return message

    def _prune(self, now: float) -> None:
        """Forget challenges that can no longer be redeemed"""
        expired = [address for address, (_, expires) in self._pending.items() if now > expires]
        for address in expired:
            del self._pending[address]

    def consume(self, address: Address) -> Optional[str]:
        """Return the pending message for address and forget it"""
        with self._lock:
            entry = self._pending.pop(address, None)
        if entry is None:
            return None
        message, expires = entry
        if self.clock() > expires:
            return None
        return message


# Cheque Bank System Context
class ChequeBankSystem:
    """Settlement engine plus the transport-side state that serves it"""

    def __init__(self, config: ChequeBankConfig, storage: Optional[StorageInterface] = None):
        self.config = config
        if storage is None:
            if config.storage_backend == "memory":
                storage = InMemoryStorage()
            else:
                storage = SQLiteStorage(config.database_path)
        self.storage = storage

        self.audit_trail = AuditTrail(self.storage, enabled=config.enable_audit_logging)
        self.payout_gateway = RecordingPayoutGateway()
        self.bank = ChequeBank(
            self.storage,
            Address(config.bank_address),
            audit_trail=self.audit_trail,
            payout_gateway=self.payout_gateway
        )
        self.challenges = ChallengeStore(config.challenge_ttl_seconds)

    def create_token(self, address: Address) -> Dict[str, str]:
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(hours=self.config.jwt_expiry_hours)
        token = jwt.encode(
            {"sub": address.checksum, "iat": now, "exp": expires_at},
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm
        )
        return {"access_token": token, "token_type": "bearer", "expires_at": expires_at.isoformat()}

    def decode_token(self, token: str) -> Address:
        payload = jwt.decode(token, self.config.jwt_secret, algorithms=[self.config.jwt_algorithm])
        return Address(payload["sub"])


_system: Optional[ChequeBankSystem] = None


def get_system() -> ChequeBankSystem:
    global _system
    if _system is None:
        _system = ChequeBankSystem(get_config())
    return _system


logger = setup_logging(get_config().log_level, log_format=get_config().log_format)
api_logger = get_logger("chequebank.api")

security = HTTPBearer(auto_error=False)


def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: ChequeBankSystem = Depends(get_system)
) -> Address:
    """Dependency that validates the JWT and returns the caller's address"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return system.decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")


app = FastAPI(
    title="Cheque Bank API",
    description="Settlement of off-chain signed cheques against internal balances",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)


@app.exception_handler(ChequeBankError)
async def cheque_bank_error_handler(request: Request, exc: ChequeBankError):
    return JSONResponse(status_code=exc.http_status, content={"detail": str(exc), "reason": exc.reason})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "reason": "InvalidRequest"})


@app.get("/health")
async def health_check(system: ChequeBankSystem = Depends(get_system)):
    """Health check endpoint"""
    return {
        "status": "healthy",
        "bank_address": system.bank.bank_address.checksum,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Authentication Endpoints
@app.post("/auth/challenge")
async def create_challenge(request: ChallengeRequest, system: ChequeBankSystem = Depends(get_system)):
    """Issue a one-time message for the account to sign"""
    address = Address(request.address)
    message = system.challenges.issue(address, system.bank.bank_address)
    return {"address": address.checksum, "message": message}


@app.post("/auth/token")
async def create_token(request: TokenRequest, system: ChequeBankSystem = Depends(get_system)):
    """Exchange a signed challenge for a JWT"""
    address = Address(request.address)
    message = system.challenges.consume(address)
    if message is None:
        raise HTTPException(status_code=401, detail="No pending challenge")

    try:
        signer = Address(Account.recover_message(encode_defunct(text=message), signature=request.signature))
    except Exception as e:
        log_action(api_logger, "warning", f"Login signature rejected: {e}",
                   account=address.checksum, action="login_failed", resource="auth")
        raise HTTPException(status_code=401, detail="Invalid signature")

    if signer != address:
        log_action(api_logger, "warning", "Login signature from another account",
                   account=address.checksum, action="login_failed", resource="auth")
        raise HTTPException(status_code=401, detail="Invalid signature")

    log_action(api_logger, "info", "Account authenticated",
               account=address.checksum, action="login", resource="auth")
    return system.create_token(address)


# Ledger Endpoints
@app.post("/deposit")
async def deposit(
    request: AmountRequest,
    caller: Address = Depends(get_current_account),
    system: ChequeBankSystem = Depends(get_system)
):
    balance = system.bank.deposit(caller, parse_amount(request.amount))
    return {"account": caller.checksum, "balance": str(balance)}


@app.post("/withdraw")
async def withdraw(
    request: AmountRequest,
    caller: Address = Depends(get_current_account),
    system: ChequeBankSystem = Depends(get_system)
):
    balance = system.bank.withdraw(caller, parse_amount(request.amount))
    return {"account": caller.checksum, "balance": str(balance)}


@app.post("/withdraw-to")
async def withdraw_to(
    request: WithdrawToRequest,
    caller: Address = Depends(get_current_account),
    system: ChequeBankSystem = Depends(get_system)
):
    recipient = Address(request.recipient)
    balance = system.bank.withdraw_to(caller, parse_amount(request.amount), recipient)
    return {"account": caller.checksum, "recipient": recipient.checksum, "balance": str(balance)}


@app.get("/balances/{address}")
async def get_balance(address: str, system: ChequeBankSystem = Depends(get_system)):
    account = Address(address)
    return {"account": account.checksum, "balance": str(system.bank.user_balances(account))}


# Cheque Endpoints
@app.post("/cheques", status_code=status.HTTP_201_CREATED)
async def issue_cheque(request: IssueChequeRequest, system: ChequeBankSystem = Depends(get_system)):
    """Present a signed cheque; any holder may do this"""
    cheque = Cheque(info=request.cheque_info.to_info(), signature=request.signature)
    record = system.bank.issue_cheque(cheque)
    return {"cheque_id": record.info.cheque_id_hex, "status": record.status.value}


@app.post("/cheques/redeem")
async def redeem_cheque(
    request: ChequeInfoModel,
    caller: Address = Depends(get_current_account),
    system: ChequeBankSystem = Depends(get_system)
):
    redemption = system.bank.redeem(caller, request.to_info())
    return redemption.to_dict()


@app.get("/cheques/{cheque_id}")
async def get_cheque(cheque_id: str, system: ChequeBankSystem = Depends(get_system)):
    record = system.bank.get_cheque_record(cheque_id)
    return {
        "cheque_info": ChequeInfoModel.from_info(record.info).model_dump(),
        "signature": record.cheque.signature_hex,
        "status": record.status.value
    }


@app.get("/cheques/{cheque_id}/valid")
async def is_cheque_valid(cheque_id: str, payee: str, system: ChequeBankSystem = Depends(get_system)):
    return {"cheque_id": cheque_id, "valid": system.bank.is_cheque_valid(Address(payee), cheque_id)}


@app.get("/cheques/{cheque_id}/redeemable")
async def is_redeemable(cheque_id: str, system: ChequeBankSystem = Depends(get_system)):
    return {"cheque_id": cheque_id, "redeemable": system.bank.redeemable_cheques(cheque_id)}


@app.post("/cheques/{cheque_id}/revoke")
async def revoke_cheque(
    cheque_id: str,
    caller: Address = Depends(get_current_account),
    system: ChequeBankSystem = Depends(get_system)
):
    record = system.bank.revoke(caller, cheque_id)
    return {"cheque_id": record.info.cheque_id_hex, "status": record.status.value}


# Signature Utility Endpoints
@app.post("/signatures/recover")
async def recover_signer(request: RecoverRequest, system: ChequeBankSystem = Depends(get_system)):
    signer = system.bank.recover_signer(_hex_to_bytes(request.hash), request.v,
                                        _hex_to_bytes(request.r), _hex_to_bytes(request.s))
    return {"signer": signer.checksum}


@app.post("/signatures/split")
async def split_signature(request: SplitRequest, system: ChequeBankSystem = Depends(get_system)):
    r, s, v = system.bank.split_signature(request.signature)
    return {"r": "0x" + r.hex(), "s": "0x" + s.hex(), "v": v}


@app.get("/audit/verify")
async def verify_integrity(system: ChequeBankSystem = Depends(get_system)):
    return system.bank.verify_integrity()


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the API server"""
    config = get_config()
    uvicorn.run(
        "cheque_bank.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
