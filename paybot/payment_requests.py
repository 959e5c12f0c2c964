import logging
import secrets
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from .errors import AccountNotFound, RecipientNotFound, RequestNotFound, SelfPaymentError
from .identifiers import USDC, parse_amount
from .profiles import ProfileStore

log = logging.getLogger(__name__)

DEFAULT_REQUEST_TTL = 24 * 60 * 60

PENDING = "pending"
FULFILLED = "fulfilled"
DECLINED = "declined"
EXPIRED = "expired"

SENT_KEY = "payment_requests_sent"
RECEIVED_KEY = "payment_requests_received"


@dataclass(frozen=True)
class PaymentRequest:
    request_id: str
    from_user_id: int
    to_user_id: int
    amount: Decimal
    created_at: float
    expires_at: float
    currency: str = USDC
    reason: Optional[str] = None
    status: str = PENDING
    tx_hash: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.status == PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.request_id,
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "reason": self.reason,
            "status": self.status,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "tx_hash": self.tx_hash,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentRequest":
        return cls(
            request_id=str(data["id"]),
            from_user_id=int(data["from_user_id"]),
            to_user_id=int(data["to_user_id"]),
            amount=Decimal(str(data["amount"])),
            created_at=float(data.get("created_at") or 0),
            expires_at=float(data.get("expires_at") or 0),
            currency=str(data.get("currency") or USDC),
            reason=data.get("reason") or None,
            status=str(data.get("status") or PENDING),
            tx_hash=data.get("tx_hash") or None,
        )


class RequestService:
    """Payment requests ("IOUs") kept in both participants' metadata.

    The requester holds the entry under ``payment_requests_sent`` and the payer
    under ``payment_requests_received``. Status only ever moves out of
    ``pending``; a terminal request is never reopened.
    """

    def __init__(
        self,
        profiles: ProfileStore,
        *,
        clock: Callable[[], float] = time.time,
        ttl: float = DEFAULT_REQUEST_TTL,
    ) -> None:
        self.profiles = profiles
        self.clock = clock
        self.ttl = ttl
        self._lock = threading.Lock()

    def create(
        self,
        from_user_id: int,
        to_user_id: int,
        amount,
        currency: str = USDC,
        reason: Optional[str] = None,
    ) -> PaymentRequest:
        if from_user_id == to_user_id:
            raise SelfPaymentError("You can't request a payment from yourself.")
        requester = self.profiles.get_by_platform_id(from_user_id)
        if requester is None or not requester.wallet_address:
            raise AccountNotFound("Please create an account first with /start")
        payer = self.profiles.get_by_platform_id(to_user_id)
        if payer is None or not payer.wallet_address:
            raise RecipientNotFound("That user has not set up a wallet with this bot yet.")
        value = parse_amount(amount)
        now = self.clock()
        request = PaymentRequest(
            request_id=secrets.token_hex(6),
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=value,
            created_at=now,
            expires_at=now + self.ttl,
            currency=currency,
            reason=(reason or "").strip() or None,
        )
        with self._lock:
            self._append(from_user_id, SENT_KEY, request)
            self._append(to_user_id, RECEIVED_KEY, request)
        log.info(
            "payment request %s created: %s asks %s for %s %s",
            request.request_id,
            from_user_id,
            to_user_id,
            value,
            currency,
        )
        return request

    def _append(self, user_id: int, key: str, request: PaymentRequest) -> None:
        profile = self.profiles.get_by_platform_id(user_id)
        if profile is None:
            return
        metadata = dict(profile.metadata)
        entries = [entry for entry in metadata.get(key) or [] if isinstance(entry, dict)]
        entries.append(request.to_dict())
        metadata[key] = entries
        self.profiles.update_metadata(user_id, metadata)

    def _entries(self, user_id: int, key: str) -> List[PaymentRequest]:
        profile = self.profiles.get_by_platform_id(user_id)
        if profile is None:
            return []
        requests = []
        for entry in profile.metadata.get(key) or []:
            if not isinstance(entry, dict):
                continue
            try:
                requests.append(PaymentRequest.from_dict(entry))
            except (KeyError, TypeError, ValueError, ArithmeticError):
                log.warning("skipping malformed payment request for %s: %r", user_id, entry)
        return requests

    def _find(self, request_id: str, holder_id: int) -> Optional[PaymentRequest]:
        for key in (RECEIVED_KEY, SENT_KEY):
            for request in self._entries(holder_id, key):
                if request.request_id == request_id:
                    return request
        return None

    def _write_status(
        self, request: PaymentRequest, status: str, tx_hash: Optional[str] = None
    ) -> PaymentRequest:
        updated_at = self.clock()
        for user_id, key in ((request.to_user_id, RECEIVED_KEY), (request.from_user_id, SENT_KEY)):
            profile = self.profiles.get_by_platform_id(user_id)
            if profile is None:
                log.warning("request %s holder %s vanished", request.request_id, user_id)
                continue
            metadata = dict(profile.metadata)
            entries = []
            for entry in metadata.get(key) or []:
                if isinstance(entry, dict) and str(entry.get("id")) == request.request_id:
                    entry = dict(entry, status=status, updated_at=updated_at)
                    if tx_hash:
                        entry["tx_hash"] = tx_hash
                entries.append(entry)
            metadata[key] = entries
            self.profiles.update_metadata(user_id, metadata)
        return PaymentRequest(
            request_id=request.request_id,
            from_user_id=request.from_user_id,
            to_user_id=request.to_user_id,
            amount=request.amount,
            created_at=request.created_at,
            expires_at=request.expires_at,
            currency=request.currency,
            reason=request.reason,
            status=status,
            tx_hash=tx_hash or request.tx_hash,
        )

    def _expire_if_stale(self, request: PaymentRequest) -> PaymentRequest:
        if request.pending and self.clock() >= request.expires_at:
            log.info("payment request %s expired", request.request_id)
            return self._write_status(request, EXPIRED)
        return request

    def get(self, request_id: str, holder_id: int) -> PaymentRequest:
        with self._lock:
            request = self._find(request_id, holder_id)
            if request is None:
                raise RequestNotFound("Payment request not found.")
            return self._expire_if_stale(request)

    def _transition(
        self, request_id: str, payer_id: int, status: str, tx_hash: Optional[str] = None
    ) -> PaymentRequest:
        with self._lock:
            request = self._find(request_id, payer_id)
            if request is None or request.to_user_id != payer_id:
                raise RequestNotFound("Payment request not found.")
            request = self._expire_if_stale(request)
            if not request.pending:
                raise RequestNotFound(f"This request is already {request.status}.")
            return self._write_status(request, status, tx_hash)

    def accept(self, request_id: str, payer_id: int) -> PaymentRequest:
        """Return the pending request so the caller can stage its payment.

        The status stays ``pending`` until the transfer lands and
        ``mark_fulfilled`` is called.
        """
        with self._lock:
            request = self._find(request_id, payer_id)
            if request is None or request.to_user_id != payer_id:
                raise RequestNotFound("Payment request not found.")
            request = self._expire_if_stale(request)
            if not request.pending:
                raise RequestNotFound(f"This request is already {request.status}.")
            return request

    def mark_fulfilled(self, request_id: str, payer_id: int, tx_hash: str) -> PaymentRequest:
        request = self._transition(request_id, payer_id, FULFILLED, tx_hash)
        log.info("payment request %s fulfilled tx=%s", request_id, tx_hash)
        return request

    def decline(self, request_id: str, payer_id: int) -> PaymentRequest:
        request = self._transition(request_id, payer_id, DECLINED)
        log.info("payment request %s declined by %s", request_id, payer_id)
        return request

    def pending_for(self, user_id: int) -> Tuple[List[PaymentRequest], List[PaymentRequest]]:
        with self._lock:
            sent = [self._expire_if_stale(r) for r in self._entries(user_id, SENT_KEY)]
            received = [self._expire_if_stale(r) for r in self._entries(user_id, RECEIVED_KEY)]
        return [r for r in sent if r.pending], [r for r in received if r.pending]

    def sweep(self) -> List[PaymentRequest]:
        expired: List[PaymentRequest] = []
        now = self.clock()
        with self._lock:
            for profile in self.profiles.iter_profiles():
                for request in self._entries(profile.user_id, RECEIVED_KEY):
                    if request.pending and now >= request.expires_at:
                        expired.append(self._write_status(request, EXPIRED))
        if expired:
            log.info("expired %s payment requests", len(expired))
        return expired
