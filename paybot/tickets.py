import secrets
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Generic, List, Optional, TypeVar

from .identifiers import USDC

TICKET_ID_BYTES = 6


def new_ticket_id() -> str:
    # 8 url-safe characters, never containing the "." payload separator
    return secrets.token_urlsafe(TICKET_ID_BYTES)


@dataclass(frozen=True)
class PendingPaymentTicket:
    ticket_id: str
    owner_id: int
    address: str
    display_name: str
    amount: Decimal
    created_at: float
    expires_at: float
    currency: str = USDC
    recipient_user_id: Optional[int] = None
    source: str = "command"
    request_id: Optional[str] = None

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class AmountSession:
    user_id: int
    address: str
    display_name: str
    expires_at: float
    recipient_user_id: Optional[int] = None
    source: str = "deeplink"

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


T = TypeVar("T")


class ExpiringStore(Generic[T]):
    """Keyed store of short-lived entries.

    This is the whole contract the payment flow relies on: ``get``, ``put``,
    ``delete``, an atomic ``take`` and an idempotent ``sweep``. The in-process
    implementation below suits a single bot instance; a multi-instance
    deployment swaps in a TTL-capable external store with the same methods.
    """

    def get(self, key, now: float) -> Optional[T]:
        raise NotImplementedError

    def put(self, key, value: T) -> None:
        raise NotImplementedError

    def delete(self, key) -> bool:
        raise NotImplementedError

    def take(self, key, now: float, owner_id: Optional[int] = None) -> Optional[T]:
        raise NotImplementedError

    def sweep(self, now: float) -> List[T]:
        raise NotImplementedError


class InMemoryStore(ExpiringStore[T]):
    def __init__(self) -> None:
        self._items: Dict[object, T] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._items)

    def get(self, key, now: float) -> Optional[T]:
        with self._lock:
            item = self._items.get(key)
            if item is None or item.expired(now):
                return None
            return item

    def put(self, key, value: T) -> None:
        with self._lock:
            self._items[key] = value

    def delete(self, key) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def take(self, key, now: float, owner_id: Optional[int] = None) -> Optional[T]:
        """Remove and return a live entry; expired or foreign entries yield None."""
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            if item.expired(now):
                del self._items[key]
                return None
            if owner_id is not None and _owner_of(item) != owner_id:
                return None
            del self._items[key]
            return item

    def sweep(self, now: float) -> List[T]:
        with self._lock:
            stale = [key for key, item in self._items.items() if item.expired(now)]
            return [self._items.pop(key) for key in stale]


def _owner_of(item) -> Optional[int]:
    owner = getattr(item, "owner_id", None)
    if owner is None:
        owner = getattr(item, "user_id", None)
    return owner


class TicketStore(InMemoryStore[PendingPaymentTicket]):
    pass


class SessionStore(InMemoryStore[AmountSession]):
    """Keyed by user id: one amount-entry slot per user, a new prompt replaces the old."""
