import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Set, Tuple

from .errors import (
    AccountNotFound,
    RequestNotFound,
    SelfPaymentError,
    TicketNotFound,
)
from .identifiers import parse_amount, same_address
from .profiles import ProfileStore, UserProfile
from .rail import TransferReceipt
from .resolver import ResolvedRecipient
from .tickets import (
    AmountSession,
    PendingPaymentTicket,
    SessionStore,
    TicketStore,
    new_ticket_id,
)

log = logging.getLogger(__name__)

DEFAULT_TICKET_TTL = 600
DEFAULT_SESSION_TTL = 600


@dataclass(frozen=True)
class Settlement:
    ticket: PendingPaymentTicket
    receipt: TransferReceipt
    payer: UserProfile


class PaymentFlow:
    """Amount entry, staging and confirmation of outgoing payments.

    A payment moves through AwaitingAmount (optional), AwaitingConfirmation
    and Executing. The ticket is consumed before the rail is called, so a
    double press, a replayed callback or a late press after expiry can never
    produce a second transfer. Nothing here retries a failed transfer.
    """

    def __init__(
        self,
        profiles: ProfileStore,
        rail,
        tickets: Optional[TicketStore] = None,
        sessions: Optional[SessionStore] = None,
        *,
        clock: Callable[[], float] = time.time,
        ticket_ttl: float = DEFAULT_TICKET_TTL,
        session_ttl: float = DEFAULT_SESSION_TTL,
    ) -> None:
        self.profiles = profiles
        self.rail = rail
        self.tickets = tickets if tickets is not None else TicketStore()
        self.sessions = sessions if sessions is not None else SessionStore()
        self.clock = clock
        self.ticket_ttl = ticket_ttl
        self.session_ttl = session_ttl
        self._claimed_requests: Set[str] = set()
        self._claim_lock = threading.Lock()

    def _payer(self, user_id: int) -> UserProfile:
        profile = self.profiles.get_by_platform_id(user_id)
        if profile is None or not profile.wallet_address:
            raise AccountNotFound("Please create an account first with /start")
        return profile

    # AwaitingAmount

    def await_amount(
        self, user_id: int, recipient: ResolvedRecipient, source: str = "deeplink"
    ) -> AmountSession:
        session = AmountSession(
            user_id=user_id,
            address=recipient.address,
            display_name=recipient.display_name,
            expires_at=self.clock() + self.session_ttl,
            recipient_user_id=recipient.owner_user_id,
            source=source,
        )
        self.sessions.put(user_id, session)
        return session

    def pending_amount(self, user_id: int) -> Optional[AmountSession]:
        return self.sessions.get(user_id, self.clock())

    def clear_amount(self, user_id: int) -> bool:
        return self.sessions.delete(user_id)

    def submit_amount(self, user_id: int, raw: str) -> PendingPaymentTicket:
        session = self.pending_amount(user_id)
        if session is None:
            raise TicketNotFound("No payment is waiting for an amount.")
        # an invalid amount leaves the session in place for another try
        amount = parse_amount(raw)
        self.sessions.delete(user_id)
        recipient = ResolvedRecipient(
            address=session.address,
            display_name=session.display_name,
            owner_user_id=session.recipient_user_id,
        )
        return self.stage(user_id, recipient, amount, source=session.source)

    # AwaitingConfirmation

    def stage(
        self,
        owner_id: int,
        recipient: ResolvedRecipient,
        amount,
        *,
        source: str = "command",
        request_id: Optional[str] = None,
    ) -> PendingPaymentTicket:
        payer = self._payer(owner_id)
        if same_address(payer.wallet_address, recipient.address):
            raise SelfPaymentError("You can't send a payment to yourself.")
        value = parse_amount(amount)
        now = self.clock()
        ticket = PendingPaymentTicket(
            ticket_id=new_ticket_id(),
            owner_id=owner_id,
            address=recipient.address,
            display_name=recipient.display_name,
            amount=value,
            created_at=now,
            expires_at=now + self.ticket_ttl,
            recipient_user_id=recipient.owner_user_id,
            source=source,
            request_id=request_id,
        )
        self.tickets.put(ticket.ticket_id, ticket)
        log.info(
            "payment staged %s: %s -> %s amount=%s source=%s",
            ticket.ticket_id,
            owner_id,
            recipient.address,
            value,
            source,
        )
        return ticket

    def cancel(self, ticket_id: str, user_id: int) -> PendingPaymentTicket:
        ticket = self.tickets.take(ticket_id, self.clock(), owner_id=user_id)
        if ticket is None:
            raise TicketNotFound("This payment has expired or was already processed.")
        log.info("payment %s cancelled by %s", ticket_id, user_id)
        return ticket

    # Executing

    def _claim_request(self, request_id: str) -> None:
        with self._claim_lock:
            if request_id in self._claimed_requests:
                raise RequestNotFound("This request has already been paid.")
            self._claimed_requests.add(request_id)

    def release_request(self, request_id: str) -> None:
        with self._claim_lock:
            self._claimed_requests.discard(request_id)

    def claim(
        self,
        ticket_id: str,
        user_id: int,
        address: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> PendingPaymentTicket:
        """Consume a ticket for execution. Only the first caller gets it."""
        ticket = self.tickets.take(ticket_id, self.clock(), owner_id=user_id)
        if ticket is None:
            raise TicketNotFound("This payment has expired or was already processed.")
        if (address is not None and not same_address(address, ticket.address)) or (
            amount is not None and amount != ticket.amount
        ):
            log.warning("confirmation payload for %s does not match its ticket", ticket_id)
            raise TicketNotFound("Payment details changed. Please start the payment again.")
        if ticket.request_id:
            self._claim_request(ticket.request_id)
        return ticket

    async def confirm(
        self,
        ticket_id: str,
        user_id: int,
        address: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> Settlement:
        ticket = self.claim(ticket_id, user_id, address, amount)
        return await self.execute(ticket)

    async def execute(self, ticket: PendingPaymentTicket) -> Settlement:
        """Run the single transfer for a claimed ticket."""
        user_id = ticket.owner_id
        try:
            payer = self._payer(user_id)
            private_key = self.profiles.signing_key(payer)
            if not private_key:
                raise AccountNotFound("Your wallet key is unavailable.")
            receipt = await self.rail.transfer(private_key, ticket.address, ticket.amount)
        except Exception:
            if ticket.request_id:
                self.release_request(ticket.request_id)
            raise
        log.info(
            "payment sent %s: %s -> %s amount=%s tx=%s",
            ticket.ticket_id,
            user_id,
            ticket.address,
            ticket.amount,
            receipt.hash,
        )
        return Settlement(ticket=ticket, receipt=receipt, payer=payer)

    def sweep(self) -> Tuple[int, int]:
        now = self.clock()
        tickets = self.tickets.sweep(now)
        sessions = self.sessions.sweep(now)
        if tickets or sessions:
            log.info(
                "swept %s expired payment tickets and %s amount prompts",
                len(tickets),
                len(sessions),
            )
        return len(tickets), len(sessions)
