import logging
import time
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from . import callbacks
from .address_book import AddressBook
from .errors import (
    AccountNotFound,
    AliasAlreadyExists,
    InsufficientFundsError,
    NotFoundError,
    ParseError,
    PaybotError,
    RailError,
    RecipientNotFound,
    RequestNotFound,
    TicketNotFound,
)
from .identifiers import (
    USDC,
    format_amount,
    format_target,
    parse_amount,
    parse_identifier,
    same_address,
    truncate_address,
)
from .intents import (
    CHAT_RESPONSE,
    MAKE_PAYMENT,
    REQUEST_PAYMENT,
    TRANSACTION_HISTORY,
    RegexIntentResolver,
)
from .payment_requests import PaymentRequest, RequestService
from .payments import PaymentFlow, Settlement
from .profiles import ProfileStore, UserProfile
from .qr import bot_link, is_pay_link, parse_pay_link, render_png, wallet_uri
from .rail import ARC_TESTNET_CHAIN_ID, ARC_USDC_ADDRESS
from .replies import BotAttachment, BotReply, Button, ChatUser, Interaction, Notification
from .resolver import RecipientResolver, ResolvedRecipient
from .tickets import PendingPaymentTicket

log = logging.getLogger(__name__)

FAUCET_URL = "https://faucet.circle.com"
QR_PRESETS = (Decimal("5"), Decimal("10"), Decimal("25"))
QR_AMOUNT = "qr"

HELP_TEXT = """ARC USDC wallet

Wallet
/start - create your wallet or show your address
/balance - show your USDC balance
/history - recent transfers and open requests
/network - ARC network status

Payments
/pay <recipient> [amount] - send USDC
/request <user> <amount> [reason] - ask someone for USDC
/cancel - stop an amount prompt

QR codes
/qr <amount> - QR codes for a fixed amount
/myqr - pick a QR code type and amount

Friends
/addfriend <alias> <@username | user ID | 0x address>
/removefriend <alias>
/friends - list your aliases

Recipients can be an @username, a Telegram user ID, a friend alias or an
0x address. You can also just write "send 10 to bob" or "show my history"."""

PAY_USAGE = """Usage: /pay <recipient> [amount]

Examples:
/pay @username 10
/pay alice 5.5 (friend alias)
/pay 0x1234... 15

Leave the amount out and I will ask for it."""

REQUEST_USAGE = """Usage: /request <user> <amount> [reason]

Examples:
/request @alice 10
/request bob 5.5 dinner split

The user must have a wallet with this bot."""

QR_USAGE = """Usage: /qr <amount>

Examples:
/qr 15.5
/qr 0 (payer chooses the amount)

Use /myqr for ready-made options."""

ADD_FRIEND_USAGE = """Usage: /addfriend <alias> <@username | user ID | 0x address>

Examples:
/addfriend alice @alice_crypto
/addfriend bob 123456789
/addfriend carl 0x1234...

Aliases are 1-16 letters, digits, _ or -, must not start with @ or 0x,
and "me" is reserved."""

REMOVE_FRIEND_USAGE = "Usage: /removefriend <alias>\nExample: /removefriend alice"

RECIPIENT_NOT_FOUND = """Recipient not found. Make sure:
- the user has created a wallet with /start
- you are using the right @username, user ID or friend alias
- or give a valid 0x address

Use /friends to see your aliases."""


def _minutes(seconds: float) -> str:
    minutes = max(1, int(round(seconds / 60)))
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" + ("s" if hours != 1 else "")
    return f"{minutes} minute" + ("s" if minutes != 1 else "")


class WalletBot:
    """Chat-facing wallet: commands, free text and button presses.

    Every entry point returns a transport-neutral ``BotReply``; messages for
    other users are queued as ``Notification`` objects and collected by the
    transport with ``drain_notifications`` after each update.
    """

    def __init__(
        self,
        *,
        profiles: ProfileStore,
        rail,
        address_book: Optional[AddressBook] = None,
        resolver: Optional[RecipientResolver] = None,
        payments: Optional[PaymentFlow] = None,
        requests: Optional[RequestService] = None,
        intents=None,
        bot_username: str = "arc_pay_bot",
        explorer_url: str = "https://testnet.arcscan.app",
        chain_id: int = ARC_TESTNET_CHAIN_ID,
        usdc_address: str = ARC_USDC_ADDRESS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.profiles = profiles
        self.rail = rail
        self.address_book = address_book or AddressBook(profiles)
        self.resolver = resolver or RecipientResolver(profiles, self.address_book)
        self.payments = payments or PaymentFlow(profiles, rail, clock=clock)
        self.requests = requests or RequestService(profiles, clock=clock)
        self.intents = intents or RegexIntentResolver()
        self.bot_username = bot_username
        self.explorer_url = explorer_url.rstrip("/")
        self.chain_id = chain_id
        self.usdc_address = usdc_address
        self._pending_notifications: List[Notification] = []
        self._commands: Dict[str, Callable] = {
            "start": self.start,
            "help": self.help,
            "balance": self.balance,
            "pay": self.pay,
            "request": self.request,
            "qr": self.qr,
            "myqr": self.my_qr,
            "history": self.history,
            "network": self.network,
            "addfriend": self.add_friend,
            "removefriend": self.remove_friend,
            "friends": self.list_friends,
            "cancel": self.cancel,
        }

    @property
    def commands(self) -> List[str]:
        return list(self._commands)

    # plumbing

    def drain_notifications(self) -> List[Notification]:
        notifications = list(self._pending_notifications)
        self._pending_notifications.clear()
        return notifications

    def _notify(self, user_id: int, message: str, buttons=None) -> None:
        self._pending_notifications.append(
            Notification(user_id=user_id, message=message, buttons=buttons or [])
        )

    def _require(self, user: ChatUser) -> UserProfile:
        profile = self.profiles.get_by_platform_id(user.user_id)
        if profile is None or not profile.wallet_address:
            raise AccountNotFound("Please create an account first with /start")
        return profile

    def _display_for(self, viewer_id: int, profile: UserProfile) -> str:
        alias = self.address_book.reverse_lookup_by_user_id(viewer_id, profile.user_id)
        if not alias and profile.username:
            alias = self.address_book.reverse_lookup_by_username(viewer_id, profile.username)
        if not alias and profile.wallet_address:
            alias = self.address_book.reverse_lookup_by_address(viewer_id, profile.wallet_address)
        return alias or profile.handle

    def _tx_link(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"

    def error_text(self, exc: PaybotError) -> str:
        if isinstance(exc, AliasAlreadyExists):
            return (
                f'Alias "{exc.alias}" already exists for: {format_target(exc.existing_target)}\n'
                f"Use /removefriend {exc.alias} to remove it first."
            )
        if isinstance(exc, ParseError):
            return str(exc)
        if isinstance(exc, InsufficientFundsError):
            return (
                f"Insufficient {exc.currency} funds. You need {format_amount(exc.required)} "
                f"{exc.currency} but only have {format_amount(exc.available)} {exc.currency}."
            )
        if isinstance(exc, AccountNotFound):
            return "Please create an account first with /start"
        if isinstance(exc, RecipientNotFound):
            return RECIPIENT_NOT_FOUND
        if isinstance(exc, TicketNotFound):
            return "This payment has expired or was already processed. Please start again."
        if isinstance(exc, RequestNotFound):
            return "This payment request is no longer available."
        if isinstance(exc, NotFoundError):
            return f"{exc} Use /friends to see your current aliases."
        if isinstance(exc, RailError):
            return "The payment network did not respond as expected. Please try again later."
        return "Something went wrong. Please try again."

    async def handle_command(self, command: str, user: ChatUser, args: List[str]) -> BotReply:
        handler = self._commands.get(command.lower())
        if handler is None:
            return BotReply(text="Unknown command. Use /help to see what I can do.")
        try:
            return await handler(user, list(args))
        except PaybotError as exc:
            log.info("/%s from %s failed: %s", command, user.user_id, exc)
            return BotReply(text=self.error_text(exc))

    # account

    def _ensure_profile(self, user: ChatUser) -> Tuple[UserProfile, bool]:
        profile = self.profiles.get_by_platform_id(user.user_id)
        if profile is not None:
            if user.username and user.username != profile.username:
                self.profiles.update_username(user.user_id, user.username)
                profile = self.profiles.get_by_platform_id(user.user_id) or profile
            return profile, False
        address, private_key = self.rail.generate_wallet()
        profile = self.profiles.create_user(user.user_id, user.username, address, private_key)
        log.info("account created for %s (%s)", user.user_id, address)
        return profile, True

    async def start(self, user: ChatUser, args: List[str]) -> BotReply:
        profile, created = self._ensure_profile(user)
        name = user.username or user.full_name or "there"
        if created:
            intro = (
                "Account created!\n\n"
                f"Your ARC address:\n{profile.wallet_address}\n\n"
                f"This is a testnet address. Fund it at {FAUCET_URL}\n\n"
                "Next steps:\n"
                "1. Fund your account with USDC from the faucet\n"
                "2. Use /balance to check your balance\n"
                "3. Send USDC with /pay"
            )
        else:
            intro = (
                f"Welcome back, {name}!\n\n"
                f"Your ARC address:\n{profile.wallet_address}\n\n"
                "Use /balance to check your balance\n"
                "Use /pay to send USDC\n"
                "Use /help for all commands"
            )
        if args and is_pay_link(args[0]):
            try:
                follow_up = self._open_pay_link(user, args[0])
            except PaybotError as exc:
                log.info("payment link from %s rejected: %s", user.user_id, exc)
                follow_up = BotReply(text=self.error_text(exc))
            return BotReply(text=f"{intro}\n\n{follow_up.text}", buttons=follow_up.buttons)
        return BotReply(text=intro)

    def _open_pay_link(self, user: ChatUser, param: str) -> BotReply:
        address, amount = parse_pay_link(param)
        recipient = self.resolver.lookup(address, user.user_id)
        if amount is None:
            return self._ask_amount(user, recipient, source="deeplink")
        ticket = self.payments.stage(user.user_id, recipient, amount, source="deeplink")
        return self._confirmation_prompt(ticket)

    async def help(self, user: ChatUser, args: List[str]) -> BotReply:
        return BotReply(text=HELP_TEXT)

    async def balance(self, user: ChatUser, args: List[str]) -> BotReply:
        profile = self._require(user)
        amount = await self.rail.get_balance(profile.wallet_address)
        return BotReply(
            text=(
                f"Your balance: {format_amount(amount)} {USDC}\n\n"
                f"Address: {profile.wallet_address}\n"
                f"Network: ARC (chain ID {self.chain_id})\n\n"
                "Use /pay to send USDC\n"
                "Use /history to see recent transactions"
            )
        )

    async def network(self, user: ChatUser, args: List[str]) -> BotReply:
        profile = self._require(user)
        info = await self.rail.network_info()
        return BotReply(
            text=(
                "ARC network\n\n"
                f"Chain ID: {info.chain_id}\n"
                f"RPC URL: {info.rpc_url}\n"
                f"Current block: {info.latest_block}\n"
                f"Gas price: {info.gas_price} wei\n\n"
                f"Your address:\n{profile.wallet_address}\n\n"
                f"Explorer: {self.explorer_url}"
            )
        )

    # payments

    def _ask_amount(self, user: ChatUser, recipient: ResolvedRecipient, source: str) -> BotReply:
        session = self.payments.await_amount(user.user_id, recipient, source=source)
        return BotReply(
            text=(
                f"How much {USDC} do you want to send to {session.display_name}?\n"
                f"Address: {session.address}\n\n"
                "Reply with an amount, for example 12.5, or /cancel."
            )
        )

    def _confirmation_prompt(
        self, ticket: PendingPaymentTicket, heading: str = "Confirm payment"
    ) -> BotReply:
        lines = [
            heading,
            "",
            f"To: {ticket.display_name}",
            f"Address: {ticket.address}",
            f"Amount: {format_amount(ticket.amount)} {ticket.currency}",
            "",
            f"This confirmation expires in {_minutes(ticket.expires_at - ticket.created_at)}.",
        ]
        return BotReply(
            text="\n".join(lines),
            buttons=[
                [
                    Button(
                        "Confirm",
                        callbacks.encode_confirm(ticket.ticket_id, ticket.address, ticket.amount),
                    ),
                    Button("Cancel", callbacks.encode_cancel(ticket.ticket_id)),
                ]
            ],
        )

    async def pay(self, user: ChatUser, args: List[str]) -> BotReply:
        if not args:
            return BotReply(text=PAY_USAGE)
        self._require(user)
        recipient = self.resolver.lookup(args[0], user.user_id)
        if len(args) == 1:
            return self._ask_amount(user, recipient, source="command")
        ticket = self.payments.stage(user.user_id, recipient, parse_amount(args[1]))
        return self._confirmation_prompt(ticket)

    async def cancel(self, user: ChatUser, args: List[str]) -> BotReply:
        if self.payments.clear_amount(user.user_id):
            return BotReply(text="Payment cancelled.")
        return BotReply(text="Nothing to cancel.")

    def _receipt(self, settlement: Settlement) -> BotReply:
        ticket, receipt = settlement.ticket, settlement.receipt
        to = ticket.display_name
        if to != ticket.address:
            to = f"{to} ({truncate_address(ticket.address)})"
        return BotReply(
            text=(
                "Payment sent!\n\n"
                f"Amount: {format_amount(ticket.amount)} {ticket.currency}\n"
                f"To: {to}\n"
                f"Fee: {format_amount(receipt.fee)} {USDC}\n"
                f"Transaction: {receipt.hash}\n"
                f"{self._tx_link(receipt.hash)}"
            )
        )

    def _after_settlement(self, settlement: Settlement) -> None:
        ticket, receipt = settlement.ticket, settlement.receipt
        if ticket.request_id:
            try:
                request = self.requests.mark_fulfilled(
                    ticket.request_id, ticket.owner_id, receipt.hash
                )
            except RequestNotFound as exc:
                log.warning(
                    "request %s paid by %s but not marked fulfilled: %s",
                    ticket.request_id,
                    receipt.hash,
                    exc,
                )
            else:
                self.payments.release_request(ticket.request_id)
                requester = self.profiles.get_by_platform_id(request.from_user_id)
                if requester is not None:
                    self._notify(
                        requester.user_id,
                        (
                            f"Payment received from {self._display_for(requester.user_id, settlement.payer)}!\n\n"
                            f"Amount: {format_amount(request.amount)} {request.currency}\n"
                            f"Transaction: {receipt.hash}"
                        ),
                    )
                return
        recipient = self.profiles.get_by_wallet_address(ticket.address)
        if recipient is None or recipient.user_id == ticket.owner_id:
            return
        self._notify(
            recipient.user_id,
            (
                f"You received {format_amount(ticket.amount)} {ticket.currency} from "
                f"{self._display_for(recipient.user_id, settlement.payer)}!\n\n"
                f"Transaction: {receipt.hash}\n"
                "Use /balance to check your balance"
            ),
        )

    # payment requests

    def _request_prompt(self, viewer_id: int, request: PaymentRequest) -> BotReply:
        requester = self.profiles.get_by_platform_id(request.from_user_id)
        sender = self._display_for(viewer_id, requester) if requester else "unknown user"
        lines = [
            f"{USDC} payment request",
            "",
            f"From: {sender}",
            f"Amount: {format_amount(request.amount)} {request.currency}",
        ]
        if request.reason:
            lines.append(f"Reason: {request.reason}")
        if requester and requester.wallet_address:
            lines.append(f"To address: {requester.wallet_address}")
        lines.extend(["", f"Expires in {_minutes(request.expires_at - request.created_at)}. Do you want to pay?"])
        return BotReply(
            text="\n".join(lines),
            buttons=[
                [
                    Button("Pay now", callbacks.encode_request_accept(request.request_id)),
                    Button("Decline", callbacks.encode_request_decline(request.request_id)),
                ]
            ],
        )

    async def request(self, user: ChatUser, args: List[str]) -> BotReply:
        if len(args) < 2:
            return BotReply(text=REQUEST_USAGE)
        self._require(user)
        payer = self.resolver.lookup(args[0], user.user_id)
        if payer.owner_user_id is None:
            raise RecipientNotFound("Payer has no account")
        reason = " ".join(args[2:]).strip() or None
        request = self.requests.create(
            user.user_id, payer.owner_user_id, parse_amount(args[1]), reason=reason
        )
        prompt = self._request_prompt(payer.owner_user_id, request)
        self._notify(payer.owner_user_id, prompt.text, prompt.buttons)
        return BotReply(
            text=(
                f"Payment request sent to {payer.display_name}!\n\n"
                f"Amount: {format_amount(request.amount)} {request.currency}\n"
                f"The request will expire in {_minutes(request.expires_at - request.created_at)}."
            )
        )

    # qr codes

    def _qr_attachment(self, profile: UserProfile, target: str, amount: Optional[Decimal]) -> BotAttachment:
        amount_line = (
            f"Amount: {format_amount(amount)} {USDC}"
            if amount is not None
            else "Amount: not specified (payer chooses)"
        )
        if target == callbacks.QR_BOT:
            data = bot_link(self.bot_username, profile.wallet_address, amount)
            caption = f"Bot QR code ({USDC})\n\nFor Telegram users, opens this bot\n{amount_line}\n{data}"
        else:
            data = wallet_uri(
                profile.wallet_address,
                amount,
                chain_id=self.chain_id,
                token_address=self.usdc_address,
            )
            caption = (
                f"Wallet QR code ({USDC})\n\nFor any EVM wallet app\n"
                f"Address: {profile.wallet_address}\n{amount_line}"
            )
        return BotAttachment(
            filename=f"{target}-qr.png",
            content=render_png(data),
            mime_type="image/png",
            description=caption,
        )

    async def qr(self, user: ChatUser, args: List[str]) -> BotReply:
        profile = self._require(user)
        if not args:
            return BotReply(text=QR_USAGE)
        amount = None if args[0] == "0" else parse_amount(args[0])
        return self._qr_codes(profile, amount)

    def _qr_codes(self, profile: UserProfile, amount: Optional[Decimal]) -> BotReply:
        return BotReply(
            text="Here are your payment QR codes.",
            attachments=[
                self._qr_attachment(profile, callbacks.QR_WALLET, amount),
                self._qr_attachment(profile, callbacks.QR_BOT, amount),
            ],
        )

    async def my_qr(self, user: ChatUser, args: List[str]) -> BotReply:
        profile = self._require(user)
        rows = [
            [
                Button("Wallet QR (any amount)", callbacks.encode_qr(callbacks.QR_WALLET)),
                Button("Bot QR (any amount)", callbacks.encode_qr(callbacks.QR_BOT)),
            ]
        ]
        for preset in QR_PRESETS:
            label = f"{format_amount(preset)} {USDC}"
            rows.append(
                [
                    Button(f"{label} - Wallet", callbacks.encode_qr(callbacks.QR_WALLET, preset)),
                    Button(f"{label} - Bot", callbacks.encode_qr(callbacks.QR_BOT, preset)),
                ]
            )
        rows.append([Button(f"Custom {USDC}", callbacks.encode_qr(callbacks.QR_WALLET, custom=True))])
        return BotReply(
            text=(
                "QR code generator\n\n"
                f"Your ARC address:\n{profile.wallet_address}\n\n"
                "Wallet QR works with any EVM wallet.\n"
                "Bot QR opens this bot on Telegram.\n\n"
                "Choose a type and amount:"
            ),
            buttons=rows,
        )

    # history

    async def history(self, user: ChatUser, args: List[str]) -> BotReply:
        profile = self._require(user)
        records = await self.rail.get_history(profile.wallet_address, 10)
        sent, received = self.requests.pending_for(user.user_id)
        lines: List[str] = []
        if records:
            lines.append("Recent transactions")
            for index, record in enumerate(records, start=1):
                outgoing = same_address(record.sender, profile.wallet_address)
                counterparty = record.recipient if outgoing else record.sender
                owner = self.profiles.get_by_wallet_address(counterparty)
                if owner is not None:
                    who = self._display_for(user.user_id, owner)
                else:
                    resolved = self.resolver.resolve(counterparty, user.user_id)
                    who = resolved.display_name if resolved else truncate_address(counterparty)
                lines.append("")
                lines.append(f"{index}. {'Sent to' if outgoing else 'Received from'} {who}")
                lines.append(f"   Amount: {format_amount(record.amount)} {record.currency}")
                if record.date is not None:
                    lines.append(f"   Date: {record.date:%Y-%m-%d %H:%M} UTC")
                lines.append(f"   Hash: {record.hash[:18]}...")
        else:
            lines.append("No transactions found for your address.")
        if sent or received:
            lines.append("")
            lines.append("Open payment requests")
            for request in received:
                requester = self.profiles.get_by_platform_id(request.from_user_id)
                who = self._display_for(user.user_id, requester) if requester else "unknown user"
                lines.append(f"- {who} asks you for {format_amount(request.amount)} {request.currency}")
            for request in sent:
                payer = self.profiles.get_by_platform_id(request.to_user_id)
                who = self._display_for(user.user_id, payer) if payer else "unknown user"
                lines.append(f"- you asked {who} for {format_amount(request.amount)} {request.currency}")
        lines.append("")
        lines.append(f"Address: {profile.wallet_address}")
        return BotReply(text="\n".join(lines))

    # friends

    async def add_friend(self, user: ChatUser, args: List[str]) -> BotReply:
        if len(args) < 2:
            return BotReply(text=ADD_FRIEND_USAGE)
        alias, raw_target = args[0], args[1]
        target = parse_identifier(raw_target)
        self.address_book.add(user.user_id, alias, target)
        return BotReply(
            text=(
                "Friend added!\n\n"
                f"Alias: {alias}\n"
                f"Target: {format_target(target)}\n\n"
                f'You can now use "{alias}" in payments and requests.'
            )
        )

    async def remove_friend(self, user: ChatUser, args: List[str]) -> BotReply:
        if not args:
            return BotReply(text=REMOVE_FRIEND_USAGE)
        removed = self.address_book.remove(user.user_id, args[0])
        return BotReply(
            text=(
                "Friend removed.\n\n"
                f"Removed alias: {args[0]}\n"
                f"Was pointing to: {format_target(removed)}"
            )
        )

    async def list_friends(self, user: ChatUser, args: List[str]) -> BotReply:
        friends = self.address_book.list(user.user_id)
        if not friends:
            return BotReply(
                text="You have no friends saved yet.\n\nAdd one with /addfriend <alias> <@username | user ID | 0x address>"
            )
        lines = [f"Your friends ({len(friends)})", ""]
        for alias in sorted(friends, key=str.lower):
            lines.append(f"{alias} -> {format_target(friends[alias])}")
        lines.extend(["", "Use an alias anywhere a recipient is expected, e.g. /pay alice 5"])
        return BotReply(text="\n".join(lines))

    # free text

    async def handle_text(self, user: ChatUser, text: str) -> BotReply:
        try:
            session = self.payments.pending_amount(user.user_id)
            if session is not None and session.source == QR_AMOUNT:
                try:
                    amount = parse_amount(text.strip())
                except ParseError as exc:
                    return BotReply(text=f"{exc}\nPlease enter a valid amount, or /cancel.")
                self.payments.clear_amount(user.user_id)
                return self._qr_codes(self._require(user), amount)
            if session is not None:
                try:
                    ticket = self.payments.submit_amount(user.user_id, text.strip())
                except ParseError as exc:
                    return BotReply(text=f"{exc}\nPlease enter a valid amount, or /cancel.")
                return self._confirmation_prompt(ticket)
            return await self._handle_intent(user, text)
        except PaybotError as exc:
            log.info("text from %s failed: %s", user.user_id, exc)
            return BotReply(text=self.error_text(exc))

    async def _handle_intent(self, user: ChatUser, text: str) -> BotReply:
        intent = await self.intents.resolve(text, user.user_id)
        if intent.kind == CHAT_RESPONSE or not intent.tool:
            return BotReply(text=intent.text)
        args = intent.arguments
        if intent.tool == MAKE_PAYMENT:
            return await self.pay(user, [str(args.get("recipient") or ""), str(args.get("amount") or "")])
        if intent.tool == REQUEST_PAYMENT:
            return await self.request(user, [str(args.get("address") or ""), str(args.get("amount") or "")])
        if intent.tool == TRANSACTION_HISTORY:
            return await self.history(user, [])
        log.warning("unhandled intent tool %r", intent.tool)
        return BotReply(text=HELP_TEXT)

    # buttons

    async def handle_callback(self, user: ChatUser, payload: str, interaction: Interaction) -> None:
        try:
            action = callbacks.decode(payload)
        except ParseError:
            await interaction.answer("This button is no longer valid.", alert=True)
            return
        if action.kind == callbacks.CONFIRM:
            await self._confirm(user, action, interaction)
        elif action.kind == callbacks.CANCEL:
            await self._cancel(user, action, interaction)
        elif action.kind == callbacks.REQUEST_ACCEPT:
            await self._accept_request(user, action, interaction)
        elif action.kind == callbacks.REQUEST_DECLINE:
            await self._decline_request(user, action, interaction)
        elif action.kind == callbacks.QR:
            await self._send_qr(user, action, interaction)

    def _reopen_request(self, ticket: PendingPaymentTicket) -> Optional[BotReply]:
        if not ticket.request_id:
            return None
        try:
            request = self.requests.get(ticket.request_id, ticket.owner_id)
        except RequestNotFound:
            return None
        if not request.pending:
            return None
        return self._request_prompt(ticket.owner_id, request)

    async def _confirm(self, user: ChatUser, action: callbacks.CallbackAction, interaction: Interaction) -> None:
        try:
            ticket = self.payments.claim(action.ticket_id, user.user_id, action.address, action.amount)
        except PaybotError as exc:
            await interaction.answer(self.error_text(exc), alert=True)
            return
        await interaction.answer("Processing payment...")
        await interaction.edit(
            BotReply(
                text=(
                    f"Processing payment of {format_amount(ticket.amount)} {ticket.currency} "
                    f"to {ticket.display_name}..."
                )
            )
        )
        try:
            settlement = await self.payments.execute(ticket)
        except InsufficientFundsError as exc:
            failure = self.error_text(exc)
        except PaybotError as exc:
            log.error("payment %s for %s failed: %s", ticket.ticket_id, user.user_id, exc)
            failure = "Payment failed. Please try again."
        except Exception:
            log.exception("payment %s for %s crashed", ticket.ticket_id, user.user_id)
            failure = "Payment failed. Please try again."
        else:
            # settle the request before touching the chat message
            self._after_settlement(settlement)
            await interaction.edit(self._receipt(settlement))
            return
        reopened = self._reopen_request(ticket)
        if reopened is not None:
            await interaction.edit(
                BotReply(text=f"{failure}\n\n{reopened.text}", buttons=reopened.buttons)
            )
        else:
            await interaction.edit(BotReply(text=failure))

    async def _cancel(self, user: ChatUser, action: callbacks.CallbackAction, interaction: Interaction) -> None:
        try:
            ticket = self.payments.cancel(action.ticket_id, user.user_id)
        except PaybotError as exc:
            await interaction.answer(self.error_text(exc), alert=True)
            return
        await interaction.answer("Payment cancelled")
        reopened = self._reopen_request(ticket)
        if reopened is not None:
            await interaction.edit(reopened)
        else:
            await interaction.edit(BotReply(text="Payment cancelled."))

    async def _accept_request(self, user: ChatUser, action: callbacks.CallbackAction, interaction: Interaction) -> None:
        try:
            request = self.requests.accept(action.request_id, user.user_id)
            requester = self.profiles.get_by_platform_id(request.from_user_id)
            if requester is None or not requester.wallet_address:
                raise RecipientNotFound("Requester has no wallet")
            recipient = ResolvedRecipient(
                address=requester.wallet_address,
                display_name=self._display_for(user.user_id, requester),
                owner_user_id=requester.user_id,
                username=requester.username,
            )
            ticket = self.payments.stage(
                user.user_id,
                recipient,
                request.amount,
                source="request",
                request_id=request.request_id,
            )
        except PaybotError as exc:
            await interaction.answer(self.error_text(exc), alert=True)
            return
        await interaction.answer()
        prompt = self._confirmation_prompt(ticket, heading="Confirm payment request")
        if request.reason:
            prompt.text += f"\nReason: {request.reason}"
        await interaction.edit(prompt)

    async def _decline_request(self, user: ChatUser, action: callbacks.CallbackAction, interaction: Interaction) -> None:
        try:
            request = self.requests.decline(action.request_id, user.user_id)
        except PaybotError as exc:
            await interaction.answer(self.error_text(exc), alert=True)
            return
        await interaction.answer("Request declined")
        await interaction.edit(BotReply(text="Payment request declined."))
        payer = self.profiles.get_by_platform_id(user.user_id)
        who = self._display_for(request.from_user_id, payer) if payer else "The user"
        self._notify(
            request.from_user_id,
            f"{who} declined your payment request for {format_amount(request.amount)} {request.currency}.",
        )

    async def _send_qr(self, user: ChatUser, action: callbacks.CallbackAction, interaction: Interaction) -> None:
        try:
            profile = self._require(user)
        except PaybotError as exc:
            await interaction.answer(self.error_text(exc), alert=True)
            return
        if action.qr_mode == callbacks.QR_CUSTOM:
            own = ResolvedRecipient(
                address=profile.wallet_address,
                display_name=profile.handle,
                owner_user_id=profile.user_id,
            )
            self.payments.await_amount(user.user_id, own, source=QR_AMOUNT)
            await interaction.answer()
            await interaction.reply(
                BotReply(
                    text=f"How much {USDC} should the QR codes ask for?\n"
                    "Reply with an amount, for example 15.5, or /cancel."
                )
            )
            return
        await interaction.answer("Generating QR code...")
        attachment = self._qr_attachment(profile, action.qr_target or callbacks.QR_WALLET, action.amount)
        await interaction.reply(BotReply(attachments=[attachment]))

    # housekeeping

    def sweep(self) -> None:
        self.payments.sweep()
        for request in self.requests.sweep():
            payer = self.profiles.get_by_platform_id(request.to_user_id)
            who = self._display_for(request.from_user_id, payer) if payer else "the user"
            self._notify(
                request.from_user_id,
                f"Your payment request to {who} for {format_amount(request.amount)} {request.currency} expired.",
            )
