"""Error taxonomy shared by the resolver, payment flow and bot surface."""

from decimal import Decimal
from typing import Any, Optional


class PaybotError(Exception):
    """Base class for every error the bot turns into a chat reply."""


class ParseError(PaybotError):
    """Malformed user input. The message is safe to show verbatim."""


class InvalidFormat(ParseError):
    pass


class InvalidAddress(ParseError):
    pass


class InvalidUsername(ParseError):
    pass


class InvalidUserId(ParseError):
    pass


class InvalidAlias(ParseError):
    pass


class InvalidAliasTarget(ParseError):
    pass


class InvalidAmount(ParseError):
    pass


class SelfPaymentError(ParseError):
    pass


class NotFoundError(PaybotError):
    """Recipient, ticket or request is absent or expired."""


class RecipientNotFound(NotFoundError):
    pass


class TicketNotFound(NotFoundError):
    pass


class RequestNotFound(NotFoundError):
    pass


class AliasNotFound(NotFoundError):
    def __init__(self, alias: str):
        super().__init__(f'Alias "{alias}" not found.')
        self.alias = alias


class AccountNotFound(NotFoundError):
    pass


class InsufficientFundsError(PaybotError):
    def __init__(self, required: Decimal, available: Decimal, currency: str = "USDC"):
        super().__init__(
            f"Insufficient {currency} funds. Required: {required}, available: {available}"
        )
        self.required = required
        self.available = available
        self.currency = currency


class RailError(PaybotError):
    """Opaque failure from the blockchain RPC."""

    def __init__(self, message: str, *, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class AliasConflictError(PaybotError):
    pass


class AliasAlreadyExists(AliasConflictError):
    def __init__(self, alias: str, existing_target: Any):
        super().__init__(f'Alias "{alias}" already exists.')
        self.alias = alias
        self.existing_target = existing_target
