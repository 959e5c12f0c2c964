import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from .errors import (
    InvalidAddress,
    InvalidAlias,
    InvalidAmount,
    InvalidFormat,
    InvalidUserId,
    InvalidUsername,
)

ADDRESS = "address"
USERNAME = "username"
USER_ID = "userId"
ALIAS = "alias"

ADDRESS_PREFIX = "0x"
USERNAME_PREFIX = "@"
RESERVED_ALIAS = "me"
ALIAS_MAX_LENGTH = 16
MAX_USER_ID = 2**63 - 1

USDC = "USDC"
USDC_DECIMALS = 6
MAX_AMOUNT = Decimal("1000000000000")

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{5,32}$")
ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,16}$")
AMOUNT_PATTERN = re.compile(r"^\d+(?:\.\d+)?$")


@dataclass(frozen=True)
class Identifier:
    kind: str
    value: Union[str, int]

    def to_dict(self) -> dict:
        return {"type": self.kind, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict) -> "Identifier":
        kind = str(data.get("type") or "")
        value = data.get("value")
        if kind == USER_ID:
            value = int(value)
        else:
            value = str(value or "")
        return cls(kind=kind, value=value)

    def as_input(self) -> str:
        """Render back into the text form that parses to this identifier."""
        if self.kind == USERNAME:
            return f"{USERNAME_PREFIX}{self.value}"
        return str(self.value)


# Friend targets share the identifier shape; only the alias kind is excluded.
FriendTarget = Identifier


def is_address_candidate(raw: str) -> bool:
    return raw[:2].lower() == ADDRESS_PREFIX


def parse_identifier(raw: Optional[str]) -> Identifier:
    text = str(raw or "").strip()
    if not text:
        raise InvalidFormat("Recipient is required.")

    if is_address_candidate(text):
        if ADDRESS_PATTERN.match(text):
            return Identifier(ADDRESS, text)
        raise InvalidAddress("Invalid EVM address format.")

    if text.startswith(USERNAME_PREFIX):
        username = text[1:]
        if USERNAME_PATTERN.match(username):
            return Identifier(USERNAME, username)
        raise InvalidUsername("Invalid Telegram username format.")

    if text.isdigit():
        user_id = int(text)
        if user_id <= 0 or user_id > MAX_USER_ID:
            raise InvalidUserId("Invalid Telegram user ID.")
        return Identifier(USER_ID, user_id)

    if ALIAS_PATTERN.match(text):
        if text.lower() == RESERVED_ALIAS:
            raise InvalidAlias('Cannot use "me" as an alias, it is reserved.')
        return Identifier(ALIAS, text)

    raise InvalidFormat("Invalid recipient format.")


def validate_alias(alias: Optional[str]) -> str:
    text = str(alias or "").strip()
    if not text:
        raise InvalidAlias("Alias must be at least 1 character.")
    if len(text) > ALIAS_MAX_LENGTH:
        raise InvalidAlias(f"Alias must be at most {ALIAS_MAX_LENGTH} characters.")
    if text.startswith(USERNAME_PREFIX) or is_address_candidate(text):
        raise InvalidAlias("Alias must not start with @ or 0x.")
    if not ALIAS_PATTERN.match(text) or text.isdigit():
        raise InvalidAlias(
            "Alias can only contain letters, numbers, underscores and hyphens."
        )
    if text.lower() == RESERVED_ALIAS:
        raise InvalidAlias('Cannot use "me" as an alias, it is reserved.')
    return text


def parse_amount(raw: Any) -> Decimal:
    if isinstance(raw, Decimal):
        text = format(raw, "f")
    elif isinstance(raw, float):
        text = repr(raw)
    else:
        text = str(raw if raw is not None else "").strip()
    if not AMOUNT_PATTERN.match(text):
        raise InvalidAmount("Invalid amount. Must be a positive number.")
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise InvalidAmount("Invalid amount. Must be a positive number.") from None
    if amount <= 0:
        raise InvalidAmount("Amount must be positive.")
    if amount > MAX_AMOUNT:
        raise InvalidAmount("Amount exceeds maximum allowed value.")
    if amount.normalize().as_tuple().exponent < -USDC_DECIMALS:
        raise InvalidAmount(f"Amount supports at most {USDC_DECIMALS} decimal places.")
    return amount


def to_base_units(amount: Decimal, decimals: int = USDC_DECIMALS) -> int:
    return int(amount.scaleb(decimals))


def from_base_units(units: int, decimals: int = USDC_DECIMALS) -> Decimal:
    return Decimal(units).scaleb(-decimals)


def format_amount(amount: Decimal) -> str:
    return format(amount.normalize(), "f")


def truncate_address(address: str) -> str:
    if len(address) <= 14:
        return address
    return f"{address[:8]}…{address[-4:]}"


def format_target(target: Identifier) -> str:
    if target.kind == USERNAME:
        return f"@{target.value}"
    if target.kind == USER_ID:
        return f"User ID: {target.value}"
    if target.kind == ADDRESS:
        return truncate_address(str(target.value))
    return str(target.value)


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()
