"""Compact button payloads.

Telegram caps ``callback_data`` at 64 bytes, so payloads are dot-separated
fields with short tags. A confirm payload carries the ticket id plus the
recipient address (20 raw bytes, base64url) and the amount (micro-USDC in
base 36) so the confirmation can be cross-checked against the ticket.
"""

import base64
import binascii
import string
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .errors import InvalidFormat
from .identifiers import ADDRESS_PATTERN, from_base_units, to_base_units

CONFIRM = "cp"
CANCEL = "cx"
REQUEST_ACCEPT = "ra"
REQUEST_DECLINE = "rd"
QR = "qr"

QR_WALLET = "wallet"
QR_BOT = "bot"
QR_ANY = "any"
QR_CUSTOM = "custom"

MAX_PAYLOAD_BYTES = 64
SEPARATOR = "."

_DIGITS = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class CallbackAction:
    kind: str
    ticket_id: Optional[str] = None
    address: Optional[str] = None
    amount: Optional[Decimal] = None
    request_id: Optional[str] = None
    qr_target: Optional[str] = None
    qr_mode: Optional[str] = None


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_DIGITS[rem])
    return "".join(reversed(digits))


def _encode_address(address: str) -> str:
    raw = bytes.fromhex(address[2:])
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decode_address(token: str) -> str:
    try:
        raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
    except (binascii.Error, ValueError):
        raise InvalidFormat("Malformed button payload.") from None
    if len(raw) != 20:
        raise InvalidFormat("Malformed button payload.")
    return "0x" + raw.hex()


def _decode_amount(token: str) -> Decimal:
    try:
        units = int(token, 36)
    except ValueError:
        raise InvalidFormat("Malformed button payload.") from None
    if units <= 0:
        raise InvalidFormat("Malformed button payload.")
    return from_base_units(units)


def _check(payload: str) -> str:
    if len(payload.encode("utf-8")) > MAX_PAYLOAD_BYTES:
        raise ValueError(f"callback payload too long: {payload!r}")
    return payload


def encode_confirm(ticket_id: str, address: str, amount: Decimal) -> str:
    if not ADDRESS_PATTERN.match(address):
        raise ValueError(f"not an address: {address!r}")
    return _check(
        SEPARATOR.join(
            (CONFIRM, ticket_id, _encode_address(address), _to_base36(to_base_units(amount)))
        )
    )


def encode_cancel(ticket_id: str) -> str:
    return _check(SEPARATOR.join((CANCEL, ticket_id)))


def encode_request_accept(request_id: str) -> str:
    return _check(SEPARATOR.join((REQUEST_ACCEPT, request_id)))


def encode_request_decline(request_id: str) -> str:
    return _check(SEPARATOR.join((REQUEST_DECLINE, request_id)))


def encode_qr(target: str, amount: Optional[Decimal] = None, *, custom: bool = False) -> str:
    if custom:
        mode = QR_CUSTOM
    elif amount is None:
        mode = QR_ANY
    else:
        mode = _to_base36(to_base_units(amount))
    return _check(SEPARATOR.join((QR, target, mode)))


def decode(payload: Optional[str]) -> CallbackAction:
    parts = str(payload or "").split(SEPARATOR)
    kind = parts[0]
    if kind == CONFIRM and len(parts) == 4 and parts[1]:
        return CallbackAction(
            kind=CONFIRM,
            ticket_id=parts[1],
            address=_decode_address(parts[2]),
            amount=_decode_amount(parts[3]),
        )
    if kind == CANCEL and len(parts) == 2 and parts[1]:
        return CallbackAction(kind=CANCEL, ticket_id=parts[1])
    if kind in (REQUEST_ACCEPT, REQUEST_DECLINE) and len(parts) == 2 and parts[1]:
        return CallbackAction(kind=kind, request_id=parts[1])
    if kind == QR and len(parts) == 3 and parts[1] in (QR_WALLET, QR_BOT):
        mode = parts[2]
        if mode in (QR_ANY, QR_CUSTOM):
            return CallbackAction(kind=QR, qr_target=parts[1], qr_mode=mode)
        return CallbackAction(
            kind=QR, qr_target=parts[1], qr_mode="amount", amount=_decode_amount(mode)
        )
    raise InvalidFormat("Unrecognised button.")
