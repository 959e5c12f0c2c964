import logging
from decimal import Decimal
from io import BytesIO
from typing import Optional, Tuple

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from .errors import InvalidAddress, InvalidFormat
from .identifiers import (
    ADDRESS_PATTERN,
    USDC,
    format_amount,
    parse_amount,
    to_base_units,
)
from .rail import ARC_TESTNET_CHAIN_ID, ARC_USDC_ADDRESS

log = logging.getLogger(__name__)

PAY_PREFIX = "pay_"


def wallet_uri(
    address: str,
    amount: Optional[Decimal] = None,
    *,
    chain_id: int = ARC_TESTNET_CHAIN_ID,
    token_address: str = ARC_USDC_ADDRESS,
) -> str:
    """EIP-681 payment URI readable by any EVM wallet."""
    if amount is None:
        return f"ethereum:{address}@{chain_id}"
    return (
        f"ethereum:{token_address}@{chain_id}/transfer"
        f"?address={address}&uint256={to_base_units(amount)}"
    )


def start_parameter(address: str, amount: Optional[Decimal] = None) -> str:
    # /start parameters only allow [A-Za-z0-9_-], so the decimal point travels as "-"
    param = f"{PAY_PREFIX}{address}"
    if amount is not None:
        param += f"_{format_amount(amount).replace('.', '-')}_{USDC.lower()}"
    return param


def bot_link(bot_username: str, address: str, amount: Optional[Decimal] = None) -> str:
    return f"https://t.me/{bot_username.lstrip('@')}?start={start_parameter(address, amount)}"


def is_pay_link(param: Optional[str]) -> bool:
    return bool(param) and str(param).startswith(PAY_PREFIX)


def parse_pay_link(param: str) -> Tuple[str, Optional[Decimal]]:
    parts = str(param or "")[len(PAY_PREFIX):].split("_")
    if not is_pay_link(param) or not parts[0]:
        raise InvalidFormat("Invalid payment link format.")
    address = parts[0]
    if not ADDRESS_PATTERN.match(address):
        raise InvalidAddress("Invalid address in payment link.")
    if len(parts) == 1:
        return address, None
    if len(parts) > 3 or (len(parts) == 3 and parts[2].upper() != USDC):
        raise InvalidFormat("Invalid payment link format.")
    return address, parse_amount(parts[1].replace("-", "."))


def render_png(data: str) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=10, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white").convert("RGB")
    bio = BytesIO()
    image.save(bio, "PNG")
    return bio.getvalue()
