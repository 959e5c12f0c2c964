from decimal import Decimal

import pytest

from paybot.errors import InvalidAddress, InvalidAmount, InvalidFormat
from paybot.qr import bot_link, parse_pay_link, render_png, start_parameter, wallet_uri

ADDRESS = "0x" + "c4" * 20


def test_wallet_uri_without_amount():
    assert wallet_uri(ADDRESS) == f"ethereum:{ADDRESS}@5042002"


def test_wallet_uri_with_amount_targets_token_contract():
    uri = wallet_uri(ADDRESS, Decimal("12.5"))

    assert uri == (
        "ethereum:0x3600000000000000000000000000000000000000@5042002/transfer"
        f"?address={ADDRESS}&uint256=12500000"
    )


def test_bot_link_round_trips_through_start_parameter():
    link = bot_link("@arc_pay_bot", ADDRESS, Decimal("10.25"))
    param = link.split("?start=", 1)[1]

    assert link.startswith("https://t.me/arc_pay_bot?start=pay_")
    assert len(param) <= 64
    assert parse_pay_link(param) == (ADDRESS, Decimal("10.25"))
    assert parse_pay_link(start_parameter(ADDRESS)) == (ADDRESS, None)


def test_parse_accepts_dotted_amounts():
    assert parse_pay_link(f"pay_{ADDRESS}_10.5_usdc") == (ADDRESS, Decimal("10.5"))
    assert parse_pay_link(f"pay_{ADDRESS}_3") == (ADDRESS, Decimal("3"))


@pytest.mark.parametrize(
    "param, error",
    [
        ("pay_", InvalidFormat),
        ("hello", InvalidFormat),
        ("pay_0x1234", InvalidAddress),
        (f"pay_{ADDRESS}_10_eth", InvalidFormat),
        (f"pay_{ADDRESS}_abc_usdc", InvalidAmount),
    ],
)
def test_parse_rejects(param, error):
    with pytest.raises(error):
        parse_pay_link(param)


def test_render_png():
    data = render_png(wallet_uri(ADDRESS))

    assert data.startswith(b"\x89PNG")
