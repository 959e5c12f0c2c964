from decimal import Decimal

import pytest

from paybot.errors import (
    InvalidAddress,
    InvalidAlias,
    InvalidAmount,
    InvalidFormat,
    InvalidUserId,
    InvalidUsername,
)
from paybot.identifiers import (
    ADDRESS,
    ALIAS,
    USER_ID,
    USERNAME,
    Identifier,
    format_amount,
    format_target,
    from_base_units,
    parse_amount,
    parse_identifier,
    to_base_units,
    truncate_address,
    validate_alias,
)


@pytest.mark.parametrize(
    "raw",
    [
        "0x" + "ab" * 20,
        "0x" + "AB" * 20,
        "0x" + "0123456789abcdefABCD" * 2,
    ],
)
def test_valid_address_parses_as_address(raw):
    assert parse_identifier(raw) == Identifier(ADDRESS, raw)


@pytest.mark.parametrize(
    "raw",
    [
        "0x" + "ab" * 19,
        "0x" + "ab" * 21,
        "0x" + "zz" * 20,
        "0x",
        "0xabc",
    ],
)
def test_address_near_miss_never_falls_through(raw):
    with pytest.raises(InvalidAddress):
        parse_identifier(raw)


def test_username_strips_marker():
    assert parse_identifier("@carol_99") == Identifier(USERNAME, "carol_99")


@pytest.mark.parametrize("raw", ["@bob", "@", "@has space", "@" + "x" * 33, "@dash-ed"])
def test_bad_usernames(raw):
    with pytest.raises(InvalidUsername):
        parse_identifier(raw)


def test_user_id():
    assert parse_identifier("123456789") == Identifier(USER_ID, 123456789)


@pytest.mark.parametrize("raw", ["0", "000", str(2**63)])
def test_bad_user_ids(raw):
    with pytest.raises(InvalidUserId):
        parse_identifier(raw)


@pytest.mark.parametrize("raw", ["bob", "bob-2", "b_o_b", "x" * 16])
def test_alias_candidates(raw):
    assert parse_identifier(raw) == Identifier(ALIAS, raw)


@pytest.mark.parametrize("raw", ["me", "ME", "Me"])
def test_reserved_alias(raw):
    with pytest.raises(InvalidAlias):
        parse_identifier(raw)


@pytest.mark.parametrize("raw", ["", "   ", "x" * 17, "has space", "bob!", "bøb"])
def test_unmatched_input_is_invalid_format(raw):
    with pytest.raises(InvalidFormat):
        parse_identifier(raw)


def test_input_is_trimmed():
    assert parse_identifier("  @carol  ") == Identifier(USERNAME, "carol")


@pytest.mark.parametrize("alias", ["me", "ME", "@bob", "x" * 17, "has space", "0xabc", "12345", ""])
def test_validate_alias_rejects(alias):
    with pytest.raises(InvalidAlias):
        validate_alias(alias)


def test_validate_alias_accepts():
    assert validate_alias("bob-2") == "bob-2"
    assert validate_alias(" carl_1 ") == "carl_1"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("10", Decimal("10")),
        ("0.000001", Decimal("0.000001")),
        ("1000000000000", Decimal("1000000000000")),
        (2.5, Decimal("2.5")),
        (Decimal("7.25"), Decimal("7.25")),
    ],
)
def test_amounts_accepted(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["0", "0.0", "-5", "abc", "1000000000001", "0.0000001", "1e3", "", None, "1,5", " . "],
)
def test_amounts_rejected(raw):
    with pytest.raises(InvalidAmount):
        parse_amount(raw)


def test_base_unit_conversion():
    assert to_base_units(Decimal("1.5")) == 1_500_000
    assert to_base_units(Decimal("0.000001")) == 1
    assert from_base_units(2_500_000) == Decimal("2.5")


def test_format_amount_drops_trailing_zeros():
    assert format_amount(Decimal("10.500000")) == "10.5"
    assert format_amount(Decimal("1E+1")) == "10"


def test_truncate_and_format_target():
    address = "0x" + "ab" * 20
    assert truncate_address(address) == "0xababab…abab"
    assert format_target(Identifier(USERNAME, "carol")) == "@carol"
    assert format_target(Identifier(USER_ID, 42)) == "User ID: 42"
    assert format_target(Identifier(ADDRESS, address)) == truncate_address(address)


def test_identifier_dict_shape():
    target = Identifier(USER_ID, 42)
    assert target.to_dict() == {"type": "userId", "value": 42}
    assert Identifier.from_dict({"type": "userId", "value": "42"}) == target
