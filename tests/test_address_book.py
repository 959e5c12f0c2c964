import pytest

from conftest import ALICE_ID, BOBBY, CAROL, CAROL_ID, STRANGER
from paybot.errors import (
    AccountNotFound,
    AliasAlreadyExists,
    AliasNotFound,
    InvalidAlias,
    InvalidAliasTarget,
)
from paybot.identifiers import ADDRESS, ALIAS, USER_ID, USERNAME, Identifier


def test_add_and_list(users, address_book):
    address_book.add(ALICE_ID, "c", Identifier(USERNAME, "carol"))
    address_book.add(ALICE_ID, "b", Identifier(ADDRESS, BOBBY))

    friends = address_book.list(ALICE_ID)

    assert friends == {
        "c": Identifier(USERNAME, "carol"),
        "b": Identifier(ADDRESS, BOBBY),
    }


def test_stored_shape_matches_metadata_layout(users, address_book, profiles):
    address_book.add(ALICE_ID, "carl", Identifier(USER_ID, CAROL_ID))

    stored = profiles.get_by_platform_id(ALICE_ID).metadata["friends"]

    assert stored == {"carl": {"type": "userId", "value": CAROL_ID}}


def test_add_never_overwrites(users, address_book):
    address_book.add(ALICE_ID, "c", Identifier(USERNAME, "carol"))

    with pytest.raises(AliasAlreadyExists) as excinfo:
        address_book.add(ALICE_ID, "c", Identifier(ADDRESS, STRANGER))

    assert excinfo.value.existing_target == Identifier(USERNAME, "carol")
    assert address_book.get(ALICE_ID, "c") == Identifier(USERNAME, "carol")


def test_alias_match_is_case_sensitive(users, address_book):
    address_book.add(ALICE_ID, "c", Identifier(USERNAME, "carol"))
    address_book.add(ALICE_ID, "C", Identifier(ADDRESS, STRANGER))

    assert set(address_book.list(ALICE_ID)) == {"c", "C"}


@pytest.mark.parametrize("alias", ["me", "ME", "@bob", "x" * 17, "with space"])
def test_add_rejects_invalid_alias(users, address_book, alias):
    with pytest.raises(InvalidAlias):
        address_book.add(ALICE_ID, alias, Identifier(ADDRESS, STRANGER))


def test_alias_target_cannot_be_alias(users, address_book):
    with pytest.raises(InvalidAliasTarget):
        address_book.add(ALICE_ID, "loop", Identifier(ALIAS, "other"))


def test_cannot_alias_yourself(users, address_book):
    with pytest.raises(InvalidAliasTarget):
        address_book.add(ALICE_ID, "self", Identifier(USERNAME, "ALICE"))
    with pytest.raises(InvalidAliasTarget):
        address_book.add(ALICE_ID, "self", Identifier(USER_ID, ALICE_ID))


def test_remove_returns_target(users, address_book):
    address_book.add(ALICE_ID, "c", Identifier(ADDRESS, CAROL))

    removed = address_book.remove(ALICE_ID, "c")

    assert removed == Identifier(ADDRESS, CAROL)
    assert address_book.list(ALICE_ID) == {}


def test_remove_missing_alias(users, address_book):
    with pytest.raises(AliasNotFound):
        address_book.remove(ALICE_ID, "ghost")


def test_writes_preserve_unrelated_metadata(users, address_book, profiles):
    profile = profiles.get_by_platform_id(ALICE_ID)
    profiles.update_metadata(ALICE_ID, dict(profile.metadata, theme="dark"))

    address_book.add(ALICE_ID, "c", Identifier(USERNAME, "carol"))
    address_book.remove(ALICE_ID, "c")

    metadata = profiles.get_by_platform_id(ALICE_ID).metadata
    assert metadata["theme"] == "dark"
    assert metadata["payment_requests_sent"] == []


def test_reverse_lookups(users, address_book):
    address_book.add(ALICE_ID, "c", Identifier(USERNAME, "carol"))
    address_book.add(ALICE_ID, "b", Identifier(ADDRESS, BOBBY))
    address_book.add(ALICE_ID, "cid", Identifier(USER_ID, CAROL_ID))

    assert address_book.reverse_lookup_by_username(ALICE_ID, "@CAROL") == "c"
    assert address_book.reverse_lookup_by_address(ALICE_ID, BOBBY.upper().replace("0X", "0x")) == "b"
    assert address_book.reverse_lookup_by_user_id(ALICE_ID, CAROL_ID) == "cid"
    assert address_book.reverse_lookup_by_address(ALICE_ID, STRANGER) is None
    assert address_book.reverse_lookup_by_address(None, BOBBY) is None


def test_unknown_owner(address_book):
    with pytest.raises(AccountNotFound):
        address_book.list(999)
