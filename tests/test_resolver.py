import pytest

from conftest import ALICE_ID, BOBBY, BOBBY_ID, CAROL, CAROL_ID, STRANGER
from paybot.errors import InvalidAddress, RecipientNotFound
from paybot.identifiers import ADDRESS, USER_ID, USERNAME, Identifier, truncate_address


def test_registered_address_shows_owner_handle(users, resolver):
    resolved = resolver.lookup(CAROL, ALICE_ID)

    assert resolved.address == CAROL
    assert resolved.display_name == "@carol"
    assert resolved.owner_user_id == CAROL_ID
    assert not resolved.is_friend_alias


def test_registered_address_ignores_requester_alias(users, resolver, address_book):
    address_book.add(ALICE_ID, "cc", Identifier(USERNAME, "carol"))

    resolved = resolver.lookup(CAROL, ALICE_ID)

    assert resolved.display_name == "@carol"
    assert not resolved.is_friend_alias
    assert resolved.owner_user_id == CAROL_ID


def test_unregistered_address_uses_requester_alias(users, resolver, address_book):
    address_book.add(ALICE_ID, "shop", Identifier(ADDRESS, STRANGER))

    resolved = resolver.lookup(STRANGER.upper().replace("0X", "0x"), ALICE_ID)

    assert resolved.display_name == "shop"
    assert resolved.is_friend_alias
    assert resolved.owner_user_id is None


def test_unknown_address_is_truncated(users, resolver):
    resolved = resolver.lookup(STRANGER, BOBBY_ID)

    assert resolved.display_name == truncate_address(STRANGER)
    assert resolved.owner_user_id is None


def test_alias_overrides_handle_only_for_its_owner(users, resolver, address_book):
    address_book.add(ALICE_ID, "bob", Identifier(USERNAME, "bobby"))

    mine = resolver.lookup("@bobby", ALICE_ID)
    theirs = resolver.lookup("@bobby", CAROL_ID)

    assert mine.display_name == "bob"
    assert mine.is_friend_alias
    assert theirs.display_name == "@bobby"
    assert mine.address == theirs.address == BOBBY
    assert mine.owner_user_id == theirs.owner_user_id == BOBBY_ID


def test_user_id_lookup(users, resolver, address_book):
    address_book.add(ALICE_ID, "cc", Identifier(USER_ID, CAROL_ID))

    assert resolver.lookup(str(CAROL_ID), ALICE_ID).display_name == "cc"
    assert resolver.lookup(str(CAROL_ID), BOBBY_ID).display_name == "@carol"


def test_unregistered_username_fails(users, resolver):
    with pytest.raises(RecipientNotFound):
        resolver.lookup("@nobody_here", ALICE_ID)
    assert resolver.resolve("@nobody_here", ALICE_ID) is None


def test_alias_to_username_resolves_one_level(users, resolver, address_book):
    address_book.add(ALICE_ID, "c", Identifier(USERNAME, "carol"))

    resolved = resolver.lookup("c", ALICE_ID)

    assert resolved.address == CAROL
    assert resolved.display_name == "c"
    assert resolved.is_friend_alias
    assert resolved.owner_user_id == CAROL_ID


def test_alias_to_address_skips_owner_lookup(users, resolver, address_book):
    address_book.add(ALICE_ID, "carl", Identifier(ADDRESS, CAROL))

    resolved = resolver.lookup("carl", ALICE_ID)

    assert resolved.address == CAROL
    assert resolved.display_name == "carl"
    assert resolved.owner_user_id is None


def test_aliases_are_private_to_their_owner(users, resolver, address_book):
    address_book.add(ALICE_ID, "c", Identifier(USERNAME, "carol"))

    assert resolver.resolve("c", BOBBY_ID) is None
    assert resolver.resolve("c") is None


def test_alias_to_deregistered_username_fails(users, resolver, address_book, profiles):
    address_book.add(ALICE_ID, "c", Identifier(USERNAME, "carol"))
    profiles.update_username(CAROL_ID, "carol_new")

    assert resolver.resolve("c", ALICE_ID) is None


def test_parse_errors_propagate_from_lookup(users, resolver):
    with pytest.raises(InvalidAddress):
        resolver.lookup("0x1234", ALICE_ID)
    assert resolver.resolve("0x1234", ALICE_ID) is None


def test_resolution_is_idempotent_and_not_cached(users, resolver, address_book):
    address_book.add(ALICE_ID, "c", Identifier(USERNAME, "carol"))

    first = resolver.lookup("c", ALICE_ID)
    assert resolver.lookup("c", ALICE_ID) == first

    address_book.remove(ALICE_ID, "c")
    address_book.add(ALICE_ID, "c", Identifier(ADDRESS, BOBBY))
    assert resolver.lookup("c", ALICE_ID).address == BOBBY
