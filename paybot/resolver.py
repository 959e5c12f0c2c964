import logging
from dataclasses import dataclass
from typing import Optional

from .address_book import AddressBook
from .errors import InvalidAliasTarget, ParseError, RecipientNotFound
from .identifiers import (
    ADDRESS,
    ALIAS,
    USER_ID,
    USERNAME,
    Identifier,
    parse_identifier,
    truncate_address,
)
from .profiles import ProfileStore, UserProfile

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedRecipient:
    address: str
    display_name: str
    owner_user_id: Optional[int] = None
    is_friend_alias: bool = False
    username: Optional[str] = None
    kind: str = ADDRESS


class RecipientResolver:
    """Turns free-form recipient text into a wallet address.

    Display names follow the alias override hierarchy: a requester's own
    alias beats the platform handle for usernames and user ids, while a raw
    address owned by a registered user always shows that user's handle. Results are
    recomputed on every call so a changed friend entry or a newly registered
    address is picked up immediately.
    """

    def __init__(self, profiles: ProfileStore, address_book: AddressBook) -> None:
        self.profiles = profiles
        self.address_book = address_book

    def lookup(self, raw: str, requester_id: Optional[int] = None) -> ResolvedRecipient:
        identifier = parse_identifier(raw)
        resolved = self._resolve(identifier, requester_id, allow_alias=True)
        if resolved is None:
            raise RecipientNotFound(f"Recipient {raw!r} not found")
        return resolved

    def resolve(self, raw: str, requester_id: Optional[int] = None) -> Optional[ResolvedRecipient]:
        try:
            return self.lookup(raw, requester_id)
        except (ParseError, RecipientNotFound) as exc:
            log.info("recipient %r unresolved for %s: %s", raw, requester_id, exc)
            return None

    def _resolve(
        self, identifier: Identifier, requester_id: Optional[int], *, allow_alias: bool
    ) -> Optional[ResolvedRecipient]:
        if identifier.kind == ADDRESS:
            return self._resolve_address(str(identifier.value), requester_id)
        if identifier.kind == USERNAME:
            profile = self.profiles.get_by_username(str(identifier.value))
            return self._resolve_profile(profile, requester_id, kind=USERNAME)
        if identifier.kind == USER_ID:
            profile = self.profiles.get_by_platform_id(int(identifier.value))
            return self._resolve_profile(profile, requester_id, kind=USER_ID)
        if identifier.kind == ALIAS:
            if not allow_alias:
                raise InvalidAliasTarget("Friend entries cannot point at another alias.")
            return self._resolve_alias(str(identifier.value), requester_id)
        return None

    def _resolve_address(self, address: str, requester_id: Optional[int]) -> ResolvedRecipient:
        owner = self.profiles.get_by_wallet_address(address)
        if owner is not None:
            return ResolvedRecipient(
                address=address,
                display_name=owner.handle,
                owner_user_id=owner.user_id,
                username=owner.username,
                kind=ADDRESS,
            )
        alias = self.address_book.reverse_lookup_by_address(requester_id, address)
        if alias:
            return ResolvedRecipient(
                address=address,
                display_name=alias,
                is_friend_alias=True,
                kind=ADDRESS,
            )
        return ResolvedRecipient(address=address, display_name=truncate_address(address), kind=ADDRESS)

    def _resolve_profile(
        self, profile: Optional[UserProfile], requester_id: Optional[int], *, kind: str
    ) -> Optional[ResolvedRecipient]:
        if profile is None or not profile.wallet_address:
            return None
        alias = None
        if kind == USERNAME and profile.username:
            alias = self.address_book.reverse_lookup_by_username(requester_id, profile.username)
        elif kind == USER_ID:
            alias = self.address_book.reverse_lookup_by_user_id(requester_id, profile.user_id)
        return ResolvedRecipient(
            address=profile.wallet_address,
            display_name=alias or profile.handle,
            owner_user_id=profile.user_id,
            is_friend_alias=bool(alias),
            username=profile.username,
            kind=kind,
        )

    def _resolve_alias(self, alias: str, requester_id: Optional[int]) -> Optional[ResolvedRecipient]:
        if requester_id is None:
            return None
        target = self.address_book.get(requester_id, alias)
        if target is None:
            return None
        if target.kind == ADDRESS:
            # stored addresses are authoritative, no owner lookup
            return ResolvedRecipient(
                address=str(target.value),
                display_name=alias,
                is_friend_alias=True,
                kind=ALIAS,
            )
        inner = self._resolve(target, requester_id, allow_alias=False)
        if inner is None:
            return None
        return ResolvedRecipient(
            address=inner.address,
            display_name=alias,
            owner_user_id=inner.owner_user_id,
            is_friend_alias=True,
            username=inner.username,
            kind=ALIAS,
        )
