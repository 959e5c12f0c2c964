import logging
from typing import Dict, Optional

from .errors import (
    AccountNotFound,
    AliasAlreadyExists,
    AliasNotFound,
    InvalidAliasTarget,
)
from .identifiers import (
    ADDRESS,
    ALIAS,
    USER_ID,
    USERNAME,
    FriendTarget,
    same_address,
    validate_alias,
)
from .profiles import ProfileStore, UserProfile

log = logging.getLogger(__name__)


class AddressBook:
    """Per-user alias map stored under ``metadata["friends"]``."""

    def __init__(self, profiles: ProfileStore) -> None:
        self.profiles = profiles

    def _owner(self, user_id: int) -> UserProfile:
        profile = self.profiles.get_by_platform_id(user_id)
        if profile is None:
            raise AccountNotFound("Please create an account first with /start")
        return profile

    def _entries(self, profile: UserProfile) -> Dict[str, FriendTarget]:
        entries: Dict[str, FriendTarget] = {}
        for alias, raw in profile.friends.items():
            if not isinstance(raw, dict):
                continue
            try:
                entries[alias] = FriendTarget.from_dict(raw)
            except (TypeError, ValueError):
                log.warning("skipping malformed friend entry %r for %s", alias, profile.user_id)
        return entries

    @staticmethod
    def _points_at_owner(profile: UserProfile, target: FriendTarget) -> bool:
        if target.kind == ADDRESS:
            return same_address(profile.wallet_address, str(target.value))
        if target.kind == USERNAME:
            return bool(profile.username) and str(target.value).lower() == profile.username.lower()
        if target.kind == USER_ID:
            return int(target.value) == profile.user_id
        return False

    def _write(self, profile: UserProfile, friends: Dict[str, FriendTarget]) -> None:
        metadata = dict(profile.metadata)
        metadata["friends"] = {alias: target.to_dict() for alias, target in friends.items()}
        self.profiles.update_metadata(profile.user_id, metadata)

    def add(self, user_id: int, alias: str, target: FriendTarget) -> FriendTarget:
        alias = validate_alias(alias)
        if target.kind == ALIAS:
            raise InvalidAliasTarget(
                "A friend must be an @username, user ID or address, not another alias."
            )
        if target.kind not in (ADDRESS, USERNAME, USER_ID):
            raise InvalidAliasTarget("Unsupported friend identifier.")
        profile = self._owner(user_id)
        if self._points_at_owner(profile, target):
            raise InvalidAliasTarget("You can't add yourself as a friend.")
        friends = self._entries(profile)
        if alias in friends:
            raise AliasAlreadyExists(alias, friends[alias])
        friends[alias] = target
        self._write(profile, friends)
        log.info("friend added for %s: %s -> %s", user_id, alias, target.to_dict())
        return target

    def remove(self, user_id: int, alias: str) -> FriendTarget:
        profile = self._owner(user_id)
        friends = self._entries(profile)
        if alias not in friends:
            raise AliasNotFound(alias)
        removed = friends.pop(alias)
        self._write(profile, friends)
        log.info("friend removed for %s: %s", user_id, alias)
        return removed

    def list(self, user_id: int) -> Dict[str, FriendTarget]:
        return self._entries(self._owner(user_id))

    def get(self, user_id: int, alias: str) -> Optional[FriendTarget]:
        profile = self.profiles.get_by_platform_id(user_id)
        if profile is None:
            return None
        return self._entries(profile).get(alias)

    def _reverse_lookup(self, user_id: Optional[int], kind: str, matches) -> Optional[str]:
        if user_id is None:
            return None
        profile = self.profiles.get_by_platform_id(user_id)
        if profile is None:
            return None
        for alias, target in self._entries(profile).items():
            if target.kind == kind and matches(target.value):
                return alias
        return None

    def reverse_lookup_by_address(self, user_id: Optional[int], address: str) -> Optional[str]:
        return self._reverse_lookup(
            user_id, ADDRESS, lambda value: same_address(str(value), address)
        )

    def reverse_lookup_by_username(self, user_id: Optional[int], username: str) -> Optional[str]:
        wanted = str(username or "").lstrip("@").lower()
        return self._reverse_lookup(
            user_id, USERNAME, lambda value: str(value).lower() == wanted
        )

    def reverse_lookup_by_user_id(self, user_id: Optional[int], target_id: int) -> Optional[str]:
        return self._reverse_lookup(
            user_id, USER_ID, lambda value: int(value) == int(target_id)
        )
