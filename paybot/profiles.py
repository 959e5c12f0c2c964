import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from .identifiers import USERNAME_PREFIX
from .keys import KeyCipher

log = logging.getLogger(__name__)


@dataclass
class UserProfile:
    user_id: int
    username: Optional[str]
    wallet_address: Optional[str]
    encrypted_key: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "UserProfile":
        try:
            metadata = json.loads(row["metadata"] or "{}")
        except json.JSONDecodeError:
            log.warning("corrupt metadata for user %s, starting empty", row["user_id"])
            metadata = {}
        if not isinstance(metadata, dict):
            metadata = {}
        return cls(
            user_id=int(row["user_id"]),
            username=row["username"] or None,
            wallet_address=row["wallet_address"] or None,
            encrypted_key=row["encrypted_key"] or None,
            metadata=metadata,
            created_at=float(row["created_at"] or 0),
        )

    @property
    def friends(self) -> Dict[str, dict]:
        friends = self.metadata.get("friends")
        return dict(friends) if isinstance(friends, dict) else {}

    @property
    def handle(self) -> str:
        if self.username:
            return f"{USERNAME_PREFIX}{self.username}"
        return f"user {self.user_id}"


def _clean_username(username: Optional[str]) -> Optional[str]:
    clean = str(username or "").strip()
    if clean.startswith(USERNAME_PREFIX):
        clean = clean[1:]
    return clean or None


class ProfileStore:
    """Sqlite-backed profile directory with indexed reverse lookups.

    Profiles are keyed by Telegram user id. Username and wallet address are
    stored lower-cased in dedicated indexed columns so lookups by either never
    scan the directory. Everything else lives in the JSON ``metadata`` blob,
    which callers always write back whole.
    """

    def __init__(self, db_path: str = "paybot.db", cipher: Optional[KeyCipher] = None):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.cipher = cipher
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS profiles (
                  user_id INTEGER PRIMARY KEY,
                  username TEXT,
                  username_key TEXT,
                  wallet_address TEXT,
                  address_key TEXT,
                  encrypted_key TEXT,
                  metadata TEXT NOT NULL DEFAULT '{}',
                  created_at REAL NOT NULL DEFAULT 0
                )
                """
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_profiles_username ON profiles(username_key)"
            )
            self.conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_profiles_address ON profiles(address_key)"
            )

    def close(self) -> None:
        self.conn.close()

    def create_user(
        self,
        user_id: int,
        username: Optional[str],
        wallet_address: str,
        private_key: str,
        metadata: Optional[dict] = None,
    ) -> UserProfile:
        if self.cipher is None:
            raise RuntimeError("Profile store has no key cipher configured")
        clean = _clean_username(username)
        encrypted = self.cipher.encrypt(private_key)
        payload = dict(metadata or {})
        payload.setdefault("friends", {})
        payload.setdefault("payment_requests_sent", [])
        payload.setdefault("payment_requests_received", [])
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO profiles(
                  user_id, username, username_key, wallet_address, address_key,
                  encrypted_key, metadata, created_at
                )
                VALUES(?,?,?,?,?,?,?,?)
                """,
                (
                    int(user_id),
                    clean,
                    clean.lower() if clean else None,
                    wallet_address,
                    wallet_address.lower(),
                    encrypted,
                    json.dumps(payload, ensure_ascii=False),
                    time.time(),
                ),
            )
        log.info("profile created for user %s (%s)", user_id, wallet_address)
        profile = self.get_by_platform_id(user_id)
        assert profile is not None
        return profile

    def _fetch_one(self, query: str, params: tuple) -> Optional[UserProfile]:
        row = self.conn.execute(query, params).fetchone()
        if not row:
            return None
        return UserProfile.from_row(row)

    def get_by_platform_id(self, user_id: int) -> Optional[UserProfile]:
        return self._fetch_one("SELECT * FROM profiles WHERE user_id=?", (int(user_id),))

    def get_by_username(self, username: str) -> Optional[UserProfile]:
        clean = _clean_username(username)
        if not clean:
            return None
        return self._fetch_one(
            "SELECT * FROM profiles WHERE username_key=? ORDER BY user_id LIMIT 1",
            (clean.lower(),),
        )

    def get_by_wallet_address(self, address: str) -> Optional[UserProfile]:
        if not address:
            return None
        return self._fetch_one(
            "SELECT * FROM profiles WHERE address_key=?", (address.lower(),)
        )

    def update_metadata(self, user_id: int, metadata: dict) -> None:
        """Replace the whole metadata object for ``user_id``."""
        with self._lock, self.conn:
            cur = self.conn.execute(
                "UPDATE profiles SET metadata=? WHERE user_id=?",
                (json.dumps(metadata, ensure_ascii=False), int(user_id)),
            )
        if cur.rowcount == 0:
            log.warning("metadata update for unknown user %s ignored", user_id)

    def update_username(self, user_id: int, username: Optional[str]) -> None:
        clean = _clean_username(username)
        with self._lock, self.conn:
            self.conn.execute(
                "UPDATE profiles SET username=?, username_key=? WHERE user_id=?",
                (clean, clean.lower() if clean else None, int(user_id)),
            )

    def signing_key(self, profile: UserProfile) -> Optional[str]:
        if not profile.encrypted_key or self.cipher is None:
            return None
        return self.cipher.decrypt(profile.encrypted_key)

    def iter_profiles(self) -> Iterator[UserProfile]:
        rows = self.conn.execute("SELECT * FROM profiles ORDER BY user_id").fetchall()
        for row in rows:
            yield UserProfile.from_row(row)
