import logging
from typing import Union

from cryptography.fernet import Fernet, InvalidToken

log = logging.getLogger(__name__)


class KeyCipher:
    """Encrypts wallet signing keys before they reach the profile store."""

    def __init__(self, key: Union[str, bytes]) -> None:
        raw = key.encode() if isinstance(key, str) else key
        self._fernet = Fernet(raw)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, private_key: str) -> str:
        return self._fernet.encrypt(private_key.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken:
            log.error("failed to decrypt signing key: invalid token")
            raise
