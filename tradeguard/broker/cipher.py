"""Symmetric encryption for stored broker credentials."""

import os

from cryptography.fernet import Fernet, InvalidToken

from tradeguard.errors import CredentialUnavailableError


class FernetCipher:
    def __init__(self, key: str | bytes):
        self._fernet = Fernet(key)

    @classmethod
    def from_env(cls, env_var: str) -> "FernetCipher":
        key = os.environ.get(env_var, "")
        if not key:
            raise CredentialUnavailableError(f"{env_var} not set")
        return cls(key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken as e:
            raise CredentialUnavailableError("Stored broker credential cannot be decrypted") from e
