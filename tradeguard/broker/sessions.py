"""Resolves a user's stored credential into an authenticated BrokerClient."""

import logging
import sqlite3
from datetime import UTC, datetime
from typing import Protocol

from tradeguard.broker.client import BrokerClient
from tradeguard.errors import CredentialUnavailableError
from tradeguard.storage import credential_repo

logger = logging.getLogger(__name__)


class Cipher(Protocol):
    def encrypt(self, plaintext: str) -> str: ...

    def decrypt(self, token: str) -> str: ...


class BrokerSessions:
    def __init__(
        self,
        conn: sqlite3.Connection,
        cipher: Cipher,
        base_url: str,
        timeout: float = 30.0,
    ):
        self.conn = conn
        self.cipher = cipher
        self.base_url = base_url
        self.timeout = timeout

    def open(self, user_id: str) -> BrokerClient:
        """Build a client for ``user_id``.

        Raises CredentialUnavailableError when there is no active, decryptable,
        unexpired credential. The caller owns the returned client and must close it.
        """
        credential = credential_repo.get_active_credential(self.conn, user_id)
        if credential is None or not credential.access_token:
            raise CredentialUnavailableError(f"No active broker account for user {user_id}")

        if credential.expires_at and _is_past(credential.expires_at):
            credential_repo.mark_expired(self.conn, credential.id)
            logger.warning("Broker token for user %s expired at %s", user_id, credential.expires_at)
            raise CredentialUnavailableError(f"Broker session expired for user {user_id}")

        api_key = self.cipher.decrypt(credential.api_key)
        access_token = self.cipher.decrypt(credential.access_token)
        return BrokerClient(api_key, access_token, base_url=self.base_url, timeout=self.timeout)

    def active_users(self) -> list[str]:
        return credential_repo.list_active_users(self.conn)


def _is_past(iso: str) -> bool:
    try:
        ts = datetime.fromisoformat(iso)
    except ValueError:
        return True
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts <= datetime.now(UTC)
