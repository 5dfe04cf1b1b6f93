"""Repository for encrypted broker credentials."""

import sqlite3

from tradeguard.models.system import BrokerCredential, CredentialStatus


def save_credential(conn: sqlite3.Connection, credential: BrokerCredential) -> None:
    """Store a credential, retiring any earlier ACTIVE one for the user."""
    if credential.status == CredentialStatus.ACTIVE:
        conn.execute(
            "UPDATE broker_credentials SET status = 'INACTIVE' "
            "WHERE user_id = ? AND status = 'ACTIVE'",
            (credential.user_id,),
        )
    conn.execute(
        "INSERT INTO broker_credentials "
        "(id, user_id, api_key, access_token, expires_at, status) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (
            credential.id,
            credential.user_id,
            credential.api_key,
            credential.access_token,
            credential.expires_at,
            credential.status.value,
        ),
    )
    conn.commit()


def get_active_credential(
    conn: sqlite3.Connection, user_id: str
) -> BrokerCredential | None:
    row = conn.execute(
        "SELECT * FROM broker_credentials WHERE user_id = ? AND status = 'ACTIVE' "
        "ORDER BY created_at DESC LIMIT 1",
        (user_id,),
    ).fetchone()
    if row is None:
        return None
    return BrokerCredential(
        id=row["id"],
        user_id=row["user_id"],
        api_key=row["api_key"],
        access_token=row["access_token"],
        expires_at=row["expires_at"],
        status=CredentialStatus(row["status"]),
    )


def list_active_users(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute(
        "SELECT DISTINCT user_id FROM broker_credentials WHERE status = 'ACTIVE' "
        "ORDER BY user_id"
    ).fetchall()
    return [r[0] for r in rows]


def mark_expired(conn: sqlite3.Connection, credential_id: str) -> None:
    conn.execute(
        "UPDATE broker_credentials SET status = 'EXPIRED' WHERE id = ?",
        (credential_id,),
    )
    conn.commit()
