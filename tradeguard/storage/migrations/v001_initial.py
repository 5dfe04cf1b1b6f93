"""Initial schema: intents, orders, risk limits, flags, credentials, audit log."""

import sqlite3

DDL = [
    # Trade intents, created on signal admission
    """
    CREATE TABLE IF NOT EXISTS trade_intents (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        symbol TEXT NOT NULL,
        exchange TEXT NOT NULL,
        transaction_type TEXT NOT NULL,
        order_type TEXT NOT NULL,
        product_type TEXT NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        price REAL,
        trigger_price REAL,
        validity TEXT NOT NULL DEFAULT 'DAY',
        status TEXT NOT NULL DEFAULT 'PENDING',
        risk_check_result TEXT,
        rejection_reason TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_trade_intents_user_status ON trade_intents(user_id, status)",

    # One row per broker submission attempt
    """
    CREATE TABLE IF NOT EXISTS orders (
        id TEXT PRIMARY KEY,
        trade_intent_id TEXT REFERENCES trade_intents(id),
        user_id TEXT NOT NULL,
        broker_order_id TEXT UNIQUE,
        symbol TEXT NOT NULL,
        exchange TEXT NOT NULL,
        transaction_type TEXT NOT NULL,
        order_type TEXT NOT NULL,
        product_type TEXT NOT NULL,
        quantity INTEGER NOT NULL,
        price REAL,
        trigger_price REAL,
        average_price REAL,
        filled_quantity INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'PENDING',
        status_message TEXT,
        placed_at TEXT,
        broker_response TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        CHECK (filled_quantity <= quantity)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_user_status ON orders(user_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_orders_intent ON orders(trade_intent_id)",

    # Per-user risk thresholds
    """
    CREATE TABLE IF NOT EXISTS risk_limits (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        limit_type TEXT NOT NULL,
        value REAL NOT NULL,
        unit TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'ACTIVE',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_risk_limits_one_active "
        "ON risk_limits(user_id, limit_type) WHERE status = 'ACTIVE'"
    ),

    # Singleton system flags (kill switch)
    """
    CREATE TABLE IF NOT EXISTS system_flags (
        flag_type TEXT PRIMARY KEY,
        enabled INTEGER NOT NULL DEFAULT 0,
        reason TEXT,
        triggered_by TEXT,
        triggered_at TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,

    # Encrypted broker credentials
    """
    CREATE TABLE IF NOT EXISTS broker_credentials (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        api_key TEXT NOT NULL,
        access_token TEXT,
        expires_at TEXT,
        status TEXT NOT NULL DEFAULT 'ACTIVE',
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_broker_credentials_user ON broker_credentials(user_id, status)",

    # Append-only audit trail
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event TEXT NOT NULL,
        user_id TEXT,
        source TEXT NOT NULL,
        payload TEXT NOT NULL,
        payload_hash TEXT NOT NULL,
        result TEXT NOT NULL,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_log_user_event ON audit_log(user_id, event, created_at)",
]

SEED = [
    "INSERT OR IGNORE INTO system_flags (flag_type, enabled) VALUES ('KILL_SWITCH', 0)",
]


def up(conn: sqlite3.Connection) -> None:
    for stmt in DDL:
        conn.execute(stmt)
    for stmt in SEED:
        conn.execute(stmt)
    conn.commit()
