import json
import os
import sqlite3
import time

DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "data", "portfolio.db")
DOCUMENT_TTL = 600  # seconds; refreshed on every write


def db_path():
    return os.environ.get("PORTFOLIO_DB_PATH", DEFAULT_DB_PATH)


def get_db():
    path = db_path()
    if path != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    conn = get_db()
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS portfolio_configs (
                session_id TEXT PRIMARY KEY,
                document TEXT NOT NULL,
                expire_at REAL NOT NULL,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_portfolio_configs_expire
                ON portfolio_configs(expire_at);
        """)
        conn.commit()
    finally:
        conn.close()


def purge_expired(conn, now=None):
    now = time.time() if now is None else now
    cur = conn.execute("DELETE FROM portfolio_configs WHERE expire_at <= ?", (now,))
    return cur.rowcount


def get_config(session_id, now=None):
    """Return the saved document for a session, or {} if none / expired."""
    db = get_db()
    try:
        purge_expired(db, now)
        db.commit()
        row = db.execute(
            "SELECT document FROM portfolio_configs WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        return json.loads(row["document"]) if row else {}
    finally:
        db.close()


def save_config(session_id, document, now=None):
    """Upsert a session's document. Returns True if a new row was created."""
    now = time.time() if now is None else now
    document = {k: v for k, v in document.items() if k != "_id"}
    db = get_db()
    try:
        purge_expired(db, now)
        existing = db.execute(
            "SELECT 1 FROM portfolio_configs WHERE session_id = ?", (session_id,),
        ).fetchone()
        db.execute(
            """INSERT INTO portfolio_configs (session_id, document, expire_at, updated_at)
               VALUES (?, ?, ?, CURRENT_TIMESTAMP)
               ON CONFLICT(session_id)
               DO UPDATE SET document = excluded.document,
                             expire_at = excluded.expire_at,
                             updated_at = excluded.updated_at""",
            (session_id, json.dumps(document), now + DOCUMENT_TTL),
        )
        db.commit()
        return existing is None
    finally:
        db.close()
