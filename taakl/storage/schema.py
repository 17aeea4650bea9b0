"""Database schema for the taakl SQLite store.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2  # v2: generalized node tree alongside the legacy tables

# Allowed table names for dynamically built SQL (prevents injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "users",
        "auth_tokens",
        "clients",
        "projects",
        "tasks",
        "sessions",
        "nodes",
        "node_sessions",
        "user_data_meta",
        "settings",
        "schema_version",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Accounts
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL UNIQUE,
    username TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    email TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS auth_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    token_hash TEXT NOT NULL UNIQUE,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_auth_tokens_user ON auth_tokens(user_id);

-- Legacy tree: clients -> projects -> tasks -> sessions
CREATE TABLE IF NOT EXISTS clients (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    meta TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    UNIQUE (user_id, uuid)
);
CREATE INDEX IF NOT EXISTS idx_clients_updated ON clients(user_id, updated_at);

CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL,
    client_id INTEGER NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    meta TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    UNIQUE (client_id, uuid)
);
CREATE INDEX IF NOT EXISTS idx_projects_uuid ON projects(uuid);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'new',
    priority INTEGER DEFAULT 1,
    billable INTEGER DEFAULT 1,
    estimate TEXT,
    due TEXT,
    starred INTEGER DEFAULT 0,
    notes TEXT,
    meta TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    UNIQUE (project_id, uuid)
);
CREATE INDEX IF NOT EXISTS idx_tasks_uuid ON tasks(uuid);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL,
    task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    start_time TEXT,
    end_time TEXT,
    notes TEXT,
    meta TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    UNIQUE (task_id, uuid)
);
CREATE INDEX IF NOT EXISTS idx_sessions_uuid ON sessions(uuid);

-- Generalized tree: self-referencing nodes, parent stored by uuid
CREATE TABLE IF NOT EXISTS nodes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    parent_uuid TEXT,
    name TEXT NOT NULL,
    node_type TEXT NOT NULL DEFAULT 'task',
    child_order TEXT NOT NULL DEFAULT '[]',
    collapsed INTEGER DEFAULT 0,
    status TEXT DEFAULT 'new',
    priority INTEGER DEFAULT 3,
    billable INTEGER DEFAULT 1,
    estimate TEXT,
    due TEXT,
    starred INTEGER DEFAULT 0,
    notes TEXT,
    meta TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    UNIQUE (user_id, uuid)
);
CREATE INDEX IF NOT EXISTS idx_nodes_updated ON nodes(user_id, updated_at);

CREATE TABLE IF NOT EXISTS node_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL,
    node_id INTEGER NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    start_time TEXT,
    end_time TEXT,
    notes TEXT,
    meta TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    UNIQUE (node_id, uuid)
);
CREATE INDEX IF NOT EXISTS idx_node_sessions_uuid ON node_sessions(uuid);

-- Per-account tree metadata: schema generation in use and root node order
CREATE TABLE IF NOT EXISTS user_data_meta (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
    data_version INTEGER NOT NULL DEFAULT 2,
    root_order TEXT NOT NULL DEFAULT '[]',
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    setting_key TEXT NOT NULL,
    setting_value TEXT,
    updated_at TEXT,
    UNIQUE (user_id, setting_key)
);
"""


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables if needed and record the schema version."""
    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        logger.info(f"Updating schema version {row[0]} -> {SCHEMA_VERSION}")
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
