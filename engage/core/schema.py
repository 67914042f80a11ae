"""SQLite schema management (code-first approach)."""

import logging

from engage.core import db_client


logger = logging.getLogger(__name__)


# Central list of all collections in the schema, parents before children
COLLECTIONS = [
    "organizations",
    "users",
    "projects",
    "project_subscribers",
    "channel_connections",
    "day_templates",
    "completion_records",
    "ranking_aggregates",
    "dispatch_tasks",
    "dispatch_logs",
    "leases",
]


_TABLES: dict[str, str] = {
    "organizations": """
        CREATE TABLE IF NOT EXISTS organizations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
        )
    """,
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT,
            phone TEXT,
            organization_id INTEGER REFERENCES organizations (id),
            external_id TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
        )
    """,
    "projects": """
        CREATE TABLE IF NOT EXISTS projects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            organization_id INTEGER REFERENCES organizations (id),
            total_days INTEGER,
            start_date TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
        )
    """,
    "project_subscribers": """
        CREATE TABLE IF NOT EXISTS project_subscribers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project_id INTEGER NOT NULL REFERENCES projects (id),
            user_id INTEGER NOT NULL REFERENCES users (id),
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
        )
    """,
    "channel_connections": """
        CREATE TABLE IF NOT EXISTS channel_connections (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            provider TEXT NOT NULL,
            project_id INTEGER NOT NULL REFERENCES projects (id),
            access_token TEXT NOT NULL
        )
    """,
    "day_templates": """
        CREATE TABLE IF NOT EXISTS day_templates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project_id INTEGER NOT NULL REFERENCES projects (id),
            day_number INTEGER NOT NULL,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            category TEXT NOT NULL DEFAULT '',
            points_base INTEGER NOT NULL DEFAULT 10,
            requires_photo INTEGER NOT NULL DEFAULT 0
        )
    """,
    "completion_records": """
        CREATE TABLE IF NOT EXISTS completion_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users (id),
            project_id INTEGER NOT NULL REFERENCES projects (id),
            day_number INTEGER NOT NULL,
            status TEXT NOT NULL,
            points_awarded INTEGER NOT NULL DEFAULT 0 CHECK (points_awarded >= 0),
            media_refs TEXT NOT NULL DEFAULT '[]',
            notes TEXT,
            submitted_at TEXT,
            evaluated_at TEXT,
            first_approved_at TEXT
        )
    """,
    "ranking_aggregates": """
        CREATE TABLE IF NOT EXISTS ranking_aggregates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users (id),
            project_id INTEGER NOT NULL REFERENCES projects (id),
            total_points INTEGER NOT NULL DEFAULT 0 CHECK (total_points >= 0),
            completed_days INTEGER NOT NULL DEFAULT 0 CHECK (completed_days >= 0),
            completion_rate REAL NOT NULL DEFAULT 0 CHECK (completion_rate BETWEEN 0 AND 100),
            updated_at TEXT
        )
    """,
    "dispatch_tasks": """
        CREATE TABLE IF NOT EXISTS dispatch_tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project_id INTEGER NOT NULL REFERENCES projects (id),
            title TEXT NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            scheduled_at TEXT NOT NULL,
            status TEXT NOT NULL,
            repeat_cron TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
        )
    """,
    "dispatch_logs": """
        CREATE TABLE IF NOT EXISTS dispatch_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            task_id INTEGER NOT NULL REFERENCES dispatch_tasks (id),
            user_id INTEGER NOT NULL REFERENCES users (id),
            outcome TEXT NOT NULL,
            error TEXT,
            attempts INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
        )
    """,
    "leases": """
        CREATE TABLE IF NOT EXISTS leases (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            holder TEXT NOT NULL,
            acquired_at TEXT NOT NULL,
            expires_at TEXT NOT NULL
        )
    """,
}


_INDEXES: dict[str, list[str]] = {
    "users": [
        "CREATE INDEX IF NOT EXISTS idx_users_external_id ON users (external_id)",
        "CREATE INDEX IF NOT EXISTS idx_users_phone ON users (phone)",
    ],
    "project_subscribers": [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_subscriber_pair ON project_subscribers (project_id, user_id)",
    ],
    "channel_connections": [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_channel_provider_project ON channel_connections (provider, project_id)",
    ],
    "day_templates": [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_template_day ON day_templates (project_id, day_number)",
    ],
    "completion_records": [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_completion_key ON completion_records (user_id, project_id, day_number)",
        "CREATE INDEX IF NOT EXISTS idx_completion_status ON completion_records (project_id, status)",
    ],
    "ranking_aggregates": [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_ranking_pair ON ranking_aggregates (user_id, project_id)",
    ],
    "dispatch_tasks": [
        "CREATE INDEX IF NOT EXISTS idx_dispatch_due ON dispatch_tasks (status, scheduled_at)",
    ],
    "dispatch_logs": [
        "CREATE INDEX IF NOT EXISTS idx_dispatch_log_task ON dispatch_logs (task_id)",
    ],
    "leases": [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_lease_name ON leases (name)",
    ],
}


def get_collection_schema(collection_name: str) -> list[str]:
    """Get the DDL statements (table first, then indexes) for a collection.

    Raises:
        KeyError: If the collection is not part of the schema
    """
    return [_TABLES[collection_name], *_INDEXES.get(collection_name, [])]


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables and indexes (idempotent).

    Args:
        db_path: Optional database path. If not provided, uses settings.sqlite_db_path.
    """
    logger.info("Starting SQLite schema sync...")

    conn = await db_client.get_connection(db_path=db_path)
    for collection_name in COLLECTIONS:
        for statement in get_collection_schema(collection_name):
            await conn.execute(statement)
    await conn.commit()

    logger.info("SQLite schema sync complete", extra={"collections": len(COLLECTIONS)})
