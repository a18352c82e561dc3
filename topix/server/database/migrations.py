"""Schema migrations for the Headline Store.

Each migration is a versioned function applied with Alembic ``Operations``
against a live connection. Applied versions are tracked in the
``schema_migrations`` table, so the store upgrades itself on open.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List

import sqlalchemy as sa
from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy.engine import Connection, Engine

from topix.server.database.types import utcnow

logger = logging.getLogger(__name__)

_version_metadata = sa.MetaData()

schema_migrations = sa.Table(
    "schema_migrations",
    _version_metadata,
    sa.Column("version", sa.Integer(), primary_key=True),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("applied_at", sa.DateTime(), nullable=False),
)


@dataclass(frozen=True)
class Migration:
    """A single schema migration.

    Attributes:
        version: Monotonic version number
        name: Short migration name
        upgrade: Function applying the migration
    """

    version: int
    name: str
    upgrade: Callable[[Operations], None]


def _initial_schema(op: Operations) -> None:
    """Create headlines, plugin_configs, auth and user_preferences tables."""
    op.create_table(
        "headlines",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("plugin_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("link", sa.String(), nullable=True),
        sa.Column("pub_date", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("tags", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("importance_score", sa.Float(), nullable=False, server_default="0.0"),
        sa.Column("importance_reason", sa.Text(), nullable=True),
        sa.Column("metadata", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("read", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("starred", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_headlines_plugin_id", "headlines", ["plugin_id"])
    op.create_index("ix_headlines_pub_date", "headlines", ["pub_date"])
    op.create_index("ix_headlines_created_at", "headlines", ["created_at"])
    op.create_index("ix_headlines_archived", "headlines", ["archived"])

    op.create_table(
        "plugin_configs",
        sa.Column("plugin_id", sa.String(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("schedule", sa.String(), nullable=False),
        sa.Column("config", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("llm_enabled", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("base_weight", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("threshold", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("importance_rules", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("last_run", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("plugin_id"),
    )

    op.create_table(
        "auth",
        sa.Column("plugin_id", sa.String(), nullable=False),
        sa.Column("auth_type", sa.String(), nullable=False),
        sa.Column("credentials", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("plugin_id"),
    )

    op.create_table(
        "user_preferences",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def _credential_secret_flag(op: Operations) -> None:
    """Track whether an auth row holds the secret or only metadata."""
    op.add_column(
        "auth",
        sa.Column("has_secret", sa.Boolean(), nullable=False, server_default=sa.false()),
    )


MIGRATIONS: List[Migration] = [
    Migration(1, "initial_schema", _initial_schema),
    Migration(2, "credential_secret_flag", _credential_secret_flag),
]


def get_latest_version() -> int:
    """Get the latest migration version."""
    return MIGRATIONS[-1].version


def get_current_version(conn: Connection) -> int:
    """Get the highest applied migration version (0 for a fresh database)."""
    schema_migrations.create(conn, checkfirst=True)
    result = conn.execute(sa.select(sa.func.max(schema_migrations.c.version))).scalar()
    return result or 0


def run_migrations(engine: Engine) -> int:
    """Apply every pending migration in order.

    Each migration runs in its own transaction together with its version row,
    so a failed migration leaves the schema at the previous version.

    Args:
        engine: Engine of the store to upgrade

    Returns:
        Number of migrations applied
    """
    with engine.begin() as conn:
        current = get_current_version(conn)

    latest = get_latest_version()
    if current >= latest:
        return 0

    logger.info(f"Migrating database from version {current} to {latest}")
    applied = 0
    for migration in MIGRATIONS:
        if migration.version <= current:
            continue
        logger.info(f"Applying migration {migration.version}: {migration.name}")
        with engine.begin() as conn:
            op = Operations(MigrationContext.configure(conn))
            migration.upgrade(op)
            conn.execute(
                schema_migrations.insert().values(
                    version=migration.version,
                    name=migration.name,
                    applied_at=utcnow().replace(tzinfo=None),
                )
            )
        applied += 1

    logger.info("Database migrations complete")
    return applied
