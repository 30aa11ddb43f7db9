"""Initial task registry schema: versions, tasks, artefacts.

At most one task per vocabulary version may be running at a time.
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "vocabulary_versions",
        sa.Column("vocabulary_id", sa.String(), nullable=False),
        sa.Column("version_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("vocabulary_id", "version_id"),
    )
    op.create_index(
        "ix_vocabulary_versions_status",
        "vocabulary_versions",
        ["status"],
        unique=False,
    )

    op.create_table(
        "tasks",
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("vocabulary_id", sa.String(), nullable=False),
        sa.Column("version_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("params", sa.Text(), nullable=False),
        sa.Column("response", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_summary", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_vocabulary_id", "tasks", ["vocabulary_id"], unique=False)
    op.create_index("ix_tasks_version_id", "tasks", ["version_id"], unique=False)
    op.create_index("ix_tasks_status", "tasks", ["status"], unique=False)
    op.create_index(
        "uq_tasks_version_running",
        "tasks",
        ["vocabulary_id", "version_id"],
        unique=True,
        sqlite_where=sa.text("status = 'running'"),
    )

    op.create_table(
        "version_artefacts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("vocabulary_id", sa.String(), nullable=False),
        sa.Column("version_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "vocabulary_id",
            "version_id",
            "kind",
            name="uq_version_artefacts_version_kind",
        ),
    )
    op.create_index(
        "ix_version_artefacts_vocabulary_id",
        "version_artefacts",
        ["vocabulary_id"],
        unique=False,
    )
    op.create_index(
        "ix_version_artefacts_version_id",
        "version_artefacts",
        ["version_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_version_artefacts_version_id", table_name="version_artefacts")
    op.drop_index("ix_version_artefacts_vocabulary_id", table_name="version_artefacts")
    op.drop_table("version_artefacts")
    op.drop_index("uq_tasks_version_running", table_name="tasks")
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_index("ix_tasks_version_id", table_name="tasks")
    op.drop_index("ix_tasks_vocabulary_id", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("ix_vocabulary_versions_status", table_name="vocabulary_versions")
    op.drop_table("vocabulary_versions")
