"""SQLModel ORM tables for the task registry."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text, UniqueConstraint, text
from sqlmodel import Field, SQLModel


class VocabularyVersion(SQLModel, table=True):
    __tablename__ = "vocabulary_versions"  # type: ignore[bad-override]

    vocabulary_id: str = Field(primary_key=True)
    version_id: str = Field(primary_key=True)
    status: str = Field(index=True)
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "uq_tasks_version_running",
            "vocabulary_id",
            "version_id",
            unique=True,
            sqlite_where=text("status = 'running'"),
        ),
    )

    task_id: int | None = Field(default=None, primary_key=True)
    vocabulary_id: str = Field(index=True)
    version_id: str = Field(index=True)
    status: str = Field(index=True)
    params: str = Field(sa_column=Column(Text, nullable=False))
    response: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    heartbeat_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    error_summary: str | None = None


class VersionArtefact(SQLModel, table=True):
    __tablename__ = "version_artefacts"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "vocabulary_id",
            "version_id",
            "kind",
            name="uq_version_artefacts_version_kind",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    vocabulary_id: str = Field(index=True)
    version_id: str = Field(index=True)
    kind: str
    path: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
