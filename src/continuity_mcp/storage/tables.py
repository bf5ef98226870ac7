"""Relational schema for instances, events, checkpoints and the command log."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class InstanceRow(Base):
    __tablename__ = "instances"
    __table_args__ = (
        CheckConstraint("context_percent >= 0 AND context_percent <= 100", name="ck_context_percent"),
        CheckConstraint("role IN ('PS', 'MS')", name="ck_instance_role"),
        Index("ix_instances_project_heartbeat", "project", "last_heartbeat"),
    )

    instance_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    project: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(2), nullable=False)
    # only "active" or "closed" are stored; "stale" is derived on read
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="active")
    context_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_task: Mapped[str | None] = mapped_column(String(100), nullable=True)
    host_location: Mapped[str] = mapped_column(String(255), nullable=False)
    last_heartbeat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class EventRow(Base):
    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("instance_id", "sequence_num", name="uq_events_instance_sequence"),
        Index("ix_events_instance_sequence", "instance_id", "sequence_num"),
        Index("ix_events_event_type", "event_type"),
        Index("ix_events_parent", "parent_event_id"),
        Index("ix_events_root", "root_event_id"),
    )

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    instance_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("instances.instance_id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence_num: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    event_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON(none_as_null=True), nullable=True)
    parent_event_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("events.event_id", ondelete="SET NULL"), nullable=True
    )
    root_event_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CheckpointRow(Base):
    __tablename__ = "checkpoints"
    __table_args__ = (
        UniqueConstraint("instance_id", "sequence_num", name="uq_checkpoints_instance_sequence"),
        Index("ix_checkpoints_instance_created", "instance_id", "created_at"),
        Index("ix_checkpoints_created", "created_at"),
    )

    checkpoint_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    instance_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("instances.instance_id", ondelete="CASCADE"), nullable=False
    )
    checkpoint_type: Mapped[str] = mapped_column(String(30), nullable=False)
    sequence_num: Mapped[int] = mapped_column(Integer, nullable=False)
    context_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    work_state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    checkpoint_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CommandLogRow(Base):
    __tablename__ = "command_log"
    __table_args__ = (
        Index("ix_command_log_instance_created", "instance_id", "created_at"),
        Index("ix_command_log_tool", "tool_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("instances.instance_id", ondelete="CASCADE"), nullable=False
    )
    command_type: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    tool_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    parameters: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    result: Mapped[Any] = mapped_column(JSON(none_as_null=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    execution_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    context_data: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    source: Mapped[str] = mapped_column(String(10), nullable=False, default="auto")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


__all__ = ["Base", "CheckpointRow", "CommandLogRow", "EventRow", "InstanceRow"]
