from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SourceSetting(Base):
    __tablename__ = "source_settings"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class NotificationRuleSettingRecord(Base):
    __tablename__ = "notification_rule_settings"
    __table_args__ = (UniqueConstraint("source", "rule_id", name="uq_rule_settings_source_rule"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String, nullable=False)
    rule_id: Mapped[str] = mapped_column(String, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    input_values_json: Mapped[str] = mapped_column(Text, default="{}", nullable=False)


class NotificationRuleStateRecord(Base):
    __tablename__ = "notification_rule_states"
    __table_args__ = (UniqueConstraint("source", "rule_id", name="uq_rule_states_source_rule"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String, nullable=False)
    rule_id: Mapped[str] = mapped_column(String, nullable=False)
    last_fired_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_fired_cycle_key: Mapped[str | None] = mapped_column(String, nullable=True)


class UsageSnapshotRecord(Base):
    __tablename__ = "usage_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    remaining: Mapped[float] = mapped_column(Float, nullable=False)
    limit: Mapped[float] = mapped_column("limit_value", Float, nullable=False)


class AppSetting(Base):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


Index("idx_snapshots_source_time", UsageSnapshotRecord.source, UsageSnapshotRecord.recorded_at)
