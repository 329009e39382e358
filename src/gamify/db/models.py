"""ORM models for users, the reward catalog, grant rows and the XP ledger.

Grant tables carry UNIQUE constraints; those constraints, not read-then-write
checks, are what keep every reward at most once per user.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gamify.db.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table. XP, level and counters are engine-owned."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("experience_points >= 0", name="ck_users_experience_points"),
        CheckConstraint("current_level >= 1", name="ck_users_current_level"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    experience_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    total_badges: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_achievements: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Catalog (admin-managed, read-only to the engine)
# ---------------------------------------------------------------------------


class Badge(Base):
    """Badge definitions. criteria_type: experience | badges | activities | achievements | custom."""

    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon_url: Mapped[str | None] = mapped_column(String(256), nullable=True)
    criteria_type: Mapped[str] = mapped_column(String(32), nullable=False, default="custom")
    criteria_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    experience_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common", server_default="common")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Level(Base):
    """Level catalog. Only consulted for the badge bound to a level."""

    __tablename__ = "levels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    level_number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    experience_required: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    badge_reward_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="SET NULL"), nullable=True
    )

    badge_reward: Mapped[Badge | None] = relationship("Badge", lazy="joined")


class Achievement(Base):
    """Achievement definitions. criteria_type: experience | badges | activities | registration | custom."""

    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    criteria_type: Mapped[str] = mapped_column(String(32), nullable=False, default="custom")
    criteria_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    experience_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    badge_reward_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    badge_reward: Mapped[Badge | None] = relationship("Badge", lazy="joined")


class Activity(Base):
    """Completable activities (owned by the activities subsystem)."""

    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    experience_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    badge_reward_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="SET NULL"), nullable=True
    )
    is_repeatable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    badge_reward: Mapped[Badge | None] = relationship("Badge", lazy="joined")


# ---------------------------------------------------------------------------
# Grant rows
# ---------------------------------------------------------------------------


class UserBadge(Base):
    """Badges held by users. UNIQUE(user_id, badge_id) prevents duplicates."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badges.id", ondelete="CASCADE"), nullable=False)
    awarded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # NULL means system-granted.
    awarded_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )


class UserAchievement(Base):
    """Achievements unlocked by users. UNIQUE(user_id, achievement_id)."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False
    )
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class UserActivity(Base):
    """Activity completions. One row per (user, activity); repeats bump completion_count."""

    __tablename__ = "user_activities"
    __table_args__ = (
        UniqueConstraint("user_id", "activity_id", name="uq_user_activities_user_activity"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    activity_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False
    )
    experience_gained: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TriggerReceipt(Base):
    """Marks once-per-user triggers (registration, profile completion) as consumed."""

    __tablename__ = "trigger_receipts"
    __table_args__ = (
        UniqueConstraint("user_id", "trigger_type", name="uq_trigger_receipts_user_trigger"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(32), nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# XP ledger
# ---------------------------------------------------------------------------


class ExperienceLog(Base):
    """Immutable XP change log. Append-only."""

    __tablename__ = "experience_logs"
    __table_args__ = (
        Index("idx_experience_logs_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    activity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    experience_change: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_level: Mapped[int] = mapped_column(Integer, nullable=False)
    new_level: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
