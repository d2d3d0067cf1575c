"""SQLAlchemy ORM models for users, quests, claims and tags."""

import enum
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import Boolean, DateTime, Integer, Numeric

from questboard.datetime_utils import utcnow


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class QuestType(str, enum.Enum):
    REGULAR = "REGULAR"
    TIME_BASED = "TIME_BASED"


class QuestStatus(str, enum.Enum):
    OPEN = "OPEN"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class ClaimStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# Amounts are token units with up to 18 decimals.
AMOUNT = Numeric(38, 18)

ACTIVE_CLAIM_CONDITION = "status IN ('PENDING','APPROVED')"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_xp", "xp"),
        CheckConstraint("xp >= 0", name="ck_user_xp"),
        CheckConstraint("level >= 1", name="ck_user_level"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    wallet_address: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    username: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text, unique=True)
    xp: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    level: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default=text("1")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    quests: Mapped[list["Quest"]] = relationship(back_populates="creator")
    claims: Mapped[list["Claim"]] = relationship(back_populates="user")


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    quests: Mapped[list["Quest"]] = relationship(
        secondary="quest_tags", back_populates="tags"
    )


class QuestTag(Base):
    __tablename__ = "quest_tags"

    quest_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("quests.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class Quest(Base):
    __tablename__ = "quests"
    __table_args__ = (
        Index("idx_quests_status", "status"),
        Index("idx_quests_creator", "creator_id"),
        Index("idx_quests_expiry", "status", "type", "expiry"),
        CheckConstraint("type IN ('REGULAR','TIME_BASED')", name="ck_quest_type"),
        CheckConstraint(
            "status IN ('OPEN','COMPLETED','EXPIRED')", name="ck_quest_status"
        ),
        CheckConstraint(
            "supplied_funds >= reward_amount", name="ck_quest_funds_cover_reward"
        ),
        CheckConstraint(
            "(type = 'TIME_BASED') = (expiry IS NOT NULL)", name="ck_quest_expiry"
        ),
        CheckConstraint(
            "NOT funds_released OR status = 'COMPLETED'",
            name="ck_quest_released_completed",
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    github_url: Mapped[str | None] = mapped_column(Text)
    type: Mapped[str] = mapped_column(
        Text, nullable=False, default=QuestType.REGULAR.value
    )
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=QuestStatus.OPEN.value
    )
    expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reward_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    supplied_funds: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    funds_released: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    transaction_hash: Mapped[str | None] = mapped_column(Text)
    creator_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    creator: Mapped["User"] = relationship(back_populates="quests")
    tags: Mapped[list["Tag"]] = relationship(
        secondary="quest_tags", back_populates="quests"
    )
    claims: Mapped[list["Claim"]] = relationship(
        back_populates="quest", order_by="Claim.created_at"
    )


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


class Claim(Base):
    __tablename__ = "claims"
    __table_args__ = (
        Index("idx_claims_quest", "quest_id"),
        Index("idx_claims_user", "user_id"),
        Index("idx_claims_status", "status"),
        # One live (pending or approved) claim per user per quest.
        Index(
            "uq_claims_active_per_user",
            "quest_id",
            "user_id",
            unique=True,
            postgresql_where=text(ACTIVE_CLAIM_CONDITION),
            sqlite_where=text(ACTIVE_CLAIM_CONDITION),
        ),
        CheckConstraint(
            "status IN ('PENDING','APPROVED','REJECTED')", name="ck_claim_status"
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    quest_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    proof_url: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=ClaimStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    quest: Mapped["Quest"] = relationship(back_populates="claims")
    user: Mapped["User"] = relationship(back_populates="claims")
