"""Initial schema: users, tags, quests, quest_tags, claims.

Revision ID: 001
Revises:
Create Date: 2026-10-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AMOUNT = sa.Numeric(38, 18)


def upgrade() -> None:
    # --- Users ---
    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("wallet_address", sa.Text(), nullable=False, unique=True),
        sa.Column("username", sa.Text()),
        sa.Column("email", sa.Text(), unique=True),
        sa.Column("xp", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("level", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("xp >= 0", name="ck_user_xp"),
        sa.CheckConstraint("level >= 1", name="ck_user_level"),
    )
    op.create_index("idx_users_xp", "users", ["xp"])

    # --- Tags ---
    op.create_table(
        "tags",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    # --- Quests ---
    op.create_table(
        "quests",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("github_url", sa.Text()),
        sa.Column("type", sa.Text(), nullable=False, server_default=sa.text("'REGULAR'")),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'OPEN'")),
        sa.Column("expiry", sa.DateTime(timezone=True)),
        sa.Column("reward_amount", AMOUNT, nullable=False),
        sa.Column("supplied_funds", AMOUNT, nullable=False),
        sa.Column("funds_released", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("transaction_hash", sa.Text()),
        sa.Column("creator_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("type IN ('REGULAR','TIME_BASED')", name="ck_quest_type"),
        sa.CheckConstraint("status IN ('OPEN','COMPLETED','EXPIRED')", name="ck_quest_status"),
        sa.CheckConstraint("supplied_funds >= reward_amount", name="ck_quest_funds_cover_reward"),
        sa.CheckConstraint("(type = 'TIME_BASED') = (expiry IS NOT NULL)", name="ck_quest_expiry"),
        sa.CheckConstraint("NOT funds_released OR status = 'COMPLETED'", name="ck_quest_released_completed"),
    )
    op.create_index("idx_quests_status", "quests", ["status"])
    op.create_index("idx_quests_creator", "quests", ["creator_id"])
    op.create_index("idx_quests_expiry", "quests", ["status", "type", "expiry"])

    # --- Quest Tags ---
    op.create_table(
        "quest_tags",
        sa.Column("quest_id", UUID(as_uuid=True), sa.ForeignKey("quests.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("tag_id", UUID(as_uuid=True), sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    )

    # --- Claims ---
    op.create_table(
        "claims",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("quest_id", UUID(as_uuid=True), sa.ForeignKey("quests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("proof_url", sa.Text()),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('PENDING','APPROVED','REJECTED')", name="ck_claim_status"),
    )
    op.create_index("idx_claims_quest", "claims", ["quest_id"])
    op.create_index("idx_claims_user", "claims", ["user_id"])
    op.create_index("idx_claims_status", "claims", ["status"])
    op.execute(
        "CREATE UNIQUE INDEX uq_claims_active_per_user ON claims (quest_id, user_id) "
        "WHERE status IN ('PENDING','APPROVED')"
    )


def downgrade() -> None:
    op.drop_index("uq_claims_active_per_user", table_name="claims")
    op.drop_table("claims")
    op.drop_table("quest_tags")
    op.drop_table("quests")
    op.drop_table("tags")
    op.drop_table("users")
