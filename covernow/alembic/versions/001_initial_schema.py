"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000 UTC

Creates the three core tables:
  - user_profile    (one row per user; issues list + derived has_issues)
  - conversations   (token_count + the single staged profile update)
  - messages        (user/assistant turns; assistant tool calls paired with results)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    # --- user_profile table ---
    op.create_table(
        "user_profile",
        sa.Column("user_id", sa.String(length=36), nullable=False, comment="Authenticated user id — immutable"),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("dob", sa.Date(), nullable=True, comment="Date of birth — strictly in the past. Age is derived from this."),
        sa.Column("gender", sa.String(length=50), nullable=True, comment="Free-form, stored verbatim exactly as the user stated it"),
        sa.Column("is_married", sa.Boolean(), nullable=True),
        sa.Column("annual_income", sa.Float(), nullable=True, comment="Annual income in rupees (base units, never lakhs/crores)"),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("occupation", sa.String(length=100), nullable=True),
        sa.Column("smoking_status", sa.Boolean(), nullable=True),
        sa.Column("coverage_amount", sa.Float(), nullable=True, comment="Desired life cover in rupees (base units)"),
        sa.Column("policy_term", sa.Integer(), nullable=True, comment="Desired policy term in years (5-40)"),
        sa.Column("issues", JSONType, nullable=False, comment="Ordered, case-insensitive-unique list of health issues"),
        sa.Column("has_issues", sa.Boolean(), nullable=False, comment="Derived: len(issues) > 0. Recomputed on every issues write."),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )

    # --- conversations table ---
    op.create_table(
        "conversations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("token_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_confirmation", JSONType, nullable=True, comment="Full proposed profile update awaiting a yes/no"),
        sa.Column("pending_confirmation_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_conversations_user_id"), "conversations", ["user_id"], unique=False)

    # --- messages table ---
    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("conversation_id", sa.String(length=36), nullable=False),
        sa.Column("role", sa.String(length=10), nullable=False, comment="'user' or 'assistant'"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("tool_calls", JSONType, nullable=True, comment="Tool calls paired with their results"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_messages_conversation_id"), "messages", ["conversation_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_messages_conversation_id"), table_name="messages")
    op.drop_table("messages")
    op.drop_index(op.f("ix_conversations_user_id"), table_name="conversations")
    op.drop_table("conversations")
    op.drop_table("user_profile")
