"""Initial schema - users, evaluations, evaluation_assignments.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMPTY_SECTIONS = (
    '{"A": {"record": {"status": "NOT_STARTED"}}, "B": {"record": {"status": "NOT_STARTED"}}, '
    '"C": {"record": {"status": "NOT_STARTED"}}, "D": {"record": {"status": "NOT_STARTED"}}, '
    '"E": {"record": {"status": "NOT_STARTED"}}}'
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), unique=True, nullable=False),
        sa.Column("api_key_hash", sa.String(255), unique=True, nullable=False),
        sa.Column("roles", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "evaluations",
        sa.Column("evaluation_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("eval_number", sa.Text(), unique=True, nullable=False),
        sa.Column("rfq_number", sa.Text(), nullable=False),
        sa.Column("rfq_title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("due_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column(
            "sections",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text(f"'{EMPTY_SECTIONS}'::jsonb"),
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_evaluations_status", "evaluations", ["status"])

    op.create_table(
        "evaluation_assignments",
        sa.Column("assignment_id", sa.UUID(), primary_key=True),
        sa.Column(
            "evaluation_id",
            sa.Integer(),
            sa.ForeignKey("evaluations.evaluation_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("sections", postgresql.JSONB(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_evaluation_assignments_evaluation", "evaluation_assignments", ["evaluation_id"]
    )
    op.create_index("ix_evaluation_assignments_user", "evaluation_assignments", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_evaluation_assignments_user", table_name="evaluation_assignments")
    op.drop_index("ix_evaluation_assignments_evaluation", table_name="evaluation_assignments")
    op.drop_table("evaluation_assignments")
    op.drop_index("ix_evaluations_status", table_name="evaluations")
    op.drop_table("evaluations")
    op.drop_table("users")
