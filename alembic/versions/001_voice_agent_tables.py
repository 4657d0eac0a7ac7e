"""Add agents and meetings tables.

Revision ID: 001_voice_agent_tables
Revises:
Create Date: 2026-10-19

Creates two tables:
- agents: AI agents with their system instructions
- meetings: Meetings backed by Stream Video calls, with lifecycle status
  and transcript/recording artifact URLs

No foreign key constraints (application-level referential integrity via
repository). Status transitions are guarded by conditional UPDATEs in
MeetingRepository, so the status column carries no CHECK constraint.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_voice_agent_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── agents table ─────────────────────────────────────────────────────

    op.create_table(
        "agents",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_agents_user_id", "agents", ["user_id"])

    # ── meetings table ───────────────────────────────────────────────────

    op.create_table(
        "meetings",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("agent_id", sa.String(64), nullable=False),
        sa.Column(
            "status",
            sa.String(32),
            server_default=sa.text("'upcoming'"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transcript_url", sa.Text(), nullable=True),
        sa.Column("recording_url", sa.Text(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_meetings_user_id", "meetings", ["user_id"])
    op.create_index("idx_meetings_agent_id", "meetings", ["agent_id"])
    op.create_index("idx_meetings_status", "meetings", ["status"])


def downgrade() -> None:
    op.drop_index("idx_meetings_status", table_name="meetings")
    op.drop_index("idx_meetings_agent_id", table_name="meetings")
    op.drop_index("idx_meetings_user_id", table_name="meetings")
    op.drop_table("meetings")

    op.drop_index("idx_agents_user_id", table_name="agents")
    op.drop_table("agents")
