"""contest core tables

Revision ID: 0001_contest_core
Revises:
Create Date: 2026-10-01 00:00:00

"""
from alembic import op
import sqlalchemy as sa

revision = "0001_contest_core"
down_revision = None
branch_labels = None
depends_on = None

ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "contests",
        sa.Column("id", ID, primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("prize_count", sa.Integer(), nullable=False),
        sa.Column(
            "state",
            sa.Enum(
                "open",
                "committed",
                "revealed",
                "finalized",
                name="contest_state",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("commit_hash", sa.String(128), nullable=True),
        sa.Column("committed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("roster_digest", sa.String(128), nullable=True),
        sa.Column("reveal_value", sa.Text(), nullable=True),
        sa.Column("revealed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("slug", name="uq_contests_slug"),
    )

    op.create_table(
        "contest_participants",
        sa.Column("id", ID, primary_key=True, autoincrement=True),
        sa.Column(
            "contest_id",
            ID,
            sa.ForeignKey("contests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("participant_key", sa.String(128), nullable=False),
        sa.Column("roster_index", sa.Integer(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metrics_snapshot", sa.JSON(), nullable=True),
        sa.UniqueConstraint(
            "contest_id", "participant_key", name="uq_contest_participant_key"
        ),
        sa.UniqueConstraint(
            "contest_id", "roster_index", name="uq_contest_participant_roster_index"
        ),
    )
    op.create_index(
        "ix_contest_participants_contest_id", "contest_participants", ["contest_id"]
    )

    op.create_table(
        "contest_prize_tiers",
        sa.Column("id", ID, primary_key=True, autoincrement=True),
        sa.Column(
            "contest_id",
            ID,
            sa.ForeignKey("contests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("reward_payload", sa.JSON(), nullable=False),
        sa.UniqueConstraint("contest_id", "position", name="uq_prize_tier_position"),
    )
    op.create_index(
        "ix_contest_prize_tiers_contest_id", "contest_prize_tiers", ["contest_id"]
    )

    op.create_table(
        "contest_prizes",
        sa.Column("id", ID, primary_key=True, autoincrement=True),
        sa.Column(
            "contest_id",
            ID,
            sa.ForeignKey("contests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("participant_key", sa.String(128), nullable=False),
        sa.Column("reward_payload", sa.JSON(), nullable=False),
        sa.Column(
            "claimed", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("contest_id", "position", name="uq_contest_prize_position"),
        sa.UniqueConstraint(
            "contest_id", "participant_key", name="uq_contest_prize_participant"
        ),
    )
    op.create_index("ix_contest_prizes_contest_id", "contest_prizes", ["contest_id"])
    op.create_index(
        "ix_contest_prizes_participant_key", "contest_prizes", ["participant_key"]
    )
    op.create_index(
        "ix_contest_prizes_claimed", "contest_prizes", ["participant_key", "claimed"]
    )

    op.create_table(
        "contest_audit_log",
        sa.Column("id", ID, primary_key=True, autoincrement=True),
        sa.Column(
            "contest_id",
            ID,
            sa.ForeignKey("contests.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
    )
    op.create_index(
        "ix_contest_audit_log_contest_id", "contest_audit_log", ["contest_id"]
    )
    op.create_index("ix_contest_audit_log_action", "contest_audit_log", ["action"])
    op.create_index(
        "ix_contest_audit_log_order",
        "contest_audit_log",
        ["contest_id", "occurred_at", "id"],
    )


def downgrade() -> None:
    op.drop_table("contest_audit_log")
    op.drop_table("contest_prizes")
    op.drop_table("contest_prize_tiers")
    op.drop_table("contest_participants")
    op.drop_table("contests")
