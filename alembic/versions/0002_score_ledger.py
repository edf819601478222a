"""Add leaderboard entries and the score event ledger."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0002_score_ledger"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None

sqlite_bigint = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
_ONE_TIME_KINDS_PREDICATE = "kind IN ('follow_ok', 'reply_ok')"


def upgrade() -> None:
    op.create_table(
        "leaderboard_entries",
        sa.Column("external_user_id", sa.String(60), primary_key=True, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_scan_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_ribbit_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_ribbit_tag_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_leaderboard_entries_points_updated_at",
        "leaderboard_entries",
        ["points", "updated_at"],
    )

    op.create_table(
        "score_events",
        sa.Column("id", sqlite_bigint, primary_key=True, autoincrement=True),
        sa.Column(
            "external_user_id",
            sa.String(60),
            sa.ForeignKey("leaderboard_entries.external_user_id"),
            nullable=False,
        ),
        sa.Column("kind", sa.String(40), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("evidence_ref", sa.String(60), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "kind IN ('follow_ok', 'reply_ok', 'ribbit', 'ribbit_tag')",
            name="ck_score_events_kind",
        ),
        sa.CheckConstraint("delta > 0", name="ck_score_events_delta_positive"),
    )
    op.create_index(
        "ix_score_events_user_kind_created_at",
        "score_events",
        ["external_user_id", "kind", "created_at"],
    )
    op.create_index(
        "ux_score_events_user_one_time_kind",
        "score_events",
        ["external_user_id", "kind"],
        unique=True,
        sqlite_where=sa.text(_ONE_TIME_KINDS_PREDICATE),
        postgresql_where=sa.text(_ONE_TIME_KINDS_PREDICATE),
    )


def downgrade() -> None:
    op.drop_index("ux_score_events_user_one_time_kind", table_name="score_events")
    op.drop_index("ix_score_events_user_kind_created_at", table_name="score_events")
    op.drop_table("score_events")
    op.drop_index("ix_leaderboard_entries_points_updated_at", table_name="leaderboard_entries")
    op.drop_table("leaderboard_entries")
