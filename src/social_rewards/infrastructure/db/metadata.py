"""SQLAlchemy metadata definitions for social rewards tables."""

from __future__ import annotations

import sqlalchemy as sa

metadata = sa.MetaData()
sqlite_bigint = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

pending_auths = sa.Table(
    "pending_auths",
    metadata,
    sa.Column("state", sa.String(64), primary_key=True, nullable=False),
    sa.Column("code_verifier", sa.String(128), nullable=False),
    sa.Column("subject_key", sa.String(100), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
)
sa.Index("ix_pending_auths_expires_at", pending_auths.c.expires_at)

x_credentials = sa.Table(
    "x_credentials",
    metadata,
    sa.Column("subject_key", sa.String(100), primary_key=True, nullable=False),
    sa.Column("access_token", sa.Text(), nullable=False),
    sa.Column("refresh_token", sa.Text(), nullable=True),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    ),
)

x_identities = sa.Table(
    "x_identities",
    metadata,
    sa.Column("external_user_id", sa.String(60), primary_key=True, nullable=False),
    sa.Column("subject_key", sa.String(100), nullable=False),
    sa.Column("handle", sa.String(50), nullable=False),
    sa.Column("display_name", sa.String(100), nullable=True),
    sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
)
sa.Index("ix_x_identities_subject_key", x_identities.c.subject_key)
sa.Index("ix_x_identities_handle", x_identities.c.handle)
sa.Index("ix_x_identities_is_verified", x_identities.c.is_verified)

verification_records = sa.Table(
    "verification_records",
    metadata,
    sa.Column("id", sqlite_bigint, primary_key=True, autoincrement=True),
    sa.Column("subject_key", sa.String(100), nullable=False),
    sa.Column("external_user_id", sa.String(60), nullable=False),
    sa.Column("handle", sa.String(50), nullable=False),
    sa.Column("followed_target", sa.Boolean(), nullable=False),
    sa.Column("posted_required_phrase", sa.Boolean(), nullable=False),
    sa.Column("matched_post_id", sa.String(60), nullable=True),
    sa.Column("points", sa.Integer(), nullable=False),
    sa.Column("follow_error", sa.Text(), nullable=True),
    sa.Column("post_error", sa.Text(), nullable=True),
    sa.Column("verified_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.CheckConstraint("points >= 0", name="ck_verification_records_points_non_negative"),
)
sa.Index(
    "ix_verification_records_subject_key_id",
    verification_records.c.subject_key,
    verification_records.c.id,
)

leaderboard_entries = sa.Table(
    "leaderboard_entries",
    metadata,
    sa.Column("external_user_id", sa.String(60), primary_key=True, nullable=False),
    sa.Column("points", sa.Integer(), nullable=False, server_default=sa.text("0")),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("last_scan_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("last_ribbit_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("last_ribbit_tag_at", sa.DateTime(timezone=True), nullable=True),
)
sa.Index(
    "ix_leaderboard_entries_points_updated_at",
    leaderboard_entries.c.points,
    leaderboard_entries.c.updated_at,
)

score_events = sa.Table(
    "score_events",
    metadata,
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
sa.Index(
    "ix_score_events_user_kind_created_at",
    score_events.c.external_user_id,
    score_events.c.kind,
    score_events.c.created_at,
)
sa.Index(
    "ux_score_events_user_one_time_kind",
    score_events.c.external_user_id,
    score_events.c.kind,
    unique=True,
    sqlite_where=sa.text("kind IN ('follow_ok', 'reply_ok')"),
    postgresql_where=sa.text("kind IN ('follow_ok', 'reply_ok')"),
)

audit_events = sa.Table(
    "audit_events",
    metadata,
    sa.Column("id", sqlite_bigint, primary_key=True, autoincrement=True),
    sa.Column("subject_key", sa.String(100), nullable=True),
    sa.Column("external_user_id", sa.String(60), nullable=True),
    sa.Column("event_type", sa.Text(), nullable=False),
    sa.Column("payload", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
    sa.Column(
        "occurred_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    ),
)
sa.Index(
    "ix_audit_events_subject_key_occurred_at",
    audit_events.c.subject_key,
    audit_events.c.occurred_at,
)
sa.Index(
    "ix_audit_events_event_type_occurred_at",
    audit_events.c.event_type,
    audit_events.c.occurred_at,
)
