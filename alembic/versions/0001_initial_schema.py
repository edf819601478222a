"""Initial schema for pending auths, credentials, identities and verification history."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

sqlite_bigint = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "pending_auths",
        sa.Column("state", sa.String(64), primary_key=True, nullable=False),
        sa.Column("code_verifier", sa.String(128), nullable=False),
        sa.Column("subject_key", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_pending_auths_expires_at", "pending_auths", ["expires_at"])

    op.create_table(
        "x_credentials",
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

    op.create_table(
        "x_identities",
        sa.Column("external_user_id", sa.String(60), primary_key=True, nullable=False),
        sa.Column("subject_key", sa.String(100), nullable=False),
        sa.Column("handle", sa.String(50), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_x_identities_subject_key", "x_identities", ["subject_key"])
    op.create_index("ix_x_identities_handle", "x_identities", ["handle"])
    op.create_index("ix_x_identities_is_verified", "x_identities", ["is_verified"])

    op.create_table(
        "verification_records",
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
        sa.CheckConstraint(
            "points >= 0",
            name="ck_verification_records_points_non_negative",
        ),
    )
    op.create_index(
        "ix_verification_records_subject_key_id",
        "verification_records",
        ["subject_key", "id"],
    )


def downgrade() -> None:
    op.drop_index("ix_verification_records_subject_key_id", table_name="verification_records")
    op.drop_table("verification_records")
    op.drop_index("ix_x_identities_is_verified", table_name="x_identities")
    op.drop_index("ix_x_identities_handle", table_name="x_identities")
    op.drop_index("ix_x_identities_subject_key", table_name="x_identities")
    op.drop_table("x_identities")
    op.drop_table("x_credentials")
    op.drop_index("ix_pending_auths_expires_at", table_name="pending_auths")
    op.drop_table("pending_auths")
