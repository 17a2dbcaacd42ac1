from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    remote_state_enum = sa.Enum("uploading", "preparing", "ready", "errored", name="remotestate")

    op.create_table(
        "asset_records",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("content_hash", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("source_file", sa.String(length=1024), nullable=False),
        sa.Column("provider_refs", sa.JSON(), nullable=False),
        sa.Column("playback_ref", sa.String(length=255), nullable=True),
        sa.Column("placeholder", sa.Text(), nullable=False),
        sa.Column("preview_ref", sa.String(length=1024), nullable=True),
        sa.Column("source_ref", sa.JSON(), nullable=True),
        sa.Column("duration_s", sa.Float(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("remote_state", remote_state_enum, nullable=False, server_default="uploading"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("content_hash", name="uq_asset_records_content_hash"),
    )
    op.create_index("ix_asset_records_remote_state", "asset_records", ["remote_state"])

    op.create_table(
        "catalog_locks",
        sa.Column("name", sa.String(length=64), primary_key=True),
        sa.Column("holder", sa.String(length=128), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("catalog_locks")
    op.drop_index("ix_asset_records_remote_state", table_name="asset_records")
    op.drop_table("asset_records")

    sa.Enum(name="remotestate").drop(op.get_bind(), checkfirst=True)
