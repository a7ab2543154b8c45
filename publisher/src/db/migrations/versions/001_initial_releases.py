"""Initial release schema

Revision ID: 001_initial_releases
Revises:
Create Date: 2026-10-16

Creates versions and builds tables with:
- versions: one row per (version_name, release_channel), update policy columns
- builds: one row per (version_id, os, arch, type, distribution, variant)
- Foreign key builds.version_id -> versions.id with ON DELETE CASCADE
- Indexes for channel listing and slot lookups
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001_initial_releases'
down_revision = None
branch_labels = None
depends_on = None


def _uuid_type():
    return sa.LargeBinary(16).with_variant(postgresql.UUID(as_uuid=True), 'postgresql')


def _json_type():
    return sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    """Create versions and builds tables."""

    op.create_table(
        'versions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uuid', _uuid_type(), nullable=False),
        sa.Column('version_name', sa.String(length=100), nullable=False),
        sa.Column('release_channel', sa.String(length=20), nullable=False, server_default='stable'),
        sa.Column('manifest_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('release_date', sa.DateTime(), nullable=False),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_mandatory', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('release_notes', sa.Text(), nullable=True),
        sa.Column('changelog', sa.Text(), nullable=True),
        sa.Column('metadata', _json_type(), nullable=False),
        sa.Column('min_supported_version', sa.String(length=100), nullable=True),
        sa.Column('rollout_percentage', sa.Float(), nullable=False, server_default='100'),
        sa.Column('rollout_start_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rollout_end_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('storage_key_prefix', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('version_name', 'release_channel', name='uq_versions_name_channel'),
        sa.CheckConstraint(
            "release_channel IN ('stable', 'beta', 'alpha')",
            name='ck_versions_release_channel',
        ),
        sa.CheckConstraint(
            'rollout_percentage >= 0 AND rollout_percentage <= 100',
            name='ck_versions_rollout_percentage',
        ),
        sa.CheckConstraint(
            'rollout_start_at IS NULL OR rollout_end_at IS NULL '
            'OR rollout_end_at >= rollout_start_at',
            name='ck_versions_rollout_window',
        ),
    )
    op.create_index('ix_versions_uuid', 'versions', ['uuid'], unique=True)
    op.create_index(
        'ix_versions_channel_published_created',
        'versions',
        ['release_channel', 'is_published', 'created_at'],
    )

    op.create_table(
        'builds',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uuid', _uuid_type(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('os', sa.String(length=20), nullable=False),
        sa.Column('arch', sa.String(length=20), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('distribution', sa.String(length=20), nullable=True),
        sa.Column('variant', sa.String(length=50), nullable=False, server_default='default'),
        sa.Column('package_name', sa.String(length=255), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('size', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('sha256_checksum', sa.String(length=64), nullable=True),
        sa.Column('sha512_checksum', sa.String(length=128), nullable=True),
        sa.Column('platform_metadata', _json_type(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['version_id'], ['versions.id'], ondelete='CASCADE'),
        sa.UniqueConstraint(
            'version_id', 'os', 'arch', 'type', 'distribution', 'variant',
            name='uq_builds_identity',
        ),
    )
    op.create_index('ix_builds_uuid', 'builds', ['uuid'], unique=True)
    op.create_index('ix_builds_slot', 'builds', ['os', 'arch', 'type', 'distribution', 'variant'])
    op.create_index('ix_builds_version_id', 'builds', ['version_id'])


def downgrade() -> None:
    """Drop builds and versions tables."""
    op.drop_index('ix_builds_version_id', table_name='builds')
    op.drop_index('ix_builds_slot', table_name='builds')
    op.drop_index('ix_builds_uuid', table_name='builds')
    op.drop_table('builds')

    op.drop_index('ix_versions_channel_published_created', table_name='versions')
    op.drop_index('ix_versions_uuid', table_name='versions')
    op.drop_table('versions')
