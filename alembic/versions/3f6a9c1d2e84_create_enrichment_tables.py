"""Create enrichment tables: creators, companies, connected_accounts, community_memberships, profile_records

Revision ID: 3f6a9c1d2e84
Revises:
Create Date: 2026-10-12 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f6a9c1d2e84'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _social_columns():
    return [
        sa.Column('instagram', sa.Text(), nullable=True),
        sa.Column('tiktok', sa.Text(), nullable=True),
        sa.Column('youtube', sa.Text(), nullable=True),
        sa.Column('avatar', sa.Text(), nullable=True),
        sa.Column('instagram_followers', sa.Integer(), nullable=True),
        sa.Column('instagram_following', sa.Integer(), nullable=True),
        sa.Column('instagram_posts', sa.Integer(), nullable=True),
        sa.Column('instagram_bio', sa.Text(), nullable=True),
        sa.Column('instagram_verified', sa.Boolean(), nullable=True),
        sa.Column('instagram_profile_pic', sa.Text(), nullable=True),
        sa.Column('instagram_top_posts', sa.JSON(), nullable=True),
        sa.Column('instagram_last_updated', sa.DateTime(), nullable=True),
        sa.Column('tiktok_followers', sa.Integer(), nullable=True),
        sa.Column('tiktok_bio', sa.Text(), nullable=True),
        sa.Column('tiktok_last_updated', sa.DateTime(), nullable=True),
        sa.Column('youtube_subscribers', sa.Integer(), nullable=True),
        sa.Column('youtube_description', sa.Text(), nullable=True),
        sa.Column('youtube_last_updated', sa.DateTime(), nullable=True),
        sa.Column('enrichment_score', sa.Integer(), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('creators',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('role', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        *_social_columns(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table('companies',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('website', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        *_social_columns(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table('connected_accounts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('creator_id', sa.Integer(), nullable=True),
        sa.Column('username', sa.Text(), nullable=False),
        sa.Column('platform_user_id', sa.Text(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('connected_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['creator_id'], ['creators.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_connected_accounts_is_active', 'connected_accounts', ['is_active'])

    op.create_table('community_memberships',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=True),
        sa.Column('instagram_handle', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['creator_id'], ['creators.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_community_memberships_status', 'community_memberships', ['status'])

    op.create_table('profile_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('username', sa.Text(), nullable=False),
        sa.Column('owner_type', sa.Text(), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=True),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('full_name', sa.Text(), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('followers', sa.Integer(), nullable=True),
        sa.Column('following', sa.Integer(), nullable=True),
        sa.Column('posts_count', sa.Integer(), nullable=True),
        sa.Column('external_url', sa.Text(), nullable=True),
        sa.Column('profile_pic_original_url', sa.Text(), nullable=True),
        sa.Column('profile_pic_storage_path', sa.Text(), nullable=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False),
        sa.Column('is_private', sa.Boolean(), nullable=False),
        sa.Column('engagement_rate', sa.Float(), nullable=True),
        sa.Column('top_hashtags', sa.JSON(), nullable=True),
        sa.Column('top_posts', sa.JSON(), nullable=True),
        sa.Column('last_fetched_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', 'owner_type', name='uq_profile_record_username_owner'),
        sa.CheckConstraint("owner_type IN ('creator', 'company', 'external')", name='ck_profile_record_owner_type'),
    )
    op.create_index('ix_profile_records_last_fetched_at', 'profile_records', ['last_fetched_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_profile_records_last_fetched_at', table_name='profile_records')
    op.drop_table('profile_records')
    op.drop_index('ix_community_memberships_status', table_name='community_memberships')
    op.drop_table('community_memberships')
    op.drop_index('ix_connected_accounts_is_active', table_name='connected_accounts')
    op.drop_table('connected_accounts')
    op.drop_table('companies')
    op.drop_table('creators')
