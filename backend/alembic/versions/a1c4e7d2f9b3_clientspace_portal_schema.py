"""Clientspace portal schema (spaces, pages, blocks, responses, files, activity)

Revision ID: a1c4e7d2f9b3
Revises:
Create Date: 2026-10-19T09:12:44.118204
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1c4e7d2f9b3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- organisations ---
    op.create_table(
        'organisations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )
    op.create_index('ix_organisations_name', 'organisations', ['name'])
    op.create_index('ix_organisations_slug', 'organisations', ['slug'])

    # --- users (staff) ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False, server_default=''),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('organisation_id', sa.String(), sa.ForeignKey('organisations.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_organisation_id', 'users', ['organisation_id'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])

    # --- spaces ---
    op.create_table(
        'spaces',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organisation_id', sa.String(), sa.ForeignKey('organisations.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('client_name', sa.String(), nullable=True),
        sa.Column('status', sa.Enum('draft', 'active', 'completed', 'archived', name='spacestatus'), nullable=False, server_default='draft'),
        sa.Column('access_mode', sa.Enum('restricted', 'public', name='accessmode'), nullable=False, server_default='restricted'),
        sa.Column('access_password_hash', sa.String(), nullable=True),
        sa.Column('welcome_popup', sa.JSON(), nullable=True),
        sa.Column('target_go_live_date', sa.Date(), nullable=True),
        sa.Column('engagement_score', sa.Integer(), nullable=True),
        sa.Column('engagement_level', sa.String(), nullable=True),
        sa.Column('engagement_factors', sa.JSON(), nullable=True),
        sa.Column('engagement_calculated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_spaces_organisation_id', 'spaces', ['organisation_id'])
    op.create_index('ix_spaces_status', 'spaces', ['status'])
    op.create_index('idx_space_org_status', 'spaces', ['organisation_id', 'status'])

    # --- space_members ---
    op.create_table(
        'space_members',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('space_id', sa.String(), sa.ForeignKey('spaces.id'), nullable=False),
        sa.Column('invited_email', sa.String(), nullable=False),
        sa.Column('role', sa.Enum('owner', 'editor', 'viewer', 'stakeholder', name='memberrole'), nullable=False, server_default='stakeholder'),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('welcome_popup_dismissed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_space_members_space_id', 'space_members', ['space_id'])
    op.create_index('ix_space_members_user_id', 'space_members', ['user_id'])
    op.create_index('idx_member_space_email', 'space_members', ['space_id', 'invited_email'])
    op.create_index('idx_member_space_user', 'space_members', ['space_id', 'user_id'])

    # --- pages ---
    op.create_table(
        'pages',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('space_id', sa.String(), sa.ForeignKey('spaces.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_visible', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('space_id', 'slug', name='uq_page_space_slug'),
    )
    op.create_index('ix_pages_space_id', 'pages', ['space_id'])

    # --- blocks ---
    op.create_table(
        'blocks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('page_id', sa.String(), sa.ForeignKey('pages.id'), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('content', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_blocks_page_id', 'blocks', ['page_id'])
    op.create_index('ix_blocks_type', 'blocks', ['type'])
    op.create_index('idx_block_page_order', 'blocks', ['page_id', 'sort_order'])

    # --- responses (one per block, versioned) ---
    op.create_table(
        'responses',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('block_id', sa.String(), sa.ForeignKey('blocks.id'), nullable=False),
        sa.Column('value', sa.JSON(), nullable=True),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_responses_block_id', 'responses', ['block_id'], unique=True)

    # --- tasks (legacy single-item task blocks) ---
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('block_id', sa.String(), sa.ForeignKey('blocks.id'), nullable=False),
        sa.Column('status', sa.Enum('pending', 'completed', name='taskstatus'), nullable=False, server_default='pending'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_block_id', 'tasks', ['block_id'], unique=True)

    # --- files ---
    op.create_table(
        'files',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('block_id', sa.String(), sa.ForeignKey('blocks.id'), nullable=False),
        sa.Column('space_id', sa.String(), sa.ForeignKey('spaces.id'), nullable=False),
        sa.Column('original_name', sa.String(), nullable=False),
        sa.Column('mime_type', sa.String(), nullable=True),
        sa.Column('size_bytes', sa.BigInteger(), nullable=True, server_default='0'),
        sa.Column('storage_path', sa.String(), nullable=False),
        sa.Column('uploaded_by_email', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_files_block_id', 'files', ['block_id'])
    op.create_index('ix_files_space_id', 'files', ['space_id'])
    op.create_index('ix_files_created_at', 'files', ['created_at'])

    # --- activity_log (append-only) ---
    op.create_table(
        'activity_log',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('space_id', sa.String(), sa.ForeignKey('spaces.id'), nullable=False),
        sa.Column('actor_email', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('resource_type', sa.String(), nullable=True),
        sa.Column('resource_id', sa.String(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_activity_log_space_id', 'activity_log', ['space_id'])
    op.create_index('ix_activity_log_action', 'activity_log', ['action'])
    op.create_index('ix_activity_log_created_at', 'activity_log', ['created_at'])
    op.create_index('idx_activity_space_created', 'activity_log', ['space_id', 'created_at'])
    op.create_index('idx_activity_space_actor', 'activity_log', ['space_id', 'actor_email'])


def downgrade() -> None:
    op.drop_table('activity_log')
    op.drop_table('files')
    op.drop_table('tasks')
    op.drop_table('responses')
    op.drop_table('blocks')
    op.drop_table('pages')
    op.drop_table('space_members')
    op.drop_table('spaces')
    op.drop_table('users')
    op.drop_table('organisations')
    op.execute("DROP TYPE IF EXISTS taskstatus")
    op.execute("DROP TYPE IF EXISTS memberrole")
    op.execute("DROP TYPE IF EXISTS accessmode")
    op.execute("DROP TYPE IF EXISTS spacestatus")
