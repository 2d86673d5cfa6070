"""Portal access tokens (magic-link sign-in for stakeholders)

Revision ID: c7e2b9f41d06
Revises: a1c4e7d2f9b3
Create Date: 2026-10-19T15:40:02.512390
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'c7e2b9f41d06'
down_revision: Union[str, None] = 'a1c4e7d2f9b3'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'portal_access_tokens',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('space_id', sa.String(), sa.ForeignKey('spaces.id'), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('token', sa.String(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_portal_access_tokens_space_id', 'portal_access_tokens', ['space_id'])
    op.create_index('ix_portal_access_tokens_token', 'portal_access_tokens', ['token'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_portal_access_tokens_token', table_name='portal_access_tokens')
    op.drop_index('ix_portal_access_tokens_space_id', table_name='portal_access_tokens')
    op.drop_table('portal_access_tokens')
