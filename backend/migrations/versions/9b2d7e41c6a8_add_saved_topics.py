"""Add saved topics for the topic report flow

Revision ID: 9b2d7e41c6a8
Revises: 4e1a9c27b3d5
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '9b2d7e41c6a8'
down_revision: Union[str, None] = '4e1a9c27b3d5'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'saved_topics',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('goal', sa.Text(), nullable=False),
        sa.Column('focus_tags', sa.JSON(), nullable=False),
        sa.Column('max_docs_per_run', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('min_quality_results', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('min_relevance_score', sa.Float(), nullable=False, server_default='0.8'),
        sa.Column('max_iterations', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('max_queries', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_saved_topics_is_active'), 'saved_topics', ['is_active'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_saved_topics_is_active'), table_name='saved_topics')
    op.drop_table('saved_topics')
