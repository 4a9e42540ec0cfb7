"""Create run trace, artifact and vault tables

Revision ID: 4e1a9c27b3d5
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4e1a9c27b3d5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'runs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.CheckConstraint("status IN ('running', 'ok', 'error', 'partial')", name='ck_runs_status'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_runs_kind'), 'runs', ['kind'], unique=False)
    op.create_index(op.f('ix_runs_started_at'), 'runs', ['started_at'], unique=False)

    op.create_table(
        'run_steps',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.Uuid(), nullable=False),
        sa.Column('step_type', sa.String(16), nullable=True),
        sa.Column('step_name', sa.String(255), nullable=False),
        sa.Column('tool_name', sa.String(255), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('input', sa.JSON(), nullable=True),
        sa.Column('output', sa.JSON(), nullable=True),
        sa.Column('error', sa.JSON(), nullable=True),
        sa.Column('token_estimate', sa.Integer(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint("status IN ('running', 'ok', 'error', 'skipped')", name='ck_run_steps_status'),
        sa.ForeignKeyConstraint(['run_id'], ['runs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_run_steps_run_id_started_at', 'run_steps', ['run_id', 'started_at'], unique=False)

    op.create_table(
        'artifacts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('run_id', sa.Uuid(), nullable=True),
        sa.Column('agent', sa.String(64), nullable=False),
        sa.Column('kind', sa.String(64), nullable=False),
        sa.Column('day', sa.String(10), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('content', sa.JSON(), nullable=False),
        sa.Column('source_refs', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "status IN ('proposed', 'approved', 'rejected', 'superseded')", name='ck_artifacts_status'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_artifacts_run_id'), 'artifacts', ['run_id'], unique=False)
    op.create_index(
        'ix_artifacts_agent_kind_day_status', 'artifacts', ['agent', 'kind', 'day', 'status'], unique=False
    )
    op.create_index('ix_artifacts_day_status', 'artifacts', ['day', 'status'], unique=False)
    op.create_index(
        'uq_artifacts_approved_key',
        'artifacts',
        ['agent', 'kind', 'day'],
        unique=True,
        postgresql_where=sa.text("status = 'approved'"),
        sqlite_where=sa.text("status = 'approved'"),
    )

    op.create_table(
        'documents',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('source', sa.String(32), nullable=False),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('category', sa.String(64), nullable=True),
        sa.Column('content_hash', sa.String(64), nullable=True),
        sa.Column('imported_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('url'),
        sa.UniqueConstraint('content_hash')
    )
    op.create_index(op.f('ix_documents_imported_at'), 'documents', ['imported_at'], unique=False)

    op.create_table(
        'document_tags',
        sa.Column('document_id', sa.Uuid(), nullable=False),
        sa.Column('tag', sa.String(64), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('document_id', 'tag')
    )
    op.create_index(op.f('ix_document_tags_tag'), 'document_tags', ['tag'], unique=False)

    op.create_table(
        'concepts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('document_id', sa.Uuid(), nullable=False),
        sa.Column('label', sa.String(100), nullable=False),
        sa.Column('type', sa.String(16), nullable=False),
        sa.Column('summary', sa.Text(), nullable=False),
        sa.Column('evidence', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "type IN ('definition', 'principle', 'framework', 'procedure', 'fact')", name='ck_concepts_type'
        ),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_concepts_document_id'), 'concepts', ['document_id'], unique=False)

    op.create_table(
        'flashcards',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('document_id', sa.Uuid(), nullable=False),
        sa.Column('concept_id', sa.Uuid(), nullable=True),
        sa.Column('format', sa.String(8), nullable=False),
        sa.Column('front', sa.Text(), nullable=False),
        sa.Column('back', sa.Text(), nullable=False),
        sa.Column('citations', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint("format IN ('qa', 'cloze')", name='ck_flashcards_format'),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['concept_id'], ['concepts.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_flashcards_document_id'), 'flashcards', ['document_id'], unique=False)
    op.create_index(op.f('ix_flashcards_concept_id'), 'flashcards', ['concept_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_flashcards_concept_id'), table_name='flashcards')
    op.drop_index(op.f('ix_flashcards_document_id'), table_name='flashcards')
    op.drop_table('flashcards')
    op.drop_index(op.f('ix_concepts_document_id'), table_name='concepts')
    op.drop_table('concepts')
    op.drop_index(op.f('ix_document_tags_tag'), table_name='document_tags')
    op.drop_table('document_tags')
    op.drop_index(op.f('ix_documents_imported_at'), table_name='documents')
    op.drop_table('documents')
    op.drop_index('uq_artifacts_approved_key', table_name='artifacts')
    op.drop_index('ix_artifacts_day_status', table_name='artifacts')
    op.drop_index('ix_artifacts_agent_kind_day_status', table_name='artifacts')
    op.drop_index(op.f('ix_artifacts_run_id'), table_name='artifacts')
    op.drop_table('artifacts')
    op.drop_index('ix_run_steps_run_id_started_at', table_name='run_steps')
    op.drop_table('run_steps')
    op.drop_index(op.f('ix_runs_started_at'), table_name='runs')
    op.drop_index(op.f('ix_runs_kind'), table_name='runs')
    op.drop_table('runs')
