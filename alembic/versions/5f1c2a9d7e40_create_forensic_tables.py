"""create forensic case tables

Revision ID: 5f1c2a9d7e40
Revises:
Create Date: 2026-10-19 09:12:41.310522

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5f1c2a9d7e40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('cases',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('user_id', sa.String(), nullable=False, comment='Supabase auth user id'),
    sa.Column('cache_id', sa.String(), nullable=True, comment='Gemini cachedContents name'),
    sa.Column('cache_expires_at', sa.TIMESTAMP(timezone=True), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=True),
    sa.PrimaryKeyConstraint('id'),
    comment='Investigation containers'
    )
    op.create_index(op.f('ix_cases_user_id'), 'cases', ['user_id'], unique=False)

    op.create_table('evidence',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('case_id', sa.UUID(), nullable=False),
    sa.Column('file_path', sa.String(), nullable=False, comment='Storage key inside the evidence bucket'),
    sa.Column('file_type', sa.String(), nullable=False, comment='Top-level MIME type: application, image, audio, video'),
    sa.Column('mime_type', sa.String(), nullable=False),
    sa.Column('file_size', sa.Integer(), nullable=False),
    sa.Column('token_count', sa.Integer(), nullable=True),
    sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='originalName plus forensic extraction output'),
    sa.Column('processing_status', sa.String(), nullable=False, server_default='pending'),
    sa.Column('processing_attempts', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=True),
    sa.CheckConstraint("processing_status IN ('pending', 'processing', 'done', 'failed')", name='ck_evidence_processing_status'),
    sa.ForeignKeyConstraint(['case_id'], ['cases.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    comment='Uploaded evidence files'
    )
    op.create_index(op.f('ix_evidence_case_id'), 'evidence', ['case_id'], unique=False)

    op.create_table('analyses',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('case_id', sa.UUID(), nullable=False),
    sa.Column('query', sa.Text(), nullable=False),
    sa.Column('thought_signature', sa.Text(), nullable=True),
    sa.Column('thoughts', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('result', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('citations', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['case_id'], ['cases.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    comment='Persisted reasoning queries'
    )
    op.create_index(op.f('ix_analyses_case_id'), 'analyses', ['case_id'], unique=False)

    op.create_table('contradictions',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('analysis_id', sa.UUID(), nullable=False),
    sa.Column('case_id', sa.UUID(), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('severity', sa.String(), nullable=False, server_default='medium'),
    sa.Column('evidence_a_id', sa.UUID(), nullable=True),
    sa.Column('evidence_b_id', sa.UUID(), nullable=True),
    sa.Column('timestamps', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name='ck_contradictions_severity'),
    sa.ForeignKeyConstraint(['analysis_id'], ['analyses.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['case_id'], ['cases.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['evidence_a_id'], ['evidence.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['evidence_b_id'], ['evidence.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id'),
    comment='Inconsistencies found between evidence items'
    )
    op.create_index(op.f('ix_contradictions_analysis_id'), 'contradictions', ['analysis_id'], unique=False)
    op.create_index(op.f('ix_contradictions_case_id'), 'contradictions', ['case_id'], unique=False)

    op.create_table('audit_logs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('case_id', sa.UUID(), nullable=False),
    sa.Column('user_id', sa.String(), nullable=False),
    sa.Column('action', sa.String(), nullable=False, comment='evidence_upload, evidence_processed, ...'),
    sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['case_id'], ['cases.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    comment='Append-only case activity log'
    )
    op.create_index(op.f('ix_audit_logs_case_id'), 'audit_logs', ['case_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_audit_logs_case_id'), table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index(op.f('ix_contradictions_case_id'), table_name='contradictions')
    op.drop_index(op.f('ix_contradictions_analysis_id'), table_name='contradictions')
    op.drop_table('contradictions')
    op.drop_index(op.f('ix_analyses_case_id'), table_name='analyses')
    op.drop_table('analyses')
    op.drop_index(op.f('ix_evidence_case_id'), table_name='evidence')
    op.drop_table('evidence')
    op.drop_index(op.f('ix_cases_user_id'), table_name='cases')
    op.drop_table('cases')
