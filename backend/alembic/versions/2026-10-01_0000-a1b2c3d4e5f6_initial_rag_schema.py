"""initial_rag_schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from brandforge.core.config import settings

# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member NAMES (SQLAlchemy's default for Enum classes)
content_type_enum = postgresql.ENUM(
    'BRAND_PROFILE', 'SOCIAL_MEDIA', 'BLOG_POST', 'SAVED_IMAGE', 'AD_CAMPAIGN',
    name='contenttype',
    create_type=False,
)
job_scope_enum = postgresql.ENUM(
    'ALL_USERS', 'SINGLE_USER', 'CONTENT_TYPE',
    name='jobscope',
    create_type=False,
)
job_status_enum = postgresql.ENUM(
    'PENDING', 'RUNNING', 'PAUSED', 'COMPLETED', 'FAILED',
    name='jobstatus',
    create_type=False,
)


def _timestamps() -> list:
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='Auto-incrementing primary key'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was created (UTC)'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was last updated (UTC)'),
    ]


def upgrade() -> None:
    """
    Create the RAG engine schema.

    Tables:
    1. users - accounts (admin flag gates job control)
    2. source_documents - raw content records per user
    3. content_vectors - embedded content with ranking metadata
    4. admin_jobs - vectorization job registry
    5. job_scope_locks - one live job per scope key

    Content vectors get an HNSW index for cosine search.
    """
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    bind = op.get_bind()
    content_type_enum.create(bind, checkfirst=True)
    job_scope_enum.create(bind, checkfirst=True)
    job_status_enum.create(bind, checkfirst=True)

    # ================================
    # users
    # ================================
    op.create_table(
        'users',
        *_timestamps(),
        sa.Column('email', sa.String(length=255), nullable=False, comment="User's email address. Must be unique."),
        sa.Column('name', sa.String(length=100), nullable=False, comment="User's display name"),
        sa.Column('brand_name', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_users')),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    # ================================
    # source_documents
    # ================================
    op.create_table(
        'source_documents',
        *_timestamps(),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('content_type', content_type_enum, nullable=False),
        sa.Column('collection', sa.String(length=50), nullable=False),
        sa.Column('doc_id', sa.String(length=100), nullable=False),
        sa.Column('data', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name=op.f('fk_source_documents_user_id_users'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_source_documents')),
        sa.UniqueConstraint('user_id', 'content_type', 'doc_id', name='uq_source_documents_user_type_doc'),
    )
    op.create_index(op.f('ix_source_documents_user_id'), 'source_documents', ['user_id'])
    op.create_index(op.f('ix_source_documents_content_type'), 'source_documents', ['content_type'])

    # ================================
    # content_vectors
    # ================================
    op.create_table(
        'content_vectors',
        *_timestamps(),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('content_type', content_type_enum, nullable=False),
        sa.Column('content_id', sa.String(length=255), nullable=False),
        sa.Column('source_collection', sa.String(length=50), nullable=False),
        sa.Column('source_doc_id', sa.String(length=100), nullable=False),
        sa.Column('text_content', sa.Text(), nullable=False),
        sa.Column('industry', sa.String(length=100), nullable=True),
        sa.Column('style', sa.String(length=100), nullable=True),
        sa.Column('platform', sa.String(length=50), nullable=True),
        sa.Column('language', sa.String(length=10), nullable=True),
        sa.Column('performance', sa.Float(), nullable=False, server_default='0.5'),
        sa.Column('engagement', sa.Float(), nullable=False, server_default='0'),
        sa.Column('tags', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('content_created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('content_updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('interactive', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_content_vectors')),
        sa.UniqueConstraint('user_id', 'content_id', name='uq_content_vectors_user_content'),
    )
    op.execute(
        f'ALTER TABLE content_vectors ADD COLUMN embedding vector({settings.EMBEDDING_DIMENSION}) NOT NULL'
    )
    op.create_index(op.f('ix_content_vectors_user_id'), 'content_vectors', ['user_id'])
    op.create_index(op.f('ix_content_vectors_content_type'), 'content_vectors', ['content_type'])
    op.create_index(op.f('ix_content_vectors_industry'), 'content_vectors', ['industry'])

    # m=16, ef_construction=64
    op.execute("""
        CREATE INDEX ix_content_vectors_embedding_hnsw
        ON content_vectors
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
    """)

    # ================================
    # admin_jobs
    # ================================
    op.create_table(
        'admin_jobs',
        *_timestamps(),
        sa.Column('job_type', sa.String(length=50), nullable=False),
        sa.Column('scope', job_scope_enum, nullable=False),
        sa.Column('status', job_status_enum, nullable=False),
        sa.Column('total_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skipped_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('progress', sa.Float(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('heartbeat_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=False),
        sa.Column('updated_by', sa.String(length=255), nullable=True),
        sa.Column('cancelled_by', sa.String(length=255), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('run_attempt', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('resume_cursor', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_admin_jobs')),
    )
    op.create_index(op.f('ix_admin_jobs_job_type'), 'admin_jobs', ['job_type'])
    op.create_index(op.f('ix_admin_jobs_status'), 'admin_jobs', ['status'])

    # ================================
    # job_scope_locks
    # ================================
    op.create_table(
        'job_scope_locks',
        *_timestamps(),
        sa.Column('scope_key', sa.String(length=255), nullable=False),
        sa.Column('job_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['admin_jobs.id'], name=op.f('fk_job_scope_locks_job_id_admin_jobs'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_job_scope_locks')),
        sa.UniqueConstraint('scope_key', name=op.f('uq_job_scope_locks_scope_key')),
    )
    op.create_index(op.f('ix_job_scope_locks_job_id'), 'job_scope_locks', ['job_id'])


def downgrade() -> None:
    """Drop the RAG engine schema."""
    op.drop_table('job_scope_locks')
    op.drop_table('admin_jobs')
    op.execute('DROP INDEX IF EXISTS ix_content_vectors_embedding_hnsw')
    op.drop_table('content_vectors')
    op.drop_table('source_documents')
    op.drop_table('users')

    bind = op.get_bind()
    job_status_enum.drop(bind, checkfirst=True)
    job_scope_enum.drop(bind, checkfirst=True)
    content_type_enum.drop(bind, checkfirst=True)

    # The vector extension is left in place; other schemas may use it
