"""create documents table

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""
import sqlalchemy as sa
from alembic import context, op
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_name() -> str:
    return context.config.attributes.get("documents_table", "documents")


def upgrade():
    name = _table_name()
    op.create_table(
        name,
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("document_name", sa.String(), nullable=False),
        sa.Column("storage_path", sa.String(), nullable=False),
        sa.Column("tag", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("summary_text", sa.Text(), nullable=True),
        sa.Column("summary_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("note_taking", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(f"ix_{name}_storage_path", name, ["storage_path"], unique=True)


def downgrade():
    name = _table_name()
    op.drop_index(f"ix_{name}_storage_path", table_name=name)
    op.drop_table(name)
