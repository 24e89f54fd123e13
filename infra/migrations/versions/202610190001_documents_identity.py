"""documents and identity credentials

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("collection", sa.String(), nullable=False),
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("collection", "id"),
    )
    op.create_index("ix_documents_updated_at", "documents", ["updated_at"])

    op.create_table(
        "identity_credentials",
        sa.Column("uid", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("email_verified", sa.Boolean(), nullable=False),
        sa.Column("verification_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("uid"),
    )
    op.create_index("ix_identity_credentials_email", "identity_credentials", ["email"], unique=True)
    op.create_index("ix_identity_credentials_verification_code", "identity_credentials", ["verification_code"])
    op.create_index("ix_identity_credentials_created_at", "identity_credentials", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_identity_credentials_created_at", table_name="identity_credentials")
    op.drop_index("ix_identity_credentials_verification_code", table_name="identity_credentials")
    op.drop_index("ix_identity_credentials_email", table_name="identity_credentials")
    op.drop_table("identity_credentials")

    op.drop_index("ix_documents_updated_at", table_name="documents")
    op.drop_table("documents")
