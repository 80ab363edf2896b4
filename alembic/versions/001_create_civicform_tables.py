"""Create civicform tables

Revision ID: 001
Revises: None
Create Date: 2025-01-15 00:00:00.000000+00:00

What:  Structure cache, submission queue, runtime settings and the two
       persisted log tables.
How:   Portable types only. JSON documents use the text `json` type on
       PostgreSQL so stored key order is kept.

Rollback: downgrade() drops every table (destructive: queued submissions lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONDocument = sa.JSON()


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "webform_structures",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "webform_id",
            sa.String(255),
            nullable=False,
            comment="Form identifier assigned by the backend",
        ),
        sa.Column(
            "structure_data",
            JSONDocument,
            nullable=False,
            comment="Opaque form structure document",
        ),
        sa.Column(
            "version",
            sa.Integer(),
            server_default=sa.text("1"),
            nullable=False,
            comment="Advisory counter incremented on every overwrite",
        ),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_webform_structures"),
    )
    # Unique index doubles as the ON CONFLICT target of the upsert
    op.create_index(
        "ix_webform_structures_webform_id", "webform_structures", ["webform_id"], unique=True
    )

    op.create_table(
        "submissions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("submission_id", sa.String(320), nullable=False),
        sa.Column("form_id", sa.String(255), nullable=False),
        sa.Column("submission_data", JSONDocument, nullable=False),
        sa.Column("status", sa.String(50), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        *_timestamps(),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_submissions"),
        sa.UniqueConstraint("submission_id", name="uq_submissions_submission_id"),
    )
    op.create_index("idx_submissions_form_id", "submissions", ["form_id"])
    op.create_index("idx_submissions_status", "submissions", ["status"])
    op.create_index("idx_submissions_created_at", "submissions", ["created_at"])

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("data_type", sa.String(20), server_default=sa.text("'string'"), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_encrypted", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("key", name="pk_app_settings"),
    )

    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("level", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("error_details", sa.Text(), nullable=True),
        sa.Column("endpoint", sa.Text(), nullable=True),
        sa.Column("method", sa.String(16), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("session_id", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_error_logs"),
    )
    op.create_index("idx_error_logs_level", "error_logs", ["level"])
    op.create_index("idx_error_logs_created_at", "error_logs", ["created_at"])

    op.create_table(
        "api_usage",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("method", sa.String(16), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("response_time_ms", sa.Integer(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_api_usage"),
    )
    op.create_index("idx_api_usage_endpoint", "api_usage", ["endpoint"])
    op.create_index("idx_api_usage_created_at", "api_usage", ["created_at"])


def downgrade() -> None:
    """Drop every table. All queued submissions and logs are lost."""
    op.drop_index("idx_api_usage_created_at", table_name="api_usage")
    op.drop_index("idx_api_usage_endpoint", table_name="api_usage")
    op.drop_table("api_usage")
    op.drop_index("idx_error_logs_created_at", table_name="error_logs")
    op.drop_index("idx_error_logs_level", table_name="error_logs")
    op.drop_table("error_logs")
    op.drop_table("app_settings")
    op.drop_index("idx_submissions_created_at", table_name="submissions")
    op.drop_index("idx_submissions_status", table_name="submissions")
    op.drop_index("idx_submissions_form_id", table_name="submissions")
    op.drop_table("submissions")
    op.drop_index("ix_webform_structures_webform_id", table_name="webform_structures")
    op.drop_table("webform_structures")
