"""billing_backoffice_schema

Create billing entities, lookups, time records, material items and the
document pipeline tables (document_jobs, generated_documents, email_logs).

Revision ID: b1f0c2d3e401
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "b1f0c2d3e401"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "billing_entities" not in existing_tables:
        op.create_table(
            "billing_entities",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("external_accounting_id", sa.String(length=50), nullable=True),
            sa.Column("is_billing_owner", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("owner_entity_id", sa.Integer(), nullable=True),
            sa.Column("bill_direct", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("include_attachments_on_send", sa.Boolean(), nullable=False,
                      server_default=sa.false()),
            sa.Column("language", sa.String(length=2), nullable=False, server_default="sv"),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["owner_entity_id"], ["billing_entities.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("external_accounting_id"),
        )
        op.create_index("ix_billing_entities_owner_entity_id", "billing_entities", ["owner_entity_id"])

    if "billing_entity_emails" not in existing_tables:
        op.create_table(
            "billing_entity_emails",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("billing_entity_id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("send_pdf", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.ForeignKeyConstraint(["billing_entity_id"], ["billing_entities.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("billing_entity_id", "email", name="uq_entity_email"),
        )
        op.create_index("ix_billing_entity_emails_billing_entity_id", "billing_entity_emails",
                        ["billing_entity_id"])

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("billing_entity_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["billing_entity_id"], ["billing_entities.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_projects_billing_entity_id", "projects", ["billing_entity_id"])

    if "categories" not in existing_tables:
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if "articles" not in existing_tables:
        op.create_table(
            "articles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("article_number", sa.String(length=50), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=True),
            sa.Column("unit", sa.String(length=20), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_articles_article_number", "articles", ["article_number"])

    if "time_records" not in existing_tables:
        op.create_table(
            "time_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("owner_user_id", sa.Integer(), nullable=True),
            sa.Column("billing_entity_id", sa.Integer(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("category_id", sa.Integer(), nullable=True),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("hours", sa.Numeric(precision=5, scale=2), nullable=False, server_default="0"),
            sa.Column("billable", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("billed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("invoice_number", sa.String(length=25), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("work_label", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["owner_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["billing_entity_id"], ["billing_entities.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_time_records_owner_user_id", "time_records", ["owner_user_id"])
        op.create_index("ix_time_records_date", "time_records", ["date"])
        op.create_index("ix_time_records_invoice_number", "time_records", ["invoice_number"])
        op.create_index("ix_time_records_entity_date", "time_records", ["billing_entity_id", "date"])

    if "material_items" not in existing_tables:
        op.create_table(
            "material_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("time_record_id", sa.Integer(), nullable=False),
            sa.Column("article_id", sa.Integer(), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("description", sa.String(length=255), nullable=True),
            sa.Column("invoice_number", sa.String(length=40), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["time_record_id"], ["time_records.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["article_id"], ["articles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_material_items_time_record_id", "material_items", ["time_record_id"])
        op.create_index("ix_material_items_invoice_number", "material_items", ["invoice_number"])

    if "document_jobs" not in existing_tables:
        op.create_table(
            "document_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("target_document_id", sa.String(length=50), nullable=False),
            sa.Column("document_number", sa.String(length=50), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("run_after", sa.DateTime(), nullable=False),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_document_jobs_target_document_id", "document_jobs", ["target_document_id"])
        op.create_index("ix_document_jobs_status_run_after", "document_jobs", ["status", "run_after"])

    if "generated_documents" not in existing_tables:
        op.create_table(
            "generated_documents",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("target_document_id", sa.String(length=50), nullable=False),
            sa.Column("document_number", sa.String(length=50), nullable=True),
            sa.Column("billing_entity_id", sa.Integer(), nullable=True),
            sa.Column("period_from", sa.Date(), nullable=True),
            sa.Column("period_to", sa.Date(), nullable=True),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("mime", sa.String(length=100), nullable=False, server_default="application/pdf"),
            sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("content_hash", sa.String(length=64), nullable=True),
            sa.Column("data", sa.LargeBinary(), nullable=False),
            sa.Column("external_archive_id", sa.String(length=100), nullable=True),
            sa.Column("attached_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["billing_entity_id"], ["billing_entities.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("target_document_id"),
        )
        op.create_index("ix_generated_documents_document_number", "generated_documents",
                        ["document_number"])
        op.create_index("ix_generated_documents_billing_entity_id", "generated_documents",
                        ["billing_entity_id"])

    if "email_logs" not in existing_tables:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipients", sa.Text(), nullable=False),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("template_name", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("document_number", sa.String(length=50), nullable=True),
            sa.Column("attachment_name", sa.String(length=255), nullable=True),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_email_logs_document_number", "email_logs", ["document_number"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "email_logs",
        "generated_documents",
        "document_jobs",
        "material_items",
        "time_records",
        "articles",
        "categories",
        "projects",
        "users",
        "billing_entity_emails",
        "billing_entities",
    ):
        if table in existing_tables:
            op.drop_table(table)
