"""Harvest baseline: feed registry, discovered links, extracted articles."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


# Revision identifiers, used by Alembic.
revision = "0001_harvest_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Table/column names are the hosted schema's; camelCase names stay quoted.
    op.create_table(
        "ListUrlRss",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f("ix_ListUrlRss_url"), "ListUrlRss", ["url"], unique=True)

    op.create_table(
        "articlesUrl",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("titre", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("datePublication", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(op.f("ix_articlesUrl_url"), "articlesUrl", ["url"], unique=True)

    op.create_table(
        "articles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("publishDate", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(op.f("ix_articles_url"), "articles", ["url"], unique=True)


def downgrade() -> None:
    op.drop_index(op.f("ix_articles_url"), table_name="articles")
    op.drop_table("articles")
    op.drop_index(op.f("ix_articlesUrl_url"), table_name="articlesUrl")
    op.drop_table("articlesUrl")
    op.drop_index(op.f("ix_ListUrlRss_url"), table_name="ListUrlRss")
    op.drop_table("ListUrlRss")
