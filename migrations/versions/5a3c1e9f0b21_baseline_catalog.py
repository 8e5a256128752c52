"""baseline catalog: product_categories, products, user_roles

The first deployed shape: flat categories (no parent_id) and products with a
single image (no images column). Later revisions add both.
"""

from __future__ import annotations

import os
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "5a3c1e9f0b21"
down_revision = None
branch_labels = None
depends_on = None

SCHEMA = (os.getenv("DB_SCHEMA") or "").strip() or None


def _json_type() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    tables = set(insp.get_table_names(schema=SCHEMA))

    if "product_categories" not in tables:
        op.create_table(
            "product_categories",
            sa.Column("id", sa.String(36), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id", name="pk_product_categories"),
            schema=SCHEMA,
        )
        op.create_index("ix_product_categories_name", "product_categories", ["name"], schema=SCHEMA)

    if "products" not in tables:
        op.create_table(
            "products",
            sa.Column("id", sa.String(36), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("category", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("image", sa.Text(), nullable=True),
            sa.Column("specifications", _json_type(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id", name="pk_products"),
            schema=SCHEMA,
        )
        op.create_index("ix_products_category", "products", ["category"], schema=SCHEMA)
        op.create_index("ix_products_created_at", "products", ["created_at"], schema=SCHEMA)

    if "user_roles" not in tables:
        op.create_table(
            "user_roles",
            sa.Column("id", sa.String(36), nullable=False),
            sa.Column("user_id", sa.String(64), nullable=False),
            sa.Column("role", sa.String(16), nullable=False, server_default="user"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id", name="pk_user_roles"),
            sa.UniqueConstraint("user_id", name="uq_user_roles_user_id"),
            sa.CheckConstraint("role IN ('admin', 'user')", name="ck_user_roles_role_allowed"),
            schema=SCHEMA,
        )


def downgrade() -> None:
    for table in ("user_roles", "products", "product_categories"):
        op.drop_table(table, schema=SCHEMA)
