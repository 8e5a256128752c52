"""add parent_id to product_categories (two-level category tree)"""

from __future__ import annotations

import os
from alembic import op
import sqlalchemy as sa

revision = "b7d2e41c9a30"
down_revision = "5a3c1e9f0b21"
branch_labels = None
depends_on = None

SCHEMA = (os.getenv("DB_SCHEMA") or "").strip() or None
TABLE = "product_categories"
COL = "parent_id"
IDX = "ix_product_categories_parent_id"
FK = "fk_product_categories_parent_id_product_categories"


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    # 1) column + self-referencing FK, if missing
    cols = {c["name"] for c in insp.get_columns(TABLE, schema=SCHEMA)}
    if COL not in cols:
        with op.batch_alter_table(TABLE, schema=SCHEMA) as batch_op:
            batch_op.add_column(sa.Column(COL, sa.String(36), nullable=True))
            batch_op.create_foreign_key(
                FK,
                TABLE,
                [COL],
                ["id"],
                referent_schema=SCHEMA,
                ondelete="RESTRICT",
            )

    # 2) index for children lookups
    idx_names = {ix["name"] for ix in insp.get_indexes(TABLE, schema=SCHEMA)}
    if IDX not in idx_names:
        op.create_index(IDX, TABLE, [COL], unique=False, schema=SCHEMA)


def downgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    if IDX in {ix["name"] for ix in insp.get_indexes(TABLE, schema=SCHEMA)}:
        op.drop_index(IDX, table_name=TABLE, schema=SCHEMA)

    if COL in {c["name"] for c in insp.get_columns(TABLE, schema=SCHEMA)}:
        fks = {fk["name"] for fk in insp.get_foreign_keys(TABLE, schema=SCHEMA)}
        with op.batch_alter_table(TABLE, schema=SCHEMA) as batch_op:
            if FK in fks:
                batch_op.drop_constraint(FK, type_="foreignkey")
            batch_op.drop_column(COL)
