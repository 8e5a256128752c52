"""add images (gallery) to products + backfill from the single image"""

from __future__ import annotations

import os
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "e1a9c03f58d4"
down_revision = "b7d2e41c9a30"
branch_labels = None
depends_on = None

SCHEMA = (os.getenv("DB_SCHEMA") or "").strip() or None
TABLE = "products"
COL = "images"


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    cols = {c["name"] for c in insp.get_columns(TABLE, schema=SCHEMA)}
    if COL in cols:
        return

    json_type = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
    with op.batch_alter_table(TABLE, schema=SCHEMA) as batch_op:
        batch_op.add_column(sa.Column(COL, json_type, nullable=True))

    # existing single images become one-element galleries
    products = sa.table(
        TABLE,
        sa.column("id", sa.String),
        sa.column("image", sa.Text),
        sa.column(COL, json_type),
        schema=SCHEMA,
    )
    rows = bind.execute(
        sa.select(products.c.id, products.c.image).where(products.c.image.isnot(None))
    ).all()
    for row in rows:
        image = (row.image or "").strip()
        if not image:
            continue
        bind.execute(products.update().where(products.c.id == row.id).values({COL: [image]}))


def downgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    if COL in {c["name"] for c in insp.get_columns(TABLE, schema=SCHEMA)}:
        with op.batch_alter_table(TABLE, schema=SCHEMA) as batch_op:
            batch_op.drop_column(COL)
