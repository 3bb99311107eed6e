"""invoice_item.item_name copied from the material line at invoicing time

Revision ID: 003
Revises: 002
Create Date: 2026-10-18
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "003"
down_revision = "002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("ALTER TABLE invoice_item ADD COLUMN IF NOT EXISTS item_name VARCHAR(255)")
    op.execute(
        """
        UPDATE invoice_item ii
        SET item_name = m.item_name
        FROM work_order_material m
        WHERE m.id = ii.item_id AND ii.item_name IS NULL
        """
    )


def downgrade() -> None:
    op.execute("ALTER TABLE invoice_item DROP COLUMN IF EXISTS item_name")
