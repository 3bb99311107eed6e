"""backfill precast_stock.lifecycle_state from the legacy disposition booleans

Revision ID: 002
Revises: 001
Create Date: 2026-10-02
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("ALTER TABLE precast_stock ADD COLUMN IF NOT EXISTS lifecycle_state VARCHAR(30) NOT NULL DEFAULT 'Produced'")

    # Databases imported from the boolean-flag era still carry the old columns.
    op.execute(
        """
        DO $$
        BEGIN
            IF EXISTS (
                SELECT 1 FROM information_schema.columns
                WHERE table_name = 'precast_stock' AND column_name = 'dispatch_status'
            ) THEN
                UPDATE precast_stock
                SET lifecycle_state = CASE
                    WHEN erected THEN 'Erected'
                    WHEN received_in_erection THEN 'ReceivedAtSite'
                    WHEN dispatch_status AND dispatch_end IS NULL THEN 'ReservedForDispatch'
                    WHEN dispatch_status THEN 'ReceivedAtSite'
                    WHEN stockyard THEN 'InStockyard'
                    ELSE 'Produced'
                END;
                UPDATE precast_stock SET order_by_erection = TRUE WHERE erected AND NOT order_by_erection;
            END IF;
        END $$;
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_precast_stock_project_state ON precast_stock (project_id, lifecycle_state)"
    )


def downgrade() -> None:
    pass
