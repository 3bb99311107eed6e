"""precast core schema

Revision ID: 001
Revises:
Create Date: 2026-09-28
"""

from alembic import op

from precast_erp.database import Base
from precast_erp import models  # noqa: F401


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Tables follow the SQLAlchemy models; existing tables are left untouched.
    Base.metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    # No downgrade - tables managed by SQLAlchemy models
    pass
