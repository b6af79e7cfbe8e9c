"""Base fleet schema: companies, riders, sessions, orders, settings, integrations."""

from __future__ import annotations

from alembic import op

from app.core.database import Base
import app.models  # noqa: F401

revision = "0001_fleet_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    Base.metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())
