from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_rider_push_order_sched"
down_revision = "0001_fleet_schema"
branch_labels = None
depends_on = None


def _columns_by_name(table_name: str) -> set[str]:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    return {column["name"] for column in inspector.get_columns(table_name)}


def _has_index(table_name: str, index_name: str) -> bool:
    inspector = sa.inspect(op.get_bind())
    return any(idx["name"] == index_name for idx in inspector.get_indexes(table_name))


def upgrade() -> None:
    rider_columns = _columns_by_name("riders")
    if "push_token" not in rider_columns:
        op.add_column("riders", sa.Column("push_token", sa.String(length=255), nullable=True))

    session_columns = _columns_by_name("agent_sessions")
    if "push_token" not in session_columns:
        op.add_column("agent_sessions", sa.Column("push_token", sa.String(length=255), nullable=True))

    order_columns = _columns_by_name("orders")
    if "scheduled_at" not in order_columns:
        op.add_column("orders", sa.Column("scheduled_at", sa.DateTime(), nullable=True))

    if not _has_index("location_history", "ix_location_history_rider_recorded"):
        op.create_index(
            "ix_location_history_rider_recorded",
            "location_history",
            ["rider_id", "recorded_at"],
            unique=False,
        )


def downgrade() -> None:
    if _has_index("location_history", "ix_location_history_rider_recorded"):
        op.drop_index("ix_location_history_rider_recorded", table_name="location_history")

    if "scheduled_at" in _columns_by_name("orders"):
        op.drop_column("orders", "scheduled_at")

    if "push_token" in _columns_by_name("agent_sessions"):
        op.drop_column("agent_sessions", "push_token")

    if "push_token" in _columns_by_name("riders"):
        op.drop_column("riders", "push_token")
