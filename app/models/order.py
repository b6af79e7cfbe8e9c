import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.core.database import Base


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("company_id", "external_id", name="uq_orders_company_external_id"),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    # Partner order id, e.g. "shopify_1234"; ingestion is idempotent on it
    external_id = Column(String(120), nullable=True, index=True)

    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)
    rider_id = Column(Integer, ForeignKey("riders.id", ondelete="SET NULL"), nullable=True, index=True)

    # Snapshot of the customer as the partner sent it
    customer_name = Column(String(200), nullable=True)
    customer_phone = Column(String(30), nullable=True)
    customer_email = Column(String(255), nullable=True)

    pickup_address = Column(Text, nullable=True)
    delivery_address = Column(Text, nullable=False)
    items = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False, default=list)
    subtotal = Column(Numeric(12, 2), nullable=True)
    delivery_fee = Column(Numeric(12, 2), nullable=True)
    total = Column(Numeric(12, 2), nullable=True)
    payment_method = Column(String(30), nullable=True)

    status = Column(String(20), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="pending")  # pending / paid / completed / failed
    notes = Column(Text, nullable=True)  # append-only, one "[Actor ts]: note" entry per line

    source = Column(String(30), nullable=True)  # api / shopify / woocommerce / webhook / <integration type>
    metadata_json = Column("metadata", JSONB().with_variant(sa.JSON(), "sqlite"), nullable=True)

    scheduled_at = Column(DateTime, nullable=True)
    picked_up_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="orders")
    rider = relationship("Rider", back_populates="orders")
