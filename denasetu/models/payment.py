from sqlalchemy import Column, Integer, String, Numeric, DateTime, JSON
import enum

from denasetu.models.base import Base, new_id, utcnow


class PaymentOrderStatus(str, enum.Enum):
    CREATED = "created"
    PAID = "paid"


class PaymentOrder(Base):
    """Ledger row for one checkout attempt against the payment gateway"""
    __tablename__ = "payment_orders"

    id = Column(String(36), primary_key=True, default=new_id)
    idempotency_key = Column(String(128), nullable=False, unique=True)
    gateway_order_id = Column(String(64), nullable=False, unique=True)
    donor_id = Column(String(36), nullable=True, index=True)
    ngo_id = Column(String(36), nullable=True)
    campaign_id = Column(String(36), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    amount_minor = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    receipt = Column(String(40), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentOrderStatus.CREATED.value)
    payment_id = Column(String(64), nullable=True)
    gateway_order = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
