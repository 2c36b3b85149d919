"""
SQLAlchemy ORM models for the paysync service.

Tables:
    orders — merchant orders awaiting payment-provider reconciliation
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, Float, DateTime

from database import Base
from domain.enums import OrderStatus


class Order(Base):
    """
    A merchant order correlated with payment-provider notifications.

    Lifecycle:
        1. Checkout creates the row (status=PENDING) with a unique reference
        2. Provider webhook moves it to PAID / FAILED / EXPIRED
        3. Access email is sent once -> NOTIFIED

    Only status, provider_order_id, version, dispatch_claimed_at and
    notified_at are written by reconciliation; everything else is read-only.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference = Column(String(255), unique=True, nullable=False, index=True)  # External Order ID
    provider_order_id = Column(String(255), nullable=True)  # invoiceId / Whitepay order id
    provider = Column(String(20), nullable=False)  # "monobank" | "whitepay"

    # Status tracking
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    version = Column(Integer, nullable=False, default=0)  # optimistic-concurrency token
    dispatch_claimed_at = Column(DateTime, nullable=True)
    notified_at = Column(DateTime, nullable=True)

    # Customer & product (read-only inputs to the dispatcher)
    email = Column(String(320), nullable=True)
    customer_name = Column(String(255), nullable=True)
    product_id = Column(String(50), nullable=True)  # tariff id
    amount = Column(Float, nullable=True)
    currency = Column(String(10), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
