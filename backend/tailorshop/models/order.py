from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, ForeignKey, DateTime, JSON, UniqueConstraint, text
from datetime import datetime
from typing import Any, Dict, List, Optional

from .user import Base


class Order(Base):
    __tablename__ = 'orders'
    # Lifecycle status constants
    STATUS_PENDING = 'Pending'
    STATUS_TRIAL = 'Trial'
    STATUS_FINISHED = 'Finished'
    STATUS_COMPLETED = 'Completed'
    STATUS_CANCELLED = 'Cancelled'
    ALL_STATUSES = (
        STATUS_PENDING,
        STATUS_TRIAL,
        STATUS_FINISHED,
        STATUS_COMPLETED,
        STATUS_CANCELLED
    )
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    shop: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    trial_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivery_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completion_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id'), nullable=False, index=True)
    creator_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    products: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)
    bill: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    measurements: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    __table_args__ = (UniqueConstraint('shop', 'order_number', name='uq_order_shop_number'),)


# Back-reference lists. Rows are written only by tailorshop.services.store.link/unlink.
class CustomerOrder(Base):
    __tablename__ = 'customer_orders'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id'), nullable=False, index=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id'), nullable=False, index=True)
    __table_args__ = (UniqueConstraint('customer_id', 'order_id', name='uq_customer_order'),)


class UserOrder(Base):
    __tablename__ = 'user_orders'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id'), nullable=False, index=True)
    __table_args__ = (UniqueConstraint('user_id', 'order_id', name='uq_user_order'),)
