"""Payment reconciliation models: processed events, disputes and refunds."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.orders_service.models.enums import (
    DisputeReason,
    DisputeStatus,
    ProcessedEventStatus,
    RefundReason,
    RefundStatus,
    enum_values,
)
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# WEBHOOK IDEMPOTENCY
# ============================================================================


class ProcessedPaymentEvent(Base):
    """One row per processor event id that reached the engine.

    The unique key on event_id is the idempotency gate: the row is inserted in
    the same transaction as the state change it guards.
    """

    __tablename__ = "processed_payment_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    order_reference: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )

    status: Mapped[ProcessedEventStatus] = mapped_column(
        SAEnum(
            ProcessedEventStatus,
            values_callable=enum_values,
            name="processed_event_status_enum",
        ),
        nullable=False,
    )
    outcome: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(
        Integer, default=1, server_default="1", nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_processed_events_status_received", "status", "received_at"),
    )

    def __repr__(self):
        return f"<ProcessedPaymentEvent {self.event_id} {self.status.value}>"


# ============================================================================
# DISPUTES
# ============================================================================


class Dispute(Base):
    """Local mirror of a processor chargeback. Never created locally."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    external_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    reason: Mapped[DisputeReason] = mapped_column(
        SAEnum(
            DisputeReason,
            values_callable=enum_values,
            name="dispute_reason_enum",
        ),
        default=DisputeReason.GENERAL,
        nullable=False,
    )
    status: Mapped[DisputeStatus] = mapped_column(
        SAEnum(
            DisputeStatus,
            values_callable=enum_values,
            name="dispute_status_enum",
        ),
        default=DisputeStatus.NEEDS_RESPONSE,
        nullable=False,
    )

    evidence_due_by: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Dispute {self.external_id} {self.status.value}>"


# ============================================================================
# REFUNDS
# ============================================================================


class Refund(Base):
    """A refund request and, once submitted, its processor refund."""

    __tablename__ = "refunds"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    external_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[RefundReason] = mapped_column(
        SAEnum(
            RefundReason,
            values_callable=enum_values,
            name="refund_reason_enum",
        ),
        nullable=False,
    )
    status: Mapped[RefundStatus] = mapped_column(
        SAEnum(
            RefundStatus,
            values_callable=enum_values,
            name="refund_status_enum",
        ),
        default=RefundStatus.PENDING,
        nullable=False,
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    requested_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    restocked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    items = relationship(
        "RefundItem",
        back_populates="refund",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Refund {self.id} {self.status.value} {self.amount}>"


class RefundItem(Base):
    __tablename__ = "refund_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    refund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("refunds.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("order_items.id", ondelete="RESTRICT"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    restock: Mapped[bool] = mapped_column(default=False, nullable=False)

    # Relationships
    refund = relationship("Refund", back_populates="items")

    def __repr__(self):
        return f"<RefundItem {self.order_item_id} qty={self.quantity}>"
