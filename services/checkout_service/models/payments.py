"""Payment bookkeeping: processed webhook events and orphan payments."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.checkout_service.models.enums import PaymentProvider, enum_values
from sqlalchemy import BigInteger, Boolean, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class WebhookEvent(Base):
    """Every gateway webhook we processed, keyed by provider event id."""

    __tablename__ = "checkout_webhook_events"
    __table_args__ = (
        Index("ix_checkout_webhook_events_provider_created", "provider", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider: Mapped[PaymentProvider] = mapped_column(
        SAEnum(
            PaymentProvider,
            values_callable=enum_values,
            name="checkout_payment_provider_enum",
        ),
        nullable=False,
    )
    event_id: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class OrphanPayment(Base):
    """A captured payment with no matching order (or a disputed amount).

    Stays unreconciled until an order shows up, it is refunded, or an admin
    resolves it by hand.
    """

    __tablename__ = "checkout_orphan_payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reference: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False, index=True
    )
    amount_kobo: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    reconciled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_refunded: Mapped[bool] = mapped_column(Boolean, default=False)
    refund_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resolution_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self):
        return f"<OrphanPayment {self.reference} reconciled={self.reconciled}>"
