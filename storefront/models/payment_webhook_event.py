"""Payment gateway webhook event log, used for idempotency."""
from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class WebhookEventStatus:
    RECEIVED = 'RECEIVED'
    PROCESSED = 'PROCESSED'
    IGNORED = 'IGNORED'


class PaymentWebhookEvent(Base):
    """Log of verified gateway webhook deliveries."""
    __tablename__ = 'payment_webhook_event'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    event_type = Column(String(50), nullable=False, index=True)
    gateway_payment_id = Column(String(64), index=True)
    payload_json = Column(JSON, nullable=False)
    dedupe_key = Column(String(64), nullable=False, unique=True)
    received_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    processed_at = Column(DateTime(timezone=True))
    status = Column(String(20), nullable=False, default=WebhookEventStatus.RECEIVED, index=True)

    def __repr__(self):
        return f"<PaymentWebhookEvent(type='{self.event_type}', payment='{self.gateway_payment_id}', status='{self.status}')>"

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'event_type': self.event_type,
            'gateway_payment_id': self.gateway_payment_id,
            'payload': self.payload_json,
            'dedupe_key': self.dedupe_key,
            'received_at': self.received_at.isoformat() if self.received_at else None,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
            'status': self.status
        }

    @property
    def is_processed(self):
        """Check if event has been processed."""
        return self.status == WebhookEventStatus.PROCESSED
