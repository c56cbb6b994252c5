"""Payment Webhook model: verbatim audit log of gateway notifications."""
from sqlalchemy import Column, String, Boolean, Integer, DateTime, ForeignKey, Text, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType


class PaymentWebhook(Base):
    """Gateway notification received for a payment."""

    __tablename__ = 'payment_webhook'

    id = Column(IdType, primary_key=True, autoincrement=True)
    payment_id = Column(IdType, ForeignKey('payment.id'), nullable=False, index=True)
    body_raw = Column(Text, nullable=False)
    body_json = Column(JSON().with_variant(JSONB, 'postgresql'), nullable=False)
    signature = Column(String(128), nullable=True)
    verified = Column(Boolean, nullable=False, default=False)
    result_code = Column(Integer, nullable=True)
    message = Column(Text, nullable=True)
    provider_trans_id = Column(String(64), nullable=True)
    received_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)

    payment = relationship('Payment', back_populates='webhooks')

    def __repr__(self):
        return f"<PaymentWebhook(payment_id={self.payment_id}, result_code={self.result_code})>"
