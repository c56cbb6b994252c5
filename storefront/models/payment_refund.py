"""Payment Refund model."""
from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType
from storefront.utils.dates import iso
from storefront.utils.money import as_number


class PaymentRefund(Base):
    """Refund request against a successful payment. Recorded whatever the gateway answered."""

    __tablename__ = 'payment_refund'

    id = Column(IdType, primary_key=True, autoincrement=True)
    payment_id = Column(IdType, ForeignKey('payment.id'), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(String(255), nullable=True)
    provider_request_id = Column(String(160), nullable=True)
    provider_trans_id = Column(String(64), nullable=True)
    result_code = Column(Integer, nullable=True)
    message = Column(Text, nullable=True)
    refunded_at = Column(DateTime, nullable=True)  # set only when the gateway confirmed
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    payment = relationship('Payment', back_populates='refunds')

    @property
    def succeeded(self):
        return self.refunded_at is not None

    def to_dict(self):
        return {
            'id': self.id,
            'payment_id': self.payment_id,
            'amount': as_number(self.amount),
            'reason': self.reason,
            'provider_trans_id': self.provider_trans_id,
            'result_code': self.result_code,
            'message': self.message,
            'refunded_at': iso(self.refunded_at),
            'created_at': iso(self.created_at),
        }
