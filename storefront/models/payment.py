"""Payment model."""
import enum
from sqlalchemy import Column, String, Integer, Numeric, DateTime, Enum, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType
from storefront.utils.dates import iso
from storefront.utils.money import as_number


class PaymentMethod(enum.Enum):
    """How the buyer pays. MOMO goes through the wallet gateway."""
    COD = "COD"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOMO = "MOMO"


# One type object shared by cart, orders and payment
payment_method_type = Enum(PaymentMethod, name='payment_method')


class PaymentStatus(enum.Enum):
    """Gateway attempt status."""
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class Payment(Base):
    """One attempt to charge an order through the gateway."""

    __tablename__ = 'payment'
    __table_args__ = (
        UniqueConstraint('order_id', 'attempt_no', name='uq_payment_order_attempt'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(IdType, ForeignKey('orders.id'), nullable=False, index=True)
    attempt_no = Column(Integer, nullable=False)
    method = Column(payment_method_type, nullable=False, default=PaymentMethod.MOMO)
    status = Column(Enum(PaymentStatus, name='payment_status'), nullable=False, default=PaymentStatus.PENDING)
    amount = Column(Numeric(12, 2), nullable=False)

    provider_order_id = Column(String(128), nullable=True, unique=True)
    provider_request_id = Column(String(128), nullable=True, index=True)
    provider_trans_id = Column(String(64), nullable=True)
    pay_type = Column(String(32), nullable=True)
    pay_url = Column(Text, nullable=True)
    extra_data = Column(Text, nullable=True)  # base64 JSON as sent to the gateway
    result_code = Column(Integer, nullable=True)
    result_message = Column(Text, nullable=True)

    paid_at = Column(DateTime, nullable=True)
    authorized_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    order = relationship('Order', back_populates='payments', foreign_keys=[order_id])
    webhooks = relationship('PaymentWebhook', back_populates='payment', cascade='all, delete-orphan')
    refunds = relationship('PaymentRefund', back_populates='payment', cascade='all, delete-orphan')

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'order_id': self.order_id,
            'attempt_no': self.attempt_no,
            'method': self.method.value,
            'status': self.status.value,
            'amount': as_number(self.amount),
            'pay_url': self.pay_url,
            'provider_order_id': self.provider_order_id,
            'provider_request_id': self.provider_request_id,
            'provider_trans_id': self.provider_trans_id,
            'result_code': self.result_code,
            'result_message': self.result_message,
            'paid_at': iso(self.paid_at),
            'authorized_at': iso(self.authorized_at),
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Payment(id={self.id}, order_id={self.order_id}, attempt={self.attempt_no}, status={self.status.value})>"
