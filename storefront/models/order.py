"""Order model."""
import enum
from sqlalchemy import Column, String, Numeric, DateTime, Enum, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType
from storefront.models.payment import payment_method_type
from storefront.utils.dates import iso
from storefront.utils.money import as_number


class OrderStatus(enum.Enum):
    """
    Order lifecycle.

    PENDING -> CONFIRMED/PAID -> FULFILLING -> SHIPPED -> COMPLETED,
    with CANCELLED and REFUNDED as alternate terminal states.
    """
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PAID = "PAID"
    FULFILLING = "FULFILLING"
    SHIPPED = "SHIPPED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class Order(Base):
    """Snapshot of a checked-out cart. Only status changes after creation."""

    __tablename__ = 'orders'

    id = Column(IdType, primary_key=True, autoincrement=True)
    user_id = Column(IdType, ForeignKey('app_user.id'), nullable=False, index=True)
    address_id = Column(IdType, ForeignKey('address.id'), nullable=False)
    status = Column(Enum(OrderStatus, name='order_status'), nullable=False, default=OrderStatus.PENDING, index=True)
    payment_method = Column(payment_method_type, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_fee = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    notes = Column(Text, nullable=True)
    shipping_location = Column(String(500), nullable=True)

    # Success anchor: set once by the first successful payment, never overwritten
    payment_success_id = Column(
        IdType, ForeignKey('payment.id', use_alter=True, name='fk_orders_payment_success'), nullable=True
    )

    cancelled_at = Column(DateTime, nullable=True)
    cancel_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    address = relationship('Address')
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan', order_by='OrderItem.id')
    coupon = relationship('OrderCoupon', uselist=False, back_populates='order', cascade='all, delete-orphan')
    payments = relationship(
        'Payment', back_populates='order', foreign_keys='Payment.order_id', order_by='Payment.attempt_no'
    )
    payment_success = relationship('Payment', foreign_keys=[payment_success_id], post_update=True)

    @property
    def is_paid(self):
        return self.payment_success_id is not None

    def to_dict(self, include_items=True):
        """Convert to dictionary for JSON serialization."""
        data = {
            'id': self.id,
            'status': self.status.value,
            'payment_method': self.payment_method.value,
            'address_id': self.address_id,
            'shipping_location': self.shipping_location,
            'subtotal': as_number(self.subtotal),
            'discount': as_number(self.discount),
            'shipping_fee': as_number(self.shipping_fee),
            'tax': as_number(self.tax),
            'total': as_number(self.total),
            'notes': self.notes,
            'payment_success_id': self.payment_success_id,
            'coupon': self.coupon.to_dict() if self.coupon else None,
            'cancelled_at': iso(self.cancelled_at),
            'cancel_reason': self.cancel_reason,
            'created_at': iso(self.created_at),
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data

    def __repr__(self):
        return f"<Order(id={self.id}, total={self.total}, status={self.status.value})>"
