"""Cart model."""
from sqlalchemy import Column, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType
from storefront.models.payment import PaymentMethod, payment_method_type


class Cart(Base):
    """Persistent cart, exactly one per user. Emptied at checkout, never deleted."""

    __tablename__ = 'cart'

    id = Column(IdType, primary_key=True, autoincrement=True)
    user_id = Column(IdType, ForeignKey('app_user.id'), nullable=False, unique=True)
    payment_method = Column(payment_method_type, nullable=False, default=PaymentMethod.COD)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    user = relationship('User', back_populates='cart')
    items = relationship(
        'CartItem', back_populates='cart', cascade='all, delete-orphan', order_by='CartItem.id'
    )
    coupon = relationship('CartCoupon', uselist=False, back_populates='cart', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Cart(id={self.id}, user_id={self.user_id})>"
