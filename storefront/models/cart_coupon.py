"""Cart Coupon model."""
from sqlalchemy import Column, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType


class CartCoupon(Base):
    """
    Coupon applied to a cart.

    discount_value and free_shipping cache the evaluation made when the coupon
    was applied; readers re-evaluate and never trust them.
    """

    __tablename__ = 'cart_coupon'

    id = Column(IdType, primary_key=True, autoincrement=True)
    cart_id = Column(IdType, ForeignKey('cart.id'), nullable=False, unique=True)
    coupon_id = Column(IdType, ForeignKey('coupon.id'), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False, default=0)
    free_shipping = Column(Boolean, nullable=False, default=False)
    applied_at = Column(DateTime, nullable=False, server_default=func.now())

    cart = relationship('Cart', back_populates='coupon')
    coupon = relationship('Coupon')

    def __repr__(self):
        return f"<CartCoupon(cart_id={self.cart_id}, coupon_id={self.coupon_id})>"
