"""Order Coupon model."""
from sqlalchemy import Column, String, Boolean, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from storefront.database import Base, IdType
from storefront.utils.money import as_number


class OrderCoupon(Base):
    """Coupon snapshot taken at checkout with the discount actually applied."""

    __tablename__ = 'order_coupon'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(IdType, ForeignKey('orders.id'), nullable=False, unique=True)
    coupon_id = Column(IdType, ForeignKey('coupon.id'), nullable=False)
    code = Column(String(64), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    free_shipping = Column(Boolean, nullable=False, default=False)

    order = relationship('Order', back_populates='coupon')
    coupon = relationship('Coupon')

    def to_dict(self):
        return {
            'coupon_id': self.coupon_id,
            'code': self.code,
            'discount_amount': as_number(self.discount_amount),
            'free_shipping': self.free_shipping,
        }
