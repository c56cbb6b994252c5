"""Coupon model."""
import enum
from sqlalchemy import Column, String, Boolean, Integer, Numeric, DateTime, Enum
from sqlalchemy.sql import func
from storefront.database import Base, IdType


class CouponType(enum.Enum):
    """Discount calculation mode."""
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class Coupon(Base):
    """Promotional code reducing price and/or shipping cost."""

    __tablename__ = 'coupon'

    id = Column(IdType, primary_key=True, autoincrement=True)
    code = Column(String(64), nullable=False, unique=True, index=True)
    description = Column(String(255), nullable=True)
    type = Column(Enum(CouponType, name='coupon_type'), nullable=False, default=CouponType.PERCENTAGE)
    value = Column(Numeric(12, 2), nullable=False)
    min_order_value = Column(Numeric(12, 2), nullable=True)
    max_discount = Column(Numeric(12, 2), nullable=True)  # cap for PERCENTAGE coupons
    free_shipping = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    start_at = Column(DateTime, nullable=True)
    end_at = Column(DateTime, nullable=True)
    usage_limit = Column(Integer, nullable=True)  # null = unlimited
    usage_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    @property
    def is_exhausted(self):
        return self.usage_limit is not None and (self.usage_count or 0) >= self.usage_limit

    def __repr__(self):
        return f"<Coupon(code='{self.code}', type={self.type.value}, value={self.value})>"
