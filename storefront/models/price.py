"""Price model."""
import enum
from sqlalchemy import Column, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType


class PriceType(enum.Enum):
    """LIST is the compare-at price, SALE the charged one."""
    LIST = "LIST"
    SALE = "SALE"


class Price(Base):
    """Priced record for a variant with an optional activation window."""

    __tablename__ = 'price'

    id = Column(IdType, primary_key=True, autoincrement=True)
    variant_id = Column(IdType, ForeignKey('product_variant.id'), nullable=False, index=True)
    type = Column(Enum(PriceType, name='price_type'), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    start_at = Column(DateTime, nullable=True)
    end_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    variant = relationship('ProductVariant', back_populates='prices')

    def is_active_at(self, moment):
        """True if the window contains moment (open ends are unbounded)."""
        if self.start_at is not None and self.start_at > moment:
            return False
        if self.end_at is not None and self.end_at < moment:
            return False
        return True

    def __repr__(self):
        return f"<Price(variant_id={self.variant_id}, type={self.type.value}, amount={self.amount})>"
