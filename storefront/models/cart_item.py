"""Cart Item model."""
from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType


class CartItem(Base):
    """One variant line in a cart."""

    __tablename__ = 'cart_item'
    __table_args__ = (
        UniqueConstraint('cart_id', 'variant_id', name='uq_cart_item_cart_variant'),
        CheckConstraint('quantity > 0', name='ck_cart_item_quantity_positive'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    cart_id = Column(IdType, ForeignKey('cart.id'), nullable=False, index=True)
    variant_id = Column(IdType, ForeignKey('product_variant.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    cart = relationship('Cart', back_populates='items')
    variant = relationship('ProductVariant')

    def __repr__(self):
        return f"<CartItem(cart_id={self.cart_id}, variant_id={self.variant_id}, quantity={self.quantity})>"
