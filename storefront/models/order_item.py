"""Order Item model."""
from sqlalchemy import Column, String, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from storefront.database import Base, IdType
from storefront.utils.money import as_number


class OrderItem(Base):
    """Immutable line copied from a cart item at checkout."""

    __tablename__ = 'order_item'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(IdType, ForeignKey('orders.id'), nullable=False, index=True)
    variant_id = Column(IdType, ForeignKey('product_variant.id'), nullable=False)
    product_name = Column(String, nullable=False)
    variant_label = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    list_price = Column(Numeric(12, 2), nullable=True)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)

    order = relationship('Order', back_populates='items')
    variant = relationship('ProductVariant')

    @property
    def line_total(self):
        return self.unit_price * self.quantity

    def to_dict(self):
        return {
            'id': self.id,
            'variant_id': self.variant_id,
            'product_name': self.product_name,
            'variant_label': self.variant_label,
            'quantity': self.quantity,
            'unit_price': as_number(self.unit_price),
            'list_price': as_number(self.list_price),
            'line_total': as_number(self.line_total),
            'tax_amount': as_number(self.tax_amount),
        }

    def __repr__(self):
        return f"<OrderItem(order_id={self.order_id}, variant_id={self.variant_id}, quantity={self.quantity})>"
