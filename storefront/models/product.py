"""Product and ProductVariant models."""
from sqlalchemy import Column, String, Boolean, Integer, Numeric, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, IdType


class Product(Base):
    """Catalog product. Purchasable units are its variants."""

    __tablename__ = 'product'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    base_price = Column(Numeric(12, 2), nullable=False, default=0)
    image_url = Column(String(255), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    variants = relationship('ProductVariant', back_populates='product', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}')>"


class ProductVariant(Base):
    """Purchasable SKU (color + size) of a product, with its own stock count."""

    __tablename__ = 'product_variant'
    __table_args__ = (
        CheckConstraint('stock >= 0', name='ck_product_variant_stock_non_negative'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False, index=True)
    sku = Column(String(64), nullable=True, unique=True)
    color = Column(String(64), nullable=True)
    size = Column(String(32), nullable=True)
    price = Column(Numeric(12, 2), nullable=True)  # overrides product.base_price
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    product = relationship('Product', back_populates='variants')
    prices = relationship('Price', back_populates='variant', cascade='all, delete-orphan')

    @property
    def label(self):
        """Human-readable name: product plus color/size when present."""
        options = ' / '.join(v for v in (self.color, self.size) if v)
        name = self.product.name if self.product else f'Variant #{self.id}'
        return f'{name} ({options})' if options else name

    @property
    def in_stock(self):
        return self.is_active and (self.stock or 0) > 0

    def __repr__(self):
        return f"<ProductVariant(id={self.id}, sku='{self.sku}', stock={self.stock})>"
