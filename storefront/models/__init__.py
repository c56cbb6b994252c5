"""Models package - exports all SQLAlchemy models."""
# Accounts (read-only collaborators)
from storefront.models.user import User
from storefront.models.address import Address

# Catalog
from storefront.models.product import Product, ProductVariant
from storefront.models.price import Price, PriceType

# Promotions
from storefront.models.coupon import Coupon, CouponType

# Cart
from storefront.models.cart import Cart
from storefront.models.cart_item import CartItem
from storefront.models.cart_coupon import CartCoupon

# Orders & payments
from storefront.models.payment import Payment, PaymentMethod, PaymentStatus
from storefront.models.payment_webhook import PaymentWebhook
from storefront.models.payment_refund import PaymentRefund
from storefront.models.order import Order, OrderStatus
from storefront.models.order_item import OrderItem
from storefront.models.order_coupon import OrderCoupon

__all__ = [
    'User', 'Address',
    'Product', 'ProductVariant', 'Price', 'PriceType',
    'Coupon', 'CouponType',
    'Cart', 'CartItem', 'CartCoupon',
    'Payment', 'PaymentMethod', 'PaymentStatus', 'PaymentWebhook', 'PaymentRefund',
    'Order', 'OrderStatus', 'OrderItem', 'OrderCoupon',
]
