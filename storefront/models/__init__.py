"""Models package - exports all SQLAlchemy models."""
from storefront.models.app_user import AppUser, UserRole, CustomerType
from storefront.models.category import Category
from storefront.models.product import Product, WeightUnit, weight_in_kg
from storefront.models.coupon import Coupon, CouponType, coupon_category, coupon_product
from storefront.models.bulk_discount import BulkDiscount, BulkDiscountTier
from storefront.models.cart import Cart, DiscountSource
from storefront.models.cart_item import CartItem
from storefront.models.order import Order, OrderStatus, PaymentStatus, PaymentMethod
from storefront.models.order_item import OrderItem
from storefront.models.payment_webhook_event import PaymentWebhookEvent, WebhookEventStatus

__all__ = [
    'AppUser', 'UserRole', 'CustomerType',
    'Category', 'Product', 'WeightUnit', 'weight_in_kg',
    'Coupon', 'CouponType', 'coupon_category', 'coupon_product',
    'BulkDiscount', 'BulkDiscountTier',
    'Cart', 'DiscountSource', 'CartItem',
    'Order', 'OrderStatus', 'PaymentStatus', 'PaymentMethod', 'OrderItem',
    'PaymentWebhookEvent', 'WebhookEventStatus',
]
