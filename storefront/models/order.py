"""Order model - immutable-after-creation snapshot of a checkout."""
from sqlalchemy import Column, BigInteger, String, Text, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK
import enum


class OrderStatus(str, enum.Enum):
    """Order fulfillment status."""
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    PROCESSING = 'processing'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class PaymentStatus(str, enum.Enum):
    """Order payment status."""
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'
    REFUNDED = 'refunded'


class PaymentMethod(str, enum.Enum):
    """Accepted payment methods."""
    RAZORPAY = 'razorpay'
    COD = 'cod'
    CARD = 'card'


class Order(Base):
    """
    Order.

    Line items and shipping address are copied at checkout; after creation
    only status transitions and payment reconciliation touch the row.
    Orders are never deleted.
    """

    __tablename__ = 'customer_order'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False, index=True)
    order_number = Column(String(32), nullable=False, unique=True, index=True)

    # Shipping address (embedded)
    shipping_street = Column(String(255), nullable=False)
    shipping_city = Column(String(100), nullable=False)
    shipping_state = Column(String(100), nullable=False)
    shipping_zip_code = Column(String(20), nullable=False)
    shipping_country = Column(String(100), nullable=False)

    payment_method = Column(String(20), nullable=False)
    payment_status = Column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    order_status = Column(
        String(20), nullable=False, default=OrderStatus.PENDING.value, index=True
    )

    subtotal = Column(Numeric(10, 2), nullable=False)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    cod_charge = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    coupon_code = Column(String(50), nullable=True)

    gateway_order_id = Column(String(64), nullable=True, index=True)
    gateway_payment_id = Column(String(64), nullable=True, index=True)

    tracking_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    is_seasonal_order = Column(Boolean, nullable=False, default=False)

    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship('AppUser')
    items = relationship(
        'OrderItem',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderItem.id'
    )

    @property
    def shipping_address(self):
        return {
            'street': self.shipping_street,
            'city': self.shipping_city,
            'state': self.shipping_state,
            'zip_code': self.shipping_zip_code,
            'country': self.shipping_country,
        }

    @property
    def is_cod(self):
        return self.payment_method == PaymentMethod.COD.value

    def to_dict(self):
        def _iso(value):
            return value.isoformat() if value else None

        return {
            'id': self.id,
            'order_number': self.order_number,
            'user_id': self.user_id,
            'items': [item.to_dict() for item in self.items],
            'shipping_address': self.shipping_address,
            'payment_method': self.payment_method,
            'payment_status': self.payment_status,
            'order_status': self.order_status,
            'subtotal': self.subtotal,
            'shipping_cost': self.shipping_cost,
            'tax': self.tax,
            'discount': self.discount,
            'cod_charge': self.cod_charge,
            'total_amount': self.total_amount,
            'coupon_code': self.coupon_code,
            'gateway_order_id': self.gateway_order_id,
            'gateway_payment_id': self.gateway_payment_id,
            'tracking_number': self.tracking_number,
            'notes': self.notes,
            'is_seasonal_order': self.is_seasonal_order,
            'estimated_delivery': _iso(self.estimated_delivery),
            'delivered_at': _iso(self.delivered_at),
            'cancelled_at': _iso(self.cancelled_at),
            'cancellation_reason': self.cancellation_reason,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Order(id={self.id}, number='{self.order_number}', status='{self.order_status}')>"
