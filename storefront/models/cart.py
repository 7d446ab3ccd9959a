"""Cart model - one persistent cart per user."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class DiscountSource:
    """Where a cart's discount comes from (one at a time)."""
    COUPON = 'COUPON'
    BULK = 'BULK'


class Cart(Base):
    """
    Cart - mutable per-user collection of line items.

    Derived totals are stored denormalized and recomputed by
    ``cart_service.recalculate_cart`` on every mutation.
    One cart per user (enforced by UNIQUE constraint).
    """

    __tablename__ = 'cart'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False, unique=True)

    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_weight = Column(Numeric(10, 3), nullable=False, default=0)  # kg
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    final_amount = Column(Numeric(10, 2), nullable=False, default=0)

    discount_source = Column(String(10), nullable=True)
    applied_coupon_id = Column(BigInteger, ForeignKey('coupon.id'), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    user = relationship('AppUser')
    applied_coupon = relationship('Coupon')
    items = relationship(
        'CartItem',
        back_populates='cart',
        cascade='all, delete-orphan',
        order_by='CartItem.id'
    )

    @property
    def is_empty(self):
        return not self.items

    def find_item(self, product_id):
        """Return the line for a product, if present."""
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'items': [item.to_dict() for item in self.items],
            'total_amount': self.total_amount,
            'total_weight': self.total_weight,
            'weight_unit': 'kg',
            'discount_amount': self.discount_amount,
            'final_amount': self.final_amount,
            'discount_source': self.discount_source,
            'applied_coupon': self.applied_coupon.code if self.applied_coupon else None,
        }

    def __repr__(self):
        return f"<Cart(id={self.id}, user_id={self.user_id}, items={len(self.items)})>"
