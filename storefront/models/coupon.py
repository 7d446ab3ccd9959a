"""Coupon model."""
from sqlalchemy import (
    Column, BigInteger, Integer, String, Text, Boolean, Numeric, DateTime,
    ForeignKey, Table, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class CouponType:
    """Coupon discount types."""
    PERCENTAGE = 'percentage'
    FIXED = 'fixed'

    ALL = (PERCENTAGE, FIXED)


coupon_category = Table(
    'coupon_category',
    Base.metadata,
    Column('coupon_id', BigInteger, ForeignKey('coupon.id', ondelete='CASCADE'), primary_key=True),
    Column('category_id', BigInteger, ForeignKey('category.id', ondelete='CASCADE'), primary_key=True),
)

coupon_product = Table(
    'coupon_product',
    Base.metadata,
    Column('coupon_id', BigInteger, ForeignKey('coupon.id', ondelete='CASCADE'), primary_key=True),
    Column('product_id', BigInteger, ForeignKey('product.id', ondelete='CASCADE'), primary_key=True),
)


class Coupon(Base):
    """
    Coupon.

    ``code`` is stored upper-case and matched case-insensitively.
    Empty category/product lists mean the coupon is unrestricted.
    """

    __tablename__ = 'coupon'
    __table_args__ = (
        CheckConstraint('value >= 0', name='ck_coupon_value_non_negative'),
        CheckConstraint(
            'usage_limit IS NULL OR used_count <= usage_limit',
            name='ck_coupon_usage_within_limit'
        ),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)
    min_order_amount = Column(Numeric(10, 2), nullable=False, default=0)
    max_discount = Column(Numeric(10, 2), nullable=True)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    categories = relationship('Category', secondary=coupon_category)
    products = relationship('Product', secondary=coupon_product)

    @property
    def is_restricted(self):
        return bool(self.categories or self.products)

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'name': self.name,
            'description': self.description,
            'type': self.type,
            'value': self.value,
            'min_order_amount': self.min_order_amount,
            'max_discount': self.max_discount,
            'valid_from': self.valid_from.isoformat() if self.valid_from else None,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'usage_limit': self.usage_limit,
            'used_count': self.used_count,
            'is_active': self.is_active,
            'categories': [c.id for c in self.categories],
            'products': [p.id for p in self.products],
        }

    def __repr__(self):
        return f"<Coupon(id={self.id}, code='{self.code}', type='{self.type}')>"
