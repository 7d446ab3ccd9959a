"""Bulk Discount model - quantity tiers for a product or category."""
from sqlalchemy import Column, BigInteger, Integer, Boolean, Numeric, Text, DateTime, ForeignKey, CheckConstraint, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK
from storefront.models.app_user import CustomerType


class BulkDiscount(Base):
    """
    Bulk Discount.

    Scoped to a product or, when no product is set, to a category.
    Tiers are kept in ascending ``min_quantity`` order.
    """

    __tablename__ = 'bulk_discount'
    __table_args__ = (
        CheckConstraint(
            'product_id IS NOT NULL OR category_id IS NOT NULL',
            name='ck_bulk_discount_has_scope'
        ),
        CheckConstraint(
            'max_order_value IS NULL OR min_order_value IS NULL OR max_order_value >= min_order_value',
            name='ck_bulk_discount_order_value_range'
        ),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=True, index=True)
    category_id = Column(BigInteger, ForeignKey('category.id'), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    start_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    end_date = Column(DateTime(timezone=True), nullable=True)
    min_order_value = Column(Numeric(10, 2), nullable=True)
    max_order_value = Column(Numeric(10, 2), nullable=True)
    applicable_user_types = Column(JSON, nullable=False, default=lambda: [CustomerType.ALL])
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product')
    category = relationship('Category')
    tiers = relationship(
        'BulkDiscountTier',
        back_populates='bulk_discount',
        cascade='all, delete-orphan',
        order_by='BulkDiscountTier.min_quantity'
    )

    def is_user_eligible(self, customer_type) -> bool:
        types = self.applicable_user_types or [CustomerType.ALL]
        return CustomerType.ALL in types or customer_type in types

    def applies_to_order_value(self, order_value) -> bool:
        if self.min_order_value is not None and order_value < self.min_order_value:
            return False
        if self.max_order_value is not None and order_value > self.max_order_value:
            return False
        return True

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'category_id': self.category_id,
            'is_active': self.is_active,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'min_order_value': self.min_order_value,
            'max_order_value': self.max_order_value,
            'applicable_user_types': self.applicable_user_types or [CustomerType.ALL],
            'description': self.description,
            'tiers': [tier.to_dict() for tier in self.tiers],
        }

    def __repr__(self):
        return f"<BulkDiscount(id={self.id}, product_id={self.product_id}, category_id={self.category_id})>"


class BulkDiscountTier(Base):
    """One (min_quantity, percentage, cap) rule of a bulk discount."""

    __tablename__ = 'bulk_discount_tier'
    __table_args__ = (
        CheckConstraint('min_quantity >= 1', name='ck_tier_min_quantity_positive'),
        CheckConstraint(
            'discount_percentage >= 0 AND discount_percentage <= 100',
            name='ck_tier_percentage_range'
        ),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    bulk_discount_id = Column(
        BigInteger, ForeignKey('bulk_discount.id', ondelete='CASCADE'), nullable=False, index=True
    )
    min_quantity = Column(Integer, nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False)
    max_discount = Column(Numeric(10, 2), nullable=True)

    bulk_discount = relationship('BulkDiscount', back_populates='tiers')

    def to_dict(self):
        return {
            'min_quantity': self.min_quantity,
            'discount_percentage': self.discount_percentage,
            'max_discount': self.max_discount,
        }

    def __repr__(self):
        return f"<BulkDiscountTier(min_quantity={self.min_quantity}, pct={self.discount_percentage})>"
