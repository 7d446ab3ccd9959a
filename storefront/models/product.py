"""Product model."""
from decimal import Decimal
from sqlalchemy import Column, BigInteger, Integer, String, Boolean, Numeric, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class WeightUnit:
    """Supported weight units."""
    KG = 'kg'
    G = 'g'


def weight_in_kg(weight, unit) -> Decimal:
    """Normalize a weight to kilograms."""
    value = Decimal(str(weight or 0))
    if unit == WeightUnit.G:
        return value / Decimal('1000')
    return value


class Product(Base):
    """
    Catalog product.

    Read-only to the checkout core except for ``stock``, which checkout
    decrements and cancellation restores.
    """

    __tablename__ = 'product'
    __table_args__ = (
        CheckConstraint('stock >= 0', name='ck_product_stock_non_negative'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    category_id = Column(BigInteger, ForeignKey('category.id'), nullable=True, index=True)
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    weight = Column(Numeric(10, 3), nullable=False, default=0)
    weight_unit = Column(String(5), nullable=False, default=WeightUnit.KG)
    is_available = Column(Boolean, nullable=False, default=True)
    is_seasonal = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    category = relationship('Category', foreign_keys=[category_id])

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', stock={self.stock})>"
