"""Cart Item model - price and weight snapshot of a product."""
from sqlalchemy import Column, BigInteger, Integer, Numeric, String, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from storefront.database import Base, BigIntPK


class CartItem(Base):
    """
    Cart Item - one product per cart.

    ``price`` and ``weight`` are captured when the product is first added
    and are not re-read from the catalog on every view.
    """

    __tablename__ = 'cart_item'
    __table_args__ = (
        UniqueConstraint('cart_id', 'product_id', name='uq_cart_item_product'),
        CheckConstraint('quantity >= 1', name='ck_cart_item_quantity_positive'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    cart_id = Column(BigInteger, ForeignKey('cart.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    weight = Column(Numeric(10, 3), nullable=False, default=0)
    weight_unit = Column(String(5), nullable=False, default='kg')

    # Relationships
    cart = relationship('Cart', back_populates='items')
    product = relationship('Product')

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'name': self.product.name if self.product else None,
            'quantity': self.quantity,
            'price': self.price,
            'weight': self.weight,
            'weight_unit': self.weight_unit,
        }

    def __repr__(self):
        return f"<CartItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
