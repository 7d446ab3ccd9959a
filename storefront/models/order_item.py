"""Order Item model - denormalized product snapshot."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from storefront.database import Base, BigIntPK


class OrderItem(Base):
    """Order Item (snapshot of name, price and weight at order time)."""

    __tablename__ = 'order_item'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('customer_order.id'), nullable=False, index=True)
    # Plain id, not a relationship: the snapshot never reads back from the catalog
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)
    weight = Column(Numeric(10, 3), nullable=True)
    weight_unit = Column(String(5), nullable=True)

    # Relationships
    order = relationship('Order', back_populates='items')

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'name': self.name,
            'quantity': self.quantity,
            'price': self.price,
            'line_total': self.line_total,
            'weight': self.weight,
            'weight_unit': self.weight_unit,
        }

    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
