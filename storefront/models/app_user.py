"""AppUser model - shoppers and administrators supplied by the identity provider."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class UserRole:
    """Roles understood by the checkout core."""
    USER = 'user'
    ADMIN = 'admin'


class CustomerType:
    """Customer segments used to target bulk discounts."""
    ALL = 'all'
    PREMIUM = 'premium'
    WHOLESALE = 'wholesale'
    RETAIL = 'retail'

    SEGMENTS = (PREMIUM, WHOLESALE, RETAIL)


class AppUser(Base):
    """AppUser model."""

    __tablename__ = 'app_user'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.USER)
    customer_type = Column(String(20), nullable=False, default=CustomerType.RETAIL)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    def __repr__(self):
        return f"<AppUser(id={self.id}, email='{self.email}', role='{self.role}')>"
