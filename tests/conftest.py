import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from storefront import create_app
from storefront.database import create_schema, drop_schema, get_session
from storefront.models import (
    AppUser, UserRole, Category, Product, Coupon, CouponType,
)
from storefront.services.payment_service import EXTENSION_KEY
from storefront.utils.dates import utcnow


class FakeGateway:
    """In-memory stand-in for the Razorpay client."""

    def __init__(self):
        self.orders = []
        self.refunds = []
        self.fail_with = None
        self.refund_status = 'processed'

    def create_order(self, amount, currency, receipt, notes=None):
        if self.fail_with:
            raise self.fail_with
        order = {
            'id': f'order_{len(self.orders) + 1:04d}',
            'amount': amount,
            'currency': currency,
            'receipt': receipt,
            'status': 'created',
        }
        self.orders.append(order)
        return order

    def fetch_payment(self, payment_id):
        if self.fail_with:
            raise self.fail_with
        return {'id': payment_id, 'amount': 26000, 'currency': 'INR', 'status': 'captured', 'method': 'upi'}

    def refund(self, payment_id, amount=None, notes=None):
        if self.fail_with:
            raise self.fail_with
        refund = {
            'id': f'rfnd_{len(self.refunds) + 1:04d}',
            'payment_id': payment_id,
            'amount': amount,
            'status': self.refund_status,
        }
        self.refunds.append(refund)
        return refund


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    return create_app('config.TestingConfig')


@pytest.fixture(autouse=True)
def app_context(app):
    """Fresh schema and an app context for every test."""
    with app.app_context():
        create_schema()
        yield
        get_session().remove()
        drop_schema()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session for testing."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def gateway(app):
    """Replace the configured payment gateway with a fake."""
    fake = FakeGateway()
    previous = app.extensions.get(EXTENSION_KEY)
    app.extensions[EXTENSION_KEY] = fake
    yield fake
    app.extensions[EXTENSION_KEY] = previous


def _make_user(session, role=UserRole.USER, name='Test User'):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(email=f'{role}-{suffix}@test.com', full_name=name, role=role, active=True)
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def make_user(session):
    """Factory for additional shoppers."""
    def _make(role=UserRole.USER, name='Test User'):
        return _make_user(session, role, name)
    return _make


@pytest.fixture(scope='function')
def user(session):
    return _make_user(session, name='Shopper One')


@pytest.fixture(scope='function')
def other_user(session):
    return _make_user(session, name='Shopper Two')


@pytest.fixture(scope='function')
def admin(session):
    return _make_user(session, role=UserRole.ADMIN, name='Store Admin')


@pytest.fixture(scope='function')
def category(session):
    category = Category(name='Fruits')
    session.add(category)
    session.commit()
    return category


@pytest.fixture(scope='function')
def other_category(session):
    category = Category(name='Dairy')
    session.add(category)
    session.commit()
    return category


@pytest.fixture(scope='function')
def make_product(session, category):
    """Factory for catalog products."""
    def _make(name='Alphonso Mango', price='100.00', stock=10, weight='1.000',
              weight_unit='kg', is_available=True, is_seasonal=False, category_id=None):
        product = Product(
            name=name,
            category_id=category_id or category.id,
            price=Decimal(price),
            stock=stock,
            weight=Decimal(weight),
            weight_unit=weight_unit,
            is_available=is_available,
            is_seasonal=is_seasonal,
        )
        session.add(product)
        session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product()


@pytest.fixture(scope='function')
def make_coupon(session):
    """Factory for coupons valid from yesterday until next week."""
    def _make(code='SAVE10', type=CouponType.PERCENTAGE, value='10', min_order_amount='0',
              max_discount=None, usage_limit=None, used_count=0, is_active=True,
              valid_from=None, valid_until=None, categories=(), products=()):
        now = utcnow()
        coupon = Coupon(
            code=code,
            name=f'{code} coupon',
            type=type,
            value=Decimal(value),
            min_order_amount=Decimal(min_order_amount),
            max_discount=Decimal(max_discount) if max_discount is not None else None,
            valid_from=valid_from or now - timedelta(days=1),
            valid_until=valid_until or now + timedelta(days=7),
            usage_limit=usage_limit,
            used_count=used_count,
            is_active=is_active,
        )
        coupon.categories = list(categories)
        coupon.products = list(products)
        session.add(coupon)
        session.commit()
        return coupon
    return _make


@pytest.fixture(scope='function')
def shipping_address():
    return {
        'street': '12 MG Road',
        'city': 'Pune',
        'state': 'Maharashtra',
        'zip_code': '411001',
        'country': 'India',
    }


@pytest.fixture(scope='function')
def login(client):
    """Log a user into the test client's session."""
    def _login(user_id):
        with client.session_transaction() as sess:
            sess['user_id'] = user_id
    return _login
