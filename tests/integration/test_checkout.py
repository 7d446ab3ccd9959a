"""
Integration tests for checkout.
"""

import re
from decimal import Decimal

import pytest

from storefront.exceptions import (
    CouponNotFoundError, CouponUsageLimitError, InsufficientStockError, ValidationError,
)
from storefront.models import Cart, Coupon, Order, OrderItem, Product
from storefront.services import cart_service, order_service


def stock_of(session, product_id):
    return session.query(Product.stock).filter(Product.id == product_id).scalar()


class TestCheckout:
    """Tests for order_service.checkout."""

    def test_online_order(self, session, user, product, shipping_address):
        cart_service.add_item(session, user.id, product.id, 2)

        order = order_service.checkout(session, user.id, shipping_address, 'razorpay', notes='Ring twice')

        assert re.fullmatch(r'OM\d{6}[A-Z0-9]{6}', order.order_number)
        assert order.subtotal == Decimal('200.00')
        assert order.shipping_cost == Decimal('50.00')
        assert order.tax == Decimal('10.00')
        assert order.total_amount == Decimal('260.00')
        assert order.order_status == 'pending'
        assert order.payment_status == 'pending'
        assert order.notes == 'Ring twice'
        assert order.estimated_delivery is not None
        assert order.shipping_address['city'] == 'Pune'

    def test_cod_order_is_confirmed(self, session, user, product, shipping_address):
        cart_service.add_item(session, user.id, product.id, 2)

        order = order_service.checkout(session, user.id, shipping_address, 'cod')

        assert order.cod_charge == Decimal('20.00')
        assert order.total_amount == Decimal('280.00')
        assert order.order_status == 'confirmed'
        assert order.payment_status == 'pending'

    def test_side_effects(self, session, user, product, shipping_address):
        cart_service.add_item(session, user.id, product.id, 3)

        order = order_service.checkout(session, user.id, shipping_address, 'cod')

        assert stock_of(session, product.id) == 7
        cart = session.query(Cart).filter_by(user_id=user.id).one()
        assert cart.is_empty
        assert cart.total_amount == Decimal('0')
        assert len(order.items) == 1
        assert order.items[0].name == product.name
        assert order.items[0].line_total == Decimal('300.00')

    def test_item_snapshot_independent_of_catalog(self, session, user, product, shipping_address):
        cart_service.add_item(session, user.id, product.id, 1)
        order = order_service.checkout(session, user.id, shipping_address, 'cod')
        order_id = order.id

        product.price = Decimal('999.00')
        product.name = 'Renamed'
        session.commit()

        item = session.query(OrderItem).filter_by(order_id=order_id).one()
        assert item.price == Decimal('100.00')
        assert item.name == 'Alphonso Mango'

    def test_priced_at_current_product_price(self, session, user, product, shipping_address):
        cart_service.add_item(session, user.id, product.id, 1)
        product.price = Decimal('120.00')
        session.commit()

        order = order_service.checkout(session, user.id, shipping_address, 'cod')

        assert order.subtotal == Decimal('120.00')

    def test_seasonal_flag(self, session, user, make_product, shipping_address):
        seasonal = make_product(name='Litchi', is_seasonal=True)
        cart_service.add_item(session, user.id, seasonal.id, 1)

        order = order_service.checkout(session, user.id, shipping_address, 'cod')

        assert order.is_seasonal_order is True

    def test_empty_cart(self, session, user, shipping_address):
        with pytest.raises(ValidationError):
            order_service.checkout(session, user.id, shipping_address, 'cod')

    def test_bad_payment_method(self, session, user, product, shipping_address):
        cart_service.add_item(session, user.id, product.id, 1)
        with pytest.raises(ValidationError):
            order_service.checkout(session, user.id, shipping_address, 'cheque')

    def test_incomplete_address(self, session, user, product, shipping_address):
        cart_service.add_item(session, user.id, product.id, 1)
        del shipping_address['zip_code']
        with pytest.raises(ValidationError) as exc:
            order_service.checkout(session, user.id, shipping_address, 'cod')
        assert 'zip_code' in exc.value.message


class TestCheckoutAllOrNothing:
    """A failing line aborts the whole checkout."""

    def test_out_of_stock_changes_nothing(self, session, user, make_product, shipping_address):
        mango = make_product(name='Alphonso Mango', stock=10)
        litchi = make_product(name='Litchi', stock=5)
        cart_service.add_item(session, user.id, mango.id, 2)
        cart_service.add_item(session, user.id, litchi.id, 5)

        # Stock drops after the items were carted
        litchi.stock = 4
        session.commit()

        with pytest.raises(InsufficientStockError) as exc:
            order_service.checkout(session, user.id, shipping_address, 'cod')

        assert 'Litchi' in exc.value.message
        assert exc.value.payload['available'] == 4
        assert stock_of(session, mango.id) == 10
        assert stock_of(session, litchi.id) == 4
        assert session.query(Order).count() == 0
        cart = session.query(Cart).filter_by(user_id=user.id).one()
        assert len(cart.items) == 2

    def test_unavailable_product_changes_nothing(self, session, user, make_product, shipping_address):
        mango = make_product(name='Alphonso Mango')
        cart_service.add_item(session, user.id, mango.id, 2)
        mango.is_available = False
        session.commit()

        with pytest.raises(ValidationError):
            order_service.checkout(session, user.id, shipping_address, 'cod')

        assert stock_of(session, mango.id) == 10
        assert session.query(Order).count() == 0


class TestCheckoutDiscounts:
    """Discounts are re-validated at checkout."""

    def test_cart_coupon_applied_and_redeemed(self, session, user, product, make_coupon, shipping_address):
        make_coupon(code='FRESH10', min_order_amount='150', max_discount='15', usage_limit=5)
        cart_service.add_item(session, user.id, product.id, 2)
        cart_service.apply_coupon(session, user.id, 'FRESH10')

        order = order_service.checkout(session, user.id, shipping_address, 'razorpay')

        assert order.discount == Decimal('15.00')
        assert order.total_amount == Decimal('245.00')
        assert order.coupon_code == 'FRESH10'
        assert session.query(Coupon).filter_by(code='FRESH10').one().used_count == 1

    def test_stale_cart_coupon_degrades(self, session, user, product, make_coupon, shipping_address):
        coupon = make_coupon(code='FRESH10')
        cart_service.add_item(session, user.id, product.id, 2)
        cart_service.apply_coupon(session, user.id, 'FRESH10')
        coupon.is_active = False
        session.commit()

        order = order_service.checkout(session, user.id, shipping_address, 'cod')

        assert order.discount == Decimal('0.00')
        assert order.coupon_code is None
        assert order.total_amount == Decimal('280.00')

    def test_requested_invalid_coupon_fails(self, session, user, product, shipping_address):
        cart_service.add_item(session, user.id, product.id, 2)

        with pytest.raises(CouponNotFoundError):
            order_service.checkout(session, user.id, shipping_address, 'cod', coupon_code='NOPE')

        assert stock_of(session, product.id) == 10
        assert session.query(Order).count() == 0

    def test_usage_limit(self, session, make_user, make_product, make_coupon, shipping_address):
        """A coupon limited to N uses succeeds N times and fails the next."""
        make_coupon(code='TWICE', type='fixed', value='10', usage_limit=2)
        product = make_product(stock=100)

        for _ in range(2):
            shopper = make_user()
            cart_service.add_item(session, shopper.id, product.id, 1)
            order = order_service.checkout(session, shopper.id, shipping_address, 'cod', coupon_code='twice')
            assert order.discount == Decimal('10.00')

        shopper = make_user()
        cart_service.add_item(session, shopper.id, product.id, 1)
        with pytest.raises(CouponUsageLimitError):
            order_service.checkout(session, shopper.id, shipping_address, 'cod', coupon_code='TWICE')

        assert session.query(Coupon).filter_by(code='TWICE').one().used_count == 2
        assert stock_of(session, product.id) == 98
