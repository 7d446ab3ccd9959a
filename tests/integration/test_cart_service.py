"""
Integration tests for the persistent cart.
"""

from decimal import Decimal

import pytest

from storefront.exceptions import (
    CouponMinimumNotMetError, InsufficientStockError, NotFoundError, ValidationError,
)
from storefront.models import BulkDiscount, BulkDiscountTier, Cart, DiscountSource
from storefront.services import cart_service


def assert_cart_consistent(cart):
    assert cart.final_amount == cart.total_amount - cart.discount_amount
    assert cart.discount_amount <= cart.total_amount


class TestCartItems:
    """Tests for adding, updating and removing lines."""

    def test_get_or_create_is_lazy_and_unique(self, session, user):
        first = cart_service.get_or_create_cart(session, user.id)
        second = cart_service.get_or_create_cart(session, user.id)

        assert first.id == second.id
        assert session.query(Cart).filter_by(user_id=user.id).count() == 1
        assert first.total_amount == Decimal('0')

    def test_add_merges_by_product(self, session, user, product):
        cart_service.add_item(session, user.id, product.id, 2)
        cart = cart_service.add_item(session, user.id, product.id, 3)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5
        assert cart.total_amount == Decimal('500.00')
        assert cart.total_weight == Decimal('5.000')
        assert_cart_consistent(cart)

    def test_weight_is_normalized_to_kg(self, session, user, make_product):
        grams = make_product(name='Cardamom', price='50.00', weight='250', weight_unit='g')
        cart = cart_service.add_item(session, user.id, grams.id, 4)

        assert cart.total_weight == Decimal('1.000')

    def test_accumulated_quantity_cannot_exceed_stock(self, session, user, make_product):
        product = make_product(stock=3)
        cart_service.add_item(session, user.id, product.id, 2)

        with pytest.raises(InsufficientStockError) as exc:
            cart_service.add_item(session, user.id, product.id, 2)

        assert exc.value.available == 3
        assert product.name in exc.value.message
        cart = cart_service.get_cart(session, user.id)
        assert cart.items[0].quantity == 2

    def test_unavailable_product_rejected(self, session, user, make_product):
        product = make_product(is_available=False)
        with pytest.raises(ValidationError):
            cart_service.add_item(session, user.id, product.id, 1)

    def test_unknown_product(self, session, user):
        with pytest.raises(NotFoundError):
            cart_service.add_item(session, user.id, 9999, 1)

    def test_update_quantity(self, session, user, product):
        cart_service.add_item(session, user.id, product.id, 1)
        cart = cart_service.update_quantity(session, user.id, product.id, 4)

        assert cart.items[0].quantity == 4
        assert cart.total_amount == Decimal('400.00')

    @pytest.mark.parametrize('quantity', [0, -1, 'two', 2.9, '2.5', True, None])
    def test_update_rejects_bad_quantity(self, session, user, product, quantity):
        cart_service.add_item(session, user.id, product.id, 1)
        with pytest.raises(ValidationError):
            cart_service.update_quantity(session, user.id, product.id, quantity)

    def test_fractional_quantity_is_not_truncated(self, session, user, product):
        """2.9 units is an error rather than silently becoming 2."""
        with pytest.raises(ValidationError) as exc:
            cart_service.add_item(session, user.id, product.id, 2.9)

        assert 'whole number' in exc.value.message
        assert cart_service.get_cart(session, user.id) is None

    def test_integral_float_quantity_accepted(self, session, user, product):
        cart = cart_service.add_item(session, user.id, product.id, 3.0)
        assert cart.items[0].quantity == 3

    def test_update_above_stock(self, session, user, product):
        cart_service.add_item(session, user.id, product.id, 1)
        with pytest.raises(InsufficientStockError):
            cart_service.update_quantity(session, user.id, product.id, product.stock + 1)

    def test_update_missing_line(self, session, user, product, make_product):
        cart_service.add_item(session, user.id, product.id, 1)
        other = make_product(name='Kesar Mango')
        with pytest.raises(NotFoundError):
            cart_service.update_quantity(session, user.id, other.id, 1)

    def test_remove_item(self, session, user, product, make_product):
        other = make_product(name='Kesar Mango', price='60.00')
        cart_service.add_item(session, user.id, product.id, 1)
        cart_service.add_item(session, user.id, other.id, 2)

        cart = cart_service.remove_item(session, user.id, product.id)

        assert [item.product_id for item in cart.items] == [other.id]
        assert cart.total_amount == Decimal('120.00')

    def test_clear_empty_cart_is_noop(self, session, user):
        cart = cart_service.clear_cart(session, user.id)
        assert cart.is_empty

    def test_clear_cart(self, session, user, product, make_coupon):
        make_coupon()
        cart_service.add_item(session, user.id, product.id, 2)
        cart_service.apply_coupon(session, user.id, 'save10')

        cart = cart_service.clear_cart(session, user.id)

        assert cart.is_empty
        assert cart.applied_coupon_id is None
        assert cart.total_amount == Decimal('0')
        assert cart.final_amount == Decimal('0')


class TestCartDiscounts:
    """Tests for coupons and bulk discounts on the cart."""

    def test_apply_coupon(self, session, user, product, make_coupon):
        make_coupon(code='FRESH10', value='10', min_order_amount='150', max_discount='15')
        cart_service.add_item(session, user.id, product.id, 2)

        cart = cart_service.apply_coupon(session, user.id, 'fresh10')

        assert cart.discount_source == DiscountSource.COUPON
        assert cart.applied_coupon.code == 'FRESH10'
        assert cart.discount_amount == Decimal('15.00')
        assert cart.final_amount == Decimal('185.00')

    def test_coupon_on_empty_cart(self, session, user, make_coupon):
        make_coupon()
        cart_service.get_or_create_cart(session, user.id)
        with pytest.raises(ValidationError):
            cart_service.apply_coupon(session, user.id, 'SAVE10')

    def test_invalid_coupon_leaves_cart_unchanged(self, session, user, product, make_coupon):
        make_coupon(code='BIG', min_order_amount='1000')
        cart_service.add_item(session, user.id, product.id, 1)

        with pytest.raises(CouponMinimumNotMetError):
            cart_service.apply_coupon(session, user.id, 'BIG')

        cart = cart_service.get_cart(session, user.id)
        assert cart.applied_coupon_id is None
        assert cart.discount_amount == Decimal('0')

    def test_coupon_degrades_when_cart_shrinks(self, session, user, product, make_coupon):
        make_coupon(code='FRESH10', min_order_amount='150', max_discount='15')
        cart_service.add_item(session, user.id, product.id, 2)
        cart_service.apply_coupon(session, user.id, 'FRESH10')

        cart = cart_service.update_quantity(session, user.id, product.id, 1)

        assert cart.discount_amount == Decimal('0')
        assert cart.final_amount == Decimal('100.00')
        assert_cart_consistent(cart)

    def test_remove_coupon(self, session, user, product, make_coupon):
        make_coupon()
        cart_service.add_item(session, user.id, product.id, 2)
        cart_service.apply_coupon(session, user.id, 'SAVE10')

        cart = cart_service.remove_coupon(session, user.id)

        assert cart.discount_source is None
        assert cart.discount_amount == Decimal('0')
        assert cart.final_amount == cart.total_amount

    def test_fixed_coupon_clamped_to_total(self, session, user, make_product, make_coupon):
        cheap = make_product(name='Lime', price='30.00')
        make_coupon(code='FLAT50', type='fixed', value='50')
        cart_service.add_item(session, user.id, cheap.id, 1)

        cart = cart_service.apply_coupon(session, user.id, 'FLAT50')

        assert cart.discount_amount == Decimal('30.00')
        assert cart.final_amount == Decimal('0.00')
        assert_cart_consistent(cart)

    def test_bulk_discount(self, session, user, product):
        session.add(BulkDiscount(
            product_id=product.id,
            is_active=True,
            tiers=[
                BulkDiscountTier(min_quantity=3, discount_percentage=Decimal('5')),
                BulkDiscountTier(min_quantity=5, discount_percentage=Decimal('10')),
            ],
        ))
        session.commit()
        cart_service.add_item(session, user.id, product.id, 5)

        cart = cart_service.apply_bulk_discount(session, user.id)

        assert cart.discount_source == DiscountSource.BULK
        assert cart.discount_amount == Decimal('50.00')
        assert cart.final_amount == Decimal('450.00')

        cart = cart_service.update_quantity(session, user.id, product.id, 3)
        assert cart.discount_amount == Decimal('15.00')

    def test_bulk_discount_without_promotion(self, session, user, product):
        cart_service.add_item(session, user.id, product.id, 5)
        with pytest.raises(ValidationError):
            cart_service.apply_bulk_discount(session, user.id)
