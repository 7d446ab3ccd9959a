"""Cart service - persistent per-user cart operations."""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy.orm import Session

from storefront.exceptions import (
    CouponRejectedError, InsufficientStockError, InvariantViolationError,
    NotFoundError, ValidationError,
)
from storefront.models import Cart, CartItem, DiscountSource, Product, weight_in_kg
from storefront.services import discount_service
from storefront.utils.money import ZERO, quantize_money, to_decimal
from storefront.utils.numbers import to_whole_number

logger = logging.getLogger(__name__)

WEIGHT_PLACES = Decimal('0.001')


@dataclass(frozen=True)
class CartTotals:
    total_amount: Decimal
    total_weight: Decimal
    discount_amount: Decimal
    final_amount: Decimal


def calculate_cart_totals(items: Iterable[Any], discount=ZERO) -> CartTotals:
    """
    Derive cart totals from its lines and a resolved discount.

    The discount is clamped to the cart total so the final amount
    is never negative.
    """
    items = list(items)
    total_amount = quantize_money(
        sum((to_decimal(item.price) * item.quantity for item in items), ZERO)
    )
    total_weight = sum(
        (weight_in_kg(item.weight, item.weight_unit) * item.quantity for item in items),
        Decimal('0')
    ).quantize(WEIGHT_PLACES)

    discount_amount = quantize_money(discount or ZERO)
    if discount_amount < 0:
        raise InvariantViolationError(f'Cart discount cannot be negative (got {discount_amount})')
    discount_amount = min(discount_amount, total_amount)

    return CartTotals(
        total_amount=total_amount,
        total_weight=total_weight,
        discount_amount=discount_amount,
        final_amount=total_amount - discount_amount,
    )


def cart_category_ids(cart: Cart):
    return {item.product.category_id for item in cart.items if item.product.category_id is not None}


def cart_product_ids(cart: Cart):
    return {item.product_id for item in cart.items}


def _resolve_discount(session: Session, cart: Cart, total_amount: Decimal) -> Decimal:
    """Re-derive the cart's discount from its current discount source."""
    if not cart.items:
        return ZERO

    if cart.discount_source == DiscountSource.COUPON and cart.applied_coupon is not None:
        try:
            return discount_service.check_coupon(
                cart.applied_coupon,
                cart.applied_coupon.code,
                total_amount,
                cart_category_ids(cart),
                cart_product_ids(cart),
            )
        except CouponRejectedError as e:
            logger.warning(f"[CART] Coupon no longer applies to cart {cart.id}: {e.message}")
            return ZERO

    if cart.discount_source == DiscountSource.BULK:
        return discount_service.calculate_bulk_discount(
            session, cart.items, customer_type=cart.user.customer_type
        )

    return ZERO


def recalculate_cart(session: Session, cart: Cart) -> Cart:
    """Recompute and store the cart's derived totals (caller commits)."""
    # Pending line changes must be visible to the relationship before summing
    session.flush()
    session.refresh(cart, attribute_names=['items'])

    total_amount = calculate_cart_totals(cart.items).total_amount
    discount = _resolve_discount(session, cart, total_amount)
    totals = calculate_cart_totals(cart.items, discount)

    cart.total_amount = totals.total_amount
    cart.total_weight = totals.total_weight
    cart.discount_amount = totals.discount_amount
    cart.final_amount = totals.final_amount
    session.flush()
    return cart


def _reset_discount(cart: Cart) -> None:
    cart.discount_source = None
    cart.applied_coupon_id = None
    cart.applied_coupon = None


def get_cart(session: Session, user_id: int):
    return session.query(Cart).filter(Cart.user_id == user_id).first()


def get_or_create_cart(session: Session, user_id: int) -> Cart:
    """
    Get existing cart or create an empty one for the user.
    One cart per user.
    """
    cart = get_cart(session, user_id)
    if not cart:
        cart = Cart(
            user_id=user_id,
            total_amount=ZERO,
            total_weight=Decimal('0'),
            discount_amount=ZERO,
            final_amount=ZERO,
        )
        session.add(cart)
        session.commit()
        logger.info(f"[CART] Created cart {cart.id} for user {user_id}")
    return cart


def _get_available_product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError('Product not found')
    if not product.is_available:
        raise ValidationError(f'{product.name} is not available')
    return product


def _parse_quantity(quantity) -> int:
    try:
        qty = to_whole_number(quantity, 'Quantity')
    except ValueError as e:
        raise ValidationError(str(e))
    if qty < 1:
        raise ValidationError('Quantity must be at least 1')
    return qty


def add_item(session: Session, user_id: int, product_id: int, quantity) -> Cart:
    """Add product to cart or increase its quantity if already present."""
    qty = _parse_quantity(quantity)

    try:
        product = _get_available_product(session, product_id)
        cart = get_or_create_cart(session, user_id)

        line = cart.find_item(product.id)
        new_qty = (line.quantity if line else 0) + qty
        if new_qty > product.stock:
            raise InsufficientStockError(product.name, new_qty, product.stock, product.id)

        if line:
            line.quantity = new_qty
        else:
            session.add(CartItem(
                cart_id=cart.id,
                product_id=product.id,
                quantity=qty,
                price=product.price,
                weight=product.weight or 0,
                weight_unit=product.weight_unit,
            ))

        recalculate_cart(session, cart)
        session.commit()
        return cart
    except Exception:
        session.rollback()
        raise


def update_quantity(session: Session, user_id: int, product_id: int, quantity) -> Cart:
    """Set a line's quantity."""
    qty = _parse_quantity(quantity)

    try:
        cart = get_cart(session, user_id)
        if not cart:
            raise NotFoundError('Cart not found')

        line = cart.find_item(product_id)
        if not line:
            raise NotFoundError('Product is not in the cart')

        product = line.product
        if qty > product.stock:
            raise InsufficientStockError(product.name, qty, product.stock, product.id)

        line.quantity = qty
        recalculate_cart(session, cart)
        session.commit()
        return cart
    except Exception:
        session.rollback()
        raise


def remove_item(session: Session, user_id: int, product_id: int) -> Cart:
    """Remove a product's line from the cart."""
    try:
        cart = get_cart(session, user_id)
        if not cart:
            raise NotFoundError('Cart not found')

        line = cart.find_item(product_id)
        if line:
            cart.items.remove(line)
        if not cart.items:
            _reset_discount(cart)

        recalculate_cart(session, cart)
        session.commit()
        return cart
    except Exception:
        session.rollback()
        raise


def empty_cart(session: Session, cart: Cart) -> None:
    """Remove every line and discount from a cart (caller commits)."""
    cart.items.clear()
    _reset_discount(cart)
    cart.total_amount = ZERO
    cart.total_weight = Decimal('0')
    cart.discount_amount = ZERO
    cart.final_amount = ZERO
    session.flush()


def clear_cart(session: Session, user_id: int) -> Cart:
    """Empty the user's cart. Clearing an empty cart is a no-op."""
    cart = get_or_create_cart(session, user_id)
    if cart.is_empty and cart.discount_source is None:
        return cart

    try:
        empty_cart(session, cart)
        session.commit()
        return cart
    except Exception:
        session.rollback()
        raise


def apply_coupon(session: Session, user_id: int, code: str) -> Cart:
    """
    Validate a coupon against the cart and store it.

    The stored discount is a convenience for display; checkout validates
    the coupon again.
    """
    try:
        cart = get_cart(session, user_id)
        if not cart:
            raise NotFoundError('Cart not found')
        if cart.is_empty:
            raise ValidationError('Cart is empty')

        result = discount_service.validate_coupon(
            session,
            code,
            cart.total_amount,
            cart_category_ids(cart),
            cart_product_ids(cart),
        )

        cart.applied_coupon = result.coupon
        cart.discount_source = DiscountSource.COUPON
        recalculate_cart(session, cart)
        session.commit()
        logger.info(f"[CART] Coupon {result.coupon.code} applied to cart {cart.id}: -{result.amount}")
        return cart
    except Exception:
        session.rollback()
        raise


def remove_coupon(session: Session, user_id: int) -> Cart:
    try:
        cart = get_cart(session, user_id)
        if not cart:
            raise NotFoundError('Cart not found')

        _reset_discount(cart)
        recalculate_cart(session, cart)
        session.commit()
        return cart
    except Exception:
        session.rollback()
        raise


def apply_bulk_discount(session: Session, user_id: int) -> Cart:
    """Switch the cart's discount to the bulk-discount tiers of its lines."""
    try:
        cart = get_cart(session, user_id)
        if not cart:
            raise NotFoundError('Cart not found')
        if cart.is_empty:
            raise ValidationError('Cart is empty')

        discount = discount_service.calculate_bulk_discount(
            session, cart.items, customer_type=cart.user.customer_type
        )
        if discount <= 0:
            raise ValidationError('No bulk discount applies to the items in this cart')

        _reset_discount(cart)
        cart.discount_source = DiscountSource.BULK
        recalculate_cart(session, cart)
        session.commit()
        return cart
    except Exception:
        session.rollback()
        raise
