"""
Order service - checkout, cancellation and admin status updates.

Checkout and cancellation each run as a single transaction: product rows are
locked, stock changes are guarded updates and the session commits once.
"""
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context
from sqlalchemy import or_
from sqlalchemy.orm import Session

from storefront.exceptions import (
    CouponRejectedError, ForbiddenError, InsufficientStockError,
    NotFoundError, StorefrontError, ValidationError,
)
from storefront.models import (
    Cart, DiscountSource, Order, OrderItem, OrderStatus,
    PaymentMethod, PaymentStatus, Product,
)
from storefront.services import discount_service, pricing_service
from storefront.services.cart_service import cart_category_ids, cart_product_ids, empty_cart
from storefront.services.order_state import ensure_transition, generate_order_number
from storefront.utils.dates import utcnow
from storefront.utils.money import ZERO, quantize_money, to_decimal

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ('street', 'city', 'state', 'zip_code', 'country')
ORDER_NUMBER_ATTEMPTS = 5
DELIVERY_DAYS = 3


@dataclass(frozen=True)
class CheckoutLine:
    product: Product
    quantity: int
    price: Decimal


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _validate_address(shipping_address: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if not isinstance(shipping_address, dict):
        raise ValidationError('Shipping address is required')

    missing = [f for f in ADDRESS_FIELDS if not str(shipping_address.get(f) or '').strip()]
    if missing:
        raise ValidationError(f"Shipping address is missing: {', '.join(missing)}")
    return {f: str(shipping_address[f]).strip() for f in ADDRESS_FIELDS}


def _parse_payment_method(payment_method) -> PaymentMethod:
    try:
        return PaymentMethod(payment_method)
    except ValueError:
        raise ValidationError(f'Invalid payment method: {payment_method}')


def _lock_products(session: Session, product_ids: List[int]) -> Dict[int, Product]:
    """
    Lock product rows for the rest of the transaction.
    Ordered by id so concurrent checkouts acquire locks in the same order.
    """
    products = (
        session.query(Product)
        .filter(Product.id.in_(product_ids))
        .order_by(Product.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {p.id: p for p in products}


def _decrement_stock(session: Session, product: Product, quantity: int) -> None:
    """Guarded decrement: the update only matches while enough stock remains."""
    updated = (
        session.query(Product)
        .filter(Product.id == product.id, Product.stock >= quantity)
        .update({Product.stock: Product.stock - quantity}, synchronize_session='fetch')
    )
    if updated != 1:
        session.refresh(product)
        raise InsufficientStockError(product.name, quantity, product.stock, product.id)


def _restore_stock(session: Session, order: Order) -> None:
    """Give every line item's quantity back to its product (caller commits)."""
    product_ids = [item.product_id for item in order.items]
    _lock_products(session, product_ids)
    for item in order.items:
        session.query(Product).filter(Product.id == item.product_id).update(
            {Product.stock: Product.stock + item.quantity}, synchronize_session='fetch'
        )
    logger.info(f"[ORDER] Stock restored for order {order.order_number}")


def _unique_order_number(session: Session, now) -> str:
    prefix = _config('ORDER_NUMBER_PREFIX', 'OM')
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number(now, prefix)
        exists = session.query(Order.id).filter(Order.order_number == candidate).first()
        if not exists:
            return candidate
    raise StorefrontError('Could not generate a unique order number')


def _resolve_checkout_discount(session: Session, cart: Cart, lines: List[CheckoutLine],
                               subtotal: Decimal, coupon_code: Optional[str], now):
    """
    Discount for the order and the coupon to redeem, if any.

    An explicitly requested coupon must validate. A coupon that is merely
    stored on the cart degrades to no discount when it no longer applies.
    """
    categories = cart_category_ids(cart)
    products = cart_product_ids(cart)

    if coupon_code:
        result = discount_service.validate_coupon(
            session, coupon_code, subtotal, categories, products, now
        )
        return result.amount, result.coupon

    if cart.discount_source == DiscountSource.COUPON and cart.applied_coupon is not None:
        coupon = cart.applied_coupon
        try:
            amount = discount_service.check_coupon(
                coupon, coupon.code, subtotal, categories, products, now
            )
            return amount, coupon
        except CouponRejectedError as e:
            logger.warning(f"[CHECKOUT] Stored coupon {coupon.code} dropped: {e.message}")
            return ZERO, None

    if cart.discount_source == DiscountSource.BULK:
        discount = discount_service.calculate_bulk_discount(
            session, lines, now, customer_type=cart.user.customer_type
        )
        return discount, None

    return ZERO, None


def checkout(
    session: Session,
    user_id: int,
    shipping_address: Dict[str, Any],
    payment_method: str,
    notes: Optional[str] = None,
    coupon_code: Optional[str] = None
) -> Order:
    """
    Convert the user's cart into an order.

    Locks the cart's products, verifies stock, re-validates the discount,
    prices the order at current product prices, then writes the order,
    decrements stock, redeems the coupon and empties the cart in one commit.

    Raises:
        ValidationError: empty cart, bad address or payment method, unavailable product
        InsufficientStockError: a line exceeds current stock
        CouponRejectedError: the requested coupon is not valid for this order
    """
    address = _validate_address(shipping_address)
    method = _parse_payment_method(payment_method)

    try:
        cart = session.query(Cart).filter(Cart.user_id == user_id).first()
        if not cart or cart.is_empty:
            raise ValidationError('Cart is empty')

        products = _lock_products(session, [item.product_id for item in cart.items])

        # Verify every line before writing anything
        lines = []
        for item in cart.items:
            product = products.get(item.product_id)
            if product is None:
                raise NotFoundError(f'Product {item.product_id} no longer exists')
            if not product.is_available:
                raise ValidationError(f'{product.name} is not available')
            if product.stock < item.quantity:
                raise InsufficientStockError(product.name, item.quantity, product.stock, product.id)
            lines.append(CheckoutLine(product, item.quantity, to_decimal(product.price)))

        now = utcnow()
        subtotal = pricing_service.calculate_subtotal(lines)
        discount, coupon = _resolve_checkout_discount(
            session, cart, lines, subtotal, coupon_code, now
        )
        is_cod = method == PaymentMethod.COD
        totals = pricing_service.compute_totals(lines, discount, is_cod=is_cod)

        order = Order(
            user_id=user_id,
            order_number=_unique_order_number(session, now),
            shipping_street=address['street'],
            shipping_city=address['city'],
            shipping_state=address['state'],
            shipping_zip_code=address['zip_code'],
            shipping_country=address['country'],
            payment_method=method.value,
            payment_status=PaymentStatus.PENDING.value,
            # Cash on delivery needs no payment step before fulfilment
            order_status=(OrderStatus.CONFIRMED if is_cod else OrderStatus.PENDING).value,
            subtotal=totals.subtotal,
            shipping_cost=totals.shipping_cost,
            tax=totals.tax,
            discount=totals.discount,
            cod_charge=totals.cod_charge,
            total_amount=totals.total,
            coupon_code=coupon.code if coupon else None,
            notes=notes,
            is_seasonal_order=any(line.product.is_seasonal for line in lines),
            estimated_delivery=now + timedelta(days=int(_config('DELIVERY_DAYS', DELIVERY_DAYS))),
        )
        session.add(order)
        session.flush()

        for line in lines:
            product = line.product
            session.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                name=product.name,
                quantity=line.quantity,
                price=line.price,
                line_total=quantize_money(line.price * line.quantity),
                weight=product.weight or 0,
                weight_unit=product.weight_unit,
            ))
            _decrement_stock(session, product, line.quantity)

        if coupon is not None:
            discount_service.redeem_coupon(session, coupon.id)

        empty_cart(session, cart)

        session.commit()
        session.refresh(order)

        logger.info(
            f"[CHECKOUT] Order {order.order_number} created for user {user_id}: "
            f"total={order.total_amount} method={order.payment_method}"
        )
        return order

    except StorefrontError as e:
        session.rollback()
        logger.warning(f"[CHECKOUT] Checkout failed for user {user_id}: {e.message}")
        raise
    except Exception as e:
        session.rollback()
        logger.exception(f"[CHECKOUT] Unexpected error for user {user_id}")
        raise StorefrontError(f'Checkout failed: {e}')


def _get_order_or_404(session: Session, order_id: int, for_update: bool = False) -> Order:
    query = session.query(Order).filter(Order.id == order_id)
    if for_update:
        query = query.with_for_update()
    order = query.first()
    if not order:
        raise NotFoundError('Order not found')
    return order


def cancel_order(session: Session, order_id: int, user_id: int, reason: Optional[str] = None) -> Order:
    """
    Cancel an order on behalf of its owner and restore stock.

    Only pending or confirmed orders can be cancelled. Paid orders are
    not refunded here; an admin issues the refund separately.
    """
    try:
        order = _get_order_or_404(session, order_id, for_update=True)
        if order.user_id != user_id:
            raise ForbiddenError('Not authorized to cancel this order')

        ensure_transition(order.order_status, OrderStatus.CANCELLED)

        order.order_status = OrderStatus.CANCELLED.value
        order.cancelled_at = utcnow()
        order.cancellation_reason = reason or 'Cancelled by user'
        _restore_stock(session, order)

        session.commit()
        logger.info(f"[ORDER] Order {order.order_number} cancelled by user {user_id}")
        if order.payment_status == PaymentStatus.COMPLETED.value:
            logger.warning(
                f"[ORDER] Order {order.order_number} was cancelled after payment; "
                f"refund {order.total_amount} through the admin refund endpoint"
            )
        return order

    except StorefrontError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise StorefrontError(f'Error cancelling order: {e}')


def update_order_status(
    session: Session,
    order_id: int,
    status: str,
    tracking_number: Optional[str] = None,
    notes: Optional[str] = None,
    cancellation_reason: Optional[str] = None
) -> Order:
    """Admin status change along the order flow."""
    try:
        order = _get_order_or_404(session, order_id, for_update=True)
        previous = order.order_status
        target = ensure_transition(previous, status)

        order.order_status = target.value
        if tracking_number:
            order.tracking_number = tracking_number
        if notes:
            order.notes = notes

        if target == OrderStatus.DELIVERED:
            order.delivered_at = utcnow()
        elif target == OrderStatus.CANCELLED:
            order.cancelled_at = utcnow()
            order.cancellation_reason = cancellation_reason or 'Cancelled by admin'
            _restore_stock(session, order)

        session.commit()
        logger.info(f"[ORDER] Order {order.order_number}: {previous} -> {target.value}")
        return order

    except StorefrontError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise StorefrontError(f'Error updating order status: {e}')


def get_order(session: Session, order_id: int, user_id: int, is_admin: bool = False) -> Order:
    order = _get_order_or_404(session, order_id)
    if order.user_id != user_id and not is_admin:
        raise ForbiddenError('Not authorized to view this order')
    return order


def _pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        'current_page': page,
        'total_pages': total_pages,
        'total': total,
        'has_next_page': page < total_pages,
        'has_prev_page': page > 1,
    }


def _page_args(page, limit, default_limit):
    try:
        page = max(int(page or 1), 1)
        limit = int(limit or default_limit)
    except (TypeError, ValueError):
        raise ValidationError('page and limit must be whole numbers')
    if limit < 1:
        raise ValidationError('limit must be at least 1')
    return page, limit


def _paginate(query, page: int, limit: int) -> Dict[str, Any]:
    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()) \
        .offset((page - 1) * limit).limit(limit).all()
    return {'orders': orders, 'pagination': _pagination(page, limit, total)}


def list_user_orders(session: Session, user_id: int, page=1, limit=None) -> Dict[str, Any]:
    """User's orders, newest first."""
    page, limit = _page_args(page, limit, _config('ORDERS_PAGE_SIZE', 10))
    query = session.query(Order).filter(Order.user_id == user_id)
    return _paginate(query, page, limit)


def list_orders(
    session: Session,
    page=1,
    limit=None,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    search: Optional[str] = None
) -> Dict[str, Any]:
    """All orders for the admin listing, filtered by status or order number."""
    page, limit = _page_args(page, limit, _config('ADMIN_ORDERS_PAGE_SIZE', 20))
    query = session.query(Order)
    if status:
        query = query.filter(Order.order_status == status)
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)
    if search:
        term = f'%{search.strip()}%'
        query = query.filter(or_(
            Order.order_number.ilike(term),
            Order.shipping_city.ilike(term),
        ))
    return _paginate(query, page, limit)
