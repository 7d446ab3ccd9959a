"""
Order state rules.

Pure functions: status transitions for orders and payments, and order
number generation. Nothing here touches the database.
"""
import secrets
import string
from datetime import datetime
from typing import Optional

from storefront.exceptions import InvalidTransitionError, ValidationError
from storefront.models import OrderStatus, PaymentStatus
from storefront.utils.dates import utcnow

ORDER_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

CANCELLABLE = {OrderStatus.PENDING, OrderStatus.CONFIRMED}
TERMINAL = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.COMPLETED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
ORDER_NUMBER_SUFFIX_LENGTH = 6


def parse_order_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f'Invalid order status: {value}')


def parse_payment_status(value) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        raise ValidationError(f'Invalid payment status: {value}')


def can_transition(current, target) -> bool:
    """
    Whether an order may move from ``current`` to ``target``.

    Forward moves along the flow may skip states. Delivered and cancelled
    orders are final, and cancellation is only possible before processing.
    """
    current = parse_order_status(current)
    target = parse_order_status(target)

    if current in TERMINAL:
        return False
    if target == OrderStatus.CANCELLED:
        return current in CANCELLABLE
    return ORDER_FLOW.index(target) > ORDER_FLOW.index(current)


def ensure_transition(current, target) -> OrderStatus:
    """Validate an order transition and return the target status."""
    if not can_transition(current, target):
        raise InvalidTransitionError(OrderStatus(current).value, OrderStatus(target).value)
    return OrderStatus(target)


def can_transition_payment(current, target) -> bool:
    current = parse_payment_status(current)
    target = parse_payment_status(target)
    return target in PAYMENT_TRANSITIONS[current]


def ensure_payment_transition(current, target) -> PaymentStatus:
    if not can_transition_payment(current, target):
        raise InvalidTransitionError(
            PaymentStatus(current).value, PaymentStatus(target).value, kind='payment'
        )
    return PaymentStatus(target)


def generate_order_number(now: Optional[datetime] = None, prefix: str = 'OM') -> str:
    """Order number: prefix + YYMMDD + six random upper-case alphanumerics."""
    now = now or utcnow()
    suffix = ''.join(
        secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(ORDER_NUMBER_SUFFIX_LENGTH)
    )
    return f"{prefix}{now.strftime('%y%m%d')}{suffix}"
