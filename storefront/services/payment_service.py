"""
Payment service - gateway signature checks and order payment reconciliation.

The gateway client is passed in by the caller; the Flask app keeps one in
``app.extensions['payment_gateway']``.
"""
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.exceptions import (
    ExternalServiceError, ForbiddenError, InvalidSignatureError,
    NotFoundError, StorefrontError, ValidationError,
)
from storefront.models import (
    Order, OrderStatus, PaymentMethod, PaymentStatus,
    PaymentWebhookEvent, WebhookEventStatus,
)
from storefront.services.order_state import can_transition_payment, ensure_payment_transition
from storefront.services.razorpay_client import RazorpayClient
from storefront.utils.dates import utcnow
from storefront.utils.money import quantize_money, to_decimal, to_minor_units

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'payment_gateway'

PAYMENT_CAPTURED = 'payment.captured'
PAYMENT_FAILED = 'payment.failed'
REFUND_PROCESSED = 'refund.processed'


# =====================================================
# SIGNATURES
# =====================================================

def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def sign_payment(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 hex digest of ``order_id|payment_id``."""
    return _hmac_hex(secret, f'{order_id}|{payment_id}'.encode('utf-8'))


def verify_payment_signature(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    """Constant-time comparison of a checkout callback signature."""
    if not secret or not signature:
        return False
    expected = sign_payment(secret, order_id, payment_id)
    return hmac.compare_digest(expected, str(signature))


def verify_webhook_signature(secret: str, body: bytes, signature: str) -> bool:
    """Verify the signature of a raw webhook body."""
    if not secret or not signature:
        return False
    if isinstance(body, str):
        body = body.encode('utf-8')
    expected = _hmac_hex(secret, body)
    return hmac.compare_digest(expected, str(signature))


# =====================================================
# GATEWAY
# =====================================================

def init_payment_gateway(app) -> None:
    """Register the gateway client on the app when credentials are configured."""
    key_id = app.config.get('RAZORPAY_KEY_ID')
    key_secret = app.config.get('RAZORPAY_KEY_SECRET')
    if not key_id or not key_secret:
        app.logger.warning("[PAYMENT] Razorpay credentials not configured; online payments disabled")
        app.extensions[EXTENSION_KEY] = None
        return

    app.extensions[EXTENSION_KEY] = RazorpayClient(
        key_id, key_secret, timeout=app.config.get('RAZORPAY_TIMEOUT', 10)
    )


def get_payment_gateway():
    gateway = current_app.extensions.get(EXTENSION_KEY)
    if gateway is None:
        raise ExternalServiceError('Payment service not configured')
    return gateway


# =====================================================
# ORDER PAYMENTS
# =====================================================

def _get_owned_order(session: Session, order_id: int, user_id: int) -> Order:
    order = session.get(Order, order_id)
    if not order:
        raise NotFoundError('Order not found')
    if order.user_id != user_id:
        raise ForbiddenError('Not authorized to pay for this order')
    return order


def create_gateway_order(session: Session, order_id: int, user_id: int, gateway,
                         currency: Optional[str] = None) -> Tuple[Order, Dict[str, Any]]:
    """
    Open a gateway order for an online-payment order.

    The order row is only written once the gateway has answered.

    Returns:
        (order, gateway order dict)

    Raises:
        ValidationError: COD order, cancelled order, or payment already settled
        ExternalServiceError: gateway failure (order left unchanged)
    """
    order = _get_owned_order(session, order_id, user_id)

    if order.payment_method == PaymentMethod.COD.value:
        raise ValidationError('Cash on delivery orders are paid on delivery')
    if order.order_status == OrderStatus.CANCELLED.value:
        raise ValidationError('Order has been cancelled')
    if not can_transition_payment(order.payment_status, PaymentStatus.COMPLETED):
        raise ValidationError(f'Order payment is already {order.payment_status}')

    currency = currency or current_app.config.get('CURRENCY', 'INR')
    amount = to_minor_units(order.total_amount)

    gateway_order = gateway.create_order(amount, currency, receipt=order.order_number)
    gateway_order_id = gateway_order.get('id')
    if not gateway_order_id:
        raise ExternalServiceError('Payment gateway returned no order id')

    try:
        order.gateway_order_id = gateway_order_id
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[PAYMENT] Gateway order {gateway_order_id} opened for {order.order_number}")
    return order, gateway_order


def _mark_paid(order: Order, gateway_payment_id: str) -> None:
    order.payment_status = ensure_payment_transition(order.payment_status, PaymentStatus.COMPLETED).value
    order.gateway_payment_id = gateway_payment_id
    if order.order_status == OrderStatus.PENDING.value:
        order.order_status = OrderStatus.CONFIRMED.value


def confirm_payment(session: Session, user_id: int, gateway_order_id: str,
                    gateway_payment_id: str, signature: str, secret: str) -> Order:
    """
    Confirm a checkout callback from the gateway.

    Nothing is written unless the signature matches.
    """
    if not gateway_order_id or not gateway_payment_id or not signature:
        raise ValidationError('Payment verification failed: Missing payment details')

    if not verify_payment_signature(secret, gateway_order_id, gateway_payment_id, signature):
        logger.warning(f"[PAYMENT] Invalid signature for gateway order {gateway_order_id}")
        raise InvalidSignatureError()

    try:
        order = session.query(Order).filter(
            Order.gateway_order_id == gateway_order_id
        ).with_for_update().first()
        if not order:
            raise NotFoundError('Order not found for this payment')
        if order.user_id != user_id:
            raise ForbiddenError('Not authorized to confirm this payment')

        # A webhook may already have recorded this payment
        if order.payment_status == PaymentStatus.COMPLETED.value \
                and order.gateway_payment_id == gateway_payment_id:
            return order

        _mark_paid(order, gateway_payment_id)
        session.commit()

        logger.info(f"[PAYMENT] Payment {gateway_payment_id} confirmed for {order.order_number}")
        return order

    except StorefrontError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise StorefrontError(f'Error confirming payment: {e}')


def refund_payment(session: Session, order_id: int, gateway, amount=None,
                   reason: Optional[str] = None) -> Tuple[Order, Dict[str, Any]]:
    """
    Refund a completed payment through the gateway (admin).

    The order is marked refunded only when the gateway reports the refund
    as processed.
    """
    order = session.get(Order, order_id)
    if not order:
        raise NotFoundError('Order not found')
    if not order.gateway_payment_id:
        raise ValidationError('Order has no gateway payment to refund')
    ensure_payment_transition(order.payment_status, PaymentStatus.REFUNDED)

    minor_units = None
    if amount is not None:
        try:
            refund_amount = quantize_money(to_decimal(amount, 'amount'))
        except ValueError as e:
            raise ValidationError(str(e))
        if refund_amount <= 0 or refund_amount > order.total_amount:
            raise ValidationError('Refund amount must be between 0 and the order total')
        minor_units = to_minor_units(refund_amount)

    notes = {'order_number': order.order_number}
    if reason:
        notes['reason'] = reason

    refund = gateway.refund(order.gateway_payment_id, minor_units, notes=notes)

    if refund.get('status') == 'processed':
        try:
            order.payment_status = PaymentStatus.REFUNDED.value
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info(f"[PAYMENT] Refund {refund.get('id')} processed for {order.order_number}")
    else:
        logger.info(
            f"[PAYMENT] Refund {refund.get('id')} for {order.order_number} "
            f"is {refund.get('status')}; awaiting webhook"
        )

    return order, refund


def get_payment_details(gateway, payment_id: str) -> Dict[str, Any]:
    payment = gateway.fetch_payment(payment_id)
    return {
        'id': payment.get('id'),
        'amount': payment.get('amount'),
        'currency': payment.get('currency'),
        'status': payment.get('status'),
        'method': payment.get('method'),
        'order_id': payment.get('order_id'),
        'created_at': payment.get('created_at'),
    }


# =====================================================
# WEBHOOKS
# =====================================================

def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    return ((payload.get('payload') or {}).get(name) or {}).get('entity') or {}


def _find_order_for_payment(session: Session, payment_id: Optional[str],
                            gateway_order_id: Optional[str] = None) -> Optional[Order]:
    if payment_id:
        order = session.query(Order).filter(Order.gateway_payment_id == payment_id).first()
        if order:
            return order
    if gateway_order_id:
        return session.query(Order).filter(Order.gateway_order_id == gateway_order_id).first()
    return None


def _apply_payment_status(order: Order, target: PaymentStatus, event_type: str) -> bool:
    if order.payment_status == target.value:
        return True
    if not can_transition_payment(order.payment_status, target):
        logger.warning(
            f"[WEBHOOK] {event_type} ignored for {order.order_number}: "
            f"payment is {order.payment_status}"
        )
        return False
    order.payment_status = target.value
    return True


def _process_event(session: Session, event_type: str, payload: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    """Apply one verified event. Returns (event status, gateway payment id)."""
    if event_type in (PAYMENT_CAPTURED, PAYMENT_FAILED):
        payment = _entity(payload, 'payment')
        payment_id = payment.get('id')
        order = _find_order_for_payment(session, payment_id, payment.get('order_id'))
        if not order:
            logger.warning(f"[WEBHOOK] No order for payment {payment_id}")
            return WebhookEventStatus.IGNORED, payment_id

        if event_type == PAYMENT_CAPTURED:
            if _apply_payment_status(order, PaymentStatus.COMPLETED, event_type):
                order.gateway_payment_id = payment_id
                if order.order_status == OrderStatus.PENDING.value:
                    order.order_status = OrderStatus.CONFIRMED.value
        else:
            _apply_payment_status(order, PaymentStatus.FAILED, event_type)

        logger.info(f"[WEBHOOK] {event_type} applied to {order.order_number}")
        return WebhookEventStatus.PROCESSED, payment_id

    if event_type == REFUND_PROCESSED:
        refund = _entity(payload, 'refund')
        payment_id = refund.get('payment_id')
        order = _find_order_for_payment(session, payment_id)
        if not order:
            logger.warning(f"[WEBHOOK] No order for refunded payment {payment_id}")
            return WebhookEventStatus.IGNORED, payment_id

        _apply_payment_status(order, PaymentStatus.REFUNDED, event_type)
        logger.info(f"[WEBHOOK] {event_type} applied to {order.order_number}")
        return WebhookEventStatus.PROCESSED, payment_id

    logger.info(f"[WEBHOOK] Unhandled event type: {event_type}")
    return WebhookEventStatus.IGNORED, None


def handle_webhook(session: Session, raw_body: bytes, signature: str, secret: str) -> Dict[str, Any]:
    """
    Verify, record and apply a gateway webhook.

    Deliveries are deduplicated by a hash of the raw body, so a redelivered
    event is acknowledged without being applied twice.

    Raises:
        InvalidSignatureError: signature missing or wrong
        ValidationError: body is not a JSON event
    """
    if not verify_webhook_signature(secret, raw_body, signature):
        logger.warning("[WEBHOOK] Invalid webhook signature")
        raise InvalidSignatureError('Invalid webhook signature')

    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError):
        raise ValidationError('Webhook body is not valid JSON')
    if not isinstance(payload, dict) or not payload.get('event'):
        raise ValidationError('Webhook body has no event type')

    event_type = payload['event']
    dedupe_key = hashlib.sha256(raw_body if isinstance(raw_body, bytes) else raw_body.encode('utf-8')).hexdigest()

    existing = session.query(PaymentWebhookEvent).filter(
        PaymentWebhookEvent.dedupe_key == dedupe_key
    ).first()
    if existing:
        logger.info(f"[WEBHOOK] Duplicate {event_type} delivery (event {existing.id})")
        return {'event_id': existing.id, 'status': existing.status, 'duplicate': True}

    try:
        event = PaymentWebhookEvent(
            event_type=event_type,
            payload_json=payload,
            dedupe_key=dedupe_key,
            status=WebhookEventStatus.RECEIVED,
        )
        session.add(event)
        session.flush()

        status, payment_id = _process_event(session, event_type, payload)
        event.status = status
        event.gateway_payment_id = payment_id
        event.processed_at = utcnow()
        session.commit()

        return {'event_id': event.id, 'status': event.status, 'duplicate': False}

    except IntegrityError:
        # Concurrent delivery of the same body already recorded it
        session.rollback()
        logger.info(f"[WEBHOOK] Duplicate {event_type} delivery (concurrent)")
        return {'event_id': None, 'status': WebhookEventStatus.RECEIVED, 'duplicate': True}
    except Exception:
        session.rollback()
        logger.exception(f"[WEBHOOK] Error processing {event_type}")
        raise
