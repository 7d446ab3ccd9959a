"""
Integration tests for payment confirmation, refunds and webhook reconciliation.
"""

import hashlib
import hmac
import json

import pytest

from storefront.exceptions import (
    ExternalServiceError, ForbiddenError, InvalidSignatureError,
    InvalidTransitionError, ValidationError,
)
from storefront.models import Order, PaymentWebhookEvent, WebhookEventStatus
from storefront.services import cart_service, order_service, payment_service

KEY_SECRET = 'test_secret'
WEBHOOK_SECRET = 'test_webhook_secret'


def webhook_body(event, **entities):
    return json.dumps({
        'event': event,
        'payload': {name: {'entity': entity} for name, entity in entities.items()},
    }).encode('utf-8')


def sign_body(body, secret=WEBHOOK_SECRET):
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


@pytest.fixture
def online_order(session, user, product, shipping_address):
    cart_service.add_item(session, user.id, product.id, 2)
    return order_service.checkout(session, user.id, shipping_address, 'razorpay')


@pytest.fixture
def gateway_order(session, user, online_order, gateway):
    order, _ = payment_service.create_gateway_order(session, online_order.id, user.id, gateway)
    return order


class TestCreateGatewayOrder:
    """Tests for create_gateway_order."""

    def test_amount_in_minor_units(self, session, user, online_order, gateway):
        order, gateway_data = payment_service.create_gateway_order(
            session, online_order.id, user.id, gateway
        )

        assert gateway.orders == [{
            'id': 'order_0001',
            'amount': 26000,
            'currency': 'INR',
            'receipt': order.order_number,
            'status': 'created',
        }]
        assert order.gateway_order_id == 'order_0001'
        assert gateway_data['id'] == 'order_0001'

    def test_gateway_failure_leaves_order_unchanged(self, session, user, online_order, gateway):
        gateway.fail_with = ExternalServiceError('Payment gateway is unavailable')

        with pytest.raises(ExternalServiceError):
            payment_service.create_gateway_order(session, online_order.id, user.id, gateway)

        order = session.get(Order, online_order.id)
        assert order.gateway_order_id is None
        assert order.payment_status == 'pending'
        assert order.order_status == 'pending'

    def test_cod_order_rejected(self, session, user, product, shipping_address, gateway):
        cart_service.add_item(session, user.id, product.id, 1)
        order = order_service.checkout(session, user.id, shipping_address, 'cod')

        with pytest.raises(ValidationError):
            payment_service.create_gateway_order(session, order.id, user.id, gateway)
        assert gateway.orders == []

    def test_other_users_order(self, session, other_user, online_order, gateway):
        with pytest.raises(ForbiddenError):
            payment_service.create_gateway_order(session, online_order.id, other_user.id, gateway)


class TestConfirmPayment:
    """Tests for confirm_payment."""

    def test_valid_signature_completes_payment(self, session, user, gateway_order):
        signature = payment_service.sign_payment(KEY_SECRET, 'order_0001', 'pay_001')

        order = payment_service.confirm_payment(
            session, user.id, 'order_0001', 'pay_001', signature, KEY_SECRET
        )

        assert order.payment_status == 'completed'
        assert order.order_status == 'confirmed'
        assert order.gateway_payment_id == 'pay_001'

    def test_invalid_signature_writes_nothing(self, session, user, gateway_order):
        signature = payment_service.sign_payment(KEY_SECRET, 'order_0001', 'pay_001')
        tampered = signature[:-1] + ('0' if signature[-1] != '0' else '1')

        with pytest.raises(InvalidSignatureError):
            payment_service.confirm_payment(
                session, user.id, 'order_0001', 'pay_001', tampered, KEY_SECRET
            )

        order = session.get(Order, gateway_order.id)
        assert order.payment_status == 'pending'
        assert order.gateway_payment_id is None

    def test_missing_details(self, session, user, gateway_order):
        with pytest.raises(ValidationError):
            payment_service.confirm_payment(session, user.id, 'order_0001', '', 'sig', KEY_SECRET)

    def test_confirming_twice_is_harmless(self, session, user, gateway_order):
        signature = payment_service.sign_payment(KEY_SECRET, 'order_0001', 'pay_001')
        payment_service.confirm_payment(session, user.id, 'order_0001', 'pay_001', signature, KEY_SECRET)

        order = payment_service.confirm_payment(
            session, user.id, 'order_0001', 'pay_001', signature, KEY_SECRET
        )
        assert order.payment_status == 'completed'


class TestRefundPayment:
    """Tests for refund_payment."""

    def _pay(self, session, user):
        signature = payment_service.sign_payment(KEY_SECRET, 'order_0001', 'pay_001')
        return payment_service.confirm_payment(
            session, user.id, 'order_0001', 'pay_001', signature, KEY_SECRET
        )

    def test_processed_refund(self, session, user, gateway_order, gateway):
        self._pay(session, user)

        order, refund = payment_service.refund_payment(session, gateway_order.id, gateway, reason='Damaged')

        assert refund['status'] == 'processed'
        assert gateway.refunds[0]['payment_id'] == 'pay_001'
        assert gateway.refunds[0]['amount'] is None
        assert order.payment_status == 'refunded'

    def test_partial_refund_in_minor_units(self, session, user, gateway_order, gateway):
        self._pay(session, user)
        payment_service.refund_payment(session, gateway_order.id, gateway, amount='100.50')
        assert gateway.refunds[0]['amount'] == 10050

    @pytest.mark.parametrize('amount', ['NaN', 'Infinity'])
    def test_non_finite_amount_rejected(self, session, user, gateway_order, gateway, amount):
        """Non-finite refund amounts are a validation error, not a crash."""
        self._pay(session, user)

        with pytest.raises(ValidationError):
            payment_service.refund_payment(session, gateway_order.id, gateway, amount=amount)
        assert gateway.refunds == []

    def test_pending_refund_keeps_status(self, session, user, gateway_order, gateway):
        self._pay(session, user)
        gateway.refund_status = 'pending'

        order, _ = payment_service.refund_payment(session, gateway_order.id, gateway)

        assert order.payment_status == 'completed'

    def test_unpaid_order_cannot_be_refunded(self, session, gateway_order, gateway):
        with pytest.raises(ValidationError):
            payment_service.refund_payment(session, gateway_order.id, gateway)
        assert gateway.refunds == []

    def test_gateway_failure(self, session, user, gateway_order, gateway):
        self._pay(session, user)
        gateway.fail_with = ExternalServiceError()

        with pytest.raises(ExternalServiceError):
            payment_service.refund_payment(session, gateway_order.id, gateway)

        assert session.get(Order, gateway_order.id).payment_status == 'completed'

    def test_refund_twice(self, session, user, gateway_order, gateway):
        self._pay(session, user)
        payment_service.refund_payment(session, gateway_order.id, gateway)

        with pytest.raises(InvalidTransitionError):
            payment_service.refund_payment(session, gateway_order.id, gateway)


class TestWebhooks:
    """Tests for handle_webhook."""

    def test_captured(self, session, gateway_order):
        body = webhook_body('payment.captured', payment={'id': 'pay_900', 'order_id': 'order_0001'})

        result = payment_service.handle_webhook(session, body, sign_body(body), WEBHOOK_SECRET)

        assert result['duplicate'] is False
        assert result['status'] == WebhookEventStatus.PROCESSED
        order = session.get(Order, gateway_order.id)
        assert order.payment_status == 'completed'
        assert order.order_status == 'confirmed'
        assert order.gateway_payment_id == 'pay_900'

    def test_same_delivery_processed_once(self, session, gateway_order):
        body = webhook_body('payment.captured', payment={'id': 'pay_900', 'order_id': 'order_0001'})
        payment_service.handle_webhook(session, body, sign_body(body), WEBHOOK_SECRET)

        result = payment_service.handle_webhook(session, body, sign_body(body), WEBHOOK_SECRET)

        assert result['duplicate'] is True
        assert session.query(PaymentWebhookEvent).count() == 1

    def test_failed_then_refund(self, session, gateway_order):
        failed = webhook_body('payment.failed', payment={'id': 'pay_1', 'order_id': 'order_0001'})
        payment_service.handle_webhook(session, failed, sign_body(failed), WEBHOOK_SECRET)
        assert session.get(Order, gateway_order.id).payment_status == 'failed'

        captured = webhook_body('payment.captured', payment={'id': 'pay_2', 'order_id': 'order_0001'})
        payment_service.handle_webhook(session, captured, sign_body(captured), WEBHOOK_SECRET)
        assert session.get(Order, gateway_order.id).payment_status == 'completed'

        refunded = webhook_body('refund.processed', refund={'id': 'rfnd_1', 'payment_id': 'pay_2'})
        payment_service.handle_webhook(session, refunded, sign_body(refunded), WEBHOOK_SECRET)
        assert session.get(Order, gateway_order.id).payment_status == 'refunded'

    def test_invalid_signature(self, session, gateway_order):
        body = webhook_body('payment.captured', payment={'id': 'pay_900', 'order_id': 'order_0001'})

        with pytest.raises(InvalidSignatureError):
            payment_service.handle_webhook(session, body, sign_body(body, 'wrong'), WEBHOOK_SECRET)

        assert session.query(PaymentWebhookEvent).count() == 0
        assert session.get(Order, gateway_order.id).payment_status == 'pending'

    def test_unknown_event_ignored(self, session):
        body = webhook_body('subscription.charged', subscription={'id': 'sub_1'})

        result = payment_service.handle_webhook(session, body, sign_body(body), WEBHOOK_SECRET)

        assert result['status'] == WebhookEventStatus.IGNORED

    def test_unknown_order_ignored(self, session):
        body = webhook_body('payment.captured', payment={'id': 'pay_x', 'order_id': 'order_x'})
        result = payment_service.handle_webhook(session, body, sign_body(body), WEBHOOK_SECRET)
        assert result['status'] == WebhookEventStatus.IGNORED

    def test_late_failure_does_not_undo_capture(self, session, gateway_order):
        captured = webhook_body('payment.captured', payment={'id': 'pay_1', 'order_id': 'order_0001'})
        payment_service.handle_webhook(session, captured, sign_body(captured), WEBHOOK_SECRET)

        failed = webhook_body('payment.failed', payment={'id': 'pay_1', 'order_id': 'order_0001'})
        payment_service.handle_webhook(session, failed, sign_body(failed), WEBHOOK_SECRET)

        assert session.get(Order, gateway_order.id).payment_status == 'completed'
