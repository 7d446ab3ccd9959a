"""Payments blueprint - gateway orders, payment confirmation and refunds."""
from flask import Blueprint, current_app, g, jsonify, request

from storefront.blueprints.metrics import record_payment_event
from storefront.database import get_session
from storefront.exceptions import StorefrontError, ValidationError
from storefront.middleware import require_admin, require_login
from storefront.services import payment_service

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payments')


@payments_bp.route('/orders/<int:order_id>/gateway-order', methods=['POST'])
@require_login
def create_gateway_order(order_id):
    """Open a gateway order the client uses to collect payment."""
    order, gateway_order = payment_service.create_gateway_order(
        get_session(), order_id, g.user_id, payment_service.get_payment_gateway()
    )
    return jsonify({
        'status': 'success',
        'message': 'Payment order created successfully',
        'data': {
            'order_id': order.id,
            'order_number': order.order_number,
            'gateway_order_id': gateway_order.get('id'),
            'amount': gateway_order.get('amount'),
            'currency': gateway_order.get('currency'),
            'key_id': current_app.config.get('RAZORPAY_KEY_ID'),
        }
    }), 201


@payments_bp.route('/verify', methods=['POST'])
@require_login
def verify_payment():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')

    try:
        order = payment_service.confirm_payment(
            get_session(),
            g.user_id,
            data.get('gateway_order_id'),
            data.get('gateway_payment_id'),
            data.get('signature'),
            current_app.config.get('RAZORPAY_KEY_SECRET'),
        )
    except StorefrontError:
        record_payment_event('verify', 'rejected')
        raise

    record_payment_event('verify', 'completed')
    return jsonify({
        'status': 'success',
        'message': 'Payment verified successfully',
        'data': {'order': order.to_dict(), 'verified': True}
    })


@payments_bp.route('/orders/<int:order_id>/refund', methods=['POST'])
@require_admin
def refund(order_id):
    data = request.get_json(silent=True) or {}
    order, refund_data = payment_service.refund_payment(
        get_session(),
        order_id,
        payment_service.get_payment_gateway(),
        amount=data.get('amount'),
        reason=data.get('reason'),
    )
    record_payment_event('refund', refund_data.get('status'))
    return jsonify({
        'status': 'success',
        'message': f"Refund {refund_data.get('status')}",
        'data': {
            'order': order.to_dict(),
            'refund': {
                'id': refund_data.get('id'),
                'amount': refund_data.get('amount'),
                'status': refund_data.get('status'),
            }
        }
    })


@payments_bp.route('/<payment_id>', methods=['GET'])
@require_admin
def payment_details(payment_id):
    payment = payment_service.get_payment_details(payment_service.get_payment_gateway(), payment_id)
    return jsonify({'status': 'success', 'data': {'payment': payment}})
