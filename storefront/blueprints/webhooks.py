"""
Webhooks Blueprint for Razorpay notifications.
Handles payment captured/failed and refund processed events.
"""
import logging

from flask import Blueprint, current_app, jsonify, request

from storefront.blueprints.metrics import record_payment_event
from storefront.database import get_session
from storefront.exceptions import InvalidSignatureError
from storefront.services import payment_service

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')


@webhooks_bp.route('/razorpay', methods=['POST'])
def razorpay_webhook():
    """
    Handle Razorpay webhook notifications.

    The signature covers the raw body, so it is read before any JSON parsing.
    Redelivered events are acknowledged with 200 without being reapplied.
    """
    signature = request.headers.get('X-Razorpay-Signature', '')
    raw_body = request.get_data()

    try:
        result = payment_service.handle_webhook(
            get_session(),
            raw_body,
            signature,
            current_app.config.get('RAZORPAY_WEBHOOK_SECRET'),
        )
    except InvalidSignatureError as e:
        record_payment_event('webhook', 'invalid_signature')
        return jsonify(e.to_dict()), 401

    outcome = 'duplicate' if result['duplicate'] else result['status'].lower()
    record_payment_event('webhook', outcome)
    logger.info(f"[WEBHOOK] Event {result['event_id']} -> {outcome}")
    return jsonify({'status': 'ok', **result}), 200
