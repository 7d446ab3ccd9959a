"""Orders blueprint - checkout, order history and admin fulfilment."""
from flask import Blueprint, current_app, g, jsonify, request

from storefront.blueprints.metrics import record_checkout
from storefront.database import get_session
from storefront.exceptions import StorefrontError, ValidationError
from storefront.middleware import require_admin, require_login
from storefront.services import order_service

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _page_response(result):
    return jsonify({
        'status': 'success',
        'data': {
            'orders': [order.to_dict() for order in result['orders']],
            'pagination': result['pagination'],
        }
    })


@orders_bp.route('', methods=['POST'])
@require_login
def create_order():
    """Checkout the current user's cart."""
    data = _json_body()
    payment_method = data.get('payment_method')

    try:
        order = order_service.checkout(
            get_session(),
            g.user_id,
            shipping_address=data.get('shipping_address'),
            payment_method=payment_method,
            notes=data.get('notes'),
            coupon_code=data.get('coupon_code'),
        )
    except StorefrontError:
        record_checkout(payment_method, 'rejected')
        raise

    record_checkout(order.payment_method, 'created')
    message = (
        'Order placed successfully! You will pay on delivery.'
        if order.is_cod else 'Order created. Complete the payment to confirm it.'
    )
    return jsonify({'status': 'success', 'message': message, 'data': {'order': order.to_dict()}}), 201


@orders_bp.route('', methods=['GET'])
@require_login
def my_orders():
    result = order_service.list_user_orders(
        get_session(), g.user_id,
        page=request.args.get('page', 1),
        limit=request.args.get('limit'),
    )
    return _page_response(result)


@orders_bp.route('/<int:order_id>', methods=['GET'])
@require_login
def order_detail(order_id):
    order = order_service.get_order(get_session(), order_id, g.user_id, is_admin=g.user.is_admin)
    return jsonify({'status': 'success', 'data': {'order': order.to_dict()}})


@orders_bp.route('/<int:order_id>/cancel', methods=['PUT'])
@require_login
def cancel_order(order_id):
    data = request.get_json(silent=True) or {}
    order = order_service.cancel_order(get_session(), order_id, g.user_id, data.get('reason'))
    current_app.logger.info(f"[ORDER] User {g.user_id} cancelled order {order.order_number}")
    return jsonify({'status': 'success', 'message': 'Order cancelled', 'data': {'order': order.to_dict()}})


@orders_bp.route('/admin', methods=['GET'])
@require_admin
def all_orders():
    result = order_service.list_orders(
        get_session(),
        page=request.args.get('page', 1),
        limit=request.args.get('limit'),
        status=request.args.get('status'),
        payment_status=request.args.get('payment_status'),
        search=request.args.get('search'),
    )
    return _page_response(result)


@orders_bp.route('/<int:order_id>/status', methods=['PUT'])
@require_admin
def update_status(order_id):
    data = _json_body()
    if not data.get('status'):
        raise ValidationError('status is required')

    order = order_service.update_order_status(
        get_session(),
        order_id,
        data['status'],
        tracking_number=data.get('tracking_number'),
        notes=data.get('notes'),
        cancellation_reason=data.get('cancellation_reason'),
    )
    return jsonify({'status': 'success', 'message': 'Order status updated', 'data': {'order': order.to_dict()}})
