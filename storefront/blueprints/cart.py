"""Cart blueprint - JSON API over the user's persistent cart."""
from flask import Blueprint, g, jsonify, request

from storefront.database import get_session
from storefront.exceptions import ValidationError
from storefront.middleware import require_login
from storefront.services import cart_service

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _cart_response(cart, message=None, status=200):
    body = {'status': 'success', 'data': {'cart': cart.to_dict()}}
    if message:
        body['message'] = message
    return jsonify(body), status


@cart_bp.route('', methods=['GET'])
@require_login
def get_cart():
    cart = cart_service.get_or_create_cart(get_session(), g.user_id)
    return _cart_response(cart)


@cart_bp.route('/items', methods=['POST'])
@require_login
def add_item():
    data = _json_body()
    if not data.get('product_id'):
        raise ValidationError('product_id is required')

    cart = cart_service.add_item(
        get_session(), g.user_id, data['product_id'], data.get('quantity', 1)
    )
    return _cart_response(cart, 'Item added to cart')


@cart_bp.route('/items/<int:product_id>', methods=['PUT'])
@require_login
def update_item(product_id):
    data = _json_body()
    cart = cart_service.update_quantity(get_session(), g.user_id, product_id, data.get('quantity'))
    return _cart_response(cart, 'Cart updated')


@cart_bp.route('/items/<int:product_id>', methods=['DELETE'])
@require_login
def remove_item(product_id):
    cart = cart_service.remove_item(get_session(), g.user_id, product_id)
    return _cart_response(cart, 'Item removed from cart')


@cart_bp.route('', methods=['DELETE'])
@require_login
def clear_cart():
    cart = cart_service.clear_cart(get_session(), g.user_id)
    return _cart_response(cart, 'Cart cleared')


@cart_bp.route('/coupon', methods=['POST'])
@require_login
def apply_coupon():
    data = _json_body()
    cart = cart_service.apply_coupon(get_session(), g.user_id, data.get('code'))
    return _cart_response(cart, 'Coupon applied')


@cart_bp.route('/coupon', methods=['DELETE'])
@require_login
def remove_coupon():
    cart = cart_service.remove_coupon(get_session(), g.user_id)
    return _cart_response(cart, 'Coupon removed')


@cart_bp.route('/bulk-discount', methods=['POST'])
@require_login
def apply_bulk_discount():
    cart = cart_service.apply_bulk_discount(get_session(), g.user_id)
    return _cart_response(cart, 'Bulk discount applied')
