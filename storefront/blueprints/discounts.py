"""Discounts blueprint - coupon validation and promotion management."""
from flask import Blueprint, g, jsonify, request

from storefront.database import get_session
from storefront.exceptions import ValidationError
from storefront.middleware import require_admin, require_login
from storefront.services import discount_service
from storefront.utils.money import to_decimal

discounts_bp = Blueprint('discounts', __name__, url_prefix='/api/discounts')


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _bool_arg(name):
    """Parse an optional true/false query parameter."""
    raw = request.args.get(name)
    if raw is None or raw == '':
        return None
    if raw.lower() in ('true', '1', 'yes'):
        return True
    if raw.lower() in ('false', '0', 'no'):
        return False
    raise ValidationError(f'{name} must be true or false')


# =====================================================
# COUPONS
# =====================================================

@discounts_bp.route('/coupons/validate', methods=['POST'])
@require_login
def validate_coupon():
    data = _json_body()
    try:
        order_amount = to_decimal(data.get('order_amount'), 'order_amount')
    except ValueError as e:
        raise ValidationError(str(e))

    result = discount_service.validate_coupon(
        get_session(),
        data.get('code'),
        order_amount,
        category_ids=data.get('category_ids') or [],
        product_ids=data.get('product_ids') or [],
    )
    return jsonify({
        'status': 'success',
        'message': 'Coupon is valid',
        'data': {
            'coupon': result.coupon.to_dict(),
            'discount_amount': result.amount,
            'final_amount': order_amount - result.amount,
        }
    })


@discounts_bp.route('/coupons', methods=['GET'])
@require_admin
def list_coupons():
    """Coupons, newest first. Filters: ?active=true|false&type=percentage|fixed."""
    coupons = discount_service.list_coupons(
        get_session(),
        active=_bool_arg('active'),
        coupon_type=request.args.get('type') or None,
    )
    return jsonify({
        'status': 'success',
        'data': {'count': len(coupons), 'coupons': [c.to_dict() for c in coupons]}
    })


@discounts_bp.route('/coupons', methods=['POST'])
@require_admin
def create_coupon():
    coupon = discount_service.create_coupon(get_session(), _json_body())
    return jsonify({'status': 'success', 'data': {'coupon': coupon.to_dict()}}), 201


@discounts_bp.route('/coupons/<int:coupon_id>', methods=['PUT'])
@require_admin
def update_coupon(coupon_id):
    coupon = discount_service.update_coupon(get_session(), coupon_id, _json_body())
    return jsonify({'status': 'success', 'message': 'Coupon updated', 'data': {'coupon': coupon.to_dict()}})


@discounts_bp.route('/coupons/<int:coupon_id>', methods=['DELETE'])
@require_admin
def delete_coupon(coupon_id):
    discount_service.delete_coupon(get_session(), coupon_id)
    return jsonify({'status': 'success', 'message': 'Coupon deleted'})


@discounts_bp.route('/coupons/<int:coupon_id>/toggle', methods=['PATCH'])
@require_admin
def toggle_coupon(coupon_id):
    coupon = discount_service.toggle_coupon(get_session(), coupon_id)
    state = 'activated' if coupon.is_active else 'deactivated'
    return jsonify({'status': 'success', 'message': f'Coupon {state}', 'data': {'coupon': coupon.to_dict()}})


# =====================================================
# BULK DISCOUNTS
# =====================================================

@discounts_bp.route('/bulk', methods=['GET'])
def list_bulk_discounts():
    """Bulk discounts, newest first. Filters: ?product_id=&category_id=&active=."""
    bulk_discounts = discount_service.list_bulk_discounts(
        get_session(),
        product_id=request.args.get('product_id', type=int),
        category_id=request.args.get('category_id', type=int),
        active=_bool_arg('active'),
    )
    return jsonify({
        'status': 'success',
        'data': {
            'count': len(bulk_discounts),
            'bulk_discounts': [b.to_dict() for b in bulk_discounts],
        }
    })


@discounts_bp.route('/bulk', methods=['POST'])
@require_admin
def create_bulk_discount():
    bulk_discount = discount_service.create_bulk_discount(get_session(), _json_body())
    return jsonify({'status': 'success', 'data': {'bulk_discount': bulk_discount.to_dict()}}), 201


@discounts_bp.route('/bulk/<int:bulk_discount_id>', methods=['PUT'])
@require_admin
def update_bulk_discount(bulk_discount_id):
    bulk_discount = discount_service.update_bulk_discount(get_session(), bulk_discount_id, _json_body())
    return jsonify({
        'status': 'success',
        'message': 'Bulk discount updated',
        'data': {'bulk_discount': bulk_discount.to_dict()}
    })


@discounts_bp.route('/bulk/<int:bulk_discount_id>', methods=['DELETE'])
@require_admin
def delete_bulk_discount(bulk_discount_id):
    discount_service.delete_bulk_discount(get_session(), bulk_discount_id)
    return jsonify({'status': 'success', 'message': 'Bulk discount deleted'})


@discounts_bp.route('/bulk/<int:bulk_discount_id>/toggle', methods=['PATCH'])
@require_admin
def toggle_bulk_discount(bulk_discount_id):
    bulk_discount = discount_service.toggle_bulk_discount(get_session(), bulk_discount_id)
    return jsonify({'status': 'success', 'data': {'bulk_discount': bulk_discount.to_dict()}})


@discounts_bp.route('/bulk/product/<int:product_id>', methods=['GET'])
def bulk_price(product_id):
    """
    Price quote for a quantity of one product, with any bulk tier applied.

    Signed-in customers also see promotions limited to their segment.
    """
    quantity = request.args.get('quantity', 1, type=int)
    user = g.get('user')
    quote = discount_service.quote_bulk_price(
        get_session(), product_id, quantity,
        customer_type=user.customer_type if user is not None else None,
    )
    return jsonify({'status': 'success', 'data': quote})
