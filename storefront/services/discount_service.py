"""
Discount service - coupon validation and bulk-discount tiers.

Pure calculations (``calculate_coupon_discount``, ``tier_for``,
``bulk_discount_for_line``) are kept apart from the functions that query or
persist coupons and promotions.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.exceptions import (
    ConflictError, NotFoundError, ValidationError,
    CouponNotFoundError, CouponExpiredError, CouponUsageLimitError,
    CouponMinimumNotMetError, CouponCategoryMismatchError,
)
from storefront.models import (
    BulkDiscount, BulkDiscountTier, Cart, Category, Coupon, CouponType, CustomerType, Product
)
from storefront.utils.dates import ensure_utc, parse_datetime, utcnow
from storefront.utils.money import ZERO, quantize_money, to_decimal
from storefront.utils.numbers import to_whole_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouponDiscount:
    coupon: Coupon
    amount: Decimal


@dataclass(frozen=True)
class TierDiscount:
    percentage: Decimal
    max_discount: Optional[Decimal]


NO_TIER = TierDiscount(percentage=Decimal('0'), max_discount=None)


def normalize_code(code: str) -> str:
    return (code or '').strip().upper()


# =====================================================
# COUPONS
# =====================================================

def calculate_coupon_discount(coupon: Coupon, order_amount) -> Decimal:
    """
    Discount a coupon grants on an order amount.

    Fixed coupons give their value; percentage coupons give
    ``order_amount * value / 100`` capped at ``max_discount``. The result
    never exceeds the order amount.
    """
    amount = to_decimal(order_amount)
    if amount <= 0:
        return ZERO

    if coupon.type == CouponType.PERCENTAGE:
        discount = amount * to_decimal(coupon.value) / Decimal('100')
        if coupon.max_discount is not None and discount > coupon.max_discount:
            discount = to_decimal(coupon.max_discount)
    else:
        discount = to_decimal(coupon.value)

    return quantize_money(min(discount, amount))


def find_coupon(session: Session, code: str, for_update: bool = False) -> Optional[Coupon]:
    """Case-insensitive lookup of a coupon by code."""
    query = session.query(Coupon).filter(func.upper(Coupon.code) == normalize_code(code))
    if for_update:
        query = query.with_for_update()
    return query.first()


def check_coupon(
    coupon: Optional[Coupon],
    code: str,
    order_amount,
    category_ids: Iterable[int] = (),
    product_ids: Iterable[int] = (),
    now: Optional[datetime] = None
) -> Decimal:
    """
    Run the coupon rules in order and return the discount.

    Raises:
        CouponNotFoundError, CouponExpiredError, CouponUsageLimitError,
        CouponMinimumNotMetError, CouponCategoryMismatchError
    """
    code = normalize_code(code)
    now = ensure_utc(now) or utcnow()
    amount = to_decimal(order_amount)

    if coupon is None or not coupon.is_active:
        raise CouponNotFoundError(code)

    if not (ensure_utc(coupon.valid_from) <= now <= ensure_utc(coupon.valid_until)):
        raise CouponExpiredError(code)

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponUsageLimitError(code)

    if amount < to_decimal(coupon.min_order_amount or 0):
        raise CouponMinimumNotMetError(code, quantize_money(coupon.min_order_amount))

    if coupon.is_restricted:
        allowed_categories = {c.id for c in coupon.categories}
        allowed_products = {p.id for p in coupon.products}
        matches = (
            bool(allowed_categories & set(category_ids))
            or bool(allowed_products & set(product_ids))
        )
        if not matches:
            raise CouponCategoryMismatchError(code)

    return calculate_coupon_discount(coupon, amount)


def validate_coupon(
    session: Session,
    code: str,
    order_amount,
    category_ids: Iterable[int] = (),
    product_ids: Iterable[int] = (),
    now: Optional[datetime] = None
) -> CouponDiscount:
    """Look up a coupon and validate it against the order context."""
    if not normalize_code(code):
        raise ValidationError('Coupon code is required')

    coupon = find_coupon(session, code)
    amount = check_coupon(coupon, code, order_amount, category_ids, product_ids, now)
    return CouponDiscount(coupon=coupon, amount=amount)


def redeem_coupon(session: Session, coupon_id: int) -> Coupon:
    """
    Count one use of a coupon (caller commits).

    The row is locked so two checkouts cannot both take the last use.
    """
    coupon = session.query(Coupon).filter(Coupon.id == coupon_id).with_for_update().first()
    if not coupon:
        raise NotFoundError('Coupon not found')
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponUsageLimitError(coupon.code)
    coupon.used_count += 1
    return coupon


COUPON_FIELDS = (
    'code', 'name', 'description', 'type', 'value', 'min_order_amount', 'max_discount',
    'valid_from', 'valid_until', 'usage_limit', 'is_active',
)


def _optional_decimal(value, field):
    return to_decimal(value, field) if value is not None else None


def _parse_usage_limit(value) -> Optional[int]:
    if value is None:
        return None
    try:
        usage_limit = to_whole_number(value, 'usage_limit')
    except ValueError as e:
        raise ValidationError(str(e))
    if usage_limit < 0:
        raise ValidationError('usage_limit cannot be negative')
    return usage_limit


def _parse_coupon(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate coupon fields and return them as column values."""
    code = normalize_code(data.get('code'))
    if not code:
        raise ValidationError('Coupon code is required')
    if not data.get('name'):
        raise ValidationError('Coupon name is required')

    coupon_type = data.get('type')
    if coupon_type not in CouponType.ALL:
        raise ValidationError(f'Invalid coupon type: {coupon_type}')

    try:
        value = to_decimal(data.get('value'), 'value')
        min_order_amount = to_decimal(data.get('min_order_amount') or 0, 'min_order_amount')
        max_discount = _optional_decimal(data.get('max_discount'), 'max_discount')
    except ValueError as e:
        raise ValidationError(str(e))

    if value < 0:
        raise ValidationError('Value cannot be negative')
    if coupon_type == CouponType.PERCENTAGE and value > 100:
        raise ValidationError('Percentage cannot exceed 100')
    if min_order_amount < 0:
        raise ValidationError('min_order_amount cannot be negative')
    if max_discount is not None and max_discount < 0:
        raise ValidationError('max_discount cannot be negative')

    valid_from = data.get('valid_from')
    valid_until = data.get('valid_until')
    if not valid_from or not valid_until:
        raise ValidationError('valid_from and valid_until are required')
    try:
        valid_from = parse_datetime(valid_from)
        valid_until = parse_datetime(valid_until)
    except ValueError as e:
        raise ValidationError(str(e))
    if valid_until < valid_from:
        raise ValidationError('valid_until must be after valid_from')

    is_active = data.get('is_active')
    return {
        'code': code,
        'name': data['name'],
        'description': data.get('description'),
        'type': coupon_type,
        'value': value,
        'min_order_amount': min_order_amount,
        'max_discount': max_discount,
        'valid_from': valid_from,
        'valid_until': valid_until,
        'usage_limit': _parse_usage_limit(data.get('usage_limit')),
        'is_active': True if is_active is None else bool(is_active),
    }


def _set_coupon_scope(session: Session, coupon: Coupon, data: Dict[str, Any]) -> None:
    if 'category_ids' in data:
        category_ids = data.get('category_ids') or []
        coupon.categories = (
            session.query(Category).filter(Category.id.in_(category_ids)).all() if category_ids else []
        )
    if 'product_ids' in data:
        product_ids = data.get('product_ids') or []
        coupon.products = (
            session.query(Product).filter(Product.id.in_(product_ids)).all() if product_ids else []
        )


def _get_coupon(session: Session, coupon_id: int) -> Coupon:
    coupon = session.get(Coupon, coupon_id)
    if not coupon:
        raise NotFoundError('Coupon not found')
    return coupon


def list_coupons(session: Session, active: Optional[bool] = None,
                 coupon_type: Optional[str] = None) -> List[Coupon]:
    """Coupons, newest first, optionally filtered by state and type."""
    query = session.query(Coupon)
    if active is not None:
        query = query.filter(Coupon.is_active.is_(active))
    if coupon_type:
        query = query.filter(Coupon.type == coupon_type)
    return query.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()


def create_coupon(session: Session, data: Dict[str, Any]) -> Coupon:
    """Create a coupon (admin). Codes are unique regardless of case."""
    fields = _parse_coupon(data)
    code = fields['code']

    if find_coupon(session, code):
        raise ConflictError(f'Coupon code {code} already exists')

    coupon = Coupon(used_count=0, **fields)
    _set_coupon_scope(session, coupon, data)

    try:
        session.add(coupon)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError(f'Coupon code {code} already exists')

    logger.info(f"[DISCOUNT] Coupon created: {code}")
    return coupon


def update_coupon(session: Session, coupon_id: int, data: Dict[str, Any]) -> Coupon:
    """
    Update a coupon (admin).

    Fields missing from ``data`` keep their current value, so a partial
    body is enough. ``category_ids``/``product_ids`` replace the scope
    when present.
    """
    coupon = _get_coupon(session, coupon_id)

    merged = {field: getattr(coupon, field) for field in COUPON_FIELDS}
    merged.update({field: data[field] for field in COUPON_FIELDS if field in data})
    fields = _parse_coupon(merged)
    code = fields['code']

    existing = find_coupon(session, code)
    if existing is not None and existing.id != coupon.id:
        raise ConflictError(f'Coupon code {code} already exists')

    try:
        for field, value in fields.items():
            setattr(coupon, field, value)
        _set_coupon_scope(session, coupon, data)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError(f'Coupon code {code} already exists')

    logger.info(f"[DISCOUNT] Coupon updated: {code}")
    return coupon


def delete_coupon(session: Session, coupon_id: int) -> None:
    """
    Delete a coupon (admin).

    Carts holding the coupon lose it along with its discount. Orders keep
    their own copy of the code.
    """
    coupon = _get_coupon(session, coupon_id)
    code = coupon.code

    try:
        detached = session.query(Cart).filter(Cart.applied_coupon_id == coupon.id).update(
            {
                Cart.applied_coupon_id: None,
                Cart.discount_source: None,
                Cart.discount_amount: 0,
                Cart.final_amount: Cart.total_amount,
            },
            synchronize_session='fetch'
        )
        session.delete(coupon)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[DISCOUNT] Coupon deleted: {code} (released from {detached} carts)")


def toggle_coupon(session: Session, coupon_id: int) -> Coupon:
    coupon = _get_coupon(session, coupon_id)
    coupon.is_active = not coupon.is_active
    session.commit()
    return coupon


# =====================================================
# BULK DISCOUNTS
# =====================================================

def is_currently_active(bulk_discount: BulkDiscount, now: Optional[datetime] = None) -> bool:
    now = ensure_utc(now) or utcnow()
    if not bulk_discount.is_active:
        return False
    if bulk_discount.start_date and ensure_utc(bulk_discount.start_date) > now:
        return False
    if bulk_discount.end_date and now > ensure_utc(bulk_discount.end_date):
        return False
    return True


def tier_for(bulk_discount: BulkDiscount, quantity: int, now: Optional[datetime] = None) -> TierDiscount:
    """Tier with the largest min_quantity not above ``quantity``."""
    if not is_currently_active(bulk_discount, now):
        return NO_TIER

    best = None
    for tier in bulk_discount.tiers:
        if tier.min_quantity <= quantity and (best is None or tier.min_quantity > best.min_quantity):
            best = tier

    if best is None:
        return NO_TIER
    return TierDiscount(
        percentage=to_decimal(best.discount_percentage),
        max_discount=to_decimal(best.max_discount) if best.max_discount is not None else None,
    )


def bulk_discount_for_line(bulk_discount: BulkDiscount, quantity: int, unit_price,
                           now: Optional[datetime] = None) -> Decimal:
    """Discount on one line: tier percentage of the line total, capped."""
    tier = tier_for(bulk_discount, quantity, now)
    if tier.percentage <= 0:
        return ZERO

    line_total = to_decimal(unit_price) * quantity
    discount = line_total * tier.percentage / Decimal('100')
    if tier.max_discount:
        discount = min(discount, tier.max_discount)
    return quantize_money(min(discount, line_total))


def find_bulk_discount(session: Session, product: Product, now: Optional[datetime] = None,
                       customer_type: Optional[str] = None,
                       order_value=None) -> Optional[BulkDiscount]:
    """
    Active promotion for a product, preferring product scope over category scope.

    Promotions limited to other customer types, or to an order value range
    ``order_value`` falls outside of, are skipped. Anonymous callers
    (``customer_type=None``) only see promotions open to everyone.
    """
    candidates = session.query(BulkDiscount).filter(
        BulkDiscount.is_active.is_(True),
        BulkDiscount.product_id == product.id
    ).order_by(BulkDiscount.id.desc()).all()

    if product.category_id is not None:
        candidates += session.query(BulkDiscount).filter(
            BulkDiscount.is_active.is_(True),
            BulkDiscount.product_id.is_(None),
            BulkDiscount.category_id == product.category_id
        ).order_by(BulkDiscount.id.desc()).all()

    for candidate in candidates:
        if not is_currently_active(candidate, now):
            continue
        if not candidate.is_user_eligible(customer_type):
            continue
        if order_value is not None and not candidate.applies_to_order_value(order_value):
            continue
        return candidate
    return None


def calculate_bulk_discount(session: Session, lines: Iterable[Any], now: Optional[datetime] = None,
                            customer_type: Optional[str] = None) -> Decimal:
    """
    Total bulk discount for a set of lines.

    Each line must expose ``product``, ``quantity`` and ``price``. Order value
    limits are checked against the total of all lines.
    """
    lines = list(lines)
    order_value = quantize_money(sum((to_decimal(line.price) * line.quantity for line in lines), ZERO))

    total = ZERO
    for line in lines:
        promotion = find_bulk_discount(session, line.product, now, customer_type, order_value)
        if promotion:
            total += bulk_discount_for_line(promotion, line.quantity, line.price, now)
    return quantize_money(total)


def quote_bulk_price(session: Session, product_id: int, quantity: int,
                     customer_type: Optional[str] = None) -> Dict[str, Any]:
    """Price breakdown for buying ``quantity`` units of one product."""
    if quantity < 1:
        raise ValidationError('Quantity must be at least 1')

    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError('Product not found')

    line_total = quantize_money(to_decimal(product.price) * quantity)
    promotion = find_bulk_discount(session, product, customer_type=customer_type, order_value=line_total)
    tier = tier_for(promotion, quantity) if promotion else NO_TIER
    discount = bulk_discount_for_line(promotion, quantity, product.price) if promotion else ZERO

    return {
        'product_id': product.id,
        'product': product.name,
        'unit_price': product.price,
        'quantity': quantity,
        'discount_percentage': tier.percentage,
        'max_discount': tier.max_discount,
        'original_total': line_total,
        'discount_amount': discount,
        'final_total': line_total - discount,
    }


def list_bulk_discounts(session: Session, product_id: Optional[int] = None,
                        category_id: Optional[int] = None,
                        active: Optional[bool] = None) -> List[BulkDiscount]:
    """Bulk discounts, newest first."""
    query = session.query(BulkDiscount)
    if product_id is not None:
        query = query.filter(BulkDiscount.product_id == product_id)
    if category_id is not None:
        query = query.filter(BulkDiscount.category_id == category_id)
    if active is not None:
        query = query.filter(BulkDiscount.is_active.is_(active))
    return query.order_by(BulkDiscount.created_at.desc(), BulkDiscount.id.desc()).all()


def _validate_tiers(tiers: List[Dict[str, Any]]) -> List[BulkDiscountTier]:
    if not tiers:
        raise ValidationError('At least one discount tier is required')

    rows = []
    previous = None
    for raw in tiers:
        try:
            min_quantity = to_whole_number(raw['min_quantity'], 'min_quantity')
            percentage = to_decimal(raw['discount_percentage'], 'discount_percentage')
            max_discount = _optional_decimal(raw.get('max_discount'), 'max_discount')
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f'Invalid tier: {e}')

        if min_quantity < 1:
            raise ValidationError('Tier quantity must be at least 1')
        if not (0 <= percentage <= 100):
            raise ValidationError('Discount percentage must be between 0 and 100')
        if max_discount is not None and max_discount < 0:
            raise ValidationError('Max discount cannot be negative')
        if previous is not None and min_quantity <= previous:
            raise ValidationError('Tier quantities must be in ascending order')
        previous = min_quantity

        rows.append(BulkDiscountTier(
            min_quantity=min_quantity,
            discount_percentage=percentage,
            max_discount=max_discount,
        ))
    return rows


def _validate_user_types(user_types) -> List[str]:
    if user_types is None:
        return [CustomerType.ALL]
    if isinstance(user_types, str) or not isinstance(user_types, (list, tuple)):
        raise ValidationError('applicable_user_types must be a list')

    allowed = (CustomerType.ALL,) + CustomerType.SEGMENTS
    invalid = [t for t in user_types if t not in allowed]
    if invalid:
        raise ValidationError(f'Invalid user types: {", ".join(map(str, invalid))}')
    return list(dict.fromkeys(user_types)) or [CustomerType.ALL]


def _validate_order_value_range(data: Dict[str, Any]):
    try:
        min_order_value = _optional_decimal(data.get('min_order_value'), 'min_order_value')
        max_order_value = _optional_decimal(data.get('max_order_value'), 'max_order_value')
    except ValueError as e:
        raise ValidationError(str(e))

    for value in (min_order_value, max_order_value):
        if value is not None and value < 0:
            raise ValidationError('Order value limits cannot be negative')
    if min_order_value is not None and max_order_value is not None and max_order_value < min_order_value:
        raise ValidationError('max_order_value must not be below min_order_value')
    return min_order_value, max_order_value


def _validate_scope(session: Session, product_id, category_id) -> None:
    if not product_id and not category_id:
        raise ValidationError('A product or category is required')
    if product_id and not session.get(Product, product_id):
        raise NotFoundError('Product not found')
    if category_id and not session.get(Category, category_id):
        raise NotFoundError('Category not found')


def _validate_period(start_date, end_date):
    try:
        start_date = parse_datetime(start_date) or utcnow()
        end_date = parse_datetime(end_date)
    except ValueError as e:
        raise ValidationError(str(e))
    if end_date and end_date < start_date:
        raise ValidationError('end_date must be after start_date')
    return start_date, end_date


def create_bulk_discount(session: Session, data: Dict[str, Any]) -> BulkDiscount:
    """Create a bulk discount with its tiers (admin)."""
    product_id = data.get('product_id')
    category_id = data.get('category_id')
    _validate_scope(session, product_id, category_id)

    tiers = _validate_tiers(data.get('tiers') or [])
    start_date, end_date = _validate_period(data.get('start_date'), data.get('end_date'))
    min_order_value, max_order_value = _validate_order_value_range(data)

    bulk_discount = BulkDiscount(
        product_id=product_id,
        category_id=category_id,
        is_active=data.get('is_active', True),
        start_date=start_date,
        end_date=end_date,
        min_order_value=min_order_value,
        max_order_value=max_order_value,
        applicable_user_types=_validate_user_types(data.get('applicable_user_types')),
        description=data.get('description'),
        tiers=tiers,
    )
    session.add(bulk_discount)
    session.commit()

    logger.info(f"[DISCOUNT] Bulk discount created: id={bulk_discount.id} tiers={len(tiers)}")
    return bulk_discount


def _get_bulk_discount(session: Session, bulk_discount_id: int) -> BulkDiscount:
    bulk_discount = session.get(BulkDiscount, bulk_discount_id)
    if not bulk_discount:
        raise NotFoundError('Bulk discount not found')
    return bulk_discount


def update_bulk_discount(session: Session, bulk_discount_id: int, data: Dict[str, Any]) -> BulkDiscount:
    """
    Update a bulk discount (admin).

    Missing fields keep their current value. ``tiers``, when given,
    replace the existing tiers.
    """
    bulk_discount = _get_bulk_discount(session, bulk_discount_id)

    def pick(field):
        return data[field] if field in data else getattr(bulk_discount, field)

    product_id = pick('product_id')
    category_id = pick('category_id')
    _validate_scope(session, product_id, category_id)

    tiers = _validate_tiers(data.get('tiers') or []) if 'tiers' in data else None
    start_date, end_date = _validate_period(pick('start_date'), pick('end_date'))
    min_order_value, max_order_value = _validate_order_value_range({
        'min_order_value': pick('min_order_value'),
        'max_order_value': pick('max_order_value'),
    })
    user_types = _validate_user_types(pick('applicable_user_types'))

    try:
        bulk_discount.product_id = product_id
        bulk_discount.category_id = category_id
        bulk_discount.start_date = start_date
        bulk_discount.end_date = end_date
        bulk_discount.min_order_value = min_order_value
        bulk_discount.max_order_value = max_order_value
        bulk_discount.applicable_user_types = user_types
        bulk_discount.is_active = bool(pick('is_active'))
        bulk_discount.description = pick('description')
        if tiers is not None:
            bulk_discount.tiers = tiers
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[DISCOUNT] Bulk discount updated: id={bulk_discount.id}")
    return bulk_discount


def delete_bulk_discount(session: Session, bulk_discount_id: int) -> None:
    """Delete a bulk discount and its tiers (admin)."""
    bulk_discount = _get_bulk_discount(session, bulk_discount_id)
    try:
        session.delete(bulk_discount)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"[DISCOUNT] Bulk discount deleted: id={bulk_discount_id}")


def toggle_bulk_discount(session: Session, bulk_discount_id: int) -> BulkDiscount:
    bulk_discount = _get_bulk_discount(session, bulk_discount_id)
    bulk_discount.is_active = not bulk_discount.is_active
    session.commit()
    return bulk_discount
