"""
Pricing service - order totals.

Pure functions over line items; no database access. Amounts are Decimals
quantized to two places so identical inputs always give identical totals.
"""
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from flask import current_app, has_app_context

from storefront.exceptions import InvariantViolationError
from storefront.utils.money import ZERO, quantize_money, to_decimal

FREE_SHIPPING_THRESHOLD = Decimal('500')
SHIPPING_FLAT_FEE = Decimal('50')
TAX_RATE = Decimal('0.05')
COD_SURCHARGE = Decimal('20')


@dataclass(frozen=True)
class PricingRules:
    """Shipping, tax and surcharge constants."""
    free_shipping_threshold: Decimal = FREE_SHIPPING_THRESHOLD
    shipping_flat_fee: Decimal = SHIPPING_FLAT_FEE
    tax_rate: Decimal = TAX_RATE
    cod_surcharge: Decimal = COD_SURCHARGE


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    discount: Decimal
    cod_charge: Decimal
    total: Decimal

    def to_dict(self) -> Dict[str, Decimal]:
        return asdict(self)


def get_pricing_rules() -> PricingRules:
    """Read pricing constants from the app config, or use the defaults."""
    if not has_app_context():
        return PricingRules()
    config = current_app.config
    return PricingRules(
        free_shipping_threshold=to_decimal(config.get('FREE_SHIPPING_THRESHOLD', FREE_SHIPPING_THRESHOLD)),
        shipping_flat_fee=to_decimal(config.get('SHIPPING_FLAT_FEE', SHIPPING_FLAT_FEE)),
        tax_rate=to_decimal(config.get('TAX_RATE', TAX_RATE)),
        cod_surcharge=to_decimal(config.get('COD_SURCHARGE', COD_SURCHARGE)),
    )


def _field(item: Any, name: str):
    if isinstance(item, dict):
        return item[name]
    return getattr(item, name)


def calculate_subtotal(items: Iterable[Any]) -> Decimal:
    """Sum of price x quantity over all items."""
    subtotal = ZERO
    for item in items:
        subtotal += to_decimal(_field(item, 'price'), 'price') * int(_field(item, 'quantity'))
    return quantize_money(subtotal)


def calculate_shipping(subtotal: Decimal, rules: Optional[PricingRules] = None) -> Decimal:
    """Flat fee unless the subtotal is above the free-shipping threshold."""
    rules = rules or get_pricing_rules()
    if subtotal > rules.free_shipping_threshold:
        return ZERO
    return quantize_money(rules.shipping_flat_fee)


def calculate_tax(subtotal: Decimal, rules: Optional[PricingRules] = None) -> Decimal:
    rules = rules or get_pricing_rules()
    return quantize_money(subtotal * rules.tax_rate)


def compute_totals(
    items: Iterable[Any],
    discount_amount=ZERO,
    is_cod: bool = False,
    rules: Optional[PricingRules] = None
) -> OrderTotals:
    """
    Compute subtotal, shipping, tax, COD surcharge and grand total.

    Args:
        items: objects or dicts exposing ``price`` and ``quantity``
        discount_amount: discount already resolved (and clamped) by the discount service
        is_cod: whether the order is paid cash on delivery
        rules: pricing constants; read from config when omitted

    Returns:
        OrderTotals

    Raises:
        InvariantViolationError: if the discount would make the total negative
    """
    rules = rules or get_pricing_rules()

    subtotal = calculate_subtotal(items)
    shipping_cost = calculate_shipping(subtotal, rules)
    tax = calculate_tax(subtotal, rules)
    discount = quantize_money(discount_amount or ZERO)
    cod_charge = quantize_money(rules.cod_surcharge) if is_cod else ZERO

    if discount < 0:
        raise InvariantViolationError(f'Discount cannot be negative (got {discount})')

    total = quantize_money(subtotal + shipping_cost + tax - discount + cod_charge)
    if total < 0:
        raise InvariantViolationError(
            f'Order total would be negative: subtotal={subtotal}, discount={discount}'
        )

    return OrderTotals(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        discount=discount,
        cod_charge=cod_charge,
        total=total,
    )
