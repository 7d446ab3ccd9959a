"""
Flask CLI commands for store administration.

Commands:
- flask init-db: Create all tables
- flask create-coupon: Create a discount coupon
"""
from datetime import timedelta

import click

from storefront.database import create_schema, get_session
from storefront.exceptions import StorefrontError
from storefront.models import CouponType
from storefront.services import discount_service
from storefront.utils.dates import utcnow


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables that do not exist yet."""
        create_schema()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('create-coupon')
    @click.option('--code', prompt=True, help='Coupon code (stored upper-case)')
    @click.option('--name', prompt=True, help='Display name')
    @click.option('--type', 'coupon_type', type=click.Choice(CouponType.ALL), default=CouponType.PERCENTAGE,
                  show_default=True, help='Discount type')
    @click.option('--value', type=float, prompt=True, help='Percentage or fixed amount')
    @click.option('--min-order', type=float, default=0, show_default=True, help='Minimum order amount')
    @click.option('--max-discount', type=float, default=None, help='Cap for percentage coupons')
    @click.option('--days', type=int, default=30, show_default=True, help='Days the coupon stays valid')
    @click.option('--usage-limit', type=int, default=None, help='Maximum number of uses')
    def create_coupon_command(code, name, coupon_type, value, min_order, max_discount, days, usage_limit):
        """Create a coupon valid from now for the given number of days."""
        now = utcnow()
        try:
            coupon = discount_service.create_coupon(get_session(), {
                'code': code,
                'name': name,
                'type': coupon_type,
                'value': value,
                'min_order_amount': min_order,
                'max_discount': max_discount,
                'valid_from': now,
                'valid_until': now + timedelta(days=days),
                'usage_limit': usage_limit,
            })
        except StorefrontError as e:
            click.echo(click.style(f'Could not create coupon: {e.message}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(f'Coupon {coupon.code} created.', fg='green', bold=True))
        click.echo(f'   ID: {coupon.id}')
        click.echo(f'   Valid until: {coupon.valid_until.isoformat()}')
