"""
Flask CLI commands for store management.

Commands:
- flask init-db: Create all tables
- flask create-coupon: Create a promotional code
- flask issue-token: Print a bearer token for a user
"""

import click
from datetime import datetime
from decimal import Decimal, InvalidOperation
from storefront import database
from storefront.models import Coupon, CouponType, User
from storefront.middleware import issue_token


def _parse_datetime(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f'{value!r} is not an ISO date (YYYY-MM-DD[THH:MM])')


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table that does not exist yet."""
        database.create_all()
        click.echo(click.style('✅ Database tables created', fg='green'))

    @app.cli.command('create-coupon')
    @click.option('--code', prompt=True, help='Coupon code (stored upper-case)')
    @click.option('--type', 'coupon_type', type=click.Choice(['PERCENTAGE', 'FIXED'], case_sensitive=False),
                  default='PERCENTAGE', show_default=True)
    @click.option('--value', prompt=True, help='Percent (0-100) or fixed amount')
    @click.option('--min-order', default='0', show_default=True, help='Minimum subtotal to unlock')
    @click.option('--max-discount', default=None, help='Cap for percentage coupons')
    @click.option('--free-shipping', is_flag=True, help='Also waive shipping')
    @click.option('--usage-limit', type=int, default=None, help='Max successful uses')
    @click.option('--start-at', default=None, help='ISO start date')
    @click.option('--end-at', default=None, help='ISO end date')
    @click.option('--description', default=None)
    def create_coupon(code, coupon_type, value, min_order, max_discount, free_shipping,
                      usage_limit, start_at, end_at, description):
        """Create a promotional code."""
        code = code.strip().upper()
        try:
            value = Decimal(value)
            min_order = Decimal(min_order)
            max_discount = Decimal(max_discount) if max_discount else None
        except InvalidOperation:
            click.echo(click.style('❌ value, min-order and max-discount must be numbers', fg='red'))
            return

        coupon_type = CouponType(coupon_type.upper())
        if value <= 0 or (coupon_type == CouponType.PERCENTAGE and value > 100):
            click.echo(click.style('❌ Invalid coupon value', fg='red'))
            return

        db_session = database.db_session
        if db_session.query(Coupon).filter_by(code=code).first():
            click.echo(click.style(f'❌ Coupon {code} already exists', fg='red'))
            return

        try:
            coupon = Coupon(
                code=code,
                description=description,
                type=coupon_type,
                value=value,
                min_order_value=min_order,
                max_discount=max_discount,
                free_shipping=free_shipping,
                usage_limit=usage_limit,
                start_at=_parse_datetime(start_at),
                end_at=_parse_datetime(end_at),
            )
            db_session.add(coupon)
            db_session.commit()

            click.echo(click.style(f'✅ Coupon {code} created', fg='green', bold=True))
            click.echo(f'   ID: {coupon.id}')
            click.echo(f'   {coupon_type.value} {value} (min order {min_order})')

        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'❌ Error creating coupon: {str(e)}', fg='red'))
            raise click.Abort()

    @app.cli.command('issue-token')
    @click.option('--email', prompt=True, help='User email')
    @click.option('--expires-in', type=int, default=3600, show_default=True, help='Seconds')
    def issue_token_command(email, expires_in):
        """Print a bearer token for an existing user."""
        user = database.db_session.query(User).filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo(click.style(f'❌ No user with email {email}', fg='red'))
            return
        click.echo(issue_token(user.id, expires_in=expires_in))
