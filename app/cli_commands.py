"""
Flask CLI commands for packaging maintenance.

Commands:
- flask init-db: Create database tables
- flask validate-hierarchies: Validate the packaging tree of every product
"""

import click
from app.database import create_all, get_session
from app.models import Product
from app.services import packaging_service


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('validate-hierarchies')
    @click.option('--product-id', type=int, default=None, help='Validate a single product')
    @click.option('--show-warnings/--hide-warnings', default=True, help='Print warnings too')
    def validate_hierarchies(product_id, show_warnings):
        """Validate packaging hierarchies and print their errors and warnings."""
        db_session = get_session()
        query = db_session.query(Product).filter(Product.active == True)
        if product_id is not None:
            query = query.filter(Product.id == product_id)
        products = query.order_by(Product.id).all()

        if not products:
            click.echo(click.style('No products found.', fg='yellow'))
            return

        invalid = 0
        for product in products:
            report = packaging_service.validate_hierarchy(db_session, product.id)
            if report.is_valid:
                click.echo(click.style(f'[OK] {product.id} {product.name}', fg='green'))
            else:
                invalid += 1
                click.echo(click.style(f'[INVALID] {product.id} {product.name}', fg='red'))
            for issue in report.errors:
                click.echo(f'    error   {issue.code}: {issue.message}')
            if show_warnings:
                for issue in report.warnings:
                    click.echo(f'    warning {issue.code}: {issue.message}')

        click.echo(f'\n{len(products)} product(s) checked, {invalid} invalid.')
        if invalid:
            raise SystemExit(1)
