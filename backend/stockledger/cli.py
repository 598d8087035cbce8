# Overview: Flask CLI command group for stock ledger inspection and maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask stock <command> [options]
#
# - python -m flask stock sweep [--theater-id 1 --product-id 7]
#   Run the auto-expire sweep for one product, or for every product with a ledger.
# - python -m flask stock recalc --theater-id 1 --product-id 7
#   Report chain breaks, then rebuild carry-forwards and every derived bucket.
# - python -m flask stock show --theater-id 1 --product-id 7 [--year 2024 --month 3]
#   Print one month of the ledger (defaults to the current month).

import click
from flask.cli import with_appcontext

from .services import stock_ledger_service
from .time_utils import utcnow


@click.group('stock')
def stock_group():
    """Stock ledger inspection and maintenance commands."""


@stock_group.command('sweep')
@click.option('--theater-id', type=int, help='Theater ID (requires --product-id)')
@click.option('--product-id', type=int, help='Product ID (requires --theater-id)')
@with_appcontext
def sweep_cli(theater_id, product_id):
    """
    Apply due expiries and fill carry-forward days up to today.

    Example:
        flask stock sweep
        flask stock sweep --theater-id 1 --product-id 7
    """
    if (theater_id is None) != (product_id is None):
        raise click.UsageError("--theater-id and --product-id must be given together")

    if theater_id is not None:
        keys = [(theater_id, product_id)]
    else:
        keys = stock_ledger_service.list_ledger_keys()

    if not keys:
        click.echo("No stock ledgers found.")
        return

    failures = 0
    for t_id, p_id in keys:
        try:
            summary = stock_ledger_service.run_sweep(theater_id=t_id, product_id=p_id)
        except Exception as e:
            failures += 1
            click.echo(f"FAIL theater {t_id} product {p_id}: {str(e)}")
            continue

        click.echo(
            f"PASS theater {t_id} product {p_id}: "
            f"{len(summary['expired'])} expired, "
            f"{summary['placeholders_created']} days filled, "
            f"stock {summary['current_stock']}"
        )
        for warning in summary["warnings"]:
            click.echo(f"   WARN {warning['message']}")

    if failures:
        raise click.ClickException(f"{failures} ledger(s) failed to sweep")


@stock_group.command('recalc')
@click.option('--theater-id', type=int, required=True, help='Theater ID')
@click.option('--product-id', type=int, required=True, help='Product ID')
@with_appcontext
def recalc_cli(theater_id, product_id):
    """
    Rebuild the carry-forward chain and every derived bucket for one product.
    """
    summary = stock_ledger_service.recalculate_product(theater_id=theater_id, product_id=product_id)

    breaks = summary["breaks_found"]
    if breaks:
        click.echo(f"Found {len(breaks)} problem(s):")
        for problem in breaks:
            click.echo(f"   - {problem}")
    else:
        click.echo("No chain breaks found.")

    click.echo(f"PASS Recalculated; current stock {summary['current_stock']}")


@stock_group.command('show')
@click.option('--theater-id', type=int, required=True, help='Theater ID')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--year', type=int, help='Year (defaults to current)')
@click.option('--month', type=click.IntRange(1, 12), help='Month (defaults to current)')
@with_appcontext
def show_cli(theater_id, product_id, year, month):
    """
    Print one month of a product's ledger.

    Example:
        flask stock show --theater-id 1 --product-id 7 --year 2024 --month 3
    """
    today = utcnow().date()
    year = year or today.year
    month = month or today.month

    view = stock_ledger_service.get_month_view(
        theater_id=theater_id,
        product_id=product_id,
        year=year,
        month=month,
    )
    period = view["period"]
    stats = view["statistics"]

    click.echo("\n" + "="*110)
    click.echo(f"{period['month_name']} {period['year']}  opening {stats['opening_balance']}  closing {stats['closing_balance']}")
    click.echo("="*110)
    click.echo(f"{'Date':<12} {'Type':<11} {'Qty':>6} {'Carry':>6} {'Added':>6} {'Used':>6} "
               f"{'ExpOld':>6} {'Exp':>6} {'Dmg':>6} {'Bal':>6}  {'Notes'}")
    click.echo("-"*110)

    for e in view["entries"]:
        notes = e["notes"][:30] if e["notes"] else "-"
        click.echo(f"{e['date']:<12} {e['type']:<11} {e['quantity']:>6} {e['carry_forward']:>6} "
                   f"{e['stock_added']:>6} {e['used_stock']:>6} {e['expired_old_stock']:>6} "
                   f"{e['expired_stock']:>6} {e['damage_stock']:>6} {e['balance']:>6}  {notes}")

    click.echo("="*110)
    product = view["product"]
    low = " (LOW)" if product and product["is_low_stock"] else ""
    click.echo(f"Current stock: {view['current_stock']}{low}\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
