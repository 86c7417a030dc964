"""CLI commands for fee quotes, rate tables and currency conversion."""

import asyncio
from typing import Optional

import click
from tabulate import tabulate

from parcel_billing.business.errors import BillingError
from parcel_billing.services.currency import get_currency_converter
from parcel_billing.services.fee_calculator import PackageCharges, compute_fees
from parcel_billing.services.rates import default_rate_table


@click.group()
def billing():
    """Parcel billing commands."""
    pass


@billing.command()
@click.option('--weight', type=float, required=True, help='Package weight')
@click.option('--unit', type=click.Choice(['lb', 'kg']), default='lb', show_default=True, help='Weight unit')
@click.option('--declared-value', type=float, default=0.0, show_default=True,
              help='Declared value in the rate table base currency')
@click.option('--days', type=int, default=0, show_default=True, help='Days in storage')
@click.option('--currency', help='Also show the total in this currency')
def quote(weight: float, unit: str, declared_value: float, days: int, currency: Optional[str]):
    """Quote shipping, storage and customs fees for a package."""
    rates = default_rate_table()
    converter = get_currency_converter()

    package = PackageCharges(
        weight=weight,
        weight_unit=unit,
        declared_value=declared_value,
        days_in_storage=days,
    )
    breakdown = compute_fees(package, rates)

    table_data = [
        ["Shipping", converter.format(breakdown.shipping_cost, breakdown.currency)],
        ["Storage", converter.format(breakdown.storage_fee, breakdown.currency)],
        ["Customs duty", converter.format(breakdown.customs_duty, breakdown.currency)],
        ["Total", converter.format(breakdown.total, breakdown.currency)],
    ]

    if currency and currency.upper() != breakdown.currency:
        try:
            converted = converter.convert(breakdown.total, breakdown.currency, currency)
        except BillingError as e:
            raise click.ClickException(e.message)
        table_data.append([f"Total ({currency.upper()})", converter.format(converted, currency)])

    click.echo(tabulate(table_data, headers=["Component", "Amount"], tablefmt="grid"))


@billing.command()
def rates():
    """Show the active rate table from the rates policy."""
    rate_table = default_rate_table()
    table_data = [[name, value] for name, value in rate_table.to_dict().items()]
    click.echo(tabulate(table_data, headers=["Rate", "Value"], tablefmt="grid"))


@billing.command()
@click.argument('amount', type=str)
@click.argument('from_currency')
@click.argument('to_currency')
def convert(amount: str, from_currency: str, to_currency: str):
    """Convert AMOUNT from FROM_CURRENCY to TO_CURRENCY at reference rates."""
    converter = get_currency_converter()
    try:
        converted = converter.convert(amount, from_currency, to_currency)
    except BillingError as e:
        raise click.ClickException(e.message)

    click.echo(
        f"{converter.format(amount, from_currency)} = {converter.format(converted, to_currency)}"
    )


@billing.command()
@click.option('--number', required=True, help='Invoice number, e.g. INV-2026-0001')
def invoice(number: str):
    """Show a stored invoice and its totals."""
    from parcel_billing.services.billing import BillingService
    from parcel_billing.storage.db import close_database, get_session
    from parcel_billing.storage.repository import SqlInvoiceStore

    async def run():
        try:
            async with get_session() as db:
                service = BillingService(SqlInvoiceStore(db), get_currency_converter())
                ledger = await service.get_invoice_by_number(number)

                click.echo(f"{ledger.number}  [{ledger.status.value}]  due {ledger.due_date.date()}")

                table_data = [
                    [item.description, item.quantity, service.format(item.unit_price, ledger.currency),
                     f"{item.tax_rate_percent}%", service.format(item.total, ledger.currency)]
                    for item in ledger.line_items
                ]
                headers = ["Description", "Qty", "Unit price", "Tax", "Total"]
                click.echo("\n" + tabulate(table_data, headers=headers, tablefmt="grid"))

                summary = [[name.replace("_", " ").title(), value] for name, value in service.summary(ledger).items()]
                click.echo("\n" + tabulate(summary, tablefmt="plain"))
        finally:
            await close_database()

    try:
        asyncio.run(run())
    except BillingError as e:
        raise click.ClickException(e.message)


if __name__ == '__main__':
    billing()
