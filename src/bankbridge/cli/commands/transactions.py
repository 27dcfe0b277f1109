"""Transaction review commands for BankBridge CLI."""

import logging
from datetime import datetime

import typer

from bankbridge.errors import BankBridgeError
from bankbridge.models import Categorization, TransactionFilter

from ..utils import JsonOption, UserOption, open_components, print_json

app = typer.Typer(help="Categorize and review transactions")
logger = logging.getLogger(__name__)


@app.command("list")
def list_transactions(
    user: UserOption,
    account_id: str | None = typer.Option(None, "--account", "-a", help="Account id"),
    category: str | None = typer.Option(None, "--category", help="Category filter"),
    merchant: str | None = typer.Option(
        None, "--merchant", "-m", help="Merchant name fragment"
    ),
    since: datetime | None = typer.Option(
        None, "--since", formats=["%Y-%m-%d"], help="Earliest booking date"
    ),
    needs_invoice: bool = typer.Option(
        False, "--needs-invoice", help="Only business expenses missing an invoice"
    ),
    limit: int = typer.Option(50, "--limit", "-n", min=1, help="Maximum rows"),
    as_json: JsonOption = False,
) -> None:
    """List a user's transactions, newest first."""
    filters = TransactionFilter(
        account_id=account_id,
        category=category,
        merchant_name=merchant,
        date_from=since.date() if since else None,
        needs_invoice=True if needs_invoice else None,
        limit=limit,
    )
    with open_components() as components:
        page = components.ingestor.list_transactions(user, filters)

    if as_json:
        print_json(page)
        return
    for tx in page.transactions:
        print(
            f"{tx.date}  {tx.signed_amount:>12} {tx.currency}  "
            f"{tx.category:<15} {tx.merchant_name or tx.description}"
        )
    logger.info(f"Showing {len(page.transactions)} of {page.total} transactions")


@app.command("categorize")
def categorize_pending(user: UserOption) -> None:
    """Categorize every uncategorized transaction of a user."""
    with open_components() as components:
        count = components.engine.categorize_pending(user)
    logger.info(f"🏷️  Categorized {count} transactions")


@app.command("label")
def label_transaction(
    user: UserOption,
    transaction_id: str = typer.Argument(..., help="Transaction to label"),
    category: str = typer.Argument(..., help="Corrected category"),
    subcategory: str | None = typer.Option(None, "--subcategory", "-s"),
    business: bool = typer.Option(
        False, "--business", help="Mark as a business expense"
    ),
) -> None:
    """Correct a transaction's category; the label is kept by later syncs."""
    correction = Categorization(
        category=category,
        subcategory=subcategory,
        is_business_expense=True if business else None,
    )
    with open_components() as components:
        try:
            components.engine.categorize_transaction(transaction_id, user, correction)
        except BankBridgeError as e:
            logger.error(f"❌ Failed to label transaction: {e}")
            raise typer.Exit(1) from e

    logger.info(f"✅ Transaction {transaction_id} labelled as {category}")


@app.command("insights")
def spending_insights(
    user: UserOption,
    days: int = typer.Option(30, "--days", "-d", min=1, help="Period length in days"),
    as_json: JsonOption = False,
) -> None:
    """Spending rollup by category and merchant."""
    with open_components() as components:
        insights = components.ingestor.get_insights(user, days)

    if as_json:
        print_json(insights)
        return
    print(f"Spending {insights.period_from} to {insights.period_to}")
    print(f"  Total: {insights.total_spending}")
    print(f"  Average: {insights.average_transaction_amount}")
    for category, amount in sorted(
        insights.spending_by_category.items(), key=lambda item: -item[1]
    ):
        print(
            f"  {category:<15} {amount:>12} "
            f"({insights.transactions_by_category[category]} transactions)"
        )
    if insights.top_merchants:
        print("Top merchants:")
        for merchant in insights.top_merchants:
            print(f"  {merchant.merchant:<30} {merchant.amount:>12} x{merchant.count}")
