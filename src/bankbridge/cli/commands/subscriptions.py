"""Subscription detection commands for BankBridge CLI."""

import logging

import typer

from ..utils import JsonOption, UserOption, open_components, print_json

app = typer.Typer(help="Detect recurring payments")
logger = logging.getLogger(__name__)


@app.command("detect")
def detect_subscriptions(user: UserOption) -> None:
    """Scan recent expenses for recurring payments."""
    with open_components() as components:
        detected = components.detector.detect_subscriptions(user)

    for subscription in detected:
        print(
            f"{subscription.merchant_name:<30} {subscription.amount:>10} "
            f"{subscription.currency} {subscription.frequency.value:<8} "
            f"next {subscription.next_expected} "
            f"(confidence {subscription.confidence:.2f})"
        )
    logger.info(f"🔁 {len(detected)} recurring payments detected")


@app.command("list")
def list_subscriptions(user: UserOption, as_json: JsonOption = False) -> None:
    """Active subscriptions with their monthly cost and savings tips."""
    with open_components() as components:
        summary = components.detector.get_subscriptions(user)

    if as_json:
        print_json(summary)
        return
    for cost in summary.subscriptions:
        subscription = cost.subscription
        print(
            f"{subscription.merchant_name:<30} {cost.monthly_amount:>10} "
            f"{subscription.currency}/month ({subscription.frequency.value})"
        )
    print(f"Total: {summary.total_monthly}/month, {summary.total_yearly}/year")
    for tip in summary.recommendations:
        logger.info(f"💡 {tip}")
