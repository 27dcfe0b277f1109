"""Open-banking aggregator integration (GoCardless Bank Account Data)."""

from .client import PRODUCTION_URL, SANDBOX_URL, AggregatorClient

__all__ = ["PRODUCTION_URL", "SANDBOX_URL", "AggregatorClient"]
