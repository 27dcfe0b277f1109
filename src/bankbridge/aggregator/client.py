"""HTTP client for the GoCardless Bank Account Data API.

The client owns the upstream access token. Tokens are cached until shortly
before expiry and refreshed under a lock, so concurrent callers that find an
expired token trigger exactly one refresh and never send a stale token.
"""

import logging
import threading
import time
from datetime import date
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from ..config import AggregatorConfig
from ..errors import UpstreamUnavailable
from .schemas import (
    AccountDetailsSchema,
    BalanceSchema,
    InstitutionSchema,
    RequisitionSchema,
    TokenResponse,
    TransactionsResponse,
)

logger = logging.getLogger(__name__)

PRODUCTION_URL = "https://bankaccountdata.gocardless.com/api/v2"
SANDBOX_URL = "https://bankaccountdata-sandbox.gocardless.com/api/v2"

# Refresh this many seconds before the upstream expiry
TOKEN_EXPIRY_MARGIN = 30.0

_institutions_adapter = TypeAdapter(list[InstitutionSchema])
_balances_adapter = TypeAdapter(list[BalanceSchema])


class AggregatorClient:
    """Authenticated client for the open-banking aggregator."""

    def __init__(
        self,
        config: AggregatorConfig,
        http_client: httpx.Client | None = None,
        clock: Any = time.monotonic,
    ):
        """Initialize the client.

        Args:
            config: Aggregator credentials and environment
            http_client: Optional preconfigured httpx client (tests pass one
                built on ``httpx.MockTransport``)
            clock: Monotonic clock used for token expiry tracking
        """
        self.config = config
        self._clock = clock
        self._http = http_client or httpx.Client(
            timeout=httpx.Timeout(config.timeout_seconds, connect=10.0)
        )
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

        logger.info(
            f"Aggregator client initialized for {config.environment} environment"
        )

    @property
    def base_url(self) -> str:
        return SANDBOX_URL if self.config.environment == "sandbox" else PRODUCTION_URL

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "AggregatorClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # Token lifecycle

    def _token_valid(self) -> bool:
        return self._access_token is not None and self._clock() < self._token_expires_at

    def authenticate(self) -> None:
        """Obtain a new access token from the aggregator.

        Raises:
            UpstreamUnavailable: If the token endpoint fails
        """
        try:
            response = self._http.post(
                f"{self.base_url}/token/new/",
                json={
                    "secret_id": self.config.secret_id,
                    "secret_key": self.config.secret_key,
                },
                headers={"accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Aggregator authentication failed: {type(e).__name__}")
            raise UpstreamUnavailable("Aggregator authentication failed") from e

        if response.is_error:
            logger.error(
                f"Aggregator authentication failed with status {response.status_code}"
            )
            raise UpstreamUnavailable(
                "Aggregator authentication failed", response.status_code
            )

        token = self._parse(TokenResponse, response.json(), "/token/new/")
        self._access_token = token.access
        self._token_expires_at = (
            self._clock() + token.access_expires - TOKEN_EXPIRY_MARGIN
        )
        logger.info(
            f"Aggregator authentication successful (expires in {token.access_expires}s)"
        )

    def _ensure_authenticated(self) -> str:
        if self._token_valid():
            return self._access_token  # type: ignore[return-value]
        with self._token_lock:
            # Another thread may have refreshed while we waited
            if not self._token_valid():
                self.authenticate()
            return self._access_token  # type: ignore[return-value]

    # Request plumbing

    def _request(
        self, method: str, route: str, resource_id: str | None = None, **kwargs: Any
    ) -> Any:
        """Send an authenticated request.

        ``route`` is a path template such as ``/accounts/{id}/balances/``.
        Only the template is ever logged or put in error messages; the
        resource id is substituted into the URL alone.
        """
        token = self._ensure_authenticated()
        headers = {"accept": "application/json", "Authorization": f"Bearer {token}"}
        path = route.format(id=resource_id) if resource_id is not None else route
        try:
            response = self._http.request(
                method, f"{self.base_url}{path}", headers=headers, **kwargs
            )
        except httpx.HTTPError as e:
            logger.error(
                f"Aggregator request {method} {route} failed: {type(e).__name__}"
            )
            raise UpstreamUnavailable(f"Aggregator request failed: {route}") from e

        if response.is_error:
            logger.error(
                f"Aggregator API error on {method} {route}: "
                f"status {response.status_code}"
            )
            raise UpstreamUnavailable(
                f"Aggregator API error: {response.status_code}",
                response.status_code,
            )

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _parse(schema: Any, payload: Any, route: str) -> Any:
        try:
            if isinstance(schema, TypeAdapter):
                return schema.validate_python(payload)
            return schema.model_validate(payload)
        except ValidationError as e:
            logger.error(
                f"Unexpected aggregator payload from {route}: "
                f"{e.error_count()} validation errors"
            )
            raise UpstreamUnavailable(f"Unexpected aggregator payload: {route}") from e

    # Institutions

    def list_institutions(self, country: str) -> list[InstitutionSchema]:
        """List institutions available in a country."""
        route = "/institutions/"
        payload = self._request("GET", route, params={"country": country})
        institutions = self._parse(_institutions_adapter, payload, route)
        logger.info(f"Listed {len(institutions)} institutions for {country}")
        return institutions

    def search_institutions(self, query: str, country: str) -> list[InstitutionSchema]:
        """Case-insensitive search by institution name or id."""
        needle = query.lower()
        return [
            inst
            for inst in self.list_institutions(country)
            if needle in inst.name.lower() or needle in inst.id.lower()
        ]

    # Requisitions

    def create_requisition(
        self, institution_id: str, redirect_url: str, reference: str
    ) -> RequisitionSchema:
        route = "/requisitions/"
        payload = self._request(
            "POST",
            route,
            json={
                "redirect": redirect_url,
                "institution_id": institution_id,
                "reference": reference,
                "user_language": "EN",
            },
        )
        requisition = self._parse(RequisitionSchema, payload, route)
        logger.info(f"Created requisition for institution {institution_id}")
        return requisition

    def get_requisition(self, requisition_id: str) -> RequisitionSchema:
        route = "/requisitions/{id}/"
        requisition = self._parse(
            RequisitionSchema, self._request("GET", route, requisition_id), route
        )
        logger.info(
            f"Retrieved requisition: status {requisition.status}, "
            f"{len(requisition.accounts)} accounts"
        )
        return requisition

    def delete_requisition(self, requisition_id: str) -> None:
        self._request("DELETE", "/requisitions/{id}/", requisition_id)
        logger.info("Deleted requisition")

    # Accounts

    def get_account_details(self, account_id: str) -> AccountDetailsSchema:
        route = "/accounts/{id}/details/"
        payload = self._request("GET", route, account_id)
        account = payload.get("account") if isinstance(payload, dict) else None
        return self._parse(AccountDetailsSchema, account, route)

    def get_account_balances(self, account_id: str) -> list[BalanceSchema]:
        route = "/accounts/{id}/balances/"
        payload = self._request("GET", route, account_id)
        balances = payload.get("balances") if isinstance(payload, dict) else None
        return self._parse(_balances_adapter, balances, route)

    def get_transactions(
        self,
        account_id: str,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> TransactionsResponse:
        """Fetch transactions for an account, optionally bounded by booking date."""
        params: dict[str, str] = {}
        if date_from:
            params["date_from"] = date_from.isoformat()
        if date_to:
            params["date_to"] = date_to.isoformat()

        route = "/accounts/{id}/transactions/"
        payload = self._request("GET", route, account_id, params=params or None)
        response = self._parse(TransactionsResponse, payload, route)
        logger.info(
            f"Retrieved {len(response.transactions.booked)} booked transactions "
            f"({date_from} to {date_to})"
        )
        return response
