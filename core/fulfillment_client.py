"""
Print partner REST client.

Talks to a Lulu-style print-on-demand API:

    POST {api}/auth/realms/glasstree/protocol/openid-connect/token
    POST {api}/print-job-cost-calculations/
    POST {api}/print-jobs/
    GET  {api}/print-jobs/{id}/

The client is driven by an explicit FulfillmentConfig value (environment,
credentials, base URL, timeout). Nothing is read from the process
environment here; see FulfillmentConfig.from_settings.

Every result and every raised error (ValidationError included) carries the
environment (sandbox or production) so operators can tell which account produced it.

Thread Safety:
    A FulfillmentClient holds no mutable state besides its requests.Session.
    Access tokens are not cached; each operation authenticates once.

Usage:
    config = FulfillmentConfig.from_settings(app.config)
    client = FulfillmentClient(config)
    options = client.get_shipping_rates(address, product_code)
    job = client.submit_job([line_item], address, "MAIL", "parent@example.com")
    job = client.get_job_status(job.id)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

import requests

from .exceptions import (
    AuthError,
    ConfigurationError,
    FulfillmentError,
    NoShippingOptionsError,
    SubmissionError,
    ValidationError,
)
from models.book_type import FIXED_PAGE_COUNT
from models.fulfillment import FulfillmentJob, PricingQuote, PrintLineItem, ShippingOption
from models.order import ShippingAddress
from logging_config import get_logger


ENVIRONMENTS = ("sandbox", "production")

DEFAULT_API_URLS = {
    "sandbox": "https://api.sandbox.lulu.com",
    "production": "https://api.lulu.com",
}

SHIPPING_LEVELS: Tuple[str, ...] = ("MAIL", "GROUND", "EXPEDITED", "EXPRESS")

SHIPPING_LEVEL_NAMES = {
    "MAIL": "Standard Mail",
    "GROUND": "Ground",
    "EXPEDITED": "Expedited",
    "EXPRESS": "Express",
}

DELIVERY_ESTIMATES = {
    "MAIL": "7-14 business days",
    "GROUND": "5-7 business days",
    "EXPEDITED": "3-5 business days",
    "EXPRESS": "1-3 business days",
}

TOKEN_PATH = "/auth/realms/glasstree/protocol/openid-connect/token"

# Reference address used for product pricing without a customer address
PRICING_REFERENCE_ADDRESS = ShippingAddress(
    name="Price Check",
    street1="123 Main St",
    city="New York",
    state_code="NY",
    postal_code="10001",
    country_code="US",
)


@dataclass(frozen=True)
class FulfillmentConfig:
    """Everything the client needs to reach one partner environment."""

    environment: str
    client_key: str
    client_secret: str
    api_url: str
    timeout_seconds: float = 30.0
    shipping_levels: Tuple[str, ...] = SHIPPING_LEVELS
    rate_page_count: int = FIXED_PAGE_COUNT
    """Page count quoted for shipping rates and pricing."""

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "FulfillmentConfig":
        """
        Build from a settings mapping (Flask app.config or a plain dict).

        Reads LULU_ENVIRONMENT, then LULU_<ENV>_CLIENT_KEY,
        LULU_<ENV>_CLIENT_SECRET and LULU_<ENV>_API_URL for that environment.

        Raises:
            ConfigurationError: Unknown environment or missing credentials
        """
        environment = str(settings.get("LULU_ENVIRONMENT") or "sandbox").strip().lower()
        if environment not in ENVIRONMENTS:
            raise ConfigurationError(
                f"Unknown print partner environment: {environment}",
                setting="LULU_ENVIRONMENT",
            )

        prefix = f"LULU_{environment.upper()}"
        client_key = settings.get(f"{prefix}_CLIENT_KEY") or ""
        client_secret = settings.get(f"{prefix}_CLIENT_SECRET") or ""
        if not client_key or not client_secret:
            raise ConfigurationError(
                f"Print partner credentials missing for {environment}",
                setting=f"{prefix}_CLIENT_KEY/{prefix}_CLIENT_SECRET",
            )

        return cls(
            environment=environment,
            client_key=client_key,
            client_secret=client_secret,
            api_url=(settings.get(f"{prefix}_API_URL") or DEFAULT_API_URLS[environment]).rstrip("/"),
            timeout_seconds=float(settings.get("FULFILLMENT_TIMEOUT_SECONDS") or 30),
            rate_page_count=int(settings.get("BOOK_PAGE_COUNT") or FIXED_PAGE_COUNT),
        )


class FulfillmentClient:
    """
    Client for the print partner API.

    Provides:
    - get_access_token(): client-credentials token exchange
    - get_shipping_rates(): every shipping level, queried concurrently
    - get_product_pricing(): one cost calculation at a reference address
    - submit_job(): create a print job
    - get_job_status(): fetch a print job
    """

    def __init__(
        self,
        config: FulfillmentConfig,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._config = config
        self._session = session or requests.Session()
        self._logger = logger or get_logger(__name__)

    @property
    def environment(self) -> str:
        return self._config.environment

    @property
    def config(self) -> FulfillmentConfig:
        return self._config

    # =========================================================================
    # AUTH
    # =========================================================================

    def get_access_token(self) -> str:
        """
        Exchange client credentials for a bearer token.

        Raises:
            AuthError: Transport error, non-2xx response or no token in body
        """
        url = f"{self._config.api_url}{TOKEN_PATH}"
        try:
            response = self._session.post(
                url,
                data={"grant_type": "client_credentials"},
                auth=(self._config.client_key, self._config.client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self._config.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise AuthError(f"Token request failed: {exc}", self.environment)

        if not response.ok:
            self._logger.error(f"[{self.environment}] Token request rejected: {response.status_code}")
            raise AuthError(
                "Print partner rejected client credentials",
                self.environment,
                status_code=response.status_code,
                response_text=response.text,
            )

        token = self._json(response).get("access_token")
        if not token:
            raise AuthError("Token response had no access_token", self.environment,
                            status_code=response.status_code)
        return token

    # =========================================================================
    # PRICING
    # =========================================================================

    def get_shipping_rates(
        self,
        address: ShippingAddress,
        product_code: str,
        quantity: int = 1,
    ) -> List[ShippingOption]:
        """
        Quote every configured shipping level for an address.

        Levels are queried concurrently after one token exchange. A rejected
        level is skipped; the result keeps the configured level order.

        Raises:
            ValidationError: Incomplete address (before any network call)
            AuthError: Token exchange failed
            NoShippingOptionsError: Every level was rejected
        """
        self._require_address(address)
        token = self.get_access_token()
        levels = list(self._config.shipping_levels)

        with ThreadPoolExecutor(max_workers=len(levels), thread_name_prefix="rates") as pool:
            outcomes = list(pool.map(
                lambda level: self._quote_level(token, address, product_code, quantity, level),
                levels,
            ))

        options = [option for option in outcomes if option is not None]
        if not options:
            raise NoShippingOptionsError(self.environment, levels)

        self._logger.info(
            f"[{self.environment}] {len(options)}/{len(levels)} shipping levels available"
        )
        return options

    def _quote_level(
        self,
        token: str,
        address: ShippingAddress,
        product_code: str,
        quantity: int,
        level: str,
    ) -> Optional[ShippingOption]:
        try:
            data = self._cost_calculation(token, address, product_code, quantity, level)
        except FulfillmentError as exc:
            self._logger.warning(f"[{self.environment}] {level} shipping not available: {exc.message}")
            return None

        shipping = data.get("shipping_cost") or {}
        raw_cost = (
            shipping.get("total_cost_excl_tax")
            or shipping.get("cost_excl_tax")
            or data.get("total_shipping_cost")
            or "0"
        )
        return ShippingOption(
            level_id=level,
            display_name=SHIPPING_LEVEL_NAMES.get(level, level),
            cost=_to_float(raw_cost),
            currency=data.get("currency") or "USD",
            delivery_estimate=DELIVERY_ESTIMATES.get(level, "Varies"),
            environment=self.environment,
        )

    def get_product_pricing(
        self,
        product_code: str,
        quantity: int = 1,
        shipping_level: str = "MAIL",
    ) -> PricingQuote:
        """
        Partner cost for a product shipped to a reference address.

        Raises:
            AuthError: Token exchange failed
            FulfillmentError: Cost calculation rejected
        """
        token = self.get_access_token()
        data = self._cost_calculation(token, PRICING_REFERENCE_ADDRESS, product_code,
                                      quantity, shipping_level)

        line_items = data.get("line_item_costs") or data.get("line_items") or [{}]
        line = line_items[0] or {}
        shipping = data.get("shipping_cost") or {}
        return PricingQuote(
            product_code=product_code,
            quantity=quantity,
            unit_cost=_to_float(line.get("cost_excl_tax") or line.get("total_cost_excl_tax")),
            shipping_cost=_to_float(shipping.get("total_cost_excl_tax")),
            total_cost=_to_float(data.get("total_cost_excl_tax")),
            currency=line.get("currency") or data.get("currency") or "USD",
            environment=self.environment,
        )

    def _cost_calculation(
        self,
        token: str,
        address: ShippingAddress,
        product_code: str,
        quantity: int,
        level: str,
    ) -> Dict[str, Any]:
        body = {
            "line_items": [{
                "page_count": self._config.rate_page_count,
                "pod_package_id": product_code,
                "quantity": quantity,
            }],
            "shipping_address": address.to_partner_dict(),
            "shipping_level": level,
        }
        response = self._request("POST", "/print-job-cost-calculations/", token, json_body=body)
        if not response.ok:
            raise FulfillmentError(
                f"Cost calculation rejected for {level}",
                self.environment,
                status_code=response.status_code,
                response_text=response.text,
            )
        return self._json(response)

    # =========================================================================
    # PRINT JOBS
    # =========================================================================

    def submit_job(
        self,
        line_items: Sequence[PrintLineItem],
        shipping_address: Optional[ShippingAddress],
        shipping_level: str,
        contact_email: str,
    ) -> FulfillmentJob:
        """
        Create a print job.

        Preconditions are checked before any network call: every document
        URL resolves (http/https), the address is complete and a contact
        email is present.

        Returns:
            The created job as the partner reports it

        Raises:
            ValidationError: A precondition failed
            AuthError: Token exchange failed
            SubmissionError: Partner rejected the job or the call failed
        """
        if not line_items:
            raise self._invalid("Print job needs at least one line item", "line_items")
        for item in line_items:
            for name, url in (("cover_url", item.cover_url), ("interior_url", item.interior_url)):
                if not _is_http_url(url):
                    raise self._invalid(f"Document URL is not resolvable: {url!r}", name,
                                        external_id=item.external_id)
        self._require_address(shipping_address)
        if not (contact_email or "").strip():
            raise self._invalid("Contact email is required", "contact_email")

        token = self.get_access_token()
        body = {
            "line_items": [item.to_partner_dict() for item in line_items],
            "shipping_address": shipping_address.to_partner_dict(),
            "shipping_option_level": shipping_level or "MAIL",
            "contact_email": contact_email,
        }

        try:
            response = self._request("POST", "/print-jobs/", token, json_body=body)
        except FulfillmentError as exc:
            raise SubmissionError(exc.message, self.environment)

        if not response.ok:
            self._logger.error(
                f"[{self.environment}] Print job rejected: {response.status_code} {response.text[:200]}"
            )
            raise SubmissionError(
                "Print partner rejected the print job",
                self.environment,
                status_code=response.status_code,
                response_text=response.text,
            )

        job = FulfillmentJob.from_partner_dict(self._json(response), self.environment)
        if not job.id:
            raise SubmissionError("Print job response had no id", self.environment,
                                  status_code=response.status_code, response_text=response.text)

        self._logger.info(f"[{self.environment}] Print job created: {job.id}")
        return job

    def get_job_status(self, job_id: str) -> FulfillmentJob:
        """
        Fetch a print job.

        Raises:
            AuthError: Token exchange failed
            FulfillmentError: Lookup failed
        """
        token = self.get_access_token()
        response = self._request("GET", f"/print-jobs/{job_id}/", token)
        if not response.ok:
            raise FulfillmentError(
                f"Print job lookup failed for {job_id}",
                self.environment,
                status_code=response.status_code,
                response_text=response.text,
            )
        return FulfillmentJob.from_partner_dict(self._json(response), self.environment)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        token: str,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        url = f"{self._config.api_url}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
        }
        try:
            return self._session.request(
                method,
                url,
                json=json_body,
                headers=headers,
                timeout=self._config.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise FulfillmentError(f"{method} {path} failed: {exc}", self.environment)

    def _json(self, response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            raise FulfillmentError("Print partner returned invalid JSON", self.environment,
                                   status_code=response.status_code, response_text=response.text)
        return data if isinstance(data, dict) else {}

    def _invalid(self, message: str, field: str, **details: Any) -> ValidationError:
        details["environment"] = self.environment
        return ValidationError(message, field=field, details=details)

    def _require_address(self, address: Optional[ShippingAddress]) -> None:
        if address is None:
            raise self._invalid("Shipping address is required", "shipping_address")
        missing = address.missing_fields()
        if missing:
            raise self._invalid(f"Shipping address incomplete: {', '.join(missing)}",
                                "shipping_address", missing=missing)

    def close(self) -> None:
        self._session.close()


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
