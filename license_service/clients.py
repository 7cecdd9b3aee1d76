"""
clients.py - License Provider Gateway

This module provides the communication client for the external license provider.
The provider exposes four idempotent operations, each a JSON POST to
`{base_url}{path}?code={function_code}`:

    - GetCompanies        {"country": ...}    -> list of companies
    - GetCompanyDetails   {"CompanyId": ...}  -> login, contact, licenses
    - GetPrice            {"SKU": ...}        -> unit price
    - SubmitResult        SubmitResultRequest -> raw status and body

Read operations answer with a JSON string that itself contains JSON; plain JSON
documents are accepted as well. The client owns wire encoding, timeouts,
retries and circuit breaking; callers see either a value or an ExternalApiError.
"""

import json
import logging
from decimal import Decimal
from typing import List, Protocol

import httpx
import simplejson
from pydantic import TypeAdapter, ValidationError

from .config import LicenseProviderSettings
from .exceptions import ExternalApiError
from .models import Company, CompanyDetails, ProviderResponse, SkuPricing, SubmitResultRequest
from .resilience import CircuitBreaker, is_transient_status, retry_async

log = logging.getLogger(__name__)

_COMPANY_LIST = TypeAdapter(List[Company])


class LicenseProvider(Protocol):
    """The provider operations the order orchestrator depends on."""

    async def list_companies(self, country: str) -> List[Company]: ...

    async def get_company_details(self, company_id: str) -> CompanyDetails: ...

    async def get_price(self, sku: str) -> SkuPricing: ...

    async def submit_result(self, payload: SubmitResultRequest) -> ProviderResponse: ...


def decode_provider_json(text: str):
    """
    Decodes a provider response body, unwrapping one level of string encoding.

    Floats are parsed as Decimal so prices stay exact.

    Raises:
        json.JSONDecodeError: If the body (or the wrapped document) is not JSON.
    """
    data = json.loads(text, parse_float=Decimal)
    if isinstance(data, str):
        data = json.loads(data, parse_float=Decimal)
    return data


class LicenseProviderClient:
    """
    Async client for the license provider REST API.

    Usage:
        async with LicenseProviderClient(settings) as provider:
            companies = await provider.list_companies("Latvia")
    """

    def __init__(self, settings: LicenseProviderSettings, transport: httpx.AsyncBaseTransport = None,
                 retry_base_delay: float = 0.2):
        """
        Initializes the HTTP client with timeout, retry and circuit breaker configuration.

        Args:
            settings (LicenseProviderSettings): Provider URL, paths, codes and limits.
            transport (httpx.AsyncBaseTransport, optional): Custom transport, e.g. for tests.
            retry_base_delay (float): Delay before the first retry in seconds.
        """
        self.settings = settings
        self.client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=httpx.Timeout(settings.timeout_seconds),
            transport=transport,
        )
        self.breaker = CircuitBreaker(settings.circuit_breaker_threshold, settings.circuit_breaker_seconds)
        self._post = retry_async(retries=settings.retry_count, base_delay=retry_base_delay)(self._post_once)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        """Closes the HTTP client session."""
        await self.client.aclose()

    # --- Provider operations ---

    async def list_companies(self, country: str) -> List[Company]:
        """
        Lists the companies registered in a country.

        Args:
            country (str): Country name.

        Returns:
            List[Company]: Possibly empty list of companies.

        Raises:
            ValueError: If country is blank.
            ExternalApiError: On non-success status, transport failure or malformed payload.
        """
        _require(country, "country")
        log.debug(f"Fetching companies for country: {country}")

        data = await self._fetch("get_companies", {"country": country.strip()})
        if data is None:
            companies = []
        else:
            try:
                companies = _COMPANY_LIST.validate_python(data)
            except ValidationError as e:
                log.error(f"Failed to deserialize companies response: {e}")
                raise ExternalApiError("Failed to deserialize API response") from e

        log.info(f"Retrieved {len(companies)} companies for country: {country}")
        return companies

    async def get_company_details(self, company_id: str) -> CompanyDetails:
        """
        Fetches login, contact and licenses of a company.

        Raises:
            ValueError: If company_id is blank.
            ExternalApiError: On failure or when the provider returns an empty body.
        """
        _require(company_id, "company_id")
        log.debug(f"Fetching company details for: {company_id}")

        data = await self._fetch("get_company_details", {"CompanyId": company_id.strip()})
        if data is None:
            raise ExternalApiError(f"Received null response for company details: {company_id}")
        details = _validate(CompanyDetails, data)

        if not (details.company or "").strip():
            log.warning(f"Company details missing 'Company' field for ID: {company_id}")
        if not (details.login or "").strip():
            log.warning(f"Company details missing 'Login' field for ID: {company_id}")

        log.debug(f"Retrieved company details: {details.company}, Licenses: {len(details.licenses or [])}")
        return details

    async def get_price(self, sku: str) -> SkuPricing:
        """
        Fetches the unit price of a SKU.

        A response without a SKU falls back to the requested one.

        Raises:
            ValueError: If sku is blank.
            ExternalApiError: On failure or when the provider returns an empty body.
        """
        _require(sku, "sku")
        log.debug(f"Fetching price for SKU: {sku}")

        data = await self._fetch("get_price", {"SKU": sku.strip()})
        if data is None:
            raise ExternalApiError(f"Received null response for price of SKU: {sku}")
        pricing = _validate(SkuPricing, data)

        if not (pricing.sku or "").strip():
            log.warning(f"Price response missing SKU field for requested SKU: {sku}")
            pricing = pricing.model_copy(update={"sku": sku})

        log.debug(f"Retrieved price for SKU {pricing.sku}: {pricing.price}")
        return pricing

    async def submit_result(self, payload: SubmitResultRequest) -> ProviderResponse:
        """
        Posts the aggregated order result.

        The answer is not decoded; the caller decides what the status means.

        Raises:
            ValueError: If payload is missing.
            ExternalApiError: If the request could not be delivered.
        """
        if payload is None:
            raise ValueError("payload is required")
        log.debug(f"Submitting result for company: {payload.company_id}, Items: {len(payload.ordered_license)}")

        response = await self._send("submit_result", payload.model_dump(by_alias=True))

        log.debug(f"Submit result response: {response.status_code}")
        return ProviderResponse(status_code=response.status_code, body=response.text)

    # --- Transport ---

    async def _post_once(self, path: str, code: str, body: dict) -> httpx.Response:
        self.breaker.before_call()
        # Decimal amounts go out as exact JSON numbers.
        content = simplejson.dumps(body, use_decimal=True)
        try:
            response = await self.client.post(
                path, params={"code": code}, content=content, headers={"Content-Type": "application/json"}
            )
        except httpx.TransportError as e:
            self.breaker.record_failure(f"{type(e).__name__}: {e}")
            raise
        except BaseException:
            self.breaker.release_trial()
            raise
        if is_transient_status(response.status_code):
            self.breaker.record_failure(f"HTTP {response.status_code}")
        else:
            self.breaker.record_success()
        return response

    async def _send(self, operation: str, body: dict) -> httpx.Response:
        path = getattr(self.settings, f"{operation}_path")
        code = getattr(self.settings, f"{operation}_code")
        try:
            return await self._post(path, code, body)
        except httpx.HTTPError as e:
            # The function code lives in the query string; only the path is logged.
            log.error(f"API request to {path} failed: {type(e).__name__}: {e}")
            raise ExternalApiError(f"API request to {path} failed: {type(e).__name__}") from e

    async def _fetch(self, operation: str, body: dict):
        response = await self._send(operation, body)
        content = response.text

        if not response.is_success:
            log.error(
                f"API request failed. URL: {response.request.url.path}, "
                f"Status: {response.status_code}, Response: {content}"
            )
            raise ExternalApiError(
                f"API call failed with status {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
                body=content,
            )

        if not content.strip():
            log.warning("Received empty response from API")
            return None

        try:
            return decode_provider_json(content)
        except json.JSONDecodeError as e:
            preview = content if len(content) <= 500 else content[:500] + "..."
            log.error(f"Failed to deserialize response. Content: {preview}")
            raise ExternalApiError("Failed to deserialize API response") from e


def _require(value: str, name: str):
    if value is None or not str(value).strip():
        raise ValueError(f"{name} cannot be null or empty")


def _validate(model, data):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        log.error(f"Failed to deserialize {model.__name__} response: {e}")
        raise ExternalApiError("Failed to deserialize API response") from e
