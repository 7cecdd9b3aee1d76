"""
config.py - Settings for the License Provider Connection

Settings are read from environment variables (optionally from a `.env` file).
Every provider endpoint is addressed as `{base_url}{path}?code={function_code}`.

Environment variables:
    LICENSE_PROVIDER_BASE_URL, LICENSE_PROVIDER_<OPERATION>_PATH,
    LICENSE_PROVIDER_<OPERATION>_CODE (OPERATION: GET_COMPANIES, GET_COMPANY_DETAILS,
    GET_PRICE, SUBMIT_RESULT), LICENSE_PROVIDER_TIMEOUT_SECONDS,
    LICENSE_PROVIDER_RETRY_COUNT, LICENSE_PROVIDER_CIRCUIT_BREAKER_THRESHOLD,
    LICENSE_PROVIDER_CIRCUIT_BREAKER_SECONDS, ORDER_TIMEOUT_SECONDS
"""

import os
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel

from .exceptions import ConfigurationError

ENV_PREFIX = "LICENSE_PROVIDER_"

OPERATIONS = ("get_companies", "get_company_details", "get_price", "submit_result")


class LicenseProviderSettings(BaseModel):
    """
    Connection settings for the license provider.

    Attributes:
        base_url (str): Absolute http(s) URL of the provider API.
        *_path (str): Endpoint paths, each starting with '/'.
        *_code (str): Function keys sent as the `code` query parameter.
        timeout_seconds (float): Per-request timeout.
        retry_count (int): Retries for transient failures (0 disables retrying).
        circuit_breaker_threshold (int): Consecutive failures before the circuit opens.
        circuit_breaker_seconds (float): How long the circuit stays open.
        order_timeout_seconds (float): Upper bound for processing one order.
    """
    base_url: str = "http://localhost:8003"
    get_companies_path: str = "/api/GetCompanies"
    get_company_details_path: str = "/api/GetCompanyDetails"
    get_price_path: str = "/api/GetPrice"
    submit_result_path: str = "/api/SubmitResult"
    get_companies_code: str = ""
    get_company_details_code: str = ""
    get_price_code: str = ""
    submit_result_code: str = ""
    timeout_seconds: float = 10
    retry_count: int = 3
    circuit_breaker_threshold: int = 5
    circuit_breaker_seconds: float = 30
    order_timeout_seconds: float = 300

    def problems(self) -> list:
        """Returns every configuration problem found, empty when the settings are usable."""
        failures = []

        parsed = urlparse(self.base_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            failures.append(f"LicenseProvider:BaseUrl '{self.base_url}' is not a valid absolute URL")

        for operation in OPERATIONS:
            path = getattr(self, f"{operation}_path")
            if not path or not path.strip():
                failures.append(f"LicenseProvider:{operation}_path cannot be empty")
            elif not path.startswith("/"):
                failures.append(f"LicenseProvider:{operation}_path must start with '/', but was '{path}'")

            code = getattr(self, f"{operation}_code")
            if not code or not code.strip():
                failures.append(f"LicenseProvider:{operation}_code cannot be empty")
            elif len(code) < 3:
                failures.append(f"LicenseProvider:{operation}_code must be at least 3 characters long")

        if not 1 <= self.timeout_seconds <= 300:
            failures.append(
                f"LicenseProvider:timeout_seconds must be between 1 and 300 seconds, but was {self.timeout_seconds}"
            )
        if not 0 <= self.retry_count <= 10:
            failures.append(f"LicenseProvider:retry_count must be between 0 and 10, but was {self.retry_count}")
        if self.circuit_breaker_threshold < 1:
            failures.append("LicenseProvider:circuit_breaker_threshold must be at least 1")

        codes = [getattr(self, f"{operation}_code") for operation in OPERATIONS]
        for code in sorted({c for c in codes if c and codes.count(c) > 1}):
            failures.append(f"LicenseProvider: Duplicate code '{code}' found. All codes must be unique.")

        return failures


def load_settings(environ=None) -> LicenseProviderSettings:
    """
    Builds the provider settings from the environment and validates them.

    Args:
        environ (Mapping, optional): Source of variables. Defaults to os.environ
            after loading a `.env` file if one exists.

    Returns:
        LicenseProviderSettings: Validated settings.

    Raises:
        ConfigurationError: If any setting is missing or invalid.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    values = {}
    for field in LicenseProviderSettings.model_fields:
        key = "ORDER_TIMEOUT_SECONDS" if field == "order_timeout_seconds" else ENV_PREFIX + field.upper()
        if environ.get(key) not in (None, ""):
            values[field] = environ[key]

    try:
        settings = LicenseProviderSettings(**values)
    except ValueError as e:
        raise ConfigurationError([str(e)]) from e

    failures = settings.problems()
    if failures:
        raise ConfigurationError(failures)
    return settings
