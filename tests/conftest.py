"""
Shared fixtures: an in-memory license provider and provider settings.
"""
import asyncio
from decimal import Decimal

import pytest

from license_service.config import LicenseProviderSettings
from license_service.models import (
    Company,
    CompanyDetails,
    Contact,
    License,
    ProviderResponse,
    SkuPricing,
)


class FakeLicenseProvider:
    """Records every call and answers from dictionaries."""

    def __init__(self, companies=None, details=None, prices=None, submit_status=200,
                 submit_body='{"status":"success"}', price_delay=0.0, price_errors=None,
                 price_delays=None):
        self.companies = companies or {}
        self.details = details or {}
        self.prices = {sku.upper(): Decimal(str(price)) for sku, price in (prices or {}).items()}
        self.submit_status = submit_status
        self.submit_body = submit_body
        self.price_delay = price_delay
        self.price_errors = price_errors or {}
        self.price_delays = {sku.upper(): delay for sku, delay in (price_delays or {}).items()}
        self.calls = []
        self.submitted = []
        self.cancelled = []

    async def list_companies(self, country):
        self.calls.append(("list_companies", country))
        return list(self.companies.get(country, []))

    async def get_company_details(self, company_id):
        self.calls.append(("get_company_details", company_id))
        return self.details[company_id]

    async def get_price(self, sku):
        self.calls.append(("get_price", sku))
        try:
            delay = self.price_delays.get(sku.upper(), self.price_delay)
            if delay:
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.cancelled.append(sku)
            raise
        error = self.price_errors.get(sku.upper())
        if error is not None:
            raise error
        return SkuPricing(sku=sku.upper(), price=self.prices[sku.upper()])

    async def submit_result(self, payload):
        self.calls.append(("submit_result", payload.company_id))
        self.submitted.append(payload)
        return ProviderResponse(status_code=self.submit_status, body=self.submit_body)

    def count(self, operation):
        return sum(1 for name, _ in self.calls if name == operation)


def lido_details(licenses=None, contact=None, login="lido_user", company="LIDO"):
    return CompanyDetails(
        company=company,
        login=login,
        contact=contact if contact is not None else Contact(name="John", surname="Doe"),
        licenses=licenses if licenses is not None else [
            License(sku="TPLV7893-85", count=10),
            License(sku="TPLV7884-85", count=5),
        ],
    )


@pytest.fixture
def make_provider():
    """Builds a provider knowing LIDO in Latvia; keyword arguments override the defaults."""
    def _make(**overrides):
        options = {
            "companies": {"Latvia": [Company(company_id="LV001", company_name="LIDO")]},
            "details": {"LV001": lido_details()},
            "prices": {"TPLV7893-85": "100.00", "TPLV7884-85": "50.00"},
        }
        options.update(overrides)
        return FakeLicenseProvider(**options)
    return _make


@pytest.fixture
def settings():
    return LicenseProviderSettings(
        base_url="https://api.example.com",
        get_companies_path="/companies",
        get_company_details_path="/company-details",
        get_price_path="/price",
        submit_result_path="/submit",
        get_companies_code="code123",
        get_company_details_code="code456",
        get_price_code="code789",
        submit_result_code="code000",
        retry_count=0,
    )
