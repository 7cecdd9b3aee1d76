"""
models.py - Data Models for License Order Processing

This module defines the data structures exchanged with API callers and with the
external license provider. It uses Pydantic models to ensure type safety and
automatic validation of incoming data.

Models:
    - OrderLicenseItem / OrderRequest: The order as seen by the orchestrator.
    - OrderRequestBody: The stricter HTTP request payload accepted by the API.
    - Company, CompanyDetails, Contact, Address, License, SkuPricing: Provider payloads.
    - OrderedLicenseResult / SubmitResultRequest: The result submitted back to the provider.
    - SubmitResultResponse / ProviderResponse: Raw provider answers.

Money values are `decimal.Decimal` throughout so that line sums stay exact.
"""

from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Kept as Decimal when dumped; the provider client writes it as an exact JSON number.
Money = Annotated[Decimal, Field(allow_inf_nan=False)]

SKU_PATTERN = r"^[A-Z0-9\-]+$"


class ProviderModel(BaseModel):
    """
    Base class for payloads exchanged with the license provider.

    The provider is inconsistent about key casing (`CompanyId`, `companyId`, ...),
    so incoming keys are matched case-insensitively against field names and aliases.
    Outgoing payloads use the PascalCase aliases.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _match_keys_case_insensitively(cls, data):
        if not isinstance(data, dict):
            return data
        lookup = {}
        for name, field in cls.model_fields.items():
            target = field.alias or name
            lookup[name.replace("_", "").lower()] = target
            if field.alias:
                lookup[field.alias.lower()] = target
        return {lookup.get(str(key).replace("_", "").lower(), key): value for key, value in data.items()}


# --- Order (caller side) ---

class OrderLicenseItem(BaseModel):
    """
    Represents a single requested license line.

    Attributes:
        sku (str): The SKU to order. Matched case-insensitively and trimmed.
        count (int): Requested quantity. Must be greater than zero.
    """
    model_config = ConfigDict(frozen=True)

    sku: str
    count: int = Field(..., gt=0)


class OrderRequest(BaseModel):
    """
    Represents a license order handed to the orchestrator.

    Attributes:
        country (str): Country used to look up the company.
        company_name (str): Company display name, matched case-insensitively.
        ordered_licenses (List[OrderLicenseItem]): Requested lines in caller order.
    """
    model_config = ConfigDict(frozen=True)

    country: str
    company_name: str
    ordered_licenses: List[OrderLicenseItem] = Field(default_factory=list)


class OrderLicenseLine(BaseModel):
    """A license line as accepted over HTTP: uppercase SKU, 1..10000 units."""
    sku: str = Field(..., min_length=1, pattern=SKU_PATTERN)
    count: int = Field(..., gt=0, le=10000)


class OrderRequestBody(BaseModel):
    """
    HTTP payload of `POST /api/submit-licenses`.

    Shape validation happens here, before the orchestrator ever sees the order.
    """
    country: str = Field(..., min_length=1, max_length=100)
    company: str = Field(..., min_length=1, max_length=200)
    licenses: List[OrderLicenseLine] = Field(..., min_length=1)

    def to_order(self) -> OrderRequest:
        return OrderRequest(
            country=self.country,
            company_name=self.company,
            ordered_licenses=[OrderLicenseItem(sku=line.sku, count=line.count) for line in self.licenses],
        )


# --- Provider payloads ---

class Company(ProviderModel):
    company_id: Optional[str] = Field(None, alias="CompanyId")
    company_name: Optional[str] = Field(None, alias="CompanyName")


class Address(ProviderModel):
    country: Optional[str] = Field(None, alias="Country")
    city: Optional[str] = Field(None, alias="City")
    street: Optional[str] = Field(None, alias="Street")
    house: Optional[str] = Field(None, alias="House")
    zip: Optional[str] = Field(None, alias="Zip")


class Contact(ProviderModel):
    name: Optional[str] = Field(None, alias="Name")
    surname: Optional[str] = Field(None, alias="Surname")
    address: Optional[Address] = Field(None, alias="Address")


class License(ProviderModel):
    """An entitled SKU and the quantity the company may order."""
    sku: Optional[str] = Field(None, alias="SKU")
    count: int = Field(0, alias="Count")


class CompanyDetails(ProviderModel):
    """
    Company details as returned by the provider.

    Attributes:
        company (str): Display name of the company.
        login (str): Login of the ordering user.
        contact (Contact): Contact person, may be absent.
        licenses (List[License]): The company's entitlements.
    """
    company: Optional[str] = Field(None, alias="Company")
    login: Optional[str] = Field(None, alias="Login")
    contact: Optional[Contact] = Field(None, alias="Contact")
    licenses: Optional[List[License]] = Field(default_factory=list, alias="Licenses")


class SkuPricing(ProviderModel):
    """Unit price of a SKU. Negative prices (credits, discounts) are allowed."""
    sku: Optional[str] = Field(None, alias="SKU")
    price: Money = Field(Decimal("0"), alias="Price")


# --- Submission ---

class OrderedLicenseResult(ProviderModel):
    """
    A priced order line.

    Attributes:
        sku (str): SKU as returned by the price lookup.
        price (Decimal): Unit price.
        count (int): Quantity priced, after duplicate lines were merged.
        sum (Decimal): price * count, exact.
    """
    sku: str = Field(..., alias="SKU")
    price: Money = Field(..., alias="Price")
    count: int = Field(..., alias="Count")
    sum: Money = Field(..., alias="Sum")


class SubmitResultRequest(ProviderModel):
    """The aggregated result posted to the provider's SubmitResult endpoint."""
    company_id: str = Field(..., alias="CompanyId")
    company_name: str = Field(..., alias="CompanyName")
    user_login: str = Field(..., alias="UserLogin")
    user_name: str = Field(..., alias="UserName")
    ordered_license: List[OrderedLicenseResult] = Field(default_factory=list, alias="OrderedLicense")

    @property
    def total(self) -> Decimal:
        return sum((line.sum for line in self.ordered_license), Decimal("0"))


class ProviderResponse(BaseModel):
    """Raw status and body of a provider call. No decoding is applied."""
    status_code: int
    body: str = ""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class SubmitResultResponse(BaseModel):
    """The provider's submission answer, returned to the caller verbatim."""
    raw: str
