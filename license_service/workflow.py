"""
workflow.py - Core Orchestration Logic for License Orders

This module contains the order workflow. It coordinates all license provider
interactions in a strict sequence; every step ends the workflow on failure.

Workflow Overview:
1. Guard the input (company name and country must not be blank)
2. Resolve the company in the requested country
3. Look up the company's entitlements (licensed SKUs and quantities)
4. Reconcile the requested SKUs against the entitlements
5. Fetch all prices concurrently and compute line sums
6. Assemble the submission payload
7. Submit the result and return the provider's raw answer
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

from .clients import LicenseProvider
from .exceptions import DomainError, ExternalApiError
from .models import (
    Company,
    CompanyDetails,
    Contact,
    License,
    OrderedLicenseResult,
    OrderRequest,
    SubmitResultRequest,
    SubmitResultResponse,
)

log = logging.getLogger(__name__)

MAX_LISTED_COMPANIES = 5
MAX_LISTED_SKUS = 10
UNKNOWN_USER = "Unknown User"


@dataclass(frozen=True)
class SkuGroup:
    """Requested lines sharing one SKU (trimmed, case-insensitive)."""
    sku: str
    count: int
    line_count: int


def normalize_key(value) -> str:
    return (value or "").strip().casefold()


def group_requested_skus(request: OrderRequest) -> List[SkuGroup]:
    """
    Merges duplicate SKUs of an order, summing their quantities.

    Groups keep the order in which each SKU first appears, and the SKU spelling
    of its first line (trimmed). Lines with a blank SKU are ignored.
    """
    groups: Dict[str, SkuGroup] = {}
    for item in request.ordered_licenses:
        key = normalize_key(item.sku)
        if not key:
            continue
        existing = groups.get(key)
        if existing is None:
            groups[key] = SkuGroup(sku=item.sku.strip(), count=item.count, line_count=1)
        else:
            groups[key] = SkuGroup(
                sku=existing.sku,
                count=existing.count + item.count,
                line_count=existing.line_count + 1,
            )
    return list(groups.values())


def build_user_name(contact: Contact) -> str:
    """Returns "<name> <surname>" of the contact, or "Unknown User" if both are blank."""
    if contact is None:
        return UNKNOWN_USER
    first_name = (contact.name or "").strip()
    last_name = (contact.surname or "").strip()
    if not first_name and not last_name:
        return UNKNOWN_USER
    return f"{first_name} {last_name}".strip()


def _enumerate(values: List[str], limit: int) -> str:
    listed = ", ".join(values[:limit])
    return listed + ("..." if len(values) > limit else "")


class OrderOrchestrator:
    """
    Processes a license order against the license provider.

    The orchestrator holds no state between calls and never retries; transient
    provider failures are handled inside the provider client.
    """

    def __init__(self, provider: LicenseProvider):
        self.provider = provider

    async def process_order(self, request: OrderRequest) -> SubmitResultResponse:
        """
        Executes the complete order workflow for a single order.

        Cancelling the calling task cancels every outstanding provider call and
        surfaces as asyncio.CancelledError.

        Args:
            request (OrderRequest): The order to process.

        Returns:
            SubmitResultResponse: The provider's submission answer, unmodified.

        Raises:
            DomainError: If the order violates a business rule.
            ExternalApiError: If a provider call fails.
        """
        if request is None or not (request.company_name or "").strip() or not (request.country or "").strip():
            raise DomainError("Company name and country are required.")

        log_prefix = f"[Company: {request.company_name.strip()}]"
        log.info(
            f"{log_prefix} Processing order in country '{request.country}' "
            f"with {len(request.ordered_licenses)} license lines."
        )

        # --- 1. Company ---
        company = await self._resolve_company(request)
        if not (company.company_id or "").strip():
            raise ExternalApiError(
                f"License provider returned company '{company.company_name}' without a CompanyId."
            )
        log.info(f"{log_prefix} Found company: {company.company_id} - {company.company_name}")

        # --- 2. Entitlements ---
        details = await self.provider.get_company_details(company.company_id)
        if not details.licenses:
            raise DomainError(
                f"No licenses found for company '{company.company_name}' (ID: {company.company_id})."
            )

        # --- 3. SKU reconciliation ---
        groups = self._reconcile(request, company, details, log_prefix)

        # --- 4. Prices ---
        ordered_license = await self._price_groups(groups, log_prefix)

        # --- 5. Payload ---
        payload = SubmitResultRequest(
            company_id=(company.company_id or "").strip(),
            company_name=((details.company or "").strip() or (company.company_name or "").strip()),
            user_login=(details.login or "").strip(),
            user_name=build_user_name(details.contact),
            ordered_license=ordered_license,
        )
        if not payload.company_id or not payload.user_login or not payload.ordered_license:
            raise DomainError(
                "Cannot submit order: missing required fields (CompanyId, UserLogin, or OrderedLicense)"
            )

        log.info(
            f"{log_prefix} Submitting order: Company={payload.company_name}, User={payload.user_name}, "
            f"Items={len(payload.ordered_license)}, TotalValue={payload.total}"
        )

        # --- 6. Submission ---
        response = await self.provider.submit_result(payload)
        if not response.is_success:
            raise ExternalApiError(
                f"SubmitResult failed with status {response.status_code}: {response.body}",
                status_code=response.status_code,
                body=response.body,
            )

        log.info(f"{log_prefix} Order processed successfully for company {payload.company_id}")
        return SubmitResultResponse(raw=response.body)

    async def _resolve_company(self, request: OrderRequest) -> Company:
        companies = await self.provider.list_companies(request.country)
        if not companies:
            raise DomainError(f"No companies found in country '{request.country}'.")

        wanted = normalize_key(request.company_name)
        for company in companies:
            if normalize_key(company.company_name) == wanted:
                return company

        names = [company.company_name or "" for company in companies]
        raise DomainError(
            f"Company '{request.company_name}' not found in country '{request.country}'. "
            f"Available companies: {_enumerate(names, MAX_LISTED_COMPANIES)}"
        )

    def _reconcile(self, request: OrderRequest, company: Company, details: CompanyDetails,
                   log_prefix: str) -> List[SkuGroup]:
        entitlements: Dict[str, License] = {}
        for entitlement in details.licenses:
            key = normalize_key(entitlement.sku)
            if key and key not in entitlements:
                entitlements[key] = entitlement

        groups = group_requested_skus(request)

        duplicates = [group for group in groups if group.line_count > 1]
        if duplicates:
            log.warning(
                f"{log_prefix} Duplicate SKUs found in request and consolidated: "
                + ", ".join(f"{group.sku} (x{group.line_count})" for group in duplicates)
            )

        missing = [group.sku for group in groups if normalize_key(group.sku) not in entitlements]
        if missing:
            available = [entitlement.sku.strip() for entitlement in entitlements.values()]
            raise DomainError(
                f"Requested SKUs not found for company '{company.company_name}': {', '.join(missing)}. "
                f"Available SKUs: {_enumerate(available, MAX_LISTED_SKUS)}"
            )

        # The provider enforces entitlement limits; an overage is only reported.
        overages = []
        for group in groups:
            entitled = entitlements[normalize_key(group.sku)].count
            if group.count > entitled:
                overages.append(f"{group.sku} (requested: {group.count}, available: {entitled})")
        if overages:
            log.warning(f"{log_prefix} Requested quantities exceed available licenses: {', '.join(overages)}")

        return groups

    async def _price_groups(self, groups: List[SkuGroup], log_prefix: str) -> List[OrderedLicenseResult]:
        # Waits for every fetch, then reports the first failure in request order.
        results = await asyncio.gather(
            *(self._price_group(group, log_prefix) for group in groups),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def _price_group(self, group: SkuGroup, log_prefix: str) -> OrderedLicenseResult:
        try:
            pricing = await self.provider.get_price(group.sku)
        except Exception as e:
            log.error(f"{log_prefix} Failed to fetch price for SKU {group.sku}: {e}")
            raise ExternalApiError(f"Failed to fetch price for SKU {group.sku}") from e

        price = Decimal(pricing.price)
        if price < 0:
            log.warning(f"{log_prefix} Negative price returned for SKU {group.sku}: {price}")

        line_sum = price * group.count
        log.debug(f"{log_prefix} SKU {group.sku}: Price={price}, Count={group.count}, Sum={line_sum}")

        return OrderedLicenseResult(
            sku=(pricing.sku or group.sku).strip(),
            price=price,
            count=group.count,
            sum=line_sum,
        )
