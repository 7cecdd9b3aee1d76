"""
Unit tests for OrderOrchestrator.
"""
import asyncio
import logging
import time
from decimal import Decimal

import pytest

from conftest import lido_details
from license_service.exceptions import DomainError, ExternalApiError
from license_service.models import Company, Contact, License, OrderLicenseItem, OrderRequest
from license_service.workflow import OrderOrchestrator, build_user_name, group_requested_skus


def _order(*lines, country="Latvia", company="LIDO"):
    return OrderRequest(
        country=country,
        company_name=company,
        ordered_licenses=[OrderLicenseItem(sku=sku, count=count) for sku, count in lines],
    )


# --- Happy path ---

@pytest.mark.asyncio
async def test_valid_request_calculates_correct_totals(make_provider):
    provider = make_provider()
    orchestrator = OrderOrchestrator(provider)

    result = await orchestrator.process_order(_order(("TPLV7893-85", 10), ("TPLV7884-85", 5)))

    assert result.raw == '{"status":"success"}'
    assert provider.count("submit_result") == 1
    payload = provider.submitted[0]
    assert payload.company_id == "LV001"
    assert payload.company_name == "LIDO"
    assert payload.user_login == "lido_user"
    assert payload.user_name == "John Doe"
    assert [line.sku for line in payload.ordered_license] == ["TPLV7893-85", "TPLV7884-85"]
    assert payload.ordered_license[0].sum == Decimal("1000.00")
    assert payload.ordered_license[1].sum == Decimal("250.00")


@pytest.mark.asyncio
async def test_raw_provider_body_is_returned_verbatim(make_provider):
    provider = make_provider(submit_body='  {"ok": true, "id": 7}\n')

    result = await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1)))

    assert result.raw == '  {"ok": true, "id": 7}\n'


@pytest.mark.asyncio
async def test_large_license_count_sum_is_exact(make_provider):
    provider = make_provider(
        details={"LV001": lido_details(licenses=[License(sku="TPLV7893-85", count=999999)])},
        prices={"TPLV7893-85": "1.50"},
    )

    await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 999999)))

    assert provider.submitted[0].ordered_license[0].sum == Decimal("1499998.50")


@pytest.mark.asyncio
async def test_sum_is_exact_decimal_arithmetic(make_provider):
    provider = make_provider(prices={"TPLV7893-85": "0.10", "TPLV7884-85": "0.20"})

    await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 3), ("TPLV7884-85", 3)))

    lines = provider.submitted[0].ordered_license
    assert lines[0].sum == Decimal("0.30")
    assert lines[1].sum == Decimal("0.60")
    for line in lines:
        assert line.sum == line.price * line.count


@pytest.mark.asyncio
async def test_many_skus_fetch_one_price_each(make_provider):
    skus = [f"SKU-{i}" for i in range(1, 21)]
    provider = make_provider(
        details={"LV001": lido_details(licenses=[License(sku=sku, count=5) for sku in skus])},
        prices={sku: "100" for sku in skus},
    )

    await OrderOrchestrator(provider).process_order(_order(*[(sku, 1) for sku in skus]))

    assert provider.count("get_price") == 20
    assert [line.sku for line in provider.submitted[0].ordered_license] == skus


# --- Company resolution ---

@pytest.mark.asyncio
async def test_no_companies_in_country_names_country(make_provider):
    provider = make_provider(companies={})

    with pytest.raises(DomainError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1), country="UnknownCountry"))

    assert "No companies found in country 'UnknownCountry'" in str(exc.value)
    assert provider.count("get_company_details") == 0


@pytest.mark.asyncio
async def test_company_without_id_is_an_external_failure(make_provider):
    provider = make_provider(companies={"Latvia": [Company(company_name="LIDO")]})

    with pytest.raises(ExternalApiError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1)))

    assert "without a CompanyId" in str(exc.value)
    assert provider.count("get_company_details") == 0


@pytest.mark.asyncio
async def test_company_not_found_lists_available_companies(make_provider):
    provider = make_provider(companies={"Latvia": [
        Company(company_id="LV001", company_name="LIDO"),
        Company(company_id="LV002", company_name="ABC Corp"),
        Company(company_id="LV003", company_name="XYZ Ltd"),
    ]})

    with pytest.raises(DomainError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1), company="NonExistent"))

    message = str(exc.value)
    assert "Company 'NonExistent' not found" in message
    assert "Available companies: LIDO, ABC Corp, XYZ Ltd" in message
    assert not message.endswith("...")


@pytest.mark.asyncio
async def test_company_not_found_lists_at_most_five_companies(make_provider):
    companies = [Company(company_id=f"LV{i}", company_name=f"Company {i}") for i in range(1, 8)]
    provider = make_provider(companies={"Latvia": companies})

    with pytest.raises(DomainError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1), company="Nope"))

    message = str(exc.value)
    assert "Company 1, Company 2, Company 3, Company 4, Company 5..." in message
    assert "Company 6" not in message


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["lido", "  LIDO  ", "Lido"])
async def test_company_name_is_case_insensitive_and_trimmed(make_provider, name):
    provider = make_provider()

    await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1), company=name))

    assert ("get_company_details", "LV001") in provider.calls


@pytest.mark.asyncio
async def test_first_matching_company_wins(make_provider):
    provider = make_provider(companies={"Latvia": [
        Company(company_id="LV001", company_name="LIDO"),
        Company(company_id="LV009", company_name="lido"),
    ]})

    await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1)))

    assert provider.submitted[0].company_id == "LV001"


@pytest.mark.asyncio
@pytest.mark.parametrize("country, company", [("", "LIDO"), ("Latvia", "   "), ("  ", "LIDO")])
async def test_blank_input_fails_without_remote_calls(make_provider, country, company):
    provider = make_provider()

    with pytest.raises(DomainError):
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1), country=country, company=company))

    assert provider.calls == []


# --- Entitlements and SKU reconciliation ---

@pytest.mark.asyncio
async def test_no_licenses_for_company(make_provider):
    provider = make_provider(details={"LV001": lido_details(licenses=[])})

    with pytest.raises(DomainError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1)))

    assert "No licenses found for company 'LIDO'" in str(exc.value)
    assert provider.count("get_price") == 0


@pytest.mark.asyncio
async def test_requested_sku_not_found_lists_available_skus(make_provider):
    provider = make_provider()

    with pytest.raises(DomainError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("INVALID-SKU-123", 1)))

    message = str(exc.value)
    assert "Requested SKUs not found for company 'LIDO': INVALID-SKU-123" in message
    assert "Available SKUs: TPLV7893-85, TPLV7884-85" in message


@pytest.mark.asyncio
async def test_every_missing_sku_is_listed(make_provider):
    provider = make_provider()

    with pytest.raises(DomainError) as exc:
        await OrderOrchestrator(provider).process_order(
            _order(("INVALID-1", 1), ("INVALID-2", 1), ("TPLV7893-85", 1))
        )

    assert "INVALID-1" in str(exc.value)
    assert "INVALID-2" in str(exc.value)
    assert provider.count("get_price") == 0


@pytest.mark.asyncio
async def test_available_sku_hint_is_bounded(make_provider):
    licenses = [License(sku=f"SKU-{i:02d}", count=1) for i in range(1, 13)]
    provider = make_provider(details={"LV001": lido_details(licenses=licenses)})

    with pytest.raises(DomainError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("MISSING", 1)))

    message = str(exc.value)
    assert "SKU-10..." in message
    assert "SKU-11" not in message


@pytest.mark.asyncio
async def test_sku_matching_is_case_insensitive_and_trimmed(make_provider):
    provider = make_provider()

    await OrderOrchestrator(provider).process_order(_order((" TPLV7893-85 ", 2), ("tplv7884-85", 1)))

    lines = provider.submitted[0].ordered_license
    # SKU spelling comes from the price response
    assert [line.sku for line in lines] == ["TPLV7893-85", "TPLV7884-85"]


@pytest.mark.asyncio
async def test_duplicate_skus_are_merged_with_summed_counts(make_provider):
    provider = make_provider()

    await OrderOrchestrator(provider).process_order(
        _order(("TPLV7893-85", 2), ("tplv7893-85 ", 3), ("TPLV7884-85", 1), (" TPLV7893-85", 1))
    )

    lines = provider.submitted[0].ordered_license
    assert len(lines) == 2
    assert lines[0].sku == "TPLV7893-85"
    assert lines[0].count == 6
    assert lines[0].sum == Decimal("600.00")
    assert provider.count("get_price") == 2


@pytest.mark.asyncio
async def test_quantity_overage_is_a_warning_and_not_clamped(make_provider, caplog):
    provider = make_provider()

    with caplog.at_level(logging.WARNING):
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 50)))

    assert provider.submitted[0].ordered_license[0].count == 50
    assert "TPLV7893-85 (requested: 50, available: 10)" in caplog.text


@pytest.mark.asyncio
async def test_negative_price_is_kept_with_warning(make_provider, caplog):
    provider = make_provider(prices={"TPLV7893-85": "-20.00", "TPLV7884-85": "50.00"})

    with caplog.at_level(logging.WARNING):
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 2)))

    line = provider.submitted[0].ordered_license[0]
    assert line.price == Decimal("-20.00")
    assert line.sum == Decimal("-40.00")
    assert "Negative price returned for SKU TPLV7893-85" in caplog.text


# --- Price resolution ---

@pytest.mark.asyncio
async def test_prices_are_fetched_concurrently(make_provider):
    skus = ["TPLV0001-01", "TPLV0002-02", "TPLV0003-03"]
    provider = make_provider(
        details={"LV001": lido_details(licenses=[License(sku=sku, count=1) for sku in skus])},
        prices={sku: "1" for sku in skus},
        price_delay=0.1,
    )

    started = time.perf_counter()
    await OrderOrchestrator(provider).process_order(_order(*[(sku, 1) for sku in skus]))
    elapsed = time.perf_counter() - started

    assert elapsed < 0.25


@pytest.mark.asyncio
async def test_lines_follow_request_order_not_completion_order(make_provider):
    provider = make_provider(price_delays={"TPLV7893-85": 0.1})

    await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1), ("TPLV7884-85", 1)))

    lines = provider.submitted[0].ordered_license
    assert [line.sku for line in lines] == ["TPLV7893-85", "TPLV7884-85"]


@pytest.mark.asyncio
async def test_price_failure_names_sku_and_wraps_cause(make_provider):
    cause = ExternalApiError("API call failed with status 500: Internal Server Error")
    provider = make_provider(price_errors={"TPLV7884-85": cause})

    with pytest.raises(ExternalApiError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1), ("TPLV7884-85", 1)))

    assert "Failed to fetch price for SKU TPLV7884-85" in str(exc.value)
    assert exc.value.__cause__ is cause
    assert provider.count("submit_result") == 0


@pytest.mark.asyncio
async def test_unexpected_price_error_is_classified_as_external(make_provider):
    provider = make_provider(price_errors={"TPLV7893-85": RuntimeError("boom")})

    with pytest.raises(ExternalApiError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1)))

    assert isinstance(exc.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_first_failure_in_request_order_is_reported(make_provider):
    provider = make_provider(price_errors={
        "TPLV7893-85": ExternalApiError("first"),
        "TPLV7884-85": ExternalApiError("second"),
    })

    with pytest.raises(ExternalApiError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1), ("TPLV7884-85", 1)))

    assert "TPLV7893-85" in str(exc.value)


@pytest.mark.asyncio
async def test_cancellation_propagates_to_price_fetches(make_provider):
    provider = make_provider(price_delay=10)
    task = asyncio.create_task(
        OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1), ("TPLV7884-85", 1)))
    )
    while provider.count("get_price") < 2:
        await asyncio.sleep(0.01)

    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert sorted(provider.cancelled) == ["TPLV7884-85", "TPLV7893-85"]
    assert provider.count("submit_result") == 0


# --- Payload assembly and submission ---

@pytest.mark.asyncio
async def test_payload_fields_are_trimmed(make_provider):
    provider = make_provider(
        companies={"Latvia": [Company(company_id="  LV001 ", company_name=" LIDO ")]},
        details={"  LV001 ": lido_details(company="  LIDO SIA ", login="  lido_user  ")},
    )

    await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1)))

    payload = provider.submitted[0]
    assert payload.company_id == "LV001"
    assert payload.company_name == "LIDO SIA"
    assert payload.user_login == "lido_user"


@pytest.mark.asyncio
async def test_company_name_falls_back_to_resolved_company(make_provider):
    provider = make_provider(details={"LV001": lido_details(company="  ")})

    await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1)))

    assert provider.submitted[0].company_name == "LIDO"


@pytest.mark.asyncio
async def test_missing_login_blocks_submission(make_provider):
    provider = make_provider(details={"LV001": lido_details(login="   ")})

    with pytest.raises(DomainError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1)))

    assert "missing required fields" in str(exc.value)
    assert provider.count("submit_result") == 0


@pytest.mark.asyncio
async def test_empty_order_blocks_submission(make_provider):
    provider = make_provider()

    with pytest.raises(DomainError):
        await OrderOrchestrator(provider).process_order(_order())

    assert provider.count("submit_result") == 0


@pytest.mark.asyncio
async def test_failed_submission_embeds_status_and_body(make_provider):
    provider = make_provider(submit_status=500, submit_body="Server error")

    with pytest.raises(ExternalApiError) as exc:
        await OrderOrchestrator(provider).process_order(_order(("TPLV7893-85", 1)))

    assert "SubmitResult failed with status 500: Server error" in str(exc.value)
    assert exc.value.status_code == 500


# --- Helpers ---

@pytest.mark.parametrize("contact, expected", [
    (None, "Unknown User"),
    (Contact(name="", surname=""), "Unknown User"),
    (Contact(name=None, surname="  "), "Unknown User"),
    (Contact(name=" John ", surname=" Doe "), "John Doe"),
    (Contact(name="John"), "John"),
    (Contact(surname="Doe"), "Doe"),
])
def test_build_user_name(contact, expected):
    assert build_user_name(contact) == expected


def test_group_requested_skus_keeps_first_appearance_order():
    groups = group_requested_skus(_order(("B-1", 1), ("a-1", 2), ("b-1", 3), ("  ", 4)))

    assert [(g.sku, g.count, g.line_count) for g in groups] == [("B-1", 4, 2), ("a-1", 2, 1)]
