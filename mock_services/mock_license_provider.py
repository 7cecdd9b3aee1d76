"""
mock_license_provider.py - Mock Implementation of the License Provider (REST API)

This module provides a simulated license provider for running the license service
locally. It exposes a FastAPI application with the four provider endpoints and
answers with double-encoded JSON, like the real provider does.

Simulation Scenarios:
    • Company lookup per country (Latvia, Germany)
    • Company details with licensed SKUs and entitled quantities
    • Price lookup; SKUs starting with "FAIL-" answer with HTTP 500
    • Slow provider: company "TIMEOUT" delays its details by 10 seconds
    • Submission; company "Reject Corp" (DE002) is rejected with HTTP 422
    • Company "Airbaltic" has no licenses

Endpoints:
    POST /api/GetCompanies, /api/GetCompanyDetails, /api/GetPrice, /api/SubmitResult
    (each requires a `code` query parameter)

Port:
    Default: 8003 (HTTP)
"""

import asyncio
import json
import logging
import time
import uuid

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import Response

app = FastAPI(title="Mock License Provider")
logging.basicConfig(level=logging.INFO)

COMPANIES = {
    "latvia": [
        {"CompanyId": "LV001", "CompanyName": "LIDO"},
        {"CompanyId": "LV002", "CompanyName": "Airbaltic"},
        {"CompanyId": "LV003", "CompanyName": "TIMEOUT"},
    ],
    "germany": [
        {"CompanyId": "DE001", "CompanyName": "GVS"},
        {"CompanyId": "DE002", "CompanyName": "Reject Corp"},
    ],
}

DETAILS = {
    "LV001": {
        "Company": "LIDO",
        "Login": "lido_admin",
        "Contact": {"Name": "Janis", "Surname": "Berzins",
                    "Address": {"Country": "Latvia", "City": "Riga", "Street": "Krasta", "House": "76", "Zip": "LV-1019"}},
        "Licenses": [{"SKU": "TPLV7893-85", "Count": 10}, {"SKU": "TPLV7884-85", "Count": 5}],
    },
    "LV002": {
        "Company": "Airbaltic",
        "Login": "airbaltic",
        "Contact": None,
        "Licenses": [],
    },
    "LV003": {
        "Company": "TIMEOUT",
        "Login": "slow",
        "Contact": {"Name": "", "Surname": ""},
        "Licenses": [{"SKU": "TPLV7893-85", "Count": 1}],
    },
    "DE001": {
        "Company": "GVS",
        "Login": "gvs_user",
        "Contact": {"Name": "Anna", "Surname": "Schmidt"},
        "Licenses": [{"SKU": "TPLV7891-15", "Count": 25}, {"SKU": "FAIL-0001", "Count": 1}],
    },
    "DE002": {
        "Company": "Reject Corp",
        "Login": "reject",
        "Contact": {"Name": "Max", "Surname": "Mustermann"},
        "Licenses": [{"SKU": "TPLV7891-15", "Count": 3}],
    },
}

PRICES = {
    "TPLV7893-85": 100.00,
    "TPLV7884-85": 50.00,
    "TPLV7891-15": 75.50,
}


def _encoded(data) -> Response:
    """The provider wraps its JSON documents in a JSON string."""
    return Response(content=json.dumps(json.dumps(data)), media_type="application/json")


def _field(body: dict, name: str) -> str:
    for key, value in body.items():
        if key.lower() == name.lower():
            return str(value or "")
    return ""


@app.post("/api/GetCompanies")
async def get_companies(request: Request, code: str = Query(...)):
    body = await request.json()
    country = _field(body, "country").strip().lower()
    logging.info(f"[LP] Company list requested for country '{country}'.")
    return _encoded(COMPANIES.get(country, []))


@app.post("/api/GetCompanyDetails")
async def get_company_details(request: Request, code: str = Query(...)):
    body = await request.json()
    company_id = _field(body, "CompanyId").strip()
    logging.info(f"[LP] Company details requested for {company_id}.")
    if company_id == "LV003":
        logging.info(f"[LP] Simulating slow answer for {company_id}...")
        await asyncio.sleep(10)
    details = DETAILS.get(company_id)
    if details is None:
        return Response(content="", media_type="application/json")
    return _encoded(details)


@app.post("/api/GetPrice")
async def get_price(request: Request, code: str = Query(...)):
    body = await request.json()
    sku = _field(body, "SKU").strip()
    if sku.upper().startswith("FAIL-"):
        logging.warning(f"[LP] Simulated price failure for {sku}.")
        raise HTTPException(status_code=500, detail="Price service unavailable")
    price = PRICES.get(sku.upper(), 10.00)
    logging.info(f"[LP] Price for {sku}: {price}")
    return _encoded({"SKU": sku.upper(), "Price": price})


@app.post("/api/SubmitResult")
async def submit_result(request: Request, code: str = Query(...)):
    body = await request.json()
    company_id = _field(body, "CompanyId")
    if company_id == "DE002":
        raise HTTPException(status_code=422, detail="Submission rejected")
    lines = body.get("OrderedLicense", [])
    logging.info(f"[LP] Result for {company_id} received with {len(lines)} lines.")
    return {
        "submissionId": f"sub_{uuid.uuid4()}",
        "status": "accepted",
        "receivedAt": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8003)
