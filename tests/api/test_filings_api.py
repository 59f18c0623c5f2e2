"""Tests for filing API endpoints."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient


@pytest.fixture
def headers() -> dict[str, str]:
    return {"X-User-Id": str(uuid.uuid4())}


async def _create_filing(api_client: AsyncClient, headers: dict[str, str]) -> dict:
    response = await api_client.post(
        "/api/filings",
        json={"tax_year": 2024, "jurisdiction": "CA", "metadata": {"province": "ON"}},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_create_and_get_filing(api_client: AsyncClient, headers: dict[str, str]) -> None:
    created = await _create_filing(api_client, headers)
    assert created["status"] == "DRAFT"
    assert created["filing_type"] == "ORIGINAL"
    assert created["user_id"] == headers["X-User-Id"]
    assert created["metadata"] == {"province": "ON"}

    response = await api_client.get(f"/api/filings/{created['id']}", headers=headers)

    assert response.status_code == 200
    assert response.json()["id"] == created["id"]


@pytest.mark.asyncio
async def test_missing_user_header_is_unauthorized(api_client: AsyncClient) -> None:
    missing = await api_client.get("/api/filings")
    malformed = await api_client.get("/api/filings", headers={"X-User-Id": "not-a-uuid"})

    assert missing.status_code == 401
    assert malformed.status_code == 401


@pytest.mark.asyncio
async def test_duplicate_filing_is_conflict(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    await _create_filing(api_client, headers)

    response = await api_client.post(
        "/api/filings", json={"tax_year": 2024, "jurisdiction": "CA"}, headers=headers
    )

    assert response.status_code == 409
    assert response.json()["code"] == "FILING_EXISTS"


@pytest.mark.asyncio
async def test_other_users_filing_is_forbidden(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    created = await _create_filing(api_client, headers)
    stranger = {"X-User-Id": str(uuid.uuid4())}

    response = await api_client.get(f"/api/filings/{created['id']}", headers=stranger)

    assert response.status_code == 403
    assert response.json() == {
        "code": "ACCESS_DENIED",
        "message": "You do not have access to this filing",
    }


@pytest.mark.asyncio
async def test_unknown_filing_is_not_found(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    response = await api_client.get(f"/api/filings/{uuid.uuid4()}", headers=headers)

    assert response.status_code == 404
    assert response.json()["code"] == "FILING_NOT_FOUND"


@pytest.mark.asyncio
async def test_items_crud(api_client: AsyncClient, headers: dict[str, str]) -> None:
    """Add, patch and remove each kind of filing item."""
    filing = await _create_filing(api_client, headers)
    base = f"/api/filings/{filing['id']}"

    income = await api_client.post(
        f"{base}/income-items",
        json={"income_type": "EMPLOYMENT", "amount": "60000", "source": "Acme Corp"},
        headers=headers,
    )
    assert income.status_code == 201
    income_id = income.json()["id"]

    patched = await api_client.patch(
        f"{base}/income-items/{income_id}", json={"tax_withheld": "8000"}, headers=headers
    )
    assert patched.status_code == 200
    assert Decimal(patched.json()["tax_withheld"]) == Decimal("8000")
    assert patched.json()["source"] == "Acme Corp"

    deduction = await api_client.post(
        f"{base}/deduction-items",
        json={"deduction_type": "RRSP", "amount": "5000", "description": "RRSP"},
        headers=headers,
    )
    assert deduction.status_code == 201

    claim = await api_client.post(
        f"{base}/credit-claims",
        json={"credit_type": "TUITION", "claimed_amount": "250"},
        headers=headers,
    )
    assert claim.status_code == 201
    claim_id = claim.json()["id"]

    removed = await api_client.delete(f"{base}/credit-claims/{claim_id}", headers=headers)
    assert removed.status_code == 204

    body = (await api_client.get(base, headers=headers)).json()
    assert len(body["income_items"]) == 1
    assert len(body["deduction_items"]) == 1
    assert body["credit_claims"] == []

    listing = (await api_client.get("/api/filings", headers=headers)).json()
    assert listing[0]["income_item_count"] == 1
    assert Decimal(listing[0]["total_income"]) == Decimal("60000")


@pytest.mark.asyncio
async def test_negative_amount_is_rejected(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    filing = await _create_filing(api_client, headers)

    response = await api_client.post(
        f"/api/filings/{filing['id']}/income-items",
        json={"income_type": "EMPLOYMENT", "amount": "-5"},
        headers=headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize("jurisdiction", ["ca", "1-CA", "C"])
async def test_malformed_jurisdiction_is_rejected(
    api_client: AsyncClient, headers: dict[str, str], jurisdiction: str
) -> None:
    response = await api_client.post(
        "/api/filings", json={"tax_year": 2024, "jurisdiction": jurisdiction}, headers=headers
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_mark_ready_requires_income(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    filing = await _create_filing(api_client, headers)

    response = await api_client.post(f"/api/filings/{filing['id']}/mark-ready", headers=headers)

    assert response.status_code == 400
    assert response.json()["code"] == "INCOMPLETE_FILING"


@pytest.mark.asyncio
async def test_ready_round_trip(api_client: AsyncClient, headers: dict[str, str]) -> None:
    filing = await _create_filing(api_client, headers)
    base = f"/api/filings/{filing['id']}"
    await api_client.post(
        f"{base}/income-items",
        json={"income_type": "SELF_EMPLOYMENT", "amount": "12000"},
        headers=headers,
    )

    ready = await api_client.post(f"{base}/mark-ready", headers=headers)
    assert ready.status_code == 200
    assert ready.json()["status"] == "READY"

    again = await api_client.post(f"{base}/mark-ready", headers=headers)
    assert again.status_code == 400
    assert again.json()["code"] == "INVALID_STATUS"

    draft = await api_client.post(f"{base}/unmark-ready", headers=headers)
    assert draft.json()["status"] == "DRAFT"

    filtered = await api_client.get(
        "/api/filings", params={"status": "READY"}, headers=headers
    )
    assert filtered.json() == []


@pytest.mark.asyncio
async def test_delete_filing(api_client: AsyncClient, headers: dict[str, str]) -> None:
    filing = await _create_filing(api_client, headers)

    response = await api_client.delete(f"/api/filings/{filing['id']}", headers=headers)
    assert response.status_code == 204

    gone = await api_client.get(f"/api/filings/{filing['id']}", headers=headers)
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_amend_requires_submitted_original(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    filing = await _create_filing(api_client, headers)

    response = await api_client.post(
        f"/api/filings/{filing['id']}/amendments", headers=headers
    )

    assert response.status_code == 400
    assert response.json()["code"] == "ORIGINAL_NOT_SUBMITTED"


@pytest.mark.asyncio
async def test_request_id_is_echoed(api_client: AsyncClient, headers: dict[str, str]) -> None:
    response = await api_client.get(
        "/api/filings", headers={**headers, "X-Request-ID": "req-123"}
    )

    assert response.headers["X-Request-ID"] == "req-123"
