"""Tests for rule version API endpoints."""

from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

RULE_PAYLOAD = {
    "name": "CA 2024",
    "jurisdiction": "CA",
    "tax_year": 2024,
    "effective_from": "2024-01-01",
    "effective_to": "2024-12-31",
    "brackets": [
        {"min_income": "0", "max_income": "50000", "rate": "0.15"},
        {"min_income": "50000", "max_income": None, "rate": "0.205"},
    ],
    "credit_rules": [
        {"credit_type": "TUITION", "name": "Tuition", "amount": "1000", "max_amount": "1000"}
    ],
}


@pytest.fixture
def headers() -> dict[str, str]:
    return {"X-User-Id": str(uuid.uuid4())}


@pytest.mark.asyncio
async def test_create_activate_and_fetch_active(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    """Create a draft, activate it, and read it back as the active version."""
    create_response = await api_client.post("/api/rules", json=RULE_PAYLOAD, headers=headers)
    assert create_response.status_code == 201
    created = create_response.json()
    assert created["status"] == "DRAFT"
    assert created["version"] == 1
    assert created["created_by"] == headers["X-User-Id"]
    assert [b["bracket_order"] for b in created["brackets"]] == [1, 2]

    activate_response = await api_client.post(
        f"/api/rules/{created['id']}/activate", headers=headers
    )
    assert activate_response.status_code == 200
    assert activate_response.json()["status"] == "ACTIVE"

    active_response = await api_client.get(
        "/api/rules/active", params={"jurisdiction": "CA", "tax_year": 2024}
    )
    assert active_response.status_code == 200
    assert active_response.json()["id"] == created["id"]


@pytest.mark.asyncio
async def test_activation_deprecates_previous(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    first = (await api_client.post("/api/rules", json=RULE_PAYLOAD, headers=headers)).json()
    await api_client.post(f"/api/rules/{first['id']}/activate", headers=headers)
    second = (await api_client.post("/api/rules", json=RULE_PAYLOAD, headers=headers)).json()
    await api_client.post(f"/api/rules/{second['id']}/activate", headers=headers)

    response = await api_client.get(
        "/api/rules", params={"jurisdiction": "CA", "tax_year": 2024}
    )

    assert response.status_code == 200
    statuses = {v["version"]: v["status"] for v in response.json()}
    assert statuses == {1: "DEPRECATED", 2: "ACTIVE"}


@pytest.mark.asyncio
async def test_no_active_rules_is_not_found(api_client: AsyncClient) -> None:
    response = await api_client.get(
        "/api/rules/active", params={"jurisdiction": "CA", "tax_year": 2024}
    )

    assert response.status_code == 404
    assert response.json() == {
        "code": "NO_ACTIVE_RULES",
        "message": "No active tax rules for CA - 2024",
    }


@pytest.mark.asyncio
async def test_activate_without_brackets_is_rejected(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    payload = {**RULE_PAYLOAD, "brackets": []}
    created = (await api_client.post("/api/rules", json=payload, headers=headers)).json()

    response = await api_client.post(f"/api/rules/{created['id']}/activate", headers=headers)

    assert response.status_code == 400
    assert response.json()["code"] == "MISSING_BRACKETS"


@pytest.mark.asyncio
async def test_invalid_bracket_is_rejected(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    payload = {
        **RULE_PAYLOAD,
        "brackets": [{"min_income": "50000", "max_income": "100", "rate": "0.1"}],
    }

    response = await api_client.post("/api/rules", json=payload, headers=headers)

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_BRACKET"


@pytest.mark.asyncio
async def test_activate_rejects_gapped_brackets(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    payload = {
        **RULE_PAYLOAD,
        "brackets": [
            {"min_income": "0", "max_income": "40000", "rate": "0.15"},
            {"min_income": "50000", "max_income": None, "rate": "0.205"},
        ],
    }
    created = (await api_client.post("/api/rules", json=payload, headers=headers)).json()

    response = await api_client.post(f"/api/rules/{created['id']}/activate", headers=headers)

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_BRACKET"


@pytest.mark.asyncio
async def test_malformed_jurisdiction_is_rejected(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    payload = {**RULE_PAYLOAD, "jurisdiction": "1-CA"}

    response = await api_client.post("/api/rules", json=payload, headers=headers)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_active_version_children_are_read_only(
    api_client: AsyncClient, headers: dict[str, str]
) -> None:
    created = (await api_client.post("/api/rules", json=RULE_PAYLOAD, headers=headers)).json()
    await api_client.post(f"/api/rules/{created['id']}/activate", headers=headers)

    response = await api_client.post(
        f"/api/rules/{created['id']}/brackets",
        json={"min_income": "200000", "rate": "0.33"},
        headers=headers,
    )

    assert response.status_code == 400
    assert response.json()["code"] == "RULE_NOT_EDITABLE"


@pytest.mark.asyncio
async def test_seed_preset(api_client: AsyncClient, headers: dict[str, str]) -> None:
    response = await api_client.post("/api/rules/presets/CA/2024", headers=headers)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "ACTIVE"
    assert body["jurisdiction"] == "CA"
    assert len(body["brackets"]) >= 2

    missing = await api_client.post("/api/rules/presets/ZZ/1999", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["code"] == "PRESET_NOT_FOUND"


@pytest.mark.asyncio
async def test_unknown_rule_version(api_client: AsyncClient) -> None:
    response = await api_client.get(f"/api/rules/{uuid.uuid4()}")

    assert response.status_code == 404
    assert response.json()["code"] == "RULE_VERSION_NOT_FOUND"


@pytest.mark.asyncio
async def test_mutations_require_user_header(api_client: AsyncClient) -> None:
    response = await api_client.post("/api/rules", json=RULE_PAYLOAD)

    assert response.status_code == 401
